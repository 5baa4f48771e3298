# core/database.py
"""
Engine and session factory setup
"""

import logging
from typing import Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.database_models import Base

logger = logging.getLogger(__name__)


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build an engine for the configured database.

    In-memory SQLite shares a single connection so that every session sees
    the same tables.
    """
    engine_options = {'echo': echo}

    if database_url.startswith('sqlite'):
        engine_options['connect_args'] = {'check_same_thread': False}
        if ':memory:' in database_url or database_url in ('sqlite://', 'sqlite:///'):
            engine_options['poolclass'] = StaticPool
    else:
        engine_options.update({
            'pool_pre_ping': True,
            'pool_recycle': 3600,
        })

    engine = create_engine(database_url, **engine_options)
    logger.info(f"Database configured: {database_url.split('@')[-1]}")
    return engine


def init_database(database_url: str, echo: bool = False) -> Tuple[Engine, sessionmaker]:
    """Create tables and return the engine with its session factory"""
    engine = create_database_engine(database_url, echo=echo)
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return engine, session_factory


def check_database(session_factory: sessionmaker) -> bool:
    with session_factory() as session:
        session.execute(text('SELECT 1'))
    return True
