# core/activity_log.py
"""
Append-only activity log for delivery attempts
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.database_models import ActivityLogEntry, utcnow
from core.exceptions import StoreError

logger = logging.getLogger(__name__)

EMAIL_ATTEMPT_ACTION = 'email_notification_attempt'


class ActivityLog:
    """
    Writes one entry per delivery attempt and reads entries newest-first.

    Writing never raises: a failed write is reported as a warning and the
    caller carries on.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def log_attempt(self,
                    recipient: str,
                    subject: str,
                    status: str,
                    method: str,
                    user_id: Optional[str] = None) -> Optional[ActivityLogEntry]:
        created_at = self.clock()
        entry = ActivityLogEntry(
            user_id=user_id,
            action=EMAIL_ATTEMPT_ACTION,
            details={
                'recipient': recipient,
                'subject': subject,
                'status': status,
                'timestamp': created_at.isoformat(),
                'method': method,
            },
            created_at=created_at,
        )

        try:
            with self.session_factory() as session, session.begin():
                session.add(entry)
        except Exception as e:
            logger.warning(f"Failed to log email attempt for {recipient}: {str(e)}")
            return None

        return entry

    def recent(self, limit: int = 100, action: Optional[str] = None) -> List[ActivityLogEntry]:
        query = select(ActivityLogEntry).order_by(ActivityLogEntry.created_at.desc()).limit(limit)
        if action:
            query = query.where(ActivityLogEntry.action == action)
        try:
            with self.session_factory() as session:
                return list(session.execute(query).scalars())
        except SQLAlchemyError as e:
            logger.error(f"Failed to read activity log: {str(e)}")
            raise StoreError("Failed to read activity log") from e

    def count_since(self, since: datetime, action: Optional[str] = None) -> int:
        query = select(func.count()).select_from(ActivityLogEntry).where(ActivityLogEntry.created_at >= since)
        if action:
            query = query.where(ActivityLogEntry.action == action)
        try:
            with self.session_factory() as session:
                return session.execute(query).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Failed to count activity log entries: {str(e)}")
            raise StoreError("Failed to count activity log entries") from e
