from datetime import datetime, timezone
import uuid
from typing import Any, Dict

from sqlalchemy import (
    Column, Integer, String, DateTime, JSON, Text, Boolean, Uuid
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _isoformat(value):
    return value.isoformat() if value else None


class EmailTemplate(Base):
    __tablename__ = 'email_templates'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Not unique; lookup by name returns the oldest matching row
    template_name = Column(String(100), nullable=False, index=True)
    subject = Column(String(255), nullable=False)
    body_template = Column(Text, nullable=False)
    variables = Column(JSON, default=list)  # Ordered placeholder names
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'template_name': self.template_name,
            'subject': self.subject,
            'body_template': self.body_template,
            'variables': list(self.variables or []),
            'is_active': bool(self.is_active),
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class EmailSetting(Base):
    __tablename__ = 'email_settings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    setting_key = Column(String(100), nullable=False, unique=True)
    setting_value = Column(JSON)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ActivityLogEntry(Base):
    __tablename__ = 'activity_logs'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=True)  # Null for system events
    action = Column(String(100), nullable=False, index=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'user_id': self.user_id,
            'action': self.action,
            'details': dict(self.details or {}),
            'created_at': _isoformat(self.created_at),
        }
