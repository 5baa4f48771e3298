# core/settings_store.py
"""
Key-value settings for the notification pipeline

Keys: ``notifications_enabled``, ``admin_emails`` and ``smtp_settings``. An
absent key always reads as its documented default. Saves are last-write-wins.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from email_validator import validate_email, EmailNotValidError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.database_models import EmailSetting, utcnow
from core.exceptions import SettingsValidationError, StoreError
from core.security_manager import SecurityManager
from core.smtp_transport import SMTPSettings

logger = logging.getLogger(__name__)

NOTIFICATIONS_ENABLED_KEY = 'notifications_enabled'
ADMIN_EMAILS_KEY = 'admin_emails'
SMTP_SETTINGS_KEY = 'smtp_settings'


def normalize_admin_emails(emails: Iterable[str]) -> List[str]:
    """
    Validate and normalize admin addresses, preserving order.

    Raises ``SettingsValidationError`` listing every invalid entry.
    """
    if isinstance(emails, str):
        emails = emails.replace('\n', ',').split(',')

    normalized = []
    invalid = []
    for raw in emails or []:
        candidate = (raw or '').strip() if isinstance(raw, str) else ''
        if not candidate:
            continue
        try:
            normalized.append(validate_email(candidate, check_deliverability=False).normalized)
        except EmailNotValidError:
            invalid.append(candidate)

    if invalid:
        raise SettingsValidationError(f"Invalid email address(es): {', '.join(invalid)}")
    return normalized


class SettingsStore:
    """Reads and writes notification settings"""

    def __init__(self,
                 session_factory: sessionmaker,
                 security_manager: SecurityManager,
                 fallback_admin_email: str,
                 notifications_enabled_default: bool = True):
        self.session_factory = session_factory
        self.security_manager = security_manager
        self.fallback_admin_email = fallback_admin_email
        self.notifications_enabled_default = notifications_enabled_default

    def _read(self, key: str) -> Optional[Any]:
        try:
            with self.session_factory() as session:
                row = session.execute(
                    select(EmailSetting).where(EmailSetting.setting_key == key)
                ).scalar_one_or_none()
                return row.setting_value if row is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read setting {key}: {str(e)}")
            raise StoreError(f"Failed to read setting {key}") from e

    def _write(self, key: str, value: Any) -> None:
        try:
            with self.session_factory() as session, session.begin():
                row = session.execute(
                    select(EmailSetting).where(EmailSetting.setting_key == key)
                ).scalar_one_or_none()
                if row is None:
                    session.add(EmailSetting(setting_key=key, setting_value=value))
                else:
                    row.setting_value = value
                    row.updated_at = utcnow()
        except SQLAlchemyError as e:
            logger.error(f"Failed to save setting {key}: {str(e)}")
            raise StoreError(f"Failed to save setting {key}") from e

        logger.info(f"Setting saved: {key}")

    # Notification settings

    def notifications_enabled(self) -> bool:
        value = self._read(NOTIFICATIONS_ENABLED_KEY)
        if value is None:
            return self.notifications_enabled_default
        return bool(value)

    def admin_emails(self) -> List[str]:
        value = self._read(ADMIN_EMAILS_KEY)
        if not value:
            return [self.fallback_admin_email]
        emails = [email.strip() for email in value if isinstance(email, str) and email.strip()]
        return emails or [self.fallback_admin_email]

    def get_notification_settings(self) -> Dict[str, Any]:
        return {
            NOTIFICATIONS_ENABLED_KEY: self.notifications_enabled(),
            ADMIN_EMAILS_KEY: self.admin_emails(),
        }

    def save_notification_settings(self,
                                   notifications_enabled: Optional[bool] = None,
                                   admin_emails: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Save whichever of the two settings is supplied"""
        if notifications_enabled is not None:
            if not isinstance(notifications_enabled, bool):
                raise SettingsValidationError("notifications_enabled must be a boolean")
            self._write(NOTIFICATIONS_ENABLED_KEY, notifications_enabled)

        if admin_emails is not None:
            emails = normalize_admin_emails(admin_emails)
            if not emails:
                raise SettingsValidationError("At least one admin email is required")
            self._write(ADMIN_EMAILS_KEY, emails)

        return self.get_notification_settings()

    # SMTP settings

    def smtp_settings(self) -> SMTPSettings:
        value = self._read(SMTP_SETTINGS_KEY)
        if not value or not isinstance(value, dict):
            return SMTPSettings()
        settings = SMTPSettings.from_dict(value)
        settings.password = self.security_manager.try_decrypt(value.get('pass'))
        return settings

    def save_smtp_settings(self, settings: SMTPSettings, keep_existing_password: bool = True) -> SMTPSettings:
        """
        Store SMTP settings with the password encrypted.

        An empty password keeps the stored one unless
        ``keep_existing_password`` is False.
        """
        if not settings.host:
            raise SettingsValidationError("SMTP host is required")
        if not settings.user:
            raise SettingsValidationError("SMTP user is required")

        password = settings.password
        if not password and keep_existing_password:
            password = self.smtp_settings().password

        stored = SMTPSettings(
            host=settings.host,
            port=settings.port,
            secure=settings.secure,
            user=settings.user,
            password=password,
        ).to_dict()
        stored['pass'] = self.security_manager.encrypt_sensitive_data(password)

        self._write(SMTP_SETTINGS_KEY, stored)
        return self.smtp_settings()
