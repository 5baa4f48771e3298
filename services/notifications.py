# services/notifications.py
"""
Notification dispatcher

Loads recipients and the active template for an event, renders the message
once, fans it out to every administrator concurrently and records one
activity log entry per attempt.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from core.activity_log import ActivityLog
from core.database_models import utcnow
from core.exceptions import (
    NotificationDeliveryError, NotificationError, SMTPConfigurationError, StoreError
)
from core.settings_store import SettingsStore
from core.smtp_transport import DeliveryResult, DeliveryTransport, EmailMessage, SMTPSettings
from core.template_engine import PlaceholderTemplateEngine, text_to_html
from core.template_store import TemplateStore

logger = logging.getLogger(__name__)

SENT_STATUS = 'Sent successfully'
FAILED_STATUS_PREFIX = 'Failed: '
DISPATCH_METHOD = 'notification_dispatcher'

CREATED_AT_FORMAT = '%d.%m.%Y, %H:%M:%S'


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ''


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        logger.warning(f"Unparseable registration timestamp: {value!r}")
        return None


@dataclass
class RegistrationEvent:
    """A new course registration submitted through the public site"""
    name: str
    phone: str = ''
    telegram: str = ''
    course_name: str = ''
    email: Optional[str] = None
    created_at: Optional[datetime] = None

    template_name = 'new_registration'
    default_subject = 'New course registration: {{courseName}}'
    default_body = (
        "A new registration has been submitted.\n"
        "\n"
        "Name: {{name}}\n"
        "Email: {{email}}\n"
        "Phone: {{phone}}\n"
        "Telegram: {{telegram}}\n"
        "Course: {{courseName}}\n"
        "Registered at: {{createdAt}}\n"
    )
    declared_variables = ('name', 'email', 'phone', 'telegram', 'courseName', 'createdAt')

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'RegistrationEvent':
        """Build from a registration row, accepting camelCase or snake_case keys"""
        course_name = data.get('courseName')
        if course_name is None:
            course_name = data.get('course_name', '')
        created_at = data.get('createdAt')
        if created_at is None:
            created_at = data.get('created_at')

        return cls(
            name=_text(data.get('name')),
            phone=_text(data.get('phone')),
            telegram=_text(data.get('telegram')),
            course_name=_text(course_name),
            email=_text(data.get('email')) or None,
            created_at=_parse_datetime(created_at),
        )

    def template_values(self) -> Dict[str, Any]:
        created_at = (self.created_at or utcnow()).strftime(CREATED_AT_FORMAT)
        return {
            'name': self.name,
            'email': self.email or None,
            'phone': self.phone,
            'telegram': self.telegram,
            'courseName': self.course_name,
            'course_name': self.course_name,
            'createdAt': created_at,
            'created_at': created_at,
        }


@dataclass
class TestNotificationEvent:
    """Administrator-triggered check of the delivery path"""
    message: Optional[str] = None
    requested_by: Optional[str] = None

    template_name = 'test_notification'
    default_subject = 'AI Club: test email'
    default_body = (
        "This is a test email from the AI Club notification system.\n"
        "\n"
        "Sent at: {{sentAt}}\n"
        "Requested by: {{requestedBy}}\n"
        "\n"
        "{{message}}"
    )
    declared_variables = ('sentAt', 'requestedBy', 'message')

    # Not a pytest test class
    __test__ = False

    def template_values(self) -> Dict[str, Any]:
        return {
            'sentAt': utcnow().strftime(CREATED_AT_FORMAT),
            'requestedBy': self.requested_by,
            'message': self.message or '',
        }


@dataclass
class DeliveryAttempt:
    recipient: str
    success: bool
    status: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recipient': self.recipient,
            'success': self.success,
            'status': self.status,
            'error': self.error,
        }


@dataclass
class DispatchReport:
    """Outcome of one notify() call"""
    template_name: str
    subject: str = ''
    attempts: List[DeliveryAttempt] = field(default_factory=list)
    skipped: bool = False
    used_default_template: bool = False

    @property
    def sent_count(self) -> int:
        return sum(1 for attempt in self.attempts if attempt.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for attempt in self.attempts if not attempt.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'template_name': self.template_name,
            'subject': self.subject,
            'skipped': self.skipped,
            'used_default_template': self.used_default_template,
            'sent_count': self.sent_count,
            'failed_count': self.failed_count,
            'attempts': [attempt.to_dict() for attempt in self.attempts],
        }


class NotificationDispatcher:
    """
    Renders an event once and attempts delivery to every administrator.

    Every attempt, successful or not, produces exactly one activity log
    entry. A failed attempt never stops the others; once all attempts have
    finished, any failure is raised as ``NotificationDeliveryError``.
    """

    def __init__(self,
                 settings_store: SettingsStore,
                 template_store: TemplateStore,
                 transport: DeliveryTransport,
                 activity_log: ActivityLog,
                 fallback_admin_email: str,
                 template_engine: Optional[PlaceholderTemplateEngine] = None,
                 method: str = DISPATCH_METHOD):
        self.settings_store = settings_store
        self.template_store = template_store
        self.transport = transport
        self.activity_log = activity_log
        self.fallback_admin_email = fallback_admin_email
        self.template_engine = template_engine or PlaceholderTemplateEngine()
        self.method = method

    def _notifications_enabled(self) -> bool:
        try:
            return self.settings_store.notifications_enabled()
        except StoreError as e:
            logger.warning(f"Could not read notifications_enabled, assuming enabled: {str(e)}")
            return True

    def _load_recipients(self) -> List[str]:
        try:
            recipients = self.settings_store.admin_emails()
        except StoreError as e:
            logger.warning(f"Could not read admin emails, using fallback address: {str(e)}")
            recipients = []

        if not recipients:
            return [self.fallback_admin_email]
        return recipients

    def _load_template(self, event) -> Tuple[str, str, Sequence[str], bool]:
        try:
            template = self.template_store.get_active_template(event.template_name)
        except StoreError as e:
            logger.warning(f"Could not read template '{event.template_name}', using built-in default: {str(e)}")
            template = None

        if template is None:
            logger.info(f"No active template '{event.template_name}', using built-in default")
            return event.default_subject, event.default_body, event.declared_variables, True

        stored_variables = template.variables if isinstance(template.variables, list) else []
        declared = tuple(dict.fromkeys(
            [name for name in stored_variables if isinstance(name, str)] + list(event.declared_variables)
        ))
        return template.subject, template.body_template, declared, False

    def _load_smtp_settings(self) -> SMTPSettings:
        try:
            return self.settings_store.smtp_settings()
        except StoreError as e:
            logger.error(f"Could not read SMTP settings: {str(e)}")
            return SMTPSettings()

    async def _attempt(self, message: EmailMessage, smtp: SMTPSettings) -> DeliveryAttempt:
        try:
            result = await self.transport.send(message, smtp)
        except Exception as e:
            logger.error(f"Transport raised while sending to {message.recipient}: {str(e)}", exc_info=True)
            result = DeliveryResult.failed(f"Transport error: {str(e) or type(e).__name__}")

        if result.success:
            status = SENT_STATUS
        else:
            status = f"{FAILED_STATUS_PREFIX}{result.error}"

        self.activity_log.log_attempt(message.recipient, message.subject, status, self.method)

        return DeliveryAttempt(
            recipient=message.recipient,
            success=result.success,
            status=status,
            error=result.error,
        )

    async def notify(self, event, force: bool = False) -> DispatchReport:
        """
        Dispatch one event. ``force`` sends even when notifications are
        disabled, for administrator-initiated checks.
        """
        if not force and not self._notifications_enabled():
            logger.info(f"Notifications disabled, skipping '{event.template_name}'")
            return DispatchReport(template_name=event.template_name, skipped=True)

        recipients = self._load_recipients()
        subject_template, body_template, declared, used_default = self._load_template(event)

        values = event.template_values()
        subject = self.template_engine.render(subject_template, values, declared).text
        body = self.template_engine.render(body_template, values, declared).text
        html = text_to_html(body)

        smtp = self._load_smtp_settings()

        logger.info(f"Dispatching '{event.template_name}' to {len(recipients)} recipient(s)")
        attempts = await asyncio.gather(*(
            self._attempt(EmailMessage(recipient=recipient, subject=subject, html=html), smtp)
            for recipient in recipients
        ))

        report = DispatchReport(
            template_name=event.template_name,
            subject=subject,
            attempts=list(attempts),
            used_default_template=used_default,
        )

        if report.failed_count:
            errors = sorted({attempt.error or 'unknown error' for attempt in report.attempts if not attempt.success})
            message = (
                f"Failed to notify {report.failed_count} of {len(report.attempts)} "
                f"recipient(s): {'; '.join(errors)}"
            )
            logger.warning(message)
            if smtp.validate():
                raise SMTPConfigurationError(message, report)
            raise NotificationDeliveryError(message, report)

        logger.info(f"Notification '{event.template_name}' delivered to {report.sent_count} recipient(s)")
        return report

    async def notify_quietly(self, event) -> Optional[DispatchReport]:
        """notify() for callers that must never see a pipeline failure"""
        try:
            return await self.notify(event)
        except NotificationError as e:
            logger.warning(f"Notification '{event.template_name}' failed: {str(e)}")
            return None
        except Exception:
            logger.exception(f"Notification '{event.template_name}' failed unexpectedly")
            return None

    async def send_test_notification(self, message: Optional[str] = None,
                                     requested_by: Optional[str] = None) -> DispatchReport:
        event = TestNotificationEvent(message=message, requested_by=requested_by)
        return await self.notify(event, force=True)
