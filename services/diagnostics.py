# services/diagnostics.py
"""
Email system diagnostics

Read-only snapshot of the notification subsystem: SMTP configuration,
notification settings, active templates and recent delivery activity.
Every call re-reads all sources.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from core.activity_log import ActivityLog
from core.database_models import utcnow
from core.exceptions import DiagnosticsError, StoreError
from core.settings_store import SettingsStore
from core.template_store import TemplateStore

logger = logging.getLogger(__name__)

REGISTRATION_TEMPLATE_NAME = 'new_registration'


@dataclass
class Recommendation:
    """Actionable hint shown next to a diagnosis"""
    category: str
    priority: str  # "low", "medium", "high"
    message: str


@dataclass
class EmailSystemDiagnosis:
    """Point-in-time snapshot of the notification subsystem"""
    checked_at: datetime
    smtp_configured: bool
    smtp_host: str
    smtp_user: str
    smtp_has_password: bool
    notifications_enabled: bool
    admin_emails: List[str]
    admin_emails_count: int
    active_templates_count: int
    recent_email_activity: int
    activity_window_hours: int
    database_accessible: bool = True
    recommendations: List[Recommendation] = field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return self.smtp_configured and self.notifications_enabled and self.admin_emails_count > 0

    def counts(self) -> Dict[str, int]:
        return {
            'admin_emails_count': self.admin_emails_count,
            'active_templates_count': self.active_templates_count,
            'recent_email_activity': self.recent_email_activity,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['checked_at'] = self.checked_at.isoformat()
        data['is_ready'] = self.is_ready
        return data


class EmailDiagnostics:
    """Aggregates a diagnosis from the settings, templates and activity log"""

    def __init__(self,
                 settings_store: SettingsStore,
                 template_store: TemplateStore,
                 activity_log: ActivityLog,
                 window_hours: int = 24,
                 database_check: Optional[Callable[[], bool]] = None):
        self.settings_store = settings_store
        self.template_store = template_store
        self.activity_log = activity_log
        self.window_hours = window_hours
        self.database_check = database_check

    def _check_database(self) -> bool:
        if self.database_check is None:
            return True
        try:
            return bool(self.database_check())
        except Exception as e:
            logger.error(f"Database check failed: {str(e)}")
            raise DiagnosticsError(f"Database is not accessible: {str(e)}") from e

    def diagnose(self, now: Optional[datetime] = None) -> EmailSystemDiagnosis:
        now = now or utcnow()
        since = now - timedelta(hours=self.window_hours)

        database_accessible = self._check_database()
        try:
            smtp = self.settings_store.smtp_settings()
            notifications_enabled = self.settings_store.notifications_enabled()
            admin_emails = self.settings_store.admin_emails()
            active_templates = self.template_store.count_active()
            has_registration_template = self.template_store.get_active_template(REGISTRATION_TEMPLATE_NAME) is not None
            recent_activity = self.activity_log.count_since(since)
        except StoreError as e:
            logger.error(f"Email system diagnosis failed: {str(e)}")
            raise DiagnosticsError(f"Database is not accessible: {str(e)}") from e
        except Exception as e:
            logger.exception("Email system diagnosis failed unexpectedly")
            raise DiagnosticsError(f"Diagnosis failed: {str(e)}") from e

        diagnosis = EmailSystemDiagnosis(
            checked_at=now,
            smtp_configured=smtp.is_configured,
            smtp_host=smtp.host,
            smtp_user=smtp.user,
            smtp_has_password=bool(smtp.password),
            notifications_enabled=notifications_enabled,
            admin_emails=admin_emails,
            admin_emails_count=len(admin_emails),
            active_templates_count=active_templates,
            recent_email_activity=recent_activity,
            activity_window_hours=self.window_hours,
            database_accessible=database_accessible,
        )
        diagnosis.recommendations = self._generate_recommendations(diagnosis, has_registration_template)
        return diagnosis

    def _generate_recommendations(self, diagnosis: EmailSystemDiagnosis,
                                  has_registration_template: bool) -> List[Recommendation]:
        recommendations = []

        if not diagnosis.smtp_host or not diagnosis.smtp_user:
            recommendations.append(Recommendation(
                category='smtp',
                priority='high',
                message='Configure the SMTP host and user so notifications can be delivered',
            ))
        if diagnosis.smtp_host and diagnosis.smtp_user and not diagnosis.smtp_has_password:
            recommendations.append(Recommendation(
                category='smtp',
                priority='high',
                message='Set the SMTP password; delivery fails without it',
            ))
        if not diagnosis.notifications_enabled:
            recommendations.append(Recommendation(
                category='settings',
                priority='medium',
                message='Notifications are disabled; administrators will not hear about new registrations',
            ))
        if not has_registration_template:
            recommendations.append(Recommendation(
                category='templates',
                priority='low',
                message=f"No active '{REGISTRATION_TEMPLATE_NAME}' template; the built-in default will be used",
            ))
        if diagnosis.recent_email_activity == 0:
            recommendations.append(Recommendation(
                category='activity',
                priority='low',
                message=f'No delivery attempts in the last {diagnosis.activity_window_hours} hours; send a test email to verify the setup',
            ))

        return recommendations
