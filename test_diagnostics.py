"""Tests for the email system diagnosis"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FALLBACK_EMAIL, VALID_SMTP, BrokenSessionFactory
from core.activity_log import ActivityLog
from core.exceptions import DiagnosticsError
from core.smtp_transport import SMTPSettings
from core.template_store import TemplateStore
from services.diagnostics import EmailDiagnostics


@pytest.fixture
def diagnostics(settings_store, template_store, activity_log):
    return EmailDiagnostics(settings_store, template_store, activity_log, window_hours=24)


def test_diagnosis_of_empty_system(diagnostics, clock):
    diagnosis = diagnostics.diagnose(now=clock.now)

    assert diagnosis.smtp_configured is False
    assert diagnosis.smtp_host == ''
    assert diagnosis.smtp_has_password is False
    assert diagnosis.notifications_enabled is True
    assert diagnosis.admin_emails == [FALLBACK_EMAIL]
    assert diagnosis.admin_emails_count == 1
    assert diagnosis.active_templates_count == 0
    assert diagnosis.recent_email_activity == 0
    assert diagnosis.database_accessible is True
    assert diagnosis.is_ready is False
    assert {r.category for r in diagnosis.recommendations} == {'smtp', 'templates', 'activity'}


def test_diagnosis_of_configured_system(diagnostics, settings_store, template_store, activity_log, clock):
    settings_store.save_smtp_settings(VALID_SMTP)
    settings_store.save_notification_settings(admin_emails=['a@x.com', 'b@x.com'])
    template_store.create_template({'template_name': 'new_registration', 'subject': 'S', 'body_template': 'B'})
    template_store.create_template({'template_name': 'draft', 'subject': 'S', 'body_template': 'B',
                                    'is_active': False})

    clock.advance(hours=-30)
    activity_log.log_attempt('old@x.com', 'S', 'Sent successfully', 'test')
    clock.advance(hours=28)
    activity_log.log_attempt('a@x.com', 'S', 'Sent successfully', 'test')
    activity_log.log_attempt('b@x.com', 'S', 'Failed: boom', 'test')
    clock.advance(hours=2)

    diagnosis = diagnostics.diagnose(now=clock.now)

    assert diagnosis.smtp_configured is True
    assert diagnosis.smtp_host == 'mail.gandi.net'
    assert diagnosis.smtp_user == 'club@aiclub.example'
    assert diagnosis.smtp_has_password is True
    assert diagnosis.admin_emails_count == 2
    assert diagnosis.active_templates_count == 1
    assert diagnosis.recent_email_activity == 2
    assert diagnosis.is_ready is True
    assert diagnosis.recommendations == []


def test_missing_password_is_reported(diagnostics, settings_store, clock):
    settings_store.save_smtp_settings(SMTPSettings(host='mail.gandi.net', user='club@aiclub.example'))

    diagnosis = diagnostics.diagnose(now=clock.now)

    assert diagnosis.smtp_configured is False
    assert diagnosis.smtp_host == 'mail.gandi.net'
    assert any('password' in r.message for r in diagnosis.recommendations)


def test_diagnose_is_idempotent(diagnostics, settings_store, activity_log, clock):
    settings_store.save_smtp_settings(VALID_SMTP)
    activity_log.log_attempt('a@x.com', 'S', 'Sent successfully', 'test')

    first = diagnostics.diagnose(now=clock.now)
    second = diagnostics.diagnose(now=clock.now)

    assert first == second
    assert first.counts() == second.counts()


def test_diagnose_rereads_sources(diagnostics, settings_store, clock):
    assert diagnostics.diagnose(now=clock.now).notifications_enabled is True

    settings_store.save_notification_settings(notifications_enabled=False)

    assert diagnostics.diagnose(now=clock.now).notifications_enabled is False


def test_read_failure_raises_diagnostics_error(settings_store):
    diagnostics = EmailDiagnostics(settings_store, TemplateStore(BrokenSessionFactory()),
                                   ActivityLog(BrokenSessionFactory()))

    with pytest.raises(DiagnosticsError) as exc_info:
        diagnostics.diagnose()

    assert 'Database is not accessible' in exc_info.value.reason


def test_to_dict_is_serializable(diagnostics, clock):
    data = diagnostics.diagnose(now=clock.now).to_dict()

    assert data['checked_at'] == clock.now.isoformat()
    assert data['activity_window_hours'] == 24
    assert isinstance(data['recommendations'][0], dict)
    assert 'is_ready' in data


def test_window_is_configurable(settings_store, template_store, activity_log, clock):
    activity_log.log_attempt('a@x.com', 'S', 'Sent successfully', 'test')
    diagnostics = EmailDiagnostics(settings_store, template_store, activity_log, window_hours=1)

    assert diagnostics.diagnose(now=clock.now + timedelta(minutes=30)).recent_email_activity == 1
    assert diagnostics.diagnose(now=clock.now + timedelta(hours=2)).recent_email_activity == 0


def test_database_check_populates_accessibility(settings_store, template_store, activity_log, clock):
    checks = []
    diagnostics = EmailDiagnostics(settings_store, template_store, activity_log,
                                   database_check=lambda: checks.append('ping') or True)

    diagnosis = diagnostics.diagnose(now=clock.now)

    assert checks == ['ping']
    assert diagnosis.database_accessible is True


def test_failed_database_check_raises_diagnostics_error(settings_store, template_store, activity_log):
    def unreachable():
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    diagnostics = EmailDiagnostics(settings_store, template_store, activity_log, database_check=unreachable)

    with pytest.raises(DiagnosticsError) as exc_info:
        diagnostics.diagnose()

    assert exc_info.value.reason.startswith('Database is not accessible')
    assert 'connection refused' in exc_info.value.reason


def test_unexpected_read_error_raises_diagnostics_error(settings_store, activity_log):
    class CrashingTemplates:
        def count_active(self):
            raise RuntimeError('unexpected row shape')

    diagnostics = EmailDiagnostics(settings_store, CrashingTemplates(), activity_log)

    with pytest.raises(DiagnosticsError) as exc_info:
        diagnostics.diagnose()

    assert exc_info.value.reason == 'Diagnosis failed: unexpected row shape'
