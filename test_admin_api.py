"""Tests for the admin API, registration hook and application wiring"""

import pytest

from app import create_app
from conftest import BrokenSessionFactory, FakeTransport
from core.database_models import EmailSetting, EmailTemplate
from core.exceptions import StoreError
from services.diagnostics import EmailDiagnostics

SMTP_PAYLOAD = {'host': 'mail.gandi.net', 'port': 587, 'secure': False,
                'user': 'club@aiclub.example', 'pass': 's3cret'}


@pytest.fixture
def fake_transport(app):
    transport = FakeTransport()
    app.dispatcher.transport = transport
    return transport


def _create_template(client, **overrides):
    payload = {
        'template_name': 'new_registration',
        'subject': 'New signup',
        'body_template': 'Hi {{name}}, course {{courseName}}',
        'variables': ['name', 'courseName', ''],
    }
    payload.update(overrides)
    return client.post('/api/admin/email/templates', json=payload)


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'
    assert response.headers['X-Content-Type-Options'] == 'nosniff'


def test_detailed_health(client):
    response = client.get('/health/detailed')

    assert response.status_code == 200
    data = response.get_json()
    assert data['status'] == 'healthy'
    assert data['components']['database'] == 'healthy'
    assert data['components']['notification_transport'] == 'simulated'


def test_detailed_health_reports_unreachable_database(app, client):
    app.session_factory = BrokenSessionFactory()

    response = client.get('/health/detailed')

    assert response.status_code == 503
    data = response.get_json()
    assert data['status'] == 'unhealthy'
    assert data['components']['database'].startswith('unhealthy')


def test_production_requires_encryption_key():
    with pytest.raises(ValueError, match='ENCRYPTION_KEY'):
        create_app('production', overrides={'ENCRYPTION_KEY': None, 'DATABASE_URL': 'sqlite:///:memory:',
                                               'LOG_FILE': None})


def test_unknown_route_returns_json_404(client):
    response = client.get('/nope')

    assert response.status_code == 404
    assert response.get_json()['status_code'] == 404


# Templates

def test_template_crud(client):
    response = _create_template(client)
    assert response.status_code == 201
    template = response.get_json()['template']
    assert template['variables'] == ['name', 'courseName']
    assert template['is_active'] is True

    listed = client.get('/api/admin/email/templates').get_json()['templates']
    assert [t['id'] for t in listed] == [template['id']]

    response = client.put(f"/api/admin/email/templates/{template['id']}", json={'subject': 'Updated'})
    assert response.status_code == 200
    assert response.get_json()['template']['subject'] == 'Updated'

    assert client.get(f"/api/admin/email/templates/{template['id']}").get_json()['template']['subject'] == 'Updated'

    assert client.delete(f"/api/admin/email/templates/{template['id']}").status_code == 200
    assert client.get(f"/api/admin/email/templates/{template['id']}").status_code == 404


def test_template_validation_error(client):
    response = _create_template(client, subject='')

    assert response.status_code == 400
    assert response.get_json() == {'success': False, 'error': 'Subject is required'}


def test_update_unknown_template(client):
    response = client.put('/api/admin/email/templates/00000000-0000-0000-0000-000000000000',
                          json={'subject': 'x'})

    assert response.status_code == 404


# Settings

def test_email_settings_roundtrip(client):
    assert client.get('/api/admin/email/settings').get_json() == {
        'notifications_enabled': True,
        'admin_emails': ['fallback@aiclub.example'],
    }

    response = client.put('/api/admin/email/settings',
                          json={'notifications_enabled': False, 'admin_emails': ['a@x.com']})
    assert response.status_code == 200
    assert response.get_json()['admin_emails'] == ['a@x.com']
    assert client.get('/api/admin/email/settings').get_json()['notifications_enabled'] is False


def test_invalid_admin_email_rejected(client):
    response = client.put('/api/admin/email/settings', json={'admin_emails': ['broken']})

    assert response.status_code == 400
    assert 'broken' in response.get_json()['error']


def test_smtp_password_is_never_returned(client):
    response = client.put('/api/admin/email/smtp', json=SMTP_PAYLOAD)
    assert response.status_code == 200

    smtp = client.get('/api/admin/email/smtp').get_json()
    assert smtp == {'host': 'mail.gandi.net', 'port': 587, 'secure': False,
                    'user': 'club@aiclub.example', 'has_password': True}


def test_smtp_requires_host(client):
    response = client.put('/api/admin/email/smtp', json={**SMTP_PAYLOAD, 'host': ''})

    assert response.status_code == 400


# Operations

def test_send_test_email(client, fake_transport):
    client.put('/api/admin/email/smtp', json=SMTP_PAYLOAD)
    client.put('/api/admin/email/settings', json={'admin_emails': ['a@x.com', 'b@x.com']})

    response = client.post('/api/admin/email/test', json={'message': 'Ping'})

    assert response.status_code == 200
    assert response.get_json()['report']['sent_count'] == 2
    assert len(fake_transport.calls) == 2


def test_send_test_email_failure_is_reported(client):
    response = client.post('/api/admin/email/test')

    assert response.status_code == 502
    data = response.get_json()
    assert data['success'] is False
    assert 'Incomplete SMTP configuration' in data['error']
    assert data['report']['failed_count'] == 1


def test_diagnosis(client):
    client.put('/api/admin/email/smtp', json=SMTP_PAYLOAD)

    response = client.get('/api/admin/email/diagnosis')

    assert response.status_code == 200
    diagnosis = response.get_json()['diagnosis']
    assert diagnosis['smtp_configured'] is True
    assert diagnosis['admin_emails_count'] == 1


def test_diagnosis_failure_returns_503(app, client):
    class BrokenTemplates:
        def count_active(self):
            raise StoreError('database is unavailable')

    app.diagnostics = EmailDiagnostics(app.settings_store, BrokenTemplates(), app.activity_log)

    response = client.get('/api/admin/email/diagnosis')

    assert response.status_code == 503
    assert response.get_json()['success'] is False
    assert 'database is unavailable' in response.get_json()['error']


def test_diagnosis_with_non_string_stored_password(app, client):
    _store_smtp_row(app, {'host': 'mail.gandi.net', 'user': 'club@aiclub.example', 'pass': 12345})

    response = client.get('/api/admin/email/diagnosis')

    assert response.status_code == 200
    diagnosis = response.get_json()['diagnosis']
    assert diagnosis['smtp_has_password'] is False
    assert diagnosis['smtp_configured'] is False


def test_diagnosis_unexpected_error_returns_503(app, client):
    class CrashingTemplates:
        def count_active(self):
            raise RuntimeError('unexpected row shape')

    app.diagnostics = EmailDiagnostics(app.settings_store, CrashingTemplates(), app.activity_log)

    response = client.get('/api/admin/email/diagnosis')

    assert response.status_code == 503
    assert response.get_json() == {'success': False, 'error': 'Diagnosis failed: unexpected row shape'}


def test_activity_logs_newest_first(client):
    client.post('/api/admin/email/test')
    client.post('/api/admin/email/test')

    response = client.get('/api/admin/activity-logs?limit=1')

    assert response.status_code == 200
    data = response.get_json()
    assert data['limit'] == 1
    assert len(data['logs']) == 1
    assert data['logs'][0]['action'] == 'email_notification_attempt'
    assert data['logs'][0]['user_id'] is None


# Registration hook

def test_registration_hook_notifies_admins(app, client, fake_transport):
    client.put('/api/admin/email/smtp', json=SMTP_PAYLOAD)
    _create_template(client)

    response = client.post('/api/registrations/notify', json={
        'name': 'Ann', 'phone': '+7 900', 'telegram': '@ann', 'courseName': 'ML Basics',
    })

    assert response.status_code == 202
    message = fake_transport.calls[0][0]
    assert message.recipient == 'fallback@aiclub.example'
    assert message.html == 'Hi Ann, course ML Basics'


def test_registration_hook_hides_pipeline_failures(app, client):
    response = client.post('/api/registrations/notify', json={
        'name': 'Ann', 'phone': '+7 900', 'telegram': '@ann', 'courseName': 'ML Basics',
    })

    assert response.status_code == 202
    assert response.get_json() == {'accepted': True}
    assert len(app.activity_log.recent()) == 1


REGISTRATION = {'name': 'Ann', 'phone': '+7 900', 'telegram': '@ann', 'courseName': 'ML Basics'}


def _store_smtp_row(app, value):
    with app.session_factory() as session:
        session.add(EmailSetting(setting_key='smtp_settings', setting_value=value))
        session.commit()


def test_registration_hook_survives_non_string_stored_password(app, client, fake_transport):
    _store_smtp_row(app, {'host': 'mail.gandi.net', 'user': 'club@aiclub.example', 'pass': 12345})

    response = client.post('/api/registrations/notify', json=REGISTRATION)

    assert response.status_code == 202
    assert response.get_json() == {'accepted': True}
    assert fake_transport.calls[0][1].password == ''


def test_registration_hook_survives_malformed_template_variables(app, client, fake_transport):
    client.put('/api/admin/email/smtp', json=SMTP_PAYLOAD)
    with app.session_factory() as session:
        session.add(EmailTemplate(template_name='new_registration', subject='New signup',
                                  body_template='Hi {{name}}', variables=5))
        session.commit()

    response = client.post('/api/registrations/notify', json=REGISTRATION)

    assert response.status_code == 202
    assert fake_transport.calls[0][0].html == 'Hi Ann'


def test_registration_hook_hides_unexpected_errors(app, client):
    class CrashingEngine:
        def render(self, *args, **kwargs):
            raise RuntimeError('renderer crashed')

    app.dispatcher.template_engine = CrashingEngine()

    response = client.post('/api/registrations/notify', json=REGISTRATION)

    assert response.status_code == 202
    assert response.get_json() == {'accepted': True}


def test_registration_hook_validates_fields(client):
    response = client.post('/api/registrations/notify', json={'name': 'Ann'})

    assert response.status_code == 400
    assert 'courseName' in response.get_json()['error']


# Admin token

def test_admin_token_required_when_configured():
    app = create_app('testing', overrides={'ADMIN_API_TOKEN': 'let-me-in'})
    client = app.test_client()

    assert client.get('/api/admin/email/settings').status_code == 401
    assert client.get('/api/admin/email/settings',
                      headers={'X-Admin-Token': 'wrong'}).status_code == 401
    assert client.get('/api/admin/email/settings',
                      headers={'X-Admin-Token': 'let-me-in'}).status_code == 200
    # The registration hook stays public
    assert client.post('/api/registrations/notify', json={'name': 'Ann'}).status_code == 400
