"""Shared fixtures for the notification service tests"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app import create_app
from core.activity_log import ActivityLog
from core.database import init_database
from core.security_manager import SecurityManager
from core.settings_store import SettingsStore
from core.smtp_transport import DeliveryResult, DeliveryTransport, SMTPSettings
from core.template_store import TemplateStore
from services.notifications import NotificationDispatcher

FALLBACK_EMAIL = 'fallback@aiclub.example'

VALID_SMTP = SMTPSettings(
    host='mail.gandi.net',
    port=587,
    secure=False,
    user='club@aiclub.example',
    password='s3cret',
)


class FakeClock:
    def __init__(self, start=datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeTransport(DeliveryTransport):
    """Records every send; fails or raises for selected recipients"""

    name = 'fake'

    def __init__(self, failures=None, raises=None):
        self.calls = []
        self.failures = failures or {}
        self.raises = raises or {}

    async def send(self, message, smtp):
        self.calls.append((message, smtp))
        if message.recipient in self.raises:
            raise self.raises[message.recipient]
        error = smtp.validate()
        if error:
            return DeliveryResult.failed(error)
        if message.recipient in self.failures:
            return DeliveryResult.failed(self.failures[message.recipient])
        return DeliveryResult.sent()


class BrokenSessionFactory:
    """Session factory whose every use fails like an unreachable database"""

    def __call__(self):
        raise OperationalError('SELECT 1', {}, Exception('database is unavailable'))


@pytest.fixture
def session_factory():
    engine, factory = init_database('sqlite:///:memory:')
    yield factory
    engine.dispose()


@pytest.fixture
def security_manager():
    return SecurityManager('test-encryption-key')


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings_store(session_factory, security_manager):
    return SettingsStore(session_factory, security_manager, fallback_admin_email=FALLBACK_EMAIL)


@pytest.fixture
def template_store(session_factory):
    return TemplateStore(session_factory)


@pytest.fixture
def activity_log(session_factory, clock):
    return ActivityLog(session_factory, clock=clock)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def dispatcher(settings_store, template_store, transport, activity_log):
    return NotificationDispatcher(
        settings_store=settings_store,
        template_store=template_store,
        transport=transport,
        activity_log=activity_log,
        fallback_admin_email=FALLBACK_EMAIL,
    )


@pytest.fixture
def app():
    return create_app('testing')


@pytest.fixture
def client(app):
    return app.test_client()
