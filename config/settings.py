# config/settings.py
"""
Application configuration for the AI club notification service
"""

import os
import secrets


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name: str, default: str) -> list:
    return [item.strip() for item in os.environ.get(name, default).split(',') if item.strip()]


class BaseConfig:
    """Settings shared by every environment"""

    VERSION = os.environ.get('APP_VERSION', '1.0.0')

    # Secrets
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_urlsafe(32)
    # Derives the key that protects the stored SMTP password; must be stable across restarts
    ENCRYPTION_KEY = os.environ.get('ENCRYPTION_KEY')
    ENCRYPTION_SALT = os.environ.get('ENCRYPTION_SALT', 'aiclub_notifier_salt')

    # Database
    DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///aiclub_notifier.db')
    DATABASE_ECHO = False

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')
    LOG_MAX_BYTES = 10 * 1024 * 1024
    LOG_BACKUP_COUNT = 5

    # CORS for the admin API; the delivery function is always open to any origin
    CORS_ORIGINS = _env_list('CORS_ORIGINS', 'http://localhost:5173')

    # Admin API guard; when unset the admin endpoints are open
    ADMIN_API_TOKEN = os.environ.get('ADMIN_API_TOKEN')

    # Delivery
    NOTIFICATION_TRANSPORT = os.environ.get('NOTIFICATION_TRANSPORT', 'smtp')
    DELIVERY_BACKEND = os.environ.get('DELIVERY_BACKEND', 'smtp')
    SEND_EMAIL_FUNCTION_URL = os.environ.get(
        'SEND_EMAIL_FUNCTION_URL', 'http://localhost:5000/functions/send-email'
    )
    SMTP_TIMEOUT = float(os.environ.get('SMTP_TIMEOUT', 30))
    TRANSPORT_TIMEOUT = float(os.environ.get('TRANSPORT_TIMEOUT', 30))
    SIMULATED_SEND_DELAY = float(os.environ.get('SIMULATED_SEND_DELAY', 1.5))
    MAIL_FROM_NAME = os.environ.get('MAIL_FROM_NAME', 'AI Club')

    # Notification defaults
    FALLBACK_ADMIN_EMAIL = os.environ.get('FALLBACK_ADMIN_EMAIL', 'admin@aiclub.example')
    NOTIFICATIONS_ENABLED_DEFAULT = _env_bool('NOTIFICATIONS_ENABLED_DEFAULT', True)

    # Diagnostics and activity log
    DIAGNOSTIC_WINDOW_HOURS = int(os.environ.get('DIAGNOSTIC_WINDOW_HOURS', 24))
    ACTIVITY_LOG_PAGE_SIZE = int(os.environ.get('ACTIVITY_LOG_PAGE_SIZE', 100))
    ACTIVITY_LOG_MAX_PAGE_SIZE = 500

    MAX_CONTENT_LENGTH = 1 * 1024 * 1024


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ENCRYPTION_KEY = os.environ.get('ENCRYPTION_KEY', 'aiclub-development-key')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')
    NOTIFICATION_TRANSPORT = os.environ.get('NOTIFICATION_TRANSPORT', 'simulated')
    DELIVERY_BACKEND = os.environ.get('DELIVERY_BACKEND', 'simulated')


class TestingConfig(BaseConfig):
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    ENCRYPTION_KEY = 'testing-encryption-key'
    DATABASE_URL = 'sqlite:///:memory:'
    LOG_LEVEL = 'WARNING'
    LOG_FILE = None
    ADMIN_API_TOKEN = None
    NOTIFICATION_TRANSPORT = 'simulated'
    DELIVERY_BACKEND = 'simulated'
    SIMULATED_SEND_DELAY = 0
    FALLBACK_ADMIN_EMAIL = 'fallback@aiclub.example'


class ProductionConfig(BaseConfig):
    DEBUG = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True


CONFIG_BY_NAME = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(config_name: str = None):
    """Resolve a config class by name, falling back to FLASK_ENV and then production"""
    config_name = config_name or os.environ.get('FLASK_ENV', 'production')
    return CONFIG_BY_NAME.get(config_name, ProductionConfig)
