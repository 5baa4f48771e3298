# core/exceptions.py
"""
Exception hierarchy for the notification pipeline
"""


class NotificationError(Exception):
    """Base exception for notification pipeline operations"""
    pass


class StoreError(NotificationError):
    """Persistence layer read/write failure"""
    pass


class TemplateValidationError(NotificationError):
    """Template payload failed validation"""
    pass


class TemplateNotFoundError(NotificationError):
    """No template with the requested identity"""
    pass


class SettingsValidationError(NotificationError):
    """Settings payload failed validation"""
    pass


class TransportConfigurationError(NotificationError):
    """Unknown or misconfigured delivery transport"""
    pass


class NotificationDeliveryError(NotificationError):
    """One or more recipients could not be notified"""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report


class SMTPConfigurationError(NotificationDeliveryError):
    """Delivery was rejected because SMTP settings are incomplete"""
    pass


class DiagnosticsError(NotificationError):
    """Diagnosis could not read one of its sources"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
