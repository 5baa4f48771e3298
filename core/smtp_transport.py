# core/smtp_transport.py
"""
Delivery transports for notification emails

Every transport implements ``send(message, smtp) -> DeliveryResult`` and
validates the SMTP settings before touching the network:

- SMTPTransport: real submission through aiosmtplib
- SimulatedTransport: validates, waits, reports success (demo/test deployments)
- RemoteTransport: posts to the HTTP delivery function with httpx
"""

import asyncio
import logging
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from typing import Any, Dict, Mapping, Optional

import aiosmtplib
import httpx

from core.exceptions import TransportConfigurationError
from core.template_engine import html_to_text

logger = logging.getLogger(__name__)

DEFAULT_SMTP_PORT = 587
IMPLICIT_TLS_PORT = 465
STARTTLS_PORT = 587

INCOMPLETE_SMTP_CONFIGURATION = 'Incomplete SMTP configuration'


def _coerce_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        return DEFAULT_SMTP_PORT
    return port if 0 < port < 65536 else DEFAULT_SMTP_PORT


def _stripped(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ''


@dataclass
class SMTPSettings:
    """SMTP connection parameters as stored under ``smtp_settings``"""
    host: str = ''
    port: int = DEFAULT_SMTP_PORT
    secure: bool = False
    user: str = ''
    password: str = ''

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'SMTPSettings':
        data = data or {}
        password = data.get('pass')
        if password is None:
            password = data.get('password')
        return cls(
            host=_stripped(data.get('host')),
            port=_coerce_port(data.get('port', DEFAULT_SMTP_PORT)),
            secure=data.get('secure') is True,
            user=_stripped(data.get('user')),
            password=password if isinstance(password, str) else '',
        )

    def to_dict(self, include_password: bool = True) -> Dict[str, Any]:
        data = {
            'host': self.host,
            'port': self.port,
            'secure': self.secure,
            'user': self.user,
        }
        if include_password:
            data['pass'] = self.password
        else:
            data['has_password'] = bool(self.password)
        return data

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def validate(self) -> Optional[str]:
        """Error message when the settings cannot be used for a send, else None"""
        if not self.is_configured:
            return INCOMPLETE_SMTP_CONFIGURATION
        return None


@dataclass
class EmailMessage:
    """One rendered message for one recipient"""
    recipient: str
    subject: str
    html: str


@dataclass
class DeliveryResult:
    success: bool
    error: Optional[str] = None

    @classmethod
    def sent(cls) -> 'DeliveryResult':
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> 'DeliveryResult':
        return cls(success=False, error=error)


class DeliveryTransport:
    """Base class for delivery transports"""

    name = 'base'

    async def send(self, message: EmailMessage, smtp: SMTPSettings) -> DeliveryResult:
        raise NotImplementedError


class SMTPTransport(DeliveryTransport):
    """Submits messages to the configured SMTP server"""

    name = 'smtp'

    def __init__(self, timeout: float = 30, from_name: str = 'AI Club'):
        self.timeout = timeout
        self.from_name = from_name

    def build_mime_message(self, message: EmailMessage, smtp: SMTPSettings) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = message.subject
        msg['From'] = formataddr((self.from_name, smtp.user))
        msg['To'] = message.recipient
        msg['Date'] = formatdate(localtime=True)
        msg['Message-ID'] = make_msgid(domain=smtp.host or None)

        msg.attach(MIMEText(html_to_text(message.html), 'plain', 'utf-8'))
        msg.attach(MIMEText(message.html, 'html', 'utf-8'))
        return msg

    async def send(self, message: EmailMessage, smtp: SMTPSettings) -> DeliveryResult:
        error = smtp.validate()
        if error:
            return DeliveryResult.failed(error)

        mime_message = self.build_mime_message(message, smtp)

        # Implicit TLS when "secure" or on 465, STARTTLS on 587, opportunistic otherwise
        use_tls = smtp.secure or smtp.port == IMPLICIT_TLS_PORT
        start_tls = False if use_tls else (True if smtp.port == STARTTLS_PORT else None)

        client = aiosmtplib.SMTP(
            hostname=smtp.host,
            port=smtp.port,
            timeout=self.timeout,
            use_tls=use_tls,
            start_tls=start_tls,
        )

        try:
            await client.connect()
            try:
                await client.login(smtp.user, smtp.password)
                await client.send_message(mime_message)
            finally:
                if client.is_connected:
                    await client.quit()
        except aiosmtplib.SMTPResponseException as e:
            logger.warning(f"SMTP server rejected message to {message.recipient}: {e.code} {e.message}")
            return DeliveryResult.failed(f"SMTP error {e.code}: {e.message}")
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"SMTP delivery to {message.recipient} failed: {str(e)}")
            return DeliveryResult.failed(f"SMTP connection failed: {str(e) or type(e).__name__}")

        logger.info(f"Email sent to {message.recipient} via {smtp.host}:{smtp.port}")
        return DeliveryResult.sent()


class SimulatedTransport(DeliveryTransport):
    """Validates settings and pretends to send after a short delay"""

    name = 'simulated'

    def __init__(self, delay: float = 1.5):
        self.delay = delay

    async def send(self, message: EmailMessage, smtp: SMTPSettings) -> DeliveryResult:
        error = smtp.validate()
        if error:
            return DeliveryResult.failed(error)

        if self.delay > 0:
            await asyncio.sleep(self.delay)

        logger.info(f"Simulated delivery to {message.recipient} via {smtp.host}")
        return DeliveryResult.sent()


class RemoteTransport(DeliveryTransport):
    """Hands each message to the HTTP delivery function"""

    name = 'remote'

    def __init__(self, url: str, timeout: float = 30,
                 headers: Optional[Dict[str, str]] = None,
                 http_transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
        self.http_transport = http_transport

    async def send(self, message: EmailMessage, smtp: SMTPSettings) -> DeliveryResult:
        error = smtp.validate()
        if error:
            return DeliveryResult.failed(error)

        payload = {
            'to': message.recipient,
            'subject': message.subject,
            'html': message.html,
            'smtp': smtp.to_dict(),
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout,
                                         headers=self.headers,
                                         transport=self.http_transport) as client:
                response = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Delivery function unreachable for {message.recipient}: {str(e)}")
            return DeliveryResult.failed(f"Delivery function unreachable: {str(e) or type(e).__name__}")

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            return DeliveryResult.failed(
                f"Delivery function returned an invalid response (HTTP {response.status_code})"
            )

        if response.status_code == 200 and data.get('success'):
            return DeliveryResult.sent()

        return DeliveryResult.failed(data.get('error') or f"Delivery function returned HTTP {response.status_code}")


def build_delivery_transport(name: str, config: Mapping[str, Any]) -> DeliveryTransport:
    """Create the transport selected by name from application config"""
    if name == 'smtp':
        return SMTPTransport(
            timeout=config.get('SMTP_TIMEOUT', 30),
            from_name=config.get('MAIL_FROM_NAME', 'AI Club'),
        )
    if name == 'simulated':
        return SimulatedTransport(delay=config.get('SIMULATED_SEND_DELAY', 1.5))
    if name == 'remote':
        url = config.get('SEND_EMAIL_FUNCTION_URL')
        if not url:
            raise TransportConfigurationError("SEND_EMAIL_FUNCTION_URL is required for the remote transport")
        return RemoteTransport(url=url, timeout=config.get('TRANSPORT_TIMEOUT', 30))

    raise TransportConfigurationError(f"Unknown delivery transport: {name}")
