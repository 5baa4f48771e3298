# core/security_manager.py
"""
Encryption of credentials stored in the settings table
"""

import base64
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

# Configure logging
logger = logging.getLogger(__name__)

KDF_ITERATIONS = 100000


class SecurityManager:
    """
    Symmetric encryption for secrets at rest.

    The Fernet key is derived from ``ENCRYPTION_KEY`` with PBKDF2-SHA256, so
    the same key string always yields the same cipher.
    """

    def __init__(self, encryption_key: str, salt: str = 'aiclub_notifier_salt'):
        if not encryption_key:
            raise ValueError("An encryption key is required")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode('utf-8'),
            iterations=KDF_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(encryption_key.encode('utf-8')))
        self.cipher = Fernet(key)

    @classmethod
    def from_config(cls, config) -> 'SecurityManager':
        if not config.get('ENCRYPTION_KEY'):
            raise ValueError("ENCRYPTION_KEY must be set; it protects the stored SMTP password")
        return cls(config['ENCRYPTION_KEY'], config.get('ENCRYPTION_SALT', 'aiclub_notifier_salt'))

    def encrypt_sensitive_data(self, data: str) -> str:
        if not data:
            return ''
        return self.cipher.encrypt(data.encode('utf-8')).decode('ascii')

    def decrypt_sensitive_data(self, encrypted_data: Optional[str]) -> str:
        """
        Decrypt a value produced by ``encrypt_sensitive_data``.

        Raises ``InvalidToken`` when the value was encrypted with another key
        or has been tampered with.
        """
        if not encrypted_data:
            return ''
        return self.cipher.decrypt(encrypted_data.encode('ascii')).decode('utf-8')

    def try_decrypt(self, encrypted_data: Optional[str]) -> str:
        """Decrypt, treating an unreadable value as empty"""
        if encrypted_data is not None and not isinstance(encrypted_data, str):
            logger.warning(f"Stored secret has unexpected type {type(encrypted_data).__name__}, treating it as empty")
            return ''
        try:
            return self.decrypt_sensitive_data(encrypted_data)
        except (InvalidToken, ValueError) as e:
            logger.warning(f"Stored secret could not be decrypted, treating it as empty: {type(e).__name__}")
            return ''
