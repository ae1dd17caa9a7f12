"""Encryption utilities for stored credentials (LLM and payment gateway keys)."""

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from backoffice.core.conf import settings


class SecretVault:
    """Encrypts and decrypts secrets with Fernet."""

    def __init__(self, key: str | bytes | None = None) -> None:
        self.fernet = Fernet(key or self._get_or_derive_key())

    @staticmethod
    def _get_or_derive_key() -> bytes:
        """Use ENCRYPTION_KEY when configured, otherwise derive one from the token secret."""
        if settings.ENCRYPTION_KEY:
            return settings.ENCRYPTION_KEY.encode()

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=settings.ENCRYPTION_SALT.encode(),
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(settings.TOKEN_SECRET_KEY.encode()))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string.

        Args:
            plaintext: The string to encrypt

        Returns:
            Fernet token as text
        """
        if not plaintext:
            return ''
        return self.fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """Decrypt a Fernet token.

        Raises:
            InvalidToken: The token was not produced with the current key
        """
        if not token:
            return ''
        return self.fernet.decrypt(token.encode()).decode()


def mask_secret(value: str | None, head: int = 8, tail: int = 4) -> str:
    """
    Mask a secret for display

    :param value: plaintext secret
    :param head: visible leading characters
    :param tail: visible trailing characters
    :return:
    """
    if not value or len(value) <= head + tail:
        return '****'
    return f'{value[:head]}...{value[-tail:]}'


def mask_encrypted(token: str | None, head: int = 8, tail: int = 4, *, fallback: str = '****configured') -> str | None:
    """Decrypt and mask a stored secret, ``fallback`` when it can no longer be decrypted."""
    if not token:
        return None
    try:
        return mask_secret(secret_vault.decrypt(token), head, tail)
    except InvalidToken:
        return fallback


secret_vault = SecretVault()
