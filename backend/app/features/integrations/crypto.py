"""
Token encryption.

Encrypts OAuth tokens at rest with AES-256-GCM (cryptography's AESGCM).

Format (base64 of):
    nonce (12 bytes) || ciphertext || auth tag (16 bytes)

Key resolution:
- INTEGRATION_ENCRYPTION_KEY when it is exactly 64 hex chars (32 bytes)
- otherwise sha256 of JWT_SECRET (or "dev-key"), for local development

Some stored tokens predate encryption. `is_encrypted` tells callers whether
a stored value should go through `decrypt_token` or be used as-is.
"""

import base64
import binascii
import hashlib
import logging
import os
import re
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config import settings
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


NONCE_LENGTH = 12
TAG_LENGTH = 16
MIN_CIPHERTEXT_BYTES = NONCE_LENGTH + TAG_LENGTH + 1

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_DEV_FALLBACK_SECRET = "dev-key"


def _dedicated_key() -> Optional[bytes]:
    raw = (settings.integration_encryption_key or "").strip()
    if _HEX_KEY_RE.match(raw):
        return bytes.fromhex(raw)
    return None


def get_encryption_key() -> bytes:
    """Resolve the 32-byte key from current settings."""
    key = _dedicated_key()
    if key is not None:
        return key
    fallback = settings.jwt_secret or _DEV_FALLBACK_SECRET
    return hashlib.sha256(fallback.encode("utf-8")).digest()


def check_encryption_key() -> None:
    """
    Startup check for the token encryption key.

    Logs a warning when the derived fallback key is in use.

    Raises:
        ConfigurationError: In production without a dedicated key
    """
    if _dedicated_key() is not None:
        return

    if settings.integration_encryption_key:
        logger.warning("INTEGRATION_ENCRYPTION_KEY is set but is not 64 hex chars, ignoring it")

    if settings.is_production:
        raise ConfigurationError(
            "INTEGRATION_ENCRYPTION_KEY must be set to 64 hex chars in production"
        )

    logger.warning(
        "INTEGRATION_ENCRYPTION_KEY not set: provider tokens are encrypted with a key "
        "derived from JWT_SECRET. Do not run like this in production."
    )


class TokenCipher:
    """
    AES-256-GCM cipher for provider tokens.

    Usage:
        cipher = TokenCipher(get_encryption_key())
        stored = cipher.encrypt("access-token")
        cipher.decrypt(stored)
    """

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError("Token encryption key must be 32 bytes")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored token.

        Raises:
            cryptography.exceptions.InvalidTag: Tampered data or wrong key
            ValueError: Not valid base64 or too short
        """
        raw = base64.b64decode(ciphertext, validate=True)
        if len(raw) < NONCE_LENGTH + TAG_LENGTH:
            raise ValueError("Ciphertext too short")
        nonce, sealed = raw[:NONCE_LENGTH], raw[NONCE_LENGTH:]
        return self._aead.decrypt(nonce, sealed, None).decode("utf-8")


def encrypt_token(plaintext: str) -> str:
    """Encrypt a token with the configured key."""
    return TokenCipher(get_encryption_key()).encrypt(plaintext)


def decrypt_token(ciphertext: str) -> str:
    """Decrypt a token with the configured key."""
    return TokenCipher(get_encryption_key()).decrypt(ciphertext)


def is_encrypted(value: Optional[str]) -> bool:
    """
    Heuristic: does this stored value look like our ciphertext?

    True when the value is canonical base64 and long enough to hold
    nonce + tag + at least one byte.
    """
    if not value:
        return False
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    if base64.b64encode(raw).decode("ascii") != value:
        return False
    return len(raw) >= MIN_CIPHERTEXT_BYTES


def reveal_token(stored: Optional[str]) -> Optional[str]:
    """Decrypt a stored token, passing legacy plaintext values through."""
    if stored is None:
        return None
    if is_encrypted(stored):
        return decrypt_token(stored)
    return stored
