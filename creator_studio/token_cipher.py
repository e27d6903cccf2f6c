"""
AES-256-GCM encryption for provider access tokens stored in ``social_accounts``.

Storage format: ``"enc:" + base64(nonce(12) | ciphertext | tag(16))``.
Values without the ``enc:`` prefix are treated as legacy plaintext rows.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger("creator-studio")

PREFIX = "enc:"
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
KDF_SALT = b"creator-studio-token-salt"


class TokenCipherError(Exception):
    """Raised when a token cannot be encrypted (no secret configured)."""


def derive_key(secret: str | None) -> bytes | None:
    if not secret or not secret.strip():
        return None
    raw = secret.strip().encode("utf-8")
    if len(raw) >= KEY_SIZE:
        return raw[:KEY_SIZE]
    kdf = Scrypt(salt=KDF_SALT, length=KEY_SIZE, n=2**14, r=8, p=1)
    return kdf.derive(raw)


class TokenCipher:
    def __init__(self, secret: str | None) -> None:
        self._key = derive_key(secret)

    @property
    def enabled(self) -> bool:
        return self._key is not None

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext``. Refuses to fall back to cleartext storage."""
        if self._key is None:
            raise TokenCipherError("Token encryption secret is not configured (set ENCRYPTION_KEY)")
        nonce = secrets.token_bytes(NONCE_SIZE)
        # AESGCM appends the 16-byte tag to the ciphertext
        sealed = AESGCM(self._key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return PREFIX + base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, stored: str | None) -> str:
        """Decrypt a stored value. Returns ``""`` when it cannot be trusted."""
        if not stored:
            return ""
        if not stored.startswith(PREFIX):
            return stored
        if self._key is None:
            logger.warning("token_decrypt_skipped reason=key_missing")
            return ""
        try:
            combined = base64.b64decode(stored[len(PREFIX):], validate=True)
        except (binascii.Error, ValueError):
            logger.warning("token_decrypt_fail reason=invalid_encoding")
            return ""
        if len(combined) < NONCE_SIZE + TAG_SIZE:
            logger.warning("token_decrypt_fail reason=truncated size=%s", len(combined))
            return ""
        nonce, sealed = combined[:NONCE_SIZE], combined[NONCE_SIZE:]
        try:
            return AESGCM(self._key).decrypt(nonce, sealed, None).decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            logger.warning("token_decrypt_fail reason=authentication_failed")
            return ""


__all__ = ["TokenCipher", "TokenCipherError", "derive_key"]
