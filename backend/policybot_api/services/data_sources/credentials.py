from __future__ import annotations

import base64
import binascii
import logging
import secrets
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


logger = logging.getLogger(__name__)

_IV_LENGTH = 12
_TAG_LENGTH = 16
_KEY_HEX_LENGTH = 64


class CredentialError(ValueError):
    pass


class CredentialProvider(Protocol):
    def safe_decrypt(self, value: str | None) -> str | None: ...


def reveal(provider: CredentialProvider, value: str | None) -> str | None:
    """Decrypt a stored secret at call time, falling back to the stored value as-is."""
    if not value:
        return None
    return provider.safe_decrypt(value) or value


class NoopCredentialProvider:
    def safe_decrypt(self, value: str | None) -> str | None:
        if not value or not value.strip():
            return None
        return value


class AesGcmCredentialProvider:
    """
    AES-256-GCM credential store format: `iv:authTag:ciphertext`, each part base64.

    The key is 64 hex characters (32 bytes). Without a valid key, values are passed
    through unencrypted.
    """

    def __init__(self, key_hex: str | None) -> None:
        self._key = _parse_key(key_hex)

    @property
    def configured(self) -> bool:
        return self._key is not None

    def _require_key(self) -> bytes:
        if self._key is None:
            raise CredentialError(
                "Encryption not configured. Set DATA_SOURCE_ENCRYPTION_KEY (64 hex characters)."
            )
        return self._key

    def encrypt(self, plaintext: str) -> str:
        key = self._require_key()
        iv = secrets.token_bytes(_IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
        return ":".join(base64.b64encode(p).decode("ascii") for p in (iv, tag, ciphertext))

    def decrypt(self, encrypted: str) -> str:
        key = self._require_key()
        parts = (encrypted or "").split(":")
        if len(parts) != 3:
            raise CredentialError("Invalid encrypted string format. Expected iv:authTag:ciphertext")
        try:
            iv, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts)
        except (binascii.Error, ValueError):
            raise CredentialError("Invalid base64 in encrypted string") from None
        if len(iv) != _IV_LENGTH:
            raise CredentialError("Invalid IV length")
        if len(tag) != _TAG_LENGTH:
            raise CredentialError("Invalid auth tag length")
        try:
            plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise CredentialError("Decryption failed (authentication tag mismatch)") from None
        return plain.decode("utf-8")

    def safe_encrypt(self, value: str | None) -> str | None:
        if not value or not value.strip():
            return None
        if self._key is None:
            logger.warning("encryption key not configured, storing credential unencrypted")
            return value
        return self.encrypt(value)

    def safe_decrypt(self, value: str | None) -> str | None:
        if not value or not value.strip():
            return None
        # Values not in iv:authTag:ciphertext form were stored unencrypted.
        if len(value.split(":")) != 3:
            return value
        if self._key is None:
            logger.warning("encryption key not configured, using stored credential as-is")
            return value
        try:
            return self.decrypt(value)
        except CredentialError as e:
            logger.warning("credential decryption failed: %s", e)
            return None


def _parse_key(key_hex: str | None) -> bytes | None:
    raw = (key_hex or "").strip()
    if len(raw) != _KEY_HEX_LENGTH:
        return None
    try:
        return bytes.fromhex(raw)
    except ValueError:
        return None


def generate_encryption_key() -> str:
    return secrets.token_hex(32)


def mask_sensitive_value(value: str | None, show_chars: int = 4) -> str:
    if not value:
        return "•" * 8
    if len(value) <= show_chars * 2:
        return "•" * len(value)
    return f"{value[:show_chars]}{'•' * 8}{value[-show_chars:]}"
