from __future__ import annotations

import pytest

from conftest import TEST_ENCRYPTION_KEY
from policybot_api.services.data_sources.credentials import (
    AesGcmCredentialProvider,
    CredentialError,
    NoopCredentialProvider,
    generate_encryption_key,
    mask_sensitive_value,
    reveal,
)


def test_encrypt_decrypt_round_trip() -> None:
    provider = AesGcmCredentialProvider(TEST_ENCRYPTION_KEY)
    sealed = provider.encrypt("token-123")

    assert sealed.count(":") == 2
    assert "token-123" not in sealed
    assert provider.encrypt("token-123") != sealed
    assert provider.decrypt(sealed) == "token-123"


def test_tampered_value_fails_authentication() -> None:
    provider = AesGcmCredentialProvider(TEST_ENCRYPTION_KEY)
    iv, tag, ciphertext = provider.encrypt("token-123").split(":")
    other = AesGcmCredentialProvider(generate_encryption_key())

    with pytest.raises(CredentialError):
        other.decrypt(f"{iv}:{tag}:{ciphertext}")
    with pytest.raises(CredentialError):
        provider.decrypt("not-encrypted")
    assert other.safe_decrypt(f"{iv}:{tag}:{ciphertext}") is None


def test_plain_values_pass_through() -> None:
    provider = AesGcmCredentialProvider(TEST_ENCRYPTION_KEY)
    assert provider.safe_decrypt("plain-token") == "plain-token"
    assert provider.safe_decrypt("   ") is None
    assert reveal(provider, "plain-token") == "plain-token"
    assert reveal(provider, None) is None


def test_missing_key_leaves_values_unencrypted() -> None:
    provider = AesGcmCredentialProvider(None)
    assert provider.configured is False
    assert AesGcmCredentialProvider("abc").configured is False
    assert provider.safe_encrypt("token") == "token"
    assert provider.safe_decrypt("a:b:c") == "a:b:c"
    with pytest.raises(CredentialError):
        provider.encrypt("token")


def test_noop_provider() -> None:
    provider = NoopCredentialProvider()
    assert provider.safe_decrypt("secret") == "secret"
    assert reveal(provider, "") is None


def test_generated_key_and_masking() -> None:
    key = generate_encryption_key()
    assert len(key) == 64
    assert AesGcmCredentialProvider(key).configured is True
    assert mask_sensitive_value("abcdefghijkl") == "abcd••••••••ijkl"
    assert mask_sensitive_value("short") == "•••••"
    assert mask_sensitive_value(None) == "••••••••"
