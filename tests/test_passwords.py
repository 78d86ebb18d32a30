"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - hash/verify round trip and mismatch
  - salted digests differ for the same password
  - malformed digest raises CredentialFormatError
  - configured cost is embedded in the digest
"""

from __future__ import annotations

import pytest

from auth.passwords import PasswordHasher
from core.errors import CredentialFormatError, ErrorCode


def test_verify_accepts_the_original_password(hasher: PasswordHasher) -> None:
    digest = hasher.hash("correct horse 1")
    assert hasher.verify("correct horse 1", digest) is True


def test_verify_rejects_a_different_password(hasher: PasswordHasher) -> None:
    digest = hasher.hash("correct horse 1")
    assert hasher.verify("correct horse 2", digest) is False


def test_same_password_hashes_differently(hasher: PasswordHasher) -> None:
    assert hasher.hash("same-password-9") != hasher.hash("same-password-9")


def test_digest_never_contains_the_password(hasher: PasswordHasher) -> None:
    assert "plaintext42" not in hasher.hash("plaintext42")


def test_cost_is_embedded_in_digest() -> None:
    digest = PasswordHasher(rounds=5).hash("pw123456")
    assert digest.startswith("$2b$05$")


def test_malformed_digest_raises(hasher: PasswordHasher) -> None:
    with pytest.raises(CredentialFormatError) as excinfo:
        hasher.verify("whatever1", "not-a-bcrypt-digest")
    assert excinfo.value.code is ErrorCode.CREDENTIAL_FORMAT


def test_verify_dummy_returns_nothing(hasher: PasswordHasher) -> None:
    assert hasher.verify_dummy("anything") is None


def test_long_passwords_compare_on_first_72_bytes(hasher: PasswordHasher) -> None:
    base = "x" * 72
    digest = hasher.hash(base + "tail-one")
    assert hasher.verify(base + "tail-two", digest) is True
