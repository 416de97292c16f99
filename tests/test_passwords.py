"""Unit tests for auth/passwords.py -- bcrypt hashing and verification.

Covers:
- hash() output is salted (two hashes of one password differ) and verifiable
- verify() rejects wrong passwords, empty and malformed hashes without raising
- verify_dummy() never raises (timing equalization for unknown users)
- hash() failure surfaces as HashingError with the generic message
"""

import pytest

from auth.errors import HashingError
from auth.passwords import PasswordHasher


def test_hash_is_salted_and_verifiable(hasher: PasswordHasher) -> None:
    first = hasher.hash("abc123")
    second = hasher.hash("abc123")
    assert first != second
    assert first.startswith("$2")
    assert hasher.verify("abc123", first)
    assert hasher.verify("abc123", second)


def test_verify_rejects_wrong_password(hasher: PasswordHasher) -> None:
    hashed = hasher.hash("abc123")
    assert not hasher.verify("abc124", hashed)
    assert not hasher.verify("", hashed)


@pytest.mark.parametrize("bad_hash", [None, "", "not-a-bcrypt-hash", "$2b$04$short"])
def test_verify_treats_bad_hash_as_mismatch(hasher: PasswordHasher, bad_hash) -> None:
    assert hasher.verify("abc123", bad_hash) is False


def test_verify_dummy_does_not_raise(hasher: PasswordHasher) -> None:
    assert hasher.verify_dummy("whatever") is None
    assert hasher.verify("permgate_timing_dummy", hasher.dummy_hash)


def test_hash_failure_raises_hashing_error(hasher: PasswordHasher, monkeypatch) -> None:
    def _broken_gensalt(rounds: int = 12) -> bytes:
        raise ValueError("invalid rounds")

    monkeypatch.setattr("auth.passwords.bcrypt.gensalt", _broken_gensalt)
    with pytest.raises(HashingError) as exc_info:
        hasher.hash("abc123")
    assert exc_info.value.status_code == 500
    assert exc_info.value.msg == "Encryption failed."
