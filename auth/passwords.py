"""
auth/passwords.py -- Secret hashing and verification (bcrypt).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt only looks at the first 72 bytes of input, and recent bcrypt releases
raise ValueError for longer input, so both hash() and verify() truncate to
72 bytes before calling into bcrypt.

verify() must never raise: a malformed stored hash (corrupted row, legacy
format) is simply a mismatch. bcrypt.checkpw compares in constant time.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from functools import cached_property
from typing import Protocol

import bcrypt

_BCRYPT_MAX_BYTES = 72


class SecretHasher(Protocol):
    def hash(self, plaintext: str) -> str: ...

    def verify(self, plaintext: str, hashed: str | None) -> bool: ...


def _encode(plaintext: str) -> bytes:
    return plaintext.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class BcryptHasher:
    """SecretHasher backed by bcrypt with a configurable work factor.

    Usage:
        hasher = BcryptHasher(rounds=settings.bcrypt_rounds)
        stored = hasher.hash("secret")
        hasher.verify("secret", stored)  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt hash of plaintext."""
        return bcrypt.hashpw(_encode(plaintext), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, hashed: str | None) -> bool:
        """Return True if plaintext matches hashed. Malformed or missing hashes are False."""
        if plaintext is None or not hashed:
            return False
        try:
            return bcrypt.checkpw(_encode(plaintext), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    @cached_property
    def dummy_hash(self) -> str:
        """A throwaway hash at the same cost factor, for timing equalization [C1].

        Verifying against it when no account matched costs the same as a real
        check, so response time does not reveal whether an identifier exists.
        """
        return self.hash("cypress_timing_dummy")
