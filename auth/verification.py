"""
auth/verification.py -- Time-boxed verification codes bound to phone numbers.

Protocol:
  issue(phone, code, ttl)   overwrite any live challenge for phone and start a
                            new TTL window (last write wins).
  verify(phone, submitted)  EXPIRED when nothing live is stored (never issued
                            or TTL elapsed), INVALID on mismatch, SUCCESS
                            otherwise. Verification does NOT consume the code.
  consume(phone)            explicit clearing; AccountService calls it after a
                            successful register / code login when single-use
                            codes are enabled.

Unlike login failures, EXPIRED and INVALID are reported separately: telling a
user their code lapsed is not an enumeration risk and helps a legitimate retry.

Codes are never logged. Phone numbers are logged masked.

Layer rule: no imports from api/. The challenge store is injected.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from typing import Protocol

from auth.models import VerificationResult

logger = logging.getLogger("cypress.auth")

_KEY_PREFIX = "verification:code:"
DEFAULT_CODE_LENGTH = 6


class ChallengeBackend(Protocol):
    def put(self, key: str, value: str, ttl: float) -> None: ...

    def get(self, key: str) -> str | None: ...

    def delete(self, key: str) -> bool: ...


def generate_code(width: int = DEFAULT_CODE_LENGTH) -> str:
    """Return a uniformly random decimal code of exactly `width` digits, zero-padded.

    Uses secrets.randbelow, not random, so codes are not predictable from
    earlier ones. A non-positive width falls back to the 6-digit default.
    """
    if width <= 0:
        width = DEFAULT_CODE_LENGTH
    return f"{secrets.randbelow(10**width):0{width}d}"


def mask_phone(phone: str) -> str:
    """13800138000 -> 138****8000, for log lines."""
    if len(phone) < 8:
        return "*" * len(phone)
    return f"{phone[:3]}{'*' * (len(phone) - 7)}{phone[-4:]}"


def _key(phone: str) -> str:
    return f"{_KEY_PREFIX}{phone}"


class VerificationService:
    """Issue and check verification challenges against a TTL store.

    Usage:
        verification = VerificationService(ChallengeStore(), ttl_seconds=300)
        code = verification.send_code("13800138000")
        verification.verify("13800138000", code)  # VerificationResult.SUCCESS
    """

    def __init__(self, store: ChallengeBackend, ttl_seconds: float, code_length: int = DEFAULT_CODE_LENGTH) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds
        self.code_length = code_length

    def issue(self, phone: str, code: str, ttl: float | None = None) -> None:
        """Bind code to phone for ttl seconds (default: the service TTL)."""
        self._store.put(_key(phone), code, self.ttl_seconds if ttl is None else ttl)

    def send_code(self, phone: str) -> str:
        """Generate a fresh code, issue it, and return it for delivery."""
        code = generate_code(self.code_length)
        self.issue(phone, code)
        logger.info("Verification code issued for %s (ttl=%ss)", mask_phone(phone), self.ttl_seconds)
        return code

    def verify(self, phone: str, submitted: str) -> VerificationResult:
        stored = self._store.get(_key(phone))
        if stored is None:
            return VerificationResult.EXPIRED
        if submitted is None or not hmac.compare_digest(stored.encode("utf-8"), submitted.encode("utf-8")):
            return VerificationResult.INVALID
        return VerificationResult.SUCCESS

    def consume(self, phone: str) -> None:
        self._store.delete(_key(phone))
