"""
auth/gate.py -- Per-request authentication stage.

State machine for one request:

  OPTIONS (pre-flight)              -> allow, session stays empty
  no / empty Authorization header   -> reject 401 "no credential supplied"
  strip optional "Bearer " prefix
  TokenService.validate() is None   -> reject 401 "invalid or expired token"
  account missing or deactivated    -> reject 401 "account no longer exists"
  otherwise                         -> bind AccountProfile, allow

guard() wraps that in a context manager. The SessionContext it yields is
cleared when the block exits, whether the handler returned, raised, or the
request was rejected before the handler ran. A rejected request never has an
identity bound at any point.

Layer rule: no imports from api/ or cache/. FastAPI wiring lives in
auth/dependencies.py.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from auth.context import SessionContext
from auth.models import AccountProfile
from auth.store import AccountLookup
from auth.tokens import TokenService

logger = logging.getLogger("cypress.auth")

_BEARER_PREFIX = "bearer "
_PREFLIGHT_METHODS = frozenset({"OPTIONS"})

MSG_NO_CREDENTIAL = "no credential supplied"
MSG_INVALID_TOKEN = "invalid or expired token"
MSG_ACCOUNT_GONE = "account no longer exists"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    account: AccountProfile | None = None
    status_code: int = 200
    message: str = ""

    @classmethod
    def allow(cls, account: AccountProfile | None = None) -> GateDecision:
        return cls(allowed=True, account=account)

    @classmethod
    def reject(cls, message: str) -> GateDecision:
        return cls(allowed=False, status_code=401, message=message)


class AuthRejected(Exception):
    """Raised by AuthGate.guard() when a request fails authentication."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def extract_token(authorization: str | None) -> str | None:
    """Return the raw token from an Authorization header value, or None if absent.

    The "Bearer " prefix is optional and matched case-insensitively.
    """
    if authorization is None:
        return None
    value = authorization.strip()
    if value.lower() == _BEARER_PREFIX.strip():
        return None
    if value[: len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
        value = value[len(_BEARER_PREFIX) :].strip()
    return value or None


class AuthGate:
    """Authenticate requests and scope the resulting SessionContext.

    Usage:
        gate = AuthGate(tokens, account_store)
        with gate.guard(request.method, request.headers.get("Authorization")) as session:
            handle(session.require())
    """

    def __init__(self, tokens: TokenService, accounts: AccountLookup) -> None:
        self._tokens = tokens
        self._accounts = accounts

    def evaluate(self, method: str, authorization: str | None) -> GateDecision:
        if method.upper() in _PREFLIGHT_METHODS:
            return GateDecision.allow()

        if not authorization or not authorization.strip():
            return GateDecision.reject(MSG_NO_CREDENTIAL)

        token = extract_token(authorization)
        account_id = self._tokens.validate(token) if token else None
        if account_id is None:
            return GateDecision.reject(MSG_INVALID_TOKEN)

        account = self._accounts.find_by_id(account_id)
        if account is None or not account.is_active:
            logger.info("Valid token for missing or inactive account %d", account_id)
            return GateDecision.reject(MSG_ACCOUNT_GONE)

        return GateDecision.allow(AccountProfile.from_account(account))

    @contextmanager
    def guard(self, method: str, authorization: str | None) -> Iterator[SessionContext]:
        """Yield a SessionContext for one request; raise AuthRejected if authentication fails."""
        session = SessionContext()
        try:
            decision = self.evaluate(method, authorization)
            if not decision.allowed:
                raise AuthRejected(decision.status_code, decision.message)
            if decision.account is not None:
                session.bind(decision.account)
            yield session
        finally:
            session.clear()
