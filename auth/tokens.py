"""
auth/tokens.py -- Stateless session tokens (signed JWTs).

Security design decisions:
  JWT: python-jose with HS256. A token carries only the account id as the
       subject ("sub", a decimal string), the issue time ("iat"), and the
       expiry ("exp"), all in integer seconds.

  Validation order: signature first (anything structurally wrong or signed
       with another key is rejected before its claims are looked at), then
       now < exp, then the subject is parsed back into an int. Every failure
       returns None -- the caller cannot tell an expired token from a forged
       one, and neither can the client.

  Expiry is checked here against the injected clock rather than by jose, so
       tests can move time forward without sleeping.

  No revocation: possession of a valid unexpired token is sufficient. Rotating
       SECRET_KEY or waiting out the TTL are the only ways to invalidate
       outstanding tokens.

Layer rule: no imports from api/ or cache/. The secret comes from the caller
(built from core.config.get_settings() at startup).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from jose import JWTError, jwt

logger = logging.getLogger("cypress.auth")

_ALGORITHM = "HS256"


class TokenService:
    """Issue and validate session tokens bound to an account id.

    Usage:
        tokens = TokenService(settings.secret_key, settings.token_expire_seconds)
        token = tokens.issue(account.account_id)
        tokens.validate(token)  # account id, or None
    """

    def __init__(self, secret_key: str, ttl_seconds: int, clock: Callable[[], float] = time.time) -> None:
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, account_id: int) -> str:
        issued_at = int(self._clock())
        payload = {
            "sub": str(account_id),
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def validate(self, token: str) -> int | None:
        """Return the account id the token was issued for, or None if it is not valid now."""
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError:
            return None

        expires_at = payload.get("exp")
        if not isinstance(expires_at, (int, float)) or self._clock() >= expires_at:
            return None

        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Signed token without a usable subject claim")
            return None
