"""
auth/context.py -- Per-request holder for the authenticated account.

A SessionContext is created by the auth gate for exactly one request and
handed to the route handler explicitly (FastAPI Depends), rather than kept in
ambient thread-local state. The gate clears it on every exit path, so nothing
survives the request that created it.
"""

from __future__ import annotations

from auth.models import AccountProfile


class SessionContext:
    """The session slot for one in-flight request. Empty until the gate binds an account."""

    __slots__ = ("_account",)

    def __init__(self) -> None:
        self._account: AccountProfile | None = None

    @property
    def account(self) -> AccountProfile | None:
        return self._account

    @property
    def account_id(self) -> int | None:
        return self._account.account_id if self._account is not None else None

    @property
    def is_authenticated(self) -> bool:
        return self._account is not None

    def bind(self, account: AccountProfile) -> None:
        self._account = account

    def clear(self) -> None:
        self._account = None

    def require(self) -> AccountProfile:
        """Return the bound account; raise if the session is empty.

        Handlers behind require_session can rely on this never raising for a
        non-preflight request.
        """
        if self._account is None:
            raise RuntimeError("No authenticated account in this session")
        return self._account

    def __repr__(self) -> str:
        return f"SessionContext(account_id={self.account_id})"
