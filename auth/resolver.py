"""
auth/resolver.py -- Map a login identifier to exactly one account.

Classification is purely structural and first-match-wins, so every string
lands in exactly one bucket:

  1. PHONE  -- the whole string is 11 digits, leading 1, second digit 3-9
  2. EMAIL  -- contains "@"
  3. HANDLE -- everything else

Handles are display names and are not unique. When several accounts share a
handle, the password is tried against each candidate in retrieval order and
the first verified match wins. If nothing verifies, the result is the same
None as "no such handle" -- callers never learn that duplicates exist.

Known hardening gap: disambiguation costs one bcrypt check per candidate up
to the first match, so response time grows with the number of accounts
sharing a handle. Each individual comparison is constant-time (bcrypt.checkpw).

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
import re
from typing import NamedTuple

from auth.models import Account, IdentifierKind
from auth.passwords import SecretHasher
from auth.store import AccountLookup

logger = logging.getLogger("cypress.auth")

PHONE_PATTERN = re.compile(r"1[3-9]\d{9}")


def classify(identifier: str) -> IdentifierKind:
    if PHONE_PATTERN.fullmatch(identifier):
        return IdentifierKind.PHONE
    if "@" in identifier:
        return IdentifierKind.EMAIL
    return IdentifierKind.HANDLE


class Resolution(NamedTuple):
    """Outcome of a lookup. verified is True when the password was already
    checked against account.credential_hash while disambiguating."""

    account: Account | None
    verified: bool = False


class IdentityResolver:
    """Resolve (identifier, password) to a single candidate account.

    For phone, email, and single-match handle lookups the password is not
    checked here -- the caller verifies it afterwards. Only the multi-match
    handle case uses the password, as the tie-breaker, and says so through
    Resolution.verified so the caller does not hash a second time.
    """

    def __init__(self, accounts: AccountLookup, hasher: SecretHasher) -> None:
        self._accounts = accounts
        self._hasher = hasher

    def resolve(self, identifier: str, password: str) -> Account | None:
        """Return the account the identifier refers to, or None (not found)."""
        return self.lookup(identifier, password).account

    def lookup(self, identifier: str, password: str) -> Resolution:
        kind = classify(identifier)
        if kind is IdentifierKind.PHONE:
            return Resolution(self._accounts.find_by_phone(identifier))
        if kind is IdentifierKind.EMAIL:
            return Resolution(self._accounts.find_by_email(identifier))

        candidates = self._accounts.find_by_handle(identifier)
        if not candidates:
            return Resolution(None)
        if len(candidates) == 1:
            return Resolution(candidates[0])
        return self._disambiguate(candidates, password)

    def _disambiguate(self, candidates: list[Account], password: str) -> Resolution:
        for candidate in candidates:
            if self._hasher.verify(password, candidate.credential_hash):
                return Resolution(candidate, verified=True)
        logger.debug("No credential match among %d accounts sharing a handle", len(candidates))
        return Resolution(None)
