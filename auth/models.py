"""
auth/models.py -- Domain dataclasses and result types for identity entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these types only own domain shape.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum


@dataclass
class Account:
    """A registered identity.

    account_id is a 64-bit id from core.ids.IdGenerator, assigned once at
    registration. handle is a display name and is NOT unique -- several
    accounts may share one. phone and email are unique when present.

    credential_hash is None for accounts registered by verification code that
    never set a password; such accounts cannot use password login.
    """

    account_id: int
    handle: str
    phone: str | None = None
    email: str | None = None
    credential_hash: str | None = None
    age: int | None = None
    gender: int = 0  # 0 unknown, 1 male, 2 female
    avatar_url: str = ""
    bio: str = ""
    signature: str = ""
    role: str = "user"  # "user", "admin"
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None
    last_authenticated_at: str | None = None


@dataclass(frozen=True)
class AccountProfile:
    """Read-only projection of an Account carried in a SessionContext.

    Never holds the credential hash.
    """

    account_id: int
    handle: str
    phone: str | None = None
    email: str | None = None
    age: int | None = None
    gender: int = 0
    avatar_url: str = ""
    bio: str = ""
    signature: str = ""
    role: str = "user"
    created_at: str | None = None
    updated_at: str | None = None
    last_authenticated_at: str | None = None

    @classmethod
    def from_account(cls, account: Account) -> AccountProfile:
        names = {f.name for f in fields(cls)}
        return cls(**{name: getattr(account, name) for name in names})


@dataclass
class ProfileChanges:
    """Partial update request for an account. None means "leave unchanged".

    Empty strings for email/handle/avatar_url/bio/signature are treated the
    same as None.
    """

    account_id: int | None = None
    email: str | None = None
    handle: str | None = None
    age: int | None = None
    gender: int | None = None
    avatar_url: str | None = None
    bio: str | None = None
    signature: str | None = None


class VerificationResult(str, Enum):
    SUCCESS = "success"
    INVALID = "invalid"
    EXPIRED = "expired"


class IdentifierKind(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    HANDLE = "handle"


class FailureKind(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    INVALID_CREDENTIAL = "invalid_credential"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Failure:
    """Explicit failure value returned by AccountService operations.

    kind drives the HTTP status; code is the machine-readable error code in
    the response envelope; message is safe to show to the user.
    """

    kind: FailureKind
    code: str
    message: str
