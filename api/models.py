"""
API request and response models for Cypress REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Account ids are serialized as strings: they are 64-bit integers and would lose
precision as JavaScript numbers.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Account, AccountProfile, ProfileChanges

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PHONE_PATTERN = r"^1[3-9]\d{9}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
URL_PATTERN = r"^https?://\S+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SendCodeRequest(BaseModel):
    """Request body for POST /api/v1/users/send_code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    phone: str = Field(pattern=PHONE_PATTERN)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/users/register.

    password is optional: an account registered without one can only log in
    by verification code until it sets a password.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    phone: str = Field(pattern=PHONE_PATTERN)
    code: str = Field(min_length=1, max_length=12)
    password: Optional[str] = Field(default=None, min_length=1, max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/users/login.

    login_key may be a phone number, an email address, or a handle.
    """

    login_key: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class CodeLoginRequest(BaseModel):
    """Request body for POST /api/v1/users/login_by_code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    phone: str = Field(pattern=PHONE_PATTERN)
    code: str = Field(min_length=1, max_length=12)


class PasswordUpdate(BaseModel):
    """Request body for PUT /api/v1/users/me/password."""

    password: str = Field(min_length=1, max_length=255)


class PhoneUpdate(BaseModel):
    """Request body for PUT /api/v1/users/me/phone. The code must have been sent to the new number."""

    model_config = ConfigDict(str_strip_whitespace=True)

    phone: str = Field(pattern=PHONE_PATTERN)
    code: str = Field(min_length=1, max_length=12)


class ProfilePatch(BaseModel):
    """Request body for PATCH /api/v1/users/me. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[int] = Field(default=None, gt=0, lt=2**63)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    handle: Optional[str] = Field(default=None, min_length=2, max_length=20)
    age: Optional[int] = Field(default=None, ge=1, le=150)
    gender: Optional[int] = Field(default=None, ge=0, le=2)
    avatar_url: Optional[str] = Field(default=None, max_length=2048, pattern=URL_PATTERN)
    bio: Optional[str] = Field(default=None, max_length=200)
    signature: Optional[str] = Field(default=None, max_length=100)

    def to_changes(self) -> ProfileChanges:
        return ProfileChanges(**self.model_dump())


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Never includes the credential hash."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    handle: str
    phone: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = None
    gender: int = 0
    avatar_url: str = ""
    bio: str = ""
    signature: str = ""
    role: str = "user"
    has_password: Optional[bool] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_authenticated_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        """Factory Method -- the mapping lives beside the output model."""
        return cls(
            account_id=str(account.account_id),
            handle=account.handle,
            phone=account.phone,
            email=account.email,
            age=account.age,
            gender=account.gender,
            avatar_url=account.avatar_url,
            bio=account.bio,
            signature=account.signature,
            role=account.role,
            has_password=account.credential_hash is not None,
            created_at=account.created_at,
            updated_at=account.updated_at,
            last_authenticated_at=account.last_authenticated_at,
        )

    @classmethod
    def from_profile(cls, profile: AccountProfile) -> "AccountResponse":
        return cls(
            account_id=str(profile.account_id),
            handle=profile.handle,
            phone=profile.phone,
            email=profile.email,
            age=profile.age,
            gender=profile.gender,
            avatar_url=profile.avatar_url,
            bio=profile.bio,
            signature=profile.signature,
            role=profile.role,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
            last_authenticated_at=profile.last_authenticated_at,
        )


class SendCodeResponse(BaseModel):
    """Response for POST /api/v1/users/send_code.

    code is only populated when EXPOSE_VERIFICATION_CODE is enabled (local
    development without an SMS gateway).
    """

    message: str
    expires_in: int
    code: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    account: AccountResponse


class ProfileUpdateResponse(BaseModel):
    """Response for PATCH /api/v1/users/me.

    When the account id changed, outstanding tokens still name the old id, so
    a fresh access_token is returned and account_id_changed is true.
    """

    account: AccountResponse
    account_id_changed: bool = False
    access_token: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
