"""
api/routes/v1/users.py -- Registration, login, and profile REST endpoints.

Routes:
  POST  /api/v1/users/send_code       -- issue a verification code for a phone (public)
  POST  /api/v1/users/register        -- create an account with phone + code (public)
  POST  /api/v1/users/login           -- phone/email/handle + password -> token (public)
  POST  /api/v1/users/login_by_code   -- phone + code -> token (public)
  GET   /api/v1/users/me              -- current account (requires auth)
  PATCH /api/v1/users/me              -- partial profile update (requires auth)
  PUT   /api/v1/users/me/password     -- set or replace the password (requires auth)
  PUT   /api/v1/users/me/phone        -- bind a new phone proven by a code (requires auth)

Security:
  [C1] Password login failures share one generic message whether the
       identifier is unknown, the password is wrong, or the account is
       deactivated -- AccountService guarantees this, routes must not add
       detail.
  [M5] Cache-Control: no-store on every response carrying a token.
  Profile routes act on the session's own account only; there is no account
  id in the path to tamper with.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    AccountResponse,
    CodeLoginRequest,
    LoginRequest,
    LoginResponse,
    PasswordUpdate,
    PhoneUpdate,
    ProfilePatch,
    ProfileUpdateResponse,
    RegisterRequest,
    SendCodeRequest,
    SendCodeResponse,
)
from auth.accounts import AccountService
from auth.context import SessionContext
from auth.dependencies import require_session
from auth.models import Account, Failure, FailureKind
from auth.tokens import TokenService

# Auth policy:
# - POST  /users/send_code, /users/register, /users/login, /users/login_by_code: public
#   (they precede authentication)
# - everything under /users/me: require_session
router = APIRouter()

_STATUS_BY_KIND = {
    FailureKind.NOT_FOUND: 404,
    FailureKind.EXPIRED: 400,
    FailureKind.INVALID_CREDENTIAL: 401,
    FailureKind.CONFLICT: 409,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _raise_failure(failure: Failure) -> None:
    raise HTTPException(
        status_code=_STATUS_BY_KIND[failure.kind],
        detail={"code": failure.code, "message": failure.message},
    )


def _unwrap(result: Account | Failure) -> Account:
    if isinstance(result, Failure):
        _raise_failure(result)
    return result


def _token_response(request: Request, account: Account) -> JSONResponse:
    tokens: TokenService = request.app.state.tokens
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=tokens.issue(account.account_id),
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=tokens.ttl_seconds,
            account=AccountResponse.from_account(account),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users/send_code", response_model=SendCodeResponse)
def send_code(request: Request, body: SendCodeRequest) -> SendCodeResponse:
    """Issue a verification code for the phone, replacing any earlier one.

    Delivery (SMS) is outside this service; the code is only echoed back when
    EXPOSE_VERIFICATION_CODE is enabled.
    """
    service: AccountService = request.app.state.account_service
    code = service.send_code(body.phone)
    settings = request.app.state.settings
    return SendCodeResponse(
        message="Verification code sent.",
        expires_in=settings.verification_code_ttl_seconds,
        code=code if settings.expose_verification_code else None,
    )


@router.post("/users/register", response_model=AccountResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> AccountResponse:
    """Create an account bound to a phone number proven by a verification code."""
    service: AccountService = request.app.state.account_service
    account = _unwrap(service.register(body.phone, body.code, body.password))
    return AccountResponse.from_account(account)


@router.post("/users/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with phone, email, or handle plus password; return a bearer token."""
    service: AccountService = request.app.state.account_service
    result = service.login_by_password(body.login_key, body.password)
    if isinstance(result, Failure):
        resp = JSONResponse(
            status_code=_STATUS_BY_KIND[result.kind],
            content={"error": {"code": result.code, "message": result.message}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
    return _token_response(request, result)


@router.post("/users/login_by_code", response_model=LoginResponse)
def login_by_code(request: Request, body: CodeLoginRequest) -> JSONResponse:
    """Authenticate with a phone number and the verification code sent to it."""
    service: AccountService = request.app.state.account_service
    account = _unwrap(service.login_by_code(body.phone, body.code))
    return _token_response(request, account)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/users/me", response_model=AccountResponse)
def me(session: SessionContext = Depends(require_session)) -> AccountResponse:
    """Return the account bound to the current session."""
    return AccountResponse.from_profile(session.require())


@router.patch("/users/me", response_model=ProfileUpdateResponse)
def update_me(
    request: Request,
    body: ProfilePatch,
    session: SessionContext = Depends(require_session),
) -> ProfileUpdateResponse:
    """Partially update the current account's profile.

    Changing account_id moves the account atomically and returns a token for
    the new id; tokens naming the old id stop resolving to an account.
    """
    service: AccountService = request.app.state.account_service
    current_id = session.require().account_id
    account = _unwrap(service.update_profile(current_id, body.to_changes()))

    changed = account.account_id != current_id
    token = request.app.state.tokens.issue(account.account_id) if changed else None
    return ProfileUpdateResponse(
        account=AccountResponse.from_account(account),
        account_id_changed=changed,
        access_token=token,
    )


@router.put("/users/me/password", response_model=AccountResponse)
def set_password(
    request: Request,
    body: PasswordUpdate,
    session: SessionContext = Depends(require_session),
) -> AccountResponse:
    """Set or replace the current account's password."""
    service: AccountService = request.app.state.account_service
    account = _unwrap(service.set_password(session.require().account_id, body.password))
    return AccountResponse.from_account(account)


@router.put("/users/me/phone", response_model=AccountResponse)
def set_phone(
    request: Request,
    body: PhoneUpdate,
    session: SessionContext = Depends(require_session),
) -> AccountResponse:
    """Move the current account to a new phone number proven by a code sent to it."""
    service: AccountService = request.app.state.account_service
    account = _unwrap(service.set_phone(session.require().account_id, body.phone, body.code))
    return AccountResponse.from_account(account)
