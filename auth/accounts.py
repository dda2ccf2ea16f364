"""
auth/accounts.py -- Registration, login, and profile flows.

AccountService composes the identity core (id generator, verification codes,
identity resolver, secret hasher) with the account store. It never raises
for expected outcomes: every operation returns either an Account or a
Failure value, and the route layer maps Failure.kind to an HTTP status.

The exceptions that do propagate are genuine faults -- most importantly
core.ids.ClockMovedBackwardsError, which must abort registration rather than
risk a duplicate account id.

Login failures are deliberately uniform: unknown identifier, wrong password,
and deactivated account all produce the same INVALID_CREDENTIAL failure with
the same message [C1]. Verification-code failures are not uniform -- expired
and wrong codes are reported separately.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import Account, Failure, FailureKind, ProfileChanges, VerificationResult
from auth.passwords import BcryptHasher
from auth.resolver import IdentityResolver
from auth.store import AccountStore
from auth.verification import VerificationService, mask_phone
from core.ids import IdGenerator

logger = logging.getLogger("cypress.auth")

DEFAULT_HANDLE_PREFIX = "user"

BAD_CREDENTIALS = Failure(FailureKind.INVALID_CREDENTIAL, "bad_credentials", "Invalid login credentials.")
CODE_INVALID = Failure(FailureKind.INVALID_CREDENTIAL, "code_invalid", "Verification code is incorrect.")
CODE_EXPIRED = Failure(FailureKind.EXPIRED, "code_expired", "Verification code has expired or was never sent.")
ACCOUNT_NOT_FOUND = Failure(FailureKind.NOT_FOUND, "not_found", "Account not found.")
PHONE_TAKEN = Failure(FailureKind.CONFLICT, "phone_taken", "That phone number is already registered.")
EMAIL_TAKEN = Failure(FailureKind.CONFLICT, "email_taken", "That email address is already in use.")
ACCOUNT_ID_TAKEN = Failure(FailureKind.CONFLICT, "account_id_taken", "That account id is already in use.")
CONFLICT = Failure(FailureKind.CONFLICT, "conflict", "The change conflicts with another account.")

_TEXT_FIELDS = ("email", "handle", "avatar_url", "bio", "signature")


def default_handle(phone: str) -> str:
    """user + last four digits of the phone number."""
    return f"{DEFAULT_HANDLE_PREFIX}{phone[-4:]}"


def _code_failure(result: VerificationResult) -> Failure | None:
    if result is VerificationResult.EXPIRED:
        return CODE_EXPIRED
    if result is VerificationResult.INVALID:
        return CODE_INVALID
    return None


class AccountService:
    """Application service for the account lifecycle.

    Usage:
        service = AccountService(store, ids, verification, resolver, hasher)
        code = service.send_code("13800138000")
        result = service.register("13800138000", code, password="s3cret")
        if isinstance(result, Failure): ...
    """

    def __init__(
        self,
        store: AccountStore,
        ids: IdGenerator,
        verification: VerificationService,
        resolver: IdentityResolver,
        hasher: BcryptHasher,
        single_use_codes: bool = True,
    ) -> None:
        self._store = store
        self._ids = ids
        self._verification = verification
        self._resolver = resolver
        self._hasher = hasher
        self.single_use_codes = single_use_codes

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    def send_code(self, phone: str) -> str:
        return self._verification.send_code(phone)

    def _check_code(self, phone: str, code: str) -> Failure | None:
        return _code_failure(self._verification.verify(phone, code))

    def _spend_code(self, phone: str) -> None:
        if self.single_use_codes:
            self._verification.consume(phone)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, phone: str, code: str, password: str | None = None) -> Account | Failure:
        """Create an account for a phone number proven by a verification code."""
        failure = self._check_code(phone, code)
        if failure is not None:
            return failure

        if self._store.find_by_phone(phone) is not None:
            return PHONE_TAKEN

        account = Account(
            account_id=self._ids.next_id(),
            handle=default_handle(phone),
            phone=phone,
            credential_hash=self._hasher.hash(password) if password else None,
        )
        try:
            created = self._store.insert(account)
        except IntegrityError:
            # Lost a race with a concurrent registration for the same phone.
            return PHONE_TAKEN

        self._spend_code(phone)
        logger.info("Registered account %d for %s", created.account_id, mask_phone(phone))
        return created

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login_by_password(self, login_key: str, password: str) -> Account | Failure:
        """Authenticate by phone, email, or handle plus password.

        Always runs bcrypt, against a dummy hash when nothing resolved, so the
        response time does not reveal whether the identifier exists [C1].
        """
        if not login_key or not password:
            return BAD_CREDENTIALS

        account, verified = self._resolver.lookup(login_key, password)
        if account is None or account.credential_hash is None:
            self._hasher.verify(password, self._hasher.dummy_hash)
            return BAD_CREDENTIALS
        # A shared handle was already settled by a successful password check.
        if not verified and not self._hasher.verify(password, account.credential_hash):
            return BAD_CREDENTIALS
        if not account.is_active:
            return BAD_CREDENTIALS

        self._store.mark_authenticated(account.account_id)
        return self._store.find_by_id(account.account_id) or account

    def login_by_code(self, phone: str, code: str) -> Account | Failure:
        """Authenticate by proving possession of a registered phone number."""
        failure = self._check_code(phone, code)
        if failure is not None:
            return failure

        account = self._store.find_by_phone(phone)
        if account is None or not account.is_active:
            return BAD_CREDENTIALS

        self._spend_code(phone)
        self._store.mark_authenticated(account.account_id)
        return self._store.find_by_id(account.account_id) or account

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, account_id: int) -> Account | Failure:
        account = self._store.find_by_id(account_id)
        return account if account is not None else ACCOUNT_NOT_FOUND

    def set_password(self, account_id: int, password: str) -> Account | Failure:
        if self._store.find_by_id(account_id) is None:
            return ACCOUNT_NOT_FOUND
        self._store.update(account_id, credential_hash=self._hasher.hash(password))
        logger.info("Password updated for account %d", account_id)
        return self._store.find_by_id(account_id) or ACCOUNT_NOT_FOUND

    def set_phone(self, account_id: int, phone: str, code: str) -> Account | Failure:
        """Bind a new phone number to the account, proven by a code sent to that number.

        Rebinding the number the account already holds just spends the code.
        """
        account = self._store.find_by_id(account_id)
        if account is None:
            return ACCOUNT_NOT_FOUND

        failure = self._check_code(phone, code)
        if failure is not None:
            return failure

        if phone != account.phone:
            if self._store.find_by_phone(phone) is not None:
                return PHONE_TAKEN
            try:
                self._store.update(account_id, phone=phone)
            except IntegrityError:
                return PHONE_TAKEN
            logger.info("Account %d bound to %s", account_id, mask_phone(phone))

        self._spend_code(phone)
        return self._store.find_by_id(account_id) or ACCOUNT_NOT_FOUND

    def update_profile(self, account_id: int, changes: ProfileChanges) -> Account | Failure:
        """Apply a partial profile update, optionally moving the account to a new id.

        Email and account id must stay unique; handles need not be. An id
        change and the field changes are written in one transaction.
        """
        account = self._store.find_by_id(account_id)
        if account is None:
            return ACCOUNT_NOT_FOUND

        fields: dict = {}
        for name in _TEXT_FIELDS:
            value = getattr(changes, name)
            if value is not None and value.strip():
                fields[name] = value.strip()
        if changes.age is not None:
            fields["age"] = changes.age
        if changes.gender is not None:
            fields["gender"] = changes.gender

        new_email = fields.get("email")
        if new_email is not None and new_email != account.email:
            if self._store.find_by_email(new_email) is not None:
                return EMAIL_TAKEN

        new_id = changes.account_id
        if new_id is not None and new_id != account_id:
            if self._store.find_by_id(new_id) is not None:
                return ACCOUNT_ID_TAKEN
            try:
                self._store.reassign(account_id, new_id, **fields)
            except IntegrityError:
                return CONFLICT
            logger.info("Account %d reassigned to id %d", account_id, new_id)
            return self._store.find_by_id(new_id) or ACCOUNT_NOT_FOUND

        if fields:
            try:
                self._store.update(account_id, **fields)
            except IntegrityError:
                return CONFLICT
        return self._store.find_by_id(account_id) or ACCOUNT_NOT_FOUND
