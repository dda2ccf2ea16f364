"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper.
Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  account_id, phone, and email are UNIQUE in the schema. SQLite treats NULLs
  as distinct in UNIQUE constraints, which is exactly what we want here: many
  accounts may have no email. handle is deliberately NOT unique.

  Violations surface as sqlalchemy.exc.IntegrityError. AccountService catches
  it and reports a conflict -- the store does not pre-check.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import BigInteger, Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Account

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("account_id", BigInteger, primary_key=True, autoincrement=False),
    Column("handle", String(64), nullable=False, index=True),
    Column("phone", String(20), unique=True),
    Column("email", String(255), unique=True),
    Column("credential_hash", Text),  # NULL until a password is set
    Column("age", Integer),
    Column("gender", Integer, nullable=False, server_default="0"),
    Column("avatar_url", Text, nullable=False, server_default=""),
    Column("bio", Text, nullable=False, server_default=""),
    Column("signature", Text, nullable=False, server_default=""),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_authenticated_at", String(32)),
)

# Columns update() and reassign() may touch. Everything else is either the
# key or a lifecycle stamp owned by the store.
_MUTABLE_FIELDS = frozenset(
    {
        "handle",
        "phone",
        "email",
        "credential_hash",
        "age",
        "gender",
        "avatar_url",
        "bio",
        "signature",
        "role",
        "is_active",
    }
)


class AccountLookup(Protocol):
    """The read side of the store, as consumed by the resolver and auth gate."""

    def find_by_phone(self, phone: str) -> Account | None: ...

    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_handle(self, handle: str) -> list[Account]: ...

    def find_by_id(self, account_id: int) -> Account | None: ...


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_fields(fields: dict) -> dict:
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")
    if "is_active" in fields:
        fields["is_active"] = 1 if fields["is_active"] else 0
    return fields


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore("sqlite:///accounts.db")
        store.insert(Account(account_id=ids.next_id(), handle="user8000", phone="13800138000"))
        account = store.find_by_phone("13800138000")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.account_id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_phone(self, phone: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.phone == phone)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_email(self, email: str) -> Account | None:
        """Exact (case-sensitive) email match."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_handle(self, handle: str) -> list[Account]:
        """Return every account using this handle, oldest id first.

        The resolver tries candidates in this order, so it must be
        deterministic.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                _accounts.select().where(_accounts.c.handle == handle).order_by(_accounts.c.account_id)
            ).fetchall()
        return [_row_to_account(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, account: Account) -> Account:
        """Insert a new account and return it as stored (with timestamps).

        Raises sqlalchemy.exc.IntegrityError if the account id, phone, or
        email is already bound to another account.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    account_id=account.account_id,
                    handle=account.handle,
                    phone=account.phone,
                    email=account.email,
                    credential_hash=account.credential_hash,
                    age=account.age,
                    gender=account.gender,
                    avatar_url=account.avatar_url,
                    bio=account.bio,
                    signature=account.signature,
                    role=account.role,
                    is_active=1 if account.is_active else 0,
                    created_at=account.created_at or now,
                    updated_at=now,
                    last_authenticated_at=account.last_authenticated_at,
                )
            )
            conn.commit()
        return self.find_by_id(account.account_id)

    def update(self, account_id: int, /, **fields) -> bool:
        """Update mutable fields on an existing account and stamp updated_at.

        Returns True if a row was updated, False if account_id was not found.
        Raises ValueError for unknown field names (account_id included: the
        key is positional-only, so account_id= lands in fields) and
        IntegrityError on a phone/email collision.
        """
        values = _check_fields(dict(fields))
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.account_id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def reassign(self, account_id: int, new_account_id: int, /, **fields) -> bool:
        """Move an account to a new id, applying any other field changes in the same transaction.

        Either every change lands or none does. Raises IntegrityError if
        new_account_id (or a changed email/phone) is already taken, and
        ValueError if fields tries to set account_id directly.
        """
        values = _check_fields(dict(fields))
        values["account_id"] = new_account_id
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.account_id == account_id).values(**values))
        return result.rowcount > 0

    def mark_authenticated(self, account_id: int) -> None:
        """Stamp last_authenticated_at after a successful login."""
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.account_id == account_id)
                .values(last_authenticated_at=_now_iso())
            )
            conn.commit()

    def delete(self, account_id: int) -> bool:
        """Permanently delete an account. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.delete().where(_accounts.c.account_id == account_id))
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_accounts.select().limit(1)).fetchall()
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        account_id=row.account_id,
        handle=row.handle,
        phone=row.phone,
        email=row.email,
        credential_hash=row.credential_hash,
        age=row.age,
        gender=row.gender,
        avatar_url=row.avatar_url or "",
        bio=row.bio or "",
        signature=row.signature or "",
        role=row.role,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_authenticated_at=row.last_authenticated_at,
    )
