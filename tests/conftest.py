"""
tests/conftest.py -- Shared test fixtures for Cypress unit and integration tests.

This module provides:
  - ManualClock / clock: a settable clock for TTL and expiry tests
  - hasher, account_store, challenge_store: isolated in-memory building blocks
  - api_client: TestClient running the real app on isolated stores
  - new_phone: unique, valid phone numbers so module-scoped DBs never collide

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the account store behind TestClient, because route handlers run in a thread
pool and plain :memory: DBs are per-connection. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

The DEBUG env var must be set before any core/api import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any core/api import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.passwords import BcryptHasher
from auth.store import AccountStore
from cache.store import ChallengeStore
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef-0123456789"

_phone_counter = itertools.count(10_000_000)


class ManualClock:
    """Callable clock (seconds) that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    """Settings for tests: fixed secret, cheap bcrypt, codes echoed in responses."""
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": 4,
        "expose_verification_code": True,
        "worker_id": 3,
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture(scope="session")
def hasher() -> BcryptHasher:
    # rounds=4 is the bcrypt minimum; keeps the suite fast.
    return BcryptHasher(rounds=4)


@pytest.fixture
def account_store() -> Generator[AccountStore, None, None]:
    store = AccountStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def challenge_store(clock: ManualClock) -> Generator[ChallengeStore, None, None]:
    store = ChallengeStore(":memory:", clock=clock)
    yield store
    store.close()


@pytest.fixture
def new_phone() -> Callable[[], str]:
    """Return a factory of unique, pattern-valid phone numbers (139xxxxxxxx)."""

    def _make() -> str:
        return f"139{next(_phone_counter):08d}"

    return _make


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(account_store: AccountStore, challenge_store: ChallengeStore, settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    Wires the real identity services onto pre-created test stores, so
    TestClient routes hit the production object graph on isolated DBs.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, settings, account_store, challenge_store)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient for API integration tests.

    Each test module gets its own named in-memory account DB (suffix is the
    module name) and its own challenge store.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    account_store = AccountStore(f"sqlite:///file:test_accounts_{suffix}?mode=memory&cache=shared&uri=true")
    challenge_store = ChallengeStore(":memory:")

    app.router.lifespan_context = _patch_lifespan(account_store, challenge_store, make_settings())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    challenge_store.close()
    account_store.close()
