"""
tests/conftest.py -- Shared test fixtures for health portal tests.

This module provides:
  - make_stores(): creates isolated in-memory DBs for every store
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - stores / service: per-test stores and AuthService for unit tests
  - api_client: TestClient plus stores and a seeded provider for API tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any auth/core import: DEBUG so
get_settings() generates signing keys instead of raising, RATE_LIMIT_ENABLED
so repeated logins are not throttled, BCRYPT_ROUNDS to keep hashing fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import NamedTuple

# CRITICAL: Set these before any auth/core import; get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_state
from audit.store import AuditStore
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import create_access_token
from consent.ledger import ConsentLedger
from patients.store import ProfileStore

PROVIDER_EMAIL = "doc@example.com"
PROVIDER_PASSWORD = "Provider123"


class Stores(NamedTuple):
    users: UserStore
    consents: ConsentLedger
    profiles: ProfileStore
    audit: AuditStore

    def close(self) -> None:
        for store in self:
            store.close()


class ApiContext(NamedTuple):
    client: TestClient
    stores: Stores
    provider_token: str


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_stores(db_suffix: str) -> Stores:
    """Create stores on one isolated named shared-memory SQLite database.

    Args:
        db_suffix: Unique string in the DB name so test modules don't share state.
    """
    url = f"sqlite:///file:test_portal_{db_suffix}?mode=memory&cache=shared&uri=true"
    return Stores(UserStore(db_url=url), ConsentLedger(db_url=url), ProfileStore(db_url=url), AuditStore(db_url=url))


def make_service(stores: Stores) -> AuthService:
    return AuthService(stores.users, stores.consents, stores.profiles)


def _patch_lifespan(stores: Stores):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_state(app, stores.users, stores.consents, stores.profiles, stores.audit)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- unit tests get a fresh database each
# ---------------------------------------------------------------------------


@pytest.fixture()
def stores() -> Generator[Stores, None, None]:
    s = make_stores(uuid.uuid4().hex)
    yield s
    s.close()


@pytest.fixture()
def service(stores: Stores) -> AuthService:
    return make_service(stores)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[ApiContext, None, None]:
    """Yield (client, stores, provider_token) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers and middleware but use isolated in-memory
    stores. One provider is seeded first so new patients get assigned to it.
    """
    stores = make_stores(f"api_{request.module.__name__.rsplit('.', 1)[-1]}")
    provider = make_service(stores).create_provider(PROVIDER_EMAIL, PROVIDER_PASSWORD, "Dr. Test", "Family Medicine")
    provider_token = create_access_token(provider, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(stores)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client, stores, provider_token)

    stores.close()
