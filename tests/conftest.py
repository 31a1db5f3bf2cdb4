"""
tests/conftest.py -- Shared test fixtures for Portal unit and integration tests.

This module provides:
  - stores:     isolated in-memory credential store, audit ledger and
                tracker store plus an AuthorizationPipeline over them
  - client:     TestClient over the real app with a patched lifespan that
                injects those stores into app.state
  - make_user:  factory that inserts a user with a known password
  - bearer:     builds an Authorization header for a stored user

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
test gets fresh names so no state leaks between tests.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import: settings
are read once, and auth.tokens hashes its dummy password at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core import so get_settings() auto-generates
# SECRET_KEY in dev mode and bcrypt stays fast.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from audit.ledger import AuditLedger
from auth.models import ROLE_USER, STATUS_ACTIVE, User
from auth.pipeline import AuthorizationPipeline
from auth.store import UserStore
from auth.tokens import hash_password, issue_token
from tracker.store import TrackerStore

DEFAULT_PASSWORD = "password123"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_url(name: str) -> str:
    return f"sqlite:///file:test_{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@dataclass
class Stores:
    users: UserStore
    ledger: AuditLedger
    tracker: TrackerStore
    pipeline: AuthorizationPipeline


@pytest.fixture
def stores() -> Generator[Stores, None, None]:
    """Fresh, isolated stores for one test."""
    users = UserStore(db_url=memory_url("users"))
    ledger = AuditLedger(db_url=memory_url("audit"))
    tracker = TrackerStore(db_url=memory_url("tracker"))
    yield Stores(users, ledger, tracker, AuthorizationPipeline(users, ledger, tracker))
    tracker.close()
    ledger.close()
    users.close()


@pytest.fixture
def make_user(stores: Stores) -> Callable[..., User]:
    """Return a factory: make_user(email, role="user", status="active", password=..., user_id=None)."""

    def _make(
        email: str,
        role: str = ROLE_USER,
        status: str = STATUS_ACTIVE,
        password: str = DEFAULT_PASSWORD,
        user_id: int | None = None,
    ) -> User:
        user = User(email=email, password_hash=hash_password(password), role=role, status=status, id=user_id)
        new_id = stores.users.create_user(user)
        return stores.users.find_by_id(new_id)

    return _make


@pytest.fixture
def bearer() -> Callable[[User], dict[str, str]]:
    """Return a helper that builds an Authorization header for a user."""

    def _bearer(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(user)}"}

    return _bearer


# ---------------------------------------------------------------------------
# App client
# ---------------------------------------------------------------------------


def _patch_lifespan(stores: Stores):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores into app.state so routes see isolated test DBs
    rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = stores.users
        app.state.ledger = stores.ledger
        app.state.tracker = stores.tracker
        app.state.pipeline = stores.pipeline
        yield

    return test_lifespan


@pytest.fixture
def client(stores: Stores) -> Generator[TestClient, None, None]:
    app.router.lifespan_context = _patch_lifespan(stores)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """Rate-limit counters live in process memory; clear them around every test."""
    limiter.reset()
    yield
    limiter.reset()
