"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# habitloop.api.deps refuses to import without a strong JWT_SECRET, so one
# is planted before any test module pulls in the API.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "habitloop-pytest-signing-key-" + "0" * 40
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from habitloop.database.models import Base  # noqa: E402
from habitloop.engine.chat_hub import ChatHub  # noqa: E402


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all HabitLoop tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by ``run_db``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """A file-backed SQLite engine with a real connection pool.

    Each thread gets its own connection, so concurrent writers contend on
    the database lock the way they would on a server.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'habitloop.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def hub() -> ChatHub:
    return ChatHub()


def make_token(sub: str = "user-1", username: str = "FixtureUser") -> str:
    """Create a user JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from habitloop.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def user_token():
    return make_token()
