"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import itertools
import os
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of beboard.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import BigInteger, Engine, create_engine  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from beboard.database.engine import init_db  # noqa: E402
from beboard.database.models import Category, UserRole  # noqa: E402
from beboard.engine.clock import FixedClock  # noqa: E402


# ---------------------------------------------------------------------------
# SQLite only autoincrements INTEGER PRIMARY KEY, not BIGINT.
# ---------------------------------------------------------------------------
@compiles(BigInteger, "sqlite")
def _compile_bigint_as_integer(type_, compiler, **kw):
    return "INTEGER"


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all BeBoard tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` in the rate limiter and by the
    TestClient's worker threads).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture
def clock() -> FixedClock:
    """Noon UTC on 1 March 2026; ``today()`` is 2026-03-01."""
    return FixedClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def make_user(db_engine):
    """Factory: ``make_user("alice")`` registers alice@example.com / password123."""
    from beboard.services import user_service

    counter = itertools.count(1)

    def _make(nickname: str | None = None, *, role: str = UserRole.USER,
              password: str = "password123"):
        nickname = nickname or f"user{next(counter)}"
        return user_service.register(
            db_engine,
            email=f"{nickname}@example.com",
            nickname=nickname,
            password=password,
            role=role,
        )

    return _make


@pytest.fixture
def category(db_engine) -> Category:
    with Session(db_engine, expire_on_commit=False) as session:
        cat = Category(name="Free talk", description="Anything goes", display_order=1)
        session.add(cat)
        session.commit()
        return cat


@pytest.fixture
def make_post(db_engine, category):
    from beboard.services import post_service

    def _make(author, *, title: str = "Hello", content: str = "First post"):
        return post_service.create_post(
            db_engine, author_id=author.id, title=title, content=content,
            category_id=category.id,
        )

    return _make


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
def make_token(user_id: int, nickname: str = "tester", role: str = "USER",
               token_type: str = "access") -> str:
    """Create a JWT.  Usable from fixtures and directly in tests."""
    import jwt

    from beboard.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": str(user_id), "nickname": nickname, "role": role, "type": token_type},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def auth_header(user) -> dict:
    return {"Authorization": f"Bearer {make_token(user.id, user.nickname, user.role)}"}


# ---------------------------------------------------------------------------
# API client wired to the in-memory engine
# ---------------------------------------------------------------------------
@pytest.fixture
def app_deps(db_engine, clock):
    """Override the app's singletons; yields the objects the routes will see."""
    from unittest.mock import MagicMock

    from beboard.api import deps
    from beboard.api.main import app
    from beboard.api.rate_limit import configure_rate_limiter
    from beboard.config import BoardConfig
    from beboard.engine.cache import TTLCache

    publisher = MagicMock()
    cache = TTLCache()
    cfg = BoardConfig(community_name="Test Board")

    app.dependency_overrides[deps.get_engine] = lambda: db_engine
    app.dependency_overrides[deps.get_config] = lambda: cfg
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_cache] = lambda: cache
    app.dependency_overrides[deps.get_publisher] = lambda: publisher
    configure_rate_limiter(engine=db_engine)

    yield {"publisher": publisher, "cache": cache, "config": cfg}

    app.dependency_overrides.clear()


@pytest.fixture
def client(app_deps):
    """FastAPI TestClient with raise_server_exceptions=False."""
    from fastapi.testclient import TestClient

    from beboard.api.main import app

    return TestClient(app, raise_server_exceptions=False)
