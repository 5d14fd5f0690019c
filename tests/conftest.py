"""
Shared pytest fixtures for the permission engine tests.

Provides:
- A fresh file-backed SQLite database per test (schema created, catalog synced)
- A resolver bound to that database
- User and token factories
- An HTTP client for atlas.main.app with database and engine overrides
"""
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.core import config
from atlas.core.database.base import generate_ulid
from atlas.core.database.engine import get_db, init_db, make_engine, make_session_factory
from atlas.features.permissions.catalog import catalog, sync_catalog
from atlas.features.permissions.decision import DecisionPoint
from atlas.features.permissions.dependencies import get_decision_point, get_resolver
from atlas.features.permissions.models import Permission
from atlas.features.permissions.resolver import PermissionResolver
from atlas.features.users.models import User


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
async def engine(tmp_path):
    test_engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'atlas-test.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def permissions(db) -> dict[str, Permission]:
    """Catalog permissions by key, stored in the test database."""
    return await sync_catalog(db, catalog)


@pytest.fixture
def resolver(session_factory) -> PermissionResolver:
    return PermissionResolver(session_factory, ttl=60, timeout=2)


# ============================================================================
# User Fixtures
# ============================================================================

@pytest.fixture
def make_user(db):
    async def _make_user(role_id=None, is_active=True) -> User:
        user = User(
            email=f"{generate_ulid().lower()}@example.com",
            name="Test User",
            role_id=role_id,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


def make_token(user_id: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    payload = {"sub": user_id, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {make_token(user.id)}"}


# ============================================================================
# API Client Fixtures
# ============================================================================

@pytest.fixture
def override_get_db(session_factory):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return _get_db


@pytest.fixture
async def client(override_get_db, resolver, permissions) -> AsyncGenerator[AsyncClient, None]:
    from atlas.main import app

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_resolver] = lambda: resolver
    app.dependency_overrides[get_decision_point] = lambda: DecisionPoint(catalog)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
