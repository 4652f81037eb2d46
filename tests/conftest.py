"""
Test configuration and fixtures.

Provides:
- A fresh in-memory SQLite database per test (StaticPool, so every session
  sees the same connection), bootstrapped with the real schema bootstrap
- get_db overridden with the same commit/rollback semantics as production
- HTTPX AsyncClient over the ASGI app
- Seeder for users, tenants and branches, and token helpers
"""
import itertools
import os
from typing import AsyncGenerator, Optional

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["APP_ENV"] = "test"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dealerdesk.core.security import create_access_token, hash_password
from dealerdesk.db.bootstrap import bootstrap_schema
from dealerdesk.db.session import get_db
from dealerdesk.models import Branch, Tenant, User
from main import app

TEST_PASSWORD = "secret123"

# Hashing is slow on purpose; seed every user with the same stored form
_TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await bootstrap_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def client(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# =============================================================================
# Seed data
# =============================================================================

class Seeder:
    """Commits each object in its own short session and returns it detached."""

    _sequence = itertools.count(1)

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def _save(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
        return obj

    async def user(
        self,
        *,
        role: str = "user",
        name: str = "Test User",
        email: Optional[str] = None,
        phone: Optional[str] = None,
        tenant_id: Optional[int] = None,
        branch_id: Optional[int] = None,
    ) -> User:
        n = next(self._sequence)
        return await self._save(
            User(
                name=name,
                email=email or f"user{n}@example.com",
                phone=phone,
                password=_TEST_PASSWORD_HASH,
                role=role,
                status="active",
                tenant_id=tenant_id,
                branch_id=branch_id,
            )
        )

    async def owner(self, *, max_branches: int = 1) -> tuple[User, Tenant]:
        """An owner user together with its tenant record."""
        user = await self.user(role="owner", name="Owner")
        tenant = await self._save(Tenant(user_id=user.id, max_branches=max_branches))
        async with self.session_factory() as session:
            db_user = await session.get(User, user.id)
            db_user.tenant_id = tenant.id
            await session.commit()
        user.tenant_id = tenant.id
        return user, tenant

    async def admin(self) -> User:
        return await self.user(role="admin", name="Admin")

    async def branch(self, *, tenant_id: int, code: str, name: Optional[str] = None) -> Branch:
        return await self._save(
            Branch(
                tenant_id=tenant_id,
                code=code.upper(),
                name=name or f"Branch {code.upper()}",
                type="sales & services",
                status="active",
                team={},
            )
        )

    async def count(self, model, *criteria) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model).where(*criteria))
            return result.scalar_one()

    async def fetch_all(self, model, *criteria) -> list:
        async with self.session_factory() as session:
            result = await session.execute(select(model).where(*criteria).order_by(model.id))
            return list(result.scalars().all())

    async def get(self, model, ident):
        async with self.session_factory() as session:
            return await session.get(model, ident)


@pytest.fixture
def seed(session_factory: async_sessionmaker) -> Seeder:
    return Seeder(session_factory)


# =============================================================================
# Auth helpers
# =============================================================================

def token_for(user: User) -> str:
    return create_access_token(user_id=user.id, email=user.email, role=user.role)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}
