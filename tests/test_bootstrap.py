import pytest
from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from dealerdesk.db.bootstrap import bootstrap_schema


def _schema(connection):
    inspector = inspect(connection)
    return {
        table: (
            sorted(col["name"] for col in inspector.get_columns(table)),
            sorted(ix["name"] for ix in inspector.get_indexes(table)),
        )
        for table in inspector.get_table_names()
    }


@pytest.fixture
async def bare_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


async def test_bootstrap_creates_every_table(bare_engine):
    await bootstrap_schema(bare_engine)

    async with bare_engine.connect() as conn:
        schema = await conn.run_sync(_schema)

    assert {"tenants", "users", "branches", "branch_requests"} <= set(schema)
    assert "users_branch_role_unique" in schema["users"][1]
    assert "users_phone_unique" in schema["users"][1]


async def test_bootstrap_is_idempotent(bare_engine):
    await bootstrap_schema(bare_engine)
    async with bare_engine.connect() as conn:
        first = await conn.run_sync(_schema)

    await bootstrap_schema(bare_engine)
    async with bare_engine.connect() as conn:
        second = await conn.run_sync(_schema)

    assert first == second


async def test_bootstrap_adds_missing_columns_to_an_old_table(bare_engine):
    async with bare_engine.begin() as conn:
        await conn.execute(
            text(
                "CREATE TABLE users ("
                " id INTEGER PRIMARY KEY,"
                " name VARCHAR(255) NOT NULL,"
                " email VARCHAR(320) NOT NULL UNIQUE,"
                " password VARCHAR(255) NOT NULL)"
            )
        )
        await conn.execute(
            text("INSERT INTO users (name, email, password) VALUES ('Old', 'old@example.com', 'x:y')")
        )

    await bootstrap_schema(bare_engine)

    async with bare_engine.connect() as conn:
        columns = (await conn.run_sync(_schema))["users"][0]
        row = (await conn.execute(text("SELECT role, status, reset_token FROM users"))).one()

    assert {"phone", "role", "status", "tenant_id", "branch_id", "reset_token"} <= set(columns)
    assert row.role == "user"
    assert row.status == "active"
    assert row.reset_token is None
