"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of yieldvault.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, datetime  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from yieldvault.config import YieldVaultConfig  # noqa: E402
from yieldvault.database.models import (  # noqa: E402
    Base,
    ChainRateConfig,
    Contribution,
    ContributionStatus,
)
from yieldvault.database.seed import seed_chain_registry  # noqa: E402


# ---------------------------------------------------------------------------
# SQLite doesn't know JSONB; render it as TEXT (SQLAlchemy's JSON
# serialisation still applies on bind/result).
# ---------------------------------------------------------------------------
@compiles(PG_JSONB, "sqlite")
def _compile_jsonb_as_text(type_, compiler, **kw):
    return "TEXT"


EVM_ADDRESS = "0x" + "aB" * 20
T0 = datetime(2026, 10, 1, 0, 0, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all tables and the seeded chain registry.

    StaticPool keeps one shared connection so every session (and thread)
    sees the same in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_chain_registry(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for tests that need real concurrent connections.

    Transactions open with ``BEGIN IMMEDIATE`` so competing writers queue on
    the database lock instead of failing on lock upgrade.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'yieldvault.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    seed_chain_registry(engine)
    return engine


@pytest.fixture
def cfg() -> YieldVaultConfig:
    return YieldVaultConfig(payment_executor_url="http://executor.test")


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------
def activate_chain(
    engine: Engine,
    chain: str = "ethereum",
    *,
    apy: str = "10",
    address: str = EVM_ADDRESS,
    usd_price: str | None = None,
    min_deposit: str = "0",
) -> None:
    with Session(engine) as session:
        row = session.get(ChainRateConfig, chain)
        row.current_apy = Decimal(apy)
        row.bank_wallet_address = address
        row.is_active = True
        row.min_deposit = Decimal(min_deposit)
        row.usd_price = Decimal(usd_price) if usd_price is not None else None
        session.commit()


def make_contribution(
    engine: Engine,
    *,
    user_handle: str = "alice",
    chain: str = "ethereum",
    principal: str = "1000",
    verified_at: datetime = T0,
    last_accrual_at: datetime | None = None,
    status: str = ContributionStatus.VERIFIED.value,
    wallet_address: str = "0x" + "11" * 20,
    wallet_category: str = "external",
) -> int:
    with Session(engine) as session:
        c = Contribution(
            user_handle=user_handle,
            wallet_address=wallet_address,
            wallet_category=wallet_category,
            chain=chain,
            native_asset=session.get(ChainRateConfig, chain).native_asset,
            principal=Decimal(principal),
            status=status,
            rewards_earned=Decimal("0"),
            verified_at=verified_at,
            last_accrual_at=last_accrual_at,
        )
        session.add(c)
        session.commit()
        return c.id


# ---------------------------------------------------------------------------
# Auth + API client
# ---------------------------------------------------------------------------
def make_admin_token(sub: str = "ops-admin", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from yieldvault.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": True},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def make_user_token(handle: str = "alice") -> str:
    import jwt

    from yieldvault.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": handle, "is_admin": False}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_token():
    return make_admin_token()


@pytest.fixture
def client(db_engine, cfg):
    """TestClient wired to the in-memory engine and test config."""
    from fastapi.testclient import TestClient

    from yieldvault.api.deps import get_config, get_engine
    from yieldvault.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: cfg
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()
