"""
yieldvault.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- chain_rate_configs  — Per-chain registry (APY, min deposit, payout wallet)
- contributions       — Verified user deposits + accrual checkpoints
- reward_records      — Append-only computed reward periods with claim status
- snapshots           — Immutable per-period holdings captures
- snapshot_holdings   — wallet → quantity rows of a snapshot
- distribution_pools  — Per-period revenue pool computations
- scheduler_leases    — Durable mutual exclusion for the accrual scheduler
- admin_log           — Append-only audit trail
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all YieldVault ORM models."""


# ---------------------------------------------------------------------------
# Exact decimal column
# ---------------------------------------------------------------------------
class Amount(TypeDecorator):
    """NUMERIC(38, 18) on PostgreSQL, decimal text on SQLite.

    SQLite has no exact decimal storage; pysqlite would round-trip through
    ``float`` and lose digits, so amounts are kept as their string form there.
    """

    impl = Numeric(38, 18)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(38, 18, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(Decimal(value))
        return Decimal(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ContributionStatus(enum.StrEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class WalletCategory(enum.StrEnum):
    """Who holds the keys of the depositing wallet."""
    CUSTODIAL = "custodial"
    EXTERNAL = "external"


class ClaimStatus(enum.StrEnum):
    PENDING = "pending"
    WITHDRAWN = "withdrawn"


class RewardSource(enum.StrEnum):
    ACCRUAL = "accrual"
    DISTRIBUTION = "distribution"


class PoolStatus(enum.StrEnum):
    COMPUTED = "computed"
    DISTRIBUTED = "distributed"


# ---------------------------------------------------------------------------
# ChainRateConfig — one row per supported chain
# ---------------------------------------------------------------------------
class ChainRateConfig(Base):
    """Per-chain yield configuration.

    Only the admin surface writes to this table.  A chain is never active
    without a validated ``bank_wallet_address``.
    """
    __tablename__ = "chain_rate_configs"

    chain: Mapped[str] = mapped_column(String(32), primary_key=True)
    native_asset: Mapped[str] = mapped_column(String(16), nullable=False)
    current_apy: Mapped[Decimal] = mapped_column(Amount, nullable=False, default=Decimal("0"))
    min_deposit: Mapped[Decimal] = mapped_column(Amount, nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    bank_wallet_address: Mapped[str | None] = mapped_column(String(128), default=None)
    usd_price: Mapped[Decimal | None] = mapped_column(Amount, nullable=True, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<ChainRateConfig chain={self.chain!r} apy={self.current_apy} "
            f"active={self.is_active}>"
        )


# ---------------------------------------------------------------------------
# Contribution — the ledger of deposits
# ---------------------------------------------------------------------------
class Contribution(Base):
    __tablename__ = "contributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_handle: Mapped[str] = mapped_column(String(100), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(128), nullable=False)
    wallet_category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WalletCategory.EXTERNAL.value
    )
    chain: Mapped[str] = mapped_column(
        String(32), ForeignKey("chain_rate_configs.chain"), nullable=False
    )
    native_asset: Mapped[str] = mapped_column(String(16), nullable=False)
    principal: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContributionStatus.PENDING.value
    )
    rewards_earned: Mapped[Decimal] = mapped_column(Amount, nullable=False, default=Decimal("0"))
    # None until the first accrual; the scheduler then falls back to verified_at.
    last_accrual_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    deposit_tx_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    memo: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    rewards: Mapped[list[RewardRecord]] = relationship(back_populates="contribution")

    __table_args__ = (
        Index("ix_contributions_status_chain", "status", "chain"),
        Index("ix_contributions_user", "user_handle"),
    )

    def __repr__(self) -> str:
        return (
            f"<Contribution id={self.id} user={self.user_handle!r} "
            f"chain={self.chain!r} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# RewardRecord — append-only computed rewards
# ---------------------------------------------------------------------------
class RewardRecord(Base):
    __tablename__ = "reward_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contribution_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("contributions.id"), nullable=True
    )
    distribution_period: Mapped[str | None] = mapped_column(String(32), nullable=True)
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RewardSource.ACCRUAL.value
    )
    user_handle: Mapped[str | None] = mapped_column(String(100), nullable=True)
    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    wallet_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reward_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    reward_amount_usd: Mapped[Decimal | None] = mapped_column(Amount, nullable=True)
    apy_applied: Mapped[Decimal | None] = mapped_column(Amount, nullable=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    claim_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClaimStatus.PENDING.value
    )
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    claim_tx_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    withdrawal_wallet_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    withdrawal_wallet_category: Mapped[str | None] = mapped_column(String(20), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    contribution: Mapped[Contribution | None] = relationship(back_populates="rewards")

    __table_args__ = (
        # One distribution payout per wallet per period; NULLs (accrual rows) never collide.
        UniqueConstraint(
            "distribution_period", "wallet_address", "chain",
            name="uq_reward_records_period_wallet",
        ),
        Index("ix_reward_records_status_chain", "claim_status", "chain"),
        Index("ix_reward_records_user", "user_handle", "claim_status"),
        Index("ix_reward_records_contribution", "contribution_id", "period_end"),
    )

    def __repr__(self) -> str:
        return (
            f"<RewardRecord id={self.id} chain={self.chain!r} "
            f"amount={self.reward_amount} status={self.claim_status}>"
        )


# ---------------------------------------------------------------------------
# Snapshot — immutable holdings capture per period
# ---------------------------------------------------------------------------
class Snapshot(Base):
    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period_key: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    chain: Mapped[str] = mapped_column(String(32), nullable=False)
    total_supply: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    wallet_count: Mapped[int] = mapped_column(Integer, default=0)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    holdings: Mapped[list[SnapshotHolding]] = relationship(
        back_populates="snapshot", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Snapshot period={self.period_key!r} wallets={self.wallet_count}>"


class SnapshotHolding(Base):
    __tablename__ = "snapshot_holdings"

    snapshot_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("snapshots.id", ondelete="CASCADE"), primary_key=True
    )
    wallet_address: Mapped[str] = mapped_column(String(128), primary_key=True)
    quantity: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    user_handle: Mapped[str | None] = mapped_column(String(100), nullable=True)

    snapshot: Mapped[Snapshot] = relationship(back_populates="holdings")

    def __repr__(self) -> str:
        return f"<SnapshotHolding wallet={self.wallet_address!r} qty={self.quantity}>"


# ---------------------------------------------------------------------------
# DistributionPool — revenue share computation per period
# ---------------------------------------------------------------------------
class DistributionPool(Base):
    __tablename__ = "distribution_pools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period_key: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    snapshot_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("snapshots.id"), nullable=False
    )
    revenue: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    pool_percentage: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    pool_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    distributed_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False, default=Decimal("0"))
    residual_dust: Mapped[Decimal] = mapped_column(Amount, nullable=False, default=Decimal("0"))
    wallet_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PoolStatus.COMPUTED.value
    )
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    distributed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    snapshot: Mapped[Snapshot] = relationship()

    def __repr__(self) -> str:
        return (
            f"<DistributionPool period={self.period_key!r} "
            f"pool={self.pool_amount} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# SchedulerLease — durable "exactly one scheduler" lock
# ---------------------------------------------------------------------------
class SchedulerLease(Base):
    __tablename__ = "scheduler_leases"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<SchedulerLease name={self.name!r} holder={self.holder!r}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id!r} action={self.action_type}>"
