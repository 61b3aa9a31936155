"""Initial YieldVault schema

Revision ID: 5c2e9a7b4d10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e9a7b4d10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

AMOUNT = sa.Numeric(38, 18)


def _ts(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kw)


def upgrade() -> None:
    """Create the chain registry, ledger, reward, distribution and audit tables."""
    op.create_table(
        "chain_rate_configs",
        sa.Column("chain", sa.String(32), primary_key=True),
        sa.Column("native_asset", sa.String(16), nullable=False),
        sa.Column("current_apy", AMOUNT, nullable=False, server_default="0"),
        sa.Column("min_deposit", AMOUNT, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("bank_wallet_address", sa.String(128), nullable=True),
        sa.Column("usd_price", AMOUNT, nullable=True),
        _ts("updated_at", server_default=sa.func.now()),
    )

    op.create_table(
        "contributions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_handle", sa.String(100), nullable=False),
        sa.Column("wallet_address", sa.String(128), nullable=False),
        sa.Column("wallet_category", sa.String(20), nullable=False),
        sa.Column("chain", sa.String(32), sa.ForeignKey("chain_rate_configs.chain"),
                  nullable=False),
        sa.Column("native_asset", sa.String(16), nullable=False),
        sa.Column("principal", AMOUNT, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("rewards_earned", AMOUNT, nullable=False, server_default="0"),
        _ts("last_accrual_at", nullable=True),
        _ts("verified_at", nullable=True),
        sa.Column("deposit_tx_ref", sa.String(128), nullable=True, unique=True),
        sa.Column("memo", sa.String(128), nullable=True),
        _ts("created_at", server_default=sa.func.now()),
    )
    op.create_index("ix_contributions_status_chain", "contributions", ["status", "chain"])
    op.create_index("ix_contributions_user", "contributions", ["user_handle"])

    op.create_table(
        "snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("period_key", sa.String(32), nullable=False, unique=True),
        sa.Column("chain", sa.String(32), nullable=False),
        sa.Column("total_supply", AMOUNT, nullable=False),
        sa.Column("wallet_count", sa.Integer(), nullable=False, server_default="0"),
        _ts("captured_at", server_default=sa.func.now()),
    )

    op.create_table(
        "snapshot_holdings",
        sa.Column("snapshot_id", sa.Integer(),
                  sa.ForeignKey("snapshots.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("wallet_address", sa.String(128), primary_key=True),
        sa.Column("quantity", AMOUNT, nullable=False),
        sa.Column("user_handle", sa.String(100), nullable=True),
    )

    op.create_table(
        "distribution_pools",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("period_key", sa.String(32), nullable=False, unique=True),
        sa.Column("snapshot_id", sa.Integer(), sa.ForeignKey("snapshots.id"), nullable=False),
        sa.Column("revenue", AMOUNT, nullable=False),
        sa.Column("pool_percentage", AMOUNT, nullable=False),
        sa.Column("pool_amount", AMOUNT, nullable=False),
        sa.Column("distributed_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("residual_dust", AMOUNT, nullable=False, server_default="0"),
        sa.Column("wallet_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False),
        _ts("computed_at", server_default=sa.func.now()),
        _ts("distributed_at", nullable=True),
    )

    op.create_table(
        "reward_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("contribution_id", sa.Integer(), sa.ForeignKey("contributions.id"),
                  nullable=True),
        sa.Column("distribution_period", sa.String(32), nullable=True),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("user_handle", sa.String(100), nullable=True),
        sa.Column("chain", sa.String(32), nullable=False),
        sa.Column("wallet_address", sa.String(128), nullable=True),
        sa.Column("reward_amount", AMOUNT, nullable=False),
        sa.Column("reward_amount_usd", AMOUNT, nullable=True),
        sa.Column("apy_applied", AMOUNT, nullable=True),
        _ts("period_start", nullable=False),
        _ts("period_end", nullable=False),
        sa.Column("claim_status", sa.String(20), nullable=False),
        _ts("computed_at", server_default=sa.func.now()),
        sa.Column("claim_tx_ref", sa.String(128), nullable=True),
        sa.Column("withdrawal_wallet_address", sa.String(128), nullable=True),
        sa.Column("withdrawal_wallet_category", sa.String(20), nullable=True),
        _ts("claimed_at", nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint("distribution_period", "wallet_address", "chain",
                            name="uq_reward_records_period_wallet"),
    )
    op.create_index("ix_reward_records_status_chain", "reward_records",
                    ["claim_status", "chain"])
    op.create_index("ix_reward_records_user", "reward_records",
                    ["user_handle", "claim_status"])
    op.create_index("ix_reward_records_contribution", "reward_records",
                    ["contribution_id", "period_end"])

    op.create_table(
        "scheduler_leases",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("holder", sa.String(128), nullable=False),
        _ts("acquired_at", nullable=False),
        _ts("expires_at", nullable=False),
    )

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(100), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        _ts("timestamp", server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index("ix_admin_log_target", "admin_log",
                    ["target_table", "target_id", "timestamp"])


def downgrade() -> None:
    """Drop every YieldVault table."""
    op.drop_table("admin_log")
    op.drop_table("scheduler_leases")
    op.drop_table("reward_records")
    op.drop_table("distribution_pools")
    op.drop_table("snapshot_holdings")
    op.drop_table("snapshots")
    op.drop_table("contributions")
    op.drop_table("chain_rate_configs")
