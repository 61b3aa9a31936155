"""
tests/test_distribution_service.py — Snapshots & Revenue Distribution
======================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from conftest import T0
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from yieldvault.database.engine import as_utc
from yieldvault.database.models import RewardRecord, SnapshotHolding
from yieldvault.errors import NotFoundError, ValidationError
from yieldvault.services import distribution_service
from yieldvault.services.holdings_source import Holding, HoldingsSource


def _distribution_records(engine, period_key: str) -> list[RewardRecord]:
    with Session(engine) as session:
        return list(session.scalars(
            select(RewardRecord)
            .where(RewardRecord.distribution_period == period_key)
            .order_by(RewardRecord.wallet_address)
        ))


class TestPeriodKeys:
    def test_month_key(self):
        assert distribution_service.month_key(T0) == "2026-10"

    def test_bounds_roll_over_the_year(self):
        start, end = distribution_service.period_bounds("2026-12")
        assert start == datetime(2026, 12, 1, tzinfo=UTC)
        assert end == datetime(2027, 1, 1, tzinfo=UTC)

    @pytest.mark.parametrize("key", ["2026-13", "q4-2026", "2026-1"])
    def test_free_form_keys_have_no_bounds(self, key):
        assert distribution_service.period_bounds(key) is None


class TestCaptureSnapshot:
    def test_insert_then_skip(self, db_engine):
        snap, created = distribution_service.capture_snapshot(
            db_engine, "2026-10", "xrpl", {"rA": "30", "rB": "70", "rZ": "0"},
        )
        assert created
        assert snap.total_supply == Decimal("100")
        assert snap.wallet_count == 2

        again, created_again = distribution_service.capture_snapshot(
            db_engine, "2026-10", "xrpl", {"rC": "999"},
        )
        assert not created_again
        assert again.id == snap.id
        assert again.total_supply == Decimal("100")
        with Session(db_engine) as session:
            wallets = set(session.scalars(
                select(SnapshotHolding.wallet_address).where(SnapshotHolding.snapshot_id == snap.id)
            ))
        assert wallets == {"rA", "rB", "rZ"}

    def test_accepts_holding_objects_and_merges_duplicates(self, db_engine):
        snap, _ = distribution_service.capture_snapshot(db_engine, "2026-11", "xrpl", [
            Holding(wallet="rA", quantity=Decimal("1"), user_handle="alice"),
            Holding(wallet="rA", quantity=Decimal("2")),
        ])
        assert snap.total_supply == Decimal("3")
        with Session(db_engine) as session:
            holding = session.get(SnapshotHolding, (snap.id, "rA"))
        assert holding.quantity == Decimal("3")
        assert holding.user_handle == "alice"

    @pytest.mark.parametrize("holdings", [{"rA": "-1"}, {"rA": "lots"}, {"": "1"}])
    def test_invalid_holdings_rejected(self, db_engine, holdings):
        with pytest.raises(ValidationError):
            distribution_service.capture_snapshot(db_engine, "2026-10", "xrpl", holdings)

    def test_capture_from_source_uses_month_key(self, db_engine, cfg):
        source = MagicMock(spec=HoldingsSource)
        source.fetch.return_value = [Holding(wallet="rA", quantity=Decimal("5"))]

        snap, created = distribution_service.capture_from_source(db_engine, cfg, source, now=T0)

        source.fetch.assert_called_once_with("xrpl")
        assert created
        assert snap.period_key == "2026-10"
        assert snap.chain == "xrpl"


class TestDistributePool:
    def _snapshot(self, engine, key="2026-10", holdings=None):
        distribution_service.capture_snapshot(
            engine, key, "xrpl", holdings or {"A": "30", "B": "70"},
        )

    def test_thirty_seventy_split(self, db_engine, cfg):
        self._snapshot(db_engine)

        result = distribution_service.distribute_pool(
            db_engine, "2026-10", "1000", cfg=cfg, actor_id="ops",
        )

        assert not result["already_distributed"]
        assert result["status"] == "distributed"
        assert Decimal(result["pool_amount"]) == Decimal("250")
        assert Decimal(result["distributed_amount"]) == Decimal("250")
        assert {a["wallet_address"]: Decimal(a["amount"]) for a in result["allocations"]} == {
            "A": Decimal("75"), "B": Decimal("175"),
        }
        records = _distribution_records(db_engine, "2026-10")
        assert all(r.claim_status == "pending" for r in records)
        assert all(r.source == "distribution" for r in records)
        assert records[0].reward_amount_usd == records[0].reward_amount
        assert as_utc(records[0].period_start) == datetime(2026, 10, 1, tzinfo=UTC)
        assert as_utc(records[0].period_end) == datetime(2026, 11, 1, tzinfo=UTC)

    def test_second_run_is_a_no_op(self, db_engine, cfg):
        self._snapshot(db_engine)
        first = distribution_service.distribute_pool(
            db_engine, "2026-10", "1000", cfg=cfg, actor_id="ops",
        )
        second = distribution_service.distribute_pool(
            db_engine, "2026-10", "5000", cfg=cfg, actor_id="ops",
        )

        assert second["already_distributed"]
        assert second["pool_amount"] == first["pool_amount"]
        assert second["allocations"] == first["allocations"]
        with Session(db_engine) as session:
            count = session.scalar(
                select(func.count()).select_from(RewardRecord)
                .where(RewardRecord.distribution_period == "2026-10")
            )
        assert count == 2

    def test_conservation_with_dust(self, db_engine, cfg):
        self._snapshot(db_engine, holdings={"A": "1", "B": "1", "C": "1"})
        result = distribution_service.distribute_pool(
            db_engine, "2026-10", "1", cfg=cfg, actor_id="ops", pool_percentage="1",
        )
        total = sum(Decimal(a["amount"]) for a in result["allocations"])
        assert total == Decimal(result["distributed_amount"])
        assert total + Decimal(result["residual_dust"]) == Decimal(result["pool_amount"])
        assert Decimal(result["residual_dust"]) == Decimal("1e-18")

    def test_percentage_override(self, db_engine, cfg):
        self._snapshot(db_engine)
        result = distribution_service.distribute_pool(
            db_engine, "2026-10", "1000", cfg=cfg, actor_id="ops", pool_percentage="0.5",
        )
        assert Decimal(result["pool_amount"]) == Decimal("500")

    @pytest.mark.parametrize("revenue,pct", [
        ("-5", None), ("abc", None), ("10", "1.5"), ("10", "NaN"),
    ])
    def test_invalid_inputs(self, db_engine, cfg, revenue, pct):
        self._snapshot(db_engine)
        with pytest.raises(ValidationError):
            distribution_service.distribute_pool(
                db_engine, "2026-10", revenue, cfg=cfg, actor_id="ops", pool_percentage=pct,
            )
        assert _distribution_records(db_engine, "2026-10") == []

    def test_missing_snapshot(self, db_engine, cfg):
        with pytest.raises(NotFoundError):
            distribution_service.distribute_pool(
                db_engine, "2031-01", "1000", cfg=cfg, actor_id="ops",
            )

    def test_get_distribution(self, db_engine, cfg):
        self._snapshot(db_engine)
        distribution_service.distribute_pool(db_engine, "2026-10", "1000", cfg=cfg, actor_id="ops")
        stored = distribution_service.get_distribution(db_engine, "2026-10")
        assert stored["wallet_count"] == 2
        with pytest.raises(NotFoundError):
            distribution_service.get_distribution(db_engine, "2026-09")
