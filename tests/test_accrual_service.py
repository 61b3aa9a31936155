"""
tests/test_accrual_service.py — Accrual Scheduler Integration Tests
====================================================================
Runs the accrual batch against the in-memory SQLite engine with an injected
clock.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from conftest import T0, activate_chain, make_contribution
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from yieldvault.constants import ACCRUAL_LEASE_NAME
from yieldvault.database.engine import as_utc
from yieldvault.database.models import Contribution, ContributionStatus, RewardRecord
from yieldvault.engine import accrual as accrual_engine
from yieldvault.services import accrual_service
from yieldvault.services.lease_service import acquire_lease


def _records(engine, contribution_id: int | None = None) -> list[RewardRecord]:
    with Session(engine) as session:
        stmt = select(RewardRecord).order_by(RewardRecord.id)
        if contribution_id is not None:
            stmt = stmt.where(RewardRecord.contribution_id == contribution_id)
        return list(session.scalars(stmt))


def _contribution(engine, contribution_id: int) -> Contribution:
    with Session(engine) as session:
        return session.get(Contribution, contribution_id)


class TestEndToEnd:
    def test_forty_eight_hour_scenario(self, db_engine, cfg):
        """Principal 1000 at 10% APY, verified 48h ago, never accrued."""
        activate_chain(db_engine, "ethereum", apy="10")
        cid = make_contribution(db_engine, principal="1000", verified_at=T0)
        now = T0 + timedelta(hours=48)

        result = accrual_service.run_accrual(db_engine, cfg, now=now)

        assert result.status == "completed"
        assert result.accrued == 1
        assert result.errors == []

        records = _records(db_engine, cid)
        assert len(records) == 1
        record = records[0]
        expected = accrual_engine.calculate_reward(Decimal("1000"), Decimal("10"), 48)
        assert record.reward_amount == expected
        assert Decimal("0.5480") < record.reward_amount < Decimal("0.5482")
        assert as_utc(record.period_start) == T0
        assert as_utc(record.period_end) == now
        assert record.claim_status == "pending"
        assert record.apy_applied == Decimal("10")

        c = _contribution(db_engine, cid)
        assert as_utc(c.last_accrual_at) == now
        assert c.rewards_earned == expected
        assert result.total_rewarded == expected

    def test_usd_amount_uses_chain_price(self, db_engine, cfg):
        activate_chain(db_engine, "ethereum", apy="10", usd_price="2000")
        cid = make_contribution(db_engine)
        accrual_service.run_accrual(db_engine, cfg, now=T0 + timedelta(hours=48))
        record = _records(db_engine, cid)[0]
        assert record.reward_amount_usd == accrual_engine.quantize_amount(
            record.reward_amount * 2000
        )

    def test_usd_amount_absent_without_price(self, db_engine, cfg):
        activate_chain(db_engine, "ethereum")
        cid = make_contribution(db_engine)
        accrual_service.run_accrual(db_engine, cfg, now=T0 + timedelta(hours=5))
        assert _records(db_engine, cid)[0].reward_amount_usd is None


class TestIdempotence:
    def test_second_run_inside_the_hour_is_a_no_op(self, db_engine, cfg):
        activate_chain(db_engine)
        cid = make_contribution(db_engine)
        first_now = T0 + timedelta(hours=48)
        accrual_service.run_accrual(db_engine, cfg, now=first_now)

        second = accrual_service.run_accrual(
            db_engine, cfg, now=first_now + timedelta(minutes=30)
        )

        assert second.accrued == 0
        assert second.skipped == 1
        assert len(_records(db_engine, cid)) == 1
        assert as_utc(_contribution(db_engine, cid).last_accrual_at) == first_now

    def test_periods_chain_without_overlap(self, db_engine, cfg):
        activate_chain(db_engine)
        cid = make_contribution(db_engine)
        for h in (3, 7, 20):
            accrual_service.run_accrual(db_engine, cfg, now=T0 + timedelta(hours=h))

        records = _records(db_engine, cid)
        assert len(records) == 3
        for prev, nxt in zip(records, records[1:]):
            assert as_utc(prev.period_end) == as_utc(nxt.period_start)

    def test_split_runs_owe_the_same_as_one_run(self, db_engine, cfg):
        activate_chain(db_engine)
        split = make_contribution(db_engine, user_handle="split")
        for h in (10, 30, 48):
            accrual_service.accrue_contribution(
                db_engine, split, now=T0 + timedelta(hours=h),
                min_elapsed_hours=Decimal("1"), negligible_threshold=Decimal("0"),
            )
        whole = accrual_engine.calculate_reward(Decimal("1000"), Decimal("10"), 48)
        earned = _contribution(db_engine, split).rewards_earned
        assert abs(earned - whole) < Decimal("1e-15")


class TestSkipping:
    def test_inactive_chain_is_skipped(self, db_engine, cfg):
        cid = make_contribution(db_engine, chain="bsc")  # seeded inactive
        result = accrual_service.run_accrual(db_engine, cfg, now=T0 + timedelta(hours=48))
        assert result.skipped == 1
        assert _records(db_engine, cid) == []

    def test_pending_and_rejected_contributions_never_accrue(self, db_engine, cfg):
        activate_chain(db_engine)
        make_contribution(db_engine, status=ContributionStatus.PENDING.value)
        make_contribution(db_engine, status=ContributionStatus.REJECTED.value)
        result = accrual_service.run_accrual(db_engine, cfg, now=T0 + timedelta(hours=48))
        assert result.processed == 0
        assert _records(db_engine) == []

    def test_negligible_reward_does_not_advance_checkpoint(self, db_engine, cfg):
        activate_chain(db_engine, apy="0")
        cid = make_contribution(db_engine)
        result = accrual_service.run_accrual(db_engine, cfg, now=T0 + timedelta(hours=48))
        assert result.skipped == 1
        assert _contribution(db_engine, cid).last_accrual_at is None

    def test_checkpoint_falls_back_to_verified_at(self, db_engine, cfg):
        activate_chain(db_engine)
        cid = make_contribution(db_engine, verified_at=T0, last_accrual_at=None)
        c = _contribution(db_engine, cid)
        assert accrual_service.accrual_start(c) == T0


class TestFailures:
    def test_one_failing_contribution_does_not_stop_the_batch(self, db_engine, cfg):
        activate_chain(db_engine)
        good = make_contribution(db_engine, principal="1000")
        bad = make_contribution(db_engine, principal="666")
        real = accrual_engine.calculate_reward

        def flaky(base, apy, hours):
            if base == Decimal("666"):
                raise RuntimeError("boom")
            return real(base, apy, hours)

        now = T0 + timedelta(hours=24)
        with patch.object(accrual_service, "calculate_reward", side_effect=flaky):
            result = accrual_service.run_accrual(db_engine, cfg, now=now)

        assert result.processed == 2
        assert result.accrued == 1
        assert result.errors == [{"contribution_id": bad, "error": "boom"}]
        assert len(_records(db_engine, good)) == 1
        assert _records(db_engine, bad) == []
        assert _contribution(db_engine, bad).last_accrual_at is None

        # Retried on the next run, from the untouched start.
        retry = accrual_service.run_accrual(db_engine, cfg, now=now + timedelta(hours=24))
        assert retry.errors == []
        records = _records(db_engine, bad)
        assert len(records) == 1
        assert as_utc(records[0].period_start) == T0

    def test_lost_checkpoint_race_writes_nothing(self, db_engine, cfg):
        activate_chain(db_engine)
        cid = make_contribution(db_engine)
        moved = T0 + timedelta(hours=10)
        real = accrual_engine.calculate_reward

        def move_checkpoint_then_compute(base, apy, hours):
            with Session(db_engine) as session:
                session.get(Contribution, cid).last_accrual_at = moved
                session.commit()
            return real(base, apy, hours)

        with patch.object(accrual_service, "calculate_reward",
                          side_effect=move_checkpoint_then_compute):
            record = accrual_service.accrue_contribution(
                db_engine, cid, now=T0 + timedelta(hours=12),
                min_elapsed_hours=Decimal("1"), negligible_threshold=Decimal("0"),
            )

        assert record is None
        assert _records(db_engine, cid) == []
        assert as_utc(_contribution(db_engine, cid).last_accrual_at) == moved


class TestLease:
    def test_run_is_locked_while_another_holder_has_the_lease(self, db_engine, cfg):
        activate_chain(db_engine)
        make_contribution(db_engine)
        now = T0 + timedelta(hours=48)
        assert acquire_lease(db_engine, ACCRUAL_LEASE_NAME, "other-host", 900, now=now)

        result = accrual_service.run_accrual(db_engine, cfg, now=now)

        assert result.status == "locked"
        assert result.processed == 0
        assert _records(db_engine) == []

    def test_expired_lease_is_taken_over(self, db_engine, cfg):
        activate_chain(db_engine)
        make_contribution(db_engine)
        acquire_lease(db_engine, ACCRUAL_LEASE_NAME, "crashed-host", 60, now=T0)

        result = accrual_service.run_accrual(db_engine, cfg, now=T0 + timedelta(hours=48))

        assert result.status == "completed"
        assert result.accrued == 1

    def test_lease_released_after_run(self, db_engine, cfg):
        from yieldvault.database.models import SchedulerLease

        accrual_service.run_accrual(db_engine, cfg, now=T0)
        with Session(db_engine) as session:
            assert session.scalar(select(func.count()).select_from(SchedulerLease)) == 0


class TestResultShape:
    def test_to_dict_serialises_amounts_as_strings(self, db_engine, cfg):
        activate_chain(db_engine)
        make_contribution(db_engine)
        data = accrual_service.run_accrual(
            db_engine, cfg, now=T0 + timedelta(hours=48)
        ).to_dict()
        assert data["status"] == "completed"
        assert isinstance(data["total_rewarded"], str)
        assert data["started_at"].startswith("2026-10-03")
