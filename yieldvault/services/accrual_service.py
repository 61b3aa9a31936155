"""
yieldvault.services.accrual_service — Scheduled Accrual Batch
==============================================================

One run walks every verified contribution and, for each one that is due:

  1. Reads the chain's current APY (skips missing / inactive chains)
  2. Computes the compound reward since the checkpoint
  3. Appends a pending ``reward_records`` row, bumps ``rewards_earned`` and
     advances ``last_accrual_at`` — one transaction, guarded by a
     conditional UPDATE on the checkpoint it started from

Compounding base is ``principal + rewards_earned``, so accruing in several
short steps owes the same total as one long step.

A durable lease (:mod:`yieldvault.services.lease_service`) makes sure only
one batch runs at a time.  One contribution failing never stops the batch;
the failure is logged, counted and retried on the next run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from yieldvault.config import YieldVaultConfig
from yieldvault.constants import ACCRUAL_LEASE_NAME
from yieldvault.database.engine import as_utc, utcnow
from yieldvault.database.models import (
    ChainRateConfig,
    ClaimStatus,
    Contribution,
    ContributionStatus,
    RewardRecord,
    RewardSource,
)
from yieldvault.engine.accrual import calculate_reward, hours_between, is_negligible, quantize_amount
from yieldvault.services.lease_service import held_lease

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result objects
# ---------------------------------------------------------------------------
@dataclass
class AccrualRunResult:
    status: str = "completed"   # completed | locked
    processed: int = 0
    accrued: int = 0
    skipped: int = 0
    errors: list[dict] = field(default_factory=list)
    total_rewarded: Decimal = Decimal("0")
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "processed": self.processed,
            "accrued": self.accrued,
            "skipped": self.skipped,
            "errors": self.errors,
            "total_rewarded": str(self.total_rewarded),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


# ---------------------------------------------------------------------------
# Checkpoint helper
# ---------------------------------------------------------------------------
def accrual_start(contribution: Contribution) -> datetime | None:
    """Where the next accrual period begins: the checkpoint, else verified-at."""
    if contribution.last_accrual_at is not None:
        return as_utc(contribution.last_accrual_at)
    return as_utc(contribution.verified_at)


def _usd_value(amount: Decimal, usd_price: Decimal | None) -> Decimal | None:
    if usd_price is None:
        return None
    return quantize_amount(amount * usd_price)


# ---------------------------------------------------------------------------
# Single contribution
# ---------------------------------------------------------------------------
def accrue_contribution(
    engine: Engine,
    contribution_id: int,
    *,
    now: datetime,
    min_elapsed_hours: Decimal,
    negligible_threshold: Decimal,
) -> RewardRecord | None:
    """Accrue one contribution up to *now*.

    Returns the new :class:`RewardRecord` (expunged), or ``None`` if the
    contribution was not due, not eligible, or lost a race with another
    writer.
    """
    with Session(engine, expire_on_commit=False) as session:
        contribution = session.get(Contribution, contribution_id)
        if contribution is None or contribution.status != ContributionStatus.VERIFIED.value:
            return None

        chain_cfg = session.get(ChainRateConfig, contribution.chain)
        if chain_cfg is None:
            logger.warning(
                "Contribution %s references unknown chain %s; skipping",
                contribution_id, contribution.chain,
            )
            return None
        if not chain_cfg.is_active:
            logger.debug("Chain %s inactive; skipping contribution %s",
                         contribution.chain, contribution_id)
            return None

        start = accrual_start(contribution)
        if start is None:
            logger.warning("Contribution %s is verified without verified_at; skipping",
                           contribution_id)
            return None

        hours = hours_between(start, now)
        if hours <= 0 or hours < min_elapsed_hours:
            return None

        base = contribution.principal + contribution.rewards_earned
        reward = calculate_reward(base, chain_cfg.current_apy, hours)
        if is_negligible(reward, negligible_threshold):
            return None

        previous_checkpoint = contribution.last_accrual_at
        checkpoint_guard = (
            Contribution.last_accrual_at.is_(None)
            if previous_checkpoint is None
            else Contribution.last_accrual_at == previous_checkpoint
        )
        result = session.execute(
            update(Contribution)
            .where(
                Contribution.id == contribution_id,
                Contribution.status == ContributionStatus.VERIFIED.value,
                checkpoint_guard,
            )
            .values(
                rewards_earned=contribution.rewards_earned + reward,
                last_accrual_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            logger.info("Contribution %s checkpoint moved concurrently; skipping",
                        contribution_id)
            return None

        record = RewardRecord(
            contribution_id=contribution.id,
            source=RewardSource.ACCRUAL.value,
            user_handle=contribution.user_handle,
            chain=contribution.chain,
            wallet_address=contribution.wallet_address,
            reward_amount=reward,
            reward_amount_usd=_usd_value(reward, chain_cfg.usd_price),
            apy_applied=chain_cfg.current_apy,
            period_start=start,
            period_end=now,
            claim_status=ClaimStatus.PENDING.value,
        )
        session.add(record)
        session.commit()
        session.refresh(record)
        session.expunge(record)
        return record


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------
def _verified_ids(engine: Engine, chain: str | None = None) -> list[int]:
    with Session(engine) as session:
        stmt = select(Contribution.id).where(
            Contribution.status == ContributionStatus.VERIFIED.value
        )
        if chain is not None:
            stmt = stmt.where(Contribution.chain == chain)
        return list(session.scalars(stmt.order_by(Contribution.id)))


def _accrue_all(
    engine: Engine,
    result: AccrualRunResult,
    *,
    now: datetime,
    min_elapsed_hours: Decimal,
    negligible_threshold: Decimal,
    chain: str | None = None,
) -> None:
    for contribution_id in _verified_ids(engine, chain):
        result.processed += 1
        try:
            record = accrue_contribution(
                engine,
                contribution_id,
                now=now,
                min_elapsed_hours=min_elapsed_hours,
                negligible_threshold=negligible_threshold,
            )
        except Exception as exc:
            logger.exception("Accrual failed for contribution %s", contribution_id)
            result.errors.append({"contribution_id": contribution_id, "error": str(exc)})
            continue
        if record is None:
            result.skipped += 1
        else:
            result.accrued += 1
            result.total_rewarded += record.reward_amount


def run_accrual(
    engine: Engine,
    cfg: YieldVaultConfig,
    *,
    now: datetime | None = None,
    holder: str | None = None,
) -> AccrualRunResult:
    """Run one accrual batch under the scheduler lease.

    The scheduled job and the admin "recalculate" trigger both call this.
    If another process holds the lease the run returns ``status="locked"``
    and touches nothing.
    """
    now = as_utc(now) if now is not None else utcnow()
    result = AccrualRunResult(started_at=now)

    with held_lease(engine, ACCRUAL_LEASE_NAME, cfg.lease_ttl_seconds,
                    holder=holder, now=now) as acquired:
        if not acquired:
            result.status = "locked"
            result.finished_at = utcnow()
            logger.info("Accrual run skipped: lease held elsewhere")
            return result

        _accrue_all(
            engine,
            result,
            now=now,
            min_elapsed_hours=cfg.min_elapsed_hours,
            negligible_threshold=cfg.negligible_threshold,
        )

    result.finished_at = utcnow()
    logger.info(
        "Accrual run done: processed=%d accrued=%d skipped=%d errors=%d total=%s",
        result.processed, result.accrued, result.skipped, len(result.errors),
        result.total_rewarded,
    )
    return result


def flush_chain(
    engine: Engine,
    chain: str,
    *,
    now: datetime | None = None,
) -> AccrualRunResult:
    """Accrue everything owed on *chain* up to *now*, sub-hour remainders included.

    Called right before a chain is disabled, while it is still active, so
    the time between the last scheduled run and the shutdown is not lost.
    """
    now = as_utc(now) if now is not None else utcnow()
    result = AccrualRunResult(started_at=now)
    _accrue_all(
        engine,
        result,
        now=now,
        min_elapsed_hours=Decimal("0"),
        negligible_threshold=Decimal("0"),
        chain=chain,
    )
    result.finished_at = utcnow()
    logger.info("Flushed chain %s: accrued=%d total=%s", chain, result.accrued,
                result.total_rewarded)
    return result


def advance_checkpoints(engine: Engine, chain: str, *, now: datetime | None = None) -> int:
    """Move every verified contribution's checkpoint on *chain* up to *now*.

    Used when a chain is (re-)enabled so the disabled window is never
    accrued.  Checkpoints already past *now* are left alone.
    """
    now = as_utc(now) if now is not None else utcnow()
    with Session(engine) as session:
        contributions = session.scalars(
            select(Contribution).where(
                Contribution.chain == chain,
                Contribution.status == ContributionStatus.VERIFIED.value,
            )
        ).all()
        moved = 0
        for contribution in contributions:
            start = accrual_start(contribution)
            if start is None or start < now:
                contribution.last_accrual_at = now
                moved += 1
        session.commit()
    if moved:
        logger.info("Advanced %d checkpoints on %s to %s", moved, chain, now.isoformat())
    return moved
