"""
yieldvault.services.distribution_service — Snapshots & Revenue Distribution
============================================================================

1. ``capture_snapshot`` freezes ``wallet → quantity`` for a period key
   (insert-or-skip: a period is captured at most once).
2. ``distribute_pool`` splits ``revenue × pool_percentage`` across the
   snapshot pro rata and writes one pending reward record per wallet.
   Running it again for the same period changes nothing and reports the
   earlier result.

Distribution rewards are denominated in the revenue's unit (USD), so
``reward_amount`` and ``reward_amount_usd`` carry the same value.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from yieldvault.config import YieldVaultConfig
from yieldvault.database.engine import as_utc, utcnow
from yieldvault.database.models import (
    ClaimStatus,
    DistributionPool,
    PoolStatus,
    RewardRecord,
    RewardSource,
    Snapshot,
    SnapshotHolding,
)
from yieldvault.engine.distribution import allocate_pool
from yieldvault.errors import NotFoundError, ValidationError
from yieldvault.services.admin_service import _log_admin_action
from yieldvault.services.holdings_source import Holding, HoldingsSource

logger = logging.getLogger(__name__)

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


def month_key(moment: datetime) -> str:
    """``2026-10`` for any moment in October 2026 (UTC)."""
    return as_utc(moment).strftime("%Y-%m")


def period_bounds(period_key: str) -> tuple[datetime, datetime] | None:
    """Calendar bounds of a ``YYYY-MM`` key, or ``None`` for free-form keys."""
    m = _MONTH_KEY_RE.match(period_key)
    if not m:
        return None
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        return None
    start = datetime(year, month, 1, tzinfo=UTC)
    end = datetime(year + (month == 12), month % 12 + 1, 1, tzinfo=UTC)
    return start, end


def _normalise_holdings(
    holdings: Mapping[str, Any] | Iterable[Holding],
) -> dict[str, tuple[Decimal, str | None]]:
    items: dict[str, tuple[Decimal, str | None]] = {}
    if isinstance(holdings, Mapping):
        pairs = [(w, q, None) for w, q in holdings.items()]
    else:
        pairs = [(h.wallet, h.quantity, h.user_handle) for h in holdings]

    for wallet, quantity, handle in pairs:
        wallet = str(wallet).strip()
        if not wallet:
            raise ValidationError("Holding with empty wallet address")
        try:
            qty = Decimal(str(quantity))
        except InvalidOperation:
            raise ValidationError(f"Invalid quantity for {wallet}: {quantity!r}") from None
        if not qty.is_finite() or qty < 0:
            raise ValidationError(f"Invalid quantity for {wallet}: {quantity!r}")
        if wallet in items:
            qty += items[wallet][0]
            handle = handle or items[wallet][1]
        items[wallet] = (qty, handle)
    return items


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------
def capture_snapshot(
    engine: Engine,
    period_key: str,
    chain: str,
    holdings: Mapping[str, Any] | Iterable[Holding],
) -> tuple[Snapshot, bool]:
    """Freeze *holdings* under *period_key*.

    Returns ``(snapshot, created)``.  When the period already exists the
    stored snapshot is returned untouched and ``created`` is ``False``.
    """
    key = (period_key or "").strip()
    if not key:
        raise ValidationError("period_key is required")
    items = _normalise_holdings(holdings)

    with Session(engine, expire_on_commit=False) as session:
        existing = session.scalar(select(Snapshot).where(Snapshot.period_key == key))
        if existing is not None:
            session.expunge(existing)
            return existing, False

        eligible = {w: v for w, v in items.items() if v[0] > 0}
        snapshot = Snapshot(
            period_key=key,
            chain=chain.strip().lower(),
            total_supply=sum((v[0] for v in eligible.values()), Decimal("0")),
            wallet_count=len(eligible),
        )
        session.add(snapshot)
        session.flush()
        for wallet, (qty, handle) in items.items():
            session.add(SnapshotHolding(
                snapshot_id=snapshot.id, wallet_address=wallet,
                quantity=qty, user_handle=handle,
            ))
        try:
            session.commit()
        except IntegrityError:
            # Another writer captured the same period first.
            session.rollback()
            existing = session.scalar(select(Snapshot).where(Snapshot.period_key == key))
            session.expunge(existing)
            return existing, False
        session.refresh(snapshot)
        session.expunge(snapshot)

    logger.info("Snapshot %s captured: %d wallets, supply %s",
                key, snapshot.wallet_count, snapshot.total_supply)
    return snapshot, True


def capture_from_source(
    engine: Engine,
    cfg: YieldVaultConfig,
    source: HoldingsSource,
    *,
    period_key: str | None = None,
    now: datetime | None = None,
) -> tuple[Snapshot, bool]:
    """Fetch holdings from *source* and capture them (scheduled monthly)."""
    key = period_key or month_key(now or utcnow())
    holdings = source.fetch(cfg.snapshot_chain)
    return capture_snapshot(engine, key, cfg.snapshot_chain, holdings)


# ---------------------------------------------------------------------------
# Distribution
# ---------------------------------------------------------------------------
def _pool_dict(pool: DistributionPool, records: list[RewardRecord], *, already: bool) -> dict:
    return {
        "period_key": pool.period_key,
        "status": pool.status,
        "revenue": str(pool.revenue),
        "pool_percentage": str(pool.pool_percentage),
        "pool_amount": str(pool.pool_amount),
        "distributed_amount": str(pool.distributed_amount),
        "residual_dust": str(pool.residual_dust),
        "wallet_count": pool.wallet_count,
        "already_distributed": already,
        "allocations": [
            {
                "reward_id": r.id,
                "wallet_address": r.wallet_address,
                "user_handle": r.user_handle,
                "amount": str(r.reward_amount),
                "claim_status": r.claim_status,
            }
            for r in records
        ],
    }


def _load_result(session: Session, period_key: str, *, already: bool) -> dict | None:
    pool = session.scalar(
        select(DistributionPool).where(DistributionPool.period_key == period_key)
    )
    if pool is None:
        return None
    records = session.scalars(
        select(RewardRecord)
        .where(RewardRecord.distribution_period == period_key)
        .order_by(RewardRecord.wallet_address)
    ).all()
    return _pool_dict(pool, list(records), already=already)


def get_distribution(engine: Engine, period_key: str) -> dict:
    with Session(engine) as session:
        result = _load_result(session, period_key, already=False)
    if result is None:
        raise NotFoundError(f"No distribution for period {period_key}")
    return result


def distribute_pool(
    engine: Engine,
    period_key: str,
    revenue: Any,
    *,
    cfg: YieldVaultConfig,
    actor_id: str,
    pool_percentage: Any = None,
) -> dict:
    """Allocate the revenue pool of *period_key* across its snapshot holders.

    Idempotent: a period that was already distributed returns the stored
    result with ``already_distributed: true``.
    """
    try:
        revenue_amount = Decimal(str(revenue))
        pct = cfg.pool_percentage if pool_percentage is None else Decimal(str(pool_percentage))
    except InvalidOperation:
        raise ValidationError("revenue and pool_percentage must be numbers") from None

    with Session(engine) as session:
        prior = _load_result(session, period_key, already=True)
        if prior is not None:
            logger.info("Period %s already distributed; nothing to do", period_key)
            return prior

        snapshot = session.scalar(select(Snapshot).where(Snapshot.period_key == period_key))
        if snapshot is None:
            raise NotFoundError(f"No snapshot for period {period_key}")

        holdings = {h.wallet_address: h for h in snapshot.holdings}
        allocation = allocate_pool(
            {w: h.quantity for w, h in holdings.items()}, revenue_amount, pct
        )

        bounds = period_bounds(period_key)
        captured = as_utc(snapshot.captured_at) or utcnow()
        period_start, period_end = bounds if bounds else (captured, captured)

        pool = DistributionPool(
            period_key=period_key,
            snapshot_id=snapshot.id,
            revenue=revenue_amount,
            pool_percentage=pct,
            pool_amount=allocation.pool_amount,
            distributed_amount=allocation.distributed,
            residual_dust=allocation.residual_dust,
            wallet_count=len(allocation.shares),
            status=PoolStatus.COMPUTED.value,
        )
        session.add(pool)

        for wallet, share in sorted(allocation.shares.items()):
            session.add(RewardRecord(
                distribution_period=period_key,
                source=RewardSource.DISTRIBUTION.value,
                user_handle=holdings[wallet].user_handle,
                chain=snapshot.chain,
                wallet_address=wallet,
                reward_amount=share,
                reward_amount_usd=share,
                apy_applied=None,
                period_start=period_start,
                period_end=period_end,
                claim_status=ClaimStatus.PENDING.value,
            ))

        pool.status = PoolStatus.DISTRIBUTED.value
        pool.distributed_at = utcnow()
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="DISTRIBUTE_POOL",
            target_table="distribution_pools",
            target_id=period_key,
            before=None,
            after={
                "revenue": str(revenue_amount),
                "pool_percentage": str(pct),
                "pool_amount": str(allocation.pool_amount),
                "distributed_amount": str(allocation.distributed),
                "wallet_count": len(allocation.shares),
            },
        )
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            prior = _load_result(session, period_key, already=True)
            if prior is None:
                raise
            return prior

        result = _load_result(session, period_key, already=False)

    logger.info(
        "Distributed %s for %s across %d wallets (dust %s)",
        allocation.distributed, period_key, len(allocation.shares), allocation.residual_dust,
    )
    return result
