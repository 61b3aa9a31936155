"""
yieldvault.services.analytics_service — Reporting Aggregates
=============================================================

Read-only queries behind the admin reporting endpoints and the public vault
stats.  Sums are taken in Python over :class:`~decimal.Decimal` values so
they stay exact on every backend.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from yieldvault.database.models import (
    ChainRateConfig,
    Contribution,
    ContributionStatus,
    RewardRecord,
)

_ZERO = Decimal("0")

REWARD_LISTING_LIMIT = 500
TOP_CONTRIBUTORS_LIMIT = 10


def _reward_filters(stmt, claim_status: str | None, chain: str | None, user_handle: str | None):
    if claim_status:
        stmt = stmt.where(RewardRecord.claim_status == claim_status)
    if chain:
        stmt = stmt.where(RewardRecord.chain == chain)
    if user_handle:
        stmt = stmt.where(RewardRecord.user_handle == user_handle)
    return stmt


def reward_listing(
    engine: Engine,
    *,
    claim_status: str | None = None,
    chain: str | None = None,
    user_handle: str | None = None,
    limit: int = REWARD_LISTING_LIMIT,
) -> tuple[list[RewardRecord], dict[str, dict]]:
    """Newest reward records matching the filters plus per-status totals.

    The summary covers every matching record, not only the returned page.
    """
    with Session(engine) as session:
        rows = session.scalars(
            _reward_filters(select(RewardRecord), claim_status, chain, user_handle)
            .order_by(RewardRecord.computed_at.desc(), RewardRecord.id.desc())
            .limit(limit)
        ).all()
        session.expunge_all()

        summary: dict[str, dict] = {}
        amounts = session.execute(
            _reward_filters(
                select(
                    RewardRecord.claim_status,
                    RewardRecord.reward_amount,
                    RewardRecord.reward_amount_usd,
                ),
                claim_status, chain, user_handle,
            )
        )
        for status, amount, amount_usd in amounts:
            bucket = summary.setdefault(
                status, {"count": 0, "total_amount": _ZERO, "total_amount_usd": _ZERO}
            )
            bucket["count"] += 1
            bucket["total_amount"] += amount
            if amount_usd is not None:
                bucket["total_amount_usd"] += amount_usd

    for bucket in summary.values():
        bucket["total_amount"] = str(bucket["total_amount"])
        bucket["total_amount_usd"] = str(bucket["total_amount_usd"])
    return list(rows), summary


def list_contributions(
    engine: Engine,
    *,
    status: str | None = None,
    chain: str | None = None,
    wallet_category: str | None = None,
    limit: int = 100,
) -> list[Contribution]:
    with Session(engine) as session:
        stmt = select(Contribution)
        if status:
            stmt = stmt.where(Contribution.status == status)
        if chain:
            stmt = stmt.where(Contribution.chain == chain)
        if wallet_category:
            stmt = stmt.where(Contribution.wallet_category == wallet_category)
        rows = session.scalars(
            stmt.order_by(Contribution.created_at.desc(), Contribution.id.desc()).limit(limit)
        ).all()
        session.expunge_all()
        return list(rows)


def vault_analytics(
    engine: Engine,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Verified contributions broken down by chain, wallet category and user.

    *start*/*end* bound ``created_at`` inclusively.  USD figures use each
    chain's last recorded price and are omitted from ranking when unknown.
    """
    with Session(engine) as session:
        prices = {
            chain: price
            for chain, price in session.execute(
                select(ChainRateConfig.chain, ChainRateConfig.usd_price)
            )
        }
        stmt = select(Contribution).where(
            Contribution.status == ContributionStatus.VERIFIED.value
        )
        if start is not None:
            stmt = stmt.where(Contribution.created_at >= start)
        if end is not None:
            stmt = stmt.where(Contribution.created_at <= end)
        contributions = session.scalars(stmt).all()

    by_chain: dict[tuple[str, str], dict] = {}
    by_category: dict[str, dict] = {}
    by_user: dict[str, dict] = defaultdict(
        lambda: {"deposits": 0, "total_principal_usd": _ZERO, "total_rewards_usd": _ZERO}
    )

    for c in contributions:
        chain_row = by_chain.setdefault(
            (c.chain, c.native_asset),
            {"deposits": 0, "total_principal": _ZERO, "total_rewards": _ZERO},
        )
        chain_row["deposits"] += 1
        chain_row["total_principal"] += c.principal
        chain_row["total_rewards"] += c.rewards_earned

        cat_row = by_category.setdefault(
            c.wallet_category, {"deposits": 0, "total_principal_usd": _ZERO}
        )
        cat_row["deposits"] += 1

        user_row = by_user[c.user_handle]
        user_row["deposits"] += 1

        price = prices.get(c.chain)
        if price is not None:
            cat_row["total_principal_usd"] += c.principal * price
            user_row["total_principal_usd"] += c.principal * price
            user_row["total_rewards_usd"] += c.rewards_earned * price

    top = sorted(
        by_user.items(), key=lambda kv: (-kv[1]["total_principal_usd"], kv[0])
    )[:TOP_CONTRIBUTORS_LIMIT]

    return {
        "chain_breakdown": [
            {
                "chain": chain,
                "native_asset": asset,
                "deposits": row["deposits"],
                "total_principal": str(row["total_principal"]),
                "total_rewards": str(row["total_rewards"]),
            }
            for (chain, asset), row in sorted(by_chain.items())
        ],
        "wallet_breakdown": [
            {
                "wallet_category": category,
                "deposits": row["deposits"],
                "total_principal_usd": str(row["total_principal_usd"]),
            }
            for category, row in sorted(by_category.items())
        ],
        "top_contributors": [
            {
                "user_handle": handle,
                "deposits": row["deposits"],
                "total_principal_usd": str(row["total_principal_usd"]),
                "total_rewards_usd": str(row["total_rewards_usd"]),
            }
            for handle, row in top
        ],
    }


# ---------------------------------------------------------------------------
# Dashboard & public stats
# ---------------------------------------------------------------------------
RECENT_CONTRIBUTIONS_LIMIT = 20


def _verified_liquidity(session: Session) -> tuple[Decimal, int]:
    """USD value of verified principal on active chains and its contributor count.

    Chains without a recorded price add nothing to the USD total.
    """
    rows = session.execute(
        select(Contribution.user_handle, Contribution.principal, ChainRateConfig.usd_price)
        .join(ChainRateConfig, ChainRateConfig.chain == Contribution.chain)
        .where(
            Contribution.status == ContributionStatus.VERIFIED.value,
            ChainRateConfig.is_active.is_(True),
        )
    ).all()
    total = _ZERO
    for _, principal, price in rows:
        if price is not None:
            total += principal * price
    return total, len({handle for handle, _, _ in rows})


def dashboard(engine: Engine) -> tuple[dict, list[Contribution]]:
    """Admin overview: contribution counts, liquidity, wallet categories.

    Returns the summary and the most recent contributions, newest first.
    """
    with Session(engine) as session:
        counts = dict(
            session.execute(
                select(Contribution.status, func.count()).group_by(Contribution.status)
            ).all()
        )
        liquidity, contributors = _verified_liquidity(session)

        prices = dict(
            session.execute(select(ChainRateConfig.chain, ChainRateConfig.usd_price)).all()
        )
        by_category: dict[str, dict] = {}
        for category, chain, principal in session.execute(
            select(Contribution.wallet_category, Contribution.chain, Contribution.principal)
            .where(Contribution.status == ContributionStatus.VERIFIED.value)
        ):
            row = by_category.setdefault(category, {"deposits": 0, "total_principal_usd": _ZERO})
            row["deposits"] += 1
            if prices.get(chain) is not None:
                row["total_principal_usd"] += principal * prices[chain]

        recent = session.scalars(
            select(Contribution)
            .order_by(Contribution.created_at.desc(), Contribution.id.desc())
            .limit(RECENT_CONTRIBUTIONS_LIMIT)
        ).all()
        session.expunge_all()

    summary = {
        "total_liquidity_usd": str(liquidity),
        "total_contributors": contributors,
        "total_contributions": sum(counts.values()),
        "verified_contributions": counts.get(ContributionStatus.VERIFIED.value, 0),
        "pending_contributions": counts.get(ContributionStatus.PENDING.value, 0),
        "wallet_breakdown": [
            {
                "wallet_category": category,
                "deposits": row["deposits"],
                "total_principal_usd": str(row["total_principal_usd"]),
            }
            for category, row in sorted(by_category.items())
        ],
    }
    return summary, list(recent)


def public_stats(engine: Engine) -> dict:
    with Session(engine) as session:
        active_chains = session.scalar(
            select(func.count())
            .select_from(ChainRateConfig)
            .where(ChainRateConfig.is_active.is_(True))
        )
        verified = session.scalar(
            select(func.count())
            .select_from(Contribution)
            .where(Contribution.status == ContributionStatus.VERIFIED.value)
        )
        liquidity, contributors = _verified_liquidity(session)

    return {
        "total_liquidity_usd": str(liquidity),
        "total_chains": active_chains or 0,
        "total_contributors": contributors,
        "total_contributions": verified or 0,
    }
