"""
yieldvault.api.routes.admin — Admin endpoints (JWT‑protected)
==============================================================
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from yieldvault.api.deps import get_config, get_current_admin, get_engine
from yieldvault.config import YieldVaultConfig
from yieldvault.database.models import ChainRateConfig, Contribution, RewardRecord
from yieldvault.services import (
    accrual_service,
    admin_service,
    analytics_service,
    claim_service,
    distribution_service,
    ledger_service,
)
from yieldvault.services.holdings_source import Holding

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ApyUpdate(BaseModel):
    apy: Decimal
    chain: str | None = None


class ChainActiveUpdate(BaseModel):
    active: bool


class BankWalletUpdate(BaseModel):
    address: str


class BankWalletEntry(BaseModel):
    chain: str
    address: str


class BankWalletBatch(BaseModel):
    wallets: list[BankWalletEntry] = Field(default_factory=list)


class PriceUpdate(BaseModel):
    usd_price: Decimal | None


class SettleRequest(BaseModel):
    reward_ids: list[int]
    settlement_ref: str
    wallet_address: str | None = None
    wallet_type: str | None = None
    notes: str | None = None


class ContributionCreate(BaseModel):
    user_handle: str
    wallet_address: str
    chain: str
    amount: Decimal
    wallet_category: str = "external"


class ContributionVerify(BaseModel):
    deposit_tx_ref: str


class ContributionReject(BaseModel):
    reason: str | None = None


class HoldingIn(BaseModel):
    wallet: str
    quantity: Decimal
    user_handle: str | None = None


class SnapshotCreate(BaseModel):
    period_key: str
    chain: str
    holdings: list[HoldingIn]


class DistributionCreate(BaseModel):
    period_key: str
    revenue: Decimal
    pool_percentage: Decimal | None = None


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def chain_dict(c: ChainRateConfig) -> dict:
    return {
        "chain": c.chain,
        "native_asset": c.native_asset,
        "current_apy": _dec(c.current_apy),
        "min_deposit": _dec(c.min_deposit),
        "is_active": c.is_active,
        "bank_wallet_address": c.bank_wallet_address,
        "usd_price": _dec(c.usd_price),
        "updated_at": _iso(c.updated_at),
    }


def contribution_dict(c: Contribution) -> dict:
    return {
        "id": c.id,
        "user_handle": c.user_handle,
        "wallet_address": c.wallet_address,
        "wallet_category": c.wallet_category,
        "chain": c.chain,
        "native_asset": c.native_asset,
        "principal": _dec(c.principal),
        "status": c.status,
        "rewards_earned": _dec(c.rewards_earned),
        "last_accrual_at": _iso(c.last_accrual_at),
        "verified_at": _iso(c.verified_at),
        "deposit_tx_ref": c.deposit_tx_ref,
        "memo": c.memo,
        "created_at": _iso(c.created_at),
    }


def reward_dict(r: RewardRecord) -> dict:
    return {
        "id": r.id,
        "contribution_id": r.contribution_id,
        "distribution_period": r.distribution_period,
        "source": r.source,
        "user_handle": r.user_handle,
        "chain": r.chain,
        "wallet_address": r.wallet_address,
        "reward_amount": _dec(r.reward_amount),
        "reward_amount_usd": _dec(r.reward_amount_usd),
        "apy_applied": _dec(r.apy_applied),
        "period_start": _iso(r.period_start),
        "period_end": _iso(r.period_end),
        "claim_status": r.claim_status,
        "computed_at": _iso(r.computed_at),
        "claim_tx_ref": r.claim_tx_ref,
        "withdrawal_wallet_address": r.withdrawal_wallet_address,
        "withdrawal_wallet_category": r.withdrawal_wallet_category,
        "claimed_at": _iso(r.claimed_at),
        "notes": r.notes,
    }


# ---------------------------------------------------------------------------
# Accrual
# ---------------------------------------------------------------------------
@router.post("/accrual/run")
def run_accrual(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cfg: YieldVaultConfig = Depends(get_config),
):
    """Run the accrual batch now (same procedure as the hourly job)."""
    result = accrual_service.run_accrual(engine, cfg)
    return result.to_dict()


# ---------------------------------------------------------------------------
# Chain registry
# ---------------------------------------------------------------------------
@router.get("/chains")
def list_chains(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"chains": [chain_dict(c) for c in admin_service.list_chains(engine)]}


@router.get("/chains/unconfigured")
def list_unconfigured_chains(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows = admin_service.unconfigured_chains(engine)
    return {"chains": [chain_dict(c) for c in rows], "count": len(rows)}


@router.post("/chains/apy")
def update_apy(
    body: ApyUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows = admin_service.update_apy(
        engine, apy=body.apy, chain=body.chain, actor_id=str(admin["sub"]),
    )
    return {"updated": [chain_dict(c) for c in rows]}


@router.post("/chains/bank-wallets")
def batch_set_bank_wallets(
    body: BankWalletBatch,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return admin_service.batch_set_bank_wallets(
        engine,
        [w.model_dump() for w in body.wallets],
        actor_id=str(admin["sub"]),
    )


@router.post("/chains/{chain}/active")
def set_chain_active(
    chain: str,
    body: ChainActiveUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    row = admin_service.set_chain_active(
        engine, chain, active=body.active, actor_id=str(admin["sub"]),
    )
    return chain_dict(row)


@router.put("/chains/{chain}/bank-wallet")
def set_bank_wallet(
    chain: str,
    body: BankWalletUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    row = admin_service.set_bank_wallet(
        engine, chain, body.address, actor_id=str(admin["sub"]),
    )
    return chain_dict(row)


@router.post("/chains/{chain}/price")
def set_usd_price(
    chain: str,
    body: PriceUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    row = admin_service.set_usd_price(
        engine, chain, body.usd_price, actor_id=str(admin["sub"]),
    )
    return chain_dict(row)


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------
@router.get("/rewards")
def list_rewards(
    claim_status: str | None = None,
    chain: str | None = None,
    user_handle: str | None = None,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows, summary = analytics_service.reward_listing(
        engine, claim_status=claim_status, chain=chain, user_handle=user_handle,
    )
    return {"rewards": [reward_dict(r) for r in rows], "summary": summary}


@router.post("/rewards/settle")
def settle_rewards(
    body: SettleRequest,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return claim_service.settle_batch(
        engine,
        body.reward_ids,
        settlement_ref=body.settlement_ref,
        wallet_address=body.wallet_address,
        wallet_category=body.wallet_type,
        notes=body.notes,
        actor_id=str(admin["sub"]),
    )


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------
@router.get("/dashboard")
def dashboard(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    summary, recent = analytics_service.dashboard(engine)
    return {**summary, "recent_contributions": [contribution_dict(c) for c in recent]}


@router.get("/analytics")
def analytics(
    start: datetime | None = None,
    end: datetime | None = None,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return analytics_service.vault_analytics(engine, start=start, end=end)


# ---------------------------------------------------------------------------
# Contributions (deposit collaborator entry points)
# ---------------------------------------------------------------------------
@router.get("/contributions")
def list_contributions(
    status: str | None = None,
    chain: str | None = None,
    wallet_category: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows = analytics_service.list_contributions(
        engine, status=status, chain=chain, wallet_category=wallet_category, limit=limit,
    )
    return {"contributions": [contribution_dict(c) for c in rows]}


@router.get("/contributions/{contribution_id}")
def get_contribution(
    contribution_id: int,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return contribution_dict(ledger_service.get_contribution(engine, contribution_id))


@router.post("/contributions", status_code=201)
def register_contribution(
    body: ContributionCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    contribution = ledger_service.register_contribution(
        engine,
        user_handle=body.user_handle,
        wallet_address=body.wallet_address,
        chain=body.chain,
        amount=body.amount,
        wallet_category=body.wallet_category,
        actor_id=str(admin["sub"]),
    )
    return contribution_dict(contribution)


@router.post("/contributions/{contribution_id}/verify")
def verify_contribution(
    contribution_id: int,
    body: ContributionVerify,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    contribution = ledger_service.verify_contribution(
        engine, contribution_id,
        deposit_tx_ref=body.deposit_tx_ref, actor_id=str(admin["sub"]),
    )
    return contribution_dict(contribution)


@router.post("/contributions/{contribution_id}/reject")
def reject_contribution(
    contribution_id: int,
    body: ContributionReject,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    contribution = ledger_service.reject_contribution(
        engine, contribution_id, reason=body.reason, actor_id=str(admin["sub"]),
    )
    return contribution_dict(contribution)


# ---------------------------------------------------------------------------
# Snapshots & distributions
# ---------------------------------------------------------------------------
@router.post("/snapshots")
def create_snapshot(
    body: SnapshotCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    snapshot, created = distribution_service.capture_snapshot(
        engine,
        body.period_key,
        body.chain,
        [Holding(wallet=h.wallet, quantity=h.quantity, user_handle=h.user_handle)
         for h in body.holdings],
    )
    return {
        "period_key": snapshot.period_key,
        "chain": snapshot.chain,
        "total_supply": str(snapshot.total_supply),
        "wallet_count": snapshot.wallet_count,
        "created": created,
    }


@router.post("/distributions")
def create_distribution(
    body: DistributionCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cfg: YieldVaultConfig = Depends(get_config),
):
    return distribution_service.distribute_pool(
        engine,
        body.period_key,
        body.revenue,
        cfg=cfg,
        pool_percentage=body.pool_percentage,
        actor_id=str(admin["sub"]),
    )


@router.get("/distributions/{period_key}")
def get_distribution(
    period_key: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return distribution_service.get_distribution(engine, period_key)


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------
@router.get("/audit")
def get_audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    """Paginated admin audit log."""
    rows, total = admin_service.list_audit(engine, page=page, page_size=page_size)
    return {
        "total": total,
        "page": page,
        "page_size": page_size,
        "entries": [
            {
                "id": r.id,
                "actor_id": r.actor_id,
                "action_type": r.action_type,
                "target_table": r.target_table,
                "target_id": r.target_id,
                "before_snapshot": r.before_snapshot,
                "after_snapshot": r.after_snapshot,
                "reason": r.reason,
                "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            }
            for r in rows
        ],
    }
