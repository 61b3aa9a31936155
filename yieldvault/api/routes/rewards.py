"""
yieldvault.api.routes.rewards — Self-service reward endpoints
==============================================================

The JWT ``sub`` is the user handle; users only ever see and claim their own
records.
"""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from yieldvault.api.deps import get_current_user, get_engine, get_payment_executor
from yieldvault.api.routes.admin import contribution_dict, reward_dict
from yieldvault.database.models import ClaimStatus
from yieldvault.services import claim_service, ledger_service
from yieldvault.services.payment_executor import PaymentExecutor

router = APIRouter(prefix="/rewards", tags=["rewards"])


class ClaimRequest(BaseModel):
    wallet_address: str | None = None
    wallet_type: str | None = None


@router.get("/mine")
def my_rewards(
    user_handle: str = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rewards = claim_service.list_user_rewards(engine, user_handle)
    contributions = ledger_service.list_user_contributions(engine, user_handle)

    totals = {status.value: Decimal("0") for status in ClaimStatus}
    for r in rewards:
        totals[r.claim_status] = totals.get(r.claim_status, Decimal("0")) + r.reward_amount

    return {
        "user_handle": user_handle,
        "rewards": [reward_dict(r) for r in rewards],
        "contributions": [contribution_dict(c) for c in contributions],
        "totals": {k: str(v) for k, v in totals.items()},
    }


@router.post("/{reward_id}/claim")
def claim(
    reward_id: int,
    body: ClaimRequest | None = None,
    user_handle: str = Depends(get_current_user),
    engine=Depends(get_engine),
    executor: PaymentExecutor = Depends(get_payment_executor),
):
    body = body or ClaimRequest()
    record = claim_service.claim_reward(
        engine,
        reward_id,
        user_handle,
        executor,
        wallet_address=body.wallet_address,
        wallet_category=body.wallet_type,
    )
    return reward_dict(record)
