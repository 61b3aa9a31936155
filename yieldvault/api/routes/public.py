"""
yieldvault.api.routes.public — Public (unauthenticated) endpoints
==================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from yieldvault.api.deps import get_engine
from yieldvault.services import admin_service, analytics_service

router = APIRouter(tags=["public"])


@router.get("/chains")
def active_chains(engine=Depends(get_engine)):
    """Chains currently accepting deposits, with their APY and deposit wallet."""
    rows = admin_service.list_chains(engine, active_only=True)
    return {
        "chains": [
            {
                "chain": c.chain,
                "native_asset": c.native_asset,
                "current_apy": str(c.current_apy),
                "min_deposit": str(c.min_deposit),
                "deposit_address": c.bank_wallet_address,
            }
            for c in rows
        ]
    }


@router.get("/stats")
def vault_stats(engine=Depends(get_engine)):
    """Active chains, contributors and verified deposits across the vault."""
    return analytics_service.public_stats(engine)
