"""
yieldvault.database.seed — Default Chain Registry Seeder
=========================================================

One inactive ``chain_rate_configs`` row per supported chain so the admin
surface can immediately assign APYs and payout wallets.

Idempotent — only inserts chains that don't already exist.  Rows edited by
admins are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from yieldvault.constants import DEFAULT_MIN_DEPOSIT, SUPPORTED_CHAINS
from yieldvault.database.models import ChainRateConfig

logger = logging.getLogger(__name__)


def seed_chain_registry(engine: Engine) -> int:
    """Insert registry rows for chains that are missing.

    Returns the number of rows inserted.
    """
    session = Session(engine)
    inserted = 0
    try:
        for chain, (_family, native_asset) in SUPPORTED_CHAINS.items():
            if session.get(ChainRateConfig, chain) is None:
                session.add(ChainRateConfig(
                    chain=chain,
                    native_asset=native_asset,
                    min_deposit=DEFAULT_MIN_DEPOSIT,
                    is_active=False,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d chain registry rows.", inserted)
    return inserted
