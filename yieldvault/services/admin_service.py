"""
yieldvault.services.admin_service — Chain Registry Mutation Service
====================================================================

The only writer of ``chain_rate_configs``.  Every mutation follows the same
pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSON
  5. Commit
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Engine, func, or_, select
from sqlalchemy.orm import Session

from yieldvault.constants import MAX_APY
from yieldvault.database.engine import utcnow
from yieldvault.database.models import AdminLog, ChainRateConfig
from yieldvault.engine.addresses import validate_payout_address
from yieldvault.errors import NotFoundError, ValidationError
from yieldvault.services import accrual_service

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------

def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        elif isinstance(val, Decimal):
            val = str(val)
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: str,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _get_chain(session: Session, chain: str) -> ChainRateConfig:
    row = session.get(ChainRateConfig, chain.strip().lower())
    if row is None:
        raise NotFoundError(f"Chain {chain} not found")
    return row


def _parse_decimal(value: Any, label: str) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if not parsed.is_finite():
        raise ValidationError(f"{label} must be a finite number")
    return parsed


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_chains(engine: Engine, *, active_only: bool = False) -> list[ChainRateConfig]:
    with Session(engine) as session:
        stmt = select(ChainRateConfig).order_by(ChainRateConfig.chain)
        if active_only:
            stmt = stmt.where(ChainRateConfig.is_active.is_(True))
        rows = session.scalars(stmt).all()
        session.expunge_all()
        return list(rows)


def unconfigured_chains(engine: Engine) -> list[ChainRateConfig]:
    """Chains with no payout wallet (NULL or blank)."""
    with Session(engine) as session:
        rows = session.scalars(
            select(ChainRateConfig)
            .where(or_(
                ChainRateConfig.bank_wallet_address.is_(None),
                ChainRateConfig.bank_wallet_address == "",
            ))
            .order_by(ChainRateConfig.chain)
        ).all()
        session.expunge_all()
        return list(rows)


def list_audit(engine: Engine, *, page: int = 1, page_size: int = 50) -> tuple[list[AdminLog], int]:
    """Most recent admin_log rows first, paginated."""
    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(AdminLog)) or 0
        rows = session.scalars(
            select(AdminLog)
            .order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        session.expunge_all()
        return list(rows), total


# ---------------------------------------------------------------------------
# APY
# ---------------------------------------------------------------------------

def update_apy(
    engine: Engine,
    *,
    apy: Any,
    actor_id: str,
    chain: str | None = None,
) -> list[ChainRateConfig]:
    """Set the APY for one chain, or for every chain when *chain* is None.

    Takes effect for the next accrual period only; past reward records keep
    the APY they were computed with.
    """
    new_apy = _parse_decimal(apy, "APY")
    if new_apy < 0 or new_apy > MAX_APY:
        raise ValidationError(f"APY must be between 0 and {MAX_APY}")

    with Session(engine, expire_on_commit=False) as session:
        if chain is not None:
            rows = [_get_chain(session, chain)]
        else:
            rows = list(session.scalars(select(ChainRateConfig).order_by(ChainRateConfig.chain)))

        for row in rows:
            before = _row_to_dict(row)
            row.current_apy = new_apy
            row.updated_at = utcnow()
            session.flush()
            _log_admin_action(
                session,
                actor_id=actor_id,
                action_type="UPDATE_APY",
                target_table="chain_rate_configs",
                target_id=row.chain,
                before=before,
                after=_row_to_dict(row),
            )
        session.commit()
        session.expunge_all()

    logger.info(
        "APY set to %s%% on %s by %s",
        new_apy, "all chains" if chain is None else chain, actor_id,
    )
    return rows


# ---------------------------------------------------------------------------
# Enable / disable
# ---------------------------------------------------------------------------

def set_chain_active(
    engine: Engine,
    chain: str,
    *,
    active: bool,
    actor_id: str,
    now: datetime | None = None,
) -> ChainRateConfig:
    """Enable or disable accrual on *chain*.

    Disabling first flushes everything owed up to *now*, sub-hour
    remainders included.  Enabling requires a payout wallet and moves the
    chain's checkpoints up to *now* so the disabled window never accrues.
    """
    now = now or utcnow()
    with Session(engine) as session:
        row = _get_chain(session, chain)
        chain_key = row.chain
        was_active = row.is_active
        has_wallet = bool(row.bank_wallet_address)

    if active and not has_wallet:
        raise ValidationError(
            f"Chain {chain_key} has no payout wallet configured; set one before enabling"
        )

    if not active and was_active:
        accrual_service.flush_chain(engine, chain_key, now=now)
    elif active and not was_active:
        accrual_service.advance_checkpoints(engine, chain_key, now=now)

    with Session(engine, expire_on_commit=False) as session:
        row = _get_chain(session, chain_key)
        before = _row_to_dict(row)
        row.is_active = active
        row.updated_at = utcnow()
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="ENABLE_CHAIN" if active else "DISABLE_CHAIN",
            target_table="chain_rate_configs",
            target_id=chain_key,
            before=before,
            after=_row_to_dict(row),
        )
        session.commit()
        session.expunge(row)

    logger.info("Chain %s %s by %s", chain_key, "enabled" if active else "disabled", actor_id)
    return row


# ---------------------------------------------------------------------------
# Payout wallet
# ---------------------------------------------------------------------------

def set_bank_wallet(
    engine: Engine,
    chain: str,
    address: str,
    *,
    actor_id: str,
    now: datetime | None = None,
) -> ChainRateConfig:
    """Validate *address* for *chain*, store it and activate the chain.

    An invalid address raises :class:`ValidationError` and changes nothing.
    """
    with Session(engine) as session:
        chain_key = _get_chain(session, chain).chain

    check = validate_payout_address(chain_key, address)
    if not check.valid:
        logger.info("Rejected payout wallet for %s: %s", chain_key, check.reason)
        raise ValidationError(check.reason)

    now = now or utcnow()
    with Session(engine) as session:
        was_active = _get_chain(session, chain_key).is_active
    if not was_active:
        accrual_service.advance_checkpoints(engine, chain_key, now=now)

    with Session(engine, expire_on_commit=False) as session:
        row = _get_chain(session, chain_key)
        before = _row_to_dict(row)
        row.bank_wallet_address = address.strip()
        row.is_active = True
        row.updated_at = utcnow()
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="SET_BANK_WALLET",
            target_table="chain_rate_configs",
            target_id=chain_key,
            before=before,
            after=_row_to_dict(row),
        )
        session.commit()
        session.expunge(row)

    logger.info("Payout wallet for %s set by %s", chain_key, actor_id)
    return row


def batch_set_bank_wallets(
    engine: Engine,
    wallets: list[dict],
    *,
    actor_id: str,
) -> dict:
    """Apply several ``{chain, address}`` assignments independently.

    Returns ``{"success": [...], "failed": [{"chain", "error"}]}``; one bad
    entry never blocks the others.
    """
    success: list[str] = []
    failed: list[dict] = []
    for entry in wallets:
        chain = str(entry.get("chain") or "").strip()
        address = entry.get("address")
        if not chain or not address:
            failed.append({"chain": chain, "error": "chain and address are required"})
            continue
        try:
            set_bank_wallet(engine, chain, address, actor_id=actor_id)
        except (ValidationError, NotFoundError) as exc:
            failed.append({"chain": chain, "error": str(exc)})
        else:
            success.append(chain.lower())
    return {"success": success, "failed": failed}


# ---------------------------------------------------------------------------
# Price
# ---------------------------------------------------------------------------

def set_usd_price(
    engine: Engine,
    chain: str,
    usd_price: Any,
    *,
    actor_id: str,
) -> ChainRateConfig:
    """Record the native asset's USD price; ``None`` clears it."""
    price = None if usd_price is None else _parse_decimal(usd_price, "USD price")
    if price is not None and price < 0:
        raise ValidationError("USD price must be non-negative")

    with Session(engine, expire_on_commit=False) as session:
        row = _get_chain(session, chain)
        before = _row_to_dict(row)
        row.usd_price = price
        row.updated_at = utcnow()
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="SET_USD_PRICE",
            target_table="chain_rate_configs",
            target_id=row.chain,
            before=before,
            after=_row_to_dict(row),
        )
        session.commit()
        session.expunge(row)
        return row
