"""
yieldvault.services.ledger_service — Contribution Ledger
=========================================================

Entry points for the deposit-verification collaborator:

    register_contribution → pending  (memo issued for the transfer)
    verify_contribution   → verified (accrual starts at verified_at)
    reject_contribution   → rejected (terminal)

Principal is fixed at registration; only the accrual scheduler touches
``rewards_earned`` and ``last_accrual_at`` afterwards.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from yieldvault.constants import DEPOSIT_MEMO_TEMPLATE
from yieldvault.database.engine import utcnow
from yieldvault.database.models import (
    ChainRateConfig,
    Contribution,
    ContributionStatus,
    WalletCategory,
)
from yieldvault.errors import NotFoundError, ValidationError
from yieldvault.services.admin_service import _log_admin_action, _parse_decimal, _row_to_dict

logger = logging.getLogger(__name__)

_VALID_CATEGORIES = {c.value for c in WalletCategory}


def register_contribution(
    engine: Engine,
    *,
    user_handle: str,
    wallet_address: str,
    chain: str,
    amount: Any,
    wallet_category: str = WalletCategory.EXTERNAL.value,
    actor_id: str,
) -> Contribution:
    """Record a pending deposit and issue its transfer memo.

    The chain must exist, be active with a payout wallet, and *amount* must
    meet the chain's minimum deposit.
    """
    handle = (user_handle or "").strip()
    wallet = (wallet_address or "").strip()
    if not handle:
        raise ValidationError("user_handle is required")
    if not wallet:
        raise ValidationError("wallet_address is required")
    if wallet_category not in _VALID_CATEGORIES:
        raise ValidationError(f"wallet_category must be one of {sorted(_VALID_CATEGORIES)}")

    principal = _parse_decimal(amount, "Amount")
    if principal <= 0:
        raise ValidationError("Amount must be greater than zero")

    with Session(engine, expire_on_commit=False) as session:
        chain_cfg = session.get(ChainRateConfig, (chain or "").strip().lower())
        if chain_cfg is None:
            raise NotFoundError(f"Chain {chain} not found")
        if not chain_cfg.bank_wallet_address:
            raise ValidationError(f"Chain {chain_cfg.chain} has no payout wallet configured")
        if not chain_cfg.is_active:
            raise ValidationError(f"Chain {chain_cfg.chain} is not accepting deposits")
        if principal < chain_cfg.min_deposit:
            raise ValidationError(
                f"Minimum deposit for {chain_cfg.chain} is "
                f"{chain_cfg.min_deposit} {chain_cfg.native_asset}"
            )

        contribution = Contribution(
            user_handle=handle,
            wallet_address=wallet,
            wallet_category=wallet_category,
            chain=chain_cfg.chain,
            native_asset=chain_cfg.native_asset,
            principal=principal,
            status=ContributionStatus.PENDING.value,
            rewards_earned=Decimal("0"),
        )
        session.add(contribution)
        session.flush()
        contribution.memo = DEPOSIT_MEMO_TEMPLATE.format(
            handle=handle, contribution_id=contribution.id
        )
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="REGISTER_CONTRIBUTION",
            target_table="contributions",
            target_id=str(contribution.id),
            before=None,
            after=_row_to_dict(contribution),
        )
        session.commit()
        session.refresh(contribution)
        session.expunge(contribution)

    logger.info("Contribution %s registered for %s on %s (%s)",
                contribution.id, handle, contribution.chain, principal)
    return contribution


def _transition(
    engine: Engine,
    contribution_id: int,
    *,
    actor_id: str,
    action_type: str,
    apply,
    reason: str | None = None,
) -> Contribution:
    with Session(engine, expire_on_commit=False) as session:
        contribution = session.get(Contribution, contribution_id)
        if contribution is None:
            raise NotFoundError(f"Contribution {contribution_id} not found")
        if contribution.status != ContributionStatus.PENDING.value:
            raise ValidationError(
                f"Contribution {contribution_id} is already {contribution.status}"
            )
        before = _row_to_dict(contribution)
        apply(contribution)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise ValidationError("Deposit transaction reference already recorded") from None
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=action_type,
            target_table="contributions",
            target_id=str(contribution.id),
            before=before,
            after=_row_to_dict(contribution),
            reason=reason,
        )
        session.commit()
        session.refresh(contribution)
        session.expunge(contribution)
        return contribution


def verify_contribution(
    engine: Engine,
    contribution_id: int,
    *,
    deposit_tx_ref: str,
    actor_id: str,
    verified_at: datetime | None = None,
) -> Contribution:
    """pending → verified.  Accrual runs from *verified_at* onwards."""
    tx_ref = (deposit_tx_ref or "").strip()
    if not tx_ref:
        raise ValidationError("deposit_tx_ref is required")

    with Session(engine) as session:
        clash = session.scalar(
            select(Contribution.id).where(Contribution.deposit_tx_ref == tx_ref)
        )
    if clash is not None and clash != contribution_id:
        raise ValidationError("Deposit transaction reference already recorded")

    stamp = verified_at or utcnow()

    def _apply(c: Contribution) -> None:
        c.status = ContributionStatus.VERIFIED.value
        c.deposit_tx_ref = tx_ref
        c.verified_at = stamp
        c.last_accrual_at = None

    contribution = _transition(
        engine, contribution_id, actor_id=actor_id,
        action_type="VERIFY_CONTRIBUTION", apply=_apply,
    )
    logger.info("Contribution %s verified (tx %s)", contribution_id, tx_ref)
    return contribution


def reject_contribution(
    engine: Engine,
    contribution_id: int,
    *,
    actor_id: str,
    reason: str | None = None,
) -> Contribution:
    """pending → rejected (terminal, never accrues)."""
    def _apply(c: Contribution) -> None:
        c.status = ContributionStatus.REJECTED.value

    contribution = _transition(
        engine, contribution_id, actor_id=actor_id,
        action_type="REJECT_CONTRIBUTION", apply=_apply, reason=reason,
    )
    logger.info("Contribution %s rejected", contribution_id)
    return contribution


def get_contribution(engine: Engine, contribution_id: int) -> Contribution:
    with Session(engine) as session:
        contribution = session.get(Contribution, contribution_id)
        if contribution is None:
            raise NotFoundError(f"Contribution {contribution_id} not found")
        session.expunge(contribution)
        return contribution


def list_user_contributions(engine: Engine, user_handle: str) -> list[Contribution]:
    with Session(engine) as session:
        rows = session.scalars(
            select(Contribution)
            .where(Contribution.user_handle == user_handle)
            .order_by(Contribution.created_at.desc(), Contribution.id.desc())
        ).all()
        session.expunge_all()
        return list(rows)
