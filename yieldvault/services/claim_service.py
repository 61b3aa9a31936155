"""
yieldvault.services.claim_service — Claim Processor
====================================================

The only writer of ``reward_records.claim_status``.  A record moves
``pending → withdrawn`` exactly once, always through a guarded

    UPDATE reward_records SET claim_status = 'withdrawn' …
     WHERE id = :id AND claim_status = 'pending'

so two concurrent settlements of the same record cannot both succeed: the
loser's UPDATE matches zero rows.

Two ways in:
- :func:`claim_reward` — the owner claims one record; the payout executor is
  called inside the same transaction and its failure rolls the claim back.
- :func:`settle_batch` — an admin settles several records of one user with
  a single settlement reference (already paid out of band).
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from yieldvault.database.engine import utcnow
from yieldvault.database.models import ClaimStatus, Contribution, RewardRecord, WalletCategory
from yieldvault.errors import ClaimRejected, NotFoundError, PaymentExecutorError, ValidationError
from yieldvault.services.admin_service import _log_admin_action
from yieldvault.services.payment_executor import PaymentExecutor, PayoutRequest

logger = logging.getLogger(__name__)

_VALID_CATEGORIES = {c.value for c in WalletCategory}


# ---------------------------------------------------------------------------
# Self-service claim
# ---------------------------------------------------------------------------
def claim_reward(
    engine: Engine,
    reward_id: int,
    user_handle: str,
    executor: PaymentExecutor,
    *,
    wallet_address: str | None = None,
    wallet_category: str | None = None,
) -> RewardRecord:
    """Pay out and settle one pending reward owned by *user_handle*.

    Raises :class:`NotFoundError` for an unknown id, :class:`ClaimRejected`
    when the record belongs to someone else or is already withdrawn, and
    :class:`PaymentExecutorError` when the payout fails (record stays
    pending).
    """
    if wallet_category is not None and wallet_category not in _VALID_CATEGORIES:
        raise ValidationError(f"wallet_category must be one of {sorted(_VALID_CATEGORIES)}")

    with Session(engine, expire_on_commit=False) as session:
        result = session.execute(
            update(RewardRecord)
            .where(
                RewardRecord.id == reward_id,
                RewardRecord.user_handle == user_handle,
                RewardRecord.claim_status == ClaimStatus.PENDING.value,
            )
            .values(
                claim_status=ClaimStatus.WITHDRAWN.value,
                claimed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            record = session.get(RewardRecord, reward_id)
            if record is None:
                raise NotFoundError(f"Reward {reward_id} not found")
            if record.user_handle != user_handle:
                raise ClaimRejected(reward_id, "reward does not belong to this user")
            raise ClaimRejected(reward_id, f"reward is already {record.claim_status}")

        record = session.get(RewardRecord, reward_id)
        destination = wallet_address or record.wallet_address
        if destination is None and record.contribution_id is not None:
            contribution = session.get(Contribution, record.contribution_id)
            destination = contribution.wallet_address if contribution else None

        try:
            tx_ref = executor.pay(PayoutRequest(
                reward_id=record.id,
                user_handle=user_handle,
                chain=record.chain,
                amount=record.reward_amount,
                destination=destination,
            ))
        except PaymentExecutorError:
            session.rollback()
            logger.warning("Claim of reward %s rolled back: payout failed", reward_id)
            raise

        record.claim_tx_ref = tx_ref
        record.withdrawal_wallet_address = destination
        record.withdrawal_wallet_category = wallet_category
        session.commit()
        session.refresh(record)
        session.expunge(record)

    logger.info("Reward %s claimed by %s (tx %s)", reward_id, user_handle, tx_ref)
    return record


# ---------------------------------------------------------------------------
# Administrative batch settlement
# ---------------------------------------------------------------------------
def settle_batch(
    engine: Engine,
    reward_ids: list[int],
    *,
    settlement_ref: str,
    actor_id: str,
    wallet_address: str | None = None,
    wallet_category: str | None = None,
    notes: str | None = None,
) -> dict:
    """Mark several pending rewards of one user as withdrawn under one reference.

    Every id gets its own result: ``withdrawn``, ``already_withdrawn`` or
    ``not_found``.  Batches whose existing records belong to more than one
    user (or, for records without a user handle, more than one wallet) are
    rejected before anything is written.
    """
    ref = (settlement_ref or "").strip()
    if not ref:
        raise ValidationError("settlement_ref is required")
    ids = list(dict.fromkeys(int(i) for i in reward_ids))
    if not ids:
        raise ValidationError("reward_ids must not be empty")
    if wallet_category is not None and wallet_category not in _VALID_CATEGORIES:
        raise ValidationError(f"wallet_type must be one of {sorted(_VALID_CATEGORIES)}")

    with Session(engine) as session:
        found = {
            row.id: row
            for row in session.execute(
                select(
                    RewardRecord.id,
                    RewardRecord.user_handle,
                    RewardRecord.wallet_address,
                    RewardRecord.claim_status,
                )
                .where(RewardRecord.id.in_(ids))
            )
        }
        # Handle-less snapshot rewards are owned by their wallet.
        owners = {
            ("user", row.user_handle) if row.user_handle is not None
            else ("wallet", row.wallet_address)
            for row in found.values()
        }
        if len(owners) > 1:
            raise ValidationError(
                "Batch settlement spans multiple users; settle each user separately"
            )

        pending_ids = [
            i for i in ids
            if i in found and found[i].claim_status == ClaimStatus.PENDING.value
        ]
        settled: set[int] = set()
        total = Decimal("0")
        if pending_ids:
            session.execute(
                update(RewardRecord)
                .where(
                    RewardRecord.id.in_(pending_ids),
                    RewardRecord.claim_status == ClaimStatus.PENDING.value,
                )
                .values(
                    claim_status=ClaimStatus.WITHDRAWN.value,
                    claim_tx_ref=ref,
                    withdrawal_wallet_address=wallet_address,
                    withdrawal_wallet_category=wallet_category,
                    claimed_at=utcnow(),
                    notes=notes,
                )
                .execution_options(synchronize_session=False)
            )
            # Rows a concurrent claim won carry a different reference.
            for row in session.execute(
                select(RewardRecord.id, RewardRecord.claim_tx_ref, RewardRecord.reward_amount)
                .where(RewardRecord.id.in_(pending_ids))
            ):
                if row.claim_tx_ref == ref:
                    settled.add(row.id)
                    total += row.reward_amount

        results = []
        for i in ids:
            if i not in found:
                status = "not_found"
            elif i in settled:
                status = ClaimStatus.WITHDRAWN.value
            else:
                status = "already_withdrawn"
            results.append({"reward_id": i, "status": status})

        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type="SETTLE_REWARDS",
            target_table="reward_records",
            target_id=ref,
            before=None,
            after={
                "reward_ids": sorted(settled),
                "wallet_address": wallet_address,
                "wallet_type": wallet_category,
                "total_amount": str(total),
            },
            reason=notes,
        )
        session.commit()

    summary = {
        "settlement_ref": ref,
        "results": results,
        "withdrawn": sum(1 for r in results if r["status"] == ClaimStatus.WITHDRAWN.value),
        "already_withdrawn": sum(1 for r in results if r["status"] == "already_withdrawn"),
        "not_found": sum(1 for r in results if r["status"] == "not_found"),
        "total_amount": str(total),
    }
    logger.info(
        "Settlement %s by %s: withdrawn=%d already=%d missing=%d",
        ref, actor_id, summary["withdrawn"], summary["already_withdrawn"], summary["not_found"],
    )
    return summary


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_user_rewards(
    engine: Engine,
    user_handle: str,
    *,
    claim_status: str | None = None,
) -> list[RewardRecord]:
    with Session(engine) as session:
        stmt = select(RewardRecord).where(RewardRecord.user_handle == user_handle)
        if claim_status:
            stmt = stmt.where(RewardRecord.claim_status == claim_status)
        rows = session.scalars(
            stmt.order_by(RewardRecord.period_end.desc(), RewardRecord.id.desc())
        ).all()
        session.expunge_all()
        return list(rows)
