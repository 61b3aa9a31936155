"""
yieldvault.engine.accrual — Compound Accrual Calculator
========================================================

Pure calculation, no DB I/O.

    hourly_rate = apy / 100 / (365 × 24)
    reward      = principal × ((1 + hourly_rate) ^ hours − 1)

All arithmetic runs in :class:`decimal.Decimal` at 50 significant digits and
the result is truncated (``ROUND_DOWN``) to 18 decimal places, so a reward is
never rounded up past what is actually owed.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import ROUND_DOWN, Context, Decimal, InvalidOperation, Overflow, localcontext

logger = logging.getLogger(__name__)

WORKING_PRECISION = 50
AMOUNT_QUANTUM = Decimal("1e-18")
HOURS_PER_YEAR = Decimal(365 * 24)

_ZERO = Decimal("0")


def _to_decimal(value: object) -> Decimal | None:
    """Coerce *value* to a finite Decimal, or ``None`` if that is impossible."""
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, float):
            result = Decimal(repr(value))
        else:
            result = Decimal(value)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def quantize_amount(amount: Decimal) -> Decimal:
    """Truncate *amount* to 18 decimal places."""
    ctx = Context(prec=WORKING_PRECISION, rounding=ROUND_DOWN)
    return amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN, context=ctx)


def calculate_reward(principal: object, apy_percent: object, hours_elapsed: object) -> Decimal:
    """Return the compound reward owed for *hours_elapsed* hours.

    Never raises.  Negative, NaN, infinite or unparseable inputs produce
    ``Decimal("0")`` and a warning, and so does a result too large to represent.
    """
    p = _to_decimal(principal)
    apy = _to_decimal(apy_percent)
    hours = _to_decimal(hours_elapsed)

    if p is None or apy is None or hours is None or p < 0 or apy < 0 or hours < 0:
        logger.warning(
            "Invalid accrual inputs (principal=%r, apy=%r, hours=%r); reward is zero",
            principal, apy_percent, hours_elapsed,
        )
        return _ZERO
    if p == 0 or apy == 0 or hours == 0:
        return _ZERO

    try:
        with localcontext() as ctx:
            ctx.prec = WORKING_PRECISION
            hourly_rate = apy / Decimal(100) / HOURS_PER_YEAR
            growth = (Decimal(1) + hourly_rate) ** hours
            reward = p * (growth - Decimal(1))
        if reward < 0:
            return _ZERO
        return quantize_amount(reward)
    except (Overflow, InvalidOperation):
        logger.warning(
            "Accrual overflow (principal=%r, apy=%r, hours=%r); reward is zero",
            principal, apy_percent, hours_elapsed,
        )
        return _ZERO


def is_negligible(amount: Decimal, threshold: Decimal) -> bool:
    """A reward at or below zero, or under *threshold*, is not worth a record."""
    return amount <= 0 or amount < threshold


def hours_between(start: datetime, end: datetime) -> Decimal:
    """Elapsed hours from *start* to *end* as an exact Decimal.

    Naive datetimes are treated as UTC.  Negative spans come back negative;
    callers decide what to do with them.
    """
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    if end.tzinfo is None:
        end = end.replace(tzinfo=UTC)
    delta = end - start
    micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        return Decimal(micros) / Decimal(3_600_000_000)
