"""
yieldvault.engine.distribution — Pro-rata Pool Allocation
==========================================================

Pure calculation, no DB I/O.

    pool_amount = revenue × pool_percentage
    share(w)    = holdings(w) / total_supply × pool_amount   (truncated)

Truncating every share means the allocated sum can only fall short of the
pool, never exceed it.  The shortfall is reported as ``residual_dust``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, localcontext

from yieldvault.engine.accrual import WORKING_PRECISION, quantize_amount
from yieldvault.errors import ValidationError


@dataclass
class PoolAllocation:
    """Result of splitting one revenue pool across holders."""

    pool_amount: Decimal
    total_supply: Decimal
    shares: dict[str, Decimal] = field(default_factory=dict)

    @property
    def distributed(self) -> Decimal:
        return sum(self.shares.values(), Decimal("0"))

    @property
    def residual_dust(self) -> Decimal:
        return self.pool_amount - self.distributed


def pool_amount_for(revenue: Decimal, pool_percentage: Decimal) -> Decimal:
    """Validate inputs and return the truncated pool amount."""
    if not revenue.is_finite() or revenue < 0:
        raise ValidationError(f"Revenue must be a non-negative number, got {revenue}")
    if not pool_percentage.is_finite() or not (Decimal("0") < pool_percentage <= Decimal("1")):
        raise ValidationError(f"Pool percentage must be in (0, 1], got {pool_percentage}")
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        return quantize_amount(revenue * pool_percentage)


def allocate_pool(
    holdings: Mapping[str, Decimal],
    revenue: Decimal,
    pool_percentage: Decimal,
) -> PoolAllocation:
    """Split ``revenue × pool_percentage`` across *holdings* pro rata.

    Wallets with zero (or negative) holdings are not eligible and receive no
    share.  Shares that truncate to zero are dropped as well.
    """
    pool = pool_amount_for(revenue, pool_percentage)
    eligible = {w: q for w, q in holdings.items() if q > 0}
    total = sum(eligible.values(), Decimal("0"))

    allocation = PoolAllocation(pool_amount=pool, total_supply=total)
    if total == 0 or pool == 0:
        return allocation

    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        for wallet, quantity in eligible.items():
            share = quantize_amount(quantity * pool / total)
            if share > 0:
                allocation.shares[wallet] = share
    return allocation
