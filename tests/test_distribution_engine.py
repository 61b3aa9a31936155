"""
tests/test_distribution_engine.py — Pro-rata Pool Allocation
=============================================================
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from yieldvault.engine.distribution import allocate_pool, pool_amount_for
from yieldvault.errors import ValidationError


class TestAllocatePool:
    def test_thirty_seventy_split(self):
        allocation = allocate_pool(
            {"A": Decimal("30"), "B": Decimal("70")}, Decimal("1000"), Decimal("0.25")
        )
        assert allocation.pool_amount == Decimal("250")
        assert allocation.total_supply == Decimal("100")
        assert allocation.shares == {"A": Decimal("75"), "B": Decimal("175")}
        assert allocation.residual_dust == 0

    def test_truncation_never_exceeds_the_pool(self):
        allocation = allocate_pool(
            {"A": Decimal(1), "B": Decimal(1), "C": Decimal(1)}, Decimal("1"), Decimal("1")
        )
        third = Decimal("0.333333333333333333")
        assert set(allocation.shares.values()) == {third}
        assert allocation.distributed <= allocation.pool_amount
        assert allocation.residual_dust == Decimal("1e-18")

    @pytest.mark.parametrize("holdings", [
        {"A": Decimal("7"), "B": Decimal("11"), "C": Decimal("13")},
        {"A": Decimal("0.000001"), "B": Decimal("999999999")},
        {f"w{i}": Decimal(i) for i in range(1, 50)},
    ])
    def test_sum_of_shares_is_bounded_by_pool(self, holdings):
        allocation = allocate_pool(holdings, Decimal("12345.6789"), Decimal("0.3"))
        assert allocation.distributed <= allocation.pool_amount
        assert allocation.residual_dust < Decimal(len(holdings)) * Decimal("1e-18") + Decimal("1e-18")

    def test_zero_holdings_are_excluded(self):
        allocation = allocate_pool(
            {"A": Decimal("10"), "B": Decimal("0")}, Decimal("100"), Decimal("0.5")
        )
        assert allocation.shares == {"A": Decimal("50")}
        assert allocation.total_supply == Decimal("10")

    def test_empty_snapshot_allocates_nothing(self):
        allocation = allocate_pool({}, Decimal("100"), Decimal("0.25"))
        assert allocation.shares == {}
        assert allocation.residual_dust == allocation.pool_amount == Decimal("25")

    def test_zero_revenue(self):
        allocation = allocate_pool({"A": Decimal("1")}, Decimal("0"), Decimal("0.25"))
        assert allocation.shares == {}
        assert allocation.pool_amount == 0


class TestPoolAmount:
    @pytest.mark.parametrize("pct", ["0", "-0.1", "1.01", "NaN", "sNaN", "Infinity"])
    def test_percentage_outside_range(self, pct):
        with pytest.raises(ValidationError):
            pool_amount_for(Decimal("100"), Decimal(pct))

    def test_full_percentage_allowed(self):
        assert pool_amount_for(Decimal("100"), Decimal("1")) == Decimal("100")

    @pytest.mark.parametrize("revenue", ["-1", "NaN", "Infinity"])
    def test_bad_revenue(self, revenue):
        with pytest.raises(ValidationError):
            pool_amount_for(Decimal(revenue), Decimal("0.25"))
