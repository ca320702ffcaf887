"""
Integer Arithmetic and Yield Accrual Tests
==========================================

Tests for the fixed-point primitives every settlement component relies on
and for the senior yield tracker:
- uint256 bounds enforced at operation boundaries
- Truncating multiply-divide and ceiling division
- Yield accrual over elapsed time, pay-down and rebasing
"""

import pytest

from lendpool_platform.engine.errors import ArithmeticBoundsError, NegativeBalanceError
from lendpool_platform.engine.numeric import (
    MAX_UINT,
    SECONDS_IN_YEAR,
    bps_of,
    ceil_div,
    check_uint,
    checked_add,
    checked_sub,
    mul_div,
)
from lendpool_platform.engine.yield_tracker import SeniorYieldTracker, accrue, pay_down, rebase


# =============================================================================
# Numeric Primitives
# =============================================================================


class TestBounds:
    """Tests for uint256 validation."""

    @pytest.mark.parametrize("value", [0, 1, MAX_UINT])
    def test_accepts_values_in_range(self, value):
        assert check_uint(value) == value

    @pytest.mark.parametrize("value", [-1, MAX_UINT + 1])
    def test_rejects_out_of_range(self, value):
        with pytest.raises(ArithmeticBoundsError, match="out of range"):
            check_uint(value, "amount")

    @pytest.mark.parametrize("value", [True, 1.5, "10"])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ArithmeticBoundsError, match="must be an integer"):
            check_uint(value)

    def test_checked_add_rejects_overflow(self):
        with pytest.raises(ArithmeticBoundsError):
            checked_add(MAX_UINT, 1)

    def test_checked_sub_never_goes_negative(self):
        """
        Scenario: Subtract more than the balance holds.
        Expected: NegativeBalanceError instead of a negative balance.
        """
        assert checked_sub(10, 10) == 0
        with pytest.raises(NegativeBalanceError, match="junior_assets"):
            checked_sub(5, 6, "junior_assets")


class TestDivision:
    """Tests for truncating and ceiling division."""

    def test_mul_div_truncates(self):
        assert mul_div(12_387, 800_000, 1_050_000) == 9_437
        assert mul_div(7, 1, 2) == 3

    def test_mul_div_intermediate_above_uint_range(self):
        """The product may exceed 256 bits as long as the quotient fits."""
        assert mul_div(MAX_UINT, 3, 3) == MAX_UINT

    def test_division_by_zero(self):
        with pytest.raises(ArithmeticBoundsError, match="Division by zero"):
            mul_div(1, 1, 0)
        with pytest.raises(ArithmeticBoundsError, match="Division by zero"):
            ceil_div(1, 0)

    def test_ceil_div(self):
        assert ceil_div(10, 4) == 3
        assert ceil_div(12, 4) == 3
        assert ceil_div(0, 4) == 0

    def test_bps_of(self):
        assert bps_of(9_437, 2_000) == 1_887
        assert bps_of(10_000, 10_000) == 10_000


# =============================================================================
# Senior Yield Tracker
# =============================================================================


class TestYieldTracker:
    """Tests for fixed senior yield accrual."""

    def test_full_year_accrual(self):
        """
        Scenario: 1,000,000 of senior principal at 10% for one year.
        Expected: 100,000 of unpaid yield.
        """
        tracker = SeniorYieldTracker(total_assets=1_000_000)
        accrued = accrue(tracker, SECONDS_IN_YEAR, 1_000)

        assert accrued.unpaid_yield == 100_000
        assert accrued.last_updated_date == SECONDS_IN_YEAR
        assert tracker.unpaid_yield == 0

    def test_partial_period_truncates(self):
        tracker = SeniorYieldTracker(total_assets=800_000)
        # 30 days at 10%: 6575.34...
        assert accrue(tracker, 30 * 24 * 3600, 1_000).unpaid_yield == 6_575

    def test_time_never_moves_backwards(self):
        tracker = SeniorYieldTracker(total_assets=1_000_000, unpaid_yield=5, last_updated_date=100)
        assert accrue(tracker, 50, 1_000) is tracker
        assert accrue(tracker, 100, 1_000) is tracker

    def test_pay_down(self):
        tracker = SeniorYieldTracker(total_assets=1_000, unpaid_yield=300)
        assert pay_down(tracker, 200).unpaid_yield == 100
        with pytest.raises(NegativeBalanceError):
            pay_down(tracker, 301)

    def test_rebase_accrues_on_old_basis(self):
        """
        Scenario: Senior principal doubles half-way through the year.
        Expected: The first half accrues on the old principal; the basis is
        replaced only afterwards.
        """
        tracker = SeniorYieldTracker(total_assets=1_000_000)
        half_year = SECONDS_IN_YEAR // 2

        rebased = rebase(tracker, half_year, 1_000, 2_000_000)
        assert rebased.unpaid_yield == 50_000
        assert rebased.total_assets == 2_000_000

        year_end = accrue(rebased, SECONDS_IN_YEAR, 1_000)
        assert year_end.unpaid_yield == 150_000
