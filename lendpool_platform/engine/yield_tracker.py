"""
Senior Yield Tracker
====================

Tracks the fixed-yield senior tranche's accrued-but-unpaid yield. Accrual is
a pure function of elapsed time and the principal basis; the tracker itself
is an immutable value and every operation returns a new tracker.

Accrual formula (integer, truncating)::

    unpaid_yield += total_assets * rate_bps * elapsed // (SECONDS_IN_YEAR * 10000)

Example
-------
>>> from lendpool_platform.engine.yield_tracker import SeniorYieldTracker, accrue
>>> tracker = SeniorYieldTracker(total_assets=1_000_000, unpaid_yield=0, last_updated_date=0)
>>> accrue(tracker, 365 * 24 * 3600, 1000).unpaid_yield
100000
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from .numeric import BPS_FACTOR, SECONDS_IN_YEAR, check_uint, checked_sub, mul_div

logger = logging.getLogger("LENDPOOL.YieldTracker")


@dataclass(frozen=True)
class SeniorYieldTracker:
    """
    Accrual state of the senior tranche under the fixed-yield policy.

    Attributes
    ----------
    total_assets : int
        Principal basis the yield accrues on.
    unpaid_yield : int
        Yield accrued and not yet paid out of profit.
    last_updated_date : int
        Unix timestamp of the last accrual. Only moves forward.
    """

    total_assets: int = 0
    unpaid_yield: int = 0
    last_updated_date: int = 0


def accrue(tracker: SeniorYieldTracker, current_time: int, annual_rate_bps: int) -> SeniorYieldTracker:
    """
    Accrue senior yield up to ``current_time``.

    Parameters
    ----------
    tracker : SeniorYieldTracker
        Current accrual state.
    current_time : int
        Unix timestamp to accrue to.
    annual_rate_bps : int
        Annual yield in basis points.

    Returns
    -------
    SeniorYieldTracker
        Updated tracker, or ``tracker`` itself when ``current_time`` is not
        after ``last_updated_date``.
    """
    check_uint(current_time, "current_time")
    if current_time <= tracker.last_updated_date:
        return tracker
    elapsed = current_time - tracker.last_updated_date
    accrued = mul_div(
        tracker.total_assets * annual_rate_bps,
        elapsed,
        SECONDS_IN_YEAR * BPS_FACTOR,
    )
    logger.debug(f"Accrued {accrued} senior yield over {elapsed}s")
    return replace(
        tracker,
        unpaid_yield=check_uint(tracker.unpaid_yield + accrued, "unpaid_yield"),
        last_updated_date=current_time,
    )


def pay_down(tracker: SeniorYieldTracker, amount: int) -> SeniorYieldTracker:
    """Reduce ``unpaid_yield`` by ``amount`` paid out of profit."""
    return replace(tracker, unpaid_yield=checked_sub(tracker.unpaid_yield, amount, "unpaid_yield"))


def rebase(
    tracker: SeniorYieldTracker,
    current_time: int,
    annual_rate_bps: int,
    new_total_assets: int,
) -> SeniorYieldTracker:
    """
    Accrue to ``current_time`` and reset the principal basis.

    Used whenever the senior balance changes outside the waterfall
    (deposits, redemption payouts) so that yield accrued before the change
    is computed on the old basis.
    """
    accrued = accrue(tracker, current_time, annual_rate_bps)
    return replace(accrued, total_assets=check_uint(new_total_assets, "total_assets"))
