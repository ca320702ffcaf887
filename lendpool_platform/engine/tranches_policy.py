"""
Tranche Profit Policies
=======================

Strategies that split a settlement's profit between the senior and junior
tranches, plus the post-processing step both share: the junior share is
further divided between the first-loss cover layers and the junior tranche.

Policies
--------
- :class:`FixedSeniorYieldPolicy`: senior is paid its accrued fixed yield
  first and junior receives whatever profit is left.
- :class:`RiskAdjustedPolicy`: senior receives its pro-rata share of profit,
  discounted by ``risk_adjustment_bps``; the discount goes to junior.

Cover profit split
------------------
Each cover layer is weighted by ``asset * risk_yield_multiplier_bps / 10000``
and junior's own assets act as an extra layer of weight 1::

    cover_profit[i] = junior_profit * weight[i] // (junior_assets + sum(weight))
    junior_keeps    = junior_profit - sum(cover_profit)

Example
-------
>>> from lendpool_platform.engine.tranches_policy import RiskAdjustedPolicy
>>> policy = RiskAdjustedPolicy(risk_adjustment_bps=8000)
>>> alloc = policy.calc_tranche_profit(12_387, 800_000, 250_000, tracker, now)
>>> alloc.senior_profit, alloc.junior_profit
(1887, 10500)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .numeric import BPS_FACTOR, bps_of, mul_div
from .pool_config import LPConfig, TranchesPolicyType
from .state import FirstLossCover
from .yield_tracker import SeniorYieldTracker, accrue, pay_down, rebase

logger = logging.getLogger("LENDPOOL.TranchesPolicy")


@dataclass(frozen=True)
class ProfitAllocation:
    """
    Result of splitting profit between the two tranches.

    Attributes
    ----------
    senior_profit : int
        Profit credited to the senior tranche.
    junior_profit : int
        Profit for junior, before the cover split.
    yield_tracker : SeniorYieldTracker
        Tracker after accrual and pay-down (unchanged for policies that do
        not track yield).
    """

    senior_profit: int
    junior_profit: int
    yield_tracker: SeniorYieldTracker


class TranchesPolicy(ABC):
    """Strategy interface for splitting profit between senior and junior."""

    name: str = "base"

    @abstractmethod
    def calc_tranche_profit(
        self,
        profit: int,
        senior_assets: int,
        junior_assets: int,
        tracker: SeniorYieldTracker,
        now: int,
    ) -> ProfitAllocation:
        """
        Split ``profit`` between the tranches.

        Parameters
        ----------
        profit : int
            Profit to distribute, after pool fees.
        senior_assets, junior_assets : int
            Tranche balances before the profit is applied.
        tracker : SeniorYieldTracker
            Current senior yield tracker.
        now : int
            Settlement timestamp.
        """
        ...

    def refresh_tracker(self, tracker: SeniorYieldTracker, now: int, senior_assets: int) -> SeniorYieldTracker:
        """Hook called whenever senior assets change outside the waterfall."""
        return tracker


class FixedSeniorYieldPolicy(TranchesPolicy):
    """
    Pay senior its accrued fixed yield first.

    Parameters
    ----------
    yield_bps : int
        Annual senior yield in basis points.
    """

    name = "fixed_senior_yield"

    def __init__(self, yield_bps: int) -> None:
        self.yield_bps = yield_bps

    def calc_tranche_profit(
        self,
        profit: int,
        senior_assets: int,
        junior_assets: int,
        tracker: SeniorYieldTracker,
        now: int,
    ) -> ProfitAllocation:
        tracker = accrue(tracker, now, self.yield_bps)
        senior_profit = min(profit, tracker.unpaid_yield)
        junior_profit = profit - senior_profit
        tracker = pay_down(tracker, senior_profit)
        tracker = rebase(tracker, now, self.yield_bps, senior_assets + senior_profit)
        logger.debug(
            f"Fixed yield: senior {senior_profit}, junior {junior_profit}, "
            f"unpaid yield left {tracker.unpaid_yield}"
        )
        return ProfitAllocation(senior_profit, junior_profit, tracker)

    def refresh_tracker(self, tracker: SeniorYieldTracker, now: int, senior_assets: int) -> SeniorYieldTracker:
        return rebase(tracker, now, self.yield_bps, senior_assets)


class RiskAdjustedPolicy(TranchesPolicy):
    """
    Share profit pro rata, shifting part of senior's share to junior.

    Parameters
    ----------
    risk_adjustment_bps : int
        Fraction of senior's pro-rata share reassigned to junior.
    """

    name = "risk_adjusted"

    def __init__(self, risk_adjustment_bps: int) -> None:
        self.risk_adjustment_bps = risk_adjustment_bps

    def calc_tranche_profit(
        self,
        profit: int,
        senior_assets: int,
        junior_assets: int,
        tracker: SeniorYieldTracker,
        now: int,
    ) -> ProfitAllocation:
        total_assets = senior_assets + junior_assets
        if total_assets == 0:
            return ProfitAllocation(0, profit, tracker)
        senior_profit = mul_div(profit, senior_assets, total_assets)
        senior_profit = bps_of(senior_profit, BPS_FACTOR - self.risk_adjustment_bps)
        logger.debug(f"Risk adjusted: senior {senior_profit}, junior {profit - senior_profit}")
        return ProfitAllocation(senior_profit, profit - senior_profit, tracker)


def split_junior_profit(
    junior_profit: int,
    junior_assets: int,
    covers: Sequence[FirstLossCover],
) -> Tuple[int, List[int]]:
    """
    Divide junior's profit between the cover layers and the junior tranche.

    Parameters
    ----------
    junior_profit : int
        Profit allocated to junior by the tranche policy.
    junior_assets : int
        Junior balance before the profit; acts as junior's own weight.
    covers : sequence of FirstLossCover
        Cover layers in list order.

    Returns
    -------
    tuple
        ``(junior_keeps, cover_profits)`` with
        ``junior_keeps + sum(cover_profits) == junior_profit``.
    """
    weights = [
        mul_div(c.asset, c.config.risk_yield_multiplier_bps, BPS_FACTOR) for c in covers
    ]
    total_weight = junior_assets + sum(weights)
    if junior_profit == 0 or total_weight == 0:
        return junior_profit, [0] * len(covers)

    cover_profits = [mul_div(junior_profit, w, total_weight) for w in weights]
    return junior_profit - sum(cover_profits), cover_profits


def build_policy(lp_config: LPConfig) -> TranchesPolicy:
    """Instantiate the profit policy selected by ``lp_config``."""
    if lp_config.tranches_policy is TranchesPolicyType.FIXED_SENIOR_YIELD:
        return FixedSeniorYieldPolicy(lp_config.fixed_senior_yield_bps)
    return RiskAdjustedPolicy(lp_config.risk_adjustment_bps)
