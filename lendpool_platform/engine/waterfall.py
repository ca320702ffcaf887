"""
Profit, Loss and Recovery Waterfall
===================================

This module allocates one settlement's aggregate P/L across the senior
tranche, the junior tranche and the first-loss cover layers. It is the
only place tranche and cover balances change in response to credit
performance.

Order of application
--------------------
1. **Fees**: protocol, pool-owner and evaluation-agent fees are skimmed
   from profit.
2. **Profit**: the configured :class:`~tranches_policy.TranchesPolicy`
   splits the remaining profit between senior and junior; junior's share is
   then divided with the cover layers by their risk-yield weights.
3. **Loss**: covers absorb in list order, each limited to
   ``min(loss * rate / 10000, cap, asset, remaining)``; junior takes what is
   left up to its balance; senior takes the rest.
4. **Recovery**: senior is restored first, then junior, then covers in
   reverse list order, each capped at the loss it is still carrying. Any
   recovery beyond all recorded losses is credited to junior.

Every step clamps with ``min``; no balance is ever driven below zero.

Example
-------
>>> from lendpool_platform.engine.waterfall import PnLWaterfall
>>> waterfall = PnLWaterfall.from_config(state.config)
>>> result = waterfall.distribute(state, profit=12_387, loss=0, recovery=0, now=now)
>>> result.senior_profit, result.junior_profit
(1887, 10500)

See Also
--------
tranches_policy : Profit policies and the cover profit split.
epoch_manager.EpochManager : Runs the waterfall on each settlement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .audit_trail import SettlementStepTrace, SettlementTrace
from .errors import InvariantViolationError
from .numeric import BPS_FACTOR, bps_of, check_uint, checked_add, mul_div
from .pool_config import FeeStructure, PoolConfig
from .state import PoolState
from .tranches_policy import TranchesPolicy, build_policy, split_junior_profit

logger = logging.getLogger("LENDPOOL.Waterfall")


@dataclass
class FeeDistribution:
    """Fees skimmed from one settlement's profit."""

    protocol_fee: int = 0
    pool_owner_reward: int = 0
    ea_reward: int = 0

    @property
    def total(self) -> int:
        """Sum of all fees."""
        return self.protocol_fee + self.pool_owner_reward + self.ea_reward


@dataclass
class WaterfallResult:
    """
    Per-layer breakdown of one waterfall run.

    Attributes
    ----------
    fees : FeeDistribution
        Fees skimmed before the profit policy.
    senior_profit, junior_profit : int
        Profit credited to each tranche; ``junior_profit`` is what junior
        kept after the cover split.
    cover_profits : list of int
        Profit credited to each cover layer, in list order.
    cover_losses : list of int
        Loss absorbed by each cover layer.
    junior_loss, senior_loss : int
        Loss absorbed by each tranche.
    senior_recovery, junior_recovery : int
        Recovery credited to each tranche. Any surplus recovery is included
        in ``junior_recovery``.
    cover_recoveries : list of int
        Recovery credited to each cover layer, in list order.
    """

    fees: FeeDistribution = field(default_factory=FeeDistribution)
    senior_profit: int = 0
    junior_profit: int = 0
    cover_profits: List[int] = field(default_factory=list)
    cover_losses: List[int] = field(default_factory=list)
    junior_loss: int = 0
    senior_loss: int = 0
    senior_recovery: int = 0
    junior_recovery: int = 0
    cover_recoveries: List[int] = field(default_factory=list)

    @property
    def distributed_profit(self) -> int:
        """Profit credited to tranches and covers."""
        return self.senior_profit + self.junior_profit + sum(self.cover_profits)

    @property
    def absorbed_loss(self) -> int:
        """Loss absorbed across all layers."""
        return self.senior_loss + self.junior_loss + sum(self.cover_losses)

    @property
    def distributed_recovery(self) -> int:
        """Recovery credited across all layers."""
        return self.senior_recovery + self.junior_recovery + sum(self.cover_recoveries)


class PnLWaterfall:
    """
    Apply fees, profit, loss and recovery to a :class:`PoolState`.

    Parameters
    ----------
    policy : TranchesPolicy
        Senior/junior profit split.
    fees : FeeStructure
        Fee rates applied to gross profit.

    Notes
    -----
    :meth:`distribute` mutates the state it is given. The epoch manager
    passes a working copy and only commits it once the whole settlement has
    succeeded.
    """

    def __init__(self, policy: TranchesPolicy, fees: Optional[FeeStructure] = None) -> None:
        self.policy = policy
        self.fees = fees or FeeStructure()

    @classmethod
    def from_config(cls, config: PoolConfig) -> "PnLWaterfall":
        """Build the waterfall selected by a pool configuration."""
        return cls(build_policy(config.lp_config), config.fees)

    def distribute(
        self,
        state: PoolState,
        profit: int,
        loss: int,
        recovery: int,
        now: int,
        trace: Optional[SettlementTrace] = None,
    ) -> WaterfallResult:
        """
        Run the full waterfall for one settlement.

        Parameters
        ----------
        state : PoolState
            State to update in place.
        profit, loss, recovery : int
            Aggregate amounts reported by the credit collaborator.
        now : int
            Settlement timestamp, used by the fixed-yield policy.
        trace : SettlementTrace, optional
            Audit trace to record each stage into.

        Returns
        -------
        WaterfallResult
            Amounts credited to or absorbed by each layer.
        """
        check_uint(profit, "profit")
        check_uint(loss, "loss")
        check_uint(recovery, "recovery")

        result = WaterfallResult(
            cover_profits=[0] * len(state.covers),
            cover_losses=[0] * len(state.covers),
            cover_recoveries=[0] * len(state.covers),
        )
        before = state.total_value()

        if profit > 0:
            self._apply_profit(state, profit, now, result)
            self._record(trace, "profit", profit, result.distributed_profit, state)
        if loss > 0:
            self._apply_loss(state, loss, result)
            self._record(trace, "loss", loss, result.absorbed_loss, state)
        if recovery > 0:
            self._apply_recovery(state, recovery, result)
            self._record(trace, "recovery", recovery, result.distributed_recovery, state)
        state.yield_tracker = self.policy.refresh_tracker(
            state.yield_tracker, now, state.tranche_assets.senior
        )

        expected = before + profit - result.fees.total - loss + recovery
        if state.total_value() != expected:
            logger.error(f"Waterfall broke conservation: expected {expected}, got {state.total_value()}")
            raise InvariantViolationError("Waterfall conservation check failed")

        logger.info(
            f"Waterfall applied: profit={profit} (fees {result.fees.total}), loss={loss}, "
            f"recovery={recovery} -> senior={state.tranche_assets.senior}, "
            f"junior={state.tranche_assets.junior}, covers={state.cover_total()}"
        )
        return result

    # --- Stages ---
    def skim_fees(self, profit: int) -> FeeDistribution:
        """
        Compute the fees owed on ``profit``.

        The protocol fee comes off the top; pool owner and EA rewards are
        rates on what is left after it.
        """
        protocol_fee = bps_of(profit, self.fees.protocol_fee_bps)
        remaining = profit - protocol_fee
        return FeeDistribution(
            protocol_fee=protocol_fee,
            pool_owner_reward=bps_of(remaining, self.fees.pool_owner_reward_bps),
            ea_reward=bps_of(remaining, self.fees.ea_reward_bps),
        )

    def _apply_profit(self, state: PoolState, profit: int, now: int, result: WaterfallResult) -> None:
        result.fees = self.skim_fees(profit)
        state.accrued_fees = checked_add(state.accrued_fees, result.fees.total, "accrued_fees")
        net_profit = profit - result.fees.total

        assets = state.tranche_assets
        allocation = self.policy.calc_tranche_profit(
            net_profit, assets.senior, assets.junior, state.yield_tracker, now
        )
        state.yield_tracker = allocation.yield_tracker

        junior_keeps, cover_profits = split_junior_profit(
            allocation.junior_profit, assets.junior, state.covers
        )
        for cover, amount in zip(state.covers, cover_profits):
            cover.asset = checked_add(cover.asset, amount, f"{cover.config.name}.asset")

        assets.senior = checked_add(assets.senior, allocation.senior_profit, "senior_assets")
        assets.junior = checked_add(assets.junior, junior_keeps, "junior_assets")

        result.senior_profit = allocation.senior_profit
        result.junior_profit = junior_keeps
        result.cover_profits = cover_profits
        logger.debug(
            f"Profit {net_profit}: senior {allocation.senior_profit}, junior {junior_keeps}, "
            f"covers {cover_profits}"
        )

    def _apply_loss(self, state: PoolState, loss: int, result: WaterfallResult) -> None:
        remaining = loss
        for idx, cover in enumerate(state.covers):
            if remaining == 0:
                break
            absorbed = min(
                mul_div(loss, cover.config.cover_rate_per_loss_bps, BPS_FACTOR),
                cover.config.cover_cap_per_loss,
                cover.asset,
                remaining,
            )
            cover.asset -= absorbed
            cover.covered_loss = checked_add(cover.covered_loss, absorbed, f"{cover.config.name}.covered_loss")
            result.cover_losses[idx] = absorbed
            remaining -= absorbed

        assets = state.tranche_assets
        losses = state.tranche_losses

        junior_loss = min(remaining, assets.junior)
        assets.junior -= junior_loss
        losses.junior = checked_add(losses.junior, junior_loss, "junior_loss")
        remaining -= junior_loss

        senior_loss = min(remaining, assets.senior)
        assets.senior -= senior_loss
        losses.senior = checked_add(losses.senior, senior_loss, "senior_loss")
        remaining -= senior_loss

        if remaining:
            logger.error(f"Loss of {loss} exceeds pool value by {remaining}")
            raise InvariantViolationError(f"Loss of {loss} exceeds total pool value")

        result.junior_loss = junior_loss
        result.senior_loss = senior_loss
        logger.debug(f"Loss {loss}: covers {result.cover_losses}, junior {junior_loss}, senior {senior_loss}")

    def _apply_recovery(self, state: PoolState, recovery: int, result: WaterfallResult) -> None:
        assets = state.tranche_assets
        losses = state.tranche_losses
        remaining = recovery

        senior_recovery = min(remaining, losses.senior)
        losses.senior -= senior_recovery
        assets.senior = checked_add(assets.senior, senior_recovery, "senior_assets")
        remaining -= senior_recovery

        junior_recovery = min(remaining, losses.junior)
        losses.junior -= junior_recovery
        remaining -= junior_recovery

        for idx in reversed(range(len(state.covers))):
            if remaining == 0:
                break
            cover = state.covers[idx]
            recovered = min(remaining, cover.covered_loss)
            cover.covered_loss -= recovered
            cover.asset = checked_add(cover.asset, recovered, f"{cover.config.name}.asset")
            result.cover_recoveries[idx] = recovered
            remaining -= recovered

        if remaining:
            logger.warning(f"Recovery exceeds recorded losses by {remaining}; crediting junior")
            junior_recovery += remaining

        assets.junior = checked_add(assets.junior, junior_recovery, "junior_assets")
        result.senior_recovery = senior_recovery
        result.junior_recovery = junior_recovery
        logger.debug(
            f"Recovery {recovery}: senior {senior_recovery}, junior {junior_recovery}, "
            f"covers {result.cover_recoveries}"
        )

    @staticmethod
    def _record(
        trace: Optional[SettlementTrace],
        stage: str,
        requested: int,
        allocated: int,
        state: PoolState,
    ) -> None:
        if trace is None:
            return
        trace.add_step(
            SettlementStepTrace(
                step_id=f"waterfall.{stage}",
                epoch_id=trace.epoch_id,
                stage=stage,
                requested_amount=requested,
                allocated_amount=allocated,
                post_senior_assets=state.tranche_assets.senior,
                post_junior_assets=state.tranche_assets.junior,
                post_cover_assets=[c.asset for c in state.covers],
            )
        )

