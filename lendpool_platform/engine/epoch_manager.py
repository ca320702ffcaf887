"""
Epoch Settlement Engine
=======================

This module runs the pool's epoch state machine. An epoch is **Open** while
it accepts redemption requests; once ``now >= end_time`` anyone may close
it. Closing performs one atomic settlement and immediately opens the next
epoch.

Settlement sequence
-------------------
1. Pull ``(profit, loss, recovery)`` from the credit collaborator.
2. Run the :class:`~waterfall.PnLWaterfall`.
3. Price both tranches and compute redemption budgets from the updated
   balances and the leverage covenant:

   - ``senior_budget = min(available_liquidity, senior_assets)``
   - ``min_junior = ceil(senior_remaining / max_senior_junior_ratio)``
   - ``junior_budget = min(liquidity_left, max(0, junior_assets - min_junior))``

   With a flex-call window of ``N`` epochs, a first pass serves only mature
   epochs (requested at least ``N`` settlements ago) in both tranches; a
   second pass serves the immature ones from whatever is left.
4. Each tranche's ledger consumes its budget oldest-epoch-first. Paid
   amounts leave tranche assets, the redeemed shares are burned and the
   cash is reserved for investor withdrawal.
5. Record a snapshot and open the next epoch, whose ``end_time`` is the
   prior boundary advanced by whole periods until it lies after ``now``.

Atomicity
---------
Settlement runs on a deep copy of the :class:`~state.PoolState` (past
snapshots are shared, not copied). The copy replaces the live state only
after every step succeeded, so a failure at any point leaves the pool
untouched. P/L already pulled from the credit collaborator by a failed
settlement is held and applied by the next attempt.

Concurrency
-----------
A lock serialises settlement against every other pool mutation. While a
settlement is in flight, any mutation (including one attempted from inside
the credit collaborator's callback) is rejected with
:class:`~errors.ReentrancyError`.

Example
-------
>>> manager = EpochManager(PoolState.from_config(config), credit_source)
>>> manager.state.pool_enabled = True
>>> manager.start_new_epoch(now=0, caller=config.settings.controller)
>>> result = manager.close_current_epoch(now=config.settings.epoch_period_seconds)
>>> result.epoch_id, manager.state.epoch.id
(1, 2)
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .audit_trail import AuditTrail, SettlementStepTrace, SettlementTrace
from .credit import CreditPnLSource, PnLReport
from .errors import (
    EpochCloseTooSoonError,
    EpochNotStartedError,
    PoolNotOnError,
    ProtocolPausedError,
    ReentrancyError,
    UnauthorizedCallerError,
)
from .numeric import ceil_div, check_uint, checked_add, checked_sub
from .state import Epoch, PoolState, Snapshot
from .tranche_vault import Tranche
from .waterfall import PnLWaterfall, WaterfallResult

logger = logging.getLogger("LENDPOOL.EpochManager")


@dataclass(frozen=True)
class TrancheRedemption:
    """Redemptions paid to one tranche during one settlement."""

    tranche: Tranche
    price: int
    shares_processed: int = 0
    amount_processed: int = 0


@dataclass(frozen=True)
class SettlementResult:
    """
    Outcome of closing one epoch.

    Attributes
    ----------
    epoch_id : int
        The epoch that was closed.
    settled_at : int
        Settlement timestamp.
    senior_assets, junior_assets : int
        Tranche totals after redemption payouts.
    senior_price, junior_price : int
        Prices redemptions were processed at, scaled by 1e18.
    unprocessed_shares : int
        Shares still queued across both tranches.
    pnl : PnLReport
        What the credit collaborator reported.
    waterfall : WaterfallResult
        Per-layer breakdown of the P/L allocation.
    redemptions : dict
        Tranche to :class:`TrancheRedemption`.
    next_epoch : Epoch
        The epoch opened by this settlement.
    """

    epoch_id: int
    settled_at: int
    senior_assets: int
    junior_assets: int
    senior_price: int
    junior_price: int
    unprocessed_shares: int
    pnl: PnLReport
    waterfall: WaterfallResult
    redemptions: Dict[Tranche, TrancheRedemption] = field(default_factory=dict)
    next_epoch: Epoch = field(default_factory=Epoch)

    @property
    def total_redeemed(self) -> int:
        """Amount paid out across both tranches."""
        return sum(r.amount_processed for r in self.redemptions.values())


def next_end_time(prior_end_time: int, now: int, period_seconds: int) -> int:
    """
    Advance ``prior_end_time`` by whole periods until it lies after ``now``.

    Keeps epoch boundaries on a fixed grid however late settlement runs.

    >>> next_end_time(100, 100, 30)
    130
    >>> next_end_time(100, 175, 30)
    190
    """
    if now < prior_end_time:
        return prior_end_time + period_seconds
    periods = (now - prior_end_time) // period_seconds + 1
    return prior_end_time + periods * period_seconds


class EpochManager:
    """
    Owns the live :class:`PoolState` and runs settlements against it.

    Parameters
    ----------
    state : PoolState
        Initial pool state. After each settlement ``self.state`` refers to
        a new object.
    credit_source : CreditPnLSource
        Collaborator reporting aggregate P/L.
    audit_trail : AuditTrail, optional
        Receives one trace per settlement.
    """

    def __init__(
        self,
        state: PoolState,
        credit_source: CreditPnLSource,
        audit_trail: Optional[AuditTrail] = None,
    ) -> None:
        self.state = state
        self.credit_source = credit_source
        self.audit_trail = audit_trail or AuditTrail(enabled=False)
        self.waterfall = PnLWaterfall.from_config(state.config)
        self._lock = threading.Lock()
        self._settling = False
        self._pending_pnl: Optional[PnLReport] = None

    @property
    def pending_pnl(self) -> Optional[PnLReport]:
        """P/L pulled by a failed settlement and not yet applied."""
        return self._pending_pnl

    # --- Concurrency ---
    @property
    def settlement_in_progress(self) -> bool:
        """True while :meth:`close_current_epoch` is running."""
        return self._settling

    @contextmanager
    def exclusive(self) -> Iterator[PoolState]:
        """
        Hold the pool lock for a short mutation of the live state.

        Raises
        ------
        ReentrancyError
            If a settlement is in flight.
        """
        if self._settling:
            raise ReentrancyError("Pool state is locked by an in-flight settlement")
        with self._lock:
            yield self.state

    # --- Epoch lifecycle ---
    def start_new_epoch(self, now: int, caller: str) -> Epoch:
        """
        Open a new epoch ending one period after ``now``.

        Only the configured controller may call this primitive; it is how
        the pool opens its first epoch when it is enabled.

        Raises
        ------
        UnauthorizedCallerError
            If ``caller`` is not the configured controller.
        """
        check_uint(now, "now")
        controller = self.state.config.settings.controller
        if caller != controller:
            logger.error(f"Unauthorized call to start_new_epoch by {caller!r}")
            raise UnauthorizedCallerError(f"{caller!r} may not open epochs")

        with self.exclusive() as state:
            epoch = Epoch(
                id=state.epoch.id + 1,
                end_time=now + state.config.settings.epoch_period_seconds,
            )
            state.epoch = epoch
        logger.info(f"Opened epoch {epoch.id} ending at {epoch.end_time}")
        return epoch

    def close_current_epoch(self, now: int) -> SettlementResult:
        """
        Settle the current epoch and open the next one.

        Parameters
        ----------
        now : int
            Settlement timestamp.

        Returns
        -------
        SettlementResult
            Closed epoch id, resulting balances and prices, redemptions paid.

        Raises
        ------
        ProtocolPausedError, PoolNotOnError, EpochNotStartedError, EpochCloseTooSoonError
            If a precondition does not hold. Nothing is changed.
        ReentrancyError
            If a settlement is already running.
        """
        check_uint(now, "now")
        if self._settling:
            raise ReentrancyError("Settlement already in progress")
        with self._lock:
            self._settling = True
            try:
                return self._settle(now)
            finally:
                self._settling = False

    # --- Settlement ---
    def _check_preconditions(self, state: PoolState, now: int) -> None:
        if state.protocol_paused:
            raise ProtocolPausedError("Protocol is paused")
        if not state.pool_enabled:
            raise PoolNotOnError("Pool is not on")
        if state.epoch.id == 0:
            raise EpochNotStartedError("No epoch has been opened yet")
        if now < state.epoch.end_time:
            raise EpochCloseTooSoonError(
                f"Epoch {state.epoch.id} ends at {state.epoch.end_time}, now is {now}"
            )

    def _settle(self, now: int) -> SettlementResult:
        live = self.state
        self._check_preconditions(live, now)
        epoch_id = live.epoch.id
        logger.info(f"Closing epoch {epoch_id} at {now}")

        trace = self.audit_trail.start_epoch(epoch_id, live.balances())
        try:
            pnl = self._pull_pnl(epoch_id)
            self._trace(trace, "pnl", "pnl", requested=pnl.profit, allocated=0, available=live.liquidity.available)
            if trace is not None and trace.steps:
                trace.steps[-1].add_note(f"profit={pnl.profit} loss={pnl.loss} recovery={pnl.recovery}")

            work = live.working_copy()
            waterfall_result = self.waterfall.distribute(
                work, pnl.profit, pnl.loss, pnl.recovery, now, trace
            )
            redemptions = self._process_redemptions(work, epoch_id, trace)

            work.yield_tracker = self.waterfall.policy.refresh_tracker(
                work.yield_tracker, now, work.tranche_assets.senior
            )
            next_epoch = Epoch(
                id=epoch_id + 1,
                end_time=next_end_time(
                    live.epoch.end_time, now, work.config.settings.epoch_period_seconds
                ),
            )
            work.epoch = next_epoch

            result = SettlementResult(
                epoch_id=epoch_id,
                settled_at=now,
                senior_assets=work.tranche_assets.senior,
                junior_assets=work.tranche_assets.junior,
                senior_price=redemptions[Tranche.SENIOR].price,
                junior_price=redemptions[Tranche.JUNIOR].price,
                unprocessed_shares=work.total_unprocessed_shares(),
                pnl=pnl,
                waterfall=waterfall_result,
                redemptions=redemptions,
                next_epoch=next_epoch,
            )
            snapshot = self._snapshot(work, result)
        except Exception as e:
            self.audit_trail.abort_epoch()
            logger.error(f"Settlement of epoch {epoch_id} failed: {e}")
            raise

        self.state = work
        self._pending_pnl = None
        work.history.append(snapshot)
        if trace is not None:
            trace.settled_at = now
            trace.profit, trace.loss, trace.recovery = pnl
            trace.total_redeemed = result.total_redeemed
        self.audit_trail.end_epoch(work.balances())

        logger.info(
            f"Epoch {epoch_id} settled: senior={result.senior_assets}, junior={result.junior_assets}, "
            f"redeemed={result.total_redeemed}, unprocessed shares={result.unprocessed_shares}; "
            f"epoch {next_epoch.id} ends at {next_epoch.end_time}"
        )
        return result

    def _pull_pnl(self, epoch_id: int) -> PnLReport:
        """
        Fetch this settlement's P/L from the credit collaborator.

        The collaborator hands each report over once. A report pulled by a
        settlement that later failed is held as pending and combined with
        the fresh pull until a settlement commits.
        """
        fresh = self.credit_source.refresh_and_report_pnl()
        pnl = PnLReport(
            check_uint(fresh.profit, "profit"),
            check_uint(fresh.loss, "loss"),
            check_uint(fresh.recovery, "recovery"),
        )
        pending = self._pending_pnl
        if pending is not None:
            logger.warning(f"Applying P/L held from a failed settlement of epoch {epoch_id}: {pending}")
            pnl = PnLReport(
                checked_add(pending.profit, pnl.profit, "profit"),
                checked_add(pending.loss, pnl.loss, "loss"),
                checked_add(pending.recovery, pnl.recovery, "recovery"),
            )
        self._pending_pnl = pnl
        return pnl

    def _process_redemptions(
        self,
        work: PoolState,
        epoch_id: int,
        trace: Optional[SettlementTrace],
    ) -> Dict[Tranche, TrancheRedemption]:
        """Serve both tranches' queues under the liquidity and covenant budget."""
        assets = work.tranche_assets
        prices = {
            t: work.vault(t).share_price(assets.get(t)) for t in Tranche
        }
        totals: Dict[Tranche, List[int]] = {t: [0, 0] for t in Tranche}

        window = work.config.lp_config.flex_call_window_epochs
        if window > 0:
            passes: List[Tuple[str, Optional[int]]] = [
                ("mature", epoch_id - window),
                ("immature", None),
            ]
        else:
            passes = [("all", None)]

        available = work.liquidity.available
        if available == 0 and work.total_unprocessed_shares():
            logger.warning(f"No unreserved liquidity to serve redemptions in epoch {epoch_id}")

        for label, max_epoch_id in passes:
            available = self._redeem_pass(work, prices, available, max_epoch_id, label, totals, trace)

        total_paid = totals[Tranche.SENIOR][1] + totals[Tranche.JUNIOR][1]
        if total_paid:
            work.liquidity.reserve(total_paid)

        ratio = work.config.lp_config.max_senior_junior_ratio
        if assets.senior > assets.junior * ratio:
            logger.warning(
                f"Leverage covenant still violated after epoch {epoch_id}: "
                f"senior {assets.senior} > junior {assets.junior} x {ratio}"
            )

        return {
            t: TrancheRedemption(
                tranche=t,
                price=prices[t],
                shares_processed=totals[t][0],
                amount_processed=totals[t][1],
            )
            for t in Tranche
        }

    def _redeem_pass(
        self,
        work: PoolState,
        prices: Dict[Tranche, int],
        available: int,
        max_epoch_id: Optional[int],
        label: str,
        totals: Dict[Tranche, List[int]],
        trace: Optional[SettlementTrace],
    ) -> int:
        assets = work.tranche_assets

        senior_budget = min(available, assets.senior)
        shares, amount = self._redeem(work, Tranche.SENIOR, senior_budget, prices, max_epoch_id)
        available -= amount
        totals[Tranche.SENIOR][0] += shares
        totals[Tranche.SENIOR][1] += amount
        self._trace(trace, f"redemption.senior.{label}", "redemption", senior_budget, amount,
                    tranche=Tranche.SENIOR, available=available + amount, shares=shares, state=work)

        min_junior = self.min_junior_assets(assets.senior, work.config.lp_config.max_senior_junior_ratio, assets.junior)
        junior_budget = min(available, max(0, assets.junior - min_junior))
        shares, amount = self._redeem(work, Tranche.JUNIOR, junior_budget, prices, max_epoch_id)
        available -= amount
        totals[Tranche.JUNIOR][0] += shares
        totals[Tranche.JUNIOR][1] += amount
        self._trace(trace, f"redemption.junior.{label}", "redemption", junior_budget, amount,
                    tranche=Tranche.JUNIOR, available=available + amount, shares=shares, state=work)
        return available

    @staticmethod
    def min_junior_assets(senior_assets: int, ratio: int, junior_assets: int) -> int:
        """
        Junior assets that must stay in the pool to back ``senior_assets``.

        A ratio of zero describes a junior-only pool: junior may not redeem
        at all while any senior assets remain.
        """
        if ratio == 0:
            return junior_assets if senior_assets else 0
        return ceil_div(senior_assets, ratio)

    @staticmethod
    def _redeem(
        work: PoolState,
        tranche: Tranche,
        budget: int,
        prices: Dict[Tranche, int],
        max_epoch_id: Optional[int],
    ) -> Tuple[int, int]:
        if budget == 0:
            return 0, 0
        vault = work.vault(tranche)
        shares, amount = vault.ledger.process_redemptions(budget, prices[tranche], max_epoch_id)
        if shares:
            vault.burn_processed(shares)
            work.tranche_assets.set(
                tranche, checked_sub(work.tranche_assets.get(tranche), amount, f"{tranche.value}_assets")
            )
            logger.debug(f"Redeemed {shares} {tranche.value} shares for {amount}")
        return shares, amount

    @staticmethod
    def _trace(
        trace: Optional[SettlementTrace],
        step_id: str,
        stage: str,
        requested: int,
        allocated: int,
        tranche: Optional[Tranche] = None,
        available: int = 0,
        shares: int = 0,
        state: Optional[PoolState] = None,
    ) -> None:
        if trace is None:
            return
        step = SettlementStepTrace(
            step_id=step_id,
            epoch_id=trace.epoch_id,
            stage=stage,
            tranche=tranche.value if tranche else None,
            requested_amount=requested,
            available_amount=available,
            allocated_amount=allocated,
            shares_processed=shares,
        )
        if state is not None:
            step.post_senior_assets = state.tranche_assets.senior
            step.post_junior_assets = state.tranche_assets.junior
            step.post_cover_assets = [c.asset for c in state.covers]
        trace.add_step(step)

    @staticmethod
    def _snapshot(work: PoolState, result: SettlementResult) -> Snapshot:
        return Snapshot(
            epoch_id=result.epoch_id,
            settled_at=result.settled_at,
            senior_assets=result.senior_assets,
            junior_assets=result.junior_assets,
            senior_price=result.senior_price,
            junior_price=result.junior_price,
            cover_assets=tuple(c.asset for c in work.covers),
            profit=result.pnl.profit,
            loss=result.pnl.loss,
            recovery=result.pnl.recovery,
            fees=result.waterfall.fees.total,
            senior_redeemed=result.redemptions[Tranche.SENIOR].amount_processed,
            junior_redeemed=result.redemptions[Tranche.JUNIOR].amount_processed,
            unprocessed_shares=result.unprocessed_shares,
            total_liquidity=work.liquidity.total_liquidity,
            reserved_liquidity=work.liquidity.reserved_for_redemption,
        )
