"""
Lending Pool
============

The pool facade exposes the settlement subsystem to the outside world: the
pool lifecycle controller opens the first epoch, investors deposit, request
and cancel redemptions and withdraw what was processed, the credit side
moves cash in and out, and anyone may close an epoch once it has ended.

Every mutating call runs under the epoch manager's lock and is rejected
with :class:`~errors.ReentrancyError` while a settlement is in flight.
Each call validates all its preconditions before touching state, so a
failure leaves the pool unchanged.

Example
-------
>>> from lendpool_platform.engine import LendingPool, PoolConfig, ScriptedCreditSource, Tranche
>>> credit = ScriptedCreditSource()
>>> pool = LendingPool(PoolConfig(), credit)
>>> pool.open_initial_epoch(start_time=0, caller="pool")
Epoch(id=1, end_time=2592000)
>>> pool.deposit(Tranche.JUNIOR, "jane", 250_000, now=0)
250000
>>> pool.deposit(Tranche.SENIOR, "sam", 800_000, now=0)
800000
>>> record = pool.request_redemption(Tranche.SENIOR, "sam", 2_539, now=10)
>>> result = pool.close_current_epoch(now=2_592_000)
>>> result.senior_assets
797461
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .audit_trail import AuditTrail
from .credit import CreditPnLSource
from .epoch_manager import EpochManager, SettlementResult
from .errors import (
    CovenantViolationError,
    EpochNotStartedError,
    LiquidityCapExceededError,
    PoolNotOnError,
    ProtocolPausedError,
    UnauthorizedCallerError,
    ZeroAmountError,
)
from .numeric import check_uint, checked_add
from .pool_config import PoolConfig
from .redemption import RedemptionRecord, RedemptionSummary
from .state import Epoch, PoolState
from .tranche_vault import Tranche

logger = logging.getLogger("LENDPOOL.Pool")


class LendingPool:
    """
    Public interface of one lending pool.

    Parameters
    ----------
    config : PoolConfig
        Pool configuration.
    credit_source : CreditPnLSource
        Collaborator reporting aggregate P/L at each settlement.
    audit_trail : AuditTrail, optional
        Settlement trace collector.
    state : PoolState, optional
        Starting state; an empty state built from ``config`` by default.
    """

    def __init__(
        self,
        config: PoolConfig,
        credit_source: CreditPnLSource,
        audit_trail: Optional[AuditTrail] = None,
        state: Optional[PoolState] = None,
    ) -> None:
        self.config = config
        self.epoch_manager = EpochManager(
            state or PoolState.from_config(config), credit_source, audit_trail
        )

    @property
    def state(self) -> PoolState:
        """The live pool state. Replaced by each settlement."""
        return self.epoch_manager.state

    @property
    def audit_trail(self) -> AuditTrail:
        return self.epoch_manager.audit_trail

    # --- Lifecycle ---
    def _check_controller(self, caller: str) -> None:
        if caller != self.config.settings.controller:
            logger.error(f"Unauthorized lifecycle call by {caller!r}")
            raise UnauthorizedCallerError(f"{caller!r} is not the pool controller")

    def open_initial_epoch(self, start_time: int, caller: str) -> Epoch:
        """
        Turn the pool on and open epoch 1.

        Only the pool controller may call this. Calling it again once an
        epoch exists changes nothing and returns the current epoch.
        """
        self._check_controller(caller)
        if self.state.epoch.id != 0:
            logger.info(f"Initial epoch already open; current epoch is {self.state.epoch.id}")
            return self.state.epoch
        epoch = self.epoch_manager.start_new_epoch(start_time, caller)
        with self.epoch_manager.exclusive() as state:
            state.pool_enabled = True
        return epoch

    def enable_pool(self, caller: str) -> None:
        """Turn the pool back on after :meth:`disable_pool`."""
        self._check_controller(caller)
        with self.epoch_manager.exclusive() as state:
            if state.epoch.id == 0:
                raise EpochNotStartedError("Open the initial epoch before enabling the pool")
            state.pool_enabled = True
        logger.info("Pool enabled")

    def disable_pool(self, caller: str) -> None:
        """Turn the pool off; settlement and investor operations stop."""
        self._check_controller(caller)
        with self.epoch_manager.exclusive() as state:
            state.pool_enabled = False
        logger.info("Pool disabled")

    def set_protocol_paused(self, paused: bool) -> None:
        """Pause or resume the protocol."""
        with self.epoch_manager.exclusive() as state:
            state.protocol_paused = paused
        logger.info(f"Protocol {'paused' if paused else 'resumed'}")

    def _require_active(self, state: PoolState) -> None:
        if state.protocol_paused:
            raise ProtocolPausedError("Protocol is paused")
        if not state.pool_enabled:
            raise PoolNotOnError("Pool is not on")

    # --- Investor operations ---
    def deposit(self, tranche: Tranche, investor: str, amount: int, now: int) -> int:
        """
        Deposit ``amount`` into ``tranche`` and mint shares.

        Raises
        ------
        CovenantViolationError
            If a senior deposit would push senior assets past
            ``junior_assets * max_senior_junior_ratio``.
        LiquidityCapExceededError
            If total tranche assets would exceed the liquidity cap.
        """
        check_uint(amount, "amount")
        with self.epoch_manager.exclusive() as state:
            self._require_active(state)
            if amount == 0:
                raise ZeroAmountError("Deposit amount must be positive")
            assets = state.tranche_assets
            lp = state.config.lp_config

            if checked_add(assets.total, amount, "total_assets") > lp.liquidity_cap:
                raise LiquidityCapExceededError(
                    f"Deposit of {amount} exceeds the liquidity cap of {lp.liquidity_cap}"
                )
            if tranche is Tranche.SENIOR and assets.senior + amount > assets.junior * lp.max_senior_junior_ratio:
                raise CovenantViolationError(
                    f"Senior assets {assets.senior + amount} would exceed junior "
                    f"{assets.junior} x {lp.max_senior_junior_ratio}"
                )

            shares = state.vault(tranche).deposit(investor, amount, assets.get(tranche), now)
            assets.set(tranche, assets.get(tranche) + amount)
            state.liquidity.add(amount)
            if tranche is Tranche.SENIOR:
                state.yield_tracker = self.epoch_manager.waterfall.policy.refresh_tracker(
                    state.yield_tracker, now, assets.senior
                )
        logger.info(f"{investor} deposited {amount} into {tranche.value} for {shares} shares")
        return shares

    def request_redemption(self, tranche: Tranche, investor: str, shares: int, now: int) -> RedemptionRecord:
        """
        Queue ``shares`` of ``tranche`` for redemption in the current epoch.

        Returns
        -------
        RedemptionRecord
            The investor's record after the request.
        """
        with self.epoch_manager.exclusive() as state:
            self._require_active(state)
            if state.epoch.id == 0:
                raise EpochNotStartedError("No epoch is open")
            record = state.vault(tranche).request_redemption(
                investor,
                shares,
                state.epoch.id,
                now,
                state.config.lp_config.withdrawal_lockout_seconds,
            )
        logger.info(f"{investor} requested redemption of {shares} {tranche.value} shares in epoch {state.epoch.id}")
        return record

    def cancel_redemption_request(self, tranche: Tranche, investor: str, shares: int) -> None:
        """Cancel shares requested in the current, not yet settled, epoch."""
        with self.epoch_manager.exclusive() as state:
            self._require_active(state)
            state.vault(tranche).cancel_redemption_request(investor, shares, state.epoch.id)
        logger.info(f"{investor} cancelled {shares} {tranche.value} shares")

    def withdraw(self, tranche: Tranche, investor: str) -> int:
        """
        Pay out everything processed for ``investor`` in ``tranche``.

        Returns
        -------
        int
            Amount released from the redemption reserve.
        """
        with self.epoch_manager.exclusive() as state:
            if state.protocol_paused:
                raise ProtocolPausedError("Protocol is paused")
            record = state.vault(tranche).ledger.get_redemption_record(investor)
            amount = record.withdrawable_amount
            if amount:
                state.liquidity.release(amount)
                state.vault(tranche).withdraw(investor)
        logger.info(f"{investor} withdrew {amount} from {tranche.value}")
        return amount

    # --- Credit-side cash movements ---
    def add_liquidity(self, amount: int) -> None:
        """Record cash paid into the pool, e.g. borrower repayments."""
        with self.epoch_manager.exclusive() as state:
            state.liquidity.add(amount)

    def remove_liquidity(self, amount: int) -> None:
        """Record cash leaving the pool, e.g. a borrower drawdown."""
        with self.epoch_manager.exclusive() as state:
            state.liquidity.remove(amount)

    def add_cover_assets(self, index: int, amount: int) -> None:
        """Top up first-loss cover layer ``index``."""
        check_uint(amount, "amount")
        with self.epoch_manager.exclusive() as state:
            cover = state.covers[index]
            cover.asset = checked_add(cover.asset, amount, f"{cover.config.name}.asset")
        logger.info(f"Cover {cover.config.name} topped up by {amount}")

    # --- Settlement ---
    def close_current_epoch(self, now: int) -> SettlementResult:
        """Settle the current epoch. See :meth:`EpochManager.close_current_epoch`."""
        return self.epoch_manager.close_current_epoch(now)

    # --- Queries ---
    def get_current_epoch(self) -> Epoch:
        """Current epoch id and end time."""
        return self.state.epoch

    def get_unprocessed_epochs(self, tranche: Tranche) -> List[RedemptionSummary]:
        """Summaries of ``tranche`` still holding unprocessed shares, oldest first."""
        return self.state.vault(tranche).ledger.unprocessed_summaries()

    def get_redemption_record(self, tranche: Tranche, investor: str) -> RedemptionRecord:
        """The investor's redemption record, caught up to the latest settlement."""
        return self.state.vault(tranche).ledger.get_redemption_record(investor)

    def share_price(self, tranche: Tranche) -> int:
        """Current share price of ``tranche``, scaled by 1e18."""
        state = self.state
        return state.vault(tranche).share_price(state.tranche_assets.get(tranche))

    def snapshot(self) -> Dict[str, Any]:
        """Current epoch and balances as a flat dictionary."""
        state = self.state
        view = state.balances()
        view.update(
            {
                "epoch_id": state.epoch.id,
                "epoch_end_time": state.epoch.end_time,
                "senior_price": self.share_price(Tranche.SENIOR),
                "junior_price": self.share_price(Tranche.JUNIOR),
                "unprocessed_shares": state.total_unprocessed_shares(),
                "accrued_fees": state.accrued_fees,
                "pool_enabled": state.pool_enabled,
                "protocol_paused": state.protocol_paused,
            }
        )
        return view
