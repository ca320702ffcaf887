"""
Pool State Management
=====================

This module provides the mutable state aggregate of a lending pool. A single
:class:`PoolState` owns every balance the settlement engine touches: tranche
assets and losses, first-loss cover layers, the senior yield tracker, the
liquidity ledger, both tranche vaults and the current epoch. Operations
receive the aggregate explicitly; there is no module-level state, so tests
can build any starting position directly.

Key Classes
-----------
- :class:`PoolState`: Owned aggregate of all settlement state.
- :class:`TrancheAssets`: Senior and junior asset totals.
- :class:`TrancheLosses`: Unrecovered losses taken by each tranche.
- :class:`FirstLossCover`: Balance and loss accumulator of one cover layer.
- :class:`Epoch`: Identity and deadline of a settlement window.
- :class:`Snapshot`: Point-in-time record appended after each settlement.

Example
-------
>>> from lendpool_platform.engine.pool_config import PoolConfig
>>> from lendpool_platform.engine.state import PoolState
>>> state = PoolState.from_config(PoolConfig())
>>> state.total_value()
0

See Also
--------
epoch_manager.EpochManager : Mutates a copy of the state during settlement.
reporting.SettlementReportGenerator : Builds reports from ``history``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Tuple

from .liquidity import LiquidityLedger
from .numeric import check_uint
from .pool_config import FirstLossCoverConfig, PoolConfig
from .tranche_vault import Tranche, TrancheVault
from .yield_tracker import SeniorYieldTracker

logger = logging.getLogger("LENDPOOL.State")


@dataclass(frozen=True)
class Epoch:
    """
    A settlement window.

    Attributes
    ----------
    id : int
        Monotonically increasing identifier; 0 means no epoch opened yet.
    end_time : int
        Exclusive unix-timestamp deadline; settlement is allowed at or after it.
    """

    id: int = 0
    end_time: int = 0


@dataclass
class TrancheAssets:
    """Total value held by each tranche."""

    senior: int = 0
    junior: int = 0

    @property
    def total(self) -> int:
        """Combined senior and junior assets."""
        return self.senior + self.junior

    def get(self, tranche: Tranche) -> int:
        """Return the assets of ``tranche``."""
        return self.senior if tranche is Tranche.SENIOR else self.junior

    def set(self, tranche: Tranche, value: int) -> None:
        """Replace the assets of ``tranche``."""
        check_uint(value, f"{tranche.value}_assets")
        if tranche is Tranche.SENIOR:
            self.senior = value
        else:
            self.junior = value


@dataclass
class TrancheLosses:
    """Losses each tranche absorbed that recoveries have not yet restored."""

    senior: int = 0
    junior: int = 0


@dataclass
class FirstLossCover:
    """
    One first-loss cover layer.

    Attributes
    ----------
    config : FirstLossCoverConfig
        Absorption and profit-sharing terms.
    asset : int
        Current cover balance.
    covered_loss : int
        Loss absorbed and not yet recovered.
    """

    config: FirstLossCoverConfig
    asset: int = 0
    covered_loss: int = 0


@dataclass(frozen=True)
class Snapshot:
    """
    Point-in-time pool record taken after each settlement.

    Attributes
    ----------
    epoch_id : int
        The epoch that was closed.
    settled_at : int
        Settlement timestamp.
    senior_assets, junior_assets : int
        Tranche totals after redemption payouts.
    senior_price, junior_price : int
        Share prices used for redemption, scaled by 1e18.
    cover_assets : tuple of int
        Cover balances in list order.
    profit, loss, recovery, fees : int
        P/L reported for the epoch and fees skimmed from profit.
    senior_redeemed, junior_redeemed : int
        Amounts paid out to redeeming investors.
    unprocessed_shares : int
        Shares still queued across both tranches.
    total_liquidity, reserved_liquidity : int
        Liquidity ledger after reservation.
    """

    epoch_id: int
    settled_at: int
    senior_assets: int
    junior_assets: int
    senior_price: int
    junior_price: int
    cover_assets: Tuple[int, ...]
    profit: int
    loss: int
    recovery: int
    fees: int
    senior_redeemed: int
    junior_redeemed: int
    unprocessed_shares: int
    total_liquidity: int
    reserved_liquidity: int


@dataclass
class PoolState:
    """
    Everything the settlement subsystem owns for one pool.

    Attributes
    ----------
    config : PoolConfig
        Pool configuration.
    epoch : Epoch
        The current epoch.
    tranche_assets : TrancheAssets
        Senior and junior totals.
    tranche_losses : TrancheLosses
        Unrecovered tranche losses.
    covers : list of FirstLossCover
        Cover layers, in profit and absorption priority order.
    yield_tracker : SeniorYieldTracker
        Fixed-yield accrual state.
    liquidity : LiquidityLedger
        Pool cash and reservations.
    vaults : dict
        Tranche to :class:`TrancheVault`.
    accrued_fees : int
        Fees skimmed from profit and awaiting withdrawal elsewhere.
    pool_enabled : bool
        Whether the pool is on.
    protocol_paused : bool
        Whether the protocol is paused.
    history : list of Snapshot
        One snapshot per settled epoch.
    """

    config: PoolConfig
    epoch: Epoch = field(default_factory=Epoch)
    tranche_assets: TrancheAssets = field(default_factory=TrancheAssets)
    tranche_losses: TrancheLosses = field(default_factory=TrancheLosses)
    covers: List[FirstLossCover] = field(default_factory=list)
    yield_tracker: SeniorYieldTracker = field(default_factory=SeniorYieldTracker)
    liquidity: LiquidityLedger = field(default_factory=LiquidityLedger)
    vaults: Dict[Tranche, TrancheVault] = field(default_factory=dict)
    accrued_fees: int = 0
    pool_enabled: bool = False
    protocol_paused: bool = False
    history: List[Snapshot] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: PoolConfig) -> "PoolState":
        """
        Build an empty state with one cover per configured layer and a vault
        per tranche.
        """
        return cls(
            config=config,
            covers=[FirstLossCover(config=c) for c in config.first_loss_covers],
            vaults={t: TrancheVault(tranche=t) for t in Tranche},
        )

    def working_copy(self) -> "PoolState":
        """
        Deep copy of everything a settlement may change.

        ``history`` is shared with this state instead of copied; settlement
        appends to it only once the copy has been committed.
        """
        work = copy.deepcopy(replace(self, history=[]))
        work.history = self.history
        return work

    def vault(self, tranche: Tranche) -> TrancheVault:
        """Return the vault of ``tranche``."""
        return self.vaults[tranche]

    def cover_total(self) -> int:
        """Sum of all cover balances."""
        return sum(c.asset for c in self.covers)

    def total_value(self) -> int:
        """Tranche assets plus cover assets; the quantity the waterfall conserves."""
        return self.tranche_assets.total + self.cover_total()

    def total_unprocessed_shares(self) -> int:
        """Queued redemption shares across both tranches."""
        return sum(v.ledger.total_unprocessed_shares() for v in self.vaults.values())

    def balances(self) -> Dict[str, Any]:
        """Flat view of the balances a settlement changes."""
        return {
            "senior_assets": self.tranche_assets.senior,
            "junior_assets": self.tranche_assets.junior,
            "cover_assets": [c.asset for c in self.covers],
            "senior_loss": self.tranche_losses.senior,
            "junior_loss": self.tranche_losses.junior,
            "total_liquidity": self.liquidity.total_liquidity,
            "reserved_liquidity": self.liquidity.reserved_for_redemption,
            "unpaid_senior_yield": self.yield_tracker.unpaid_yield,
        }
