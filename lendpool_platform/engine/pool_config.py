"""
Pool Configuration Models
=========================

Typed, validated configuration for a lending pool. These pydantic models
are the single source of every scalar the settlement engine reads: the
profit policy and its parameters, the leverage covenant, the flex-call
lock-up window, the epoch period, pool fees and the ordered first-loss
cover layers.

Models
------
- :class:`LPConfig`: Liquidity-provider terms (ratio, policy, yields).
- :class:`FeeStructure`: Fees skimmed from profit before the waterfall.
- :class:`FirstLossCoverConfig`: Terms of one first-loss cover layer.
- :class:`PoolSettings`: Epoch period and authorised controller identity.
- :class:`PoolConfig`: Complete pool configuration.

Example
-------
>>> from lendpool_platform.engine.pool_config import PoolConfig, LPConfig
>>> config = PoolConfig(
...     pool_id="POOL_1",
...     lp_config=LPConfig(max_senior_junior_ratio=4, risk_adjustment_bps=8000),
... )
>>> config.lp_config.tranches_policy
<TranchesPolicyType.RISK_ADJUSTED: 'RISK_ADJUSTED'>
"""

from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, Field, model_validator

from .numeric import BPS_FACTOR, MAX_UINT


class TranchesPolicyType(str, Enum):
    """
    Profit allocation policies between the senior and junior tranches.

    Attributes
    ----------
    FIXED_SENIOR_YIELD : str
        Senior receives a fixed annual yield first; junior takes the rest.
    RISK_ADJUSTED : str
        Senior receives its pro-rata share discounted by a risk adjustment.
    """

    FIXED_SENIOR_YIELD = "FIXED_SENIOR_YIELD"
    RISK_ADJUSTED = "RISK_ADJUSTED"


class LPConfig(BaseModel):
    """
    Liquidity-provider configuration.

    Attributes
    ----------
    max_senior_junior_ratio : int
        Leverage covenant: senior assets may not exceed junior assets times
        this ratio after redemption payouts. Zero means a junior-only pool.
    tranches_policy : TranchesPolicyType
        Which profit policy the waterfall applies.
    fixed_senior_yield_bps : int
        Annual senior yield for the fixed-yield policy.
    risk_adjustment_bps : int
        Share of senior's pro-rata profit reassigned to junior.
    flex_call_window_epochs : int
        Lock-up window in settlements; 0 disables flex call.
    withdrawal_lockout_seconds : int
        Minimum time between an investor's last deposit and a redemption
        request.
    liquidity_cap : int
        Maximum total tranche assets accepted through deposits.
    """

    max_senior_junior_ratio: int = Field(default=4, ge=0, le=MAX_UINT)
    tranches_policy: TranchesPolicyType = TranchesPolicyType.RISK_ADJUSTED
    fixed_senior_yield_bps: int = Field(default=0, ge=0, le=MAX_UINT)
    risk_adjustment_bps: int = Field(default=0, ge=0, le=BPS_FACTOR)
    flex_call_window_epochs: int = Field(default=0, ge=0)
    withdrawal_lockout_seconds: int = Field(default=0, ge=0)
    liquidity_cap: int = Field(default=MAX_UINT, ge=0, le=MAX_UINT)


class FeeStructure(BaseModel):
    """
    Fees taken out of each settlement's profit before tranche allocation.

    The combined rate may not exceed 100%.
    """

    protocol_fee_bps: int = Field(default=0, ge=0, le=BPS_FACTOR)
    pool_owner_reward_bps: int = Field(default=0, ge=0, le=BPS_FACTOR)
    ea_reward_bps: int = Field(default=0, ge=0, le=BPS_FACTOR)

    @property
    def total_bps(self) -> int:
        """Combined fee rate in basis points."""
        return self.protocol_fee_bps + self.pool_owner_reward_bps + self.ea_reward_bps

    @model_validator(mode="after")
    def _check_total_rate(self) -> "FeeStructure":
        if self.total_bps > BPS_FACTOR:
            raise ValueError(f"Combined fee rate {self.total_bps} bps exceeds 100%")
        return self


class FirstLossCoverConfig(BaseModel):
    """
    Terms of one first-loss cover layer.

    Attributes
    ----------
    name : str
        Identifier of the layer (e.g. "borrower", "affiliate").
    cover_rate_per_loss_bps : int
        Fraction of each loss event this layer absorbs.
    cover_cap_per_loss : int
        Absolute cap on what the layer absorbs per loss event.
    risk_yield_multiplier_bps : int
        Profit-sharing weight applied to the layer's assets.
    """

    name: str
    cover_rate_per_loss_bps: int = Field(default=0, ge=0, le=BPS_FACTOR)
    cover_cap_per_loss: int = Field(default=0, ge=0, le=MAX_UINT)
    risk_yield_multiplier_bps: int = Field(default=0, ge=0, le=MAX_UINT)


class PoolSettings(BaseModel):
    """
    Epoch scheduling and the identity allowed to open epochs.

    Attributes
    ----------
    epoch_period_seconds : int
        Length of a settlement window.
    controller : str
        Identity of the pool-enablement collaborator; the only caller
        accepted by the low-level epoch primitives.
    """

    epoch_period_seconds: int = Field(default=30 * 24 * 60 * 60, gt=0)
    controller: str = "pool"


class PoolConfig(BaseModel):
    """
    Complete configuration of one lending pool.

    Example
    -------
    >>> config = PoolConfig(
    ...     pool_id="POOL_1",
    ...     first_loss_covers=[
    ...         FirstLossCoverConfig(name="borrower", cover_rate_per_loss_bps=1000,
    ...                              cover_cap_per_loss=50_000),
    ...     ],
    ... )
    >>> [c.name for c in config.first_loss_covers]
    ['borrower']
    """

    pool_id: str = "POOL"
    lp_config: LPConfig = Field(default_factory=LPConfig)
    fees: FeeStructure = Field(default_factory=FeeStructure)
    first_loss_covers: List[FirstLossCoverConfig] = Field(default_factory=list)
    settings: PoolSettings = Field(default_factory=PoolSettings)
