"""
Tranche Share Accounting
========================

Each tranche issues shares against its assets. A :class:`TrancheVault`
tracks share balances, deposit principal and the tranche's
:class:`~redemption.RedemptionLedger`. The vault never owns the tranche's
asset total; callers pass the current value in, so pricing always reflects
the latest waterfall result held in the pool state.

Share conversions (integer, truncating)::

    shares = assets * total_supply // total_assets
    assets = shares * total_assets // total_supply
    price  = total_assets * PRICE_DECIMALS_FACTOR // total_supply

Shares put up for redemption leave the investor's balance and are held by
the vault until settlement burns them or the investor cancels.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

from .errors import (
    InsufficientSharesError,
    InvariantViolationError,
    WithdrawalLockoutError,
    ZeroAmountError,
)
from .numeric import PRICE_DECIMALS_FACTOR, check_uint, checked_add, checked_sub, mul_div
from .redemption import RedemptionLedger, RedemptionRecord

logger = logging.getLogger("LENDPOOL.TrancheVault")


class Tranche(str, Enum):
    """Liquidity tiers of the pool, in order of claim priority."""

    SENIOR = "senior"
    JUNIOR = "junior"


@dataclass
class DepositRecord:
    """
    Principal an investor has contributed and not yet requested back.

    Attributes
    ----------
    principal : int
        Deposited amount attributed to the shares the investor still holds.
    last_deposit_time : int
        Unix timestamp of the latest deposit, used by the withdrawal lockout.
    """

    principal: int = 0
    last_deposit_time: int = 0


@dataclass
class TrancheVault:
    """
    Share registry and redemption queue of one tranche.

    Attributes
    ----------
    tranche : Tranche
        Which tranche this vault serves.
    total_supply : int
        Shares outstanding, including shares locked for redemption.
    balances : dict
        Investor id to freely held shares.
    locked_shares : int
        Shares held by the vault for pending redemption requests.
    deposits : dict
        Investor id to :class:`DepositRecord`.
    ledger : RedemptionLedger
        The tranche's epoch-batched redemption queue.
    """

    tranche: Tranche
    total_supply: int = 0
    balances: Dict[str, int] = field(default_factory=dict)
    locked_shares: int = 0
    deposits: Dict[str, DepositRecord] = field(default_factory=dict)
    ledger: RedemptionLedger = field(init=False)

    def __post_init__(self) -> None:
        self.ledger = RedemptionLedger(self.tranche.value)

    # --- Conversions ---
    def convert_to_shares(self, assets: int, total_assets: int) -> int:
        """
        Convert a base-unit amount to shares at the current price.

        Returns ``assets`` unchanged while no shares exist.
        """
        if self.total_supply == 0:
            return assets
        if total_assets == 0:
            raise InvariantViolationError(
                f"{self.tranche.value} tranche has {self.total_supply} shares but no assets"
            )
        return mul_div(assets, self.total_supply, total_assets)

    def convert_to_assets(self, shares: int, total_assets: int) -> int:
        """Convert shares to their base-unit value at the current price."""
        if self.total_supply == 0:
            return shares
        return mul_div(shares, total_assets, self.total_supply)

    def share_price(self, total_assets: int) -> int:
        """Share price scaled by ``PRICE_DECIMALS_FACTOR``."""
        if self.total_supply == 0:
            return PRICE_DECIMALS_FACTOR
        return mul_div(total_assets, PRICE_DECIMALS_FACTOR, self.total_supply)

    def balance_of(self, investor: str) -> int:
        """Freely held shares of ``investor``."""
        return self.balances.get(investor, 0)

    # --- Investor operations ---
    def deposit(self, investor: str, amount: int, total_assets: int, now: int) -> int:
        """
        Mint shares for a deposit of ``amount``.

        Parameters
        ----------
        investor : str
            Depositing investor.
        amount : int
            Base-unit amount deposited.
        total_assets : int
            Tranche assets before the deposit.
        now : int
            Deposit timestamp.

        Returns
        -------
        int
            Shares minted.
        """
        check_uint(amount, "amount")
        if amount == 0:
            raise ZeroAmountError("Deposit amount must be positive")
        shares = self.convert_to_shares(amount, total_assets)
        if shares == 0:
            raise ZeroAmountError(f"Deposit of {amount} is worth zero shares")

        self.total_supply = checked_add(self.total_supply, shares, "total_supply")
        self.balances[investor] = self.balance_of(investor) + shares
        record = self.deposits.setdefault(investor, DepositRecord())
        record.principal = checked_add(record.principal, amount, "principal")
        record.last_deposit_time = now
        logger.debug(f"[{self.tranche.value}] {investor} deposited {amount} for {shares} shares")
        return shares

    def request_redemption(
        self,
        investor: str,
        shares: int,
        epoch_id: int,
        now: int,
        lockout_seconds: int = 0,
    ) -> RedemptionRecord:
        """
        Lock ``shares`` and queue them in the current epoch.

        Raises
        ------
        ZeroAmountError
            If ``shares`` is zero.
        InsufficientSharesError
            If the investor holds fewer than ``shares``.
        WithdrawalLockoutError
            If the investor deposited less than ``lockout_seconds`` ago.
        """
        check_uint(shares, "shares")
        if shares == 0:
            raise ZeroAmountError("Redemption request must be for a positive number of shares")
        balance = self.balance_of(investor)
        if shares > balance:
            raise InsufficientSharesError(
                f"{investor} holds {balance} {self.tranche.value} shares, requested {shares}"
            )
        deposit = self.deposits.get(investor, DepositRecord())
        if lockout_seconds and now < deposit.last_deposit_time + lockout_seconds:
            raise WithdrawalLockoutError(
                f"{investor} may not redeem before {deposit.last_deposit_time + lockout_seconds}"
            )

        principal = mul_div(deposit.principal, shares, balance)
        record = self.ledger.add_redemption_request(investor, shares, epoch_id, principal)

        self.balances[investor] = balance - shares
        self.locked_shares += shares
        if investor in self.deposits:
            self.deposits[investor].principal -= principal
        return record

    def cancel_redemption_request(self, investor: str, shares: int, epoch_id: int) -> None:
        """Return ``shares`` requested in the open epoch ``epoch_id`` to the investor."""
        principal = self.ledger.cancel_redemption_request(investor, shares, epoch_id)
        self.locked_shares = checked_sub(self.locked_shares, shares, "locked_shares")
        self.balances[investor] = self.balance_of(investor) + shares
        self.deposits.setdefault(investor, DepositRecord()).principal += principal

    def withdraw(self, investor: str) -> int:
        """Mark the investor's processed redemptions as paid and return the amount."""
        return self.ledger.record_withdrawal(investor)

    # --- Settlement ---
    def burn_processed(self, shares: int) -> None:
        """Destroy shares redeemed during settlement."""
        self.locked_shares = checked_sub(self.locked_shares, shares, "locked_shares")
        self.total_supply = checked_sub(self.total_supply, shares, "total_supply")
