"""
Liquidity and Reservation Ledger
================================

Tracks the cash the pool holds and the part of it already promised to
investors whose redemptions were processed but not yet withdrawn. Only the
unreserved remainder may fund new redemptions or credit drawdowns.

Example
-------
>>> from lendpool_platform.engine.liquidity import LiquidityLedger
>>> ledger = LiquidityLedger(total_liquidity=1_000)
>>> ledger.reserve(400)
>>> ledger.available
600
>>> ledger.release(400)
>>> ledger.total_liquidity
600
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import InsufficientLiquidityError
from .numeric import check_uint, checked_add, checked_sub

logger = logging.getLogger("LENDPOOL.Liquidity")


@dataclass
class LiquidityLedger:
    """
    Pool cash and redemption reservations.

    Attributes
    ----------
    total_liquidity : int
        Cash held by the pool, reserved or not.
    reserved_for_redemption : int
        Cash owed to investors for processed redemptions.
    """

    total_liquidity: int = 0
    reserved_for_redemption: int = 0

    @property
    def available(self) -> int:
        """Cash not reserved for redemptions."""
        return self.total_liquidity - self.reserved_for_redemption

    def add(self, amount: int) -> None:
        """Record incoming cash (deposits, borrower payments)."""
        check_uint(amount, "amount")
        self.total_liquidity = checked_add(self.total_liquidity, amount, "total_liquidity")

    def remove(self, amount: int) -> None:
        """
        Record outgoing cash that is not a redemption payout (drawdowns).

        Raises
        ------
        InsufficientLiquidityError
            If ``amount`` exceeds the unreserved balance.
        """
        check_uint(amount, "amount")
        if amount > self.available:
            raise InsufficientLiquidityError(
                f"Requested {amount} but only {self.available} is unreserved"
            )
        self.total_liquidity -= amount

    def reserve(self, amount: int) -> None:
        """Earmark ``amount`` of unreserved cash for processed redemptions."""
        check_uint(amount, "amount")
        if amount > self.available:
            raise InsufficientLiquidityError(
                f"Cannot reserve {amount}; only {self.available} is unreserved"
            )
        self.reserved_for_redemption += amount
        logger.debug(f"Reserved {amount} for redemptions (total reserved {self.reserved_for_redemption})")

    def release(self, amount: int) -> None:
        """Pay out ``amount`` of reserved cash to a withdrawing investor."""
        check_uint(amount, "amount")
        self.reserved_for_redemption = checked_sub(
            self.reserved_for_redemption, amount, "reserved_for_redemption"
        )
        self.total_liquidity = checked_sub(self.total_liquidity, amount, "total_liquidity")
