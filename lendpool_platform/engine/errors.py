"""
Pool Error Taxonomy
===================

Typed exceptions raised by the settlement engine. Every exception carries a
machine-readable ``code`` so callers (schedulers, front ends) can branch on
the failure type without parsing messages.

Hierarchy
---------
::

    PoolError
    +-- PreconditionError          retry once the condition clears
    |   +-- EpochNotStartedError
    |   +-- EpochCloseTooSoonError
    |   +-- ProtocolPausedError
    |   +-- PoolNotOnError
    |   +-- UnauthorizedCallerError
    |   +-- ReentrancyError
    |   +-- WithdrawalLockoutError
    |   +-- ZeroAmountError
    |   +-- InsufficientSharesError
    |   +-- InsufficientLiquidityError
    |   +-- CovenantViolationError
    |   +-- LiquidityCapExceededError
    +-- InvariantViolationError    fatal for the call
    |   +-- NegativeBalanceError
    +-- ArithmeticBoundsError      value outside the uint range

No operation mutates pool state before raising one of these.
"""

from __future__ import annotations


class PoolError(Exception):
    """
    Base exception for all pool accounting failures.

    Attributes
    ----------
    code : str
        Stable identifier for the failure type.
    """

    code = "POOL_ERROR"


# --- PRECONDITIONS ---
class PreconditionError(PoolError):
    """Operation attempted while one of its preconditions does not hold."""

    code = "PRECONDITION_FAILED"


class EpochNotStartedError(PreconditionError):
    """Raised when an epoch operation runs before the initial epoch is opened."""

    code = "EPOCH_NOT_STARTED"


class EpochCloseTooSoonError(PreconditionError):
    """Raised when settlement is attempted before the epoch's end time."""

    code = "CLOSE_TOO_SOON"


class ProtocolPausedError(PreconditionError):
    """Raised when the protocol is paused."""

    code = "PROTOCOL_PAUSED"


class PoolNotOnError(PreconditionError):
    """Raised when the pool is disabled."""

    code = "POOL_NOT_ON"


class UnauthorizedCallerError(PreconditionError):
    """Raised when a restricted primitive is called by the wrong identity."""

    code = "UNAUTHORIZED_CALLER"


class ReentrancyError(PreconditionError):
    """Raised when a mutation is attempted while a settlement is in flight."""

    code = "REENTRANT_CALL"


class WithdrawalLockoutError(PreconditionError):
    """Raised when a redemption is requested inside the deposit lockout window."""

    code = "WITHDRAWAL_LOCKOUT"


class ZeroAmountError(PreconditionError):
    """Raised for requests with a zero amount or zero shares."""

    code = "ZERO_AMOUNT"


class InsufficientSharesError(PreconditionError):
    """Raised when an investor requests or cancels more shares than they hold."""

    code = "INSUFFICIENT_SHARES"


class InsufficientLiquidityError(PreconditionError):
    """Raised when unreserved liquidity cannot cover a removal."""

    code = "INSUFFICIENT_LIQUIDITY"


class CovenantViolationError(PreconditionError):
    """Raised when a deposit would push senior assets past the leverage ratio."""

    code = "COVENANT_VIOLATION"


class LiquidityCapExceededError(PreconditionError):
    """Raised when a deposit would take total tranche assets past the liquidity cap."""

    code = "LIQUIDITY_CAP_EXCEEDED"


# --- INVARIANTS ---
class InvariantViolationError(PoolError):
    """An update would break a ledger invariant; the whole call is aborted."""

    code = "INVARIANT_VIOLATION"


class NegativeBalanceError(InvariantViolationError):
    """Raised when a balance would become negative."""

    code = "NEGATIVE_BALANCE"


# --- ARITHMETIC ---
class ArithmeticBoundsError(PoolError):
    """Raised when a quantity is not an integer in the uint256 range."""

    code = "ARITHMETIC_BOUNDS"
