"""
Integer Arithmetic Primitives
=============================

Shared fixed-point helpers used by every settlement component. All pool
quantities are non-negative integers in the pool's base unit and every
division truncates toward zero. Values are bounded to the unsigned 256-bit
range; anything outside it is rejected at the operation boundary rather than
saturated.

Constants
---------
BPS_FACTOR : int
    Basis-point denominator (10,000 = 100%).
SECONDS_IN_YEAR : int
    Seconds in a 365-day year, used for yield accrual.
PRICE_DECIMALS_FACTOR : int
    Fixed-point scale of share prices (18 decimals).
MAX_UINT : int
    Largest representable amount.

Example
-------
>>> from lendpool_platform.engine.numeric import mul_div, ceil_div
>>> mul_div(12_387, 800_000, 1_050_000)
9437
>>> ceil_div(10, 4)
3
"""

from __future__ import annotations

from typing import Iterable

from .errors import ArithmeticBoundsError, NegativeBalanceError

BPS_FACTOR = 10_000
SECONDS_IN_YEAR = 365 * 24 * 60 * 60
PRICE_DECIMALS_FACTOR = 10 ** 18
MAX_UINT = 2 ** 256 - 1


def check_uint(value: int, name: str = "value") -> int:
    """
    Validate that ``value`` is an integer in ``[0, MAX_UINT]``.

    Parameters
    ----------
    value : int
        Quantity to validate.
    name : str
        Field name used in the error message.

    Returns
    -------
    int
        The validated value, unchanged.

    Raises
    ------
    ArithmeticBoundsError
        If the value is not an ``int``, is negative, or exceeds ``MAX_UINT``.
    """
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise ArithmeticBoundsError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > MAX_UINT:
        raise ArithmeticBoundsError(f"{name} out of range: {value}")
    return value


def check_all(values: Iterable[int], name: str = "value") -> None:
    """Validate every element of ``values`` with :func:`check_uint`."""
    for idx, value in enumerate(values):
        check_uint(value, f"{name}[{idx}]")


def checked_add(a: int, b: int, name: str = "sum") -> int:
    """Add two amounts, rejecting a result above ``MAX_UINT``."""
    return check_uint(a + b, name)


def checked_sub(a: int, b: int, name: str = "balance") -> int:
    """
    Subtract ``b`` from ``a``.

    Raises
    ------
    NegativeBalanceError
        If ``b > a``. Callers clamp with ``min`` before subtracting; reaching
        this error means an invariant was broken upstream.
    """
    if b > a:
        raise NegativeBalanceError(f"{name} would become negative: {a} - {b}")
    return a - b


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    Compute ``a * b // denominator`` with truncation toward zero.

    Parameters
    ----------
    a, b : int
        Non-negative factors.
    denominator : int
        Positive divisor.

    Returns
    -------
    int
        Floor of the exact quotient.

    Raises
    ------
    ArithmeticBoundsError
        If the denominator is zero or the result leaves the uint range.
    """
    if denominator == 0:
        raise ArithmeticBoundsError("Division by zero")
    return check_uint(a * b // denominator, "mul_div result")


def ceil_div(a: int, b: int) -> int:
    """Return ``ceil(a / b)`` for non-negative ``a`` and positive ``b``."""
    if b == 0:
        raise ArithmeticBoundsError("Division by zero")
    return -(-a // b)


def bps_of(amount: int, bps: int) -> int:
    """Return ``amount * bps / 10000`` truncated."""
    return mul_div(amount, bps, BPS_FACTOR)
