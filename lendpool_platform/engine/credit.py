"""
Credit Collaborator Interface
=============================

The settlement engine consumes exactly one operation from the credit
subsystem: :meth:`CreditPnLSource.refresh_and_report_pnl`, which reports
the aggregate profit, loss and loss recovery accrued since the previous
call. How those numbers are derived (due dates, late fees, defaults) is
the credit subsystem's concern.

:class:`ScriptedCreditSource` replays a pre-arranged sequence of reports
and is what the simulator and the tests drive settlements with.

Example
-------
>>> from lendpool_platform.engine.credit import ScriptedCreditSource
>>> source = ScriptedCreditSource()
>>> source.schedule(profit=12_387)
>>> source.refresh_and_report_pnl()
PnLReport(profit=12387, loss=0, recovery=0)
>>> source.refresh_and_report_pnl()
PnLReport(profit=0, loss=0, recovery=0)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Iterable, NamedTuple, Optional

from .numeric import check_uint

logger = logging.getLogger("LENDPOOL.Credit")


class PnLReport(NamedTuple):
    """Aggregate credit performance since the previous settlement."""

    profit: int = 0
    loss: int = 0
    recovery: int = 0


class CreditPnLSource(ABC):
    """Interface the settlement engine pulls credit P/L through."""

    @abstractmethod
    def refresh_and_report_pnl(self) -> PnLReport:
        """
        Bring credit accounting up to date and report what changed.

        Returns
        -------
        PnLReport
            Non-negative profit, loss and recovery since the last call.
        """
        ...


class ScriptedCreditSource(CreditPnLSource):
    """
    Credit source that replays queued reports in order.

    Once the queue is empty every call reports zero P/L.

    Parameters
    ----------
    reports : iterable of PnLReport, optional
        Initial queue contents.
    """

    def __init__(self, reports: Optional[Iterable[PnLReport]] = None) -> None:
        self._queue: Deque[PnLReport] = deque(reports or [])
        self.calls = 0

    def schedule(self, profit: int = 0, loss: int = 0, recovery: int = 0) -> None:
        """Queue one report for a future settlement."""
        report = PnLReport(
            check_uint(profit, "profit"),
            check_uint(loss, "loss"),
            check_uint(recovery, "recovery"),
        )
        self._queue.append(report)

    @property
    def pending(self) -> int:
        """Reports not yet consumed."""
        return len(self._queue)

    def refresh_and_report_pnl(self) -> PnLReport:
        self.calls += 1
        report = self._queue.popleft() if self._queue else PnLReport()
        logger.debug(f"Reporting P/L #{self.calls}: {report}")
        return report
