"""
Redemption Ledger
=================

Per-tranche bookkeeping of redemption (withdrawal) requests. Requests are
batched by epoch into an append-only list of :class:`RedemptionSummary`
records and serviced strictly oldest-epoch-first: an epoch that is only
partially filled blocks every younger epoch of the same tranche until it is
cleared.

Investor-level state (:class:`RedemptionRecord`) is updated lazily. Each
record keeps a cursor into the summary list and is caught up by the pure
:func:`advance` replay at the start of every investor-facing operation, so a
late-arriving investor can never be credited at stale pricing.

Summary states
--------------
- **Pending**: ``total_shares_processed == 0``
- **Partially processed**: ``0 < processed < requested``; stays at the head
  of the queue
- **Fully processed**: ``processed == requested``; the ledger advances
  ``first_unprocessed_epoch_index`` past it

Example
-------
>>> from lendpool_platform.engine.redemption import RedemptionLedger
>>> from lendpool_platform.engine.numeric import PRICE_DECIMALS_FACTOR
>>> ledger = RedemptionLedger("senior")
>>> record = ledger.add_redemption_request("alice", shares=100, epoch_id=1, principal=100)
>>> ledger.process_redemptions(60, PRICE_DECIMALS_FACTOR)
(60, 60)
>>> ledger.get_redemption_record("alice").total_amount_processed
60
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import InsufficientSharesError, InvariantViolationError, ZeroAmountError
from .numeric import PRICE_DECIMALS_FACTOR, check_uint, checked_add, checked_sub, mul_div

logger = logging.getLogger("LENDPOOL.Redemption")


@dataclass
class RedemptionSummary:
    """
    Aggregate redemption requests of one tranche in one epoch.

    Attributes
    ----------
    epoch_id : int
        Epoch the requests were made in.
    total_shares_requested : int
        Shares requested by all investors in this epoch.
    total_shares_processed : int
        Shares redeemed so far, never above ``total_shares_requested``.
    total_amount_processed : int
        Base-unit amount paid for the processed shares. Non-decreasing.
    """

    epoch_id: int
    total_shares_requested: int = 0
    total_shares_processed: int = 0
    total_amount_processed: int = 0

    @property
    def remaining_shares(self) -> int:
        """Shares still waiting to be processed."""
        return self.total_shares_requested - self.total_shares_processed

    @property
    def is_fully_processed(self) -> bool:
        """True when nothing in this epoch remains to be redeemed."""
        return self.total_shares_processed >= self.total_shares_requested


@dataclass(frozen=True)
class PendingRequest:
    """
    An investor's shares requested in one epoch that are not yet fully
    accounted into their record.

    ``shares_accounted`` and ``amount_accounted`` hold what earlier replays
    already credited from a partially processed epoch.
    """

    epoch_id: int
    shares: int
    shares_accounted: int = 0
    amount_accounted: int = 0


@dataclass(frozen=True)
class RedemptionRecord:
    """
    One investor's redemption position in one tranche.

    Attributes
    ----------
    next_epoch_id_to_process : int
        Oldest epoch whose summary the record has not fully replayed.
    num_shares_requested : int
        Requested shares not yet processed, across all pending epochs.
    principal_requested : int
        Deposit principal attributed to ``num_shares_requested``.
    total_amount_processed : int
        Cumulative amount redeemed for this investor.
    total_amount_withdrawn : int
        Cumulative amount already paid out; never above
        ``total_amount_processed``.
    pending : tuple of PendingRequest
        Per-epoch requests still open, oldest first.
    """

    next_epoch_id_to_process: int = 0
    num_shares_requested: int = 0
    principal_requested: int = 0
    total_amount_processed: int = 0
    total_amount_withdrawn: int = 0
    pending: Tuple[PendingRequest, ...] = ()

    @property
    def withdrawable_amount(self) -> int:
        """Processed amount not yet withdrawn."""
        return self.total_amount_processed - self.total_amount_withdrawn


def advance(record: RedemptionRecord, summaries: Mapping[int, RedemptionSummary]) -> RedemptionRecord:
    """
    Replay ``record`` forward through the summaries processed since its last
    update.

    Each pending request receives its pro-rata slice of its epoch's processed
    shares and amount. Fully processed epochs are dropped from ``pending``;
    partially processed ones remember what has been credited so far.

    Parameters
    ----------
    record : RedemptionRecord
        The investor's record as last stored.
    summaries : mapping of int to RedemptionSummary
        Summaries keyed by epoch id.

    Returns
    -------
    RedemptionRecord
        The caught-up record. ``record`` itself is not modified.
    """
    num_shares = record.num_shares_requested
    principal = record.principal_requested
    amount_processed = record.total_amount_processed
    next_epoch_id = record.next_epoch_id_to_process
    still_pending: List[PendingRequest] = []

    for request in record.pending:
        summary = summaries.get(request.epoch_id)
        if summary is None or summary.total_shares_processed == 0:
            still_pending.append(request)
            continue

        if summary.is_fully_processed:
            target_shares = request.shares
        else:
            target_shares = mul_div(
                request.shares, summary.total_shares_processed, summary.total_shares_requested
            )
        target_amount = mul_div(
            request.shares, summary.total_amount_processed, summary.total_shares_requested
        )

        shares_delta = target_shares - request.shares_accounted
        amount_delta = target_amount - request.amount_accounted
        principal_delta = mul_div(principal, shares_delta, num_shares) if num_shares else 0

        num_shares = checked_sub(num_shares, shares_delta, "num_shares_requested")
        principal = checked_sub(principal, principal_delta, "principal_requested")
        amount_processed = checked_add(amount_processed, amount_delta, "total_amount_processed")

        if summary.is_fully_processed:
            next_epoch_id = max(next_epoch_id, request.epoch_id + 1)
        else:
            still_pending.append(
                replace(request, shares_accounted=target_shares, amount_accounted=target_amount)
            )

    if still_pending:
        next_epoch_id = still_pending[0].epoch_id

    return replace(
        record,
        next_epoch_id_to_process=next_epoch_id,
        num_shares_requested=num_shares,
        principal_requested=principal,
        total_amount_processed=amount_processed,
        pending=tuple(still_pending),
    )


@dataclass
class RedemptionLedger:
    """
    Epoch-batched redemption queue of one tranche.

    Attributes
    ----------
    tranche : str
        Tranche name, used in log messages.
    summaries : list of RedemptionSummary
        Append-only, ordered by epoch id.
    first_unprocessed_epoch_index : int
        Index into ``summaries`` of the oldest epoch not fully processed.
    records : dict
        Investor id to stored (possibly stale) :class:`RedemptionRecord`.
    """

    tranche: str
    summaries: List[RedemptionSummary] = field(default_factory=list)
    first_unprocessed_epoch_index: int = 0
    records: Dict[str, RedemptionRecord] = field(default_factory=dict)

    # --- Queries ---
    def summaries_by_epoch(self) -> Dict[int, RedemptionSummary]:
        """Return the summaries keyed by epoch id."""
        return {s.epoch_id: s for s in self.summaries}

    def summary_for(self, epoch_id: int) -> Optional[RedemptionSummary]:
        """Return the summary of ``epoch_id`` or None if nothing was requested."""
        for summary in reversed(self.summaries):
            if summary.epoch_id == epoch_id:
                return summary
            if summary.epoch_id < epoch_id:
                break
        return None

    def unprocessed_summaries(self) -> List[RedemptionSummary]:
        """
        Return copies of the summaries that still have shares to process.

        The list is recomputed on every call; mutating it has no effect on
        the ledger.
        """
        return [
            replace(s)
            for s in self.summaries[self.first_unprocessed_epoch_index:]
            if not s.is_fully_processed
        ]

    def total_unprocessed_shares(self) -> int:
        """Shares requested across all epochs and not yet processed."""
        return sum(s.remaining_shares for s in self.summaries[self.first_unprocessed_epoch_index:])

    def get_redemption_record(self, investor: str) -> RedemptionRecord:
        """Return the investor's record caught up to the processed state, without storing it."""
        return advance(self.records.get(investor, RedemptionRecord()), self.summaries_by_epoch())

    def cancellable_shares(self, investor: str, current_epoch_id: int) -> int:
        """Shares the investor requested in the still-open current epoch."""
        record = self.records.get(investor)
        if record is None:
            return 0
        return sum(r.shares for r in record.pending if r.epoch_id == current_epoch_id)

    # --- Investor operations ---
    def _catch_up(self, investor: str) -> RedemptionRecord:
        record = self.get_redemption_record(investor)
        self.records[investor] = record
        return record

    def add_redemption_request(self, investor: str, shares: int, epoch_id: int, principal: int) -> RedemptionRecord:
        """
        Queue ``shares`` for redemption in ``epoch_id``.

        Parameters
        ----------
        investor : str
            Requesting investor.
        shares : int
            Number of shares to redeem. Must be positive.
        epoch_id : int
            Current epoch.
        principal : int
            Deposit principal attributed to these shares.

        Returns
        -------
        RedemptionRecord
            The investor's updated record.
        """
        check_uint(shares, "shares")
        check_uint(principal, "principal")
        if shares == 0:
            raise ZeroAmountError("Redemption request must be for a positive number of shares")

        record = self._catch_up(investor)

        summary = self.summaries[-1] if self.summaries else None
        if summary is None or summary.epoch_id != epoch_id:
            if summary is not None and summary.epoch_id > epoch_id:
                raise InvariantViolationError(
                    f"Epoch {epoch_id} precedes the latest summary epoch {summary.epoch_id}"
                )
            summary = RedemptionSummary(epoch_id=epoch_id)
            self.summaries.append(summary)
        summary.total_shares_requested = checked_add(
            summary.total_shares_requested, shares, "total_shares_requested"
        )

        pending = list(record.pending)
        if pending and pending[-1].epoch_id == epoch_id:
            pending[-1] = replace(pending[-1], shares=pending[-1].shares + shares)
        else:
            pending.append(PendingRequest(epoch_id=epoch_id, shares=shares))

        record = replace(
            record,
            next_epoch_id_to_process=pending[0].epoch_id,
            num_shares_requested=checked_add(record.num_shares_requested, shares, "num_shares_requested"),
            principal_requested=checked_add(record.principal_requested, principal, "principal_requested"),
            pending=tuple(pending),
        )
        self.records[investor] = record
        logger.debug(f"[{self.tranche}] {investor} requested {shares} shares in epoch {epoch_id}")
        return record

    def cancel_redemption_request(self, investor: str, shares: int, current_epoch_id: int) -> int:
        """
        Withdraw part of a request made in the still-open current epoch.

        Returns
        -------
        int
            Principal released back to the investor's deposit record.

        Raises
        ------
        ZeroAmountError
            If ``shares`` is zero.
        InsufficientSharesError
            If ``shares`` exceeds what is cancellable in the current epoch.
        """
        check_uint(shares, "shares")
        if shares == 0:
            raise ZeroAmountError("Cancellation must be for a positive number of shares")
        record = self._catch_up(investor)
        cancellable = self.cancellable_shares(investor, current_epoch_id)
        if shares > cancellable:
            raise InsufficientSharesError(
                f"Only {cancellable} shares are cancellable in epoch {current_epoch_id}, got {shares}"
            )

        principal_released = mul_div(record.principal_requested, shares, record.num_shares_requested)
        pending = list(record.pending)
        last = pending[-1]
        if last.shares == shares:
            pending.pop()
        else:
            pending[-1] = replace(last, shares=last.shares - shares)

        summary = self.summary_for(current_epoch_id)
        summary.total_shares_requested -= shares

        self.records[investor] = replace(
            record,
            next_epoch_id_to_process=pending[0].epoch_id if pending else current_epoch_id,
            num_shares_requested=record.num_shares_requested - shares,
            principal_requested=record.principal_requested - principal_released,
            pending=tuple(pending),
        )
        logger.debug(f"[{self.tranche}] {investor} cancelled {shares} shares in epoch {current_epoch_id}")
        return principal_released

    def record_withdrawal(self, investor: str) -> int:
        """
        Mark everything processed for ``investor`` as withdrawn.

        Returns
        -------
        int
            The amount now payable to the investor.
        """
        record = self._catch_up(investor)
        amount = record.withdrawable_amount
        if amount:
            self.records[investor] = replace(
                record, total_amount_withdrawn=record.total_amount_withdrawn + amount
            )
        return amount

    # --- Settlement ---
    def process_redemptions(
        self,
        available_amount: int,
        price: int,
        max_epoch_id: Optional[int] = None,
    ) -> Tuple[int, int]:
        """
        Redeem queued shares oldest-epoch-first within a budget.

        Parameters
        ----------
        available_amount : int
            Maximum base-unit amount that may be paid out.
        price : int
            Share price scaled by ``PRICE_DECIMALS_FACTOR``.
        max_epoch_id : int, optional
            Only epochs with ``epoch_id <= max_epoch_id`` are eligible. The
            walk stops at the first ineligible epoch.

        Returns
        -------
        tuple of int
            ``(shares_processed, amount_consumed)``.

        Notes
        -----
        The walk stops at the first epoch it cannot fully clear, so no
        epoch is serviced while an older one remains partially unprocessed.
        """
        check_uint(available_amount, "available_amount")
        check_uint(price, "price")
        if price == 0:
            logger.warning(f"[{self.tranche}] Share price is zero; skipping redemption processing")
            return 0, 0

        budget = available_amount
        shares_total = 0
        amount_total = 0
        idx = self.first_unprocessed_epoch_index

        while idx < len(self.summaries):
            summary = self.summaries[idx]
            if max_epoch_id is not None and summary.epoch_id > max_epoch_id:
                break
            remaining = summary.remaining_shares
            if remaining == 0:
                idx += 1
                continue

            shares = min(remaining, mul_div(budget, PRICE_DECIMALS_FACTOR, price))
            if shares == 0:
                break
            amount = mul_div(shares, price, PRICE_DECIMALS_FACTOR)

            summary.total_shares_processed += shares
            summary.total_amount_processed += amount
            budget -= amount
            shares_total += shares
            amount_total += amount
            logger.debug(
                f"[{self.tranche}] Epoch {summary.epoch_id}: processed {shares} shares for {amount}"
            )
            if not summary.is_fully_processed:
                break
            idx += 1

        self.first_unprocessed_epoch_index = idx
        return shares_total, amount_total
