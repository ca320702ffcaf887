"""
Settlement Audit Trail
======================

Step-by-step record of every epoch settlement, for debugging and for
reconciling pool balances with what investors were paid.

Each closed epoch produces one :class:`SettlementTrace` holding the
balances before and after settlement and an ordered list of
:class:`SettlementStepTrace` entries: the credit P/L pull, each waterfall
stage, and each redemption pass per tranche.

Example
-------
>>> from lendpool_platform.engine.audit_trail import AuditTrail
>>> trail = AuditTrail(enabled=True, level="detailed")
>>> pool = LendingPool(config, credit_source, audit_trail=trail)
>>> pool.close_current_epoch(now)
>>> print(trail.get_epoch_summary(1))
>>> trail.export_to_json("audit_epoch_1.json")
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SettlementStepTrace:
    """
    Trace of one settlement step.

    Attributes
    ----------
    step_id : str
        Identifier such as ``"waterfall.loss"`` or ``"redemption.senior.mature"``.
    epoch_id : int
        Epoch being closed.
    stage : str
        ``"pnl"``, ``"profit"``, ``"loss"``, ``"recovery"`` or ``"redemption"``.
    tranche : str, optional
        Tranche the step applies to, for redemption steps.
    requested_amount : int
        Amount fed into the step (P/L amount or redemption budget).
    available_amount : int
        Liquidity available when the step ran.
    allocated_amount : int
        Amount actually distributed, absorbed or paid.
    """

    step_id: str
    epoch_id: int
    stage: str
    tranche: Optional[str] = None
    timestamp: str = field(default_factory=_utc_now)

    requested_amount: int = 0
    available_amount: int = 0
    allocated_amount: int = 0
    shares_processed: int = 0

    post_senior_assets: int = 0
    post_junior_assets: int = 0
    post_cover_assets: List[int] = field(default_factory=list)

    notes: List[str] = field(default_factory=list)

    def add_note(self, note: str) -> None:
        """Add a note to this step trace."""
        self.notes.append(note)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass
class SettlementTrace:
    """
    Complete trace of one epoch settlement.
    """

    epoch_id: int
    settled_at: int = 0
    timestamp: str = field(default_factory=_utc_now)

    steps: List[SettlementStepTrace] = field(default_factory=list)

    initial_balances: Dict[str, Any] = field(default_factory=dict)
    final_balances: Dict[str, Any] = field(default_factory=dict)

    profit: int = 0
    loss: int = 0
    recovery: int = 0
    total_redeemed: int = 0

    def add_step(self, step: SettlementStepTrace) -> None:
        """Add a step trace."""
        self.steps.append(step)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "epoch_id": self.epoch_id,
            "settled_at": self.settled_at,
            "timestamp": self.timestamp,
            "steps": [step.to_dict() for step in self.steps],
            "initial_balances": self.initial_balances,
            "final_balances": self.final_balances,
            "profit": self.profit,
            "loss": self.loss,
            "recovery": self.recovery,
            "total_redeemed": self.total_redeemed,
        }


class AuditTrail:
    """
    Collects settlement traces.

    Parameters
    ----------
    enabled : bool
        Whether to capture traces (default: True).
    level : str
        ``"summary"`` keeps only epoch totals; ``"detailed"`` also keeps the
        per-step traces (default: "detailed").
    max_epochs : int, optional
        Maximum traces to retain in memory; the oldest are dropped first.

    Example
    -------
    >>> trail = AuditTrail(enabled=True, level="detailed")
    >>> trail.start_epoch(1, {"senior": 800_000, "junior": 250_000})
    >>> trail.record_step(step_trace)
    >>> trail.end_epoch({"senior": 801_887, "junior": 260_500})
    """

    def __init__(
        self,
        enabled: bool = True,
        level: str = "detailed",
        max_epochs: Optional[int] = None,
    ):
        self.enabled = enabled
        self.level = level
        self.max_epochs = max_epochs

        self.epochs: List[SettlementTrace] = []
        self.current_trace: Optional[SettlementTrace] = None

        self.metadata = {
            "created_at": _utc_now(),
            "level": level,
            "version": "1.0",
        }

    def start_epoch(self, epoch_id: int, initial_state: Optional[Dict[str, Any]] = None) -> Optional[SettlementTrace]:
        """
        Start tracing the settlement of ``epoch_id``.

        Returns
        -------
        SettlementTrace or None
            The open trace, or None when auditing is disabled.
        """
        if not self.enabled:
            return None

        self.current_trace = SettlementTrace(epoch_id=epoch_id)
        if initial_state:
            self.current_trace.initial_balances = dict(initial_state)
        return self.current_trace

    def record_step(self, step: SettlementStepTrace) -> None:
        """Record a settlement step."""
        if not self.enabled or self.current_trace is None or self.level == "summary":
            return
        self.current_trace.add_step(step)

    def end_epoch(self, final_state: Optional[Dict[str, Any]] = None) -> None:
        """Close the current trace and keep it."""
        if not self.enabled or self.current_trace is None:
            return

        if final_state:
            self.current_trace.final_balances = dict(final_state)
        if self.level == "summary":
            self.current_trace.steps = []

        self.epochs.append(self.current_trace)
        self.current_trace = None

        if self.max_epochs and len(self.epochs) > self.max_epochs:
            self.epochs.pop(0)

    def abort_epoch(self) -> None:
        """Discard the current trace after a failed settlement."""
        self.current_trace = None

    def get_trace(self, epoch_id: int) -> Optional[SettlementTrace]:
        """Return the trace of ``epoch_id`` if retained."""
        return next((t for t in self.epochs if t.epoch_id == epoch_id), None)

    def export_to_json(self, output_path: Union[str, Path]) -> None:
        """
        Export every retained trace to a JSON file.

        Parameters
        ----------
        output_path : str or Path
            Output file path.
        """
        if not self.enabled:
            return

        output = {
            "metadata": self.metadata,
            "epochs": [trace.to_dict() for trace in self.epochs],
        }
        with open(output_path, "w") as f:
            json.dump(output, f, indent=2)

    def export_epoch_to_json(self, epoch_id: int, output_path: Union[str, Path]) -> None:
        """Export a single epoch's trace to JSON."""
        if not self.enabled:
            return

        trace = self.get_trace(epoch_id)
        if trace is None:
            raise ValueError(f"Epoch {epoch_id} not found in audit trail")

        with open(output_path, "w") as f:
            json.dump({"metadata": self.metadata, "epoch": trace.to_dict()}, f, indent=2)

    def get_epoch_summary(self, epoch_id: int) -> str:
        """
        Generate a human-readable summary of one settlement.

        Parameters
        ----------
        epoch_id : int
            Closed epoch.

        Returns
        -------
        str
            Formatted summary.
        """
        trace = self.get_trace(epoch_id)
        if trace is None:
            return f"Epoch {epoch_id} not found"

        lines = []
        lines.append(f"Epoch {epoch_id} Settlement")
        lines.append("=" * 80)
        lines.append(f"Settled at: {trace.settled_at}")
        lines.append(f"Profit: {trace.profit:,}")
        lines.append(f"Loss: {trace.loss:,}")
        lines.append(f"Recovery: {trace.recovery:,}")
        lines.append(f"Redeemed: {trace.total_redeemed:,}")
        lines.append("")

        lines.append("Balances:")
        for key, final in trace.final_balances.items():
            initial = trace.initial_balances.get(key)
            lines.append(f"  {key}: {initial} -> {final}")

        if trace.steps:
            lines.append("")
            lines.append("Steps:")
            for step in trace.steps:
                lines.append(
                    f"  {step.step_id}: requested {step.requested_amount:,}, "
                    f"allocated {step.allocated_amount:,}"
                )

        return "\n".join(lines)
