"""
Lending Pool Settlement Engine
==============================

This package implements the epoch-based settlement core of a two-tranche
lending pool. It orchestrates the following steps:

1. **Pool Loading**: Parse and validate pool definitions (tranche policy,
   covenant, fees, first-loss covers).
2. **Investor Flows**: Deposits mint tranche shares; redemption requests are
   batched per epoch in each tranche's redemption ledger.
3. **P/L Waterfall**: Each settlement pulls profit, loss and recovery from
   the credit collaborator and allocates them across senior, junior and the
   cover layers.
4. **Redemption Processing**: Queued shares are redeemed oldest-epoch-first
   within the liquidity and leverage-covenant budget.
5. **Reporting**: Produce epoch-by-epoch settlement tables.

The main entry point is :func:`run_simulation`, which loads a pool
definition and drives it through a seeded multi-epoch scenario, returning
the settlement report and run totals.

Example
-------
>>> from lendpool_platform.engine import run_simulation
>>> pool_json = {"meta": {"pool_id": "POOL_1"}, "lp_config": {"max_senior_junior_ratio": 4}}
>>> df, totals = run_simulation(pool_json, n_epochs=12, seed=7)
>>> print(df[["Epoch", "Senior.Assets", "Junior.Assets"]].head())

See Also
--------
loader.PoolLoader : Parses and validates pool JSON structures.
pool.LendingPool : Investor, credit-side and settlement operations.
epoch_manager.EpochManager : Atomic epoch settlement.
waterfall.PnLWaterfall : Profit, loss and recovery allocation.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import pandas as pd

from ..config import get_settings
from .audit_trail import AuditTrail
from .credit import CreditPnLSource, PnLReport, ScriptedCreditSource
from .epoch_manager import EpochManager, SettlementResult
from .errors import InvariantViolationError, PoolError, PreconditionError
from .loader import PoolDefinition, PoolLoader
from .pool import LendingPool
from .pool_config import FeeStructure, FirstLossCoverConfig, LPConfig, PoolConfig, PoolSettings, TranchesPolicyType
from .redemption import RedemptionLedger, RedemptionRecord, RedemptionSummary
from .reporting import SettlementReportGenerator
from .simulation import PoolSimulator, SimulationParameters
from .state import Epoch, PoolState
from .tranche_vault import Tranche
from .waterfall import PnLWaterfall

logger = logging.getLogger("LENDPOOL.Engine")

__all__ = [
    "AuditTrail",
    "CreditPnLSource",
    "Epoch",
    "EpochManager",
    "FeeStructure",
    "FirstLossCoverConfig",
    "InvariantViolationError",
    "LPConfig",
    "LendingPool",
    "PnLReport",
    "PnLWaterfall",
    "PoolConfig",
    "PoolDefinition",
    "PoolError",
    "PoolLoader",
    "PoolSettings",
    "PoolSimulator",
    "PoolState",
    "PreconditionError",
    "RedemptionLedger",
    "RedemptionRecord",
    "RedemptionSummary",
    "ScriptedCreditSource",
    "SettlementReportGenerator",
    "SettlementResult",
    "SimulationParameters",
    "Tranche",
    "TranchesPolicyType",
    "run_simulation",
]


def run_simulation(
    pool_json: Dict[str, Any],
    n_epochs: int = 12,
    seed: Optional[int] = None,
    params: Optional[SimulationParameters] = None,
    audit_trail: Optional[AuditTrail] = None,
    save_results: bool = False,
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Load a pool definition and run it through a simulated scenario.

    Parameters
    ----------
    pool_json : dict
        Pool definition in the format accepted by :class:`PoolLoader`.
    n_epochs : int
        Settlements to run. Ignored when ``params`` is given.
    seed : int, optional
        Random seed. Ignored when ``params`` is given.
    params : SimulationParameters, optional
        Full scenario parameters.
    audit_trail : AuditTrail, optional
        Collects a trace of every settlement. Built from the audit settings
        when omitted.
    save_results : bool
        Write the settlement report (CSV) and the audit trail (JSON) to the
        configured results directory.

    Returns
    -------
    tuple
        ``(report, totals)``: the settlement report DataFrame and run totals,
        including ``violations`` (the number of invariant violations found)
        and ``audited_epochs``.
    """
    settings = get_settings()
    settings.configure_logging()

    definition = PoolLoader().load_from_json(pool_json)
    params = params or SimulationParameters(n_epochs=n_epochs, seed=seed)
    if audit_trail is None:
        audit_trail = settings.make_audit_trail()
    result = PoolSimulator.from_definition(definition, params, audit_trail).run()

    totals = dict(result.totals)
    totals["violations"] = len(result.violations)
    totals["audited_epochs"] = len(audit_trail.epochs)
    if result.violations:
        logger.warning(f"Pool {definition.pool_id}: {len(result.violations)} invariant violations")

    if save_results:
        results_dir = settings.get_results_dir()
        report_path = results_dir / f"{definition.pool_id}_settlement_report.csv"
        SettlementReportGenerator(result.pool.state.history).save_to_csv(result.report, str(report_path))
        totals["report_path"] = str(report_path)
        if audit_trail.enabled:
            trail_path = results_dir / f"{definition.pool_id}_audit_trail.json"
            audit_trail.export_to_json(trail_path)
            totals["audit_trail_path"] = str(trail_path)
    return result.report, totals
