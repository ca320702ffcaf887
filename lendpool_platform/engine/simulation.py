"""
Multi-Epoch Pool Simulation
===========================

Drives a :class:`~pool.LendingPool` through many settlements with randomly
generated credit performance and investor behaviour, checking the pool's
accounting invariants after every epoch:

- **Conservation**: tranche plus cover value changes by exactly
  ``profit - fees - loss + recovery - redeemed``.
- **Leverage covenant**: ``senior <= junior * ratio`` after redemption
  payouts, or at least no worse than before them.
- **FIFO fairness**: no epoch is partly served while an older one in the
  same tranche still has unprocessed shares.

All randomness comes from one seeded ``numpy.random.RandomState`` so runs
are reproducible.

Example
-------
>>> from lendpool_platform.engine.simulation import PoolSimulator, SimulationParameters
>>> sim = PoolSimulator(config, SimulationParameters(n_epochs=24, seed=7))
>>> result = sim.run()
>>> result.violations
[]
>>> result.report[["Epoch", "Senior.Assets", "Junior.Assets"]].tail()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from ..config import get_settings
from .audit_trail import AuditTrail
from .credit import ScriptedCreditSource
from .epoch_manager import SettlementResult
from .loader import PoolDefinition
from .pool import LendingPool
from .pool_config import PoolConfig
from .redemption import RedemptionLedger
from .reporting import SettlementReportGenerator
from .tranche_vault import Tranche

logger = logging.getLogger("LENDPOOL.Simulation")


@dataclass
class SimulationParameters:
    """
    Parameters of a simulation run.

    Attributes
    ----------
    n_epochs : int
        Settlements to run.
    seed : int, optional
        Random seed; the ``LENDPOOL_SIMULATION_SEED`` setting when omitted.
    n_investors : int
        Investors per tranche.
    junior_deposit, senior_deposit : int
        Initial deposit of each investor in each tranche.
    utilization : float
        Fraction of deposited cash lent out at the start.
    profit_rate_mean, profit_rate_vol : float
        Per-epoch profit as a fraction of deployed capital.
    loss_probability : float
        Chance of a credit loss event in an epoch.
    loss_severity : float
        Maximum loss as a fraction of deployed capital.
    recovery_rate : float
        Maximum fraction of outstanding losses recovered per epoch.
    repayment_rate : float
        Maximum fraction of deployed capital repaid per epoch.
    redemption_probability : float
        Chance that an investor requests a redemption in an epoch.
    redemption_fraction : float
        Maximum fraction of an investor's shares requested at once.
    """

    n_epochs: int = 12
    seed: Optional[int] = None
    n_investors: int = 5
    junior_deposit: int = 50_000
    senior_deposit: int = 150_000
    utilization: float = 0.8
    profit_rate_mean: float = 0.01
    profit_rate_vol: float = 0.004
    loss_probability: float = 0.15
    loss_severity: float = 0.05
    recovery_rate: float = 0.3
    repayment_rate: float = 0.1
    redemption_probability: float = 0.2
    redemption_fraction: float = 0.5


@dataclass
class SimulationResult:
    """Outcome of :meth:`PoolSimulator.run`."""

    pool: LendingPool
    report: pd.DataFrame
    violations: List[str] = field(default_factory=list)
    totals: Dict[str, int] = field(default_factory=dict)


class PoolSimulator:
    """
    Run a pool through random credit and redemption scenarios.

    Parameters
    ----------
    config : PoolConfig
        Pool to simulate.
    params : SimulationParameters, optional
        Scenario parameters.
    audit_trail : AuditTrail, optional
        Passed through to the pool.
    """

    def __init__(
        self,
        config: PoolConfig,
        params: Optional[SimulationParameters] = None,
        audit_trail: Optional[AuditTrail] = None,
    ) -> None:
        self.config = config
        self.params = params or SimulationParameters()
        seed = self.params.seed if self.params.seed is not None else get_settings().simulation_seed
        self.rng = np.random.RandomState(seed)
        self.credit = ScriptedCreditSource()
        self.pool = LendingPool(config, self.credit, audit_trail)
        self.deployed = 0
        self.outstanding_loss = 0

    @classmethod
    def from_definition(
        cls,
        definition: PoolDefinition,
        params: Optional[SimulationParameters] = None,
        audit_trail: Optional[AuditTrail] = None,
    ) -> "PoolSimulator":
        """Simulate a loaded pool definition, cover balances included."""
        sim = cls(definition.config, params, audit_trail)
        sim.pool = definition.create_pool(sim.credit, audit_trail)
        return sim

    def _investors(self, tranche: Tranche) -> List[str]:
        return [f"{tranche.value}_{i}" for i in range(self.params.n_investors)]

    def _setup(self) -> None:
        p = self.params
        controller = self.config.settings.controller
        self.pool.open_initial_epoch(0, controller)

        for investor in self._investors(Tranche.JUNIOR):
            self.pool.deposit(Tranche.JUNIOR, investor, p.junior_deposit, now=0)

        ratio = self.config.lp_config.max_senior_junior_ratio
        for investor in self._investors(Tranche.SENIOR):
            assets = self.pool.state.tranche_assets
            room = assets.junior * ratio - assets.senior
            amount = min(p.senior_deposit, room)
            if amount > 0:
                self.pool.deposit(Tranche.SENIOR, investor, amount, now=0)

        self.deployed = int(self.pool.state.liquidity.available * p.utilization)
        if self.deployed:
            self.pool.remove_liquidity(self.deployed)
        logger.info(f"Simulation set up: deployed {self.deployed} of {self.pool.state.liquidity.total_liquidity + self.deployed}")

    def _draw_credit(self) -> None:
        """Queue this epoch's P/L and move the matching cash."""
        p = self.params
        rng = self.rng

        rate = max(0.0, rng.normal(p.profit_rate_mean, p.profit_rate_vol))
        profit = int(self.deployed * rate)

        loss = 0
        if rng.uniform() < p.loss_probability:
            loss = int(self.deployed * p.loss_severity * rng.uniform())
            loss = min(loss, self.deployed, self.pool.state.total_value())
        self.deployed -= loss

        recovery = int(self.outstanding_loss * p.recovery_rate * rng.uniform())
        self.outstanding_loss += loss - recovery

        repayment = int(self.deployed * p.repayment_rate * rng.uniform())
        self.deployed -= repayment

        self.credit.schedule(profit=profit, loss=loss, recovery=recovery)
        cash_in = profit + recovery + repayment
        if cash_in:
            self.pool.add_liquidity(cash_in)

    def _draw_redemptions(self, now: int) -> None:
        p = self.params
        for tranche in Tranche:
            vault = self.pool.state.vault(tranche)
            for investor in self._investors(tranche):
                balance = vault.balance_of(investor)
                if balance == 0 or self.rng.uniform() >= p.redemption_probability:
                    continue
                shares = int(balance * p.redemption_fraction * self.rng.uniform())
                if shares > 0:
                    self.pool.request_redemption(tranche, investor, shares, now)

    def _withdraw_all(self) -> int:
        paid = 0
        for tranche in Tranche:
            for investor in self._investors(tranche):
                paid += self.pool.withdraw(tranche, investor)
        return paid

    def _check_epoch(self, before: Dict[str, int], result: SettlementResult, violations: List[str]) -> None:
        state = self.pool.state
        expected = (
            before["value"]
            + result.pnl.profit
            - result.waterfall.fees.total
            - result.pnl.loss
            + result.pnl.recovery
            - result.total_redeemed
        )
        if state.total_value() != expected:
            violations.append(
                f"epoch {result.epoch_id}: value {state.total_value()} != expected {expected}"
            )

        ratio = self.config.lp_config.max_senior_junior_ratio
        assets = state.tranche_assets
        if result.total_redeemed and assets.senior > assets.junior * ratio:
            senior_redeemed = result.redemptions[Tranche.SENIOR].amount_processed
            junior_redeemed = result.redemptions[Tranche.JUNIOR].amount_processed
            pre_gap = (assets.senior + senior_redeemed) - (assets.junior + junior_redeemed) * ratio
            if assets.senior - assets.junior * ratio > pre_gap:
                violations.append(f"epoch {result.epoch_id}: redemptions widened covenant breach")

        for tranche in Tranche:
            if not fifo_holds(state.vault(tranche).ledger):
                violations.append(f"epoch {result.epoch_id}: FIFO broken in {tranche.value}")

    def run(self) -> SimulationResult:
        """
        Run ``n_epochs`` settlements.

        Returns
        -------
        SimulationResult
            The pool, its settlement report, any invariant violations and
            run totals.
        """
        self._setup()
        violations: List[str] = []
        withdrawn = 0

        for _ in range(self.params.n_epochs):
            epoch = self.pool.get_current_epoch()
            self._draw_redemptions(now=epoch.end_time - 1)
            self._draw_credit()

            state = self.pool.state
            before = {"value": state.total_value()}
            result = self.pool.close_current_epoch(now=epoch.end_time)
            self._check_epoch(before, result, violations)
            withdrawn += self._withdraw_all()

        for v in violations:
            logger.warning(f"Invariant violation: {v}")

        names = [c.name for c in self.config.first_loss_covers]
        reporter = SettlementReportGenerator(self.pool.state.history, cover_names=names)
        report = reporter.generate_settlement_report()
        totals = reporter.summarize(report)
        totals["total_withdrawn"] = withdrawn
        logger.info(f"Simulation finished after {self.params.n_epochs} epochs with {len(violations)} violations")
        return SimulationResult(pool=self.pool, report=report, violations=violations, totals=totals)


def fifo_holds(ledger: RedemptionLedger) -> bool:
    """True if no epoch is partly served while an older one is unfinished."""
    blocked = False
    for summary in ledger.summaries:
        if blocked and summary.total_shares_processed > 0:
            return False
        if not summary.is_fully_processed:
            blocked = True
    return True
