"""Shared fixtures for the settlement engine tests."""

from typing import Any, Dict, List, Optional

import pytest

from lendpool_platform.engine.audit_trail import AuditTrail
from lendpool_platform.engine.credit import ScriptedCreditSource
from lendpool_platform.engine.pool import LendingPool
from lendpool_platform.engine.pool_config import FeeStructure, FirstLossCoverConfig, LPConfig, PoolConfig
from lendpool_platform.engine.tranche_vault import Tranche

PERIOD = 30 * 24 * 60 * 60


def build_config(
    lp: Optional[Dict[str, Any]] = None,
    fees: Optional[Dict[str, Any]] = None,
    covers: Optional[List[Dict[str, Any]]] = None,
) -> PoolConfig:
    return PoolConfig(
        pool_id="TEST_POOL",
        lp_config=LPConfig(**(lp or {})),
        fees=FeeStructure(**(fees or {})),
        first_loss_covers=[FirstLossCoverConfig(**c) for c in covers or []],
    )


@pytest.fixture
def make_pool():
    """
    Factory for an open pool with one junior and one senior investor.

    Defaults to junior 250,000 ("jane") and senior 800,000 ("sam") deposited
    at t=0. With ``deploy=True`` all deposited cash is lent out, so
    redemptions are funded only by later ``add_liquidity`` calls.
    """

    def _make(
        lp: Optional[Dict[str, Any]] = None,
        fees: Optional[Dict[str, Any]] = None,
        covers: Optional[List[Dict[str, Any]]] = None,
        junior: int = 250_000,
        senior: int = 800_000,
        deploy: bool = False,
        audit_trail: Optional[AuditTrail] = None,
    ):
        config = build_config(lp, fees, covers)
        credit = ScriptedCreditSource()
        pool = LendingPool(config, credit, audit_trail)
        pool.open_initial_epoch(0, config.settings.controller)
        if junior:
            pool.deposit(Tranche.JUNIOR, "jane", junior, now=0)
        if senior:
            pool.deposit(Tranche.SENIOR, "sam", senior, now=0)
        if deploy:
            pool.remove_liquidity(pool.state.liquidity.available)
        return pool, credit

    return _make
