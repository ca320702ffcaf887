"""
P/L Waterfall Tests
===================

Tests for the allocation of one settlement's profit, loss and recovery:
- Risk-adjusted and fixed-senior-yield profit policies
- Fee skimming ahead of the policy
- Junior profit shared with first-loss cover layers
- Loss absorption: covers in order, then junior, then senior
- Recovery: senior first, then junior, then covers in reverse order
- Value conservation across all stages
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from lendpool_platform.engine.errors import InvariantViolationError
from lendpool_platform.engine.numeric import SECONDS_IN_YEAR
from lendpool_platform.engine.pool_config import (
    FeeStructure,
    FirstLossCoverConfig,
    LPConfig,
    PoolConfig,
    TranchesPolicyType,
)
from lendpool_platform.engine.state import FirstLossCover, PoolState
from lendpool_platform.engine.tranches_policy import (
    FixedSeniorYieldPolicy,
    RiskAdjustedPolicy,
    build_policy,
    split_junior_profit,
)
from lendpool_platform.engine.waterfall import PnLWaterfall
from lendpool_platform.engine.yield_tracker import SeniorYieldTracker


def make_state(
    senior: int = 800_000,
    junior: int = 250_000,
    covers: Sequence[Tuple[Dict[str, Any], int]] = (),
    lp: Optional[Dict[str, Any]] = None,
    fees: Optional[Dict[str, Any]] = None,
) -> PoolState:
    """Build a state with the given balances; ``covers`` pairs config kwargs with a balance."""
    config = PoolConfig(
        lp_config=LPConfig(**(lp or {})),
        fees=FeeStructure(**(fees or {})),
        first_loss_covers=[FirstLossCoverConfig(**c) for c, _ in covers],
    )
    state = PoolState.from_config(config)
    state.tranche_assets.senior = senior
    state.tranche_assets.junior = junior
    for cover, (_, asset) in zip(state.covers, covers):
        cover.asset = asset
    return state


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def two_cover_layers() -> List[Tuple[Dict[str, Any], int]]:
    """
    Two cover layers in absorption order.

    - borrower: 10% of each loss, capped at 5,000, funded with 10,000
    - affiliate: 50% of each loss, capped at 100,000, funded with 20,000
    """
    return [
        ({"name": "borrower", "cover_rate_per_loss_bps": 1_000, "cover_cap_per_loss": 5_000}, 10_000),
        ({"name": "affiliate", "cover_rate_per_loss_bps": 5_000, "cover_cap_per_loss": 100_000}, 20_000),
    ]


# =============================================================================
# Profit Policies
# =============================================================================


class TestRiskAdjustedPolicy:
    """Tests for the pro-rata policy with a senior discount."""

    def test_discounted_senior_share(self):
        """
        Scenario: Senior 800,000, junior 250,000, profit 12,387, 80% discount.
        Expected: Senior pro-rata share 9,437 discounted to 1,887; junior
        receives 10,500.
        """
        policy = RiskAdjustedPolicy(risk_adjustment_bps=8_000)
        alloc = policy.calc_tranche_profit(12_387, 800_000, 250_000, SeniorYieldTracker(), now=0)

        assert alloc.senior_profit == 1_887
        assert alloc.junior_profit == 10_500

    def test_no_adjustment_is_pro_rata(self):
        policy = RiskAdjustedPolicy(risk_adjustment_bps=0)
        alloc = policy.calc_tranche_profit(1_050, 800_000, 250_000, SeniorYieldTracker(), now=0)
        assert (alloc.senior_profit, alloc.junior_profit) == (800, 250)

    def test_empty_pool_gives_everything_to_junior(self):
        policy = RiskAdjustedPolicy(risk_adjustment_bps=8_000)
        alloc = policy.calc_tranche_profit(500, 0, 0, SeniorYieldTracker(), now=0)
        assert (alloc.senior_profit, alloc.junior_profit) == (0, 500)

    def test_tracker_untouched(self):
        tracker = SeniorYieldTracker(total_assets=1, unpaid_yield=2, last_updated_date=3)
        alloc = RiskAdjustedPolicy(0).calc_tranche_profit(100, 50, 50, tracker, now=1_000)
        assert alloc.yield_tracker is tracker


class TestFixedSeniorYieldPolicy:
    """Tests for the fixed-yield-first policy."""

    def test_profit_covers_accrued_yield(self):
        """
        Scenario: One year at 10% on 1,000,000 senior, profit 150,000.
        Expected: Senior takes its 100,000 yield, junior the remaining
        50,000, and the tracker is rebased onto the new senior balance.
        """
        policy = FixedSeniorYieldPolicy(yield_bps=1_000)
        tracker = SeniorYieldTracker(total_assets=1_000_000)
        alloc = policy.calc_tranche_profit(150_000, 1_000_000, 250_000, tracker, now=SECONDS_IN_YEAR)

        assert alloc.senior_profit == 100_000
        assert alloc.junior_profit == 50_000
        assert alloc.yield_tracker.unpaid_yield == 0
        assert alloc.yield_tracker.total_assets == 1_100_000

    def test_shortfall_stays_unpaid(self):
        """
        Scenario: Profit of 60,000 against 100,000 of accrued yield.
        Expected: Senior takes all of it; 40,000 remains owed; junior gets 0.
        """
        policy = FixedSeniorYieldPolicy(yield_bps=1_000)
        tracker = SeniorYieldTracker(total_assets=1_000_000)
        alloc = policy.calc_tranche_profit(60_000, 1_000_000, 250_000, tracker, now=SECONDS_IN_YEAR)

        assert alloc.senior_profit == 60_000
        assert alloc.junior_profit == 0
        assert alloc.yield_tracker.unpaid_yield == 40_000

    def test_build_policy_selects_configured_policy(self):
        fixed = build_policy(
            LPConfig(tranches_policy=TranchesPolicyType.FIXED_SENIOR_YIELD, fixed_senior_yield_bps=700)
        )
        adjusted = build_policy(LPConfig(risk_adjustment_bps=2_500))

        assert isinstance(fixed, FixedSeniorYieldPolicy) and fixed.yield_bps == 700
        assert isinstance(adjusted, RiskAdjustedPolicy) and adjusted.risk_adjustment_bps == 2_500


# =============================================================================
# Cover Profit Split
# =============================================================================


class TestCoverProfitSplit:
    """Tests for sharing junior profit with the cover layers."""

    def test_weighted_by_multiplier(self):
        """
        Scenario: Junior 100,000; one cover of 50,000 with a 2x multiplier.
        Expected: Cover weight equals junior's, so profit is split in half.
        """
        cover = FirstLossCover(
            config=FirstLossCoverConfig(name="borrower", risk_yield_multiplier_bps=20_000),
            asset=50_000,
        )
        assert split_junior_profit(10_000, 100_000, [cover]) == (5_000, [5_000])

    def test_zero_multiplier_leaves_profit_with_junior(self):
        cover = FirstLossCover(config=FirstLossCoverConfig(name="borrower"), asset=50_000)
        assert split_junior_profit(10_000, 100_000, [cover]) == (10_000, [0])

    def test_rounding_remainder_stays_with_junior(self):
        covers = [
            FirstLossCover(config=FirstLossCoverConfig(name=n, risk_yield_multiplier_bps=1), asset=10_000)
            for n in ("a", "b")
        ]
        junior_keeps, cover_profits = split_junior_profit(10, 1, covers)

        assert cover_profits == [3, 3]
        assert junior_keeps == 4


# =============================================================================
# Waterfall: Profit
# =============================================================================


class TestWaterfallProfit:
    """Tests for the profit stage applied to pool state."""

    def test_risk_adjusted_scenario(self):
        state = make_state(lp={"risk_adjustment_bps": 8_000})
        result = PnLWaterfall.from_config(state.config).distribute(state, 12_387, 0, 0, now=0)

        assert (result.senior_profit, result.junior_profit) == (1_887, 10_500)
        assert state.tranche_assets.senior == 801_887
        assert state.tranche_assets.junior == 260_500

    def test_fees_skimmed_before_policy(self):
        """
        Scenario: 10% protocol fee plus 5% owner and 5% EA rewards on a
                  profit of 10,000.
        Expected: Protocol takes 1,000; the rewards are taken from the
                  remaining 9,000 (450 each); the net 8,100 is split 80/20.
        """
        state = make_state(
            senior=800_000,
            junior=200_000,
            fees={"protocol_fee_bps": 1_000, "pool_owner_reward_bps": 500, "ea_reward_bps": 500},
        )
        result = PnLWaterfall.from_config(state.config).distribute(state, 10_000, 0, 0, now=0)

        assert (result.fees.protocol_fee, result.fees.pool_owner_reward, result.fees.ea_reward) == (1_000, 450, 450)
        assert state.accrued_fees == 1_900
        assert (result.senior_profit, result.junior_profit) == (6_480, 1_620)
        assert state.total_value() == 1_008_100

    def test_rewards_taken_after_protocol_fee(self):
        state = make_state(
            senior=800_000,
            junior=200_000,
            fees={"protocol_fee_bps": 1_000, "pool_owner_reward_bps": 1_000, "ea_reward_bps": 1_000},
        )
        fees = PnLWaterfall.from_config(state.config).skim_fees(1_000)

        assert (fees.protocol_fee, fees.pool_owner_reward, fees.ea_reward) == (100, 90, 90)
        assert fees.total == 280

    def test_junior_share_flows_to_covers(self):
        state = make_state(
            senior=0,
            junior=100_000,
            covers=[({"name": "borrower", "risk_yield_multiplier_bps": 20_000}, 50_000)],
        )
        result = PnLWaterfall.from_config(state.config).distribute(state, 10_000, 0, 0, now=0)

        assert result.cover_profits == [5_000]
        assert state.covers[0].asset == 55_000
        assert state.tranche_assets.junior == 105_000


# =============================================================================
# Waterfall: Loss and Recovery
# =============================================================================


class TestWaterfallLoss:
    """Tests for the loss absorption order."""

    def test_covers_absorb_in_order_then_junior(self, two_cover_layers):
        """
        Scenario: A loss of 40,000 against two cover layers.
        Expected: borrower takes 10% (4,000); affiliate takes 50% capped by
        its 20,000 balance; junior absorbs the 16,000 left; senior untouched.
        """
        state = make_state(covers=two_cover_layers)
        result = PnLWaterfall.from_config(state.config).distribute(state, 0, 40_000, 0, now=0)

        assert result.cover_losses == [4_000, 20_000]
        assert result.junior_loss == 16_000
        assert result.senior_loss == 0
        assert [c.asset for c in state.covers] == [6_000, 0]
        assert state.tranche_assets.junior == 234_000
        assert state.tranche_assets.senior == 800_000
        assert state.tranche_losses.junior == 16_000

    def test_loss_beyond_junior_hits_senior(self):
        state = make_state(senior=40_000, junior=10_000)
        result = PnLWaterfall.from_config(state.config).distribute(state, 0, 15_000, 0, now=0)

        assert (result.junior_loss, result.senior_loss) == (10_000, 5_000)
        assert state.tranche_assets.junior == 0
        assert state.tranche_assets.senior == 35_000

    def test_loss_exceeding_pool_value(self):
        state = make_state(senior=1_000, junior=1_000)
        with pytest.raises(InvariantViolationError, match="exceeds total pool value"):
            PnLWaterfall.from_config(state.config).distribute(state, 0, 2_001, 0, now=0)


class TestWaterfallRecovery:
    """Tests for the recovery order."""

    def test_junior_then_covers_in_reverse(self, two_cover_layers):
        """
        Scenario: Recover 30,000 after the 40,000 loss above.
        Expected: Junior's 16,000 is restored first, then the affiliate
        layer (last in list) receives the remaining 14,000; borrower nothing.
        """
        state = make_state(covers=two_cover_layers)
        waterfall = PnLWaterfall.from_config(state.config)
        waterfall.distribute(state, 0, 40_000, 0, now=0)

        result = waterfall.distribute(state, 0, 0, 30_000, now=0)

        assert result.senior_recovery == 0
        assert result.junior_recovery == 16_000
        assert result.cover_recoveries == [0, 14_000]
        assert state.tranche_losses.junior == 0
        assert [c.asset for c in state.covers] == [6_000, 14_000]
        assert [c.covered_loss for c in state.covers] == [4_000, 6_000]

    def test_senior_restored_first(self):
        state = make_state(senior=100_000, junior=0)
        state.tranche_losses.senior = 5_000
        state.tranche_losses.junior = 3_000
        result = PnLWaterfall.from_config(state.config).distribute(state, 0, 0, 6_000, now=0)

        assert (result.senior_recovery, result.junior_recovery) == (5_000, 1_000)
        assert state.tranche_assets.senior == 105_000
        assert state.tranche_assets.junior == 1_000
        assert state.tranche_losses.junior == 2_000

    def test_surplus_recovery_credited_to_junior(self):
        state = make_state()
        result = PnLWaterfall.from_config(state.config).distribute(state, 0, 0, 500, now=0)

        assert result.junior_recovery == 500
        assert state.tranche_assets.junior == 250_500


class TestConservation:
    """Tests that the waterfall moves value only by the reported amounts."""

    @pytest.mark.parametrize(
        "profit,loss,recovery",
        [(12_387, 0, 0), (0, 25_000, 0), (5_000, 30_000, 7_000), (1, 1, 1)],
    )
    def test_total_value_changes_by_net_pnl(self, two_cover_layers, profit, loss, recovery):
        state = make_state(
            covers=two_cover_layers,
            lp={"risk_adjustment_bps": 3_000},
            fees={"protocol_fee_bps": 250},
        )
        before = state.total_value()
        result = PnLWaterfall.from_config(state.config).distribute(state, profit, loss, recovery, now=0)

        assert state.total_value() == before + profit - result.fees.total - loss + recovery
        assert result.absorbed_loss == loss
