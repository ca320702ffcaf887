"""
Pool Loader Tests
=================

Tests for loading pool definitions from JSON:
- Schema validation of structure and field ranges
- Hydration into the typed configuration
- Semantic checks across fields
- Building funded pools from a definition
"""

import copy
import json
from typing import Any, Dict

import pytest

from lendpool_platform.engine.credit import ScriptedCreditSource
from lendpool_platform.engine.loader import (
    LogicIntegrityError,
    PoolLoader,
    PoolLoadError,
    SchemaViolationError,
)
from lendpool_platform.engine.pool_config import TranchesPolicyType


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def pool_json() -> Dict[str, Any]:
    """Risk-adjusted pool with one funded borrower cover layer."""
    return {
        "meta": {"pool_id": "POOL_A", "name": "Receivables Pool A", "version": "1.0"},
        "lp_config": {
            "max_senior_junior_ratio": 4,
            "tranches_policy": "RISK_ADJUSTED",
            "risk_adjustment_bps": 8_000,
            "flex_call_window_epochs": 2,
        },
        "fees": {"protocol_fee_bps": 100, "pool_owner_reward_bps": 50},
        "first_loss_covers": [
            {
                "name": "borrower",
                "cover_rate_per_loss_bps": 1_000,
                "cover_cap_per_loss": 50_000,
                "risk_yield_multiplier_bps": 20_000,
            }
        ],
        "settings": {"epoch_period_seconds": 86_400, "controller": "pool_manager"},
        "initial_cover_assets": {"borrower": 25_000},
    }


@pytest.fixture
def loader() -> PoolLoader:
    return PoolLoader()


# =============================================================================
# Loading
# =============================================================================


class TestValidDefinitions:
    """Tests for definitions that load."""

    def test_hydrates_configuration(self, loader, pool_json):
        definition = loader.load_from_json(pool_json)
        config = definition.config

        assert definition.pool_id == "POOL_A"
        assert definition.meta["name"] == "Receivables Pool A"
        assert config.lp_config.tranches_policy is TranchesPolicyType.RISK_ADJUSTED
        assert config.lp_config.flex_call_window_epochs == 2
        assert config.fees.total_bps == 150
        assert config.first_loss_covers[0].cover_cap_per_loss == 50_000
        assert config.settings.controller == "pool_manager"

    def test_minimal_definition_uses_defaults(self, loader):
        definition = loader.load_from_json({"meta": {"pool_id": "MIN"}, "lp_config": {}})

        assert definition.config.lp_config.max_senior_junior_ratio == 4
        assert definition.config.first_loss_covers == []
        assert definition.initial_cover_assets == {}

    def test_create_pool_funds_covers(self, loader, pool_json):
        definition = loader.load_from_json(pool_json)
        pool = definition.create_pool(ScriptedCreditSource())

        assert pool.state.covers[0].asset == 25_000
        assert pool.open_initial_epoch(0, "pool_manager").end_time == 86_400

    def test_pools_from_one_definition_are_independent(self, loader, pool_json):
        definition = loader.load_from_json(pool_json)
        first = definition.create_pool(ScriptedCreditSource())
        second = definition.create_pool(ScriptedCreditSource())

        first.add_cover_assets(0, 1_000)
        assert second.state.covers[0].asset == 25_000

    def test_load_from_file(self, loader, pool_json, tmp_path):
        path = tmp_path / "pool.json"
        path.write_text(json.dumps(pool_json))

        assert loader.load_from_file(path).pool_id == "POOL_A"


class TestInvalidDefinitions:
    """Tests for definitions the loader rejects."""

    def test_missing_meta(self, loader, pool_json):
        del pool_json["meta"]
        with pytest.raises(SchemaViolationError, match="meta"):
            loader.load_from_json(pool_json)

    def test_unknown_field(self, loader, pool_json):
        pool_json["lp_config"]["leverage"] = 10
        with pytest.raises(SchemaViolationError):
            loader.load_from_json(pool_json)

    def test_bps_out_of_range(self, loader, pool_json):
        pool_json["lp_config"]["risk_adjustment_bps"] = 10_001
        with pytest.raises(SchemaViolationError):
            loader.load_from_json(pool_json)

    def test_unknown_policy(self, loader, pool_json):
        pool_json["lp_config"]["tranches_policy"] = "WATERFALL"
        with pytest.raises(SchemaViolationError):
            loader.load_from_json(pool_json)

    def test_combined_fees_above_100_percent(self, loader, pool_json):
        """
        Scenario: Each fee is a valid rate on its own but together they
        exceed 10,000 bps.
        Expected: Hydration rejects the fee structure.
        """
        pool_json["fees"] = {"protocol_fee_bps": 6_000, "ea_reward_bps": 6_000}
        with pytest.raises(SchemaViolationError, match="Invalid field value"):
            loader.load_from_json(pool_json)

    def test_duplicate_cover_names(self, loader, pool_json):
        pool_json["first_loss_covers"].append(copy.deepcopy(pool_json["first_loss_covers"][0]))
        with pytest.raises(LogicIntegrityError, match="Duplicate first-loss cover name 'borrower'"):
            loader.load_from_json(pool_json)

    def test_initial_assets_for_unknown_cover(self, loader, pool_json):
        pool_json["initial_cover_assets"]["affiliate"] = 1_000
        with pytest.raises(LogicIntegrityError, match="unknown cover 'affiliate'"):
            loader.load_from_json(pool_json)

    def test_all_errors_share_base_class(self, loader):
        with pytest.raises(PoolLoadError):
            loader.load_from_json({"lp_config": {}})
