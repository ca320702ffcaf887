"""
Reporting and Audit Trail Tests
===============================

Tests for the settlement report DataFrame built from pool history and for
the per-settlement audit traces.
"""

import json

import pandas as pd
import pytest

from lendpool_platform.engine.audit_trail import AuditTrail, SettlementStepTrace
from lendpool_platform.engine.errors import InvariantViolationError
from lendpool_platform.engine.reporting import SettlementReportGenerator
from lendpool_platform.engine.tranche_vault import Tranche


def close(pool):
    return pool.close_current_epoch(now=pool.get_current_epoch().end_time)


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def settled_pool(make_pool):
    """
    Pool with a borrower cover, settled twice.

    Epoch 1: profit 12,387 under an 80% risk adjustment, 1% protocol fee.
    Epoch 2: loss 5,000 and sam redeems 10,000 senior shares.
    """
    pool, credit = make_pool(
        lp={"risk_adjustment_bps": 8_000},
        fees={"protocol_fee_bps": 100},
        covers=[{"name": "borrower", "cover_rate_per_loss_bps": 2_000, "cover_cap_per_loss": 10_000}],
        audit_trail=AuditTrail(),
    )
    pool.add_cover_assets(0, 20_000)

    credit.schedule(profit=12_387)
    pool.add_liquidity(12_387)
    close(pool)

    credit.schedule(loss=5_000)
    pool.request_redemption(Tranche.SENIOR, "sam", 10_000, now=pool.get_current_epoch().end_time - 1)
    close(pool)
    return pool


# =============================================================================
# Settlement Report
# =============================================================================


class TestSettlementReport:
    """Tests for the epoch-by-epoch report."""

    def test_one_row_per_epoch(self, settled_pool):
        df = SettlementReportGenerator(settled_pool.state.history, cover_names=["borrower"]).generate_settlement_report()

        assert list(df["Epoch"]) == [1, 2]
        for column in (
            "Senior.Assets",
            "Junior.Assets",
            "Senior.Price",
            "Cover.borrower.Assets",
            "Fees",
            "Senior.Redeemed",
            "Unprocessed_Shares",
            "Liquidity.Reserved",
            "Net.PnL",
            "Total.Redeemed",
        ):
            assert column in df.columns

    def test_values(self, settled_pool):
        df = SettlementReportGenerator(settled_pool.state.history, cover_names=["borrower"]).generate_settlement_report()
        first, second = df.iloc[0], df.iloc[1]

        assert first["Fees"] == 123
        assert first["Net.PnL"] == 12_387 - 123
        assert second["Loss"] == 5_000
        assert second["Cover.borrower.Assets"] == first["Cover.borrower.Assets"] - 1_000
        assert second["Senior.Redeemed"] > 0
        assert second["Total.Redeemed"] == second["Senior.Redeemed"] + second["Junior.Redeemed"]
        assert second["Liquidity.Reserved"] == second["Senior.Redeemed"]
        assert first["Senior.Asset_Change"] == 0

    def test_cover_columns_default_to_index(self, settled_pool):
        df = SettlementReportGenerator(settled_pool.state.history).generate_settlement_report()
        assert "Cover.0.Assets" in df.columns

    def test_empty_history(self):
        assert SettlementReportGenerator([]).generate_settlement_report().empty
        assert SettlementReportGenerator([]).summarize() == {}

    def test_summarize(self, settled_pool):
        totals = SettlementReportGenerator(settled_pool.state.history).summarize()

        assert totals["epochs"] == 2
        assert totals["total_profit"] == 12_387
        assert totals["total_loss"] == 5_000
        assert totals["final_senior_assets"] == settled_pool.state.tranche_assets.senior

    def test_save_to_csv(self, settled_pool, tmp_path):
        reporter = SettlementReportGenerator(settled_pool.state.history)
        df = reporter.generate_settlement_report()
        path = tmp_path / "settlements.csv"

        reporter.save_to_csv(df, str(path))

        loaded = pd.read_csv(path)
        assert len(loaded) == 2
        assert list(loaded["Epoch"]) == [1, 2]


# =============================================================================
# Audit Trail
# =============================================================================


class TestAuditTrail:
    """Tests for settlement traces."""

    def test_detailed_trace_steps(self, settled_pool):
        trail = settled_pool.audit_trail
        first = trail.get_trace(1)
        second = trail.get_trace(2)

        assert [s.step_id for s in first.steps] == [
            "pnl",
            "waterfall.profit",
            "redemption.senior.all",
            "redemption.junior.all",
        ]
        assert first.profit == 12_387
        assert second.steps[1].step_id == "waterfall.loss"
        assert second.total_redeemed == 10_023
        assert first.final_balances["senior_assets"] == second.initial_balances["senior_assets"]

    def test_summary_text(self, settled_pool):
        summary = settled_pool.audit_trail.get_epoch_summary(1)

        assert "Epoch 1 Settlement" in summary
        assert "Profit: 12,387" in summary
        assert settled_pool.audit_trail.get_epoch_summary(99) == "Epoch 99 not found"

    def test_export_to_json(self, settled_pool, tmp_path):
        path = tmp_path / "audit.json"
        settled_pool.audit_trail.export_to_json(path)

        data = json.loads(path.read_text())
        assert [e["epoch_id"] for e in data["epochs"]] == [1, 2]
        assert data["metadata"]["level"] == "detailed"

    def test_export_missing_epoch(self, settled_pool, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            settled_pool.audit_trail.export_epoch_to_json(99, tmp_path / "epoch.json")

    def test_summary_level_drops_steps(self, make_pool):
        pool, _ = make_pool(audit_trail=AuditTrail(level="summary"))
        close(pool)

        assert pool.audit_trail.get_trace(1).steps == []

    def test_max_epochs(self, make_pool):
        pool, _ = make_pool(audit_trail=AuditTrail(max_epochs=1))
        close(pool)
        close(pool)

        assert [t.epoch_id for t in pool.audit_trail.epochs] == [2]

    def test_failed_settlement_leaves_no_trace(self, make_pool):
        pool, credit = make_pool(audit_trail=AuditTrail())
        credit.schedule(loss=10_000_000)
        with pytest.raises(InvariantViolationError):
            close(pool)

        assert pool.audit_trail.epochs == []
        assert pool.audit_trail.current_trace is None

    def test_disabled_trail(self, tmp_path):
        trail = AuditTrail(enabled=False)
        assert trail.start_epoch(1) is None
        trail.record_step(SettlementStepTrace(step_id="pnl", epoch_id=1, stage="pnl"))
        trail.end_epoch()

        path = tmp_path / "audit.json"
        trail.export_to_json(path)
        assert not path.exists()

    def test_record_step(self):
        trail = AuditTrail()
        trail.start_epoch(1, {"senior_assets": 10})
        trail.record_step(SettlementStepTrace(step_id="pnl", epoch_id=1, stage="pnl"))
        trail.end_epoch({"senior_assets": 12})

        trace = trail.get_trace(1)
        assert [s.step_id for s in trace.steps] == ["pnl"]
        assert trace.to_dict()["final_balances"] == {"senior_assets": 12}
