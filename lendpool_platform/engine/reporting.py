"""
Settlement Reporting
====================

Converts the pool's settlement history into analyst-friendly tables. The
:class:`SettlementReportGenerator` takes the snapshot list kept in
:attr:`PoolState.history` and produces one row per closed epoch.

The output DataFrame includes:

- Epoch id and settlement timestamp
- Tranche assets and share prices
- First-loss cover balances
- Reported profit, loss, recovery and fees
- Redemptions paid per tranche and shares still queued
- Liquidity and reservations

Example
-------
>>> from lendpool_platform.engine.reporting import SettlementReportGenerator
>>> reporter = SettlementReportGenerator(pool.state.history, cover_names=["borrower"])
>>> df = reporter.generate_settlement_report()
>>> print(df[["Epoch", "Senior.Assets", "Senior.Redeemed"]].head())

See Also
--------
state.Snapshot : Point-in-time records used as input.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .numeric import PRICE_DECIMALS_FACTOR
from .state import Snapshot

logger = logging.getLogger("LENDPOOL.Reporting")


class SettlementReportGenerator:
    """
    Build tabular settlement reports from pool snapshots.

    Parameters
    ----------
    history : list of Snapshot
        Chronological snapshots, one per settled epoch.
    cover_names : sequence of str, optional
        Labels for the cover columns; ``Cover.<index>`` is used otherwise.

    Notes
    -----
    Derived columns computed from stock changes between epochs:

    - ``<Tranche>.Asset_Change``: assets(T) - assets(T-1)
    - ``Net.PnL``: profit - fees - loss + recovery
    """

    def __init__(self, history: List[Snapshot], cover_names: Optional[Sequence[str]] = None) -> None:
        self.history = history
        self.cover_names = list(cover_names) if cover_names else None

    def _cover_label(self, idx: int) -> str:
        if self.cover_names and idx < len(self.cover_names):
            return f"Cover.{self.cover_names[idx]}"
        return f"Cover.{idx}"

    def generate_settlement_report(self) -> pd.DataFrame:
        """
        Convert snapshots into an epoch-by-epoch settlement report.

        Returns
        -------
        pd.DataFrame
            One row per settled epoch. Prices are converted from 1e18 fixed
            point to floats in the ``*.Price`` columns; every other amount
            keeps its integer base-unit value.

        Notes
        -----
        Returns an empty DataFrame if history is empty.
        """
        if not self.history:
            logger.warning("No history found. Returning empty DataFrame.")
            return pd.DataFrame()

        rows: List[Dict[str, Any]] = []
        for snap in self.history:
            row: Dict[str, Any] = {
                "Epoch": snap.epoch_id,
                "Settled_At": snap.settled_at,
                "Senior.Assets": snap.senior_assets,
                "Junior.Assets": snap.junior_assets,
                "Senior.Price": snap.senior_price / PRICE_DECIMALS_FACTOR,
                "Junior.Price": snap.junior_price / PRICE_DECIMALS_FACTOR,
            }
            for idx, amount in enumerate(snap.cover_assets):
                row[f"{self._cover_label(idx)}.Assets"] = amount

            row.update(
                {
                    "Profit": snap.profit,
                    "Loss": snap.loss,
                    "Recovery": snap.recovery,
                    "Fees": snap.fees,
                    "Senior.Redeemed": snap.senior_redeemed,
                    "Junior.Redeemed": snap.junior_redeemed,
                    "Unprocessed_Shares": snap.unprocessed_shares,
                    "Liquidity.Total": snap.total_liquidity,
                    "Liquidity.Reserved": snap.reserved_liquidity,
                }
            )
            rows.append(row)

        df = pd.DataFrame(rows)

        # Derived flows from stocks
        for tranche in ("Senior", "Junior"):
            df[f"{tranche}.Asset_Change"] = df[f"{tranche}.Assets"].diff().fillna(0)
        df["Net.PnL"] = df["Profit"] - df["Fees"] - df["Loss"] + df["Recovery"]
        df["Total.Redeemed"] = df["Senior.Redeemed"] + df["Junior.Redeemed"]

        return df

    def summarize(self, df: Optional[pd.DataFrame] = None) -> Dict[str, Any]:
        """
        Totals across the whole history.

        Parameters
        ----------
        df : pd.DataFrame, optional
            A report from :meth:`generate_settlement_report`; generated if
            omitted.
        """
        if df is None:
            df = self.generate_settlement_report()
        if df.empty:
            return {}
        return {
            "epochs": int(len(df)),
            "total_profit": int(df["Profit"].sum()),
            "total_loss": int(df["Loss"].sum()),
            "total_recovery": int(df["Recovery"].sum()),
            "total_fees": int(df["Fees"].sum()),
            "total_redeemed": int(df["Total.Redeemed"].sum()),
            "final_senior_assets": int(df["Senior.Assets"].iloc[-1]),
            "final_junior_assets": int(df["Junior.Assets"].iloc[-1]),
        }

    def save_to_csv(self, df: pd.DataFrame, filename: str) -> None:
        """
        Persist a settlement report to disk as CSV.

        Parameters
        ----------
        df : pd.DataFrame
            Report DataFrame to save.
        filename : str
            Output file path.
        """
        try:
            df.to_csv(filename, index=False)
            logger.info(f"Report saved to {filename}")
        except OSError as e:
            logger.error(f"Failed to save CSV: {e}")
            raise
