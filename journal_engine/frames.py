"""pandas views of processed trades and portfolio summaries."""

from __future__ import annotations

import math
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from journal_engine.models import PortfolioSummary, ProcessedTrade

COLUMNS = [
    'Trade ID', 'Trade No.', 'Date', 'Name', 'Buy/Sell', 'Position Status',
    'Entry', 'Initial Qty', 'Pyramid 1 Price', 'Pyramid 1 Qty', 'Pyramid 2 Price', 'Pyramid 2 Qty',
    'Avg Entry', 'Position Size', 'Allocation %', 'SL', 'TSL', 'SL %', 'CMP',
    'Exit 1 Price', 'Exit 1 Qty', 'Exit 2 Price', 'Exit 2 Qty', 'Exit 3 Price', 'Exit 3 Qty',
    'Open Qty', 'Exited Qty', 'Avg Exit Price', 'Stock Move %', 'Reward:Risk', 'Effective R:R',
    'Holding Days', 'Realised Amount', 'P/L Rs', 'Unrealised P/L', 'PF Impact %', 'Cumm PF %',
    'Cash Exit Date', 'Cash Exit Qty',
]


def _finite_or_nan(value: float) -> float:
    """inf ratios (risk-free lots) are shown as NaN in tables."""
    return value if math.isfinite(value) else np.nan


def processed_to_row(record: ProcessedTrade) -> dict:
    t, m = record.trade, record.metrics
    cash = record.cash_exit
    return {
        'Trade ID': record.id,
        'Trade No.': t.trade_no,
        'Date': t.date,
        'Name': t.name,
        'Buy/Sell': 'Buy' if t.is_long else 'Sell',
        'Position Status': m.position_status,
        'Entry': t.entry_price,
        'Initial Qty': t.initial_qty,
        'Pyramid 1 Price': t.pyramid1_price,
        'Pyramid 1 Qty': t.pyramid1_qty,
        'Pyramid 2 Price': t.pyramid2_price,
        'Pyramid 2 Qty': t.pyramid2_qty,
        'Avg Entry': m.avg_entry,
        'Position Size': m.position_size,
        'Allocation %': m.allocation,
        'SL': t.sl,
        'TSL': t.tsl,
        'SL %': m.stop_loss_pct,
        'CMP': t.cmp,
        'Exit 1 Price': t.exit1_price,
        'Exit 1 Qty': t.exit1_qty,
        'Exit 2 Price': t.exit2_price,
        'Exit 2 Qty': t.exit2_qty,
        'Exit 3 Price': t.exit3_price,
        'Exit 3 Qty': t.exit3_qty,
        'Open Qty': m.open_qty,
        'Exited Qty': m.exited_qty,
        'Avg Exit Price': m.avg_exit_price,
        'Stock Move %': m.stock_move,
        'Reward:Risk': _finite_or_nan(m.reward_risk),
        'Effective R:R': _finite_or_nan(m.effective_reward_risk),
        'Holding Days': m.holding_days,
        'Realised Amount': m.realized_amount,
        'P/L Rs': m.realized_pl,
        'Unrealised P/L': m.unrealized_pl,
        'PF Impact %': m.pf_impact,
        'Cumm PF %': m.cumulative_pf_impact,
        'Cash Exit Date': cash.date if cash else None,
        'Cash Exit Qty': cash.qty if cash else np.nan,
    }


def processed_to_df(records: Iterable[ProcessedTrade], columns: Optional[List[str]] = None) -> pd.DataFrame:
    """One row per record, in input order, with a fixed column order."""
    columns = columns or COLUMNS
    rows = [processed_to_row(r) for r in records]
    return pd.DataFrame(rows, columns=columns)


def summary_to_df(summary: PortfolioSummary) -> pd.DataFrame:
    """Two-column Metric / Value table."""
    items = list(summary.as_dict().items())
    return pd.DataFrame(items, columns=['Metric', 'Value'])


def cumulative_pl_to_df(points: List[dict]) -> pd.DataFrame:
    """Frame for accounting.calculate_cumulative_pl output."""
    df = pd.DataFrame(points, columns=['date', 'pl', 'cumulative_pl'])
    return df.rename(columns={'date': 'Date', 'pl': 'P/L', 'cumulative_pl': 'Cumulative P/L'})
