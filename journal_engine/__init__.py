"""Trade accounting and portfolio analytics for a trade journal."""

from journal_engine.accounting import (
    accounting_date,
    accounting_pl,
    calculate_cumulative_pl,
    calculate_monthly_pl,
    deduplicate,
    group_trades_by_month,
    to_accrual_view,
    to_cash_view,
    trades_with_accounting_pl,
)
from journal_engine.aggregation import aggregate, calculate_gap_down_analysis
from journal_engine.cumulative import apply_cumulative, compare_chronological, sort_chronologically
from journal_engine.engine import PortfolioSizeResolver, compute_metrics_safe, process_trades, summarize
from journal_engine.lots import entry_lots, exit_lots, match_fifo
from journal_engine.metrics import apply_edit, compute_metrics, is_risky_position
from journal_engine.models import (
    CLOSED,
    OPEN,
    PARTIAL,
    CashBasisExit,
    Lot,
    PortfolioSummary,
    ProcessedTrade,
    Trade,
    TradeKey,
    TradeMetrics,
    trade_from_record,
)

__version__ = "0.1.0"
