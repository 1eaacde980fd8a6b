"""
Portfolio-level roll-ups over a processed trade collection.

Every function takes records in one accounting basis. In cash basis the
records may be exit splits, so anything that counts or sums per trade works
on the deduplicated set.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import List, Sequence, Tuple

from journal_engine.accounting import AccountingEntry, deduplicate, trades_with_accounting_pl
from journal_engine.config import GAP_DOWN_PERCENTAGES
from journal_engine.models import (
    OPEN,
    PARTIAL,
    GapDownAnalysis,
    GapDownScenario,
    HeatShare,
    PortfolioGapDown,
    PortfolioSummary,
    ProcessedTrade,
    TradeStatistics,
)
from journal_engine.metrics import is_risky_position
from journal_engine.utils import SHORT, percentage_of, safe_divide

logger = logging.getLogger(__name__)


def _unique(records: Sequence[ProcessedTrade], use_cash_basis: bool) -> List[ProcessedTrade]:
    return deduplicate(records) if use_cash_basis else list(records)


def _open_records(records: Sequence[ProcessedTrade]) -> List[ProcessedTrade]:
    return [r for r in records if r.status in (OPEN, PARTIAL)]


def _trade_portfolio_size(record: ProcessedTrade, portfolio_size: float, resolver=None) -> float:
    """Monthly size at the trade date when the resolver has one, else portfolio_size."""
    if resolver is None or record.trade.date is None:
        return portfolio_size
    return resolver.size_for_date(record.trade.date, fallback=portfolio_size)


# ---------- Heat ----------

def calculate_trade_open_heat(record: ProcessedTrade, portfolio_size: float, resolver=None) -> float:
    """
    Open risk of one position as % of portfolio.

    Formula:
        open_qty * |avg_entry - stop| / portfolio_size * 100
        stop = TSL if set, else SL

    Edge cases:
        - Closed positions, no stop, or no open qty: 0
        - Stop on the wrong side of entry (at/above for longs, at/below for shorts): 0
    """
    if record.status not in (OPEN, PARTIAL):
        return 0.0
    size = _trade_portfolio_size(record, portfolio_size, resolver)
    if size <= 0 or not math.isfinite(size):
        return 0.0

    m = record.metrics
    entry, qty = m.avg_entry, m.open_qty
    if entry <= 0 or qty <= 0:
        return 0.0

    trade = record.trade
    stop = trade.tsl if trade.tsl > 0 else trade.sl
    if stop <= 0:
        return 0.0

    if trade.direction == SHORT:
        if stop <= entry:
            return 0.0
        risk = (stop - entry) * qty
    else:
        if stop >= entry:
            return 0.0
        risk = (entry - stop) * qty
    return risk / size * 100


def calculate_open_heat(records: Sequence[ProcessedTrade], portfolio_size: float,
                        resolver=None, use_cash_basis: bool = False) -> float:
    return sum(
        calculate_trade_open_heat(r, portfolio_size, resolver)
        for r in _open_records(_unique(records, use_cash_basis))
    )


def calculate_risk_concentration(records: Sequence[ProcessedTrade], portfolio_size: float,
                                 resolver=None, use_cash_basis: bool = False) -> Tuple[HeatShare, ...]:
    """Each position's share of total open heat, largest first."""
    heats = [
        (r, calculate_trade_open_heat(r, portfolio_size, resolver))
        for r in _open_records(_unique(records, use_cash_basis))
    ]
    heats = [(r, h) for r, h in heats if h > 0]
    total = sum(h for _, h in heats)
    shares = [
        HeatShare(trade_id=r.original_id, name=r.trade.name, heat=h, share_pct=percentage_of(h, total))
        for r, h in heats
    ]
    return tuple(sorted(shares, key=lambda s: s.heat, reverse=True))


# ---------- Exposure ----------

def invested_amount(record: ProcessedTrade) -> float:
    """Partial: open qty at avg entry. Open: full position size. Otherwise 0."""
    if record.status == PARTIAL:
        return record.metrics.open_qty * record.metrics.avg_entry
    if record.status == OPEN:
        return record.metrics.position_size
    return 0.0


def calculate_total_invested(records: Sequence[ProcessedTrade], use_cash_basis: bool = False) -> float:
    return sum(invested_amount(r) for r in _unique(records, use_cash_basis))


def calculate_percent_invested(records: Sequence[ProcessedTrade], portfolio_size: float,
                               use_cash_basis: bool = False) -> float:
    """Invested amount vs current portfolio size. Can exceed 100 under leverage."""
    return percentage_of(calculate_total_invested(records, use_cash_basis), portfolio_size)


def calculate_cash_percentage(records: Sequence[ProcessedTrade], portfolio_size: float,
                              resolver=None, use_cash_basis: bool = False) -> float:
    """100 minus the allocation of open positions, floored at 0."""
    total_allocation = 0.0
    for r in _open_records(_unique(records, use_cash_basis)):
        if r.status == PARTIAL:
            total_allocation += percentage_of(invested_amount(r), portfolio_size)
        else:
            size = _trade_portfolio_size(r, portfolio_size, resolver)
            total_allocation += percentage_of(r.metrics.position_size, size)
    return max(0.0, 100 - total_allocation)


# ---------- P&L ----------

def calculate_total_unrealized_pl(records: Sequence[ProcessedTrade], use_cash_basis: bool = False) -> float:
    return sum(r.metrics.unrealized_pl for r in _open_records(_unique(records, use_cash_basis)))


def calculate_total_realized_pl(records: Sequence[ProcessedTrade], use_cash_basis: bool = False) -> float:
    return sum(e.pl for e in trades_with_accounting_pl(records, use_cash_basis))


def calculate_win_rate(records: Sequence[ProcessedTrade], use_cash_basis: bool = False) -> float:
    """
    % of realized trades with strictly positive accounting P&L.

    Cash basis groups exit legs by original trade first, so a trade with three
    winning exits counts once.
    """
    entries = trades_with_accounting_pl(records, use_cash_basis)
    if not entries:
        return 0.0
    wins = sum(1 for e in entries if e.pl > 0)
    return wins / len(entries) * 100


def calculate_total_trades(records: Sequence[ProcessedTrade], use_cash_basis: bool = False) -> int:
    return len(_unique(records, use_cash_basis))


def calculate_open_positions(records: Sequence[ProcessedTrade], use_cash_basis: bool = False) -> int:
    return len(_open_records(_unique(records, use_cash_basis)))


# ---------- Gap down ----------

def _position_risk(entry: float, stop: float, qty: float) -> float:
    return abs((stop - entry) * qty)


def _gap_down_price(entry: float, gap_pct: float, direction: str) -> float:
    if direction == SHORT:
        return entry * (1 + gap_pct / 100)
    return entry * (1 - gap_pct / 100)


def _risky_open_records(records: Sequence[ProcessedTrade], use_cash_basis: bool) -> List[ProcessedTrade]:
    return [
        r for r in _open_records(_unique(records, use_cash_basis))
        if r.metrics.open_qty > 0 and is_risky_position(r.trade)
    ]


def analyze_trade_gap_down(record: ProcessedTrade, gap_pct: float) -> GapDownAnalysis:
    """Stop-loss risk vs the loss from an adverse gap of gap_pct through the stop."""
    m, trade = record.metrics, record.trade
    normal = _position_risk(m.avg_entry, trade.sl, m.open_qty)
    gap_price = _gap_down_price(m.avg_entry, gap_pct, trade.direction)
    gap = _position_risk(m.avg_entry, gap_price, m.open_qty)
    return GapDownAnalysis(
        trade_id=record.original_id,
        name=trade.name or "Unknown",
        normal_risk=normal,
        gap_down_risk=gap,
        additional_risk=gap - normal,
        risk_increase_factor=safe_divide(gap, normal, fallback=1.0),
    )


def calculate_gap_down_analysis(records: Sequence[ProcessedTrade], gap_pct: float,
                                portfolio_size: float, use_cash_basis: bool = False) -> PortfolioGapDown:
    analyses = tuple(
        analyze_trade_gap_down(r, gap_pct) for r in _risky_open_records(records, use_cash_basis)
    )
    total_normal = sum(a.normal_risk for a in analyses)
    total_gap = sum(a.gap_down_risk for a in analyses)
    normal_impact = percentage_of(total_normal, portfolio_size)
    gap_impact = percentage_of(total_gap, portfolio_size)
    return PortfolioGapDown(
        gap_percentage=gap_pct,
        total_normal_risk=total_normal,
        total_gap_down_risk=total_gap,
        total_additional_risk=total_gap - total_normal,
        risk_increase_factor=safe_divide(total_gap, total_normal, fallback=1.0),
        normal_pf_impact=normal_impact,
        gap_down_pf_impact=gap_impact,
        additional_pf_impact=gap_impact - normal_impact,
        trades=analyses,
    )


def gap_down_scenarios(records: Sequence[ProcessedTrade], use_cash_basis: bool = False,
                       percentages: Sequence[float] = GAP_DOWN_PERCENTAGES) -> Tuple[GapDownScenario, ...]:
    risky = _risky_open_records(records, use_cash_basis)
    out = []
    for pct in percentages:
        analyses = [analyze_trade_gap_down(r, pct) for r in risky]
        total_normal = sum(a.normal_risk for a in analyses)
        total_gap = sum(a.gap_down_risk for a in analyses)
        out.append(GapDownScenario(
            percentage=pct,
            total_risk=total_gap,
            risk_increase_factor=safe_divide(total_gap, total_normal, fallback=1.0),
        ))
    return tuple(out)


# ---------- Statistics ----------

def _date_sort_key(entry: AccountingEntry):
    return (entry.date is None, entry.date or date.min)


def calculate_streaks(entries: Sequence[AccountingEntry]) -> Tuple[int, int]:
    """Longest runs of winners and losers by date; flat trades break neither."""
    max_win = max_loss = cur_win = cur_loss = 0
    for e in sorted(entries, key=_date_sort_key):
        if e.pl > 0:
            cur_win += 1
            cur_loss = 0
            max_win = max(max_win, cur_win)
        elif e.pl < 0:
            cur_loss += 1
            cur_win = 0
            max_loss = max(max_loss, cur_loss)
    return max_win, max_loss


def calculate_trade_statistics(records: Sequence[ProcessedTrade], use_cash_basis: bool = False) -> TradeStatistics:
    """
    Expectancy = avg_win * win_rate - avg_loss * loss_rate
    Profit factor = gross profit / gross loss (inf with profits and no losses)
    """
    entries = trades_with_accounting_pl(records, use_cash_basis)
    if not entries:
        return TradeStatistics()

    wins = [e.pl for e in entries if e.pl > 0]
    losses = [abs(e.pl) for e in entries if e.pl < 0]
    avg_win = sum(wins) / len(wins) if wins else 0.0
    avg_loss = sum(losses) / len(losses) if losses else 0.0
    win_rate = len(wins) / len(entries)
    loss_rate = len(losses) / len(entries)

    gross_profit, gross_loss = sum(wins), sum(losses)
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = math.inf if gross_profit > 0 else 0.0

    max_win, max_loss = calculate_streaks(entries)
    return TradeStatistics(
        avg_win=avg_win,
        avg_loss=avg_loss,
        expectancy=avg_win * win_rate - avg_loss * loss_rate,
        profit_factor=profit_factor,
        max_win_streak=max_win,
        max_loss_streak=max_loss,
    )


# ---------- Summary ----------

def aggregate(records: Sequence[ProcessedTrade], portfolio_size: float, resolver=None,
              use_cash_basis: bool = False) -> PortfolioSummary:
    """
    Roll a trade collection into a PortfolioSummary.

    Args:
        records: processed trades in one basis (cash-view splits allowed).
        portfolio_size: current portfolio size; invested % and impact use it.
        resolver: optional monthly size resolver for per-trade heat/allocation.
        use_cash_basis: basis of ``records``.
    """
    records = list(records)
    unrealized = calculate_total_unrealized_pl(records, use_cash_basis)
    realized = calculate_total_realized_pl(records, use_cash_basis)
    realized_impact = percentage_of(realized, portfolio_size)
    unrealized_impact = percentage_of(unrealized, portfolio_size)

    summary = PortfolioSummary(
        use_cash_basis=use_cash_basis,
        portfolio_size=portfolio_size,
        total_open_heat=calculate_open_heat(records, portfolio_size, resolver, use_cash_basis),
        total_invested=calculate_total_invested(records, use_cash_basis),
        percent_invested=calculate_percent_invested(records, portfolio_size, use_cash_basis),
        cash_percentage=calculate_cash_percentage(records, portfolio_size, resolver, use_cash_basis),
        total_unrealized_pl=unrealized,
        total_realized_pl=realized,
        net_pl=realized + unrealized,
        realized_pf_impact=realized_impact,
        unrealized_pf_impact=unrealized_impact,
        net_pf_impact=realized_impact + unrealized_impact,
        win_rate=calculate_win_rate(records, use_cash_basis),
        total_trades=calculate_total_trades(records, use_cash_basis),
        open_positions=calculate_open_positions(records, use_cash_basis),
        risk_concentration=calculate_risk_concentration(records, portfolio_size, resolver, use_cash_basis),
        gap_down_scenarios=gap_down_scenarios(records, use_cash_basis),
        statistics=calculate_trade_statistics(records, use_cash_basis),
    )
    logger.debug(
        "Aggregated %d records (%s): realized=%.2f unrealized=%.2f",
        len(records), "cash" if use_cash_basis else "accrual", realized, unrealized,
    )
    return summary
