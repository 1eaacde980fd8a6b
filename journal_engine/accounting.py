"""
Accrual vs cash basis views of a processed trade collection.

Accrual attributes a trade's P&L to its initiation date. Cash attributes each
exit's share of P&L (FIFO-matched) to that exit's date, so a trade with N
exits becomes N dated records keyed by TradeKey(original_id, exit_ordinal).
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from journal_engine.lots import exit_lots, match_trade
from journal_engine.models import (
    OPEN,
    CashBasisExit,
    ProcessedTrade,
    Trade,
    TradeKey,
)
from journal_engine.utils import days_between, month_key, month_label, normalize_month_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountingEntry:
    """One original trade's realized result under a given basis."""
    record: ProcessedTrade
    pl: float
    date: Optional[date]
    holding_days: int


# ---------- Dates ----------

def latest_exit_date(trade: Trade) -> Optional[date]:
    dates = [lot.date for lot in exit_lots(trade) if lot.date is not None]
    return max(dates) if dates else None


def cash_holding_days(trade: Trade) -> int:
    """Entry date through the latest exit date; 0 when either is missing."""
    last = latest_exit_date(trade)
    if trade.date is None or last is None:
        return 0
    return days_between(trade.date, last)


def accounting_date(record: ProcessedTrade, use_cash_basis: bool = False) -> Optional[date]:
    """Date a record's P&L belongs to under the chosen basis."""
    if not use_cash_basis:
        return record.trade.date
    if record.cash_exit is not None:
        return record.cash_exit.date
    return latest_exit_date(record.trade) or record.trade.date


def cash_basis_portfolio_size(trade: Trade, resolver) -> float:
    """Portfolio size for the month of the latest exit, else the trade month."""
    return resolver.size_for_date(latest_exit_date(trade) or trade.date)


# ---------- Views ----------

def to_accrual_view(records: Iterable[ProcessedTrade], realized_only: bool = False) -> List[ProcessedTrade]:
    """Identity view; with realized_only, Open positions are dropped."""
    out = list(records)
    if realized_only:
        out = [r for r in out if r.status != OPEN]
    return out


def expand_cash_exits(record: ProcessedTrade) -> List[ProcessedTrade]:
    """
    Split one Closed/Partial record into one record per matched exit.

    Each split carries the quantity actually matched for that exit, so split
    quantities always sum to the trade's exited quantity. Open trades and
    trades with nothing matched come back unexpanded.
    """
    if record.status == OPEN or record.key.is_split:
        return [record]

    trade = record.trade
    match = match_trade(trade)
    splits: List[ProcessedTrade] = []
    for lot in exit_lots(trade):
        qty = sum(s.qty for s in match.slices_for_exit(lot.ordinal))
        if qty <= 0:
            continue
        cash_exit = CashBasisExit(
            date=lot.date or trade.date,
            qty=qty,
            price=lot.price,
            ordinal=lot.ordinal,
        )
        splits.append(replace(
            record,
            key=TradeKey(record.original_id, lot.ordinal),
            cash_exit=cash_exit,
        ))
    return splits or [record]


def to_cash_view(records: Iterable[ProcessedTrade]) -> List[ProcessedTrade]:
    out: List[ProcessedTrade] = []
    for record in records:
        out.extend(expand_cash_exits(record))
    return out


def deduplicate(records: Iterable[ProcessedTrade]) -> List[ProcessedTrade]:
    """
    One record per original id, first occurrence wins, in first-seen order.

    Split records are restored to the unexpanded key with no cash exit.
    """
    seen: Dict[str, ProcessedTrade] = OrderedDict()
    for record in records:
        if record.original_id in seen:
            continue
        if record.key.is_split:
            record = replace(record, key=TradeKey(record.original_id), cash_exit=None)
        seen[record.original_id] = record
    return list(seen.values())


# ---------- P&L ----------

def accounting_pl(record: ProcessedTrade, use_cash_basis: bool = False) -> float:
    """
    Realized P&L of a record under the chosen basis.

    Accrual: the whole trade's FIFO realized P&L.
    Cash: the FIFO slices of the record's own exit, or all exits when the
    record is not expanded.
    """
    if use_cash_basis and record.cash_exit is not None:
        return match_trade(record.trade).realized_pl_for_exit(record.cash_exit.ordinal)
    return record.metrics.realized_pl


def trades_with_accounting_pl(records: Sequence[ProcessedTrade],
                              use_cash_basis: bool = False) -> List[AccountingEntry]:
    """
    Realized results per original trade, Open positions excluded.

    Cash basis sums a trade's exit splits (each ordinal once) and dates the
    result at the latest exit, with holding days running to that exit.
    """
    groups: Dict[str, List[ProcessedTrade]] = OrderedDict()
    for record in records:
        if record.status == OPEN:
            continue
        groups.setdefault(record.original_id, []).append(record)

    out: List[AccountingEntry] = []
    for original_id, group in groups.items():
        representative = group[0]
        if not use_cash_basis:
            out.append(AccountingEntry(
                record=representative,
                pl=representative.metrics.realized_pl,
                date=representative.trade.date,
                holding_days=representative.metrics.holding_days,
            ))
            continue

        splits = {r.cash_exit.ordinal: r for r in group if r.cash_exit is not None}
        if splits:
            pl = sum(accounting_pl(r, True) for r in splits.values())
        else:
            pl = representative.metrics.realized_pl
        out.append(AccountingEntry(
            record=representative,
            pl=pl,
            date=latest_exit_date(representative.trade) or representative.trade.date,
            holding_days=cash_holding_days(representative.trade),
        ))
    return out


# ---------- Monthly ----------

def group_trades_by_month(records: Iterable[ProcessedTrade],
                          use_cash_basis: bool = False) -> Dict[str, List[ProcessedTrade]]:
    """Group by 'Mon YYYY' of the accounting date; undated records are skipped."""
    groups: Dict[str, List[ProcessedTrade]] = OrderedDict()
    for record in records:
        d = accounting_date(record, use_cash_basis)
        if d is None:
            continue
        groups.setdefault(month_key(d), []).append(record)
    return groups


def calculate_monthly_pl(records: Iterable[ProcessedTrade], month: str, year: int,
                         use_cash_basis: bool = False) -> float:
    """Realized P&L of non-open records whose accounting date falls in (month, year)."""
    month = normalize_month_name(month)
    total = 0.0
    for record in records:
        if record.status == OPEN:
            continue
        d = accounting_date(record, use_cash_basis)
        if d is None or d.year != year or month_label(d) != month:
            continue
        total += accounting_pl(record, use_cash_basis)
    return total


def calculate_cumulative_pl(records: Iterable[ProcessedTrade],
                            use_cash_basis: bool = False) -> List[dict]:
    """
    Running realized P&L by accounting date.

    Returns one dict per distinct date, ascending:
        {"date": date, "pl": float, "cumulative_pl": float}
    """
    by_date: Dict[date, float] = {}
    for record in records:
        if record.status == OPEN:
            continue
        d = accounting_date(record, use_cash_basis)
        if d is None:
            continue
        by_date[d] = by_date.get(d, 0.0) + accounting_pl(record, use_cash_basis)

    running = 0.0
    out = []
    for d in sorted(by_date):
        running += by_date[d]
        out.append({"date": d, "pl": by_date[d], "cumulative_pl": running})
    return out
