"""
Per-trade metric derivation.

Everything here is a pure function of one Trade plus the portfolio size that
applies to it. Sections follow the order metrics appear in the journal table:
entries, sizing, exits, moves, reward:risk, holding days, P&L.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import date
from typing import Any, List, Optional, Sequence, Tuple

from journal_engine.config import PINNABLE_METRICS
from journal_engine.lots import FifoResult, entry_lots, exit_lots, match_fifo, match_trade
from journal_engine.models import (
    CLOSED,
    EDITABLE_FIELDS,
    OPEN,
    PARTIAL,
    HoldingSlice,
    IndividualMove,
    Lot,
    RewardRiskLot,
    Trade,
    TradeMetrics,
)
from journal_engine.utils import (
    LONG,
    SHORT,
    compute_or_fallback,
    days_between,
    percentage_change,
    percentage_of,
    round_half_up,
    signed_price_diff,
    stock_move_percentage,
    to_float,
    weighted_mean,
)

logger = logging.getLogger(__name__)


# ---------- Entries / sizing ----------

def calculate_avg_price(lots: Sequence[Lot]) -> float:
    """Quantity-weighted average price of valid lots; 0 for none."""
    return weighted_mean((lot.price, lot.qty) for lot in lots if lot.is_valid)


def calculate_position_size(avg_entry: float, total_qty: float) -> float:
    """avg_entry * total_qty, rounded to a whole unit."""
    return round_half_up(avg_entry * total_qty)


def calculate_allocation(position_size: float, portfolio_size: float) -> float:
    return percentage_of(position_size, portfolio_size)


def calculate_stop_loss_pct(avg_entry: float, sl: float) -> float:
    """|% change from average entry to the stop|; 0 if either is missing."""
    if avg_entry <= 0 or sl <= 0:
        return 0.0
    return abs(percentage_change(avg_entry, sl))


# ---------- Status ----------

def derive_position_status(open_qty: float, exited_qty: float) -> str:
    if exited_qty > 0 and open_qty <= 0:
        return CLOSED
    if exited_qty > 0 and open_qty > 0:
        return PARTIAL
    return OPEN


def resolve_status(trade: Trade, match: FifoResult) -> str:
    """User-pinned status wins; otherwise derive from quantities."""
    if trade.status_pinned:
        return trade.position_status
    return derive_position_status(match.open_qty, match.consumed_qty)


def is_risky_position(trade: Trade) -> bool:
    """
    Whether the position still carries downside risk.

    Risk-free means the trailing stop sits strictly on the protective side of
    the fixed stop (above it for longs, below it for shorts), or only a
    trailing stop is set. No stops at all, or a fixed stop alone, is risky.
    """
    sl, tsl = trade.sl, trade.tsl
    if sl <= 0 and tsl <= 0:
        return True
    if tsl <= 0:
        return True
    if sl <= 0:
        return False
    if trade.direction == SHORT:
        return tsl >= sl
    return tsl <= sl


# ---------- Moves ----------

def calculate_stock_move(avg_entry: float, avg_exit: float, cmp: float,
                         open_qty: float, exited_qty: float,
                         status: str, direction: str = LONG) -> float:
    """
    Direction-adjusted % move of the position.

    Closed:  avg exit vs avg entry
    Open:    cmp vs avg entry
    Partial: qty-weighted blend of realized (exited qty) and unrealized (open qty) moves
    """
    if status == CLOSED:
        return stock_move_percentage(avg_entry, avg_exit, direction)
    if status == PARTIAL:
        total = open_qty + exited_qty
        if total <= 0:
            return 0.0
        realized = stock_move_percentage(avg_entry, avg_exit, direction)
        unrealized = stock_move_percentage(avg_entry, cmp, direction)
        return (realized * exited_qty + unrealized * open_qty) / total
    return stock_move_percentage(avg_entry, cmp, direction)


def calculate_individual_moves(entries: Sequence[Lot], avg_exit: float, cmp: float,
                               status: str, direction: str = LONG) -> Tuple[IndividualMove, ...]:
    reference = avg_exit if status == CLOSED else cmp
    return tuple(
        IndividualMove(
            label=lot.label,
            entry_price=lot.price,
            qty=lot.qty,
            move_pct=stock_move_percentage(lot.price, reference, direction),
        )
        for lot in entries
    )


# ---------- Reward : Risk ----------

def effective_stop_for_lot(lot: Lot, sl: float, tsl: float) -> float:
    """Initial entry always uses the fixed stop; pyramids prefer the trailing stop when set."""
    if lot.ordinal == 1:
        return sl
    return tsl if tsl > 0 else sl


def _lot_reward(lot: Lot, match: FifoResult, avg_exit: float, cmp: float,
                status: str, direction: str) -> Tuple[float, float, float]:
    """Per-unit reward for one entry lot, plus its FIFO exited/open quantities."""
    lot_slices = match.slices_for_entry(lot.ordinal)
    exited = sum(s.qty for s in lot_slices)
    open_ = match.open_qty_for_entry(lot.ordinal)

    def unrealized() -> float:
        return signed_price_diff(lot.price, cmp, direction) if cmp > 0 else 0.0

    if status == CLOSED:
        return signed_price_diff(lot.price, avg_exit, direction), exited, open_
    if status == OPEN:
        return unrealized(), exited, open_

    # Partial: blend this lot's own realized exits with its open remainder at cmp
    if exited > 0:
        lot_avg_exit = weighted_mean((s.exit_price, s.qty) for s in lot_slices)
        realized = signed_price_diff(lot.price, lot_avg_exit, direction)
        if open_ > 0:
            return (realized * exited + unrealized() * open_) / (exited + open_), exited, open_
        return realized, exited, open_
    return unrealized(), exited, open_


def reward_risk_breakdown(trade: Trade, entries: Sequence[Lot], match: FifoResult,
                          avg_exit: float, status: str) -> Tuple[RewardRiskLot, ...]:
    out: List[RewardRiskLot] = []
    for lot in entries:
        stop = effective_stop_for_lot(lot, trade.sl, trade.tsl)
        raw_risk = signed_price_diff(stop, lot.price, trade.direction)
        risk = abs(raw_risk)
        reward, exited, open_ = _lot_reward(lot, match, avg_exit, trade.cmp, status, trade.direction)
        ratio = reward / risk if risk != 0 else math.inf
        out.append(RewardRiskLot(
            label=lot.label,
            price=lot.price,
            qty=lot.qty,
            stop=stop,
            raw_risk=raw_risk,
            risk=risk,
            reward=reward,
            ratio=ratio,
            is_risk_free=(risk == 0),
            exited_qty=exited,
            open_qty=open_,
        ))
    return tuple(out)


def traditional_reward_risk(breakdown: Sequence[RewardRiskLot]) -> float:
    """Qty-weighted mean of per-lot ratios over risky lots only; 0 when none are risky."""
    risky = [b for b in breakdown if not b.is_risk_free]
    risky_qty = sum(b.qty for b in risky)
    if risky_qty <= 0:
        return 0.0
    return sum(b.ratio * b.qty for b in risky) / risky_qty


def effective_reward_risk(breakdown: Sequence[RewardRiskLot]) -> float:
    """
    Total weighted reward (all lots) over total weighted risk (risky lots).

    Risk-free lots still add their reward. Infinite when nothing is at risk.
    """
    total_risk = sum(b.risk * b.qty for b in breakdown if not b.is_risk_free)
    total_reward = sum(b.reward * b.qty for b in breakdown)
    if total_risk <= 0:
        return math.inf
    return total_reward / total_risk


# ---------- Holding days ----------

def holding_days_breakdown(entries: Sequence[Lot], exits: Sequence[Lot],
                           as_of: date) -> Tuple[HoldingSlice, ...]:
    """
    Per-lot holding periods from FIFO slices.

    Lots without a date are skipped. Exited slices run entry date -> exit date,
    the unexited remainder runs entry date -> as_of. Each slice is at least 1 day.
    """
    dated_entries = [lot for lot in entries if lot.date is not None]
    dated_exits = [lot for lot in exits if lot.date is not None]
    match = match_fifo(dated_entries, dated_exits)

    out: List[HoldingSlice] = []
    for lot in dated_entries:
        for s in match.slices_for_entry(lot.ordinal):
            out.append(HoldingSlice(
                label=lot.label,
                qty=s.qty,
                days=days_between(lot.date, s.exit_date),
                exited=True,
                exit_date=s.exit_date,
            ))
        remaining = match.open_qty_for_entry(lot.ordinal)
        if remaining > 0:
            out.append(HoldingSlice(
                label=lot.label,
                qty=remaining,
                days=days_between(lot.date, as_of),
                exited=False,
            ))
    return tuple(out)


def mean_holding_days(slices: Sequence[HoldingSlice]) -> int:
    total_qty = sum(s.qty for s in slices)
    if total_qty <= 0:
        return 0
    return int(round_half_up(sum(s.days * s.qty for s in slices) / total_qty))


def display_holding_days(breakdown: Sequence[HoldingSlice], status: str) -> Tuple[int, int, int]:
    """
    Returns (display, realized, open) holding days.

    Open shows the open-slice mean, Closed the mean over every slice, Partial
    the open-slice mean (exited-slice mean if nothing is left open).
    """
    open_days = mean_holding_days([s for s in breakdown if not s.exited])
    realized_days = mean_holding_days([s for s in breakdown if s.exited])
    if status == OPEN:
        display = open_days
    elif status == PARTIAL:
        display = open_days or realized_days
    else:
        display = mean_holding_days(breakdown)
    return display, realized_days, open_days


# ---------- P&L ----------

def calculate_unrealized_pl(avg_entry: float, cmp: float, open_qty: float,
                            direction: str = LONG) -> float:
    if avg_entry <= 0 or cmp <= 0 or open_qty <= 0:
        return 0.0
    return signed_price_diff(avg_entry, cmp, direction) * open_qty


def calculate_pf_impact(pl: float, portfolio_size: float) -> float:
    return percentage_of(pl, portfolio_size)


# ---------- Full metrics ----------

def compute_metrics(trade: Trade, portfolio_size: float, as_of: Optional[date] = None,
                    cash_portfolio_size: Optional[float] = None) -> TradeMetrics:
    """
    Derive every per-trade metric.

    Args:
        trade: the trade record.
        portfolio_size: size applying at the trade date (allocation, accrual impact).
        as_of: 'today' for unexited holding periods; defaults to date.today().
        cash_portfolio_size: size at the latest exit month for cash impact;
            defaults to portfolio_size.

    Returns:
        TradeMetrics. Pinned metrics on the trade replace their computed values.
        Reward:risk and holding-day failures degrade to zeroed values only for
        those fields.
    """
    as_of = as_of or date.today()
    if cash_portfolio_size is None:
        cash_portfolio_size = portfolio_size

    entries = entry_lots(trade)
    exits = exit_lots(trade)
    match = match_trade(trade)

    total_qty = match.entered_qty
    exited_qty = match.consumed_qty
    open_qty = match.open_qty
    status = resolve_status(trade, match)

    avg_entry = calculate_avg_price(entries)
    # excess exits beyond entered qty are unmatched and stay out of the average
    avg_exit = weighted_mean((s.exit_price, s.qty) for s in match.slices)

    pinned = trade.pinned
    position_size = pinned.get("position_size", calculate_position_size(avg_entry, total_qty))
    allocation = pinned.get("allocation", calculate_allocation(position_size, portfolio_size))
    stop_loss_pct = pinned.get("stop_loss_pct", calculate_stop_loss_pct(avg_entry, trade.sl))

    stock_move = calculate_stock_move(
        avg_entry, avg_exit, trade.cmp, open_qty, exited_qty, status, trade.direction
    )

    breakdown = compute_or_fallback(
        lambda: reward_risk_breakdown(trade, entries, match, avg_exit, status),
        (),
        f"reward:risk for trade {trade.id}",
    )
    holding = compute_or_fallback(
        lambda: holding_days_breakdown(entries, exits, as_of),
        (),
        f"holding days for trade {trade.id}",
    )
    holding_days, realized_days, open_days = display_holding_days(holding, status)

    realized_pl = match.realized_pl
    unrealized_pl = calculate_unrealized_pl(avg_entry, trade.cmp, open_qty, trade.direction)

    if status == OPEN:
        accrual_impact = calculate_pf_impact(unrealized_pl, portfolio_size)
        cash_impact = 0.0
    else:
        accrual_impact = calculate_pf_impact(realized_pl, portfolio_size)
        cash_impact = calculate_pf_impact(realized_pl, cash_portfolio_size)

    return TradeMetrics(
        avg_entry=avg_entry,
        avg_exit_price=avg_exit,
        total_qty=total_qty,
        open_qty=open_qty,
        exited_qty=exited_qty,
        position_size=position_size,
        allocation=allocation,
        stop_loss_pct=stop_loss_pct,
        stock_move=stock_move,
        holding_days=holding_days,
        realized_holding_days=realized_days,
        open_holding_days=open_days,
        reward_risk=traditional_reward_risk(breakdown),
        effective_reward_risk=effective_reward_risk(breakdown) if breakdown else 0.0,
        has_risk_free_lots=any(b.is_risk_free for b in breakdown),
        is_risky=is_risky_position(trade),
        realized_amount=avg_exit * exited_qty,
        realized_pl=realized_pl,
        unrealized_pl=unrealized_pl,
        portfolio_size=portfolio_size,
        accrual_pf_impact=accrual_impact,
        cash_pf_impact=cash_impact,
        pf_impact=accrual_impact,
        position_status=status,
        reward_risk_breakdown=breakdown,
        holding_breakdown=holding,
        individual_moves=calculate_individual_moves(entries, avg_exit, trade.cmp, status, trade.direction),
    )


# ---------- Edits ----------

def apply_edit(trade: Trade, field_name: str, value: Any) -> Trade:
    """
    Return a new Trade with one field edited and marked as user-edited.

    - Editing ``position_status`` pins it; later quantity edits leave it alone.
    - Editing a pinnable metric (position_size, allocation, stop_loss_pct)
      stores a pinned value that compute_metrics returns verbatim.
    - Any other edit re-derives the status from quantities unless pinned.

    Raises:
        ValueError: unknown field name.
    """
    edited = trade.user_edited_fields | {field_name}

    if field_name in PINNABLE_METRICS:
        pinned_value = to_float(value)
        if field_name == "position_size":
            pinned_value = round_half_up(pinned_value)
        pinned = trade.pinned
        pinned[field_name] = pinned_value
        return replace(trade, pinned_metrics=pinned, user_edited_fields=edited)

    if field_name not in EDITABLE_FIELDS:
        raise ValueError(f"Unknown trade field: {field_name!r}")

    updated = replace(trade, user_edited_fields=edited, **{field_name: value})
    if updated.status_pinned:
        return updated

    match = match_trade(updated)
    status = derive_position_status(match.open_qty, match.consumed_qty)
    if status != updated.position_status:
        logger.debug("Trade %s status %s -> %s", trade.id, updated.position_status, status)
        updated = replace(updated, position_status=status)
    return updated
