"""Shared numeric and date helpers used by every engine module."""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional, Tuple, TypeVar

import numpy as np

from journal_engine.config import DATE_FORMATS, MONTH_ALIASES, MONTH_LABELS

logger = logging.getLogger(__name__)

T = TypeVar("T")

LONG = "long"
SHORT = "short"

_SHORT_ALIASES = {"sell", "short", "short sell", "s"}


# ---------- Coercion ----------

def to_float(value: Any) -> float:
    """
    Coerce any numeric-ish input to a finite float.

    Accepts ints, floats, numpy scalars and strings with thousands separators.
    Anything else (None, '', NaN, inf, garbage) becomes 0.0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if not s:
            return 0.0
        try:
            value = float(s)
        except ValueError:
            return 0.0
    try:
        f = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not np.isfinite(f):
        return 0.0
    return f


def normalize_direction(value: Any) -> str:
    """Map buy/long -> 'long' and sell/short/'short sell' -> 'short'. Unknown defaults to long."""
    s = str(value or "").strip().lower()
    return SHORT if s in _SHORT_ALIASES else LONG


def parse_date(value: Any) -> Optional[date]:
    """Parse a date value into a ``date``; returns None if parsing fails."""
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if hasattr(value, "to_pydatetime"):
        try:
            return value.to_pydatetime().date()
        except Exception:
            return None
    s = str(value).strip()
    if not s:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        return None


# ---------- Months ----------

def normalize_month_name(month: str) -> str:
    """'Sept' -> 'Sep', 'January' -> 'Jan'; short labels pass through."""
    return MONTH_ALIASES.get(month, month)


def month_label(d: date) -> str:
    return MONTH_LABELS[d.month - 1]


def month_key(d: date) -> str:
    """Grouping key in 'Mon YYYY' form, e.g. 'Jan 2024'."""
    return f"{month_label(d)} {d.year}"


# ---------- Arithmetic ----------

def round_half_up(value: float, decimals: int = 0) -> float:
    """Round halves upward (2.5 -> 3, -2.5 -> -2)."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def safe_divide(numerator: float, denominator: float, fallback: float = 0.0) -> float:
    return numerator / denominator if denominator != 0 else fallback


def percentage_of(value: float, total: float) -> float:
    """value / total * 100, or 0 when total <= 0."""
    return (value / total) * 100 if total > 0 else 0.0


def percentage_change(old_value: float, new_value: float) -> float:
    if not old_value:
        return 0.0
    return ((new_value - old_value) / old_value) * 100


def stock_move_percentage(entry_price: float, reference_price: float, direction: str = LONG) -> float:
    """
    Direction-adjusted percentage move from entry to a reference price.

    Formula:
        long:  (reference - entry) / entry * 100
        short: (entry - reference) / entry * 100

    Returns 0 if either price is missing or non-positive.
    """
    if entry_price <= 0 or reference_price <= 0:
        return 0.0
    if direction == SHORT:
        return ((entry_price - reference_price) / entry_price) * 100
    return ((reference_price - entry_price) / entry_price) * 100


def signed_price_diff(entry_price: float, other_price: float, direction: str = LONG) -> float:
    """Per-unit P&L of moving from entry_price to other_price for the given direction."""
    if direction == SHORT:
        return entry_price - other_price
    return other_price - entry_price


def weighted_mean(pairs: Iterable[Tuple[float, float]]) -> float:
    """Quantity-weighted mean of (value, weight) pairs; 0 for no weight."""
    total_weight = 0.0
    total = 0.0
    for value, weight in pairs:
        total += value * weight
        total_weight += weight
    return total / total_weight if total_weight else 0.0


# ---------- Dates ----------

def days_between(start: date, end: date) -> int:
    """Whole days from start to end, rounded up, never below 1."""
    delta_days = (end - start).total_seconds() / 86400
    return max(1, math.ceil(delta_days))


# ---------- Safety ----------

def compute_or_fallback(fn: Callable[[], T], fallback: T, message: Optional[str] = None) -> T:
    """Run ``fn``; on any exception log ``message`` and return ``fallback``."""
    try:
        return fn()
    except Exception:
        if message:
            logger.warning("Calculation error: %s", message, exc_info=True)
        return fallback
