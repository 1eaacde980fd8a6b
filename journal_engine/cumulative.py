"""Chronological ordering and running cumulative portfolio impact."""

from __future__ import annotations

import functools
import logging
from dataclasses import replace
from typing import Any, List, Sequence

from journal_engine.models import OPEN, ProcessedTrade
from journal_engine.utils import to_float

logger = logging.getLogger(__name__)


def trade_sequence(value: Any) -> float:
    """Numeric trade number; anything non-numeric sorts as 0."""
    return to_float(value)


def compare_chronological(a: ProcessedTrade, b: ProcessedTrade) -> int:
    """
    Canonical journal order: trade number first, then trade date.

    Within the same trade number, a missing date on either side compares
    equal, so the stable sort keeps those trades in input order.
    """
    seq_a, seq_b = trade_sequence(a.trade.trade_no), trade_sequence(b.trade.trade_no)
    if seq_a != seq_b:
        return -1 if seq_a < seq_b else 1

    da, db = a.trade.date, b.trade.date
    if da is None or db is None or da == db:
        return 0
    return -1 if da < db else 1


chronological_key = functools.cmp_to_key(compare_chronological)


def sort_chronologically(records: Sequence[ProcessedTrade]) -> List[ProcessedTrade]:
    """Stable sort, so ties keep their input order."""
    return sorted(records, key=chronological_key)


def apply_cumulative(records: Sequence[ProcessedTrade], use_cash_basis: bool = False) -> List[ProcessedTrade]:
    """
    Attach the running cumulative PF impact to every record.

    Records are walked in chronological order. Only non-Open records add their
    impact (cash or accrual, per basis); Open records receive the running total
    unchanged. The result is returned in the input order.
    """
    running = 0.0
    by_id = {}
    for record in sort_chronologically(records):
        m = record.metrics
        impact = m.cash_pf_impact if use_cash_basis else m.accrual_pf_impact
        if record.status != OPEN:
            running += impact
        by_id[record.key] = replace(
            record,
            metrics=replace(m, pf_impact=impact, cumulative_pf_impact=running),
        )

    if len(by_id) != len(records):
        logger.warning("Duplicate trade keys in cumulative pass; later records overwrite earlier ones")
    return [by_id[record.key] for record in records]
