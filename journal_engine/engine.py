"""
Batch pipeline: raw trades -> per-trade metrics -> cumulative impact,
and processed trades -> basis view -> portfolio summary.
"""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from journal_engine.accounting import cash_basis_portfolio_size, to_accrual_view, to_cash_view
from journal_engine.aggregation import aggregate
from journal_engine.config import BATCH_LOG_EVERY, DEFAULT_PORTFOLIO_SIZE
from journal_engine.cumulative import apply_cumulative
from journal_engine.metrics import compute_metrics
from journal_engine.models import (
    PortfolioSummary,
    ProcessedTrade,
    Trade,
    TradeKey,
    TradeMetrics,
    trade_from_record,
)
from journal_engine.utils import month_label, normalize_month_name, to_float

logger = logging.getLogger(__name__)

PortfolioSizeLookup = Callable[[str, int], float]


class PortfolioSizeResolver:
    """
    Wraps the external (month_label, year) -> size lookup for one pass.

    Results are cached per (month, year). A size <= 0, a lookup error, or a
    missing date all resolve to the fallback size.
    """

    def __init__(self, lookup: Optional[PortfolioSizeLookup] = None,
                 default: float = DEFAULT_PORTFOLIO_SIZE):
        self.lookup = lookup
        self.default = default
        self._cache: Dict[Tuple[str, int], float] = {}

    def _raw_size(self, month: str, year: int) -> float:
        key = (normalize_month_name(month), int(year))
        if key not in self._cache:
            size = 0.0
            if self.lookup is not None:
                try:
                    size = to_float(self.lookup(key[0], key[1]))
                except Exception:
                    logger.warning("Portfolio size lookup failed for %s %s", key[0], key[1], exc_info=True)
            self._cache[key] = size
        return self._cache[key]

    def size_for(self, month: str, year: int, fallback: Optional[float] = None) -> float:
        fallback = self.default if fallback is None else fallback
        size = self._raw_size(month, year)
        return size if size > 0 else fallback

    def size_for_date(self, d: Optional[date], fallback: Optional[float] = None) -> float:
        if d is None:
            return self.default if fallback is None else fallback
        return self.size_for(month_label(d), d.year, fallback)


def _as_resolver(lookup: Union[PortfolioSizeResolver, PortfolioSizeLookup, None],
                 default: float) -> PortfolioSizeResolver:
    if isinstance(lookup, PortfolioSizeResolver):
        return lookup
    return PortfolioSizeResolver(lookup, default)


def _as_trade(item: Union[Trade, Mapping[str, Any]]) -> Trade:
    if isinstance(item, Trade):
        return item
    return trade_from_record(item)


def compute_metrics_safe(trade: Trade, resolver: PortfolioSizeResolver,
                         as_of: Optional[date] = None) -> TradeMetrics:
    """Per-trade failure boundary: any error yields zeroed metrics and a log line."""
    try:
        size = resolver.size_for_date(trade.date)
        cash_size = cash_basis_portfolio_size(trade, resolver)
        return compute_metrics(trade, size, as_of=as_of, cash_portfolio_size=cash_size)
    except Exception:
        logger.exception("Failed to compute metrics for trade %s", trade.id)
        return TradeMetrics.zeroed(trade.position_status)


def process_trades(trades: Iterable[Union[Trade, Mapping[str, Any]]],
                   portfolio_size_lookup: Union[PortfolioSizeResolver, PortfolioSizeLookup, None] = None,
                   *,
                   default_portfolio_size: float = DEFAULT_PORTFOLIO_SIZE,
                   use_cash_basis: bool = False,
                   as_of: Optional[date] = None) -> List[ProcessedTrade]:
    """
    Compute metrics for every trade, then the cumulative PF impact.

    Args:
        trades: Trade objects or plain mappings (see trade_from_record).
        portfolio_size_lookup: (month_label, year) -> size, or a resolver.
        default_portfolio_size: used when the lookup has nothing usable.
        use_cash_basis: which PF impact the cumulative pass accumulates.
        as_of: 'today' for open holding periods.

    Returns:
        ProcessedTrade list in input order.

    Raises:
        ValueError: a mapping without an 'id'.
    """
    started = time.perf_counter()
    resolver = _as_resolver(portfolio_size_lookup, default_portfolio_size)
    as_of = as_of or date.today()

    processed: List[ProcessedTrade] = []
    failed = 0
    for i, item in enumerate(trades, start=1):
        trade = _as_trade(item)
        metrics = compute_metrics_safe(trade, resolver, as_of)
        if metrics.failed:
            failed += 1
        processed.append(ProcessedTrade(trade=trade, metrics=metrics, key=TradeKey(trade.id)))
        if i % BATCH_LOG_EVERY == 0:
            logger.debug("Processed %d trades (%.3fs)", i, time.perf_counter() - started)

    if failed:
        logger.warning("%d of %d trades failed to compute", failed, len(processed))

    result = apply_cumulative(processed, use_cash_basis)
    logger.debug("process_trades: %d trades in %.3fs", len(result), time.perf_counter() - started)
    return result


def summarize(processed: Iterable[ProcessedTrade],
              portfolio_size: Optional[float] = None,
              portfolio_size_lookup: Union[PortfolioSizeResolver, PortfolioSizeLookup, None] = None,
              use_cash_basis: bool = False,
              default_portfolio_size: float = DEFAULT_PORTFOLIO_SIZE) -> PortfolioSummary:
    """Materialize the basis view of processed trades and aggregate it."""
    processed = list(processed)
    size = portfolio_size if portfolio_size and portfolio_size > 0 else default_portfolio_size
    resolver = _as_resolver(portfolio_size_lookup, size)
    view = to_cash_view(processed) if use_cash_basis else to_accrual_view(processed)
    return aggregate(view, size, resolver, use_cash_basis)
