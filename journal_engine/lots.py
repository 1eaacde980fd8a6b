"""
FIFO lot matching for a single trade.

Entry lots form a queue in their natural order (initial entry, pyramid 1,
pyramid 2), never re-sorted by date. Each exit consumes from the front of
the queue, splitting across entry lots as needed.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import date
from typing import Deque, Iterable, List, Optional, Tuple

from journal_engine.config import ENTRY_LOT_LABELS, EXIT_LOT_LABELS
from journal_engine.models import Lot, Trade
from journal_engine.utils import LONG, signed_price_diff

logger = logging.getLogger(__name__)

_QTY_EPSILON = 1e-9


# ---------- Lot accessors ----------

def entry_lots(trade: Trade) -> List[Lot]:
    """Valid entry lots in natural order. The initial entry is dated at the trade date."""
    raw = [
        (trade.entry_price, trade.initial_qty, trade.date),
        (trade.pyramid1_price, trade.pyramid1_qty, trade.pyramid1_date),
        (trade.pyramid2_price, trade.pyramid2_qty, trade.pyramid2_date),
    ]
    lots = [
        Lot(price=p, qty=q, date=d, label=ENTRY_LOT_LABELS[i], ordinal=i + 1)
        for i, (p, q, d) in enumerate(raw)
    ]
    return [lot for lot in lots if lot.is_valid]


def exit_lots(trade: Trade) -> List[Lot]:
    """Valid exit lots in natural order."""
    raw = [
        (trade.exit1_price, trade.exit1_qty, trade.exit1_date),
        (trade.exit2_price, trade.exit2_qty, trade.exit2_date),
        (trade.exit3_price, trade.exit3_qty, trade.exit3_date),
    ]
    lots = [
        Lot(price=p, qty=q, date=d, label=EXIT_LOT_LABELS[i], ordinal=i + 1)
        for i, (p, q, d) in enumerate(raw)
    ]
    return [lot for lot in lots if lot.is_valid]


# ---------- Matching ----------

@dataclass(frozen=True)
class MatchedSlice:
    """Quantity of one entry lot closed by one exit lot."""
    entry_label: str
    entry_ordinal: int
    exit_ordinal: int
    qty: float
    entry_price: float
    exit_price: float
    entry_date: Optional[date]
    exit_date: Optional[date]
    pl: float


@dataclass(frozen=True)
class OpenRemainder:
    """Unexited quantity left on an entry lot after matching."""
    entry_label: str
    entry_ordinal: int
    qty: float
    entry_price: float
    entry_date: Optional[date]


@dataclass(frozen=True)
class FifoResult:
    realized_pl: float
    slices: Tuple[MatchedSlice, ...]
    remainders: Tuple[OpenRemainder, ...]
    entered_qty: float
    consumed_qty: float
    unmatched_exit_qty: float = 0.0

    @property
    def open_qty(self) -> float:
        return max(0.0, self.entered_qty - self.consumed_qty)

    def slices_for_exit(self, exit_ordinal: int) -> List[MatchedSlice]:
        return [s for s in self.slices if s.exit_ordinal == exit_ordinal]

    def slices_for_entry(self, entry_ordinal: int) -> List[MatchedSlice]:
        return [s for s in self.slices if s.entry_ordinal == entry_ordinal]

    def realized_pl_for_exit(self, exit_ordinal: int) -> float:
        return sum(s.pl for s in self.slices_for_exit(exit_ordinal))

    def open_qty_for_entry(self, entry_ordinal: int) -> float:
        return sum(r.qty for r in self.remainders if r.entry_ordinal == entry_ordinal)


def match_fifo(entries: Iterable[Lot], exits: Iterable[Lot], direction: str = LONG) -> FifoResult:
    """
    Match exits against entries oldest-entry-first.

    Formula (per slice):
        long:  (exit_price - entry_price) * qty
        short: (entry_price - exit_price) * qty

    Args:
        entries: entry lots in natural order; invalid lots are dropped.
        exits: exit lots in natural order; invalid lots are dropped.
        direction: 'long' or 'short'.

    Returns:
        FifoResult with realized P&L, per-slice breakdown and open remainders.

    Edge cases:
        - No entries or no exits: realized P&L is 0.
        - Exit quantity beyond what was entered is left unmatched and reported
          in ``unmatched_exit_qty``; it never produces P&L.
    """
    valid_entries = [lot for lot in entries if lot.is_valid]
    valid_exits = [lot for lot in exits if lot.is_valid]
    entered = sum(lot.qty for lot in valid_entries)

    if not valid_entries:
        unmatched = sum(lot.qty for lot in valid_exits)
        return FifoResult(0.0, (), (), 0.0, 0.0, unmatched)

    # [lot, remaining qty]
    queue: Deque[List] = deque([lot, lot.qty] for lot in valid_entries)
    slices: List[MatchedSlice] = []
    realized = 0.0
    consumed = 0.0
    unmatched = 0.0

    for ex in valid_exits:
        to_fill = ex.qty
        while to_fill > _QTY_EPSILON and queue:
            head = queue[0]
            lot, remaining = head[0], head[1]
            take = min(remaining, to_fill)
            pl = signed_price_diff(lot.price, ex.price, direction) * take

            slices.append(MatchedSlice(
                entry_label=lot.label,
                entry_ordinal=lot.ordinal,
                exit_ordinal=ex.ordinal,
                qty=take,
                entry_price=lot.price,
                exit_price=ex.price,
                entry_date=lot.date,
                exit_date=ex.date,
                pl=pl,
            ))
            realized += pl
            consumed += take
            to_fill -= take
            head[1] = remaining - take
            if head[1] <= _QTY_EPSILON:
                queue.popleft()

        if to_fill > _QTY_EPSILON:
            unmatched += to_fill

    remainders = tuple(
        OpenRemainder(
            entry_label=lot.label,
            entry_ordinal=lot.ordinal,
            qty=remaining,
            entry_price=lot.price,
            entry_date=lot.date,
        )
        for lot, remaining in queue
    )

    return FifoResult(
        realized_pl=realized,
        slices=tuple(slices),
        remainders=remainders,
        entered_qty=entered,
        consumed_qty=consumed,
        unmatched_exit_qty=unmatched,
    )


def match_trade(trade: Trade) -> FifoResult:
    """FIFO-match a trade's own lots; logs when exits exceed entries."""
    result = match_fifo(entry_lots(trade), exit_lots(trade), trade.direction)
    if result.unmatched_exit_qty > 0:
        logger.warning(
            "Trade %s exits exceed entries by %s; excess ignored",
            trade.id, result.unmatched_exit_qty,
        )
    return result
