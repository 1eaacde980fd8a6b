"""
Data models for journal trades and their computed metrics.

Trade      : immutable input record (what the store hands us, what edits produce)
Lot        : one entry or exit fill, price / qty / date
TradeKey   : structured identity {original_id, exit_ordinal} for cash-basis splits
TradeMetrics, ProcessedTrade, PortfolioSummary : outputs, never edited in place
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from journal_engine.utils import LONG, normalize_direction, parse_date, to_float

OPEN = "Open"
CLOSED = "Closed"
PARTIAL = "Partial"

POSITION_STATUSES = (OPEN, CLOSED, PARTIAL)


def normalize_status(value: Any) -> str:
    s = str(value or "").strip().capitalize()
    return s if s in POSITION_STATUSES else OPEN


def normalize_field_names(value: Any) -> FrozenSet[str]:
    """A single name or any iterable of names; anything else is no names."""
    if not value:
        return frozenset()
    if isinstance(value, str):
        return frozenset({value})
    try:
        return frozenset(str(v) for v in value)
    except TypeError:
        return frozenset()


def normalize_pinned_metrics(value: Any) -> Tuple[Tuple[str, float], ...]:
    """Pinned metric values as sorted (name, value) pairs; non-mappings pin nothing."""
    if isinstance(value, Mapping):
        items = value.items()
    elif isinstance(value, (tuple, list)):
        items = [pair for pair in value if isinstance(pair, (tuple, list)) and len(pair) == 2]
    else:
        return ()
    return tuple(sorted((str(k), to_float(v)) for k, v in items))


@dataclass(frozen=True)
class Lot:
    """A single entry or exit fill. Only lots with price > 0 and qty > 0 are active."""
    price: float
    qty: float
    date: Optional[date] = None
    label: str = ""
    ordinal: int = 0  # 1-based position within its entry/exit group

    @property
    def is_valid(self) -> bool:
        return self.price > 0 and self.qty > 0

    @property
    def value(self) -> float:
        return self.price * self.qty


@dataclass(frozen=True)
class Trade:
    """
    One journal trade: up to 3 entry lots (initial + 2 pyramids) and 3 exit lots.

    Inputs are coerced on construction and never raise: bad numbers become 0,
    bad dates become None, unknown statuses become Open.
    """
    id: str
    date: Optional[date] = None
    direction: str = LONG
    name: str = ""
    trade_no: Any = 0

    entry_price: float = 0.0
    initial_qty: float = 0.0
    pyramid1_price: float = 0.0
    pyramid1_qty: float = 0.0
    pyramid1_date: Optional[date] = None
    pyramid2_price: float = 0.0
    pyramid2_qty: float = 0.0
    pyramid2_date: Optional[date] = None

    exit1_price: float = 0.0
    exit1_qty: float = 0.0
    exit1_date: Optional[date] = None
    exit2_price: float = 0.0
    exit2_qty: float = 0.0
    exit2_date: Optional[date] = None
    exit3_price: float = 0.0
    exit3_qty: float = 0.0
    exit3_date: Optional[date] = None

    sl: float = 0.0
    tsl: float = 0.0
    cmp: float = 0.0

    position_status: str = OPEN
    user_edited_fields: FrozenSet[str] = frozenset()
    # accepts a mapping; stored as sorted (name, value) pairs so Trade stays hashable
    pinned_metrics: Tuple[Tuple[str, float], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", str(self.id).strip())
        object.__setattr__(self, "name", str(self.name or "").strip().upper())
        object.__setattr__(self, "direction", normalize_direction(self.direction))
        object.__setattr__(self, "position_status", normalize_status(self.position_status))
        object.__setattr__(self, "user_edited_fields", normalize_field_names(self.user_edited_fields))
        object.__setattr__(self, "pinned_metrics", normalize_pinned_metrics(self.pinned_metrics))

        for name in DATE_FIELDS:
            object.__setattr__(self, name, parse_date(getattr(self, name)))
        for name in NUMERIC_FIELDS:
            object.__setattr__(self, name, to_float(getattr(self, name)))

    @property
    def is_long(self) -> bool:
        return self.direction == LONG

    @property
    def status_pinned(self) -> bool:
        return "position_status" in self.user_edited_fields

    @property
    def pinned(self) -> Dict[str, float]:
        return dict(self.pinned_metrics)


DATE_FIELDS = ("date", "pyramid1_date", "pyramid2_date", "exit1_date", "exit2_date", "exit3_date")

NUMERIC_FIELDS = (
    "entry_price", "initial_qty",
    "pyramid1_price", "pyramid1_qty",
    "pyramid2_price", "pyramid2_qty",
    "exit1_price", "exit1_qty",
    "exit2_price", "exit2_qty",
    "exit3_price", "exit3_qty",
    "sl", "tsl", "cmp",
)

# Fields an edit may target directly on the record
EDITABLE_FIELDS = frozenset(
    {"date", "direction", "name", "trade_no", "position_status"}
    | set(DATE_FIELDS)
    | set(NUMERIC_FIELDS)
)


def trade_from_record(record: Mapping[str, Any]) -> Trade:
    """
    Build a Trade from a plain mapping (store row, CSV row, JSON payload).

    Unknown keys are ignored; ``user_edited_fields`` may be any iterable of names.
    """
    known = {f for f in Trade.__dataclass_fields__}
    kwargs = {k: v for k, v in record.items() if k in known}
    if "id" not in kwargs:
        raise ValueError("trade record requires an 'id'")
    return Trade(**kwargs)


@dataclass(frozen=True)
class TradeKey:
    """Identity of a (possibly expanded) trade record."""
    original_id: str
    exit_ordinal: Optional[int] = None

    @property
    def is_split(self) -> bool:
        return self.exit_ordinal is not None

    def __str__(self) -> str:
        if self.exit_ordinal is None:
            return self.original_id
        return f"{self.original_id}_exit_{self.exit_ordinal}"


@dataclass(frozen=True)
class CashBasisExit:
    """One exit event of a trade, used to attribute P&L to the exit date."""
    date: Optional[date]
    qty: float
    price: float
    ordinal: int


# ---------- Metric breakdowns ----------

@dataclass(frozen=True)
class RewardRiskLot:
    label: str
    price: float
    qty: float
    stop: float
    raw_risk: float
    risk: float
    reward: float
    ratio: float          # math.inf when risk == 0
    is_risk_free: bool
    exited_qty: float = 0.0
    open_qty: float = 0.0


@dataclass(frozen=True)
class HoldingSlice:
    label: str
    qty: float
    days: int
    exited: bool
    exit_date: Optional[date] = None


@dataclass(frozen=True)
class IndividualMove:
    label: str
    entry_price: float
    qty: float
    move_pct: float


@dataclass(frozen=True)
class TradeMetrics:
    avg_entry: float = 0.0
    avg_exit_price: float = 0.0
    total_qty: float = 0.0
    open_qty: float = 0.0
    exited_qty: float = 0.0
    position_size: float = 0.0
    allocation: float = 0.0
    stop_loss_pct: float = 0.0
    stock_move: float = 0.0
    holding_days: int = 0
    realized_holding_days: int = 0
    open_holding_days: int = 0
    reward_risk: float = 0.0
    effective_reward_risk: float = 0.0
    has_risk_free_lots: bool = False
    is_risky: bool = True
    realized_amount: float = 0.0
    realized_pl: float = 0.0
    unrealized_pl: float = 0.0
    portfolio_size: float = 0.0
    accrual_pf_impact: float = 0.0
    cash_pf_impact: float = 0.0
    pf_impact: float = 0.0
    cumulative_pf_impact: float = 0.0
    position_status: str = OPEN
    reward_risk_breakdown: Tuple[RewardRiskLot, ...] = ()
    holding_breakdown: Tuple[HoldingSlice, ...] = ()
    individual_moves: Tuple[IndividualMove, ...] = ()
    failed: bool = False

    @classmethod
    def zeroed(cls, position_status: str = OPEN) -> "TradeMetrics":
        return cls(position_status=position_status, failed=True)


@dataclass(frozen=True)
class ProcessedTrade:
    """A trade with its metrics; cash-basis splits also carry their exit."""
    trade: Trade
    metrics: TradeMetrics
    key: TradeKey
    cash_exit: Optional[CashBasisExit] = None

    @property
    def id(self) -> str:
        return str(self.key)

    @property
    def original_id(self) -> str:
        return self.key.original_id

    @property
    def status(self) -> str:
        return self.metrics.position_status


# ---------- Portfolio outputs ----------

@dataclass(frozen=True)
class HeatShare:
    trade_id: str
    name: str
    heat: float
    share_pct: float


@dataclass(frozen=True)
class GapDownAnalysis:
    trade_id: str
    name: str
    normal_risk: float
    gap_down_risk: float
    additional_risk: float
    risk_increase_factor: float


@dataclass(frozen=True)
class GapDownScenario:
    percentage: float
    total_risk: float
    risk_increase_factor: float


@dataclass(frozen=True)
class PortfolioGapDown:
    gap_percentage: float
    total_normal_risk: float
    total_gap_down_risk: float
    total_additional_risk: float
    risk_increase_factor: float
    normal_pf_impact: float
    gap_down_pf_impact: float
    additional_pf_impact: float
    trades: Tuple[GapDownAnalysis, ...] = ()


@dataclass(frozen=True)
class TradeStatistics:
    avg_win: float = 0.0
    avg_loss: float = 0.0
    expectancy: float = 0.0
    profit_factor: float = 0.0
    max_win_streak: int = 0
    max_loss_streak: int = 0


@dataclass(frozen=True)
class PortfolioSummary:
    use_cash_basis: bool
    portfolio_size: float
    total_open_heat: float = 0.0
    total_invested: float = 0.0
    percent_invested: float = 0.0
    cash_percentage: float = 100.0
    total_unrealized_pl: float = 0.0
    total_realized_pl: float = 0.0
    net_pl: float = 0.0
    realized_pf_impact: float = 0.0
    unrealized_pf_impact: float = 0.0
    net_pf_impact: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    open_positions: int = 0
    risk_concentration: Tuple[HeatShare, ...] = ()
    gap_down_scenarios: Tuple[GapDownScenario, ...] = ()
    statistics: TradeStatistics = field(default_factory=TradeStatistics)

    def as_dict(self) -> Dict[str, Any]:
        """Flat scalar view, for tables and JSON."""
        out = {
            "Accounting Basis": "Cash" if self.use_cash_basis else "Accrual",
            "Portfolio Size": self.portfolio_size,
            "Total Open Heat %": self.total_open_heat,
            "Total Invested": self.total_invested,
            "Percent Invested": self.percent_invested,
            "Cash %": self.cash_percentage,
            "Unrealized P&L": self.total_unrealized_pl,
            "Realized P&L": self.total_realized_pl,
            "Net P&L": self.net_pl,
            "Realized PF Impact %": self.realized_pf_impact,
            "Unrealized PF Impact %": self.unrealized_pf_impact,
            "Net PF Impact %": self.net_pf_impact,
            "Win Rate %": self.win_rate,
            "Total Trades": self.total_trades,
            "Open Positions": self.open_positions,
            "Avg Win": self.statistics.avg_win,
            "Avg Loss": self.statistics.avg_loss,
            "Expectancy": self.statistics.expectancy,
            "Profit Factor": self.statistics.profit_factor,
            "Max Win Streak": self.statistics.max_win_streak,
            "Max Loss Streak": self.statistics.max_loss_streak,
        }
        if math.isinf(out["Profit Factor"]):
            out["Profit Factor"] = "inf"
        return out
