# test_aggregation.py
import math
from datetime import date

import pytest

from journal_engine.accounting import to_cash_view
from journal_engine.aggregation import (
    aggregate,
    calculate_cash_percentage,
    calculate_gap_down_analysis,
    calculate_open_heat,
    calculate_percent_invested,
    calculate_risk_concentration,
    calculate_total_invested,
    calculate_total_realized_pl,
    calculate_total_trades,
    calculate_total_unrealized_pl,
    calculate_trade_open_heat,
    calculate_trade_statistics,
    calculate_win_rate,
    gap_down_scenarios,
)
from journal_engine.engine import PortfolioSizeResolver, process_trades
from journal_engine.models import Trade

AS_OF = date(2024, 3, 1)


def processed_one(**fields):
    fields.setdefault("id", "t")
    fields.setdefault("date", "2024-01-10")
    return process_trades([Trade(**fields)], default_portfolio_size=10000, as_of=AS_OF)[0]


class TestOpenHeat:
    """Test per-trade and total open heat"""

    def test_long_fixed_stop(self):
        r = processed_one(entry_price=100, initial_qty=10, sl=95)
        assert calculate_trade_open_heat(r, 10000) == pytest.approx(0.5)

    def test_trailing_stop_preferred(self):
        r = processed_one(entry_price=100, initial_qty=10, sl=95, tsl=98)
        assert calculate_trade_open_heat(r, 10000) == pytest.approx(0.2)

    def test_trailing_stop_used_even_if_looser(self):
        r = processed_one(entry_price=100, initial_qty=10, sl=95, tsl=90)
        assert calculate_trade_open_heat(r, 10000) == pytest.approx(1.0)

    def test_stop_on_wrong_side_contributes_zero(self):
        r = processed_one(entry_price=100, initial_qty=10, sl=95, tsl=105)
        assert calculate_trade_open_heat(r, 10000) == 0

    def test_short(self):
        r = processed_one(direction="sell", entry_price=100, initial_qty=10, sl=105)
        assert calculate_trade_open_heat(r, 10000) == pytest.approx(0.5)

    def test_no_stop(self):
        r = processed_one(entry_price=100, initial_qty=10)
        assert calculate_trade_open_heat(r, 10000) == 0

    def test_closed_contributes_zero(self):
        r = processed_one(entry_price=100, initial_qty=10, sl=95, exit1_price=110, exit1_qty=10)
        assert calculate_trade_open_heat(r, 10000) == 0

    def test_partial_uses_open_qty(self):
        r = processed_one(entry_price=100, initial_qty=10, sl=95, exit1_price=110, exit1_qty=4)
        assert calculate_trade_open_heat(r, 10000) == pytest.approx(0.3)

    def test_monthly_size_lookup(self):
        r = processed_one(entry_price=100, initial_qty=10, sl=95)
        resolver = PortfolioSizeResolver(lambda m, y: 5000 if (m, y) == ("Jan", 2024) else 0)
        assert calculate_trade_open_heat(r, 10000, resolver) == pytest.approx(1.0)

    def test_lookup_miss_falls_back(self):
        r = processed_one(entry_price=100, initial_qty=10, sl=95)
        resolver = PortfolioSizeResolver(lambda m, y: 0)
        assert calculate_trade_open_heat(r, 10000, resolver) == pytest.approx(0.5)

    def test_total_and_concentration(self):
        records = [
            processed_one(id="a", name="aaa", entry_price=100, initial_qty=10, sl=95),
            processed_one(id="b", name="bbb", entry_price=100, initial_qty=10, sl=85),
        ]
        assert calculate_open_heat(records, 10000) == pytest.approx(2.0)
        shares = calculate_risk_concentration(records, 10000)
        assert [s.trade_id for s in shares] == ["b", "a"]
        assert shares[0].share_pct == pytest.approx(75)
        assert shares[0].name == "BBB"


class TestExposure:
    """Test invested amount, invested % and cash %"""

    def setup_method(self):
        self.records = [
            processed_one(id="open", entry_price=100, initial_qty=10),
            processed_one(id="partial", entry_price=100, initial_qty=10, exit1_price=110, exit1_qty=4),
            processed_one(id="closed", entry_price=100, initial_qty=10, exit1_price=110, exit1_qty=10),
        ]

    def test_total_invested(self):
        assert calculate_total_invested(self.records) == pytest.approx(1000 + 600)

    def test_percent_invested(self):
        assert calculate_percent_invested(self.records, 10000) == pytest.approx(16)

    def test_percent_invested_can_exceed_100(self):
        assert calculate_percent_invested(self.records, 1000) == pytest.approx(160)

    def test_cash_percentage(self):
        assert calculate_cash_percentage(self.records, 10000) == pytest.approx(84)
        assert calculate_cash_percentage(self.records, 1000) == 0

    def test_cash_basis_does_not_double_count(self):
        records = [
            processed_one(id="p", entry_price=100, initial_qty=10,
                          exit1_price=110, exit1_qty=2, exit2_price=111, exit2_qty=2),
        ]
        cash = to_cash_view(records)
        assert len(cash) == 2
        assert calculate_total_invested(cash, use_cash_basis=True) == pytest.approx(600)


class TestPnlAndWinRate:
    """Test realized/unrealized totals and win rate across bases"""

    def setup_method(self):
        self.records = [
            processed_one(id="win", entry_price=100, initial_qty=10,
                          exit1_price=110, exit1_qty=5, exit1_date="2024-01-15",
                          exit2_price=120, exit2_qty=5, exit2_date="2024-02-15"),
            processed_one(id="loss", date="2024-01-12", entry_price=100, initial_qty=10,
                          exit1_price=90, exit1_qty=10, exit1_date="2024-01-20"),
            processed_one(id="open", entry_price=100, initial_qty=10, cmp=105),
        ]
        self.cash = to_cash_view(self.records)

    def test_realized_same_in_both_bases(self):
        assert calculate_total_realized_pl(self.records) == pytest.approx(50)
        assert calculate_total_realized_pl(self.cash, True) == pytest.approx(50)

    def test_unrealized(self):
        assert calculate_total_unrealized_pl(self.records) == pytest.approx(50)
        assert calculate_total_unrealized_pl(self.cash, True) == pytest.approx(50)

    def test_win_rate_accrual(self):
        assert calculate_win_rate(self.records) == pytest.approx(50)

    def test_win_rate_cash_counts_trade_once(self):
        """Two winning exit legs of one trade are one win, not two"""
        assert calculate_win_rate(self.cash, True) == pytest.approx(50)

    def test_win_rate_empty(self):
        assert calculate_win_rate([]) == 0

    def test_total_trades(self):
        assert len(self.cash) == 4
        assert calculate_total_trades(self.cash, True) == 3
        assert calculate_total_trades(self.records) == 3


class TestStatistics:
    """Test expectancy, profit factor and streaks"""

    def test_profit_factor_and_expectancy(self):
        records = [
            processed_one(id="w1", date="2024-01-01", entry_price=100, initial_qty=10, exit1_price=110, exit1_qty=10),
            processed_one(id="w2", date="2024-01-02", entry_price=100, initial_qty=10, exit1_price=130, exit1_qty=10),
            processed_one(id="l1", date="2024-01-03", entry_price=100, initial_qty=10, exit1_price=90, exit1_qty=10),
        ]
        stats = calculate_trade_statistics(records)
        assert stats.avg_win == pytest.approx(200)
        assert stats.avg_loss == pytest.approx(100)
        assert stats.profit_factor == pytest.approx(4)
        # 200 * 2/3 - 100 * 1/3
        assert stats.expectancy == pytest.approx(100)
        assert stats.max_win_streak == 2
        assert stats.max_loss_streak == 1

    def test_profit_factor_infinite_without_losses(self):
        records = [processed_one(entry_price=100, initial_qty=10, exit1_price=110, exit1_qty=10)]
        assert math.isinf(calculate_trade_statistics(records).profit_factor)

    def test_streaks_follow_date_order(self):
        records = [
            processed_one(id="l2", date="2024-01-05", entry_price=100, initial_qty=1, exit1_price=90, exit1_qty=1),
            processed_one(id="w1", date="2024-01-01", entry_price=100, initial_qty=1, exit1_price=110, exit1_qty=1),
            processed_one(id="l1", date="2024-01-03", entry_price=100, initial_qty=1, exit1_price=90, exit1_qty=1),
        ]
        stats = calculate_trade_statistics(records)
        assert stats.max_loss_streak == 2
        assert stats.max_win_streak == 1

    def test_no_realized_trades(self):
        stats = calculate_trade_statistics([processed_one(entry_price=100, initial_qty=1)])
        assert stats.profit_factor == 0
        assert stats.expectancy == 0


class TestGapDown:
    """Test gap-down risk for risky open positions"""

    def test_single_trade(self):
        records = [processed_one(entry_price=100, initial_qty=10, sl=95)]
        analysis = calculate_gap_down_analysis(records, 10, 10000)
        assert analysis.total_normal_risk == pytest.approx(50)
        assert analysis.total_gap_down_risk == pytest.approx(100)
        assert analysis.total_additional_risk == pytest.approx(50)
        assert analysis.risk_increase_factor == pytest.approx(2)
        assert analysis.gap_down_pf_impact == pytest.approx(1)

    def test_risk_free_positions_excluded(self):
        records = [processed_one(entry_price=100, initial_qty=10, sl=95, tsl=98)]
        analysis = calculate_gap_down_analysis(records, 10, 10000)
        assert analysis.trades == ()
        assert analysis.risk_increase_factor == 1

    def test_short_gap_is_upward(self):
        records = [processed_one(direction="short", entry_price=100, initial_qty=10, sl=105)]
        analysis = calculate_gap_down_analysis(records, 10, 10000)
        assert analysis.total_gap_down_risk == pytest.approx(100)

    def test_scenarios(self):
        records = [processed_one(entry_price=100, initial_qty=10, sl=95)]
        scenarios = gap_down_scenarios(records)
        assert [s.percentage for s in scenarios] == [1, 2, 3, 4, 5, 7, 10, 15, 20]
        assert scenarios[4].risk_increase_factor == pytest.approx(1)
        assert scenarios[-1].total_risk == pytest.approx(200)


class TestAggregate:
    """Test the full summary"""

    def test_summary(self):
        records = [
            processed_one(id="c", entry_price=100, initial_qty=10, sl=95, exit1_price=120, exit1_qty=10),
            processed_one(id="o", entry_price=100, initial_qty=10, sl=95, cmp=110),
        ]
        s = aggregate(records, 10000)
        assert s.total_realized_pl == pytest.approx(200)
        assert s.total_unrealized_pl == pytest.approx(100)
        assert s.net_pl == pytest.approx(300)
        assert s.realized_pf_impact == pytest.approx(2)
        assert s.net_pf_impact == pytest.approx(3)
        assert s.total_open_heat == pytest.approx(0.5)
        assert s.total_invested == pytest.approx(1000)
        assert s.percent_invested == pytest.approx(10)
        assert s.cash_percentage == pytest.approx(90)
        assert s.win_rate == pytest.approx(100)
        assert s.total_trades == 2
        assert s.open_positions == 1
        assert len(s.gap_down_scenarios) == 9
        assert s.as_dict()["Profit Factor"] == "inf"
