# test_engine.py
from datetime import date

import pandas as pd
import pytest

import journal_engine.engine as engine
from journal_engine.engine import PortfolioSizeResolver, compute_metrics_safe, process_trades, summarize
from journal_engine.frames import COLUMNS, processed_to_df, summary_to_df
from journal_engine.models import Trade

AS_OF = date(2024, 3, 1)


def raw_trades():
    return [
        {"id": "A", "trade_no": 1, "date": "2024-01-01", "direction": "Buy",
         "entry_price": 100, "initial_qty": 10, "sl": 95,
         "exit1_price": 110, "exit1_qty": 5, "exit1_date": "2024-01-05",
         "exit2_price": 120, "exit2_qty": 5, "exit2_date": "2024-02-10"},
        {"id": "B", "trade_no": 2, "date": "2024-02-15", "direction": "Buy",
         "entry_price": 50, "initial_qty": 20, "sl": 45, "cmp": 55},
        {"id": "C", "trade_no": 3, "date": "2024-02-20", "direction": "Sell",
         "entry_price": 200, "initial_qty": 10, "sl": 210, "cmp": 190,
         "exit1_price": 180, "exit1_qty": 5, "exit1_date": "2024-02-25"},
    ]


class TestPortfolioSizeResolver:
    """Test lookup caching and fallback rules"""

    def test_caches_per_month(self):
        calls = []

        def lookup(month, year):
            calls.append((month, year))
            return 50000

        resolver = PortfolioSizeResolver(lookup, default=10000)
        assert resolver.size_for("Jan", 2024) == 50000
        assert resolver.size_for_date(date(2024, 1, 20)) == 50000
        assert calls == [("Jan", 2024)]

    def test_fallbacks(self):
        resolver = PortfolioSizeResolver(lambda m, y: -5, default=10000)
        assert resolver.size_for("Jan", 2024) == 10000
        assert resolver.size_for("Jan", 2024, fallback=7000) == 7000
        assert resolver.size_for_date(None) == 10000

    def test_lookup_error_falls_back(self):
        def lookup(month, year):
            raise KeyError(month)

        resolver = PortfolioSizeResolver(lookup, default=10000)
        assert resolver.size_for("Mar", 2024) == 10000

    def test_month_aliases(self):
        seen = []
        resolver = PortfolioSizeResolver(lambda m, y: seen.append(m) or 1, default=10000)
        resolver.size_for("Sept", 2024)
        assert seen == ["Sep"]

    def test_no_lookup(self):
        assert PortfolioSizeResolver(default=1234).size_for("Jan", 2024) == 1234


class TestProcessTrades:
    """Test the batch pipeline"""

    def test_accepts_mappings_and_keeps_order(self):
        out = process_trades(raw_trades(), default_portfolio_size=10000, as_of=AS_OF)
        assert [r.id for r in out] == ["A", "B", "C"]
        assert [r.status for r in out] == ["Closed", "Open", "Partial"]

    def test_monthly_sizes_drive_allocation_and_cash_impact(self):
        sizes = {("Jan", 2024): 10000, ("Feb", 2024): 20000}
        out = process_trades(raw_trades(), lambda m, y: sizes.get((m, y), 0), as_of=AS_OF)
        a = out[0].metrics
        assert a.allocation == pytest.approx(10)
        assert a.accrual_pf_impact == pytest.approx(1.5)
        # latest exit in Feb
        assert a.cash_pf_impact == pytest.approx(0.75)

    def test_one_failing_trade_does_not_abort_batch(self, monkeypatch):
        real = engine.compute_metrics

        def flaky(trade, *args, **kwargs):
            if trade.id == "B":
                raise RuntimeError("boom")
            return real(trade, *args, **kwargs)

        monkeypatch.setattr(engine, "compute_metrics", flaky)
        out = process_trades(raw_trades(), default_portfolio_size=10000, as_of=AS_OF)
        assert [r.id for r in out] == ["A", "B", "C"]
        assert out[1].metrics.failed is True
        assert out[1].metrics.avg_entry == 0
        assert out[0].metrics.realized_pl == pytest.approx(150)

    def test_compute_metrics_safe_logs(self, monkeypatch, caplog):
        def broken(*args, **kwargs):
            raise ZeroDivisionError

        monkeypatch.setattr(engine, "compute_metrics", broken)
        m = compute_metrics_safe(Trade(id="X"), PortfolioSizeResolver())
        assert m.failed is True
        assert "X" in caplog.text

    def test_malformed_row_does_not_abort_batch(self):
        rows = raw_trades()
        rows[1]["user_edited_fields"] = 5
        rows[1]["pinned_metrics"] = ["not", "pairs"]
        out = process_trades(rows, default_portfolio_size=10000, as_of=AS_OF)
        assert [r.id for r in out] == ["A", "B", "C"]
        assert out[0].metrics.realized_pl == pytest.approx(150)
        assert out[1].metrics.position_size == 1000
        assert out[2].status == "Partial"

    def test_processed_trades_are_hashable(self):
        out = process_trades(raw_trades(), default_portfolio_size=10000, as_of=AS_OF)
        again = process_trades(raw_trades(), default_portfolio_size=10000, as_of=AS_OF)
        assert set(out) == set(again)

    def test_mapping_without_id_raises(self):
        with pytest.raises(ValueError):
            process_trades([{"entry_price": 100}])

    def test_referentially_transparent(self):
        first = process_trades(raw_trades(), default_portfolio_size=10000, as_of=AS_OF)
        second = process_trades(raw_trades(), default_portfolio_size=10000, as_of=AS_OF)
        assert first == second


class TestSummarize:
    """Test summaries in both bases"""

    def setup_method(self):
        self.processed = process_trades(raw_trades(), default_portfolio_size=10000, as_of=AS_OF)

    def test_realized_matches_across_bases(self):
        accrual = summarize(self.processed, 10000)
        cash = summarize(self.processed, 10000, use_cash_basis=True)
        # A: +150, C short: 5 x (200 - 180)
        assert accrual.total_realized_pl == pytest.approx(250)
        assert cash.total_realized_pl == pytest.approx(250)
        assert accrual.total_trades == cash.total_trades == 3
        assert accrual.win_rate == cash.win_rate == pytest.approx(100)

    def test_unrealized_and_exposure(self):
        s = summarize(self.processed, 10000)
        # B: 20 x 5, C short open 5: 5 x (200 - 190)
        assert s.total_unrealized_pl == pytest.approx(150)
        assert s.total_invested == pytest.approx(1000 + 1000)
        assert s.open_positions == 2

    def test_default_size_when_missing(self):
        s = summarize(self.processed, None, default_portfolio_size=5000)
        assert s.portfolio_size == 5000


class TestFrames:
    """Test DataFrame views"""

    def test_processed_to_df(self):
        processed = process_trades(raw_trades(), default_portfolio_size=10000, as_of=AS_OF)
        df = processed_to_df(processed)
        assert list(df.columns) == COLUMNS
        assert len(df) == 3
        assert df.iloc[0]['P/L Rs'] == pytest.approx(150)
        assert df.iloc[2]['Buy/Sell'] == 'Sell'

    def test_risk_free_ratio_is_nan(self):
        processed = process_trades([Trade(id="rf", entry_price=100, initial_qty=10, sl=100, cmp=110)],
                                   as_of=AS_OF)
        df = processed_to_df(processed)
        assert pd.isna(df.iloc[0]['Effective R:R'])

    def test_summary_to_df(self):
        processed = process_trades(raw_trades(), default_portfolio_size=10000, as_of=AS_OF)
        df = summary_to_df(summarize(processed, 10000))
        assert list(df.columns) == ['Metric', 'Value']
        values = dict(zip(df['Metric'], df['Value']))
        assert values['Accounting Basis'] == 'Accrual'
        assert values['Total Trades'] == 3
