# test_validator_app.py
import io

import pandas as pd
import pytest

import journal_validator_app as validator

CSV = (
    "Trade ID,Trade No,Date,Name,Buy/Sell,Entry,Initial Qty,SL,CMP,"
    "Exit1 Price,Exit1 Qty,Exit1 Date,Exit2 Price,Exit2 Qty,Exit2 Date\n"
    "A,1,2024-01-01,abc,Buy,100,10,95,,110,5,2024-01-05,120,5,2024-01-10\n"
    "B,2,2024-01-15,xyz,Buy,50,20,45,55,,,,,,\n"
)


@pytest.fixture
def client():
    validator.app.config["TESTING"] = True
    validator.last_result_df = None
    with validator.app.test_client() as c:
        yield c


class TestRunEngineOnDataFrame:
    """Test the CSV -> engine driver"""

    def test_runs_and_maps_columns(self):
        trades_df = pd.read_csv(io.StringIO(CSV))
        result_df, summary_df = validator._run_engine_on_dataframe(trades_df, 10000)
        assert list(result_df['Trade ID']) == ['A', 'B']
        assert result_df.iloc[0]['P/L Rs'] == pytest.approx(150)
        assert result_df.iloc[0]['Allocation %'] == pytest.approx(10)
        assert result_df.iloc[1]['Position Status'] == 'Open'
        values = dict(zip(summary_df['Metric'], summary_df['Value']))
        assert values['Realized P&L'] == pytest.approx(150)

    def test_cash_basis_expands_nothing_in_trade_table(self):
        trades_df = pd.read_csv(io.StringIO(CSV))
        result_df, summary_df = validator._run_engine_on_dataframe(trades_df, 10000, use_cash_basis=True)
        assert len(result_df) == 2
        values = dict(zip(summary_df['Metric'], summary_df['Value']))
        assert values['Accounting Basis'] == 'Cash'

    def test_missing_required_column(self):
        trades_df = pd.DataFrame({"Name": ["abc"], "Initial Qty": [10]})
        with pytest.raises(ValueError):
            validator._run_engine_on_dataframe(trades_df, 10000)

    def test_row_number_used_as_id(self):
        trades_df = pd.DataFrame({"entry": [100, 200], "qty": [1, 2]})
        result_df, _ = validator._run_engine_on_dataframe(trades_df, 10000)
        assert list(result_df['Trade ID']) == ['1', '2']


class TestRoutes:
    """Test the Flask routes"""

    def test_index_get(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert b"Journal Validator" in resp.data

    def test_upload_and_download(self, client):
        data = {
            "csv_file": (io.BytesIO(CSV.encode("utf-8")), "trades.csv"),
            "portfolio_size": "10,000",
            "basis": "accrual",
        }
        resp = client.post("/", data=data, content_type="multipart/form-data")
        assert resp.status_code == 200
        assert b"Portfolio Summary" in resp.data
        assert b"results-table" in resp.data

        resp = client.get("/download")
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        assert b"Trade ID" in resp.data

    def test_download_without_results(self, client):
        resp = client.get("/download")
        assert resp.status_code == 400

    def test_bad_csv_shows_error(self, client):
        data = {"csv_file": (io.BytesIO(b"foo,bar\n1,2\n"), "bad.csv")}
        resp = client.post("/", data=data, content_type="multipart/form-data")
        assert resp.status_code == 200
        assert b"Error processing file" in resp.data
