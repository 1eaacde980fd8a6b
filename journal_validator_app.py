"""
Journal Validator App
=====================
Flask web app that lets you upload a trades CSV and inspect the per-trade
metrics and portfolio summary produced by journal_engine.

Usage:
    python journal_validator_app.py
    -> open http://127.0.0.1:5000 in your browser

CSV requirements (column names are case-insensitive):
    Required : entry / entry price
               initial qty / qty / quantity
    Optional : id / trade id, trade no / trade_no, date / entry date,
               name / symbol / ticker, buy/sell / side / direction,
               pyramid1 price|qty|date, pyramid2 price|qty|date,
               exit1..3 price|qty|date, sl, tsl, cmp, position status
"""

import io
import logging
from typing import Any, Optional

import pandas as pd
from flask import Flask, render_template_string, request, send_file

from journal_engine import process_trades, summarize
from journal_engine.config import DEFAULT_PORTFOLIO_SIZE
from journal_engine.frames import processed_to_df, summary_to_df

logger = logging.getLogger(__name__)

# ---------- Flask app ----------
app = Flask(__name__)

# Module-level cache for the last computed result (used by /download)
last_result_df: Optional[pd.DataFrame] = None


# ---------- HTML template ----------
HTML_TEMPLATE = """
<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Journal Validator</title>
    <link
      href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.2/dist/css/bootstrap.min.css"
      rel="stylesheet"
    />
    <style>
      body {
        min-height: 100vh;
        background: radial-gradient(circle at top, #1f2937 0, #020617 55%, #000 100%);
        color: #e5e7eb;
      }
      .app-shell {
        max-width: 1200px;
        margin: 0 auto;
        padding: 2rem 1rem 3rem;
      }
      .card-glass {
        background: rgba(15, 23, 42, 0.9);
        border-radius: 1rem;
        border: 1px solid rgba(148, 163, 184, 0.35);
      }
      .table-wrapper {
        max-height: 70vh;
        overflow: auto;
        border-radius: 0.75rem;
        background: #020617;
      }
      .table-wrapper table td,
      .table-wrapper table th {
        padding: 0.3rem 0.5rem;
        font-size: 0.8rem;
        white-space: nowrap;
      }
      .subtitle {
        color: #9ca3af;
      }
    </style>
  </head>
  <body>
    <div class="app-shell">
      <header class="mb-4 text-center">
        <h1 class="display-6 fw-semibold text-light mb-2">Journal Validator</h1>
        <p class="subtitle mb-0">
          Upload a trades CSV and check lot matching, P&amp;L, risk and portfolio impact.
        </p>
      </header>

      <section class="mb-4">
        <div class="card-glass">
          <div class="card-body p-4">
            <form method="post" enctype="multipart/form-data" class="row gx-3 gy-1 align-items-end">
              <div class="col-md-5 col-lg-4">
                <label for="csv_file" class="form-label text-light">Trades CSV</label>
                <input class="form-control" type="file" id="csv_file" name="csv_file" accept=".csv" required />
              </div>
              <div class="col-md-3 col-lg-2">
                <label for="portfolio_size" class="form-label text-light">Portfolio Size</label>
                <input type="text" class="form-control" id="portfolio_size" name="portfolio_size"
                       value="{{ portfolio_size }}" />
              </div>
              <div class="col-md-2 col-lg-2">
                <label for="basis" class="form-label text-light">Accounting</label>
                <select class="form-select" id="basis" name="basis">
                  <option value="accrual" {% if basis == 'accrual' %}selected{% endif %}>Accrual</option>
                  <option value="cash" {% if basis == 'cash' %}selected{% endif %}>Cash</option>
                </select>
              </div>
              <div class="col-md-2 col-lg-2">
                <button class="btn btn-primary w-100" type="submit">Run Journal</button>
              </div>
            </form>
          </div>
        </div>
      </section>

      {% if error %}
        <section class="mb-3">
          <div class="alert alert-danger shadow-sm mb-0" role="alert">{{ error }}</div>
        </section>
      {% endif %}

      {% if summary_html %}
        <section class="mt-3">
          <div class="card-glass p-3">
            <h2 class="h5 text-light">Portfolio Summary</h2>
            <div class="table-wrapper">{{ summary_html | safe }}</div>
          </div>
        </section>
      {% endif %}

      {% if df_html %}
        <section class="mt-3">
          <div class="card-glass p-3">
            <div class="d-flex justify-content-between align-items-center mb-2">
              <h2 class="h5 mb-0 text-light">Trades</h2>
              <a href="{{ url_for('download_csv') }}" class="btn btn-outline-light btn-sm">Download CSV</a>
            </div>
            <div class="table-wrapper">{{ df_html | safe }}</div>
          </div>
        </section>
      {% endif %}
    </div>
  </body>
</html>
"""


# ---------- Helpers ----------

# Trade field -> accepted CSV headers (lower-cased)
COLUMN_ALIASES = {
    "id": ["id", "trade id", "trade_id"],
    "trade_no": ["trade no", "trade_no", "trade no.", "tradeno"],
    "date": ["date", "entry date", "entrydate"],
    "name": ["name", "symbol", "ticker"],
    "direction": ["buy/sell", "buysell", "side", "direction"],
    "entry_price": ["entry", "entry price", "entry_price", "entryprice"],
    "initial_qty": ["initial qty", "initial_qty", "initialqty", "qty", "quantity"],
    "pyramid1_price": ["pyramid1 price", "pyramid1_price", "p1 price"],
    "pyramid1_qty": ["pyramid1 qty", "pyramid1_qty", "p1 qty"],
    "pyramid1_date": ["pyramid1 date", "pyramid1_date", "p1 date"],
    "pyramid2_price": ["pyramid2 price", "pyramid2_price", "p2 price"],
    "pyramid2_qty": ["pyramid2 qty", "pyramid2_qty", "p2 qty"],
    "pyramid2_date": ["pyramid2 date", "pyramid2_date", "p2 date"],
    "exit1_price": ["exit1 price", "exit1_price", "e1 price"],
    "exit1_qty": ["exit1 qty", "exit1_qty", "e1 qty"],
    "exit1_date": ["exit1 date", "exit1_date", "e1 date"],
    "exit2_price": ["exit2 price", "exit2_price", "e2 price"],
    "exit2_qty": ["exit2 qty", "exit2_qty", "e2 qty"],
    "exit2_date": ["exit2 date", "exit2_date", "e2 date"],
    "exit3_price": ["exit3 price", "exit3_price", "e3 price"],
    "exit3_qty": ["exit3 qty", "exit3_qty", "e3 qty"],
    "exit3_date": ["exit3 date", "exit3_date", "e3 date"],
    "sl": ["sl", "stop", "stop loss"],
    "tsl": ["tsl", "trailing stop"],
    "cmp": ["cmp", "current price", "ltp"],
    "position_status": ["position status", "position_status", "status"],
}

REQUIRED_FIELDS = {"entry_price", "initial_qty"}


def _get_col(cols: dict, candidates: list, required: bool = True, label: Optional[str] = None):
    """Return the first matching column name from candidates (case-insensitive lookup)."""
    label = label or ",".join(candidates)
    for cand in candidates:
        key = str(cand).lower()
        if key in cols:
            return cols[key]
    if required:
        raise ValueError(
            f"CSV must contain column(s) {candidates} for '{label}' (case-insensitive). "
            f"Found: {list(cols.values())}"
        )
    return None


def _cell(value: Any) -> Any:
    """NaN cells become None so the engine sees them as absent."""
    if isinstance(value, float) and pd.isna(value):
        return None
    return value


def _parse_portfolio_size(raw: str) -> float:
    try:
        cleaned = raw.replace(",", "").strip()
        size = float(cleaned) if cleaned else DEFAULT_PORTFOLIO_SIZE
    except ValueError:
        return DEFAULT_PORTFOLIO_SIZE
    return size if size > 0 else DEFAULT_PORTFOLIO_SIZE


# ---------- Core driver ----------

def _run_engine_on_dataframe(trades: pd.DataFrame, portfolio_size: float,
                             use_cash_basis: bool = False):
    """
    Feed a trades DataFrame through journal_engine.

    Every row is one trade. Rows without an id column get their 1-based row
    number as id.

    Returns:
        (trades_df, summary_df)
    """
    cols = {str(c).strip().lower(): c for c in trades.columns}
    mapping = {
        field: _get_col(cols, aliases, required=field in REQUIRED_FIELDS, label=field)
        for field, aliases in COLUMN_ALIASES.items()
    }

    records = []
    for i, (_, row) in enumerate(trades.iterrows(), start=1):
        record = {
            field: _cell(row[col])
            for field, col in mapping.items()
            if col is not None
        }
        if record.get("id") is None:
            record["id"] = str(i)
        records.append(record)

    processed = process_trades(
        records,
        default_portfolio_size=portfolio_size,
        use_cash_basis=use_cash_basis,
    )
    summary = summarize(processed, portfolio_size, use_cash_basis=use_cash_basis)
    logger.info("Validated %d trades (%s basis)", len(processed), "cash" if use_cash_basis else "accrual")
    return processed_to_df(processed), summary_to_df(summary)


# ---------- Routes ----------

@app.route("/", methods=["GET", "POST"])
def index():
    df_html = None
    summary_html = None
    error: Optional[str] = None
    portfolio_size = DEFAULT_PORTFOLIO_SIZE
    basis = "accrual"
    global last_result_df

    if request.method == "POST":
        file = request.files.get("csv_file")
        portfolio_size = _parse_portfolio_size(request.form.get("portfolio_size", ""))
        basis = "cash" if request.form.get("basis") == "cash" else "accrual"

        if not file or file.filename == "":
            error = "Please select a CSV file."
        else:
            try:
                content = file.read()
                trades_df = pd.read_csv(io.BytesIO(content))
                result_df, summary_df = _run_engine_on_dataframe(
                    trades_df, portfolio_size, use_cash_basis=(basis == "cash"),
                )
                last_result_df = result_df
                df_html = result_df.to_html(
                    classes="table table-striped table-sm table-dark",
                    border=0,
                    index=False,
                    table_id="results-table",
                )
                summary_html = summary_df.to_html(
                    classes="table table-sm table-dark",
                    border=0,
                    index=False,
                )
            except Exception as exc:
                logger.exception("Validator run failed")
                error = f"Error processing file: {exc}"

    return render_template_string(
        HTML_TEMPLATE,
        df_html=df_html,
        summary_html=summary_html,
        error=error,
        portfolio_size=portfolio_size,
        basis=basis,
    )


@app.route("/download", methods=["GET"])
def download_csv():
    """Download the last computed trade metrics as a CSV file."""
    if last_result_df is None or last_result_df.empty:
        return "No journal results to download. Please run the journal first.", 400

    csv_buffer = io.StringIO()
    last_result_df.to_csv(csv_buffer, index=False)
    csv_bytes = csv_buffer.getvalue().encode("utf-8")

    return send_file(
        io.BytesIO(csv_bytes),
        mimetype="text/csv",
        as_attachment=True,
        download_name="journal_results.csv",
    )


# ---------- Entry point ----------

if __name__ == "__main__":
    from werkzeug.serving import run_simple

    logging.basicConfig(level=logging.INFO)
    run_simple(
        "127.0.0.1",
        5000,
        app,
        use_reloader=True,
        use_debugger=True,
    )
