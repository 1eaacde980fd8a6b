"""Engine defaults. Every value can be overridden from the environment."""

from __future__ import annotations

import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


# ---------- Portfolio size ----------

# Used whenever the portfolio-size lookup yields nothing usable (<= 0, error, no date)
DEFAULT_PORTFOLIO_SIZE = _env_float("JOURNAL_DEFAULT_PORTFOLIO_SIZE", 100000.0)

# ---------- Lots ----------

ENTRY_LOT_LABELS = ("Initial Entry", "Pyramid 1", "Pyramid 2")
EXIT_LOT_LABELS = ("Exit 1", "Exit 2", "Exit 3")

# ---------- Risk ----------

GAP_DOWN_PERCENTAGES = (1, 2, 3, 4, 5, 7, 10, 15, 20)

# Metrics a user may pin through an edit; pinned values replace recomputation
PINNABLE_METRICS = frozenset({"position_size", "allocation", "stop_loss_pct"})

# ---------- Dates ----------

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
                "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

MONTH_ALIASES = {
    "Sept": "Sep",
    "January": "Jan",
    "February": "Feb",
    "March": "Mar",
    "April": "Apr",
    "June": "Jun",
    "July": "Jul",
    "August": "Aug",
    "September": "Sep",
    "October": "Oct",
    "November": "Nov",
    "December": "Dec",
}

DATE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M:%S",
]

# Rows processed between debug timing logs in the batch pipeline
BATCH_LOG_EVERY = _env_int("JOURNAL_BATCH_LOG_EVERY", 500)
