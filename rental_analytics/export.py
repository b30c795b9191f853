"""Export analytics records to pandas DataFrames and CSV files."""

import logging
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd

from .models import ForecastResult
from .pipeline import AnalyticsData

logger = logging.getLogger(__name__)


def _plain(value):
    return value.value if isinstance(value, Enum) else value


def records_to_frame(records: Iterable) -> pd.DataFrame:
    """One row per dataclass record; enum fields become their values."""
    rows = []
    for record in records:
        if not is_dataclass(record):
            raise TypeError(f"Expected a dataclass record, got {type(record).__name__}")
        rows.append({k: _plain(v) for k, v in asdict(record).items()})
    return pd.DataFrame(rows)


def forecast_to_frame(result: Optional[ForecastResult]) -> pd.DataFrame:
    """Listing forecasts plus excluded listings, with an in_portfolio flag."""
    if result is None:
        return pd.DataFrame()

    in_portfolio = set()
    if result.portfolio is not None:
        in_portfolio = {l.listing_id for l in result.portfolio.listing_forecasts}

    df = records_to_frame(result.listings)
    if not df.empty:
        df["in_portfolio"] = df["listing_id"].isin(in_portfolio)
        df["excluded_reason"] = None

    if result.excluded:
        excluded = pd.DataFrame([
            {
                "listing_id": e.listing_id,
                "listing_name": e.listing_name,
                "account_id": e.account_id,
                "in_portfolio": False,
                "excluded_reason": e.reason.describe(),
            }
            for e in result.excluded
        ])
        df = pd.concat([df, excluded], ignore_index=True)
    return df


def export_analytics(analytics: AnalyticsData, output_dir: str, view: str = "all") -> List[Path]:
    """
    Write one CSV per record type of a view, plus one per forecast currency.

    Args:
        analytics: Pipeline output
        output_dir: Directory to write into (created if missing)
        view: "all", "realized" or "upcoming"

    Returns:
        Paths of the files written
    """
    if view not in analytics.views:
        raise ValueError(f"Unknown view '{view}'; expected one of {sorted(analytics.views)}")

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    data = analytics.views[view]

    tables: Dict[str, pd.DataFrame] = {
        "listing_performance": records_to_frame(data.listing_performance),
        "portfolio_performance": records_to_frame(data.portfolio_performance),
        "cashflow": records_to_frame(data.cashflow),
        "trailing": records_to_frame(data.trailing + data.portfolio_trailing),
        "occupancy": records_to_frame(data.occupancy),
        "warnings": records_to_frame(data.warnings),
    }
    for currency, result in analytics.forecasts.items():
        tables[f"forecast_{currency.lower()}"] = forecast_to_frame(result)

    written = []
    for name, df in tables.items():
        path = out / f"{view}_{name}.csv"
        df.to_csv(path, index=False)
        logger.debug("Wrote %d rows to %s", len(df), path)
        written.append(path)
    return written
