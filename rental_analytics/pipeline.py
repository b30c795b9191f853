"""
Analytics Pipeline
==================
Runs every stage over one batch of canonical transactions and returns the
results split into three views: all rows, realized (paid) rows and upcoming
rows. Optionally fits per-currency forecasts on the realized view.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .aggregation import (
    compute_monthly_cashflow,
    compute_monthly_listing_performance,
    compute_monthly_portfolio_performance,
)
from .allocation import allocate_performance_to_months
from .analysis import compute_estimated_occupancy, compute_trailing_comparisons, infer_listing_service_ranges
from .config import FORECAST_PARAMS, ForecastParams
from .models import ForecastResult, compute_revenue_forecast
from .schema import (
    AllocationWarning,
    CanonicalTransaction,
    DatasetKind,
    EstimatedOccupancy,
    ListingServiceRange,
    MonthlyCashflow,
    MonthlyListingPerformance,
    MonthlyPortfolioPerformance,
    TrailingComparison,
)
from .scope import partition_by_currency

logger = logging.getLogger(__name__)


@dataclass
class ViewData:
    listing_performance: List[MonthlyListingPerformance] = field(default_factory=list)
    portfolio_performance: List[MonthlyPortfolioPerformance] = field(default_factory=list)
    cashflow: List[MonthlyCashflow] = field(default_factory=list)
    trailing: List[TrailingComparison] = field(default_factory=list)
    portfolio_trailing: List[TrailingComparison] = field(default_factory=list)
    occupancy: List[EstimatedOccupancy] = field(default_factory=list)
    warnings: List[AllocationWarning] = field(default_factory=list)


@dataclass
class ListingSummary:
    listing_id: str
    listing_name: str
    account_id: str
    transaction_count: int


@dataclass
class AnalyticsData:
    transactions: List[CanonicalTransaction]
    currency: str
    currencies: List[str]
    account_ids: List[str]
    listings: List[ListingSummary]
    listing_names: Dict[str, str]
    service_ranges: List[ListingServiceRange]
    views: Dict[str, ViewData]
    forecasts: Dict[str, ForecastResult] = field(default_factory=dict)


def compute_view(transactions: List[CanonicalTransaction],
                 listing_names: Optional[Dict[str, str]] = None) -> ViewData:
    """All per-view analytics for one subset of transactions."""
    if not transactions:
        return ViewData()

    allocation = allocate_performance_to_months(transactions)
    listing_performance = compute_monthly_listing_performance(allocation.slices, listing_names)
    portfolio_performance = compute_monthly_portfolio_performance(listing_performance)
    service_ranges = infer_listing_service_ranges(transactions)

    return ViewData(
        listing_performance=listing_performance,
        portfolio_performance=portfolio_performance,
        cashflow=compute_monthly_cashflow(transactions),
        trailing=compute_trailing_comparisons(listing_performance),
        portfolio_trailing=compute_trailing_comparisons(portfolio_performance),
        occupancy=compute_estimated_occupancy(listing_performance, service_ranges),
        warnings=allocation.warnings,
    )


def compute_forecasts(listing_performance: List[MonthlyListingPerformance],
                      params: ForecastParams = FORECAST_PARAMS) -> Dict[str, ForecastResult]:
    """One forecast per currency; currencies with no forecastable listing are left out."""
    forecasts = {}
    for currency, rows in sorted(partition_by_currency(listing_performance).items()):
        result = compute_revenue_forecast(rows, params)
        if result.listings:
            forecasts[currency] = result
    return forecasts


def compute_analytics(transactions: Iterable[CanonicalTransaction],
                      compute_ml_forecasts: bool = True,
                      forecast_params: ForecastParams = FORECAST_PARAMS) -> AnalyticsData:
    """
    Run the full pipeline.

    Args:
        transactions: Canonical transactions from an importer
        compute_ml_forecasts: Fit per-currency forecasts on the realized view
        forecast_params: Model parameters

    Returns:
        AnalyticsData with views "all", "realized" and "upcoming"
    """
    transactions = list(transactions)

    listing_names: Dict[str, str] = {}
    listings: Dict[str, ListingSummary] = {}
    tx_counts: Counter = Counter()
    currency_counts: Counter = Counter()
    for tx in transactions:
        currency_counts[tx.currency] += 1
        if tx.listing is None:
            continue
        ref = tx.listing
        listing_names[ref.listing_id] = ref.listing_name or ref.listing_id
        tx_counts[ref.listing_id] += 1
        if ref.listing_id not in listings:
            listings[ref.listing_id] = ListingSummary(
                ref.listing_id, ref.listing_name or ref.listing_id, ref.account_id, 0
            )
    for listing_id, summary in listings.items():
        summary.transaction_count = tx_counts[listing_id]

    # most frequent currency, alphabetical among equals
    primary = min(currency_counts, key=lambda c: (-currency_counts[c], c)) if currency_counts else "USD"

    paid = [tx for tx in transactions if tx.dataset_kind == DatasetKind.PAID]
    upcoming = [tx for tx in transactions if tx.dataset_kind == DatasetKind.UPCOMING]

    views = {
        "all": compute_view(transactions, listing_names),
        "realized": compute_view(paid, listing_names),
        "upcoming": compute_view(upcoming, listing_names),
    }

    forecasts = {}
    if compute_ml_forecasts:
        forecasts = compute_forecasts(views["realized"].listing_performance, forecast_params)

    logger.info("Analytics computed: %d transactions, %d listings, %d forecast currency(ies)",
                len(transactions), len(listings), len(forecasts))

    return AnalyticsData(
        transactions=transactions,
        currency=primary,
        currencies=sorted(currency_counts),
        account_ids=sorted({s.account_id for s in listings.values()}),
        listings=sorted(listings.values(), key=lambda s: (-s.transaction_count, s.listing_name)),
        listing_names=listing_names,
        service_ranges=infer_listing_service_ranges(transactions),
        views=views,
        forecasts=forecasts,
    )
