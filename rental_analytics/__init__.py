"""
Rental Portfolio Analytics
==========================
Financial analytics for short-term rental portfolios: month allocation of
stays, listing and portfolio performance, cashflow, trailing comparisons,
estimated occupancy, and ridge-regression revenue forecasts with a
coalescing background refresh.

Modules:
- config: Constants and parameter dataclasses
- schema: Money, YearMonth helpers, canonical transactions, monthly records
- allocation: Largest-remainder month allocation
- aggregation: Listing/portfolio performance and cashflow
- analysis: Trailing comparison and estimated occupancy
- models: Per-listing revenue forecasts and portfolio roll-up
- scope: Training scope negotiation with fallback
- refresh: Background forecast worker and refresh coordinator
- pipeline: End-to-end analytics over a batch of transactions
- data_simulator: Synthetic portfolio data
- export: DataFrame and CSV export
"""

__version__ = "1.0.0"
__author__ = "Rental Analytics Team"

from .config import (
    ALLOCATION_PARAMS,
    FORECAST_PARAMS,
    OCCUPANCY_PARAMS,
    REFRESH_PARAMS,
    AllocationParams,
    ForecastParams,
    OccupancyParams,
    RefreshParams,
)

from .schema import (
    CanonicalTransaction,
    DatasetKind,
    ListingRef,
    Money,
    StayWindow,
    TransactionKind,
)

from .allocation import (
    allocate_performance_to_months,
    allocate_transaction,
    largest_remainder_distribute,
)

from .aggregation import (
    compute_monthly_cashflow,
    compute_monthly_listing_performance,
    compute_monthly_portfolio_performance,
)

from .analysis import (
    OccupancyEstimator,
    TrailingComparator,
    compute_estimated_occupancy,
    compute_trailing_comparisons,
    infer_listing_service_ranges,
)

from .models import (
    ForecastResult,
    ListingRevenueForecaster,
    build_portfolio,
    compute_revenue_forecast,
    restrict_forecast,
)

from .scope import (
    FallbackReason,
    TrainingScope,
    build_desired_scope,
    negotiate_forecast,
    normalize_scope,
)

from .refresh import (
    ForecastRefreshCoordinator,
    ForecastWorker,
    RefreshStatus,
)

from .pipeline import (
    AnalyticsData,
    compute_analytics,
)

from .data_simulator import (
    RentalPortfolioSimulator,
    generate_sample_transactions,
)

__all__ = [
    # Config
    "ALLOCATION_PARAMS",
    "FORECAST_PARAMS",
    "OCCUPANCY_PARAMS",
    "REFRESH_PARAMS",
    "AllocationParams",
    "ForecastParams",
    "OccupancyParams",
    "RefreshParams",
    # Schema
    "CanonicalTransaction",
    "DatasetKind",
    "ListingRef",
    "Money",
    "StayWindow",
    "TransactionKind",
    # Allocation & aggregation
    "allocate_performance_to_months",
    "allocate_transaction",
    "largest_remainder_distribute",
    "compute_monthly_cashflow",
    "compute_monthly_listing_performance",
    "compute_monthly_portfolio_performance",
    # Analysis
    "OccupancyEstimator",
    "TrailingComparator",
    "compute_estimated_occupancy",
    "compute_trailing_comparisons",
    "infer_listing_service_ranges",
    # Forecasting
    "ForecastResult",
    "ListingRevenueForecaster",
    "build_portfolio",
    "compute_revenue_forecast",
    "restrict_forecast",
    "FallbackReason",
    "TrainingScope",
    "build_desired_scope",
    "negotiate_forecast",
    "normalize_scope",
    "ForecastRefreshCoordinator",
    "ForecastWorker",
    "RefreshStatus",
    # Pipeline & data
    "AnalyticsData",
    "compute_analytics",
    "RentalPortfolioSimulator",
    "generate_sample_transactions",
]
