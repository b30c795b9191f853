from dataclasses import dataclass

PERFORMANCE_KINDS = ("reservation", "adjustment", "resolution_adjustment", "cancellation_fee")
CASHFLOW_KINDS = ("payout", "resolution_payout")

DATASET_KINDS = {"paid": "Realized", "upcoming": "Upcoming / unfulfilled"}

REVENUE_METRICS = {
    "net_revenue_minor": "Net revenue",
    "gross_revenue_minor": "Gross revenue",
}

@dataclass
class AllocationParams:
    # Kinds whose nights count towards booked nights
    night_bearing_kinds: tuple = ("reservation",)
    derive_service_fee_from_gross: bool = True

ALLOCATION_PARAMS = AllocationParams()

@dataclass
class OccupancyParams:
    label: str = "Estimated Occupancy (Assumption-Based)"
    disclaimer: str = "booked nights / (days_in_month * listings_in_service); not true occupancy"
    rate_decimals: int = 4

OCCUPANCY_PARAMS = OccupancyParams()

@dataclass
class ForecastParams:
    min_training_months: int = 3
    ridge_alpha: float = 1.0
    # leave-one-out alpha search once a listing has loo_min_samples months
    alpha_candidates: tuple = (0.1, 1.0, 10.0, 100.0)
    loo_min_samples: int = 5
    band_multiplier: float = 1.0
    seasonal_min_months: int = 12
    high_min_months: int = 12
    high_max_relative_mae: float = 0.15
    medium_min_months: int = 6
    medium_max_relative_mae: float = 0.35

FORECAST_PARAMS = ForecastParams()

@dataclass
class RefreshParams:
    min_training_rows: int = 3
    min_training_months: int = 3
    fallback: str = "drop_date_range"  # or "none"
    debounce_seconds: float = 0.4
    cache_size: int = 5
    auto_refresh: bool = True

REFRESH_PARAMS = RefreshParams()

PROTOCOL_VERSION = 1

SIMULATION_DEFAULTS = {
    "listings": 4,
    "accounts": 2,
    "months": 18,
    "currency": "USD",
    "base_nightly_rate_minor": 14_000,
    "service_fee_pct": 0.03,
    "cleaning_fee_minor": 6_000,
    "adjustment_prob": 0.08,
    "cancellation_prob": 0.04,
    "unattributed_payout_prob": 0.15,
    "upcoming_months": 2,
}
