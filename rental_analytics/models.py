"""
Forecasting Models
==================
Next-month gross revenue forecast per listing:
- One ridge regression (scikit-learn) per listing with enough history, its
  penalty picked by leave-one-out search once the series is long enough
- Confidence band of +/- k * MAE and a high/medium/low tier
- Portfolio roll-up over the largest group of listings sharing a target month

Features per listing: calendar month index since the listing's first training
month, plus month-of-year sin/cos once the listing has a year of history.
"""

import logging
import math
import warnings
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.linear_model import Ridge
from sklearn.metrics import mean_absolute_error
from sklearn.model_selection import GridSearchCV, LeaveOneOut
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler

from .config import FORECAST_PARAMS, ForecastParams
from .schema import MonthlyListingPerformance, months_between, next_month

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================

class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ExclusionReason:
    """Base of the exclusion reasons; each subclass carries its own parameters."""
    code: ClassVar[str] = "excluded"

    def describe(self) -> str:
        return self.code


@dataclass(frozen=True)
class TooFewMonths(ExclusionReason):
    months_available: int
    min_months: int
    code: ClassVar[str] = "too_few_months"

    def describe(self) -> str:
        return f"Only {self.months_available} month(s) of history (need at least {self.min_months})"


@dataclass(frozen=True)
class ExcludedListing:
    listing_id: str
    listing_name: str
    account_id: str
    reason: ExclusionReason

    @property
    def reason_code(self) -> str:
        return self.reason.code


@dataclass(frozen=True)
class ListingForecast:
    listing_id: str
    listing_name: str
    account_id: str
    currency: str
    target_month: str
    forecast_gross_revenue_minor: int
    mae_minor: int
    lower_bound_minor: int
    upper_bound_minor: int
    confidence: ConfidenceTier
    training_months: int


@dataclass(frozen=True)
class PortfolioForecast:
    target_month: str
    currency: str
    forecast_gross_revenue_minor: int
    lower_bound_minor: int
    upper_bound_minor: int
    total_mae_minor: int
    listing_forecasts: Tuple[ListingForecast, ...]
    # forecast listings left out because they target another month
    omitted_listing_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ForecastResult:
    portfolio: Optional[PortfolioForecast]
    listings: List[ListingForecast] = field(default_factory=list)
    excluded: List[ExcludedListing] = field(default_factory=list)


# =============================================================================
# PER-LISTING MODEL
# =============================================================================

def classify_confidence(training_months: int, mae: float, forecast: float,
                        params: ForecastParams = FORECAST_PARAMS) -> ConfidenceTier:
    """More months and a lower MAE relative to the forecast give a higher tier."""
    relative_mae = mae / forecast if forecast > 0 else math.inf
    if training_months >= params.high_min_months and relative_mae <= params.high_max_relative_mae:
        return ConfidenceTier.HIGH
    if training_months >= params.medium_min_months and relative_mae <= params.medium_max_relative_mae:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


class ListingRevenueForecaster:
    """
    Ridge regression over one listing's monthly gross revenue series.

    Usage:
        model = ListingRevenueForecaster().fit(history)
        value = model.predict()
    """

    def __init__(self, params: ForecastParams = FORECAST_PARAMS):
        self.params = params
        self.model = None
        self.is_fitted = False
        self.training_data = None
        self.first_month = None
        self.seasonal = False
        self.alpha = None
        self.mae = None

    def prepare_data(self, history: Iterable[MonthlyListingPerformance]) -> pd.DataFrame:
        """One row per distinct month, chronologically sorted."""
        df = pd.DataFrame({
            "month": [r.month for r in history],
            "gross_revenue_minor": [r.gross_revenue_minor for r in history],
        })
        df = df.groupby("month", sort=True, as_index=False)["gross_revenue_minor"].sum()
        self.training_data = df
        self.first_month = df["month"].iloc[0]
        return df

    def _features(self, months: Sequence[str]) -> np.ndarray:
        index = np.array([months_between(self.first_month, m) for m in months], dtype=float)
        if not self.seasonal:
            return index.reshape(-1, 1)
        month_of_year = np.array([int(m[5:7]) for m in months], dtype=float)
        return np.column_stack([
            index,
            np.sin(2 * np.pi * month_of_year / 12),
            np.cos(2 * np.pi * month_of_year / 12),
        ])

    def _select_alpha(self, X: np.ndarray, y: np.ndarray) -> float:
        """
        Pick the ridge penalty with the lowest leave-one-out MAE.

        The scaler is refit inside every fold. Short series keep
        params.ridge_alpha; equal scores go to the earlier candidate.
        """
        candidates = list(self.params.alpha_candidates)
        if len(y) < self.params.loo_min_samples or not candidates:
            return self.params.ridge_alpha

        search = GridSearchCV(
            make_pipeline(StandardScaler(), Ridge()),
            {"ridge__alpha": candidates},
            scoring="neg_mean_absolute_error",
            cv=LeaveOneOut(),
            refit=False,
        )
        search.fit(X, y)
        alpha = float(search.best_params_["ridge__alpha"])
        logger.debug("Selected ridge alpha %s from %s", alpha, candidates)
        return alpha

    def fit(self, history: Iterable[MonthlyListingPerformance]) -> "ListingRevenueForecaster":
        df = self.prepare_data(list(history))
        self.seasonal = len(df) >= self.params.seasonal_min_months

        X = self._features(df["month"].tolist())
        y = df["gross_revenue_minor"].to_numpy(dtype=float)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            self.alpha = self._select_alpha(X, y)
            self.model = make_pipeline(StandardScaler(), Ridge(alpha=self.alpha))
            self.model.fit(X, y)
            fitted = self.model.predict(X)

        self.mae = float(mean_absolute_error(y, fitted))
        self.is_fitted = True
        return self

    @property
    def target_month(self) -> str:
        return next_month(self.training_data["month"].iloc[-1])

    def predict(self) -> float:
        """Predicted gross revenue for the month after the last training month."""
        if not self.is_fitted:
            raise ValueError("Model not fitted. Call fit() first.")
        X = self._features([self.target_month])
        return float(self.model.predict(X)[0])


def forecast_listing(history: List[MonthlyListingPerformance],
                     params: ForecastParams = FORECAST_PARAMS) -> ListingForecast:
    """Fit one listing's model and turn its prediction into a banded forecast."""
    model = ListingRevenueForecaster(params).fit(history)
    raw = model.predict()
    forecast = max(0, int(round(raw))) if math.isfinite(raw) else 0
    mae = int(round(model.mae))
    band = int(round(params.band_multiplier * mae))
    latest = max(history, key=lambda r: r.month)
    training_months = len(model.training_data)

    return ListingForecast(
        listing_id=latest.listing_id,
        listing_name=latest.listing_name,
        account_id=latest.account_id,
        currency=latest.currency,
        target_month=model.target_month,
        forecast_gross_revenue_minor=forecast,
        mae_minor=mae,
        lower_bound_minor=max(0, forecast - band),
        upper_bound_minor=forecast + band,
        confidence=classify_confidence(training_months, mae, forecast, params),
        training_months=training_months,
    )


# =============================================================================
# PORTFOLIO
# =============================================================================

def build_portfolio(listings: Sequence[ListingForecast]) -> Optional[PortfolioForecast]:
    """
    Roll listing forecasts up into one portfolio forecast.

    Only the largest group of listings sharing a target month is summed (the
    earliest month wins a tie); listings targeting other months are reported
    in omitted_listing_ids.
    """
    if not listings:
        return None

    groups: Dict[str, List[ListingForecast]] = defaultdict(list)
    for listing in listings:
        groups[listing.target_month].append(listing)

    target_month = min(groups, key=lambda m: (-len(groups[m]), m))
    chosen = groups[target_month]

    return PortfolioForecast(
        target_month=target_month,
        currency=chosen[0].currency,
        forecast_gross_revenue_minor=sum(l.forecast_gross_revenue_minor for l in chosen),
        lower_bound_minor=sum(l.lower_bound_minor for l in chosen),
        upper_bound_minor=sum(l.upper_bound_minor for l in chosen),
        total_mae_minor=sum(l.mae_minor for l in chosen),
        listing_forecasts=tuple(chosen),
        omitted_listing_ids=tuple(l.listing_id for l in listings if l.target_month != target_month),
    )


def compute_revenue_forecast(rows: Iterable[MonthlyListingPerformance],
                             params: ForecastParams = FORECAST_PARAMS) -> ForecastResult:
    """
    Forecast next-month gross revenue for every eligible listing.

    Rows must already be restricted to one currency (and to the wanted
    accounts, listings and dates). Listings with fewer than
    params.min_training_months distinct months are excluded with a reason.
    """
    rows = list(rows)
    currencies = {r.currency for r in rows}
    if len(currencies) > 1:
        raise ValueError(f"Forecast input must be single-currency, got {sorted(currencies)}")

    by_listing: Dict[str, List[MonthlyListingPerformance]] = defaultdict(list)
    for row in rows:
        by_listing[row.listing_id].append(row)

    listings: List[ListingForecast] = []
    excluded: List[ExcludedListing] = []
    for listing_id in sorted(by_listing):
        history = by_listing[listing_id]
        months_available = len({r.month for r in history})
        if months_available < params.min_training_months:
            latest = max(history, key=lambda r: r.month)
            excluded.append(ExcludedListing(
                listing_id=listing_id,
                listing_name=latest.listing_name,
                account_id=latest.account_id,
                reason=TooFewMonths(months_available, params.min_training_months),
            ))
            continue
        listings.append(forecast_listing(history, params))

    logger.debug("Forecast %d listing(s), excluded %d", len(listings), len(excluded))
    return ForecastResult(portfolio=build_portfolio(listings), listings=listings, excluded=excluded)


def restrict_forecast(result: Optional[ForecastResult],
                      account_ids: Sequence[str] = (),
                      listing_ids: Sequence[str] = (),
                      date_range: Tuple[Optional[str], Optional[str]] = (None, None)
                      ) -> Optional[ForecastResult]:
    """
    Narrow a forecast to a selection and rebuild its portfolio.

    Empty account/listing selections mean "all". The date range bounds the
    target month. Returns None when nothing forecast remains.
    """
    if result is None or not result.listings:
        return None

    accounts = set(account_ids)
    wanted = set(listing_ids)
    start, end = date_range

    def selected(item) -> bool:
        if accounts and item.account_id not in accounts:
            return False
        return not wanted or item.listing_id in wanted

    listings = [
        l for l in result.listings
        if selected(l)
        and (start is None or l.target_month >= start)
        and (end is None or l.target_month <= end)
    ]
    if not listings:
        return None

    return ForecastResult(
        portfolio=build_portfolio(listings),
        listings=listings,
        excluded=[e for e in result.excluded if selected(e)],
    )
