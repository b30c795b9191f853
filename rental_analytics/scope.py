"""
Training Scope
==============
Which rows a forecast trains on, and what to do when there are too few:
- TrainingScope normalization and cache keys
- Row filtering and training metadata
- Fallback negotiation (drop the date range, or report why no forecast exists)
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import FORECAST_PARAMS, REFRESH_PARAMS, ForecastParams, RefreshParams
from .models import ForecastResult, compute_revenue_forecast
from .schema import MonthlyListingPerformance

logger = logging.getLogger(__name__)


class FallbackReason(str, Enum):
    INSUFFICIENT_DATA_IN_DATE_RANGE = "insufficient_data_in_date_range"
    INSUFFICIENT_TRAINING_DATA = "insufficient_training_data"
    INSUFFICIENT_PER_LISTING_HISTORY = "insufficient_per_listing_history"


@dataclass(frozen=True)
class TrainingScope:
    currency: str
    account_ids: Tuple[str, ...] = ()
    listing_ids: Tuple[str, ...] = ()
    date_range_start: Optional[str] = None
    date_range_end: Optional[str] = None

    @property
    def has_date_range(self) -> bool:
        return bool(self.date_range_start or self.date_range_end)


def normalize_scope(scope: TrainingScope) -> TrainingScope:
    """Sort the id lists and coalesce empty date bounds to None."""
    return TrainingScope(
        currency=scope.currency,
        account_ids=tuple(sorted(scope.account_ids)),
        listing_ids=tuple(sorted(scope.listing_ids)),
        date_range_start=scope.date_range_start or None,
        date_range_end=scope.date_range_end or None,
    )


def scope_key(scope: TrainingScope) -> str:
    """Stable string key; equal for scopes that differ only in id ordering."""
    return json.dumps(asdict(normalize_scope(scope)), sort_keys=True)


def drop_date_range(scope: TrainingScope) -> TrainingScope:
    return replace(scope, date_range_start=None, date_range_end=None)


def build_desired_scope(currency: str,
                        account_ids: Sequence[str] = (),
                        listing_ids: Sequence[str] = (),
                        date_range: Tuple[Optional[str], Optional[str]] = (None, None),
                        training_follows_date_range: bool = False) -> TrainingScope:
    """
    Build the normalized scope a dashboard selection asks for.

    The date range only narrows training when training_follows_date_range is
    set; otherwise the forecast trains on full history.
    """
    start, end = date_range if training_follows_date_range else (None, None)
    return normalize_scope(TrainingScope(
        currency=currency,
        account_ids=tuple(account_ids),
        listing_ids=tuple(listing_ids),
        date_range_start=start,
        date_range_end=end,
    ))


def filter_rows(rows: Iterable[MonthlyListingPerformance], scope: TrainingScope) -> List[MonthlyListingPerformance]:
    """Rows matching the scope; empty account/listing selections mean "all"."""
    accounts = set(scope.account_ids)
    listings = set(scope.listing_ids)
    out = []
    for row in rows:
        if row.currency != scope.currency:
            continue
        if accounts and row.account_id not in accounts:
            continue
        if listings and row.listing_id not in listings:
            continue
        if scope.date_range_start and row.month < scope.date_range_start:
            continue
        if scope.date_range_end and row.month > scope.date_range_end:
            continue
        out.append(row)
    return out


# =============================================================================
# TRAINING METADATA
# =============================================================================

@dataclass(frozen=True)
class TrainingMeta:
    row_count: int
    distinct_months: int
    listing_count: int
    start_month: Optional[str]
    end_month: Optional[str]

    def is_sufficient(self, params: RefreshParams = REFRESH_PARAMS) -> bool:
        return (
            self.row_count >= params.min_training_rows
            and self.distinct_months >= params.min_training_months
        )


def compute_meta(rows: Sequence[MonthlyListingPerformance]) -> TrainingMeta:
    months = {r.month for r in rows}
    return TrainingMeta(
        row_count=len(rows),
        distinct_months=len(months),
        listing_count=len({r.listing_id for r in rows}),
        start_month=min(months) if months else None,
        end_month=max(months) if months else None,
    )


# =============================================================================
# NEGOTIATION
# =============================================================================

@dataclass(frozen=True)
class ForecastSnapshot:
    """Outcome of one negotiated forecast; result is None when no forecast exists."""
    dataset_id: str
    desired_scope: TrainingScope
    effective_scope: TrainingScope
    used_fallback: bool
    fallback_reason: Optional[FallbackReason]
    trained_at: float
    training_meta: TrainingMeta
    result: Optional[ForecastResult] = field(default=None)


def negotiate_forecast(rows_by_currency: Mapping[str, Sequence[MonthlyListingPerformance]],
                       desired: TrainingScope,
                       dataset_id: str = "",
                       params: RefreshParams = REFRESH_PARAMS,
                       forecast_params: ForecastParams = FORECAST_PARAMS) -> ForecastSnapshot:
    """
    Train on the desired scope, falling back to full history when needed.

    Insufficiency never raises: it is reported through fallback_reason with a
    None result. Exceptions from model fitting do propagate.
    """
    desired = normalize_scope(desired)
    available = rows_by_currency.get(desired.currency, [])

    effective = desired
    rows = filter_rows(available, effective)
    meta = compute_meta(rows)
    used_fallback = False
    reason: Optional[FallbackReason] = None

    if (not meta.is_sufficient(params) and desired.has_date_range
            and params.fallback == "drop_date_range"):
        fallback_scope = drop_date_range(desired)
        fallback_rows = filter_rows(available, fallback_scope)
        fallback_meta = compute_meta(fallback_rows)
        if fallback_meta.is_sufficient(params):
            logger.info("Too little data in %s..%s; training on full history",
                        desired.date_range_start, desired.date_range_end)
            effective, rows, meta = fallback_scope, fallback_rows, fallback_meta
            used_fallback = True
            reason = FallbackReason.INSUFFICIENT_DATA_IN_DATE_RANGE

    result = None
    if not meta.is_sufficient(params):
        reason = FallbackReason.INSUFFICIENT_TRAINING_DATA
    else:
        result = compute_revenue_forecast(rows, forecast_params)
        if not result.listings:
            reason = FallbackReason.INSUFFICIENT_PER_LISTING_HISTORY
            result = None

    return ForecastSnapshot(
        dataset_id=dataset_id,
        desired_scope=desired,
        effective_scope=effective,
        used_fallback=used_fallback,
        fallback_reason=reason,
        trained_at=time.time(),
        training_meta=meta,
        result=result,
    )


def partition_by_currency(rows: Iterable[MonthlyListingPerformance]) -> Dict[str, List[MonthlyListingPerformance]]:
    by_currency: Dict[str, List[MonthlyListingPerformance]] = {}
    for row in rows:
        by_currency.setdefault(row.currency, []).append(row)
    return by_currency
