"""
Analysis Module
===============
Derived metrics over monthly performance records:
- Trailing comparison (latest month vs. average of all earlier months)
- Listing service ranges and estimated occupancy
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import OCCUPANCY_PARAMS, REVENUE_METRICS, OccupancyParams
from .schema import (
    CanonicalTransaction,
    EstimatedOccupancy,
    ListingServiceRange,
    MonthlyListingPerformance,
    TrailingComparison,
    days_in_month,
    month_range,
    parse_date,
)

logger = logging.getLogger(__name__)

METRIC_ALIASES = {"net": "net_revenue_minor", "gross": "gross_revenue_minor"}


def round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up; denominator must be positive."""
    return (2 * numerator + denominator) // (2 * denominator)


# =============================================================================
# TRAILING COMPARISON
# =============================================================================

class TrailingComparator:
    """
    Compares each series' latest month with the average of its earlier months.

    Works over listing records (one series per listing and currency) or
    portfolio records (one series per currency). A series with a single month
    yields no comparison. When the trailing average is zero the percentage
    delta is None while the absolute delta is still reported.
    """

    def __init__(self, metric: str = "net_revenue_minor"):
        metric = METRIC_ALIASES.get(metric, metric)
        if metric not in REVENUE_METRICS:
            raise ValueError(f"Unknown metric '{metric}'; expected one of {sorted(REVENUE_METRICS)}")
        self.metric = metric

    def _series(self, records: Iterable) -> Dict[Tuple[Optional[str], str], Dict[str, int]]:
        series: Dict[Tuple[Optional[str], str], Dict[str, int]] = defaultdict(dict)
        for record in records:
            key = (getattr(record, "listing_id", None), record.currency)
            months = series[key]
            months[record.month] = months.get(record.month, 0) + getattr(record, self.metric)
        return series

    def compare(self, records: Iterable) -> List[TrailingComparison]:
        results = []
        for (listing_id, currency), months in self._series(records).items():
            ordered = sorted(months)
            if len(ordered) < 2:
                continue

            latest = ordered[-1]
            prior = ordered[:-1]
            current = months[latest]
            trailing_average = round_half_up(sum(months[m] for m in prior), len(prior))
            delta = current - trailing_average
            delta_pct = (
                round(delta / abs(trailing_average), 4) if trailing_average != 0 else None
            )

            results.append(TrailingComparison(
                month=latest,
                currency=currency,
                listing_id=listing_id,
                metric=self.metric,
                current_minor=current,
                trailing_average_minor=trailing_average,
                trailing_months=len(prior),
                delta_minor=delta,
                delta_pct=delta_pct,
                label=f"{REVENUE_METRICS[self.metric]} vs trailing {len(prior)}-month average",
            ))

        results.sort(key=lambda c: (c.month, c.currency, c.listing_id or ""))
        return results


def compute_trailing_comparisons(records: Iterable,
                                 metrics: Sequence[str] = ("net_revenue_minor", "gross_revenue_minor")
                                 ) -> List[TrailingComparison]:
    """Run the trailing comparator for each requested metric."""
    records = list(records)
    results = []
    for metric in metrics:
        results.extend(TrailingComparator(metric).compare(records))
    results.sort(key=lambda c: (c.month, c.currency, c.listing_id or "", c.metric))
    return results


# =============================================================================
# OCCUPANCY
# =============================================================================

def _activity_dates(tx: CanonicalTransaction) -> List:
    if tx.stay is not None:
        try:
            check_in = parse_date(tx.stay.check_in_date)
            check_out = parse_date(tx.stay.check_out_date)
        except ValueError:
            check_in = check_out = None
        if check_in is not None and check_out > check_in:
            # check-out is exclusive: the last active day is the night before
            return [check_in, check_out - timedelta(days=1)]
    try:
        return [parse_date(tx.occurred_date)]
    except ValueError:
        return []


def infer_listing_service_ranges(transactions: Iterable[CanonicalTransaction]) -> List[ListingServiceRange]:
    """
    Infer the in-service span of each (listing, currency) from its activity.

    The span runs from the earliest to the latest date observed on the
    listing's performance transactions (stay nights, otherwise occurrence date).
    """
    spans: Dict[Tuple[str, str], List] = {}
    for tx in transactions:
        if tx.listing is None or not tx.kind.is_performance:
            continue
        dates = _activity_dates(tx)
        if not dates:
            continue
        key = (tx.listing.listing_id, tx.currency)
        span = spans.get(key)
        if span is None:
            spans[key] = [min(dates), max(dates)]
        else:
            span[0] = min(span[0], *dates)
            span[1] = max(span[1], *dates)

    return [
        ListingServiceRange(
            listing_id=listing_id,
            currency=currency,
            first_active_date=first.isoformat(),
            last_active_date=last.isoformat(),
        )
        for (listing_id, currency), (first, last) in sorted(spans.items())
    ]


@dataclass
class _MonthBucket:
    booked_nights: int = 0
    capped_nights: int = 0
    listings_with_nights: int = 0


class OccupancyEstimator:
    """
    Estimated occupancy = capped booked nights / (days in month x listings in service).

    Each listing-month contributes at most the month's day count, so duplicate
    or overlapping source rows cannot push a listing past 100%. Months whose
    capped nights sum to zero get a None rate: "unknown", not "vacant".
    """

    def __init__(self, params: OccupancyParams = OCCUPANCY_PARAMS):
        self.params = params

    @staticmethod
    def listings_in_service(service_ranges: Iterable[ListingServiceRange]) -> Dict[Tuple[str, str], int]:
        counts: Dict[Tuple[str, str], int] = defaultdict(int)
        for r in service_ranges:
            for month in month_range(r.first_active_date[:7], r.last_active_date[:7]):
                counts[(month, r.currency)] += 1
        return counts

    def estimate(self, listing_performance: Iterable[MonthlyListingPerformance],
                 service_ranges: Iterable[ListingServiceRange]) -> List[EstimatedOccupancy]:
        nights_by_listing: Dict[Tuple[str, str, str], int] = defaultdict(int)
        for lp in listing_performance:
            nights_by_listing[(lp.month, lp.currency, lp.listing_id)] += lp.booked_nights

        buckets: Dict[Tuple[str, str], _MonthBucket] = defaultdict(_MonthBucket)
        for (month, currency, _), nights in nights_by_listing.items():
            bucket = buckets[(month, currency)]
            bucket.booked_nights += nights
            capped = min(max(nights, 0), days_in_month(month))
            bucket.capped_nights += capped
            if capped > 0:
                bucket.listings_with_nights += 1

        in_service = self.listings_in_service(service_ranges)

        results = []
        for (month, currency), bucket in sorted(buckets.items()):
            days = days_in_month(month)
            # a listing with nights in the month is in service that month
            listings = max(in_service.get((month, currency), 0), bucket.listings_with_nights)
            if bucket.capped_nights == 0 or listings == 0:
                rate = None
            else:
                rate = round(bucket.capped_nights / (days * listings), self.params.rate_decimals)

            results.append(EstimatedOccupancy(
                month=month,
                currency=currency,
                booked_nights=bucket.booked_nights,
                capped_booked_nights=bucket.capped_nights,
                days_in_month=days,
                listings_in_service=listings,
                estimated_occupancy_rate=rate,
                label=self.params.label,
                disclaimer=self.params.disclaimer,
            ))
        return results


def compute_estimated_occupancy(listing_performance: Iterable[MonthlyListingPerformance],
                                service_ranges: Iterable[ListingServiceRange],
                                params: OccupancyParams = OCCUPANCY_PARAMS) -> List[EstimatedOccupancy]:
    return OccupancyEstimator(params).estimate(listing_performance, service_ranges)
