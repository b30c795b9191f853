"""
Aggregation Module
==================
Monthly roll-ups of allocated slices and payout transactions:
- Listing performance (listing, month, currency)
- Portfolio performance (month, currency)
- Cashflow (month, currency, account, listing), unattributed payouts included
"""

import logging
from typing import Dict, Iterable, List, Optional

import pandas as pd

from .config import ALLOCATION_PARAMS
from .schema import (
    CanonicalTransaction,
    MonthlyAllocationSlice,
    MonthlyCashflow,
    MonthlyListingPerformance,
    MonthlyPortfolioPerformance,
    TransactionKind,
    to_year_month,
)

logger = logging.getLogger(__name__)

# Revenue bucket per performance kind
KIND_REVENUE_COLUMNS = {
    TransactionKind.RESERVATION.value: "reservation_revenue_minor",
    TransactionKind.ADJUSTMENT.value: "adjustment_revenue_minor",
    TransactionKind.RESOLUTION_ADJUSTMENT.value: "resolution_adjustment_revenue_minor",
    TransactionKind.CANCELLATION_FEE.value: "cancellation_fee_revenue_minor",
}

SUM_COLUMNS = [
    "booked_nights",
    "gross_revenue_minor",
    "net_revenue_minor",
    "cleaning_fees_minor",
    "service_fees_minor",
] + list(KIND_REVENUE_COLUMNS.values())


# =============================================================================
# LISTING PERFORMANCE
# =============================================================================

def _slices_frame(slices: List[MonthlyAllocationSlice]) -> pd.DataFrame:
    df = pd.DataFrame({
        "month": [s.month for s in slices],
        "account_id": [s.account_id for s in slices],
        "listing_id": [s.listing_id for s in slices],
        "listing_name": [s.listing_name for s in slices],
        "currency": [s.currency for s in slices],
        "kind": [TransactionKind(s.kind).value for s in slices],
        "nights": [s.nights for s in slices],
        "gross_revenue_minor": [s.gross_minor for s in slices],
        "net_revenue_minor": [s.net_minor for s in slices],
        "cleaning_fees_minor": [s.cleaning_fee_minor for s in slices],
        "service_fees_minor": [s.service_fee_minor for s in slices],
    })

    night_kinds = [TransactionKind(k).value for k in ALLOCATION_PARAMS.night_bearing_kinds]
    df["booked_nights"] = df["nights"].where(df["kind"].isin(night_kinds), 0)

    # Per-kind breakdown of gross revenue; the four buckets add up to gross
    for kind, column in KIND_REVENUE_COLUMNS.items():
        df[column] = df["gross_revenue_minor"].where(df["kind"] == kind, 0)

    return df


def compute_monthly_listing_performance(
    slices: Iterable[MonthlyAllocationSlice],
    listing_names: Optional[Dict[str, str]] = None,
) -> List[MonthlyListingPerformance]:
    """
    Group allocation slices by (month, account, listing, currency) and sum them.

    Args:
        slices: Allocation slices (slices without a listing are ignored)
        listing_names: Optional listing_id -> display name overrides

    Returns:
        Records sorted by month, then listing, then account, then currency
    """
    slices = [s for s in slices if s.listing_id is not None]
    if not slices:
        return []

    df = _slices_frame(slices)
    keys = ["month", "account_id", "listing_id", "currency"]
    grouped = df.groupby(keys, sort=True).agg(
        {**{c: "sum" for c in SUM_COLUMNS}, "listing_name": "last"}
    ).reset_index()

    names = listing_names or {}
    records = [
        MonthlyListingPerformance(
            month=row.month,
            account_id=row.account_id,
            listing_id=row.listing_id,
            listing_name=names.get(row.listing_id, row.listing_name or row.listing_id),
            currency=row.currency,
            **{c: int(getattr(row, c)) for c in SUM_COLUMNS},
        )
        for row in grouped.itertuples(index=False)
    ]
    records.sort(key=lambda r: (r.month, r.listing_id, r.account_id, r.currency))
    return records


# =============================================================================
# PORTFOLIO PERFORMANCE
# =============================================================================

def compute_monthly_portfolio_performance(
    listing_performance: Iterable[MonthlyListingPerformance],
) -> List[MonthlyPortfolioPerformance]:
    """Sum listing performance across all listings sharing (month, currency)."""
    rows = [vars(r) for r in listing_performance]
    if not rows:
        return []

    df = pd.DataFrame(rows)
    grouped = df.groupby(["month", "currency"], sort=True).agg(
        {**{c: "sum" for c in SUM_COLUMNS}, "listing_id": "nunique"}
    ).reset_index()

    return [
        MonthlyPortfolioPerformance(
            month=row.month,
            currency=row.currency,
            listing_count=int(row.listing_id),
            **{c: int(getattr(row, c)) for c in SUM_COLUMNS},
        )
        for row in grouped.itertuples(index=False)
    ]


# =============================================================================
# CASHFLOW
# =============================================================================

def compute_monthly_cashflow(transactions: Iterable[CanonicalTransaction]) -> List[MonthlyCashflow]:
    """
    Aggregate payout-kind transactions by (month, currency, account, listing).

    Payouts land on their occurrence date and are never prorated. Payouts
    with no listing form their own group rather than being dropped.
    """
    records = []
    for tx in transactions:
        if not tx.kind.is_cashflow:
            continue
        try:
            month = to_year_month(tx.occurred_date)
        except ValueError:
            logger.warning("Skipping payout %s with unparseable date %r",
                           tx.transaction_id, tx.occurred_date)
            continue
        records.append({
            "month": month,
            "currency": tx.currency,
            # "" keeps unattributed rows as their own group key
            "account_id": tx.listing.account_id if tx.listing else "",
            "listing_id": tx.listing.listing_id if tx.listing else "",
            "payouts_minor": tx.net_amount.amount_minor,
        })

    if not records:
        return []

    df = pd.DataFrame(records)
    grouped = df.groupby(["month", "currency", "account_id", "listing_id"], sort=True).agg(
        payouts_minor=("payouts_minor", "sum"),
        transaction_count=("payouts_minor", "size"),
    ).reset_index()

    return [
        MonthlyCashflow(
            month=row.month,
            currency=row.currency,
            account_id=row.account_id or None,
            listing_id=row.listing_id or None,
            payouts_minor=int(row.payouts_minor),
            transaction_count=int(row.transaction_count),
        )
        for row in grouped.itertuples(index=False)
    ]
