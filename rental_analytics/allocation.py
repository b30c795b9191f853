"""
Allocation Engine
=================
Splits each performance transaction across the calendar months its stay
covers, proportionally to the nights falling in each month.

Every money component and the night count are distributed with the
largest-remainder method, so the slices of a transaction always add back to
the transaction's own values, to the last minor unit.
"""

import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import ALLOCATION_PARAMS, AllocationParams
from .schema import (
    AllocationResult,
    AllocationWarning,
    CanonicalTransaction,
    MonthlyAllocationSlice,
    WarningCode,
    parse_date,
    to_year_month,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DISTRIBUTION PRIMITIVES
# =============================================================================

def largest_remainder_distribute(total: int, weights: Sequence[int], fallback_index: int = 0) -> List[int]:
    """
    Distribute an integer total across non-negative integer weights.

    Each bucket first gets floor(total * weight / sum(weights)); the units left
    over go one at a time to the buckets with the largest fractional remainder,
    earlier buckets winning ties. Works for negative totals as well. When every
    weight is zero the whole total goes to the fallback_index bucket.

    Args:
        total: Amount to distribute (minor units or nights)
        weights: One non-negative integer weight per bucket, in chronological order
        fallback_index: Bucket receiving the total when the weights sum to zero

    Returns:
        List of integer shares, same length as weights, summing to total
    """
    if not weights:
        if total != 0:
            raise ValueError("Cannot distribute a non-zero total over no buckets")
        return []
    if any(w < 0 for w in weights):
        raise ValueError(f"Weights must be non-negative: {list(weights)}")

    weight_sum = sum(weights)
    if weight_sum == 0:
        if not 0 <= fallback_index < len(weights):
            raise ValueError(f"Fallback index {fallback_index} out of range for {len(weights)} bucket(s)")
        shares = [0] * len(weights)
        shares[fallback_index] = total
        return shares

    shares = []
    remainders = []
    for w in weights:
        share, remainder = divmod(total * w, weight_sum)
        shares.append(share)
        remainders.append(remainder)

    leftover = total - sum(shares)
    # sorted() is stable, so equal remainders keep chronological order
    order = sorted(range(len(weights)), key=lambda i: -remainders[i])
    for i in order[:leftover]:
        shares[i] += 1

    return shares


def compute_nights_per_month(check_in: str, check_out: str) -> Dict[str, int]:
    """
    Count the nights of [check_in, check_out) falling in each month.

    A night belongs to the date it starts on, so a stay ending on the 5th has
    no night on the 5th. Returns an insertion-ordered (chronological) dict.
    """
    start = parse_date(check_in)
    end = parse_date(check_out)

    nights: Dict[str, int] = {}
    current = start
    while current < end:
        ym = f"{current.year:04d}-{current.month:02d}"
        nights[ym] = nights.get(ym, 0) + 1
        current += timedelta(days=1)
    return nights


# =============================================================================
# TRANSACTION ALLOCATION
# =============================================================================

def _month_weights(tx: CanonicalTransaction,
                   warnings: List[AllocationWarning]) -> Optional[Tuple[List[str], List[int], int]]:
    """Return (months, weights, nights_total) for a transaction, or None if it cannot be placed."""
    try:
        occurred_month = to_year_month(tx.occurred_date)
    except ValueError:
        occurred_month = None

    if tx.stay is None:
        if occurred_month is None:
            warnings.append(AllocationWarning(
                WarningCode.INVALID_DATE, tx.transaction_id,
                f"Unparseable occurred date {tx.occurred_date!r}; transaction skipped",
            ))
            return None
        return [occurred_month], [1], 0

    stay = tx.stay
    try:
        check_in = parse_date(stay.check_in_date)
        check_out = parse_date(stay.check_out_date)
    except ValueError:
        if occurred_month is None:
            warnings.append(AllocationWarning(
                WarningCode.INVALID_DATE, tx.transaction_id,
                f"Unparseable stay ({stay.check_in_date!r}, {stay.check_out_date!r}) "
                f"and occurred date {tx.occurred_date!r}; transaction skipped",
            ))
            return None
        warnings.append(AllocationWarning(
            WarningCode.INVALID_DATE, tx.transaction_id,
            f"Unparseable stay ({stay.check_in_date!r}, {stay.check_out_date!r}); "
            f"allocated to occurred month {occurred_month}",
        ))
        return [occurred_month], [1], 0

    if check_out <= check_in:
        month = f"{check_in.year:04d}-{check_in.month:02d}"
        warnings.append(AllocationWarning(
            WarningCode.MALFORMED_STAY_WINDOW, tx.transaction_id,
            f"Check-out {stay.check_out_date} is not after check-in {stay.check_in_date}; "
            f"treated as a single-day event in {month} with no nights",
        ))
        return [month], [1], 0

    per_month = compute_nights_per_month(stay.check_in_date, stay.check_out_date)
    walked = sum(per_month.values())
    nights_total = stay.nights if stay.nights > 0 else walked
    return list(per_month.keys()), list(per_month.values()), nights_total


def _occurrence_index(tx: CanonicalTransaction, months: List[str]) -> int:
    """Position of the occurrence month among months, else the first month."""
    try:
        return months.index(to_year_month(tx.occurred_date))
    except ValueError:
        return 0


def allocate_transaction(tx: CanonicalTransaction,
                         params: AllocationParams = ALLOCATION_PARAMS) -> AllocationResult:
    """
    Allocate one transaction to the months it spans.

    Transactions without a stay produce a single slice in their occurrence
    month. Malformed or unparseable stays are recovered with a warning.
    """
    result = AllocationResult()
    placed = _month_weights(tx, result.warnings)
    for warning in result.warnings:
        logger.warning("%s: %s", warning.code.value, warning.message)
    if placed is None:
        return result

    months, weights, nights_total = placed
    weight_sum = sum(weights)
    fallback = _occurrence_index(tx, months)

    def distribute(total: int) -> List[int]:
        return largest_remainder_distribute(total, weights, fallback)

    gross = distribute(tx.gross_amount.amount_minor)
    net = distribute(tx.net_amount.amount_minor)
    nights = distribute(nights_total)
    cleaning = distribute(tx.component_minor("cleaning_fee_amount"))
    adjustment = distribute(tx.component_minor("adjustment_amount"))

    service_total = tx.component_minor("host_service_fee_amount")
    gross_total = tx.gross_amount.amount_minor
    net_total = tx.net_amount.amount_minor
    if params.derive_service_fee_from_gross and gross_total == net_total + service_total:
        # keeps gross = net + service fee on every slice; a slice may then be one
        # unit off the sign of service_total, the sum is still exact
        service = [g - n for g, n in zip(gross, net)]
    else:
        service = distribute(service_total)

    listing = tx.listing
    for i, month in enumerate(months):
        result.slices.append(MonthlyAllocationSlice(
            transaction_id=tx.transaction_id,
            kind=tx.kind,
            dataset_kind=tx.dataset_kind,
            account_id=listing.account_id if listing else None,
            listing_id=listing.listing_id if listing else None,
            listing_name=(listing.listing_name or listing.listing_id) if listing else "",
            month=month,
            currency=tx.currency,
            nights=nights[i],
            allocation_ratio=weights[i] / weight_sum if weight_sum else float(i == fallback),
            gross_minor=gross[i],
            net_minor=net[i],
            cleaning_fee_minor=cleaning[i],
            service_fee_minor=service[i],
            adjustment_minor=adjustment[i],
        ))

    return result


def allocate_performance_to_months(transactions: Iterable[CanonicalTransaction],
                                   params: AllocationParams = ALLOCATION_PARAMS) -> AllocationResult:
    """
    Allocate every performance-kind transaction that references a listing.

    Payout kinds are left to the cashflow aggregator: they are not prorated.
    """
    combined = AllocationResult()
    for tx in transactions:
        if not tx.kind.is_performance or tx.listing is None:
            continue
        single = allocate_transaction(tx, params)
        combined.slices.extend(single.slices)
        combined.warnings.extend(single.warnings)

    logger.debug("Allocated %d slices (%d warnings)", len(combined.slices), len(combined.warnings))
    return combined
