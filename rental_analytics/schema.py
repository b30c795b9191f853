"""
Canonical Schema
================
Data model shared by every stage of the engine:
- Money and YearMonth helpers
- CanonicalTransaction (produced by an importer, never mutated here)
- Allocation slices and the monthly records built from them

Money is always an integer amount of minor units (cents). YearMonth keys are
`YYYY-MM` strings, so plain string sorting is chronological sorting.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional

from .config import CASHFLOW_KINDS, PERFORMANCE_KINDS


# =============================================================================
# ENUMS
# =============================================================================

class TransactionKind(str, Enum):
    """Classification of a source row."""
    RESERVATION = "reservation"
    ADJUSTMENT = "adjustment"
    RESOLUTION_ADJUSTMENT = "resolution_adjustment"
    CANCELLATION_FEE = "cancellation_fee"
    PAYOUT = "payout"
    RESOLUTION_PAYOUT = "resolution_payout"

    @property
    def is_performance(self) -> bool:
        return self.value in PERFORMANCE_KINDS

    @property
    def is_cashflow(self) -> bool:
        return self.value in CASHFLOW_KINDS


class DatasetKind(str, Enum):
    """Whether a row comes from a realized (paid) or an upcoming export."""
    PAID = "paid"
    UPCOMING = "upcoming"


class WarningCode(str, Enum):
    MALFORMED_STAY_WINDOW = "malformed_stay_window"
    INVALID_DATE = "invalid_date"


# =============================================================================
# MONEY & YEAR-MONTH
# =============================================================================

@dataclass(frozen=True)
class Money:
    """Integer minor units paired with an ISO 4217 currency code."""
    amount_minor: int
    currency: str

    def __post_init__(self):
        if isinstance(self.amount_minor, bool) or not isinstance(self.amount_minor, int):
            raise TypeError(f"Money amount must be an int of minor units, got {self.amount_minor!r}")

    def __add__(self, other: "Money") -> "Money":
        if self.currency != other.currency:
            raise ValueError(f"Cannot add {self.currency} and {other.currency}")
        return Money(self.amount_minor + other.amount_minor, self.currency)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(0, currency)


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD string. Raises ValueError when unparseable."""
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def to_year_month(value) -> str:
    """YYYY-MM key for a date or an ISO date string."""
    d = parse_date(value)
    return f"{d.year:04d}-{d.month:02d}"


def split_year_month(ym: str):
    year, month = ym.split("-")
    return int(year), int(month)


def days_in_month(ym: str) -> int:
    year, month = split_year_month(ym)
    return calendar.monthrange(year, month)[1]


def add_months(ym: str, count: int) -> str:
    year, month = split_year_month(ym)
    index = year * 12 + (month - 1) + count
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def next_month(ym: str) -> str:
    return add_months(ym, 1)


def months_between(start: str, end: str) -> int:
    """Number of calendar months from start to end (end - start)."""
    sy, sm = split_year_month(start)
    ey, em = split_year_month(end)
    return (ey - sy) * 12 + (em - sm)


def month_range(start: str, end: str) -> List[str]:
    """Every YearMonth from start to end, inclusive."""
    return [add_months(start, i) for i in range(months_between(start, end) + 1)]


# =============================================================================
# CANONICAL TRANSACTION
# =============================================================================

@dataclass(frozen=True)
class ListingRef:
    account_id: str
    listing_id: str
    listing_name: str = ""


@dataclass(frozen=True)
class StayWindow:
    """Check-in inclusive, check-out exclusive (the guest leaves that day)."""
    check_in_date: str
    check_out_date: str
    nights: int


@dataclass(frozen=True)
class CanonicalTransaction:
    """
    One financial event as emitted by an importer.

    Fee components default to zero in the transaction's currency.
    """
    transaction_id: str
    kind: TransactionKind
    dataset_kind: DatasetKind
    occurred_date: str
    net_amount: Money
    gross_amount: Money
    listing: Optional[ListingRef] = None
    stay: Optional[StayWindow] = None
    host_service_fee_amount: Optional[Money] = None
    cleaning_fee_amount: Optional[Money] = None
    adjustment_amount: Optional[Money] = None

    def __post_init__(self):
        object.__setattr__(self, "kind", TransactionKind(self.kind))
        object.__setattr__(self, "dataset_kind", DatasetKind(self.dataset_kind))

    @property
    def currency(self) -> str:
        return self.net_amount.currency

    def component_minor(self, name: str) -> int:
        value = getattr(self, name)
        return value.amount_minor if value is not None else 0


# =============================================================================
# ALLOCATION OUTPUT
# =============================================================================

@dataclass(frozen=True)
class MonthlyAllocationSlice:
    """One (listing, month, currency) fragment of a transaction."""
    transaction_id: str
    kind: TransactionKind
    dataset_kind: DatasetKind
    account_id: Optional[str]
    listing_id: Optional[str]
    listing_name: str
    month: str
    currency: str
    nights: int
    allocation_ratio: float
    gross_minor: int
    net_minor: int
    cleaning_fee_minor: int = 0
    service_fee_minor: int = 0
    adjustment_minor: int = 0


@dataclass(frozen=True)
class AllocationWarning:
    """Non-fatal data-shape problem recovered during allocation."""
    code: WarningCode
    transaction_id: str
    message: str


@dataclass
class AllocationResult:
    slices: List[MonthlyAllocationSlice] = field(default_factory=list)
    warnings: List[AllocationWarning] = field(default_factory=list)


# =============================================================================
# MONTHLY RECORDS
# =============================================================================

@dataclass(frozen=True)
class MonthlyListingPerformance:
    month: str
    account_id: str
    listing_id: str
    listing_name: str
    currency: str
    booked_nights: int
    gross_revenue_minor: int
    net_revenue_minor: int
    cleaning_fees_minor: int
    service_fees_minor: int
    reservation_revenue_minor: int
    adjustment_revenue_minor: int
    resolution_adjustment_revenue_minor: int
    cancellation_fee_revenue_minor: int


@dataclass(frozen=True)
class MonthlyPortfolioPerformance:
    month: str
    currency: str
    listing_count: int
    booked_nights: int
    gross_revenue_minor: int
    net_revenue_minor: int
    cleaning_fees_minor: int
    service_fees_minor: int
    reservation_revenue_minor: int
    adjustment_revenue_minor: int
    resolution_adjustment_revenue_minor: int
    cancellation_fee_revenue_minor: int


@dataclass(frozen=True)
class MonthlyCashflow:
    """Payouts for one month; account/listing are None for unattributed payouts."""
    month: str
    currency: str
    account_id: Optional[str]
    listing_id: Optional[str]
    payouts_minor: int
    transaction_count: int


@dataclass(frozen=True)
class TrailingComparison:
    month: str
    currency: str
    listing_id: Optional[str]  # None for the portfolio
    metric: str
    current_minor: int
    trailing_average_minor: int
    trailing_months: int
    delta_minor: int
    delta_pct: Optional[float]
    label: str


@dataclass(frozen=True)
class ListingServiceRange:
    listing_id: str
    currency: str
    first_active_date: str
    last_active_date: str


@dataclass(frozen=True)
class EstimatedOccupancy:
    month: str
    currency: str
    booked_nights: int
    capped_booked_nights: int
    days_in_month: int
    listings_in_service: int
    estimated_occupancy_rate: Optional[float]
    label: str
    disclaimer: str
