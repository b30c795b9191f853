"""Shared builders for rental analytics tests."""

from typing import Optional

import pytest

from rental_analytics.schema import (
    CanonicalTransaction,
    ListingRef,
    MonthlyListingPerformance,
    Money,
    StayWindow,
)


def _make_tx(
    tx_id: str = "T1",
    kind: str = "reservation",
    check_in: Optional[str] = "2024-01-30",
    check_out: Optional[str] = "2024-02-02",
    nights: int = 3,
    gross: int = 30_000,
    net: int = 27_000,
    service: Optional[int] = None,
    cleaning: Optional[int] = None,
    occurred: Optional[str] = None,
    listing_id: Optional[str] = "L1",
    account_id: str = "A1",
    listing_name: str = "",
    currency: str = "USD",
    dataset: str = "paid",
) -> CanonicalTransaction:
    stay = StayWindow(check_in, check_out, nights) if check_in is not None else None
    listing = ListingRef(account_id, listing_id, listing_name) if listing_id is not None else None
    return CanonicalTransaction(
        transaction_id=tx_id,
        kind=kind,
        dataset_kind=dataset,
        occurred_date=occurred or check_in or "2024-01-01",
        net_amount=Money(net, currency),
        gross_amount=Money(gross, currency),
        listing=listing,
        stay=stay,
        host_service_fee_amount=Money(service, currency) if service is not None else None,
        cleaning_fee_amount=Money(cleaning, currency) if cleaning is not None else None,
    )


def _make_payout(tx_id: str = "P1", amount: int = 27_000, occurred: str = "2024-01-31",
                 listing_id: Optional[str] = "L1", account_id: str = "A1",
                 currency: str = "USD", kind: str = "payout") -> CanonicalTransaction:
    return _make_tx(
        tx_id=tx_id, kind=kind, check_in=None, gross=amount, net=amount,
        occurred=occurred, listing_id=listing_id, account_id=account_id, currency=currency,
    )


def _make_perf(month: str, listing_id: str = "L1", gross: int = 10_000, net: Optional[int] = None,
               nights: int = 0, account_id: str = "A1", currency: str = "USD",
               listing_name: Optional[str] = None) -> MonthlyListingPerformance:
    return MonthlyListingPerformance(
        month=month,
        account_id=account_id,
        listing_id=listing_id,
        listing_name=listing_name or listing_id,
        currency=currency,
        booked_nights=nights,
        gross_revenue_minor=gross,
        net_revenue_minor=net if net is not None else gross,
        cleaning_fees_minor=0,
        service_fees_minor=0,
        reservation_revenue_minor=gross,
        adjustment_revenue_minor=0,
        resolution_adjustment_revenue_minor=0,
        cancellation_fee_revenue_minor=0,
    )


@pytest.fixture
def make_tx():
    return _make_tx


@pytest.fixture
def make_payout():
    return _make_payout


@pytest.fixture
def make_perf():
    return _make_perf


@pytest.fixture
def history_rows():
    """Three listings with four months each, January to April 2024."""
    rows = []
    for i, listing_id in enumerate(["L1", "L2", "L3"]):
        for j, month in enumerate(["2024-01", "2024-02", "2024-03", "2024-04"]):
            rows.append(_make_perf(month, listing_id=listing_id, gross=10_000 * (i + 1) + 1_000 * j,
                                   account_id="A1" if listing_id != "L3" else "A2"))
    return rows
