"""Tests for trailing comparison, service ranges and estimated occupancy."""

import pytest

from rental_analytics.aggregation import compute_monthly_portfolio_performance
from rental_analytics.analysis import (
    OccupancyEstimator,
    TrailingComparator,
    compute_estimated_occupancy,
    compute_trailing_comparisons,
    infer_listing_service_ranges,
    round_half_up,
)
from rental_analytics.schema import ListingServiceRange, add_months, month_range, next_month


def test_round_half_up():
    assert round_half_up(5, 2) == 3
    assert round_half_up(7, 3) == 2
    assert round_half_up(-5, 2) == -2
    assert round_half_up(10, 4) == 3


def test_month_keys_sort_chronologically():
    generated = month_range("2023-11", "2025-02")
    assert generated[:3] == ["2023-11", "2023-12", "2024-01"]
    assert generated[-3:] == ["2024-12", "2025-01", "2025-02"]
    assert len(generated) == 16
    assert sorted(generated) == generated
    assert sorted(reversed(generated)) == generated

    stepped = [add_months("2019-06", n) for n in range(-18, 30, 5)]
    assert stepped[0] == "2017-12"
    assert sorted(stepped) == stepped
    assert next_month("2024-12") == "2025-01"
    assert add_months("0999-12", 1) == "1000-01"


class TestTrailingComparator:

    def test_needs_two_months(self, make_perf):
        assert TrailingComparator().compare([make_perf("2024-01")]) == []

    def test_latest_vs_prior_average(self, make_perf):
        records = [
            make_perf("2024-03", gross=30_000),
            make_perf("2024-01", gross=10_000),
            make_perf("2024-02", gross=20_000),
        ]
        (c,) = TrailingComparator("gross_revenue_minor").compare(records)

        assert c.month == "2024-03"
        assert c.listing_id == "L1"
        assert c.trailing_months == 2
        assert c.trailing_average_minor == 15_000
        assert c.delta_minor == 15_000
        assert c.delta_pct == pytest.approx(1.0)
        assert c.label == "Gross revenue vs trailing 2-month average"

    def test_average_rounds_half_up(self, make_perf):
        records = [make_perf("2024-01", gross=1), make_perf("2024-02", gross=2), make_perf("2024-03", gross=0)]
        (c,) = TrailingComparator("gross").compare(records)
        assert c.trailing_average_minor == 2
        assert c.delta_minor == -2

    def test_zero_average_has_no_percentage(self, make_perf):
        records = [make_perf("2024-01", gross=0), make_perf("2024-02", gross=5_000)]
        (c,) = TrailingComparator("net").compare(records)
        assert c.delta_pct is None
        assert c.delta_minor == 5_000

    def test_one_record_per_listing(self, make_perf):
        records = [
            make_perf("2024-01", listing_id="L1"),
            make_perf("2024-02", listing_id="L1"),
            make_perf("2024-01", listing_id="L2"),
            make_perf("2024-02", listing_id="L2"),
            make_perf("2024-03", listing_id="L2"),
            make_perf("2024-05", listing_id="L3"),
        ]
        comparisons = TrailingComparator().compare(records)
        assert {(c.listing_id, c.month) for c in comparisons} == {("L1", "2024-02"), ("L2", "2024-03")}

    def test_portfolio_records(self, make_perf):
        portfolio = compute_monthly_portfolio_performance([
            make_perf("2024-01", listing_id="L1", gross=1_000),
            make_perf("2024-01", listing_id="L2", gross=3_000),
            make_perf("2024-02", listing_id="L1", gross=2_000),
        ])
        (c,) = TrailingComparator("gross_revenue_minor").compare(portfolio)
        assert c.listing_id is None
        assert c.trailing_average_minor == 4_000
        assert c.delta_pct == pytest.approx(-0.5)

    def test_unknown_metric(self):
        with pytest.raises(ValueError):
            TrailingComparator("occupancy")

    def test_both_metrics(self, make_perf):
        records = [make_perf("2024-01", gross=100, net=90), make_perf("2024-02", gross=200, net=180)]
        comparisons = compute_trailing_comparisons(records)
        assert sorted(c.metric for c in comparisons) == ["gross_revenue_minor", "net_revenue_minor"]


class TestServiceRanges:

    def test_span_of_activity(self, make_tx, make_payout):
        ranges = infer_listing_service_ranges([
            make_tx(tx_id="R1", check_in="2024-01-30", check_out="2024-02-02"),
            make_tx(tx_id="R2", check_in="2024-04-10", check_out="2024-04-12", nights=2),
            make_payout(tx_id="P1", occurred="2024-06-01"),
            make_tx(tx_id="R3", listing_id=None, check_in="2023-01-01", check_out="2023-01-02", nights=1),
        ])

        (r,) = ranges
        assert r.listing_id == "L1"
        assert r.first_active_date == "2024-01-30"
        assert r.last_active_date == "2024-04-11"

    def test_per_currency(self, make_tx):
        ranges = infer_listing_service_ranges([
            make_tx(tx_id="R1", currency="USD"),
            make_tx(tx_id="R2", currency="EUR", check_in="2024-05-01", check_out="2024-05-02", nights=1),
        ])
        assert [(r.currency, r.first_active_date) for r in ranges] == [("EUR", "2024-05-01"), ("USD", "2024-01-30")]


class TestOccupancy:

    def test_cap_at_days_in_month(self, make_perf):
        ranges = [ListingServiceRange("L1", "USD", "2024-04-01", "2024-04-30")]
        (occ,) = compute_estimated_occupancy([make_perf("2024-04", nights=40)], ranges)

        assert occ.booked_nights == 40
        assert occ.capped_booked_nights == 30
        assert occ.days_in_month == 30
        assert occ.estimated_occupancy_rate == 1.0

    def test_zero_nights_is_unknown(self, make_perf):
        ranges = [ListingServiceRange("L1", "USD", "2024-04-01", "2024-04-30")]
        (occ,) = compute_estimated_occupancy([make_perf("2024-04", nights=0, gross=-500)], ranges)
        assert occ.estimated_occupancy_rate is None
        assert "Estimated" in occ.label

    def test_listings_in_service_denominator(self, make_perf):
        ranges = [
            ListingServiceRange("L1", "USD", "2024-03-15", "2024-05-02"),
            ListingServiceRange("L2", "USD", "2024-04-20", "2024-04-25"),
        ]
        rows = [make_perf("2024-04", listing_id="L1", nights=15), make_perf("2024-04", listing_id="L2", nights=0)]
        (occ,) = compute_estimated_occupancy(rows, ranges)

        assert occ.listings_in_service == 2
        assert occ.estimated_occupancy_rate == 0.25

    def test_listing_with_nights_counts_as_in_service(self, make_perf):
        (occ,) = OccupancyEstimator().estimate([make_perf("2024-02", nights=29)], [])
        assert occ.listings_in_service == 1
        assert occ.estimated_occupancy_rate == 1.0

    def test_listings_in_service_by_month(self):
        counts = OccupancyEstimator.listings_in_service([
            ListingServiceRange("L1", "USD", "2023-12-20", "2024-02-01"),
        ])
        assert counts == {("2023-12", "USD"): 1, ("2024-01", "USD"): 1, ("2024-02", "USD"): 1}
