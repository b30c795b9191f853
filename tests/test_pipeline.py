"""Tests for the end-to-end analytics pipeline."""

import pytest

from rental_analytics import pipeline
from rental_analytics.data_simulator import generate_sample_transactions
from rental_analytics.pipeline import compute_analytics, compute_view
from rental_analytics.schema import next_month


@pytest.fixture(scope="module")
def simulated():
    return generate_sample_transactions(months=12, listings=3, random_seed=7)


class TestComputeAnalytics:

    def test_views_split_by_dataset(self, make_tx, make_payout):
        analytics = compute_analytics([
            make_tx(tx_id="R1"),
            make_payout(tx_id="P1"),
            make_tx(tx_id="R2", dataset="upcoming", check_in="2024-03-01", check_out="2024-03-03", nights=2),
        ], compute_ml_forecasts=False)

        assert set(analytics.views) == {"all", "realized", "upcoming"}
        assert [r.month for r in analytics.views["realized"].listing_performance] == ["2024-01", "2024-02"]
        assert [r.month for r in analytics.views["upcoming"].listing_performance] == ["2024-03"]
        assert len(analytics.views["all"].listing_performance) == 3
        assert analytics.views["upcoming"].cashflow == []
        assert analytics.forecasts == {}

    def test_metadata(self, make_tx):
        analytics = compute_analytics([
            make_tx(tx_id="R1", listing_id="L1", listing_name="Loft", account_id="A2"),
            make_tx(tx_id="R2", listing_id="L2", listing_name="Cabin", account_id="A1"),
            make_tx(tx_id="R3", listing_id="L2", listing_name="Cabin", account_id="A1"),
            make_tx(tx_id="R4", listing_id="L3", listing_name="Studio", currency="EUR"),
        ], compute_ml_forecasts=False)

        assert analytics.currencies == ["EUR", "USD"]
        assert analytics.currency == "USD"
        assert analytics.account_ids == ["A1", "A2"]
        assert [l.listing_id for l in analytics.listings] == ["L2", "L1", "L3"]
        assert analytics.listings[0].transaction_count == 2
        assert analytics.listing_names["L1"] == "Loft"

    def test_forecasts_need_months_not_rows(self, make_tx, make_perf, monkeypatch):
        # four listings, two months each: enough rows, too few months per listing
        rows = [make_perf(m, listing_id=l) for l in ("L1", "L2", "L3", "L4") for m in ("2024-01", "2024-02")]
        assert pipeline.compute_forecasts(rows) == {}

        calls = []
        monkeypatch.setattr(pipeline, "compute_forecasts", lambda rows, params: calls.append(rows) or {})
        compute_analytics([make_tx()])
        assert len(calls) == 1

    def test_empty(self):
        analytics = compute_analytics([])
        assert analytics.currency == "USD"
        assert analytics.views["all"].listing_performance == []

    def test_warnings_surface_in_view(self, make_tx):
        view = compute_view([make_tx(check_in="2024-02-02", check_out="2024-02-01")])
        assert len(view.warnings) == 1
        assert view.listing_performance[0].booked_nights == 0


class TestSimulatedPortfolio:

    def test_allocation_preserves_totals(self, simulated):
        analytics = compute_analytics(simulated, compute_ml_forecasts=False)
        performance = [tx for tx in simulated if tx.kind.is_performance and tx.listing is not None]

        listing = analytics.views["all"].listing_performance
        assert sum(r.gross_revenue_minor for r in listing) == sum(tx.gross_amount.amount_minor for tx in performance)
        assert sum(r.net_revenue_minor for r in listing) == sum(tx.net_amount.amount_minor for tx in performance)

    def test_portfolio_matches_listings(self, simulated):
        view = compute_analytics(simulated, compute_ml_forecasts=False).views["all"]
        for p in view.portfolio_performance:
            members = [r for r in view.listing_performance if (r.month, r.currency) == (p.month, p.currency)]
            assert p.gross_revenue_minor == sum(r.gross_revenue_minor for r in members)
            assert p.booked_nights == sum(r.booked_nights for r in members)

    def test_occupancy_never_exceeds_one(self, simulated):
        view = compute_analytics(simulated, compute_ml_forecasts=False).views["all"]
        rates = [o.estimated_occupancy_rate for o in view.occupancy if o.estimated_occupancy_rate is not None]
        assert rates
        assert all(0 < r <= 1 for r in rates)

    def test_forecasts_on_realized_view(self, simulated):
        analytics = compute_analytics(simulated)
        result = analytics.forecasts["USD"]
        realized = analytics.views["realized"].listing_performance

        assert result.portfolio is not None
        assert result.portfolio.target_month in {l.target_month for l in result.listings}
        for forecast in result.listings:
            last_month = max(r.month for r in realized if r.listing_id == forecast.listing_id)
            assert forecast.target_month == next_month(last_month)
            assert forecast.training_months >= 3
            assert forecast.lower_bound_minor <= forecast.forecast_gross_revenue_minor <= forecast.upper_bound_minor
