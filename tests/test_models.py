"""Tests for the per-listing revenue forecaster and portfolio roll-up."""

import pytest

from rental_analytics.config import ForecastParams
from rental_analytics.models import (
    ConfidenceTier,
    ForecastResult,
    ListingForecast,
    ListingRevenueForecaster,
    TooFewMonths,
    build_portfolio,
    classify_confidence,
    compute_revenue_forecast,
    restrict_forecast,
)
from rental_analytics.schema import month_range


def _forecast(listing_id="L1", target="2024-04", value=10_000, mae=1_000, account_id="A1"):
    return ListingForecast(
        listing_id=listing_id,
        listing_name=listing_id,
        account_id=account_id,
        currency="USD",
        target_month=target,
        forecast_gross_revenue_minor=value,
        mae_minor=mae,
        lower_bound_minor=max(0, value - mae),
        upper_bound_minor=value + mae,
        confidence=ConfidenceTier.MEDIUM,
        training_months=6,
    )


def _series(make_perf, values, start="2024-01", listing_id="L1", **kwargs):
    months = month_range(start, "2099-12")[:len(values)]
    return [make_perf(m, listing_id=listing_id, gross=v, **kwargs) for m, v in zip(months, values)]


class TestListingRevenueForecaster:

    def test_predict_before_fit(self):
        with pytest.raises(ValueError):
            ListingRevenueForecaster().predict()

    def test_linear_trend(self, make_perf):
        model = ListingRevenueForecaster().fit(_series(make_perf, [10_000, 20_000, 30_000]))
        assert model.target_month == "2024-04"
        assert not model.seasonal
        # ridge shrinks the slope, so the forecast sits between the last value and the trend line
        assert 30_000 < model.predict() < 40_000

    def test_seasonal_features_with_a_year_of_history(self, make_perf):
        model = ListingRevenueForecaster().fit(_series(make_perf, [10_000] * 12))
        assert model.seasonal
        assert model._features(["2025-01"]).shape == (1, 3)

    def test_short_series_keeps_default_alpha(self, make_perf):
        model = ListingRevenueForecaster(ForecastParams(ridge_alpha=3.0)).fit(
            _series(make_perf, [10_000, 20_000, 30_000, 40_000])
        )
        assert model.alpha == 3.0
        assert model.model[-1].alpha == 3.0

    def test_alpha_chosen_by_leave_one_out(self, make_perf):
        # an exact line is reproduced best by the weakest penalty
        model = ListingRevenueForecaster().fit(_series(make_perf, [10_000 * (i + 1) for i in range(6)]))
        assert model.alpha == 0.1
        assert model.model[-1].alpha == 0.1

        single = ListingRevenueForecaster(ForecastParams(alpha_candidates=(50.0,))).fit(
            _series(make_perf, [10_000 * (i + 1) for i in range(6)])
        )
        assert single.alpha == 50.0
        assert single.predict() < model.predict()

    def test_duplicate_months_are_summed(self, make_perf):
        rows = _series(make_perf, [1_000, 2_000, 3_000]) + [make_perf("2024-03", gross=500)]
        model = ListingRevenueForecaster().fit(rows)
        assert model.training_data["gross_revenue_minor"].tolist() == [1_000, 2_000, 3_500]


class TestComputeRevenueForecast:

    def test_too_few_months(self, make_perf):
        result = compute_revenue_forecast(_series(make_perf, [5_000, 6_000]))

        assert result.listings == []
        assert result.portfolio is None
        (excluded,) = result.excluded
        assert excluded.reason == TooFewMonths(months_available=2, min_months=3)
        assert excluded.reason_code == "too_few_months"
        assert "2 month" in excluded.reason.describe()

    def test_flat_series(self, make_perf):
        (f,) = compute_revenue_forecast(_series(make_perf, [12_000] * 12)).listings

        assert f.forecast_gross_revenue_minor == 12_000
        assert f.mae_minor == 0
        assert f.lower_bound_minor == f.upper_bound_minor == 12_000
        assert f.confidence == ConfidenceTier.HIGH
        assert f.target_month == "2025-01"
        assert f.training_months == 12

    def test_band_is_k_times_mae(self, make_perf):
        (f,) = compute_revenue_forecast(_series(make_perf, [10_000, 20_000, 30_000])).listings

        assert f.mae_minor > 0
        assert f.upper_bound_minor - f.forecast_gross_revenue_minor == f.mae_minor
        assert f.forecast_gross_revenue_minor - f.lower_bound_minor == f.mae_minor

        wide = compute_revenue_forecast(
            _series(make_perf, [10_000, 20_000, 30_000]), ForecastParams(band_multiplier=2.0)
        ).listings[0]
        assert wide.upper_bound_minor - wide.forecast_gross_revenue_minor == 2 * wide.mae_minor

    def test_negative_forecast_is_clamped(self, make_perf):
        (f,) = compute_revenue_forecast(_series(make_perf, [30_000, 10_000, 0])).listings
        assert f.forecast_gross_revenue_minor == 0
        assert f.lower_bound_minor == 0
        assert f.upper_bound_minor >= 0
        assert f.confidence == ConfidenceTier.LOW

    def test_target_month_follows_last_training_month(self, make_perf):
        rows = [make_perf(m, gross=1_000) for m in ("2024-01", "2024-02", "2024-04")]
        (f,) = compute_revenue_forecast(rows).listings
        assert f.target_month == "2024-05"

    def test_mixed_listings(self, make_perf):
        rows = (
            _series(make_perf, [10_000] * 4, listing_id="L1")
            + _series(make_perf, [20_000] * 4, listing_id="L2")
            + _series(make_perf, [5_000], listing_id="L3")
        )
        result = compute_revenue_forecast(rows)

        assert [f.listing_id for f in result.listings] == ["L1", "L2"]
        assert [e.listing_id for e in result.excluded] == ["L3"]
        assert result.portfolio.forecast_gross_revenue_minor == 30_000
        assert result.portfolio.target_month == "2024-05"

    def test_rejects_mixed_currencies(self, make_perf):
        rows = _series(make_perf, [1_000] * 3) + _series(make_perf, [1_000] * 3, listing_id="L2", currency="EUR")
        with pytest.raises(ValueError):
            compute_revenue_forecast(rows)


class TestConfidence:

    def test_tiers(self):
        assert classify_confidence(12, 1_000, 10_000) == ConfidenceTier.HIGH
        assert classify_confidence(11, 1_000, 10_000) == ConfidenceTier.MEDIUM
        assert classify_confidence(12, 2_000, 10_000) == ConfidenceTier.MEDIUM
        assert classify_confidence(6, 3_500, 10_000) == ConfidenceTier.MEDIUM
        assert classify_confidence(5, 0, 10_000) == ConfidenceTier.LOW
        assert classify_confidence(24, 4_000, 10_000) == ConfidenceTier.LOW

    def test_zero_forecast_is_low(self):
        assert classify_confidence(24, 0, 0) == ConfidenceTier.LOW


class TestBuildPortfolio:

    def test_empty(self):
        assert build_portfolio([]) is None

    def test_largest_shared_month(self):
        portfolio = build_portfolio([
            _forecast("L1", "2024-04", 10_000, 1_000),
            _forecast("L2", "2024-05", 50_000, 5_000),
            _forecast("L3", "2024-04", 20_000, 500),
        ])

        assert portfolio.target_month == "2024-04"
        assert portfolio.forecast_gross_revenue_minor == 30_000
        assert portfolio.lower_bound_minor == 9_000 + 19_500
        assert portfolio.upper_bound_minor == 11_000 + 20_500
        assert portfolio.total_mae_minor == 1_500
        assert [l.listing_id for l in portfolio.listing_forecasts] == ["L1", "L3"]
        assert portfolio.omitted_listing_ids == ("L2",)

    def test_tie_goes_to_earliest_month(self):
        portfolio = build_portfolio([
            _forecast("L1", "2024-06"),
            _forecast("L2", "2024-05"),
        ])
        assert portfolio.target_month == "2024-05"
        assert portfolio.omitted_listing_ids == ("L1",)


class TestRestrictForecast:

    @pytest.fixture
    def result(self):
        listings = [
            _forecast("L1", "2024-04", 10_000, account_id="A1"),
            _forecast("L2", "2024-04", 20_000, account_id="A1"),
            _forecast("L3", "2024-05", 40_000, account_id="A2"),
        ]
        return ForecastResult(portfolio=build_portfolio(listings), listings=listings, excluded=[])

    def test_no_selection_keeps_everything(self, result):
        restricted = restrict_forecast(result)
        assert len(restricted.listings) == 3
        assert restricted.portfolio.forecast_gross_revenue_minor == 30_000

    def test_by_account_rebuilds_portfolio(self, result):
        restricted = restrict_forecast(result, account_ids=["A2"])
        assert [l.listing_id for l in restricted.listings] == ["L3"]
        assert restricted.portfolio.target_month == "2024-05"
        assert restricted.portfolio.forecast_gross_revenue_minor == 40_000

    def test_by_listing_and_date(self, result):
        restricted = restrict_forecast(result, listing_ids=["L1", "L3"], date_range=("2024-04", "2024-04"))
        assert [l.listing_id for l in restricted.listings] == ["L1"]

    def test_nothing_left(self, result):
        assert restrict_forecast(result, listing_ids=["L9"]) is None
        assert restrict_forecast(None) is None
