#!/usr/bin/env python3
"""
Rental Portfolio Analytics
==========================
Monthly performance, cashflow, occupancy and revenue forecasts for a
short-term rental portfolio, run over simulated data.

Usage:
    python -m rental_analytics.main --mode summary    # Monthly performance summary
    python -m rental_analytics.main --mode forecast   # Next-month revenue forecast
    python -m rental_analytics.main --mode refresh    # Forecast through the background worker
    python -m rental_analytics.main --mode export     # Write all records to CSV
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from .config import REFRESH_PARAMS
from .data_simulator import generate_sample_transactions
from .export import export_analytics
from .models import ForecastResult
from .pipeline import AnalyticsData, compute_analytics
from .refresh import ForecastRefreshCoordinator
from .scope import build_desired_scope


def _fmt(amount_minor: int, currency: str) -> str:
    return f"{amount_minor / 100:,.2f} {currency}"


def _load(months: int, listings: int, seed: int, forecasts: bool = True) -> AnalyticsData:
    print("\n📊 Generating sample rental transactions...")
    transactions = generate_sample_transactions(months=months, listings=listings, random_seed=seed)
    analytics = compute_analytics(transactions, compute_ml_forecasts=forecasts)
    print(f"   ✓ Generated {len(transactions):,} transactions")
    print(f"   ✓ Listings: {len(analytics.listings)} across {len(analytics.account_ids)} account(s)")
    print(f"   ✓ Currencies: {', '.join(analytics.currencies)} (primary {analytics.currency})")
    return analytics


def run_summary(months: int, listings: int, seed: int):
    """Print realized monthly portfolio performance, occupancy and trailing deltas."""
    print("=" * 60)
    print("RENTAL PORTFOLIO ANALYTICS")
    print("Summary Mode")
    print("=" * 60)

    analytics = _load(months, listings, seed, forecasts=False)
    realized = analytics.views["realized"]
    occupancy = {(o.month, o.currency): o for o in realized.occupancy}

    print("\n📈 Realized Monthly Performance:")
    print("-" * 60)
    for p in realized.portfolio_performance:
        occ = occupancy.get((p.month, p.currency))
        rate = occ.estimated_occupancy_rate if occ else None
        rate_text = f"{rate:6.1%}" if rate is not None else "   n/a"
        print(f"   {p.month}  gross {_fmt(p.gross_revenue_minor, p.currency):>16}  "
              f"nights {p.booked_nights:4d}  occupancy {rate_text}")

    print("\n🔍 Latest Month vs Trailing Average:")
    for c in realized.portfolio_trailing:
        pct = f"{c.delta_pct:+.1%}" if c.delta_pct is not None else "n/a"
        print(f"   {c.label}: {_fmt(c.delta_minor, c.currency)} ({pct})")

    if realized.warnings:
        print(f"\n⚠️ Data warnings: {len(realized.warnings)}")
        for w in realized.warnings[:5]:
            print(f"   [{w.code.value}] {w.message}")

    print("\n" + "=" * 60)
    return analytics


def _print_forecast(result: Optional[ForecastResult]):
    if result is None or result.portfolio is None:
        print("   No forecast available")
        return
    p = result.portfolio
    print(f"   Target month: {p.target_month}")
    print(f"   Portfolio:    {_fmt(p.forecast_gross_revenue_minor, p.currency)} "
          f"[{_fmt(p.lower_bound_minor, p.currency)} .. {_fmt(p.upper_bound_minor, p.currency)}]")
    for l in result.listings:
        print(f"   - {l.listing_name:20s} {_fmt(l.forecast_gross_revenue_minor, l.currency):>16} "
              f"({l.confidence.value}, {l.training_months} months)")
    for e in result.excluded:
        print(f"   - {e.listing_name:20s} excluded: {e.reason.describe()}")
    if p.omitted_listing_ids:
        print(f"   Not in total (other target month): {', '.join(p.omitted_listing_ids)}")


def run_forecast(months: int, listings: int, seed: int):
    """Fit per-listing forecasts on the realized data and print them."""
    print("=" * 60)
    print("RENTAL PORTFOLIO ANALYTICS")
    print("Forecast Mode")
    print("=" * 60)

    analytics = _load(months, listings, seed)
    print("\n🔮 Next-Month Gross Revenue Forecast:")
    for currency in analytics.currencies:
        print(f"\n   [{currency}]")
        _print_forecast(analytics.forecasts.get(currency))

    print("\n" + "=" * 60)
    return analytics


async def _refresh(analytics: AnalyticsData, date_range, timeout: float):
    coordinator = ForecastRefreshCoordinator(REFRESH_PARAMS)
    try:
        await coordinator.start(analytics.views["realized"].listing_performance)
        coordinator.set_scope(build_desired_scope(
            analytics.currency,
            date_range=date_range,
            training_follows_date_range=date_range != (None, None),
        ))
        coordinator.refresh_now()
        try:
            await coordinator.wait_settled(timeout)
        except asyncio.TimeoutError:
            return coordinator.status, coordinator.snapshot, f"Refresh timed out after {timeout:g}s"
        return coordinator.status, coordinator.snapshot, coordinator.error
    finally:
        await coordinator.stop()


def run_refresh(months: int, listings: int, seed: int, start: Optional[str], end: Optional[str],
                timeout: float = 30.0):
    """Negotiate a training scope and forecast through the background worker."""
    print("=" * 60)
    print("RENTAL PORTFOLIO ANALYTICS")
    print("Refresh Mode")
    print("=" * 60)

    analytics = _load(months, listings, seed, forecasts=False)
    status, snapshot, error = asyncio.run(_refresh(analytics, (start, end), timeout))

    print(f"\n🔄 Refresh status: {status.value}")
    if error:
        print(f"   Error: {error}")
    if snapshot is not None:
        meta = snapshot.training_meta
        print(f"   Trained on {meta.row_count} rows, {meta.distinct_months} months "
              f"({meta.start_month} .. {meta.end_month})")
        if snapshot.fallback_reason is not None:
            print(f"   Fallback: {snapshot.fallback_reason.value}")
        _print_forecast(snapshot.result)

    print("\n" + "=" * 60)
    return snapshot


def run_export(months: int, listings: int, seed: int, output_dir: str, view: str = "all") -> List:
    """Write every record type of a view to CSV."""
    analytics = _load(months, listings, seed)
    paths = export_analytics(analytics, output_dir, view=view)
    for path in paths:
        print(f"   ✓ Saved {path}")
    print(f"\n✅ All records saved to: {output_dir}")
    return paths


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Rental Portfolio Analytics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m rental_analytics.main --mode summary
  python -m rental_analytics.main --mode forecast --months 24 --listings 6
  python -m rental_analytics.main --mode refresh --start 2025-03 --end 2025-04
  python -m rental_analytics.main --mode export --view realized --output ./results
        """
    )

    parser.add_argument(
        "--mode",
        choices=["summary", "forecast", "refresh", "export"],
        default="summary",
        help="Execution mode (default: summary)"
    )
    parser.add_argument("--months", type=int, default=18, help="Months of data to simulate (default: 18)")
    parser.add_argument("--listings", type=int, default=4, help="Number of listings (default: 4)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--start", type=str, default=None, help="Training range start month (YYYY-MM)")
    parser.add_argument("--end", type=str, default=None, help="Training range end month (YYYY-MM)")
    parser.add_argument("--timeout", type=float, default=30.0, help="Refresh timeout in seconds (default: 30)")
    parser.add_argument(
        "--view",
        choices=["all", "realized", "upcoming"],
        default="all",
        help="View to export (default: all)"
    )
    parser.add_argument(
        "--output",
        type=str,
        default="./output",
        help="Output directory for exports (default: ./output)"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    if args.mode == "summary":
        run_summary(args.months, args.listings, args.seed)
    elif args.mode == "forecast":
        run_forecast(args.months, args.listings, args.seed)
    elif args.mode == "refresh":
        run_refresh(args.months, args.listings, args.seed, args.start, args.end, timeout=args.timeout)
    elif args.mode == "export":
        run_export(args.months, args.listings, args.seed, args.output, view=args.view)


if __name__ == "__main__":
    main()
