"""
Rental Data Simulator
=====================
Generates a realistic short-term rental portfolio as canonical transactions.
Includes seasonality, per-listing price levels, staggered listing start dates,
cancellations, adjustments, and payouts (some without a listing reference).
"""

from datetime import date, timedelta
from typing import List, Optional

import numpy as np

from .config import SIMULATION_DEFAULTS
from .schema import (
    CanonicalTransaction,
    DatasetKind,
    ListingRef,
    Money,
    StayWindow,
    TransactionKind,
    add_months,
    parse_date,
)

LISTING_NAMES = [
    "Harbor View Loft",
    "Cedar Cabin",
    "Old Town Studio",
    "Lakeside Cottage",
    "Downtown Suite",
    "Garden Flat",
    "Mountain Retreat",
    "Beach Bungalow",
]


class RentalPortfolioSimulator:
    """
    Simulates booking activity for a portfolio of listings.

    Generates, per listing:
    - Back-to-back stays of 2-7 nights separated by short vacancy gaps
    - Nightly rates scaled by a listing price level and a yearly season curve
    - Occasional cancellation fees and negative adjustments
    - A payout for each realized stay
    Stays checking in during the last few months are "upcoming" and unpaid.
    """

    def __init__(
        self,
        start_month: str = "2024-01",
        months: int = SIMULATION_DEFAULTS["months"],
        listings: int = SIMULATION_DEFAULTS["listings"],
        accounts: int = SIMULATION_DEFAULTS["accounts"],
        currency: str = SIMULATION_DEFAULTS["currency"],
        random_seed: int = 42,
    ):
        """
        Initialize the simulator.

        Args:
            start_month: First simulated month (YYYY-MM)
            months: Number of months to simulate
            listings: Number of listings
            accounts: Number of host accounts the listings are spread over
            currency: Currency of every amount
            random_seed: Random seed for reproducibility
        """
        self.random_seed = random_seed
        self.rng = np.random.default_rng(random_seed)

        self.start_month = start_month
        self.months = months
        self.currency = currency
        self.start_date = parse_date(f"{start_month}-01")
        self.end_date = parse_date(f"{add_months(start_month, months)}-01")
        self.upcoming_from = parse_date(
            f"{add_months(start_month, months - SIMULATION_DEFAULTS['upcoming_months'])}-01"
        )

        self.listings = [
            ListingRef(
                account_id=f"ACC-{i % max(accounts, 1) + 1}",
                listing_id=f"L{i + 1:03d}",
                listing_name=LISTING_NAMES[i % len(LISTING_NAMES)],
            )
            for i in range(listings)
        ]
        self._counter = 0

    def _next_id(self) -> str:
        self._counter += 1
        return f"T{self._counter:06d}"

    @staticmethod
    def _season(day: date) -> float:
        """Yearly multiplier peaking in early summer."""
        return 1.0 + 0.25 * np.sin(2 * np.pi * (day.month - 3) / 12)

    def _money(self, amount: float) -> Money:
        return Money(int(round(amount)), self.currency)

    def _stay_transactions(self, listing: ListingRef, check_in: date, nights: int,
                           price_level: float) -> List[CanonicalTransaction]:
        check_out = check_in + timedelta(days=nights)
        stay = StayWindow(check_in.isoformat(), check_out.isoformat(), nights)
        dataset = DatasetKind.UPCOMING if check_in >= self.upcoming_from else DatasetKind.PAID

        nightly = SIMULATION_DEFAULTS["base_nightly_rate_minor"] * price_level * self._season(check_in)
        gross = int(round(nightly * nights)) + SIMULATION_DEFAULTS["cleaning_fee_minor"]
        service = int(round(gross * SIMULATION_DEFAULTS["service_fee_pct"]))

        if self.rng.random() < SIMULATION_DEFAULTS["cancellation_prob"]:
            fee = int(round(gross * 0.3))
            return [CanonicalTransaction(
                transaction_id=self._next_id(),
                kind=TransactionKind.CANCELLATION_FEE,
                dataset_kind=dataset,
                occurred_date=check_in.isoformat(),
                net_amount=self._money(fee),
                gross_amount=self._money(fee),
                listing=listing,
                stay=stay,
            )]

        transactions = [CanonicalTransaction(
            transaction_id=self._next_id(),
            kind=TransactionKind.RESERVATION,
            dataset_kind=dataset,
            occurred_date=check_in.isoformat(),
            net_amount=self._money(gross - service),
            gross_amount=self._money(gross),
            listing=listing,
            stay=stay,
            host_service_fee_amount=self._money(service),
            cleaning_fee_amount=self._money(SIMULATION_DEFAULTS["cleaning_fee_minor"]),
        )]

        if self.rng.random() < SIMULATION_DEFAULTS["adjustment_prob"]:
            refund = -int(round(gross * self.rng.uniform(0.03, 0.1)))
            transactions.append(CanonicalTransaction(
                transaction_id=self._next_id(),
                kind=TransactionKind.ADJUSTMENT,
                dataset_kind=dataset,
                occurred_date=check_out.isoformat(),
                net_amount=self._money(refund),
                gross_amount=self._money(refund),
                listing=listing,
                stay=stay,
                adjustment_amount=self._money(refund),
            ))

        if dataset == DatasetKind.PAID:
            unattributed = self.rng.random() < SIMULATION_DEFAULTS["unattributed_payout_prob"]
            payout_total = sum(tx.net_amount.amount_minor for tx in transactions)
            transactions.append(CanonicalTransaction(
                transaction_id=self._next_id(),
                kind=TransactionKind.PAYOUT,
                dataset_kind=dataset,
                occurred_date=(check_in + timedelta(days=1)).isoformat(),
                net_amount=self._money(payout_total),
                gross_amount=self._money(payout_total),
                listing=None if unattributed else listing,
            ))

        return transactions

    def generate_listing(self, index: int) -> List[CanonicalTransaction]:
        """All transactions of one listing; later listings join the portfolio later."""
        listing = self.listings[index]
        price_level = self.rng.uniform(0.7, 1.4)
        day = parse_date(f"{add_months(self.start_month, min(index * 2, self.months - 1))}-01")

        transactions = []
        while True:
            day += timedelta(days=int(self.rng.integers(0, 7)))
            if day >= self.end_date:
                break
            nights = int(self.rng.integers(2, 8))
            transactions.extend(self._stay_transactions(listing, day, nights, price_level))
            day += timedelta(days=nights)
        return transactions

    def generate(self) -> List[CanonicalTransaction]:
        transactions = []
        for index in range(len(self.listings)):
            transactions.extend(self.generate_listing(index))
        transactions.sort(key=lambda tx: (tx.occurred_date, tx.transaction_id))
        return transactions


def generate_sample_transactions(months: int = SIMULATION_DEFAULTS["months"],
                                 listings: int = SIMULATION_DEFAULTS["listings"],
                                 random_seed: int = 42,
                                 start_month: str = "2024-01",
                                 accounts: Optional[int] = None) -> List[CanonicalTransaction]:
    """
    Convenience function to generate a sample portfolio.

    Args:
        months: Number of months to simulate
        listings: Number of listings
        random_seed: Random seed for reproducibility
        start_month: First simulated month (YYYY-MM)
        accounts: Number of host accounts (default from SIMULATION_DEFAULTS)

    Returns:
        Canonical transactions sorted by occurrence date
    """
    simulator = RentalPortfolioSimulator(
        start_month=start_month,
        months=months,
        listings=listings,
        accounts=accounts if accounts is not None else SIMULATION_DEFAULTS["accounts"],
        random_seed=random_seed,
    )
    return simulator.generate()
