#!/usr/bin/env python3
"""
Synthetic Transaction Generator

Generates realistic per-account transaction streams for exercising the
fraud scorer. Features:
- Stable account profiles (home city, usual merchants, device, spend level)
- Daytime activity with amounts around each account's mean
- Configurable fraud injection with ground-truth labels
- Fully reproducible from a single seed
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
from faker import Faker

from fraudstream.core.models.events import Channel, FeedbackEvent, Transaction

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3600 * 1000

# 2024-01-01T00:00:00Z
DEFAULT_START_MS = 1704067200000

HOME_CITIES: Dict[str, Tuple[str, float, float]] = {
    'New York': ('US', 40.7128, -74.0060),
    'Chicago': ('US', 41.8781, -87.6298),
    'Los Angeles': ('US', 34.0522, -118.2437),
    'Toronto': ('CA', 43.6532, -79.3832),
    'London': ('GB', 51.5074, -0.1278),
    'Paris': ('FR', 48.8566, 2.3522),
    'Berlin': ('DE', 52.5200, 13.4050),
}

FRAUD_CITIES: Dict[str, Tuple[str, float, float]] = {
    'Lagos': ('NG', 6.5244, 3.3792),
    'Moscow': ('RU', 55.7558, 37.6173),
    'Kyiv': ('UA', 50.4501, 30.5234),
    'Tehran': ('IR', 35.6892, 51.3890),
}

CURRENCIES = {'US': 'USD', 'CA': 'CAD', 'GB': 'GBP', 'FR': 'EUR', 'DE': 'EUR'}

CATEGORIES = ['grocery', 'restaurant', 'gas_station', 'retail', 'pharmacy', 'transport']

FRAUD_TYPES = ['account_takeover', 'burst', 'card_testing']


@dataclass
class AccountProfile:
    """Stable behavior of one synthetic account."""
    account_id: str
    city: str
    country: str
    lat: float
    lon: float
    mean_amount: float
    merchants: List[Tuple[str, str]]  # (merchant, category)
    device_id: str
    balance: float
    clock_ms: int
    active_hours: Tuple[int, int] = (8, 21)


@dataclass
class LabeledTransaction:
    """Generated transaction with its ground-truth label."""
    transaction: Transaction
    is_fraud: bool
    fraud_type: Optional[str] = None


class TransactionGenerator:
    """Generates labeled transaction streams with injected fraud."""

    def __init__(self, num_accounts: int = 20, fraud_rate: float = 0.02, seed: int = 42,
                 start_ms: int = DEFAULT_START_MS):
        if not 0.0 <= fraud_rate <= 1.0:
            raise ValueError("fraud_rate must lie in [0, 1]")
        if num_accounts < 1:
            raise ValueError("num_accounts must be positive")

        self.fraud_rate = fraud_rate
        self.seed = seed
        self.rng = np.random.default_rng(seed)

        self.fake = Faker()
        self.fake.seed_instance(seed)

        self._tx_counter = 0
        self.accounts: List[AccountProfile] = [
            self._create_profile(i, start_ms) for i in range(num_accounts)
        ]

        logger.info(f"Initialized TransactionGenerator with {num_accounts} accounts")
        logger.info(f"Fraud injection rate: {self.fraud_rate:.2%}")

    def _create_profile(self, index: int, start_ms: int) -> AccountProfile:
        city = list(HOME_CITIES)[int(self.rng.integers(len(HOME_CITIES)))]
        country, lat, lon = HOME_CITIES[city]

        merchant_count = int(self.rng.integers(3, 7))
        merchants = [
            (self.fake.company(), CATEGORIES[int(self.rng.integers(len(CATEGORIES)))])
            for _ in range(merchant_count)
        ]

        return AccountProfile(
            account_id=f"acct_{index:06d}",
            city=city,
            country=country,
            lat=lat,
            lon=lon,
            mean_amount=float(self.rng.uniform(20.0, 120.0)),
            merchants=merchants,
            device_id=f"dev_{self.fake.uuid4()[:12]}",
            balance=float(self.rng.uniform(1500.0, 8000.0)),
            clock_ms=start_ms + int(self.rng.integers(0, 24)) * MS_PER_HOUR,
        )

    def _next_id(self) -> str:
        self._tx_counter += 1
        return f"txn_{self._tx_counter:09d}"

    def _advance_clock(self, profile: AccountProfile):
        """Move the account clock forward to a plausible daytime moment."""
        gap_hours = float(self.rng.exponential(8.0)) + 0.25
        ts = profile.clock_ms + int(gap_hours * MS_PER_HOUR)

        start, end = profile.active_hours
        hour = (ts // MS_PER_HOUR) % 24
        if hour < start:
            ts += (start - hour) * MS_PER_HOUR
        elif hour > end:
            ts += (24 - hour + start) * MS_PER_HOUR

        profile.clock_ms = ts

    def _debit(self, profile: AccountProfile, amount: float) -> float:
        """Apply a debit, returning the balance before it."""
        previous = profile.balance
        profile.balance -= amount
        if profile.balance < 500.0:
            profile.balance += float(self.rng.uniform(1500.0, 4000.0))  # payday
        return round(previous, 2)

    def legitimate(self, profile: AccountProfile) -> Transaction:
        """Generate a normal transaction for `profile`."""
        self._advance_clock(profile)

        merchant, category = profile.merchants[int(self.rng.integers(len(profile.merchants)))]
        amount = max(1.0, float(self.rng.normal(profile.mean_amount, profile.mean_amount * 0.25)))
        amount = round(amount, 2)

        return Transaction(
            id=self._next_id(),
            account_id=profile.account_id,
            amount=-amount,
            currency=CURRENCIES.get(profile.country, 'USD'),
            timestamp=profile.clock_ms,
            merchant=merchant,
            category=category,
            country=profile.country,
            city=profile.city,
            lat=round(profile.lat + float(self.rng.uniform(-0.05, 0.05)), 4),
            lon=round(profile.lon + float(self.rng.uniform(-0.05, 0.05)), 4),
            device_id=profile.device_id,
            channel=Channel.POS if self.rng.random() < 0.8 else Channel.ONLINE,
            previous_balance=self._debit(profile, amount),
        )

    def fraudulent(self, profile: AccountProfile, fraud_type: Optional[str] = None) -> List[LabeledTransaction]:
        """Generate one fraud episode for `profile`; bursts yield several transactions."""
        fraud_type = fraud_type or FRAUD_TYPES[int(self.rng.integers(len(FRAUD_TYPES)))]

        if fraud_type == 'account_takeover':
            return [self._account_takeover(profile)]
        if fraud_type == 'burst':
            return self._burst(profile)
        if fraud_type == 'card_testing':
            return [self._card_testing(profile)]
        raise ValueError(f"Unknown fraud type: {fraud_type}")

    def _account_takeover(self, profile: AccountProfile) -> LabeledTransaction:
        # Foreign high-risk location, odd hour, new device, large amount
        city = list(FRAUD_CITIES)[int(self.rng.integers(len(FRAUD_CITIES)))]
        country, lat, lon = FRAUD_CITIES[city]

        day_start = (profile.clock_ms // (24 * MS_PER_HOUR) + 1) * 24 * MS_PER_HOUR
        profile.clock_ms = day_start + int(self.rng.integers(1, 5)) * MS_PER_HOUR

        amount = round(float(self.rng.uniform(20.0, 60.0)) * profile.mean_amount, 2)
        tx = Transaction(
            id=self._next_id(),
            account_id=profile.account_id,
            amount=-amount,
            currency='USD',
            timestamp=profile.clock_ms,
            merchant=self.fake.company(),
            category='electronics',
            country=country,
            city=city,
            lat=lat,
            lon=lon,
            device_id=f"dev_{self.fake.uuid4()[:12]}",
            channel=Channel.ONLINE,
            previous_balance=self._debit(profile, amount),
        )
        return LabeledTransaction(transaction=tx, is_fraud=True, fraud_type='account_takeover')

    def _burst(self, profile: AccountProfile) -> List[LabeledTransaction]:
        self._advance_clock(profile)
        merchant = self.fake.company()
        episode = []
        for _ in range(int(self.rng.integers(6, 12))):
            profile.clock_ms += int(self.rng.integers(2, 10)) * 1000
            amount = round(float(self.rng.uniform(0.5, 1.5)) * profile.mean_amount, 2)
            tx = Transaction(
                id=self._next_id(),
                account_id=profile.account_id,
                amount=-amount,
                currency=CURRENCIES.get(profile.country, 'USD'),
                timestamp=profile.clock_ms,
                merchant=merchant,
                category='retail',
                country=profile.country,
                city=profile.city,
                lat=profile.lat,
                lon=profile.lon,
                device_id=profile.device_id,
                channel=Channel.ONLINE,
                previous_balance=self._debit(profile, amount),
            )
            episode.append(LabeledTransaction(transaction=tx, is_fraud=True, fraud_type='burst'))
        return episode

    def _card_testing(self, profile: AccountProfile) -> LabeledTransaction:
        self._advance_clock(profile)
        amount = round(float(self.rng.uniform(0.01, 1.0)), 2)
        tx = Transaction(
            id=self._next_id(),
            account_id=profile.account_id,
            amount=-amount,
            currency='USD',
            timestamp=profile.clock_ms,
            merchant=self.fake.company(),
            category='digital_goods',
            country=profile.country,
            city=profile.city,
            device_id=f"dev_{self.fake.uuid4()[:12]}",
            channel=Channel.ONLINE,
            previous_balance=self._debit(profile, amount),
        )
        return LabeledTransaction(transaction=tx, is_fraud=True, fraud_type='card_testing')

    def baseline(self, per_account: int = 50) -> List[Transaction]:
        """Fraud-free history, interleaved across accounts in time order."""
        history = [self.legitimate(p) for _ in range(per_account) for p in self.accounts]
        history.sort(key=lambda tx: tx.timestamp)
        return history

    def stream(self, count: int) -> Iterator[LabeledTransaction]:
        """Yield `count` labeled transactions with fraud injected at `fraud_rate`."""
        emitted = 0
        while emitted < count:
            profile = self.accounts[int(self.rng.integers(len(self.accounts)))]
            if self.rng.random() < self.fraud_rate:
                episode = self.fraudulent(profile)
            else:
                episode = [LabeledTransaction(transaction=self.legitimate(profile), is_fraud=False)]

            for labeled in episode[:count - emitted]:
                emitted += 1
                yield labeled

    @staticmethod
    def feedback_for(labeled: LabeledTransaction) -> FeedbackEvent:
        """Analyst feedback carrying the ground-truth label."""
        return FeedbackEvent(
            transaction_id=labeled.transaction.id,
            is_fraud=labeled.is_fraud,
            category=labeled.fraud_type,
            timestamp=labeled.transaction.timestamp + 24 * MS_PER_HOUR,
        )
