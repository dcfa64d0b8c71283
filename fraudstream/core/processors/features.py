"""
Transaction feature processors.

Maintains bounded per-account rolling state and converts raw transactions
into numeric feature vectors for the anomaly ensemble and pattern rules.
Every feature is computed against history that excludes the transaction
being extracted; the transaction is folded into history afterwards.
"""

import math
import threading
import time
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np
import structlog

from fraudstream.core.models.config import FeatureConfig
from fraudstream.core.models.events import Transaction
from fraudstream.core.models.results import FeatureVector
from fraudstream.core.utils.geo import haversine_km
from fraudstream.core.utils.metrics import ACCOUNTS_TRACKED, FEATURE_EXTRACTION_DURATION, HISTORY_TRUNCATIONS
from fraudstream.core.utils.windowing import BoundedHistory

logger = structlog.get_logger(__name__)

MS_PER_HOUR = 3600 * 1000
COUNTER_PRUNE_BELOW = 0.5


@dataclass
class AccountState:
    """Rolling state for one account."""
    history: BoundedHistory
    merchant_counts: Dict[str, float] = field(default_factory=dict)
    category_counts: Dict[str, float] = field(default_factory=dict)
    hour_histogram: List[float] = field(default_factory=lambda: [0.0] * 24)
    last_timestamp: Optional[int] = None
    last_device_id: Optional[str] = None
    last_country: Optional[str] = None
    last_location: Optional[Tuple[float, float, int]] = None  # lat, lon, timestamp
    updates: int = 0


class AccountStateStore:
    """Account states sharded by account id, one lock per shard."""

    def __init__(self, history_cap: int, shard_count: int = 64):
        self.history_cap = history_cap
        self._shards: List[Tuple[Dict[str, AccountState], threading.Lock]] = [
            ({}, threading.Lock()) for _ in range(shard_count)
        ]
        self._count = 0
        self._count_lock = threading.Lock()

    def _shard(self, account_id: str) -> Tuple[Dict[str, AccountState], threading.Lock]:
        return self._shards[zlib.crc32(account_id.encode('utf-8')) % len(self._shards)]

    @contextmanager
    def locked(self, account_id: str) -> Iterator[AccountState]:
        """Hold the account's shard lock, creating its state on first use."""
        states, lock = self._shard(account_id)
        with lock:
            state = states.get(account_id)
            if state is None:
                state = AccountState(history=BoundedHistory(self.history_cap))
                states[account_id] = state
                with self._count_lock:
                    self._count += 1
                    ACCOUNTS_TRACKED.set(self._count)
            yield state

    def account_count(self) -> int:
        return self._count

    def snapshot(self, account_id: str) -> Optional[Dict]:
        """Read-only copy of an account's state."""
        states, lock = self._shard(account_id)
        with lock:
            state = states.get(account_id)
            if state is None:
                return None
            return {
                'history_size': state.history.size(),
                'amounts': state.history.amounts(),
                'timestamps': state.history.timestamps(),
                'merchant_counts': dict(state.merchant_counts),
                'category_counts': dict(state.category_counts),
                'hour_histogram': list(state.hour_histogram),
                'last_timestamp': state.last_timestamp,
                'last_device_id': state.last_device_id,
                'last_country': state.last_country,
                'updates': state.updates,
            }


class FeatureExtractor:
    """Compute fraud features from transactions against per-account history."""

    def __init__(self, config: Optional[FeatureConfig] = None, clock: Callable[[], float] = time.perf_counter):
        self.config = config or FeatureConfig()
        self.clock = clock
        self.store = AccountStateStore(self.config.history_cap, self.config.shard_count)
        self._high_risk_countries = {c.upper() for c in self.config.high_risk_countries}

        self.feature_names: Tuple[str, ...] = tuple(
            ['amount', 'is_debit', 'amount_mean', 'amount_std', 'amount_zscore']
            + [f'velocity_{w}m' for w in self.config.velocity_windows_minutes]
            + ['seconds_since_last', 'merchant_novelty', 'hour_deviation',
               'geo_distance_km', 'geo_speed_kmh', 'device_changed', 'country_changed',
               'channel_risk', 'country_risk', 'balance_impact_ratio']
        )

    def extract(self, tx: Transaction) -> FeatureVector:
        """Compute features for `tx`, then fold it into its account's history."""
        with self.store.locked(tx.account_id) as state:
            start = self.clock()

            values = self._compute(tx, state)
            self._fold(tx, state)

            elapsed_ms = (self.clock() - start) * 1000
            if elapsed_ms > self.config.extraction_budget_ms:
                keep = self.config.history_cap // 2
                state.history.truncate(keep)
                HISTORY_TRUNCATIONS.inc()
                logger.warning("Slow feature extraction, history truncated",
                               account_id=tx.account_id,
                               elapsed_ms=round(elapsed_ms, 3),
                               kept=keep)

        FEATURE_EXTRACTION_DURATION.observe(elapsed_ms / 1000)

        return FeatureVector(
            transaction_id=tx.id,
            account_id=tx.account_id,
            names=self.feature_names,
            values=tuple(_finite(v) for v in values),
        )

    def _compute(self, tx: Transaction, state: AccountState) -> List[float]:
        eps = self.config.epsilon
        amount = tx.abs_amount
        now = tx.timestamp

        # Amount features
        history_amounts = state.history.amounts()
        if history_amounts:
            arr = np.asarray(history_amounts, dtype=float)
            amount_mean = float(arr.mean())
            amount_std = float(arr.std())  # population
            amount_z = (amount - amount_mean) / max(amount_std, eps)
        else:
            amount_mean = amount_std = amount_z = 0.0

        # Velocity features
        velocities = [
            float(state.history.count_in_window(now, w * 60 * 1000))
            for w in self.config.velocity_windows_minutes
        ]

        if state.last_timestamp is None:
            seconds_since_last = 0.0
        else:
            seconds_since_last = max(0.0, (now - state.last_timestamp) / 1000)

        merchant_novelty = self._novelty(tx, state)
        hour_deviation = self._hour_deviation(now, state)
        geo_distance, geo_speed = self._geo(tx, state)

        device_changed = float(
            tx.device_id is not None
            and state.last_device_id is not None
            and tx.device_id != state.last_device_id
        )
        country_changed = float(
            tx.country is not None
            and state.last_country is not None
            and tx.country.upper() != state.last_country
        )

        if tx.channel is None:
            channel_risk = self.config.default_channel_risk
        else:
            channel_risk = self.config.channel_risk.get(tx.channel, self.config.default_channel_risk)

        country_risk = float(tx.country is not None and tx.country.upper() in self._high_risk_countries)

        if tx.previous_balance is None:
            balance_impact = 0.0
        else:
            balance_impact = amount / max(1.0, tx.previous_balance)

        return (
            [amount, float(tx.amount < 0), amount_mean, amount_std, amount_z]
            + velocities
            + [seconds_since_last, merchant_novelty, hour_deviation,
               geo_distance, geo_speed, device_changed, country_changed,
               channel_risk, country_risk, balance_impact]
        )

    def _novelty(self, tx: Transaction, state: AccountState) -> float:
        """0 for an unseen merchant, else 1/sqrt(count + 1)."""
        if tx.merchant:
            count = state.merchant_counts.get(tx.merchant, 0.0)
        elif tx.category:
            count = state.category_counts.get(tx.category, 0.0)
        else:
            return 0.0
        if count <= 0:
            return 0.0
        return 1.0 / math.sqrt(count + 1)

    def _hour_deviation(self, timestamp: int, state: AccountState) -> float:
        total = sum(state.hour_histogram)
        if total <= 0:
            return 0.0
        return 1.0 - state.hour_histogram[_hour_of_day(timestamp)] / total

    def _geo(self, tx: Transaction, state: AccountState) -> Tuple[float, float]:
        if not tx.has_geo or state.last_location is None:
            return 0.0, 0.0
        last_lat, last_lon, last_ts = state.last_location
        distance = haversine_km(last_lat, last_lon, tx.lat, tx.lon)
        hours = max(self.config.epsilon, abs(tx.timestamp - last_ts) / MS_PER_HOUR)
        return distance, distance / hours

    def _fold(self, tx: Transaction, state: AccountState):
        """Append `tx` to the account state."""
        state.history.add_event(tx.timestamp, tx.abs_amount)

        if tx.merchant:
            state.merchant_counts[tx.merchant] = state.merchant_counts.get(tx.merchant, 0.0) + 1
        if tx.category:
            state.category_counts[tx.category] = state.category_counts.get(tx.category, 0.0) + 1

        hist = state.hour_histogram
        hist[_hour_of_day(tx.timestamp)] += 1
        decay = self.config.hour_decay_factor
        for i in range(24):
            hist[i] *= decay

        state.updates += 1
        if state.updates % self.config.counter_decay_interval == 0:
            self._decay_counters(state.merchant_counts)
            self._decay_counters(state.category_counts)
        self._bound_counters(state.merchant_counts)
        self._bound_counters(state.category_counts)

        state.last_timestamp = tx.timestamp
        if tx.device_id is not None:
            state.last_device_id = tx.device_id
        if tx.country is not None:
            state.last_country = tx.country.upper()
        if tx.has_geo:
            state.last_location = (tx.lat, tx.lon, tx.timestamp)

    def _decay_counters(self, counts: Dict[str, float]):
        factor = self.config.counter_decay_factor
        for key in list(counts):
            counts[key] *= factor
            if counts[key] < COUNTER_PRUNE_BELOW:
                del counts[key]

    def _bound_counters(self, counts: Dict[str, float]):
        while len(counts) > self.config.history_cap:
            del counts[min(counts, key=counts.get)]

    def account_count(self) -> int:
        return self.store.account_count()

    def snapshot(self, account_id: str) -> Optional[Dict]:
        return self.store.snapshot(account_id)


def _hour_of_day(timestamp_ms: int) -> int:
    """UTC hour of an epoch-millisecond timestamp."""
    return int((timestamp_ms // MS_PER_HOUR) % 24)


def _finite(value: float) -> float:
    value = float(value)
    return value if math.isfinite(value) else 0.0
