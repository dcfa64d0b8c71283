"""
Deterministic behavioral pattern rules.

Each rule reads the feature vector (and the raw transaction where needed)
and either returns a PatternFinding or None. Rules are independent: a
failing rule is logged and skipped without affecting the others.
"""

from typing import Callable, List, Optional, Tuple

import structlog

from fraudstream.core.models.events import Transaction
from fraudstream.core.models.results import FeatureVector, PatternFinding
from fraudstream.core.utils.metrics import PATTERN_ERRORS, PATTERN_FINDINGS

logger = structlog.get_logger(__name__)

# Rule thresholds
BURST_SATURATION = 10.0
TRAVEL_MIN_SPEED_KMH = 200.0
TRAVEL_MAX_SPEED_KMH = 1000.0
DEVICE_CHANGE_SCORE = 0.6
NOVELTY_THRESHOLD = 0.7
HIGH_RISK_COUNTRY_SCORE = 0.8
HIGH_RISK_CHANNEL_LEVEL = 1.0
HIGH_RISK_CHANNEL_SCORE = 0.5
ODD_HOUR_THRESHOLD = 0.8
STRUCTURING_RATIO = 0.005
STRUCTURING_MIN_AMOUNT = 50.0
STRUCTURING_SATURATION = 500.0

Rule = Callable[[FeatureVector, Transaction], Optional[PatternFinding]]


def burst_activity(features: FeatureVector, tx: Transaction) -> Optional[PatternFinding]:
    v1 = features.get('velocity_1m')
    v5 = features.get('velocity_5m')
    score = min(1.0, (v1 + max(0.0, v5 - v1)) / BURST_SATURATION)
    if score <= 0:
        return None
    return PatternFinding(
        name='burst_activity',
        score=score,
        reason=f"{int(v1)} transactions in the last minute, {int(v5)} in the last 5 minutes",
    )


def impossible_travel(features: FeatureVector, tx: Transaction) -> Optional[PatternFinding]:
    speed = features.get('geo_speed_kmh')
    span = TRAVEL_MAX_SPEED_KMH - TRAVEL_MIN_SPEED_KMH
    score = min(1.0, max(0.0, (speed - TRAVEL_MIN_SPEED_KMH) / span))
    if score <= 0:
        return None
    return PatternFinding(
        name='impossible_travel',
        score=score,
        reason=f"Moved {features.get('geo_distance_km'):.0f} km at {speed:.0f} km/h since last transaction",
    )


def device_change(features: FeatureVector, tx: Transaction) -> Optional[PatternFinding]:
    if features.get('device_changed') < 1:
        return None
    return PatternFinding(name='device_change', score=DEVICE_CHANGE_SCORE, reason="New device for this account")


def merchant_novelty(features: FeatureVector, tx: Transaction) -> Optional[PatternFinding]:
    novelty = features.get('merchant_novelty')
    if novelty <= NOVELTY_THRESHOLD:
        return None
    return PatternFinding(
        name='merchant_novelty',
        score=min(1.0, novelty),
        reason=f"Rarely used merchant {tx.merchant or tx.category}",
    )


def high_risk_country(features: FeatureVector, tx: Transaction) -> Optional[PatternFinding]:
    if features.get('country_risk') < 1:
        return None
    return PatternFinding(
        name='high_risk_country',
        score=HIGH_RISK_COUNTRY_SCORE,
        reason=f"Transaction from high-risk country {tx.country}",
    )


def high_risk_channel(features: FeatureVector, tx: Transaction) -> Optional[PatternFinding]:
    if features.get('channel_risk') < HIGH_RISK_CHANNEL_LEVEL:
        return None
    return PatternFinding(
        name='high_risk_channel',
        score=HIGH_RISK_CHANNEL_SCORE,
        reason=f"Card-not-present channel {tx.channel}",
    )


def odd_hour(features: FeatureVector, tx: Transaction) -> Optional[PatternFinding]:
    deviation = features.get('hour_deviation')
    if deviation <= ODD_HOUR_THRESHOLD:
        return None
    return PatternFinding(name='odd_hour', score=deviation, reason="Unusual hour of day for this account")


def amount_structuring(features: FeatureVector, tx: Transaction) -> Optional[PatternFinding]:
    if tx.previous_balance is None:
        return None
    amount = features.get('amount')
    ratio = features.get('balance_impact_ratio')
    if ratio >= STRUCTURING_RATIO or amount <= STRUCTURING_MIN_AMOUNT:
        return None
    return PatternFinding(
        name='amount_structuring',
        score=min(1.0, amount / STRUCTURING_SATURATION),
        reason=f"Small amount {amount:.2f} relative to balance ({ratio:.4f})",
    )


DEFAULT_RULES: Tuple[Tuple[str, Rule], ...] = (
    ('burst_activity', burst_activity),
    ('impossible_travel', impossible_travel),
    ('device_change', device_change),
    ('merchant_novelty', merchant_novelty),
    ('high_risk_country', high_risk_country),
    ('high_risk_channel', high_risk_channel),
    ('odd_hour', odd_hour),
    ('amount_structuring', amount_structuring),
)


class PatternRecognizer:
    """Evaluate behavioral rules against a feature vector."""

    def __init__(self, rules: Optional[List[Tuple[str, Rule]]] = None):
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)

    def recognize(self, features: FeatureVector, tx: Transaction) -> List[PatternFinding]:
        """
        Run every rule and collect the triggered findings.

        Args:
            features: Features extracted for `tx`
            tx: The transaction being scored

        Returns:
            Triggered findings, empty when nothing fired
        """
        findings = []
        for name, rule in self.rules:
            try:
                finding = rule(features, tx)
            except Exception as e:
                PATTERN_ERRORS.labels(pattern=name).inc()
                logger.error("Pattern rule failed",
                             pattern=name,
                             transaction_id=tx.id,
                             error=str(e))
                continue

            if finding is not None:
                PATTERN_FINDINGS.labels(pattern=finding.name).inc()
                findings.append(finding)

        return findings
