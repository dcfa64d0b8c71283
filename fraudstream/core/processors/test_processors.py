#!/usr/bin/env python3
"""
Tests for the scoring processors.

Exercises feature extraction, the anomaly ensemble, pattern rules and
risk aggregation in isolation, without a FraudScorer.
"""

import math
import os
import sys

import numpy as np
import pytest
from pydantic import ValidationError

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))))

from fraudstream.core.models.config import AggregationConfig, AnomalyConfig, FeatureConfig, ScorerConfig
from fraudstream.core.models.events import Channel, Transaction
from fraudstream.core.models.results import AnomalyScore, FeatureVector, PatternFinding
from fraudstream.core.processors.aggregation import NORMAL_REASON, RiskAggregator, round_half_up
from fraudstream.core.processors.anomaly import AnomalyEnsemble, IqrOutlierModel, ZScoreDistanceModel
from fraudstream.core.processors.features import FeatureExtractor
from fraudstream.core.processors.patterns import PatternRecognizer, device_change

HOUR_MS = 3600 * 1000
T0 = 1704067200000 + 10 * HOUR_MS  # 2024-01-01T10:00:00Z

NYC = (40.7128, -74.0060)
LONDON = (51.5074, -0.1278)


def make_tx(n: int, timestamp: int, amount: float = -50.0, account_id: str = "acct_1", **kwargs) -> Transaction:
    fields = dict(
        id=f"tx_{n}",
        account_id=account_id,
        amount=amount,
        timestamp=timestamp,
        merchant="Corner Shop",
        country="US",
        lat=NYC[0],
        lon=NYC[1],
        device_id="dev_a",
        channel=Channel.POS,
    )
    fields.update(kwargs)
    return Transaction(**fields)


def make_vector(names, values, transaction_id="tx") -> FeatureVector:
    return FeatureVector(transaction_id=transaction_id, account_id="acct", names=tuple(names), values=tuple(values))


def pattern_vector(**overrides) -> FeatureVector:
    names = FeatureExtractor().feature_names
    values = [float(overrides.get(name, 0.0)) for name in names]
    return make_vector(names, values)


# Feature extraction

def test_feature_names_follow_configured_windows():
    extractor = FeatureExtractor(FeatureConfig(velocity_windows_minutes=[60, 1, 5]))
    names = extractor.feature_names

    assert names[:5] == ('amount', 'is_debit', 'amount_mean', 'amount_std', 'amount_zscore')
    assert names[5:8] == ('velocity_1m', 'velocity_5m', 'velocity_60m')
    assert names[-1] == 'balance_impact_ratio'
    assert len(names) == 18


def test_first_transaction_has_neutral_history_features():
    extractor = FeatureExtractor()
    fv = extractor.extract(make_tx(1, T0, amount=-120.0))

    assert fv.get('amount') == 120.0
    assert fv.get('is_debit') == 1.0
    assert fv.get('amount_mean') == 0.0
    assert fv.get('amount_zscore') == 0.0
    assert fv.get('velocity_1m') == 0.0
    assert fv.get('seconds_since_last') == 0.0
    assert fv.get('merchant_novelty') == 0.0
    assert fv.get('hour_deviation') == 0.0
    assert fv.get('geo_distance_km') == 0.0
    assert fv.get('channel_risk') == 0.5
    assert all(math.isfinite(v) for v in fv.values)


def test_features_exclude_current_transaction():
    extractor = FeatureExtractor()
    extractor.extract(make_tx(1, T0, amount=-40.0))
    fv = extractor.extract(make_tx(2, T0 + 60_000, amount=-80.0))

    assert fv.get('amount_mean') == 40.0
    assert fv.get('amount_std') == 0.0
    assert fv.get('seconds_since_last') == 60.0

    snapshot = extractor.snapshot("acct_1")
    assert snapshot['amounts'] == [40.0, 80.0]


def test_velocity_windows_count_trailing_history():
    extractor = FeatureExtractor()
    for n, offset in enumerate([0, 30_000, 240_000]):
        extractor.extract(make_tx(n, T0 + offset))

    fv = extractor.extract(make_tx(9, T0 + 270_000))

    assert fv.get('velocity_1m') == 1.0
    assert fv.get('velocity_5m') == 3.0
    assert fv.get('velocity_60m') == 3.0


def test_merchant_novelty_grows_with_familiarity():
    extractor = FeatureExtractor()

    first = extractor.extract(make_tx(1, T0))
    second = extractor.extract(make_tx(2, T0 + HOUR_MS))
    third = extractor.extract(make_tx(3, T0 + 2 * HOUR_MS))

    assert first.get('merchant_novelty') == 0.0
    assert second.get('merchant_novelty') == pytest.approx(1 / math.sqrt(2))
    assert third.get('merchant_novelty') == pytest.approx(1 / math.sqrt(3))


def test_merchant_novelty_falls_back_to_category():
    extractor = FeatureExtractor()
    extractor.extract(make_tx(1, T0, merchant=None, category="grocery"))
    fv = extractor.extract(make_tx(2, T0 + HOUR_MS, merchant=None, category="grocery"))

    assert fv.get('merchant_novelty') == pytest.approx(1 / math.sqrt(2))


def test_hour_deviation_uses_account_histogram():
    extractor = FeatureExtractor()
    for day in range(5):
        extractor.extract(make_tx(day, T0 + day * 24 * HOUR_MS))

    usual = extractor.extract(make_tx(10, T0 + 5 * 24 * HOUR_MS))
    odd = extractor.extract(make_tx(11, T0 + 5 * 24 * HOUR_MS + 17 * HOUR_MS))  # 03:00 UTC

    assert usual.get('hour_deviation') == 0.0
    assert odd.get('hour_deviation') == 1.0


def test_geo_distance_and_speed():
    extractor = FeatureExtractor()
    extractor.extract(make_tx(1, T0))
    fv = extractor.extract(make_tx(2, T0 + HOUR_MS, lat=LONDON[0], lon=LONDON[1], country="GB"))

    assert fv.get('geo_distance_km') == pytest.approx(5570, rel=0.01)
    assert fv.get('geo_speed_kmh') == pytest.approx(fv.get('geo_distance_km'))
    assert fv.get('country_changed') == 1.0


def test_missing_geo_degrades_to_zero():
    extractor = FeatureExtractor()
    extractor.extract(make_tx(1, T0))
    fv = extractor.extract(make_tx(2, T0 + HOUR_MS, lat=None, lon=None))

    assert fv.get('geo_distance_km') == 0.0
    assert fv.get('geo_speed_kmh') == 0.0


def test_device_change_requires_both_devices():
    extractor = FeatureExtractor()
    extractor.extract(make_tx(1, T0, device_id=None))
    unknown = extractor.extract(make_tx(2, T0 + HOUR_MS, device_id="dev_a"))
    changed = extractor.extract(make_tx(3, T0 + 2 * HOUR_MS, device_id="dev_b"))

    assert unknown.get('device_changed') == 0.0
    assert changed.get('device_changed') == 1.0


def test_static_risk_lookups():
    extractor = FeatureExtractor()
    fv = extractor.extract(make_tx(1, T0, country="ng", channel=Channel.ONLINE, previous_balance=1000.0))

    assert fv.get('country_risk') == 1.0
    assert fv.get('channel_risk') == 1.0
    assert fv.get('balance_impact_ratio') == pytest.approx(0.05)

    missing = extractor.extract(make_tx(2, T0, account_id="acct_2", channel=None))
    assert missing.get('channel_risk') == 0.5
    assert missing.get('balance_impact_ratio') == 0.0


def test_identical_replays_yield_identical_features():
    txs = [make_tx(n, T0 + n * 45_000, amount=-(10.0 + n % 7)) for n in range(50)]

    a = FeatureExtractor()
    b = FeatureExtractor()
    first = [a.extract(tx) for tx in txs]
    second = [b.extract(tx) for tx in txs]

    assert first == second


def test_history_never_exceeds_cap():
    extractor = FeatureExtractor(FeatureConfig(history_cap=5))
    for n in range(20):
        extractor.extract(make_tx(n, T0 + n * 1000))

    assert extractor.snapshot("acct_1")['history_size'] == 5


def test_slow_extraction_truncates_history():
    ticks = iter(i * 0.1 for i in range(1000))  # every clock read advances 100 ms
    extractor = FeatureExtractor(FeatureConfig(history_cap=10), clock=lambda: next(ticks))

    for n in range(8):
        extractor.extract(make_tx(n, T0 + n * 1000))

    assert extractor.snapshot("acct_1")['history_size'] == 5


def test_accounts_are_isolated():
    extractor = FeatureExtractor()
    extractor.extract(make_tx(1, T0, account_id="acct_a", amount=-500.0))
    fv = extractor.extract(make_tx(2, T0 + 1000, account_id="acct_b"))

    assert fv.get('amount_mean') == 0.0
    assert extractor.account_count() == 2
    assert extractor.snapshot("acct_missing") is None


def test_invalid_feature_config_is_rejected():
    with pytest.raises(ValidationError):
        FeatureConfig(velocity_windows_minutes=[])
    with pytest.raises(ValidationError):
        FeatureConfig(velocity_windows_minutes=[5, 5])


def test_burst_windows_are_required():
    with pytest.raises(ValidationError):
        FeatureConfig(velocity_windows_minutes=[60])
    with pytest.raises(ValidationError):
        FeatureConfig(velocity_windows_minutes=[1, 60])

    assert FeatureConfig(velocity_windows_minutes=[5, 1]).velocity_windows_minutes == [1, 5]


# Anomaly ensemble

def test_cold_ensemble_scores_zero():
    ensemble = AnomalyEnsemble()
    scores = ensemble.score(make_vector(['a'], [100.0]))

    assert [s.model for s in scores] == ['iqr_outlier', 'zscore_distance']
    assert all(s.score == 0.0 and s.details['phase'] == 'cold' for s in scores)
    assert not ensemble.is_fitted


def test_empty_fit_is_noop():
    ensemble = AnomalyEnsemble()

    assert ensemble.fit([]) is False
    assert not ensemble.is_fitted
    assert ensemble.fit_count == 0


def test_iqr_model_uses_lower_nearest_rank_percentiles():
    model = IqrOutlierModel()
    baseline = [make_vector(['a', 'b'], [float(v), 0.0]) for v in range(1, 11)]
    params = model.fit(np.asarray([s.values for s in baseline]))

    assert params.p25[0] == 3.0
    assert params.p75[0] == 7.0

    inside, _ = model.score(params, make_vector(['a', 'b'], [5.0, 0.0]).to_array())
    above, details = model.score(params, make_vector(['a', 'b'], [9.0, 0.0]).to_array())

    assert inside == 0.0
    assert above == pytest.approx((2 / 3) / 2)
    assert details['outlier_by_feature'][1] == 0.0


def test_distance_model_centres_on_nu_threshold():
    ensemble = AnomalyEnsemble(AnomalyConfig(nu=0.1))
    ensemble.fit([make_vector(['a'], [v]) for v in [0.0, 2.0] * 10])

    at_mean = ensemble.score(make_vector(['a'], [1.0]))
    far = ensemble.score(make_vector(['a'], [4.0]))

    assert at_mean[1].model == 'zscore_distance'
    assert at_mean[1].score == pytest.approx(0.1)
    assert far[1].score == pytest.approx(1 / (1 + math.exp(-(9 - math.log(9)))))


def test_distance_model_rejects_invalid_nu():
    with pytest.raises(ValueError):
        ZScoreDistanceModel(nu=1.0)
    with pytest.raises(ValidationError):
        AnomalyConfig(nu=0.0)


def test_feature_mismatch_degrades_to_zero():
    ensemble = AnomalyEnsemble()
    ensemble.fit([make_vector(['a', 'b'], [1.0, 2.0]), make_vector(['a', 'b'], [2.0, 3.0])])

    scores = ensemble.score(make_vector(['a'], [1.0]))

    assert len(scores) == 2
    assert all(s.score == 0.0 and 'error' in s.details for s in scores)


def test_fit_notifies_listeners_and_bounds_baseline():
    ensemble = AnomalyEnsemble(AnomalyConfig(max_baseline=3))
    seen = []
    ensemble.fit_listeners.append(seen.append)

    assert ensemble.fit([make_vector(['a'], [float(v)]) for v in range(5)])
    assert ensemble.fit_count == 1
    assert seen == [3]


def test_scores_stay_within_unit_interval():
    ensemble = AnomalyEnsemble()
    ensemble.fit([make_vector(['a', 'b'], [float(v), float(v % 3)]) for v in range(50)])

    for value in [-1e9, -5.0, 0.0, 25.0, 1e9]:
        for score in ensemble.score(make_vector(['a', 'b'], [value, value])):
            assert 0.0 <= score.score <= 1.0


# Pattern rules

def test_no_findings_for_quiet_features():
    assert PatternRecognizer().recognize(pattern_vector(channel_risk=0.5), make_tx(1, T0)) == []


def test_burst_activity_scores_velocity():
    findings = PatternRecognizer().recognize(pattern_vector(velocity_1m=5, velocity_5m=5), make_tx(1, T0))
    burst = [f for f in findings if f.name == 'burst_activity']

    assert burst and burst[0].score == 0.5


def test_burst_activity_counts_older_window_overflow():
    findings = PatternRecognizer().recognize(pattern_vector(velocity_1m=2, velocity_5m=14), make_tx(1, T0))

    assert findings[0].name == 'burst_activity'
    assert findings[0].score == 1.0


@pytest.mark.parametrize("speed,expected", [(100.0, None), (600.0, 0.5), (2000.0, 1.0)])
def test_impossible_travel_is_linear_in_speed(speed, expected):
    findings = PatternRecognizer().recognize(pattern_vector(geo_speed_kmh=speed), make_tx(1, T0))
    travel = [f.score for f in findings if f.name == 'impossible_travel']

    if expected is None:
        assert travel == []
    else:
        assert travel == [pytest.approx(expected)]


def test_fixed_score_rules():
    features = pattern_vector(device_changed=1, country_risk=1, channel_risk=1.0)
    findings = {f.name: f.score for f in PatternRecognizer().recognize(features, make_tx(1, T0, country="NG"))}

    assert findings == {'device_change': 0.6, 'high_risk_country': 0.8, 'high_risk_channel': 0.5}


def test_threshold_rules_emit_raw_value():
    features = pattern_vector(merchant_novelty=0.75, hour_deviation=0.9)
    findings = {f.name: f.score for f in PatternRecognizer().recognize(features, make_tx(1, T0))}

    assert findings == {'merchant_novelty': 0.75, 'odd_hour': 0.9}

    quiet = pattern_vector(merchant_novelty=0.7, hour_deviation=0.8)
    assert PatternRecognizer().recognize(quiet, make_tx(1, T0)) == []


def test_amount_structuring_needs_known_balance():
    recognizer = PatternRecognizer()
    features = pattern_vector(amount=60.0, balance_impact_ratio=0.003)

    with_balance = recognizer.recognize(features, make_tx(1, T0, amount=-60.0, previous_balance=20000.0))
    without = recognizer.recognize(features, make_tx(1, T0, amount=-60.0))

    assert [(f.name, f.score) for f in with_balance] == [('amount_structuring', pytest.approx(0.12))]
    assert without == []


def test_failing_rule_is_skipped():
    def broken(features, tx):
        raise RuntimeError("boom")

    recognizer = PatternRecognizer(rules=[('broken', broken), ('device_change', device_change)])
    findings = recognizer.recognize(pattern_vector(device_changed=1), make_tx(1, T0))

    assert [f.name for f in findings] == ['device_change']


# Aggregation

def test_empty_components_aggregate_to_normal():
    assessment = RiskAggregator().aggregate([], [])

    assert assessment.score == 0
    assert assessment.category == 'low'
    assert assessment.reasons == [NORMAL_REASON]


def test_weighted_mean_aggregation():
    anomaly = [AnomalyScore('iqr_outlier', 0.5), AnomalyScore('zscore_distance', 0.5)]
    findings = [PatternFinding('high_risk_country', 0.8, "Transaction from high-risk country NG")]

    assessment = RiskAggregator().aggregate(anomaly, findings)

    assert assessment.score == 62
    assert assessment.category == 'medium'
    assert assessment.reasons == ["high_risk_country: Transaction from high-risk country NG"]


def test_rounding_is_half_up():
    assert round_half_up(12.5) == 13
    assessment = RiskAggregator().aggregate([AnomalyScore('iqr_outlier', 0.125)], [],
                                            weights={'anomaly': 1.0, 'pattern': 0.0})
    assert assessment.score == 13


def test_score_is_clamped():
    assessment = RiskAggregator().aggregate([AnomalyScore('iqr_outlier', 1.0)], [], weights={'anomaly': 2.0})

    assert assessment.score == 100
    assert assessment.category == 'critical'


@pytest.mark.parametrize("score,category", [
    (0, 'low'), (29, 'low'), (30, 'medium'), (69, 'medium'),
    (70, 'high'), (84, 'high'), (85, 'critical'), (100, 'critical'),
])
def test_category_boundaries(score, category):
    assert RiskAggregator().categorize(score) == category


def test_reasons_use_strict_thresholds():
    anomaly = [AnomalyScore('iqr_outlier', 0.7), AnomalyScore('zscore_distance', 0.6)]
    findings = [PatternFinding('high_risk_channel', 0.5, "Card-not-present channel online")]

    reasons = RiskAggregator().aggregate(anomaly, findings).reasons

    assert reasons == ["Anomaly (iqr_outlier) score=0.70"]


def test_thresholds_must_increase():
    with pytest.raises(ValidationError):
        AggregationConfig(category_thresholds={'low': 0, 'high': 70, 'medium': 30})
    with pytest.raises(ValidationError):
        AggregationConfig(category_thresholds={'low': 10, 'high': 70})


# Environment configuration

def test_env_overrides_are_applied(monkeypatch):
    monkeypatch.setenv("FRAUD_HISTORY_CAP", "50")
    monkeypatch.setenv("FRAUD_ANOMALY_NU", "0.2")
    monkeypatch.setenv("ENVIRONMENT", "staging")
    monkeypatch.delenv("FRAUD_EXTRACTION_BUDGET_MS", raising=False)

    config = ScorerConfig.from_env()

    assert config.features.history_cap == 50
    assert config.anomaly.nu == 0.2
    assert config.logging.environment == "staging"
    assert config.features.extraction_budget_ms == 50.0


@pytest.mark.parametrize("name,value", [
    ("FRAUD_HISTORY_CAP", "-4"),
    ("FRAUD_EXTRACTION_BUDGET_MS", "-1"),
    ("FRAUD_EXTRACTION_BUDGET_MS", "0"),
    ("FRAUD_ANOMALY_NU", "1.5"),
    ("FRAUD_LATENCY_SLA_MS", "-10"),
])
def test_invalid_env_values_are_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        ScorerConfig.from_env()
