"""
Shared Prometheus metrics for the fraud scoring core.

This module provides centralized metric definitions to avoid
duplicate registrations across processor modules.
"""

from prometheus_client import Counter, Gauge, Histogram

# Scoring metrics
TRANSACTIONS_SCORED = Counter(
    'fraud_transactions_scored_total',
    'Total transactions scored',
    ['category']
)

SCORING_LATENCY = Histogram(
    'fraud_scoring_latency_seconds',
    'End-to-end scoring latency',
    buckets=[0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

RISK_SCORE_DISTRIBUTION = Histogram(
    'fraud_risk_score_distribution',
    'Distribution of risk scores',
    buckets=[0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
)

SLA_BREACHES = Counter(
    'fraud_scoring_sla_breaches_total',
    'Scoring calls slower than the latency SLA'
)

# Feature metrics
FEATURE_EXTRACTION_DURATION = Histogram(
    'fraud_feature_extraction_duration_seconds',
    'Time spent extracting features'
)

HISTORY_TRUNCATIONS = Counter(
    'fraud_history_truncations_total',
    'Account histories truncated after a slow extraction'
)

ACCOUNTS_TRACKED = Gauge(
    'fraud_accounts_tracked',
    'Accounts with feature state'
)

# Model metrics
ENSEMBLE_FITS = Counter(
    'fraud_ensemble_fits_total',
    'Anomaly ensemble fits',
    ['trigger']
)

MODEL_ERRORS = Counter(
    'fraud_model_errors_total',
    'Anomaly sub-model scoring failures',
    ['model']
)

# Pattern metrics
PATTERN_FINDINGS = Counter(
    'fraud_pattern_findings_total',
    'Triggered behavioral patterns',
    ['pattern']
)

PATTERN_ERRORS = Counter(
    'fraud_pattern_errors_total',
    'Pattern rule evaluation failures',
    ['pattern']
)

# Feedback metrics
FEEDBACK_EVENTS = Counter(
    'fraud_feedback_events_total',
    'Feedback events received',
    ['label']
)

FALSE_POSITIVE_RATE = Gauge(
    'fraud_false_positive_rate',
    'False positive rate over the recent feedback window'
)
