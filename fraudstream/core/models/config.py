"""
Configuration models for fraud scoring.

Centralized configuration for the feature extractor, anomaly ensemble,
risk aggregation, feedback recalibration and monitoring. Supports
environment-based overrides for different deployments.
"""

import os
from typing import Dict, List

from pydantic import BaseModel, Field, field_validator


DEFAULT_HIGH_RISK_COUNTRIES = ['NG', 'UA', 'RU', 'IR', 'IQ', 'AF', 'SY', 'YE']

# Windows read by the burst_activity rule
BURST_WINDOWS_MINUTES = (1, 5)

DEFAULT_CHANNEL_RISK = {
    'online': 1.0,
    'transfer': 0.8,
    'atm': 0.7,
    'pos': 0.5,
}


class FeatureConfig(BaseModel):
    """Per-account feature tracking configuration."""

    history_cap: int = Field(default=500, ge=2, description="Max transactions kept per account")
    velocity_windows_minutes: List[int] = Field(
        default_factory=lambda: [1, 5, 60],
        description="Trailing windows for velocity counts"
    )
    extraction_budget_ms: float = Field(default=50.0, gt=0.0, description="Latency budget for one extraction")
    shard_count: int = Field(default=64, ge=1, description="Number of account state shards")

    # Decay settings
    counter_decay_interval: int = Field(default=100, ge=1, description="Updates between counter decays")
    counter_decay_factor: float = Field(default=0.9, gt=0.0, le=1.0, description="Merchant/category decay factor")
    hour_decay_factor: float = Field(default=0.995, gt=0.0, le=1.0, description="Hour histogram decay per update")

    # Static lookups
    channel_risk: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_CHANNEL_RISK))
    default_channel_risk: float = Field(default=0.5, description="Weight used when channel is missing")
    high_risk_countries: List[str] = Field(default_factory=lambda: list(DEFAULT_HIGH_RISK_COUNTRIES))

    epsilon: float = Field(default=1e-6, gt=0.0, description="Denominator floor")

    @field_validator('velocity_windows_minutes')
    @classmethod
    def validate_windows(cls, v):
        if not v:
            raise ValueError('At least one velocity window is required')
        if any(w <= 0 for w in v):
            raise ValueError('Velocity windows must be positive')
        if len(set(v)) != len(v):
            raise ValueError('Velocity windows must be unique')
        missing = [w for w in BURST_WINDOWS_MINUTES if w not in v]
        if missing:
            raise ValueError(f'Velocity windows must include {missing} for burst detection')
        return sorted(v)


class AnomalyConfig(BaseModel):
    """Anomaly ensemble configuration."""

    nu: float = Field(default=0.1, gt=0.0, lt=1.0, description="Expected outlier fraction")
    max_baseline: int = Field(default=2000, ge=1, description="Max retained baseline samples")
    epsilon: float = Field(default=1e-6, gt=0.0, description="Std / range floor")


class AggregationConfig(BaseModel):
    """Risk aggregation configuration."""

    anomaly_weight: float = Field(default=0.6, ge=0.0, description="Weight of mean anomaly score")
    pattern_weight: float = Field(default=0.4, ge=0.0, description="Weight of mean pattern score")
    category_thresholds: Dict[str, int] = Field(
        default_factory=lambda: {'low': 0, 'medium': 30, 'high': 70, 'critical': 85},
        description="Lower bound of each category, in increasing order"
    )
    fraud_categories: List[str] = Field(
        default_factory=lambda: ['high', 'critical'],
        description="Categories reported as fraud"
    )
    anomaly_reason_threshold: float = Field(default=0.6, description="Min anomaly score quoted as a reason")
    pattern_reason_threshold: float = Field(default=0.5, description="Min pattern score quoted as a reason")

    @field_validator('category_thresholds')
    @classmethod
    def validate_thresholds(cls, v):
        if not v:
            raise ValueError('At least one category is required')
        bounds = list(v.values())
        if bounds[0] != 0:
            raise ValueError('Lowest category must start at 0')
        for lower, upper in zip(bounds, bounds[1:]):
            if upper <= lower:
                raise ValueError('Category thresholds must be strictly increasing')
        if bounds[-1] > 100:
            raise ValueError('Category thresholds must lie within 0-100')
        return v


class FeedbackConfig(BaseModel):
    """Feedback log and recalibration configuration."""

    log_cap: int = Field(default=10000, ge=1, description="Max feedback events retained")
    fpr_window: int = Field(default=1000, ge=1, description="Events used for the false positive rate")
    fpr_threshold: float = Field(default=0.2, ge=0.0, le=1.0, description="Rate that triggers recalibration")
    recalibration_slice: int = Field(default=1000, ge=1, description="Recent samples used to refit")
    sample_pool_cap: int = Field(default=2000, ge=1, description="Rolling feature samples retained")
    background_recalibration: bool = Field(default=False, description="Refit on a background thread")


class MonitoringConfig(BaseModel):
    """Monitoring and latency configuration."""

    latency_buffer_cap: int = Field(default=5000, ge=1, description="Latency samples kept for p99")
    latency_percentile: float = Field(default=0.99, gt=0.0, le=1.0, description="Reported percentile")
    latency_sla_ms: float = Field(default=100.0, ge=0.0, description="End-to-end scoring SLA")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")
    service_name: str = Field(default="fraud-scorer", description="Service name")
    environment: str = Field(default="production", description="Environment")


class ScorerConfig(BaseModel):
    """Complete fraud scorer configuration."""

    features: FeatureConfig = Field(default_factory=FeatureConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "ScorerConfig":
        """Load configuration from environment variables."""
        features = {}
        if os.getenv("FRAUD_HISTORY_CAP"):
            features["history_cap"] = int(os.getenv("FRAUD_HISTORY_CAP"))
        if os.getenv("FRAUD_EXTRACTION_BUDGET_MS"):
            features["extraction_budget_ms"] = float(os.getenv("FRAUD_EXTRACTION_BUDGET_MS"))

        anomaly = {}
        if os.getenv("FRAUD_ANOMALY_NU"):
            anomaly["nu"] = float(os.getenv("FRAUD_ANOMALY_NU"))

        monitoring = {}
        if os.getenv("FRAUD_LATENCY_SLA_MS"):
            monitoring["latency_sla_ms"] = float(os.getenv("FRAUD_LATENCY_SLA_MS"))

        feedback = {}
        if os.getenv("FRAUD_BACKGROUND_RECALIBRATION"):
            feedback["background_recalibration"] = os.getenv("FRAUD_BACKGROUND_RECALIBRATION").lower() == "true"

        logging = {}
        if os.getenv("LOG_LEVEL"):
            logging["level"] = os.getenv("LOG_LEVEL")
        if os.getenv("ENVIRONMENT"):
            logging["environment"] = os.getenv("ENVIRONMENT")

        return cls(
            features=FeatureConfig(**features),
            anomaly=AnomalyConfig(**anomaly),
            monitoring=MonitoringConfig(**monitoring),
            feedback=FeedbackConfig(**feedback),
            logging=LoggingConfig(**logging),
        )
