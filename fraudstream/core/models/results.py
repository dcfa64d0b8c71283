"""
Result data models for the scoring pipeline.

Ephemeral per-call records passed between processors, the immutable
RiskResult handed back to callers, and the MonitorStats snapshot.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class FeatureVector:
    """Named numeric features for one transaction."""
    transaction_id: str
    account_id: str
    names: Tuple[str, ...]
    values: Tuple[float, ...]

    def get(self, name: str, default: float = 0.0) -> float:
        try:
            return self.values[self.names.index(name)]
        except ValueError:
            return default

    def as_dict(self) -> Dict[str, float]:
        return dict(zip(self.names, self.values))

    def to_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=float)


@dataclass(frozen=True)
class AnomalyScore:
    """Score of one unsupervised model, 0 (normal) to 1 (outlier)."""
    model: str
    score: float
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PatternFinding:
    """A triggered behavioral rule."""
    name: str
    score: float
    reason: str


@dataclass(frozen=True)
class RiskAssessment:
    """Aggregated score, category and reason trail."""
    score: int
    category: str
    reasons: List[str]


@dataclass(frozen=True)
class RiskResult:
    """Result of scoring a single transaction."""
    transaction_id: str
    account_id: str
    risk_score: int
    category: str
    reasons: Tuple[str, ...]
    anomaly_scores: Tuple[AnomalyScore, ...]
    pattern_findings: Tuple[PatternFinding, ...]
    features: Mapping[str, float]  # read-only view
    is_fraud: bool
    phase: str
    latency_ms: float
    timestamp: int

    @property
    def components(self) -> Dict[str, list]:
        return {
            "anomaly_scores": list(self.anomaly_scores),
            "pattern_findings": list(self.pattern_findings),
        }

    def finding(self, name: str) -> Optional[PatternFinding]:
        for f in self.pattern_findings:
            if f.name == name:
                return f
        return None


@dataclass(frozen=True)
class MonitorStats:
    """Snapshot of scorer telemetry."""
    total_scored: int = 0
    avg_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    last_updated: int = 0
    flagged_count: int = 0
    feedback_count: int = 0
    false_positive_rate: float = 0.0
    recalibrations: int = 0
    phase: str = "cold"
