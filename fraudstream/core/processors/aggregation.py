"""
Risk aggregation: weighted mean of anomaly and pattern signals mapped to
a 0-100 score, a category and a reason trail.
"""

import math
from typing import Dict, List, Optional, Sequence

from fraudstream.core.models.config import AggregationConfig
from fraudstream.core.models.results import AnomalyScore, PatternFinding, RiskAssessment

NORMAL_REASON = "Normal pattern within expected ranges"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class RiskAggregator:
    """Combine component scores into a single risk assessment."""

    def __init__(self, config: Optional[AggregationConfig] = None):
        self.config = config or AggregationConfig()
        # Highest threshold first
        self._categories = sorted(self.config.category_thresholds.items(), key=lambda kv: kv[1], reverse=True)

    def aggregate(self,
                  anomaly_scores: Sequence[AnomalyScore],
                  pattern_findings: Sequence[PatternFinding],
                  weights: Optional[Dict[str, float]] = None) -> RiskAssessment:
        """
        Aggregate component scores.

        Args:
            anomaly_scores: One score per anomaly model
            pattern_findings: Triggered pattern rules
            weights: Optional override with 'anomaly' and/or 'pattern' keys

        Returns:
            RiskAssessment with score clamped to 0-100
        """
        weights = weights or {}
        w_anomaly = weights.get('anomaly', self.config.anomaly_weight)
        w_pattern = weights.get('pattern', self.config.pattern_weight)

        anomaly_mean = _mean([a.score for a in anomaly_scores])
        pattern_mean = _mean([p.score for p in pattern_findings])

        raw = 100.0 * (w_anomaly * anomaly_mean + w_pattern * pattern_mean)
        if not math.isfinite(raw):
            raw = 0.0
        score = min(100, max(0, round_half_up(raw)))

        return RiskAssessment(
            score=score,
            category=self.categorize(score),
            reasons=self._reasons(anomaly_scores, pattern_findings),
        )

    def categorize(self, score: int) -> str:
        for name, lower in self._categories:
            if score >= lower:
                return name
        return self._categories[-1][0]

    def _reasons(self, anomaly_scores: Sequence[AnomalyScore], pattern_findings: Sequence[PatternFinding]) -> List[str]:
        reasons = [
            f"Anomaly ({a.model}) score={a.score:.2f}"
            for a in anomaly_scores
            if a.score > self.config.anomaly_reason_threshold
        ]
        reasons.extend(
            f"{p.name}: {p.reason}"
            for p in pattern_findings
            if p.score > self.config.pattern_reason_threshold
        )
        return reasons or [NORMAL_REASON]


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0
