#!/usr/bin/env python3
"""
Real-Time Fraud Scoring

Wires feature extraction, the anomaly ensemble, pattern rules and risk
aggregation into one synchronous scoring pipeline. Tracks latency and
feedback, and refits the ensemble when analysts report too many false
positives.
"""

import threading
import time
from collections import deque
from types import MappingProxyType
from typing import Iterable, List, Optional

import structlog

from fraudstream.core.models.config import ScorerConfig
from fraudstream.core.models.events import FeedbackEvent, Transaction
from fraudstream.core.models.results import FeatureVector, MonitorStats, RiskResult
from fraudstream.core.processors.aggregation import RiskAggregator
from fraudstream.core.processors.anomaly import AnomalyEnsemble
from fraudstream.core.processors.features import FeatureExtractor
from fraudstream.core.processors.patterns import PatternRecognizer
from fraudstream.core.utils.latency import LatencyTracker
from fraudstream.core.utils.metrics import (
    FALSE_POSITIVE_RATE,
    FEEDBACK_EVENTS,
    RISK_SCORE_DISTRIBUTION,
    SCORING_LATENCY,
    SLA_BREACHES,
    TRANSACTIONS_SCORED,
)

logger = structlog.get_logger(__name__)

PHASE_COLD = "cold"
PHASE_WARM = "warm"


class FraudScorer:
    """Score transactions for fraud risk in real time."""

    def __init__(self, config: Optional[ScorerConfig] = None, extractor: Optional[FeatureExtractor] = None):
        self.config = config or ScorerConfig()

        self.extractor = extractor or FeatureExtractor(self.config.features)
        self.ensemble = AnomalyEnsemble(self.config.anomaly)
        self.recognizer = PatternRecognizer()
        self.aggregator = RiskAggregator(self.config.aggregation)

        self.monitor = LatencyTracker(
            cap=self.config.monitoring.latency_buffer_cap,
            percentile=self.config.monitoring.latency_percentile,
        )

        self._phase = PHASE_COLD
        self._flagged = 0
        self._stats_lock = threading.Lock()

        self._samples = deque(maxlen=self.config.feedback.sample_pool_cap)
        self._samples_lock = threading.Lock()

        self._feedback = deque(maxlen=self.config.feedback.log_cap)
        self._feedback_lock = threading.Lock()
        self._false_positive_rate = 0.0

        self._recalibrations = 0
        self._recalibration_thread: Optional[threading.Thread] = None

    @property
    def phase(self) -> str:
        return self._phase

    def fit_baseline(self, transactions: Iterable[Transaction]) -> int:
        """
        Fit the anomaly ensemble on historical transactions.

        Features are extracted in order, so account state advances exactly
        as if the transactions had been scored.

        Returns:
            Number of samples the ensemble was fitted on (0 for empty input)
        """
        vectors = [self.extractor.extract(tx) for tx in transactions]
        if not vectors:
            logger.info("Empty baseline, scorer stays cold")
            return 0

        self.ensemble.fit(vectors, trigger="baseline")
        with self._samples_lock:
            self._samples.extend(vectors)

        self._phase = PHASE_WARM
        logger.info("Baseline fitted", samples=len(vectors), accounts=self.extractor.account_count())
        return min(len(vectors), self.config.anomaly.max_baseline)

    def score_transaction(self, tx: Transaction) -> RiskResult:
        """Run the full scoring pipeline for one transaction."""
        start_time = time.perf_counter()
        phase = self._phase

        features = self.extractor.extract(tx)
        anomaly_scores = self.ensemble.score(features)
        findings = self.recognizer.recognize(features, tx)
        assessment = self.aggregator.aggregate(anomaly_scores, findings)

        with self._samples_lock:
            self._samples.append(features)

        latency_ms = (time.perf_counter() - start_time) * 1000
        is_fraud = assessment.category in self.config.aggregation.fraud_categories

        result = RiskResult(
            transaction_id=tx.id,
            account_id=tx.account_id,
            risk_score=assessment.score,
            category=assessment.category,
            reasons=tuple(assessment.reasons),
            anomaly_scores=tuple(anomaly_scores),
            pattern_findings=tuple(findings),
            features=MappingProxyType(features.as_dict()),
            is_fraud=is_fraud,
            phase=phase,
            latency_ms=latency_ms,
            timestamp=int(time.time() * 1000),
        )

        self._record(result)
        return result

    def _record(self, result: RiskResult):
        self.monitor.record(result.latency_ms)
        if result.is_fraud:
            with self._stats_lock:
                self._flagged += 1

        SCORING_LATENCY.observe(result.latency_ms / 1000)
        RISK_SCORE_DISTRIBUTION.observe(result.risk_score)
        TRANSACTIONS_SCORED.labels(category=result.category).inc()

        if result.latency_ms > self.config.monitoring.latency_sla_ms:
            SLA_BREACHES.inc()
            logger.warning("Scoring latency SLA breached",
                           transaction_id=result.transaction_id,
                           latency_ms=round(result.latency_ms, 3),
                           sla_ms=self.config.monitoring.latency_sla_ms)

        if result.is_fraud:
            logger.info("Transaction flagged",
                        transaction_id=result.transaction_id,
                        account_id=result.account_id,
                        risk_score=result.risk_score,
                        category=result.category,
                        reasons=list(result.reasons))

    def record_feedback(self, event: FeedbackEvent) -> bool:
        """
        Record an analyst label and recalibrate when false positives pile up.

        Returns:
            True if a recalibration was started
        """
        window = self.config.feedback.fpr_window
        with self._feedback_lock:
            self._feedback.append(event)
            recent = list(self._feedback)[-window:]
            false_positives = sum(1 for e in recent if not e.is_fraud)
            rate = false_positives / len(recent)
            self._false_positive_rate = rate

        FEEDBACK_EVENTS.labels(label="fraud" if event.is_fraud else "legit").inc()
        FALSE_POSITIVE_RATE.set(rate)

        if rate <= self.config.feedback.fpr_threshold or self._phase != PHASE_WARM:
            return False

        logger.info("False positive rate above threshold, recalibrating",
                    false_positive_rate=round(rate, 4),
                    threshold=self.config.feedback.fpr_threshold,
                    window=len(recent))

        if self.config.feedback.background_recalibration:
            return self._start_background_recalibration()

        return self._recalibrate()

    def _recalibrate(self) -> bool:
        with self._samples_lock:
            samples: List[FeatureVector] = list(self._samples)[-self.config.feedback.recalibration_slice:]

        try:
            fitted = self.ensemble.fit(samples, trigger="feedback")
        except Exception as e:
            logger.error("Recalibration failed", samples=len(samples), error=str(e))
            return False

        if fitted:
            with self._stats_lock:
                self._recalibrations += 1
        return fitted

    def _start_background_recalibration(self) -> bool:
        with self._stats_lock:
            if self._recalibration_thread is not None and self._recalibration_thread.is_alive():
                logger.debug("Recalibration already running")
                return False
            thread = threading.Thread(target=self._recalibrate, name="fraud-recalibration", daemon=True)
            self._recalibration_thread = thread
        thread.start()
        return True

    def wait_for_recalibration(self, timeout: Optional[float] = None) -> bool:
        """Block until a background recalibration finishes. True if none is running."""
        thread = self._recalibration_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def get_stats(self) -> MonitorStats:
        with self._stats_lock:
            flagged = self._flagged
            recalibrations = self._recalibrations
        with self._feedback_lock:
            feedback_count = len(self._feedback)
            rate = self._false_positive_rate

        return MonitorStats(
            total_scored=self.monitor.count,
            avg_latency_ms=self.monitor.mean,
            p99_latency_ms=self.monitor.quantile(),
            last_updated=self.monitor.last_updated,
            flagged_count=flagged,
            feedback_count=feedback_count,
            false_positive_rate=rate,
            recalibrations=recalibrations,
            phase=self._phase,
        )
