"""
Unsupervised anomaly detection for real-time scoring.

Two lightweight models fit on a baseline of feature vectors:

- IQR outlier model: per-feature distance outside the interquartile band,
  normalized by the distance to the observed extreme.
- Z-score distance model: sum of squared per-feature z-scores mapped
  through a logistic curve centred on ln(1/nu - 1).

Fitted parameters of both models form one immutable snapshot. A fit builds
a new snapshot and swaps it in with a single assignment, so concurrent
scoring always sees either the old or the new model, never a mix.
"""

import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from fraudstream.core.models.config import AnomalyConfig
from fraudstream.core.models.results import AnomalyScore, FeatureVector
from fraudstream.core.utils.metrics import ENSEMBLE_FITS, MODEL_ERRORS

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IqrParams:
    mins: np.ndarray
    maxs: np.ndarray
    p25: np.ndarray
    p75: np.ndarray


@dataclass(frozen=True)
class DistanceParams:
    means: np.ndarray
    stds: np.ndarray
    threshold: float


@dataclass(frozen=True)
class EnsembleSnapshot:
    """Immutable fitted state shared by all scoring calls."""
    feature_names: Tuple[str, ...]
    params: Tuple[Any, ...]  # one entry per model, same order
    sample_count: int


class AnomalyModel(ABC):
    """Interface for a fit-once, score-many anomaly model."""

    name: str

    @abstractmethod
    def fit(self, matrix: np.ndarray) -> Any:
        """Return fitted parameters for a (samples x features) matrix."""
        pass

    @abstractmethod
    def score(self, params: Any, values: np.ndarray) -> Tuple[float, Dict[str, Any]]:
        """Return (score in [0, 1], details) for one feature row."""
        pass


class IqrOutlierModel(AnomalyModel):
    """Interquartile-range outlier approximation."""

    name = "iqr_outlier"

    def __init__(self, epsilon: float = 1e-6):
        self.epsilon = epsilon

    def fit(self, matrix: np.ndarray) -> IqrParams:
        p25, p75 = np.percentile(matrix, [25, 75], axis=0, method="lower")
        return IqrParams(
            mins=matrix.min(axis=0),
            maxs=matrix.max(axis=0),
            p25=p25,
            p75=p75,
        )

    def score(self, params: IqrParams, values: np.ndarray) -> Tuple[float, Dict[str, Any]]:
        below = (params.p25 - values) / np.maximum(self.epsilon, params.p25 - params.mins)
        above = (values - params.p75) / np.maximum(self.epsilon, params.maxs - params.p75)

        deviation = np.where(values < params.p25, below, np.where(values > params.p75, above, 0.0))
        deviation = np.clip(deviation, 0.0, 1.0)

        score = float(deviation.mean()) if deviation.size else 0.0
        return score, {'outlier_by_feature': deviation.tolist()}


class ZScoreDistanceModel(AnomalyModel):
    """Mean/variance distance approximation of a one-class boundary."""

    name = "zscore_distance"

    def __init__(self, nu: float = 0.1, epsilon: float = 1e-6):
        if not 0.0 < nu < 1.0:
            raise ValueError("nu must lie in (0, 1)")
        self.nu = nu
        self.epsilon = epsilon

    def fit(self, matrix: np.ndarray) -> DistanceParams:
        stds = matrix.std(axis=0)
        stds = np.where(stds > 0, stds, self.epsilon)
        return DistanceParams(
            means=matrix.mean(axis=0),
            stds=stds,
            threshold=math.log(1.0 / self.nu - 1.0),
        )

    def score(self, params: DistanceParams, values: np.ndarray) -> Tuple[float, Dict[str, Any]]:
        z = (values - params.means) / params.stds
        distance = float(np.sum(z * z))
        score = _sigmoid(distance - params.threshold)
        return score, {'z_scores': np.abs(z).tolist(), 'distance': distance, 'threshold': params.threshold}


class AnomalyEnsemble:
    """Ensemble of unsupervised anomaly models with cold/warm phases."""

    def __init__(self, config: Optional[AnomalyConfig] = None, models: Optional[Sequence[AnomalyModel]] = None):
        self.config = config or AnomalyConfig()
        self.models: List[AnomalyModel] = list(models) if models is not None else [
            IqrOutlierModel(self.config.epsilon),
            ZScoreDistanceModel(self.config.nu, self.config.epsilon),
        ]
        self._snapshot: Optional[EnsembleSnapshot] = None
        self._fit_lock = threading.Lock()
        self.fit_count = 0
        self.fit_listeners: List[Callable[[int], None]] = []

    @property
    def is_fitted(self) -> bool:
        return self._snapshot is not None

    def fit(self, samples: Sequence[FeatureVector], trigger: str = "baseline") -> bool:
        """
        Fit every model on the most recent baseline samples.

        Args:
            samples: Feature vectors sharing one feature layout
            trigger: Label recorded in metrics and logs

        Returns:
            True if a new snapshot was installed, False for empty input
        """
        if not samples:
            logger.info("Skipping ensemble fit on empty baseline", trigger=trigger)
            return False

        baseline = list(samples)[-self.config.max_baseline:]
        names = baseline[0].names
        if any(s.names != names for s in baseline):
            raise ValueError("Baseline samples have inconsistent feature layouts")

        matrix = np.asarray([s.values for s in baseline], dtype=float)

        with self._fit_lock:
            params = tuple(model.fit(matrix) for model in self.models)
            self._snapshot = EnsembleSnapshot(feature_names=names, params=params, sample_count=len(baseline))
            self.fit_count += 1

        ENSEMBLE_FITS.labels(trigger=trigger).inc()
        logger.info("Anomaly ensemble fitted",
                    trigger=trigger,
                    samples=len(baseline),
                    features=len(names),
                    fit_count=self.fit_count)

        for listener in list(self.fit_listeners):
            listener(len(baseline))

        return True

    def score(self, sample: FeatureVector) -> List[AnomalyScore]:
        """Score a feature vector with every model, one result per model."""
        snapshot = self._snapshot

        if snapshot is None:
            return [
                AnomalyScore(model=model.name, score=0.0, details={'phase': 'cold', 'confidence': 'low'})
                for model in self.models
            ]

        results = []
        for model, params in zip(self.models, snapshot.params):
            try:
                if sample.names != snapshot.feature_names:
                    raise ValueError(
                        f"Feature mismatch: expected {len(snapshot.feature_names)} features, got {len(sample.names)}"
                    )
                score, details = model.score(params, sample.to_array())
                if not math.isfinite(score):
                    raise ValueError(f"Non-finite score {score}")
                results.append(AnomalyScore(model=model.name, score=min(1.0, max(0.0, score)), details=details))

            except Exception as e:
                MODEL_ERRORS.labels(model=model.name).inc()
                logger.error("Anomaly model scoring failed",
                             model=model.name,
                             transaction_id=sample.transaction_id,
                             error=str(e))
                results.append(AnomalyScore(model=model.name, score=0.0, details={'error': str(e)}))

        return results


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    ex = math.exp(x)
    return ex / (1.0 + ex)
