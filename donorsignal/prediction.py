"""
donorsignal.prediction
======================
Per-model donor predictions with confidence, reasoning, factors and expiry.

:class:`PredictionEngine` turns a registered model and a donor's raw
features into a :class:`~donorsignal.schemas.DonorPrediction`.  Results are
kept in a :class:`PredictionCache` (last write wins per donor); stale
entries stay readable through :meth:`PredictionCache.get` but are never
served by :meth:`PredictionEngine.get_or_predict`.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
from sklearn.exceptions import NotFittedError

from donorsignal.config import Settings, get_settings
from donorsignal.enums import EnsembleMethod, ModelStatus, PredictionType
from donorsignal.ensemble import combine_values
from donorsignal.models import ModelRegistry
from donorsignal.preprocessing import encode_feature_vector
from donorsignal.schemas import (
    DonorPrediction,
    PredictionFactor,
    PredictionModel,
    PredictionRequest,
)
from donorsignal.utils._time import days_between, ensure_utc, utc_now

logger = logging.getLogger(__name__)

PREDICTION_TTL: Dict[PredictionType, timedelta] = {
    PredictionType.CHURN_RISK: timedelta(days=30),
    PredictionType.NEXT_DONATION_TIMING: timedelta(days=14),
    PredictionType.CAMPAIGN_RESPONSE_LIKELIHOOD: timedelta(days=7),
}
DEFAULT_TTL = timedelta(days=60)

MAX_REASONS = 3
MAX_FACTORS = 5

TYPE_REASONING = {
    PredictionType.LIFETIME_VALUE: (
        "Calculation based on donation history, engagement patterns, and demographic factors"
    ),
    PredictionType.CHURN_RISK: (
        "Risk assessment considers recency, frequency, and engagement trends"
    ),
    PredictionType.NEXT_DONATION_AMOUNT: (
        "Prediction based on historical giving patterns and similar donor profiles"
    ),
}


def prediction_ttl(prediction_type) -> timedelta:
    """How long a prediction of ``prediction_type`` stays valid."""
    return PREDICTION_TTL.get(PredictionType(prediction_type), DEFAULT_TTL)


def clamp_prediction(prediction_type: PredictionType, value: float) -> float:
    """Bound a raw estimator output to the domain of ``prediction_type``.

    Currency amounts are non-negative and rounded to cents, day counts are
    non-negative whole days, probabilities are clipped to ``[0, 1]``.
    """
    value = float(value)
    if not np.isfinite(value):
        value = 0.0
    if prediction_type.is_currency:
        return round(max(value, 0.0), 2)
    if prediction_type == PredictionType.NEXT_DONATION_TIMING:
        return float(max(round(value), 0))
    return min(max(value, 0.0), 1.0)


def prediction_confidence(
    model: PredictionModel,
    vector: np.ndarray,
    now: datetime,
    settings: Settings,
) -> float:
    """Confidence in ``[min_confidence, max_confidence]``.

    Adds the model's validation accuracy and R² (each clipped to [0, 1]) and
    the share of non-zero feature values to a base score, then scales the
    sum by a multiplier that decays linearly from 1 to
    ``confidence_age_floor`` over ``retraining_age_days``.
    """
    confidence = settings.confidence_base
    for name in ("accuracy", "r2_score"):
        metric = model.performance.get(name)
        if metric is not None and np.isfinite(metric):
            confidence += settings.confidence_metric_weight * min(max(metric, 0.0), 1.0)

    vector = np.asarray(vector, dtype=float)
    completeness = float(np.count_nonzero(vector)) / vector.size if vector.size else 0.0
    confidence += settings.confidence_completeness_weight * completeness

    age_days = max(days_between(now, model.last_trained_at), 0.0)
    age_factor = max(0.0, 1.0 - age_days / settings.retraining_age_days)
    floor = settings.confidence_age_floor
    confidence *= floor + (1.0 - floor) * age_factor

    return float(min(max(confidence, settings.min_confidence), settings.max_confidence))


def prediction_reasoning(model: PredictionModel, raw_features: Mapping[str, Any]) -> List[str]:
    """Cite the top features by stored importance, then a type-specific note."""
    importance = model.training_data.feature_importance
    top = sorted(importance.items(), key=lambda item: item[1], reverse=True)[:MAX_REASONS]

    reasoning = []
    for feature, weight in top:
        value = raw_features.get(feature)
        if value is not None:
            reasoning.append(
                f"{feature.replace('_', ' ')} ({value}) is a key factor "
                f"with {weight * 100:.1f}% importance"
            )
    if model.type in TYPE_REASONING:
        reasoning.append(TYPE_REASONING[model.type])
    return reasoning


def influencing_factors(
    model: PredictionModel,
    vector: np.ndarray,
    raw_features: Mapping[str, Any],
) -> List[PredictionFactor]:
    """Top factors ranked by ``|impact|``, with ``impact`` in ``[-1, 1]``.

    The impact of a feature is its importance scaled by how far the donor's
    value sits from the training mean (squashed with ``tanh``), signed by
    the feature's correlation with the target.
    """
    estimator = model.estimator
    means = getattr(estimator, "feature_mean_", None)
    stds = getattr(estimator, "feature_std_", None)
    corrs = getattr(estimator, "feature_target_corr_", None)
    importance = model.training_data.feature_importance

    factors = []
    for i, feature in enumerate(model.features):
        value = raw_features.get(feature)
        if value is None:
            continue
        weight = float(importance.get(feature, 0.0))
        if means is None or stds is None or corrs is None:
            impact = weight
        else:
            z = (vector[i] - means[i]) / stds[i] if stds[i] > 0 else 0.0
            impact = weight * np.tanh(z) * np.sign(corrs[i])
        factors.append(
            PredictionFactor(
                feature=feature,
                impact=float(np.clip(impact, -1.0, 1.0)),
                value=value,
            )
        )

    factors.sort(key=lambda f: abs(f.impact), reverse=True)
    return factors[:MAX_FACTORS]


class PredictionCache:
    """Latest predictions per donor, keyed by model id.

    ``store`` replaces a donor's whole entry; ``update`` replaces a single
    model's slot.  Nothing is evicted: readers decide whether an entry is
    still valid.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, DonorPrediction]] = {}
        self._lock = threading.Lock()

    def store(self, donor_id: str, predictions: List[DonorPrediction]) -> None:
        entry = {p.model_id: p for p in predictions}
        with self._lock:
            self._entries[donor_id] = entry

    def update(self, prediction: DonorPrediction) -> None:
        with self._lock:
            entry = dict(self._entries.get(prediction.donor_id, {}))
            entry[prediction.model_id] = prediction
            self._entries[prediction.donor_id] = entry

    def lookup(self, donor_id: str, model_id: str) -> Optional[DonorPrediction]:
        return self._entries.get(donor_id, {}).get(model_id)

    def get(self, donor_id: str) -> List[DonorPrediction]:
        """Every cached prediction for ``donor_id``, stale ones included."""
        return list(self._entries.get(donor_id, {}).values())

    def get_valid(self, donor_id: str, now: Optional[datetime] = None) -> List[DonorPrediction]:
        now = ensure_utc(now) if now is not None else utc_now()
        return [p for p in self.get(donor_id) if p.is_valid(now)]

    def __contains__(self, donor_id) -> bool:
        return donor_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class PredictionEngine:
    """Generate donor predictions from registered models.

    Parameters
    ----------
    registry : ModelRegistry
    settings : Settings or None, default=None
    cache : PredictionCache or None, default=None
    monitor : PerformanceMonitor or None, default=None
        Receives every prediction for drift and segment statistics.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        settings: Optional[Settings] = None,
        cache: Optional[PredictionCache] = None,
        monitor=None,
    ) -> None:
        self.registry = registry
        self.settings = settings if settings is not None else get_settings()
        self.cache = cache if cache is not None else PredictionCache()
        self.monitor = monitor

    def predict(
        self,
        model: PredictionModel,
        donor_id: str,
        raw_features: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> DonorPrediction:
        """Score one donor with one model.

        Raises
        ------
        NotFittedError
            If the model carries no fitted estimator.
        """
        if model.estimator is None:
            raise NotFittedError(f"Model {model.id!r} has no fitted estimator")
        now = ensure_utc(now) if now is not None else utc_now()

        vector = encode_feature_vector(model.features, raw_features)
        raw_value = model.estimator.predict_value(vector.reshape(1, -1))[0]

        prediction = DonorPrediction(
            donor_id=donor_id,
            model_id=model.id,
            type=model.type,
            prediction=clamp_prediction(model.type, raw_value),
            confidence=prediction_confidence(model, vector, now, self.settings),
            reasoning=prediction_reasoning(model, raw_features),
            factors=influencing_factors(model, vector, raw_features),
            generated_at=now,
            valid_until=now + prediction_ttl(model.type),
        )
        if self.monitor is not None:
            self.monitor.record_prediction(model, prediction, vector, raw_features)
        return prediction

    def generate_predictions(
        self, request: PredictionRequest, now: Optional[datetime] = None
    ) -> List[DonorPrediction]:
        """Score ``request.donor_id`` with every listed active model.

        Unknown or inactive models are skipped with a warning.  The results
        replace the donor's cache entry.
        """
        now = ensure_utc(now) if now is not None else utc_now()
        logger.info(
            "Generating predictions for donor %s with %d models",
            request.donor_id,
            len(request.models),
        )

        predictions = []
        for model_id in request.models:
            model = self.registry.get(model_id)
            if model is None or model.status != ModelStatus.ACTIVE:
                logger.warning("Model %s not found or inactive", model_id)
                continue
            predictions.append(self.predict(model, request.donor_id, request.features, now))

        if request.ensemble:
            predictions.extend(self._ensemble_predictions(request.donor_id, predictions, now))

        self.cache.store(request.donor_id, predictions)
        logger.info("Generated %d predictions for donor %s", len(predictions), request.donor_id)
        return predictions

    def get_or_predict(
        self,
        model: PredictionModel,
        donor_id: str,
        raw_features: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> DonorPrediction:
        """Serve the cached prediction while valid, otherwise regenerate it."""
        now = ensure_utc(now) if now is not None else utc_now()
        cached = self.cache.lookup(donor_id, model.id)
        if cached is not None and cached.is_valid(now):
            return cached
        prediction = self.predict(model, donor_id, raw_features, now)
        self.cache.update(prediction)
        return prediction

    def _ensemble_predictions(
        self, donor_id: str, predictions: List[DonorPrediction], now: datetime
    ) -> List[DonorPrediction]:
        by_type = defaultdict(list)
        for prediction in predictions:
            by_type[prediction.type].append(prediction)

        derived = []
        for prediction_type, members in by_type.items():
            if len(members) < 2:
                continue
            result = combine_values(prediction_type, members, EnsembleMethod.WEIGHTED)
            derived.append(
                DonorPrediction(
                    donor_id=donor_id,
                    model_id=f"ensemble:{prediction_type.value}",
                    type=prediction_type,
                    prediction=result.value,
                    confidence=result.confidence,
                    reasoning=[
                        f"Confidence-weighted ensemble of {len(members)} "
                        f"{prediction_type.value.replace('_', ' ')} models"
                    ],
                    factors=_merge_factors(members),
                    generated_at=now,
                    valid_until=now + prediction_ttl(prediction_type),
                )
            )
        return derived


def _merge_factors(predictions: List[DonorPrediction]) -> List[PredictionFactor]:
    impacts: Dict[str, List[float]] = defaultdict(list)
    values: Dict[str, Any] = {}
    for prediction in predictions:
        for factor in prediction.factors:
            impacts[factor.feature].append(factor.impact)
            values.setdefault(factor.feature, factor.value)
    merged = [
        PredictionFactor(feature=name, impact=float(np.mean(v)), value=values[name])
        for name, v in impacts.items()
    ]
    merged.sort(key=lambda f: abs(f.impact), reverse=True)
    return merged[:MAX_FACTORS]
