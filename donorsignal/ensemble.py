"""
donorsignal.ensemble
====================
Combine predictions from several models of the same type.

The default policy is a confidence-weighted mean of the member predictions.
``average`` and ``voting`` are available when requested explicitly.
Whatever the method, the combined value never leaves the range spanned by
the member predictions.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional

import numpy as np

from donorsignal.config import Settings, get_settings
from donorsignal.enums import EnsembleMethod, PredictionType
from donorsignal.exceptions import InsufficientModelsError, ValidationError
from donorsignal.schemas import (
    DonorPrediction,
    EnsemblePrediction,
    EnsembleResult,
    ModelContribution,
    PredictionModel,
)
from donorsignal.utils._time import days_between, ensure_utc, utc_now

logger = logging.getLogger(__name__)

MIN_ENSEMBLE_MODELS = 2


def combine_values(
    prediction_type,
    predictions: List[DonorPrediction],
    method=EnsembleMethod.WEIGHTED,
) -> EnsembleResult:
    """Merge member predictions into one value and confidence.

    Parameters
    ----------
    prediction_type : PredictionType
    predictions : list of DonorPrediction
    method : EnsembleMethod, default="weighted"
        ``weighted``: confidence-weighted mean;
        ``average``: plain mean;
        ``voting``: share of members predicting >= 0.5 for probability
        types, median for regression types.

    Returns
    -------
    result : EnsembleResult
        Regression types are rounded to a whole number and probability types
        to three decimals, then clipped to the members' ``[min, max]``.
        ``confidence`` is the mean member confidence.
    """
    if not predictions:
        raise ValidationError("No predictions to combine")
    prediction_type = PredictionType(prediction_type)
    method = EnsembleMethod(method)

    values = np.array([p.prediction for p in predictions], dtype=float)
    confidences = np.array([p.confidence for p in predictions], dtype=float)

    if method == EnsembleMethod.WEIGHTED and confidences.sum() > 0:
        value = float(np.average(values, weights=confidences))
    elif method == EnsembleMethod.VOTING:
        if prediction_type.is_probability:
            value = float(np.mean(values >= 0.5))
        else:
            value = float(np.median(values))
    else:
        value = float(values.mean())

    value = float(round(value)) if prediction_type.is_regression else round(value, 3)
    value = float(np.clip(value, values.min(), values.max()))

    return EnsembleResult(value=value, confidence=float(confidences.mean()), method=method)


def calculate_model_weight(
    model: PredictionModel,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> float:
    """Contribution weight of ``model`` in an ensemble.

    ``base + w * accuracy + w * r2`` (metrics clipped to [0, 1]), reduced by
    an age penalty growing linearly to ``ensemble_max_age_penalty`` at
    ``critical_age_days``, and never below ``ensemble_min_weight``.

    Examples
    --------
    >>> from datetime import datetime, timezone
    >>> from donorsignal.schemas import PredictionModel, TrainingDataDescriptor
    >>> trained = datetime(2020, 1, 1, tzinfo=timezone.utc)
    >>> model = PredictionModel(
    ...     id="m", name="m", type="churn_risk", algorithm="random_forest",
    ...     features=("engagement_score",), performance={"accuracy": 1.0},
    ...     training_data=TrainingDataDescriptor(10, None, {}),
    ...     status="active", last_trained_at=trained, next_training_due=trained,
    ... )
    >>> calculate_model_weight(model, now=trained)
    0.8
    """
    settings = settings if settings is not None else get_settings()
    now = ensure_utc(now) if now is not None else utc_now()

    weight = settings.ensemble_base_weight
    for name in ("accuracy", "r2_score"):
        metric = model.performance.get(name)
        if metric is not None and np.isfinite(metric):
            weight += settings.ensemble_metric_weight * min(max(metric, 0.0), 1.0)

    age_days = max(days_between(now, model.last_trained_at), 0.0)
    penalty = settings.ensemble_max_age_penalty * min(age_days / settings.critical_age_days, 1.0)
    weight *= 1.0 - penalty

    return float(max(weight, settings.ensemble_min_weight))


class EnsembleCombiner:
    """Ensemble predictions over every active model of a type.

    Parameters
    ----------
    registry : ModelRegistry
    engine : PredictionEngine
        Produces the member predictions.
    settings : Settings or None, default=None
    """

    def __init__(self, registry, engine, settings: Optional[Settings] = None) -> None:
        self.registry = registry
        self.engine = engine
        self.settings = settings if settings is not None else get_settings()

    def combine(
        self,
        donor_id: str,
        prediction_type,
        features: Mapping[str, Any],
        now: Optional[datetime] = None,
        method=EnsembleMethod.WEIGHTED,
    ) -> EnsemblePrediction:
        """Predict with every active model of ``prediction_type`` and merge.

        Raises
        ------
        InsufficientModelsError
            If fewer than two active models of the type are registered.
        """
        prediction_type = PredictionType(prediction_type)
        now = ensure_utc(now) if now is not None else utc_now()

        models = self.registry.active_by_type(prediction_type)
        if len(models) < MIN_ENSEMBLE_MODELS:
            raise InsufficientModelsError(prediction_type, len(models))

        predictions = [self.engine.predict(m, donor_id, features, now) for m in models]
        return self._assemble(donor_id, prediction_type, predictions, models, now, method)

    def combine_predictions(
        self,
        donor_id: str,
        predictions: List[DonorPrediction],
        now: Optional[datetime] = None,
        method=EnsembleMethod.WEIGHTED,
    ) -> EnsemblePrediction:
        """Merge already-generated predictions of a single type."""
        if len(predictions) < MIN_ENSEMBLE_MODELS:
            prediction_type = predictions[0].type if predictions else None
            raise InsufficientModelsError(prediction_type, len(predictions))
        types = {p.type for p in predictions}
        if len(types) != 1:
            raise ValidationError("Cannot combine predictions of different types")

        now = ensure_utc(now) if now is not None else utc_now()
        models = [self.registry.get(p.model_id) for p in predictions]
        return self._assemble(donor_id, types.pop(), predictions, models, now, method)

    def _assemble(self, donor_id, prediction_type, predictions, models, now, method):
        result = combine_values(prediction_type, predictions, method)
        contributions = [
            ModelContribution(
                model_id=p.model_id,
                weight=(
                    calculate_model_weight(m, now, self.settings)
                    if m is not None
                    else self.settings.ensemble_min_weight
                ),
                prediction=p.prediction,
                confidence=p.confidence,
            )
            for p, m in zip(predictions, models)
        ]
        logger.info(
            "Generated ensemble prediction for donor %s (%d models, confidence %.3f)",
            donor_id,
            len(predictions),
            result.confidence,
        )
        return EnsemblePrediction(
            donor_id=donor_id,
            type=prediction_type,
            predictions=predictions,
            ensemble_result=result,
            model_contributions=contributions,
        )
