"""
donorsignal.training
====================
Training pipeline: validate, encode, split, fit, score, rank and register.

The pipeline is algorithm-agnostic.  Fitting is delegated to the strategy
returned by :func:`~donorsignal.models.make_estimator`; everything else
(validation, sequential splitting, scoring, importance ranking and
registration) is shared by all algorithms.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.base import clone

from donorsignal.config import Settings, get_settings
from donorsignal.enums import Algorithm, ModelStatus, PredictionType
from donorsignal.exceptions import ValidationError
from donorsignal.metrics import classification_metrics, regression_metrics
from donorsignal.model_selection import ExpandingWindowSplitter, sequential_split
from donorsignal.models import ModelRegistry, get_backend_factory, make_estimator
from donorsignal.preprocessing import (
    DonorFeatureExtractor,
    encode_feature_vector,
    is_missing,
)
from donorsignal.schemas import (
    Convergence,
    FeatureImportance,
    ModelConfig,
    PredictionModel,
    TrainingDataDescriptor,
    TrainingDataSet,
    TrainingResult,
)
from donorsignal.utils._time import ensure_utc, utc_now

logger = logging.getLogger(__name__)

CV_SPLITS = 3

# Features whose importance falls below this share of 1/n are dropped.
FEATURE_SELECTION_RATIO = 0.25


def data_completeness(dataset: TrainingDataSet) -> float:
    """Share of feature fields, across all samples, that hold a value.

    A field is incomplete when it is ``None``, an empty string or NaN.
    """
    total = 0
    complete = 0
    for sample in dataset.samples:
        for value in sample.features.values():
            total += 1
            if not is_missing(value):
                complete += 1
    return complete / total if total else 0.0


def rank_feature_importance(features: Sequence[str], importances) -> List[FeatureImportance]:
    """Sort importances descending and assign ranks ``1..N``."""
    order = sorted(
        zip(features, np.asarray(importances, dtype=float)),
        key=lambda pair: pair[1],
        reverse=True,
    )
    return [
        FeatureImportance(feature_name=name, importance=float(value), rank=rank)
        for rank, (name, value) in enumerate(order, start=1)
    ]


def _encode_targets(targets: list, prediction_type: PredictionType) -> np.ndarray:
    if prediction_type.is_regression:
        try:
            y = np.asarray(targets, dtype=float)
        except (TypeError, ValueError):
            raise ValidationError(
                f"Targets for {prediction_type.value} must be numeric"
            ) from None
        if not np.isfinite(y).all():
            raise ValidationError(
                f"Targets for {prediction_type.value} contain missing or infinite values"
            )
        return y

    y = np.asarray([1 if t is True else 0 if t is False else t for t in targets], dtype=object)
    if not np.isin(y, (0, 1)).all():
        raise ValidationError(
            f"Targets for {prediction_type.value} must be 0/1 or boolean"
        )
    return y.astype(int)


class TrainingPipeline:
    """Train and register prediction models.

    Parameters
    ----------
    registry : ModelRegistry
        Receives every successfully trained model.
    extractor : DonorFeatureExtractor or None, default=None
        Defines which feature names are producible at prediction time.
    settings : Settings or None, default=None
        Falls back to :func:`~donorsignal.config.get_settings`.
    clock : callable, default=utc_now
        Returns the current time; injected for deterministic tests.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        extractor: Optional[DonorFeatureExtractor] = None,
        settings: Optional[Settings] = None,
        clock: Callable = utc_now,
    ) -> None:
        self.registry = registry
        self.extractor = extractor if extractor is not None else DonorFeatureExtractor()
        self.settings = settings if settings is not None else get_settings()
        self.clock = clock

    def train(self, config: ModelConfig, dataset: TrainingDataSet) -> TrainingResult:
        """Train a model for ``config`` on ``dataset`` and register it.

        Parameters
        ----------
        config : ModelConfig
        dataset : TrainingDataSet
            Ordered samples; the trailing ``validation_split`` share is held
            out for validation.

        Returns
        -------
        result : TrainingResult

        Raises
        ------
        ValidationError
            If the dataset or configuration is unusable.  Nothing is
            registered in that case.
        """
        # Re-coerce fields assigned after construction.
        config = dataclasses.replace(config)
        logger.info(
            "Training %s model using %s (%d samples, %d features)",
            config.type.value,
            config.algorithm.value,
            len(dataset),
            len(config.features),
        )
        self.validate(config, dataset)

        X = np.vstack(
            [encode_feature_vector(config.features, s.features) for s in dataset.samples]
        )
        y = _encode_targets([s.target for s in dataset.samples], config.type)
        train_idx, val_idx = sequential_split(len(dataset), config.validation_split)
        X_train, y_train = X[train_idx], y[train_idx]
        X_val, y_val = X[val_idx], y[val_idx]

        if (
            config.type.is_probability
            and config.algorithm == Algorithm.LOGISTIC_REGRESSION
            and len(np.unique(y_train)) < 2
        ):
            raise ValidationError(
                "logistic_regression needs both target classes in the training split"
            )

        features = list(config.features)
        estimator = self._fit(config, X_train, y_train)

        cv_metrics = None
        if config.cross_validation:
            cv_metrics = self._cross_validate(config, estimator, X_train, y_train)

        if config.feature_selection:
            keep = self._select_features(estimator.feature_importances_)
            if 0 < keep.sum() < len(features):
                dropped = [f for f, k in zip(features, keep) if not k]
                logger.info("Feature selection dropped %s", ", ".join(dropped))
                features = [f for f, k in zip(features, keep) if k]
                X_train, X_val = X_train[:, keep], X_val[:, keep]
                estimator = self._fit(config, X_train, y_train)

        metrics: Dict[str, Dict[str, float]] = {
            "training": self._score(config.type, estimator, X_train, y_train),
            "validation": self._score(config.type, estimator, X_val, y_val),
        }
        if cv_metrics is not None:
            metrics["cross_validation"] = cv_metrics

        ranking = rank_feature_importance(features, estimator.feature_importances_)
        model = self._build_model(config, dataset, features, estimator, metrics, ranking)
        model = self.registry.register(model, supersede=config.retire_previous)

        logger.info(
            "Model %s trained successfully (validation: %s)",
            model.id,
            ", ".join(f"{k}={v:.4f}" for k, v in metrics["validation"].items()),
        )
        return TrainingResult(
            model=model,
            metrics=metrics,
            feature_importance=ranking,
            convergence=Convergence(
                converged=bool(estimator.converged_),
                iterations=int(estimator.n_iter_),
                final_loss=float(estimator.training_loss_),
            ),
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, config: ModelConfig, dataset: TrainingDataSet) -> float:
        """Check ``dataset`` against ``config`` and return its completeness.

        Low completeness is logged as a warning, never raised.
        """
        if len(dataset) == 0:
            raise ValidationError("Training data cannot be empty")
        if not config.features:
            raise ValidationError("At least one feature is required")

        sample_keys = set(dataset.samples[0].features)
        missing = [f for f in config.features if f not in sample_keys]
        if missing:
            raise ValidationError(f"Missing required features: {', '.join(missing)}")

        producible = set(self.extractor.get_feature_names_out())
        unknown = [f for f in config.features if f not in producible]
        if unknown:
            raise ValidationError(
                f"Features not produced by the feature extractor: {', '.join(unknown)}"
            )

        task = "regression" if config.type.is_regression else "classification"
        get_backend_factory(config.algorithm, task)
        sequential_split(len(dataset), config.validation_split)

        completeness = data_completeness(dataset)
        if completeness < self.settings.completeness_warning_threshold:
            logger.warning("Training data completeness is low: %.1f%%", completeness * 100)
        return completeness

    # ------------------------------------------------------------------
    # Fitting and scoring
    # ------------------------------------------------------------------

    def _fit(self, config: ModelConfig, X, y):
        estimator = make_estimator(
            config.algorithm,
            regression=config.type.is_regression,
            hyperparameters=dict(config.hyperparameters) or None,
            regularization=config.regularization,
            random_state=config.random_state,
        )
        try:
            return estimator.fit(X, y)
        except ValidationError:
            raise
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Training failed: {exc}") from exc

    @staticmethod
    def _score(prediction_type: PredictionType, estimator, X, y) -> Dict[str, float]:
        predicted = estimator.predict_value(X)
        if prediction_type.is_regression:
            return regression_metrics(y, predicted)
        return classification_metrics(y, predicted)

    def _cross_validate(self, config: ModelConfig, estimator, X, y) -> Optional[Dict[str, float]]:
        n_splits = min(CV_SPLITS, len(X) - 1)
        if n_splits < 1:
            logger.warning("Too few training samples (%d) for cross-validation", len(X))
            return None

        folds = []
        for train, test in ExpandingWindowSplitter(n_splits=n_splits).split(X):
            if config.type.is_probability and len(np.unique(y[train])) < 2:
                logger.debug("Skipping single-class fold of %d samples", len(train))
                continue
            fold_model = clone(estimator).fit(X[train], y[train])
            folds.append(self._score(config.type, fold_model, X[test], y[test]))

        if not folds:
            logger.warning("No usable cross-validation folds for %s", config.type.value)
            return None
        return {k: float(v) for k, v in pd.DataFrame(folds).mean().items()}

    @staticmethod
    def _select_features(importances) -> np.ndarray:
        importances = np.asarray(importances, dtype=float)
        return importances >= FEATURE_SELECTION_RATIO / len(importances)

    # ------------------------------------------------------------------
    # Model construction
    # ------------------------------------------------------------------

    def _build_model(
        self,
        config: ModelConfig,
        dataset: TrainingDataSet,
        features: List[str],
        estimator,
        metrics: Dict[str, Dict[str, float]],
        ranking: List[FeatureImportance],
    ) -> PredictionModel:
        now = ensure_utc(self.clock())
        date_range: Optional[Tuple] = None
        if dataset.date_range is not None:
            date_range = tuple(ensure_utc(d) for d in dataset.date_range)

        return PredictionModel(
            id=f"model_{config.type.value}_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}",
            name=f"{config.type.value.replace('_', ' ').title()} Model",
            type=config.type,
            algorithm=config.algorithm,
            features=tuple(features),
            performance=metrics["validation"],
            training_performance=metrics["training"],
            training_data=TrainingDataDescriptor(
                sample_size=len(dataset),
                date_range=date_range,
                feature_importance={fi.feature_name: fi.importance for fi in ranking},
            ),
            status=ModelStatus.ACTIVE,
            last_trained_at=now,
            next_training_due=now + timedelta(days=self.settings.next_training_interval_days),
            estimator=estimator,
        )
