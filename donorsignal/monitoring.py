"""
donorsignal.monitoring
======================
Model performance evaluation and the recurring monitoring task.

:class:`PerformanceMonitor` keeps a bounded window of recent predictions
(and, when reported, their real outcomes) per model and turns it into a
:class:`~donorsignal.schemas.ModelPerformanceReport` with alerts and
recommendations.

:class:`MonitoringScheduler` runs the monitor over every active model on a
fixed interval as a cancellable asyncio task owned by the host application.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Mapping, Optional

import numpy as np

from donorsignal.config import Settings, get_settings
from donorsignal.enums import (
    AlertType,
    ModelStatus,
    PredictionType,
    Priority,
    RecommendationType,
    Severity,
)
from donorsignal.exceptions import ModelNotFoundError
from donorsignal.metrics import (
    classification_metrics,
    feature_drift_score,
    regression_metrics,
    relative_degradation,
)
from donorsignal.models import ModelRegistry
from donorsignal.preprocessing import encode_feature_value
from donorsignal.schemas import (
    Alert,
    DonorPrediction,
    ModelPerformanceReport,
    PerformanceBreakdown,
    PredictionModel,
    Recommendation,
    SegmentPerformance,
    WindowPerformance,
    primary_metric,
)
from donorsignal.utils._time import days_between, ensure_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_ORIGINAL_PERFORMANCE = 0.8

HIGH_VALUE_TOTAL = 1000.0
LAPSED_DAYS = 365
NEW_DONOR_DAYS = 180

TIME_WINDOWS = (
    ("last_week", timedelta(days=7)),
    ("last_month", timedelta(days=30)),
    ("last_quarter", timedelta(days=90)),
)


@dataclass
class Observation:
    """One prediction served by a model, optionally with its real outcome."""

    donor_id: str
    predicted: float
    confidence: float
    vector: np.ndarray
    raw_features: Dict[str, Any]
    timestamp: datetime
    actual: Optional[float] = None


def donor_segment(raw_features: Mapping[str, Any]) -> str:
    """Assign a donor to ``high_value``, ``lapsed``, ``new`` or ``regular``."""

    def numeric(name):
        value = raw_features.get(name)
        return None if value is None else encode_feature_value(value)

    total = numeric("total_donated")
    if total is not None and total >= HIGH_VALUE_TOTAL:
        return "high_value"
    last = numeric("days_since_last_donation")
    if last is not None and last > LAPSED_DAYS:
        return "lapsed"
    first = numeric("days_since_first_donation")
    if first is not None and first < NEW_DONOR_DAYS:
        return "new"
    return "regular"


def _outcome_metrics(prediction_type: PredictionType, observations) -> Dict[str, float]:
    actual = [o.actual for o in observations]
    predicted = [o.predicted for o in observations]
    if prediction_type.is_regression:
        return regression_metrics(actual, predicted)
    return classification_metrics(np.asarray(actual, dtype=int), predicted)


def _primary_outcome_metric(prediction_type: PredictionType, observations) -> Dict[str, float]:
    metrics = _outcome_metrics(prediction_type, observations)
    name = "r2_score" if prediction_type.is_regression else "accuracy"
    return {name: metrics[name]}


def _average_confidence(observations) -> float:
    return float(np.mean([o.confidence for o in observations])) if observations else 0.0


class PerformanceMonitor:
    """Track served predictions and evaluate model health.

    Parameters
    ----------
    registry : ModelRegistry
    settings : Settings or None, default=None
    """

    def __init__(self, registry: ModelRegistry, settings: Optional[Settings] = None) -> None:
        self.registry = registry
        self.settings = settings if settings is not None else get_settings()
        self._observations: Dict[str, Deque[Observation]] = {}
        self._reports: Dict[str, ModelPerformanceReport] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_prediction(
        self,
        model: PredictionModel,
        prediction: DonorPrediction,
        vector,
        raw_features: Mapping[str, Any],
    ) -> None:
        observation = Observation(
            donor_id=prediction.donor_id,
            predicted=float(prediction.prediction),
            confidence=float(prediction.confidence),
            vector=np.asarray(vector, dtype=float),
            raw_features=dict(raw_features),
            timestamp=prediction.generated_at,
        )
        with self._lock:
            window = self._observations.get(model.id)
            if window is None:
                window = deque(maxlen=self.settings.monitoring_window_size)
                self._observations[model.id] = window
            window.append(observation)

    def record_outcome(self, donor_id: str, model_id: str, actual: float) -> bool:
        """Attach a real outcome to the donor's latest prediction by the model.

        Returns
        -------
        attached : bool
            ``False`` when no prediction for this donor is in the window.

        Raises
        ------
        ModelNotFoundError
            If ``model_id`` is not registered.
        """
        if model_id not in self.registry:
            raise ModelNotFoundError(model_id)
        with self._lock:
            for observation in reversed(self._observations.get(model_id, ())):
                if observation.donor_id == donor_id:
                    observation.actual = float(actual)
                    return True
        logger.warning("No recorded prediction for donor %s from model %s", donor_id, model_id)
        return False

    def observations(self, model_id: str) -> List[Observation]:
        with self._lock:
            return list(self._observations.get(model_id, ()))

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, model: PredictionModel, now: Optional[datetime] = None) -> ModelPerformanceReport:
        """Build, store and return a performance report for ``model``."""
        now = ensure_utc(now) if now is not None else utc_now()
        logger.info("Evaluating performance for model %s", model.id)

        observations = self.observations(model.id)
        labelled = [o for o in observations if o.actual is not None]
        live = None
        if len(labelled) >= self.settings.min_outcome_samples:
            live = _outcome_metrics(model.type, labelled)

        drift = self.drift_score(model, observations)
        current = primary_metric(live) if live is not None else None
        original = primary_metric(model.performance)
        degradation = relative_degradation(
            original if original is not None else DEFAULT_ORIGINAL_PERFORMANCE, current
        )

        overall = dict(model.performance)
        if live is not None:
            overall.update(live)
        overall["prediction_count"] = float(len(observations))
        overall["average_confidence"] = _average_confidence(observations)
        overall["data_drift_score"] = drift

        report = ModelPerformanceReport(
            model_id=model.id,
            performance=PerformanceBreakdown(
                overall=overall,
                by_segment=self._segment_performance(model, observations),
                by_time_window=self._window_performance(model, observations, now),
            ),
            recommendations=self._recommendations(model, observations, degradation, drift, now),
            alerts=self._alerts(degradation, drift),
            generated_at=now,
        )
        with self._lock:
            self._reports[model.id] = report

        logger.info(
            "Performance evaluation complete for model %s (%d recommendations, %d alerts)",
            model.id,
            len(report.recommendations),
            len(report.alerts),
        )
        return report

    def get_report(self, model_id: str) -> Optional[ModelPerformanceReport]:
        return self._reports.get(model_id)

    def drift_score(self, model: PredictionModel, observations: List[Observation]) -> float:
        """Input drift of recent predictions against the training baseline."""
        if len(observations) < self.settings.min_drift_samples:
            return 0.0
        means = getattr(model.estimator, "feature_mean_", None)
        stds = getattr(model.estimator, "feature_std_", None)
        if means is None or stds is None:
            return 0.0
        recent = [o.vector for o in observations if o.vector.shape == np.shape(means)]
        if len(recent) < self.settings.min_drift_samples:
            return 0.0
        return feature_drift_score(np.vstack(recent), means, stds)

    def _segment_performance(self, model, observations) -> List[SegmentPerformance]:
        segments: Dict[str, List[Observation]] = {
            "high_value": [],
            "regular": [],
            "lapsed": [],
            "new": [],
        }
        for observation in observations:
            segments[donor_segment(observation.raw_features)].append(observation)

        result = []
        for segment_id, members in segments.items():
            metrics = {
                "sample_size": float(len(members)),
                "average_confidence": _average_confidence(members),
            }
            labelled = [o for o in members if o.actual is not None]
            if labelled:
                metrics.update(_primary_outcome_metric(model.type, labelled))
            result.append(SegmentPerformance(segment_id=segment_id, metrics=metrics))
        return result

    def _window_performance(self, model, observations, now) -> List[WindowPerformance]:
        result = []
        for period, span in TIME_WINDOWS:
            members = [o for o in observations if o.timestamp >= now - span]
            metrics = {
                "prediction_volume": float(len(members)),
                "average_confidence": _average_confidence(members),
            }
            labelled = [o for o in members if o.actual is not None]
            if labelled:
                metrics.update(_primary_outcome_metric(model.type, labelled))
            result.append(WindowPerformance(period=period, metrics=metrics))
        return result

    def _recommendations(self, model, observations, degradation, drift, now) -> List[Recommendation]:
        s = self.settings
        recommendations = []

        age_days = days_between(now, model.last_trained_at)
        stale = age_days > s.retraining_age_days
        degraded = degradation > s.degradation_action_threshold
        if stale or degraded:
            if stale:
                description = f"Model hasn't been retrained in {int(age_days)} days"
            else:
                description = f"Model performance has degraded by {degradation * 100:.1f}% since training"
            priority = Priority.HIGH if degraded or age_days > s.critical_age_days else Priority.MEDIUM
            recommendations.append(
                Recommendation(
                    type=RecommendationType.RETRAINING,
                    priority=priority,
                    description=description,
                    expected_improvement=min(0.15, 0.05 + max(degradation, 0.0)),
                )
            )

        completeness = None
        if observations:
            completeness = float(
                np.mean([np.count_nonzero(o.vector) / max(o.vector.size, 1) for o in observations])
            )
        if drift > s.drift_alert_threshold or (
            completeness is not None and completeness < s.completeness_warning_threshold
        ):
            recommendations.append(
                Recommendation(
                    type=RecommendationType.FEATURE_ENGINEERING,
                    priority=Priority.MEDIUM,
                    description="Consider adding new behavioral features for improved accuracy",
                    expected_improvement=max(0.01, min(0.08, 0.1 * drift)),
                )
            )

        train_metric = primary_metric(model.training_performance)
        val_metric = primary_metric(model.performance)
        gap = 0.0
        if train_metric is not None and val_metric is not None:
            gap = train_metric - val_metric
        converged = getattr(model.estimator, "converged_", True)
        if gap > 0.1 or not converged:
            recommendations.append(
                Recommendation(
                    type=RecommendationType.HYPERPARAMETER_TUNING,
                    priority=Priority.LOW,
                    description="Hyperparameter optimization could improve performance",
                    expected_improvement=max(0.005, min(0.03, 0.1 * gap)),
                )
            )
        return recommendations

    def _alerts(self, degradation: float, drift: float) -> List[Alert]:
        s = self.settings
        alerts = []
        if degradation > s.degradation_alert_threshold:
            alerts.append(
                Alert(
                    type=AlertType.PERFORMANCE_DEGRADATION,
                    severity=(
                        Severity.HIGH
                        if degradation > s.degradation_high_threshold
                        else Severity.MEDIUM
                    ),
                    message=f"Model performance has degraded by {degradation * 100:.1f}%",
                    action_required=degradation > s.degradation_action_threshold,
                )
            )
            if drift <= s.drift_alert_threshold:
                alerts.append(
                    Alert(
                        type=AlertType.CONCEPT_DRIFT,
                        severity=Severity.LOW,
                        message=(
                            "Performance degraded while input features are stable; "
                            "the relationship between features and outcome may have changed"
                        ),
                        action_required=False,
                    )
                )
        if drift > s.drift_alert_threshold:
            alerts.append(
                Alert(
                    type=AlertType.DATA_DRIFT,
                    severity=Severity.HIGH if drift > s.drift_high_threshold else Severity.MEDIUM,
                    message=f"Significant data drift detected (score: {drift:.2f})",
                    action_required=drift > s.drift_action_threshold,
                )
            )
        return alerts


class MonitoringScheduler:
    """Recurring monitoring pass over every active model.

    Parameters
    ----------
    registry : ModelRegistry
    monitor : PerformanceMonitor
    settings : Settings or None, default=None
    interval : float or None, default=None
        Seconds between passes; defaults to
        ``settings.monitoring_interval_seconds``.

    Examples
    --------
    ::

        async with MonitoringScheduler(registry, monitor, interval=60):
            await serve_forever()
    """

    def __init__(
        self,
        registry: ModelRegistry,
        monitor: PerformanceMonitor,
        settings: Optional[Settings] = None,
        interval: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self.monitor = monitor
        self.settings = settings if settings is not None else get_settings()
        self.interval = float(interval if interval is not None else self.settings.monitoring_interval_seconds)
        self.passes_completed = 0
        self.last_run_at: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._pass_lock: Optional[asyncio.Lock] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Schedule the monitoring loop on the running event loop.

        Raises
        ------
        RuntimeError
            If the scheduler is already running.
        """
        if self.running:
            raise RuntimeError("MonitoringScheduler is already running")
        self._stop_event = asyncio.Event()
        self._pass_lock = asyncio.Lock()
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name="donorsignal-monitoring"
        )
        logger.info("Model monitoring started (every %.0f seconds)", self.interval)
        return self._task

    async def stop(self) -> None:
        """Signal the loop to exit and wait for any in-flight pass."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Model monitoring stopped")

    async def run_once(self, now: Optional[datetime] = None) -> List[ModelPerformanceReport]:
        """Evaluate every active model once, off the event loop."""
        if self._pass_lock is None:
            self._pass_lock = asyncio.Lock()
        async with self._pass_lock:
            reports = await asyncio.to_thread(self._evaluate_active, now)
        self.passes_completed += 1
        self.last_run_at = utc_now()
        return reports

    async def __aenter__(self) -> "MonitoringScheduler":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error in routine model monitoring")

    def _evaluate_active(self, now: Optional[datetime]) -> List[ModelPerformanceReport]:
        reports = []
        for model in self.registry.active():
            try:
                report = self.monitor.evaluate(model, now)
                if any(
                    r.type == RecommendationType.RETRAINING
                    and r.priority in (Priority.MEDIUM, Priority.HIGH)
                    for r in report.recommendations
                ):
                    self.registry.set_status(model.id, ModelStatus.NEEDS_RETRAINING)
                    logger.info("Model %s flagged for retraining", model.id)
                reports.append(report)
            except Exception:
                logger.exception("Error monitoring model %s", model.id)
        return reports
