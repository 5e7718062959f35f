"""
donorsignal.service
===================
Single entry point wiring every DonorSignal component together.

:class:`DonorPredictionService` owns one registry, one settings object and
the components built on them.  Training runs in a worker thread so the
event loop keeps serving predictions; monitoring runs as a background task
started and stopped with the host application.

Usage::

    service = DonorPredictionService()
    async with service:
        result = await service.train_model(config, dataset)
        predictions = service.generate_comprehensive_predictions(donor)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional, Set

from donorsignal.config import Settings, get_settings
from donorsignal.enums import PredictionType, Priority
from donorsignal.ensemble import EnsembleCombiner
from donorsignal.exceptions import ModelNotFoundError
from donorsignal.models import ModelRegistry
from donorsignal.monitoring import MonitoringScheduler, PerformanceMonitor
from donorsignal.prediction import PredictionEngine
from donorsignal.preprocessing import DonorFeatureExtractor
from donorsignal.schemas import (
    ComprehensivePredictions,
    DonorPrediction,
    DonorRecord,
    EnsemblePrediction,
    ModelConfig,
    ModelPerformanceReport,
    PredictionModel,
    PredictionRequest,
    PredictionSummary,
    TrainingDataSet,
    TrainingResult,
)
from donorsignal.training import TrainingPipeline
from donorsignal.utils._time import ensure_utc, utc_now

logger = logging.getLogger(__name__)

BASE_PRIORITY = 50


def summarize_predictions(
    lifetime_value: Optional[DonorPrediction] = None,
    churn_risk: Optional[DonorPrediction] = None,
    optimal_amount: Optional[DonorPrediction] = None,
    contact_timing: Optional[DonorPrediction] = None,
) -> PredictionSummary:
    """Risk level, suggested actions and a 0-100 priority score for a donor."""
    score = BASE_PRIORITY
    actions = []
    risk_level = Priority.MEDIUM

    if churn_risk is not None:
        if churn_risk.prediction > 0.7:
            risk_level = Priority.HIGH
            score += 30
            actions.append("Immediate re-engagement campaign needed")
        elif churn_risk.prediction > 0.4:
            risk_level = Priority.MEDIUM
            score += 15
            actions.append("Monitor engagement and consider outreach")
        else:
            risk_level = Priority.LOW
            score += 5
            actions.append("Continue regular stewardship")

    if lifetime_value is not None:
        if lifetime_value.prediction > 2000:
            score += 20
            actions.append("High-value prospect - consider major gift approach")
        elif lifetime_value.prediction > 500:
            score += 10
            actions.append("Strong donor potential - maintain regular contact")

    if optimal_amount is not None:
        actions.append(f"Suggested ask amount: ${optimal_amount.prediction:,.2f}")

    if contact_timing is not None and contact_timing.prediction < 30:
        actions.append("Good time for outreach - donor likely to respond soon")

    return PredictionSummary(
        risk_level=risk_level,
        recommended_actions=actions,
        priority_score=float(min(max(score, 0), 100)),
    )


class DonorPredictionService:
    """Train, serve, combine and monitor donor prediction models.

    Parameters
    ----------
    settings : Settings or None, default=None
    registry : ModelRegistry or None, default=None
        A fresh registry is created when omitted.
    extractor : DonorFeatureExtractor or None, default=None
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[ModelRegistry] = None,
        extractor: Optional[DonorFeatureExtractor] = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        self.registry = registry if registry is not None else ModelRegistry()
        self.extractor = extractor if extractor is not None else DonorFeatureExtractor()
        self.monitor = PerformanceMonitor(self.registry, self.settings)
        self.pipeline = TrainingPipeline(self.registry, self.extractor, self.settings)
        self.engine = PredictionEngine(self.registry, self.settings, monitor=self.monitor)
        self.combiner = EnsembleCombiner(self.registry, self.engine, self.settings)
        self.scheduler = MonitoringScheduler(self.registry, self.monitor, self.settings)
        self._training_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the monitoring task on the running event loop."""
        self.scheduler.start()

    async def stop(self) -> None:
        """Stop monitoring and wait for pending background trainings."""
        await self.scheduler.stop()
        if self._training_tasks:
            await asyncio.gather(*self._training_tasks, return_exceptions=True)

    async def __aenter__(self) -> "DonorPredictionService":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    async def train_model(self, config: ModelConfig, dataset: TrainingDataSet) -> TrainingResult:
        """Train in a worker thread; raises ``ValidationError`` on bad input."""
        return await asyncio.to_thread(self.pipeline.train, config, dataset)

    def schedule_training(self, config: ModelConfig, dataset: TrainingDataSet) -> asyncio.Task:
        """Start a training run in the background and return its task."""
        task = asyncio.get_running_loop().create_task(
            self.train_model(config, dataset), name=f"donorsignal-train-{config.type.value}"
        )
        self._training_tasks.add(task)
        task.add_done_callback(self._training_done)
        return task

    def _training_done(self, task: asyncio.Task) -> None:
        self._training_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background training failed: %s", task.exception())

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def predict(self, request: PredictionRequest, now: Optional[datetime] = None) -> List[DonorPrediction]:
        return self.engine.generate_predictions(request, now)

    def generate_ensemble_prediction(
        self,
        donor_id: str,
        prediction_type,
        features: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> EnsemblePrediction:
        return self.combiner.combine(donor_id, prediction_type, features, now)

    def get_donor_predictions(self, donor_id: str) -> List[DonorPrediction]:
        """Cached predictions for the donor; callers check ``valid_until``."""
        return self.engine.cache.get(donor_id)

    def predict_lifetime_value(self, donor: DonorRecord, now=None) -> Optional[DonorPrediction]:
        return self._predict_for_donor(PredictionType.LIFETIME_VALUE, donor, now)

    def predict_churn_risk(self, donor: DonorRecord, now=None) -> Optional[DonorPrediction]:
        return self._predict_for_donor(PredictionType.CHURN_RISK, donor, now)

    def predict_optimal_ask_amount(self, donor: DonorRecord, now=None) -> Optional[DonorPrediction]:
        return self._predict_for_donor(PredictionType.NEXT_DONATION_AMOUNT, donor, now)

    def predict_contact_timing(self, donor: DonorRecord, now=None) -> Optional[DonorPrediction]:
        return self._predict_for_donor(PredictionType.NEXT_DONATION_TIMING, donor, now)

    def generate_comprehensive_predictions(
        self, donor: DonorRecord, now: Optional[datetime] = None
    ) -> ComprehensivePredictions:
        """All four donor-level predictions plus a prioritised summary."""
        now = ensure_utc(now) if now is not None else utc_now()
        predictions = {
            "lifetime_value": self.predict_lifetime_value(donor, now),
            "churn_risk": self.predict_churn_risk(donor, now),
            "optimal_amount": self.predict_optimal_ask_amount(donor, now),
            "contact_timing": self.predict_contact_timing(donor, now),
        }
        summary = summarize_predictions(**predictions)
        logger.info(
            "Generated comprehensive predictions for donor %s (%d predictions, risk %s)",
            donor.id,
            sum(p is not None for p in predictions.values()),
            summary.risk_level.value,
        )
        return ComprehensivePredictions(summary=summary, **predictions)

    def _predict_for_donor(self, prediction_type, donor, now) -> Optional[DonorPrediction]:
        models = self.registry.active_by_type(prediction_type)
        if not models:
            logger.warning("No %s prediction models available", prediction_type.value)
            return None
        now = ensure_utc(now) if now is not None else utc_now()
        features = self.extractor.extract(donor, now)
        return self.engine.get_or_predict(models[0], donor.id, features, now)

    # ------------------------------------------------------------------
    # Models and monitoring
    # ------------------------------------------------------------------

    def get_models(self) -> List[PredictionModel]:
        return self.registry.all()

    def get_model(self, model_id: str) -> Optional[PredictionModel]:
        return self.registry.get(model_id)

    def evaluate_model_performance(
        self, model_id: str, now: Optional[datetime] = None
    ) -> ModelPerformanceReport:
        """Evaluate one model now.

        Raises
        ------
        ModelNotFoundError
            If ``model_id`` is not registered.
        """
        model = self.registry.get(model_id)
        if model is None:
            raise ModelNotFoundError(model_id)
        return self.monitor.evaluate(model, now)

    def get_model_performance_report(self, model_id: str) -> Optional[ModelPerformanceReport]:
        return self.monitor.get_report(model_id)

    def record_outcome(self, donor_id: str, model_id: str, actual: float) -> bool:
        return self.monitor.record_outcome(donor_id, model_id, actual)
