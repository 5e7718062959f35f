"""
donorsignal.config
==================
Runtime settings for the prediction engine.

Settings are loaded by pydantic-settings from ``DONORSIGNAL_*`` environment
variables (or a ``.env`` file) and cached by :func:`get_settings`.  Every
component accepts an explicit ``settings`` argument, so tests and embedding
applications can pass their own instance instead of relying on the cache.

Usage::

    from donorsignal.config import get_settings

    settings = get_settings()
    settings.monitoring_interval_seconds   # 3600.0

To refresh settings in tests, clear the cache::

    get_settings.cache_clear()
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Thresholds, decay curves and cadences used across the engine.

    Attributes
    ----------
    log_level : str
        Level passed to :func:`configure_logging`.
    monitoring_interval_seconds : float
        Delay between two monitoring passes.
    retraining_age_days, critical_age_days : int
        Model age after which retraining is recommended with ``medium``
        and ``high`` priority respectively.
    next_training_interval_days : int
        Offset from training time to ``next_training_due``.
    completeness_warning_threshold : float
        Field-completeness ratio below which training logs a warning.
    min_confidence, max_confidence : float
        Clamp applied to every prediction confidence.
    confidence_base, confidence_metric_weight, confidence_completeness_weight : float
        Additive terms of the confidence score.
    confidence_age_floor : float
        Multiplier reached once a model is ``retraining_age_days`` old.
    degradation_alert_threshold, degradation_action_threshold, degradation_high_threshold : float
        Relative performance loss that raises an alert, requires action,
        and escalates to ``high`` severity.
    drift_alert_threshold, drift_action_threshold, drift_high_threshold : float
        Same three levels for the data-drift score.
    ensemble_base_weight, ensemble_metric_weight : float
        Terms of the per-model ensemble weight.
    ensemble_max_age_penalty : float
        Fraction of the weight removed once a model is ``critical_age_days`` old.
    ensemble_min_weight : float
        Floor for any ensemble weight.
    monitoring_window_size : int
        Number of observations retained per model.
    min_drift_samples, min_outcome_samples : int
        Observations required before drift and live metrics are computed.
    """

    model_config = SettingsConfigDict(
        env_prefix="DONORSIGNAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    log_level: str = "INFO"

    # Monitoring cadence (hourly reference)
    monitoring_interval_seconds: float = 3600.0

    # Model lifecycle
    retraining_age_days: int = 90
    critical_age_days: int = 180
    next_training_interval_days: int = 90

    # Training data quality
    completeness_warning_threshold: float = 0.8

    # Prediction confidence
    min_confidence: float = 0.10
    max_confidence: float = 0.95
    confidence_base: float = 0.5
    confidence_metric_weight: float = 0.3
    confidence_completeness_weight: float = 0.2
    confidence_age_floor: float = 0.7

    # Performance degradation alerts
    degradation_alert_threshold: float = 0.10
    degradation_action_threshold: float = 0.15
    degradation_high_threshold: float = 0.20

    # Data drift alerts
    drift_alert_threshold: float = 0.6
    drift_action_threshold: float = 0.75
    drift_high_threshold: float = 0.8

    # Ensemble weighting
    ensemble_base_weight: float = 0.5
    ensemble_metric_weight: float = 0.3
    ensemble_max_age_penalty: float = 0.3
    ensemble_min_weight: float = 0.1

    # Observation windows
    monitoring_window_size: int = 1000
    min_drift_samples: int = 30
    min_outcome_samples: int = 20


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide cached :class:`Settings` instance."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging with the DonorSignal format.

    Parameters
    ----------
    level : str or None, default=None
        Logging level name.  Falls back to ``get_settings().log_level``.
    """
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format=LOG_FORMAT,
    )
