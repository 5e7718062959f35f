"""
donorsignal.metrics
===================
Regression, classification, degradation and drift scores.
"""

from ._scoring import (
    classification_metrics,
    feature_drift_score,
    regression_metrics,
    relative_degradation,
    training_loss,
)

__all__ = [
    "regression_metrics",
    "classification_metrics",
    "training_loss",
    "relative_degradation",
    "feature_drift_score",
]
