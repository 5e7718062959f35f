"""
donorsignal.metrics._scoring
============================
Model-quality metrics shared by training and monitoring.
"""

from __future__ import annotations

from typing import Dict, Optional

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    f1_score,
    log_loss,
    mean_absolute_error,
    mean_squared_error,
    precision_score,
    r2_score,
    recall_score,
    roc_auc_score,
)


def regression_metrics(y_true, y_pred) -> Dict[str, float]:
    """RMSE, MAE, R² and MAPE (percent, over non-zero targets).

    R² is reported as ``0.0`` when fewer than two samples are given or the
    targets are constant, where it is undefined.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    nonzero = y_true != 0
    if nonzero.any():
        mape = float(np.mean(np.abs((y_true[nonzero] - y_pred[nonzero]) / y_true[nonzero])) * 100)
    else:
        mape = 0.0

    if len(y_true) >= 2 and np.ptp(y_true) > 0:
        r2 = float(r2_score(y_true, y_pred))
    else:
        r2 = 0.0

    return {
        "rmse": float(np.sqrt(mean_squared_error(y_true, y_pred))),
        "mae": float(mean_absolute_error(y_true, y_pred)),
        "r2_score": r2,
        "mape": mape,
    }


def classification_metrics(y_true, proba, threshold: float = 0.5) -> Dict[str, float]:
    """Accuracy, precision, recall, F1 and (when defined) ROC AUC.

    Parameters
    ----------
    y_true : array-like of {0, 1}
    proba : array-like of float
        Positive-class probabilities.
    threshold : float, default=0.5
        Cut-off turning probabilities into labels.
    """
    y_true = np.asarray(y_true, dtype=int)
    proba = np.asarray(proba, dtype=float)
    y_pred = (proba >= threshold).astype(int)

    metrics = {
        "accuracy": float(accuracy_score(y_true, y_pred)),
        "precision": float(precision_score(y_true, y_pred, zero_division=0)),
        "recall": float(recall_score(y_true, y_pred, zero_division=0)),
        "f1_score": float(f1_score(y_true, y_pred, zero_division=0)),
    }
    if len(np.unique(y_true)) == 2:
        metrics["auc"] = float(roc_auc_score(y_true, proba))
    return metrics


def training_loss(y_true, y_pred, classification: bool) -> float:
    """Mean squared error, or log-loss for classifiers."""
    if classification:
        proba = np.clip(np.asarray(y_pred, dtype=float), 1e-15, 1 - 1e-15)
        return float(log_loss(y_true, proba, labels=[0, 1]))
    return float(mean_squared_error(y_true, y_pred))


def relative_degradation(original: float, current: Optional[float]) -> float:
    """Share of ``original`` performance lost; ``0.0`` when unknown.

    Scaled by ``abs(original)``: a drop below a negative R² baseline is
    positive degradation.
    """
    if current is None or not original:
        return 0.0
    return float((original - current) / abs(original))


def feature_drift_score(recent, baseline_mean, baseline_std) -> float:
    """Mean standardized shift of recent feature means, in ``[0, 1]``.

    Each feature contributes ``min(|recent_mean - mean| / std / 3, 1)``;
    features with zero training variance are skipped.

    Parameters
    ----------
    recent : array-like of shape (n_observations, n_features)
    baseline_mean, baseline_std : array-like of shape (n_features,)
        Training-time statistics.
    """
    recent = np.asarray(recent, dtype=float)
    baseline_mean = np.asarray(baseline_mean, dtype=float)
    baseline_std = np.asarray(baseline_std, dtype=float)
    if recent.ndim != 2 or recent.shape[0] == 0 or recent.shape[1] != baseline_mean.shape[0]:
        return 0.0

    usable = baseline_std > 0
    if not usable.any():
        return 0.0

    shift = np.abs(recent.mean(axis=0)[usable] - baseline_mean[usable]) / baseline_std[usable]
    return float(np.mean(np.minimum(shift / 3.0, 1.0)))
