"""
donorsignal.base
================
Strategy interface implemented by every DonorSignal estimator.

The training pipeline and prediction engine are algorithm-agnostic: they
only talk to a :class:`BaseDonorEstimator`.  Concrete strategies live in
:mod:`donorsignal.models` and are selected by the ``algorithm`` enum.
"""

from __future__ import annotations

from abc import ABCMeta, abstractmethod

import numpy as np
from sklearn.base import BaseEstimator


class BaseDonorEstimator(BaseEstimator, metaclass=ABCMeta):
    """Base class for all DonorSignal estimators.

    Besides the usual scikit-learn ``fit``, a strategy must expose
    :meth:`predict_value`, the single number per donor that a
    ``DonorPrediction`` carries (a regression output, or the positive-class
    probability for classifiers), and populate the fitted attributes below
    so that confidence, factor and drift computations work the same way for
    every algorithm.

    Attributes
    ----------
    feature_importances_ : ndarray of shape (n_features,)
        Non-negative importances summing to 1.
    feature_mean_, feature_std_ : ndarray of shape (n_features,)
        Training-time feature statistics, the drift baseline.
    feature_target_corr_ : ndarray of shape (n_features,)
        Pearson correlation of each feature with the target (0 when
        undefined); its sign gives a factor's impact direction.
    n_iter_ : int
        Iterations (or trees) used by the backend.
    converged_ : bool
        Whether an iterative backend stopped before its iteration cap.
    training_loss_ : float
        Loss on the training data at the end of fitting.
    """

    @abstractmethod
    def fit(self, X, y):
        """Fit the estimator to labelled donor features (X, y)."""

    @abstractmethod
    def predict_value(self, X) -> np.ndarray:
        """Return one raw prediction per row of X."""

    def _set_training_statistics(self, X: np.ndarray, y: np.ndarray) -> None:
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        self.feature_mean_ = X.mean(axis=0)
        self.feature_std_ = X.std(axis=0)

        y_std = y.std()
        cov = (X - self.feature_mean_).T @ (y - y.mean()) / max(len(y), 1)
        denom = self.feature_std_ * y_std
        with np.errstate(divide="ignore", invalid="ignore"):
            corr = np.where(denom > 0, cov / denom, 0.0)
        self.feature_target_corr_ = np.clip(np.nan_to_num(corr), -1.0, 1.0)

    @staticmethod
    def _normalize_importances(raw) -> np.ndarray:
        raw = np.clip(np.nan_to_num(np.asarray(raw, dtype=float)), 0.0, None)
        total = raw.sum()
        if raw.size == 0:
            return raw
        if total <= 0:
            return np.full(raw.shape, 1.0 / raw.size)
        return raw / total
