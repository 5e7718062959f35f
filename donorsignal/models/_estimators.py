"""
donorsignal.models._estimators
==============================
Algorithm-specific estimator strategies.

``DonorRegressor`` and ``DonorClassifier`` are scikit-learn–compatible
wrappers whose backend is looked up in a factory table keyed by
``(algorithm, task)``.  The table ships with one backend per
:class:`~donorsignal.enums.Algorithm`; :func:`register_backend` replaces or
adds entries, which is how a deployment swaps in its own estimator without
touching the training pipeline.

==================== ============================== ===============================
Algorithm            Regression backend             Classification backend
==================== ============================== ===============================
linear_regression    scaler + LinearRegression      scaler + LinearRegression
                     (Lasso / Ridge / ElasticNet)   (linear probability model)
logistic_regression  *not available*               scaler + LogisticRegression
random_forest        RandomForestRegressor          RandomForestClassifier
gradient_boosting    HistGradientBoostingRegressor  HistGradientBoostingClassifier
neural_network       scaler + MLPRegressor          scaler + MLPClassifier
==================== ============================== ===============================
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

import numpy as np
from sklearn.base import ClassifierMixin, RegressorMixin
from sklearn.ensemble import (
    HistGradientBoostingClassifier,
    HistGradientBoostingRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)
from sklearn.inspection import permutation_importance
from sklearn.linear_model import (
    ElasticNet,
    Lasso,
    LinearRegression,
    LogisticRegression,
    Ridge,
)
from sklearn.neural_network import MLPClassifier, MLPRegressor
from sklearn.pipeline import Pipeline, make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.utils import Tags
from sklearn.utils.multiclass import unique_labels
from sklearn.utils.validation import check_is_fitted, validate_data

from donorsignal.base import BaseDonorEstimator
from donorsignal.enums import Algorithm, RegularizationType
from donorsignal.exceptions import ValidationError
from donorsignal.metrics import training_loss

REGRESSION = "regression"
CLASSIFICATION = "classification"

BackendFactory = Callable[[Optional[object], Optional[int]], object]

_BACKENDS: Dict[Tuple[str, str], BackendFactory] = {}


def register_backend(algorithm, task: str, factory: BackendFactory) -> None:
    """Register the backend factory for ``(algorithm, task)``.

    Parameters
    ----------
    algorithm : Algorithm or str
    task : {"regression", "classification"}
    factory : callable
        ``factory(regularization, random_state)`` returning an unfitted
        scikit-learn estimator or pipeline.
    """
    if task not in (REGRESSION, CLASSIFICATION):
        raise ValueError(f"`task` must be 'regression' or 'classification', got {task!r}.")
    _BACKENDS[(Algorithm(algorithm).value, task)] = factory


def get_backend_factory(algorithm, task: str) -> BackendFactory:
    key = (Algorithm(algorithm).value, task)
    try:
        return _BACKENDS[key]
    except KeyError:
        raise ValidationError(
            f"Algorithm {key[0]!r} does not support {task} prediction types"
        ) from None


def _final_step(backend):
    return backend.steps[-1][1] if isinstance(backend, Pipeline) else backend


# ---------------------------------------------------------------------------
# Default backends
# ---------------------------------------------------------------------------


def _linear_backend(regularization, random_state):
    if regularization is None:
        model = LinearRegression()
    elif regularization.type == RegularizationType.L1:
        model = Lasso(alpha=regularization.strength, random_state=random_state)
    elif regularization.type == RegularizationType.L2:
        model = Ridge(alpha=regularization.strength, random_state=random_state)
    else:
        model = ElasticNet(alpha=regularization.strength, l1_ratio=0.5, random_state=random_state)
    return make_pipeline(StandardScaler(), model)


def _logistic_backend(regularization, random_state):
    # The penalty kind is expressed through l1_ratio alone (0 is pure L2).
    params = {"max_iter": 1000, "random_state": random_state}
    if regularization is not None:
        params["C"] = 1.0 / regularization.strength
        if regularization.type != RegularizationType.L2:
            l1_ratio = 1.0 if regularization.type == RegularizationType.L1 else 0.5
            params.update(solver="saga", l1_ratio=l1_ratio)
    return make_pipeline(StandardScaler(), LogisticRegression(**params))


def _alpha(regularization) -> float:
    return regularization.strength if regularization is not None else 1e-4


register_backend(Algorithm.LINEAR_REGRESSION, REGRESSION, _linear_backend)
register_backend(Algorithm.LINEAR_REGRESSION, CLASSIFICATION, _linear_backend)
register_backend(Algorithm.LOGISTIC_REGRESSION, CLASSIFICATION, _logistic_backend)
register_backend(
    Algorithm.RANDOM_FOREST,
    REGRESSION,
    lambda reg, rs: RandomForestRegressor(n_estimators=100, random_state=rs),
)
register_backend(
    Algorithm.RANDOM_FOREST,
    CLASSIFICATION,
    lambda reg, rs: RandomForestClassifier(n_estimators=100, random_state=rs),
)
register_backend(
    Algorithm.GRADIENT_BOOSTING,
    REGRESSION,
    lambda reg, rs: HistGradientBoostingRegressor(
        l2_regularization=reg.strength if reg is not None else 0.0, random_state=rs
    ),
)
register_backend(
    Algorithm.GRADIENT_BOOSTING,
    CLASSIFICATION,
    lambda reg, rs: HistGradientBoostingClassifier(
        l2_regularization=reg.strength if reg is not None else 0.0, random_state=rs
    ),
)
register_backend(
    Algorithm.NEURAL_NETWORK,
    REGRESSION,
    lambda reg, rs: make_pipeline(
        StandardScaler(),
        MLPRegressor(hidden_layer_sizes=(32, 16), alpha=_alpha(reg), max_iter=500, random_state=rs),
    ),
)
register_backend(
    Algorithm.NEURAL_NETWORK,
    CLASSIFICATION,
    lambda reg, rs: make_pipeline(
        StandardScaler(),
        MLPClassifier(hidden_layer_sizes=(32, 16), alpha=_alpha(reg), max_iter=500, random_state=rs),
    ),
)


# ---------------------------------------------------------------------------
# Estimators
# ---------------------------------------------------------------------------


class _AlgorithmEstimator(BaseDonorEstimator):
    """Shared fitting logic for the algorithm-keyed strategies."""

    _task = REGRESSION

    def __init__(
        self,
        algorithm="random_forest",
        hyperparameters=None,
        regularization=None,
        random_state: Optional[int] = None,
    ) -> None:
        self.algorithm = algorithm
        self.hyperparameters = hyperparameters
        self.regularization = regularization
        self.random_state = random_state

    def fit(self, X, y):
        """Fit the selected backend and record training diagnostics.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Encoded feature matrix.
        y : array-like of shape (n_samples,)
            Regression targets, or ``{0, 1}`` labels for classifiers.

        Returns
        -------
        self

        Raises
        ------
        ValidationError
            If the algorithm does not support this task or a
            hyperparameter is unknown to the backend.
        """
        X, y = validate_data(self, X, y, reset=True, y_numeric=self._task == REGRESSION)
        y = self._prepare_targets(y)

        self.estimator_ = self._build_backend()
        self.estimator_.fit(X, y)

        self._set_training_statistics(X, y)
        self.feature_importances_ = self._compute_importances(X, y)
        self.n_iter_, self.converged_ = self._convergence()
        self.training_loss_ = training_loss(
            y, self._predict_raw(X), classification=self._task == CLASSIFICATION
        )
        return self

    def predict(self, X) -> np.ndarray:
        check_is_fitted(self)
        X = validate_data(self, X, reset=False)
        return self.estimator_.predict(X)

    def predict_value(self, X) -> np.ndarray:
        """One float per row: regression output or positive-class probability."""
        check_is_fitted(self)
        X = validate_data(self, X, reset=False)
        return self._predict_raw(X)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _prepare_targets(self, y):
        return np.asarray(y, dtype=float)

    def _predict_raw(self, X) -> np.ndarray:
        return np.asarray(self.estimator_.predict(X), dtype=float)

    def _build_backend(self):
        factory = get_backend_factory(self.algorithm, self._task)
        backend = factory(self.regularization, self.random_state)
        if self.hyperparameters:
            final = _final_step(backend)
            unknown = set(self.hyperparameters) - set(final.get_params(deep=False))
            if unknown:
                raise ValidationError(
                    f"Unknown hyperparameters for {Algorithm(self.algorithm).value}: "
                    f"{', '.join(sorted(unknown))}"
                )
            final.set_params(**self.hyperparameters)
        return backend

    def _compute_importances(self, X, y) -> np.ndarray:
        final = _final_step(self.estimator_)
        if hasattr(final, "feature_importances_"):
            raw = final.feature_importances_
        elif hasattr(final, "coef_"):
            # Linear backends sit behind a StandardScaler, so |coef| is comparable.
            raw = np.abs(np.atleast_2d(final.coef_)).sum(axis=0)
        else:
            result = permutation_importance(
                self.estimator_, X, y, n_repeats=5, random_state=self.random_state
            )
            raw = result.importances_mean
        return self._normalize_importances(raw)

    def _convergence(self) -> Tuple[int, bool]:
        final = _final_step(self.estimator_)
        n_iter = getattr(final, "n_iter_", None)
        if n_iter is not None:
            n_iter = int(np.max(n_iter))
            if getattr(final, "do_early_stopping_", True) is False:
                return n_iter, True
            max_iter = getattr(final, "max_iter", None)
            return n_iter, max_iter is None or n_iter < max_iter
        if hasattr(final, "estimators_"):
            return len(final.estimators_), True
        return 1, True


class DonorRegressor(RegressorMixin, _AlgorithmEstimator):
    """Regression strategy for amount, value and timing predictions.

    Parameters
    ----------
    algorithm : Algorithm or str, default="random_forest"
        Key into the backend factory table.
    hyperparameters : dict or None, default=None
        Applied to the backend's final step with ``set_params``.
    regularization : Regularization or None, default=None
        Penalty used by linear, boosting and neural backends.
    random_state : int or None, default=None

    Examples
    --------
    >>> import numpy as np
    >>> rng = np.random.default_rng(0)
    >>> X = rng.uniform(0, 100, (60, 3))
    >>> y = X[:, 0] * 2.0 + rng.normal(0, 1, 60)
    >>> model = DonorRegressor(algorithm="linear_regression").fit(X, y)
    >>> model.predict_value(X[:2]).shape
    (2,)
    >>> round(float(model.feature_importances_.sum()), 6)
    1.0
    """

    _task = REGRESSION


class DonorClassifier(ClassifierMixin, _AlgorithmEstimator):
    """Probability strategy for churn, response and upgrade predictions.

    Targets must be binary ``{0, 1}``.  :meth:`predict_value` returns
    ``P(class=1)``; backends without ``predict_proba`` (the linear
    probability model) have their output clipped to ``[0, 1]``.

    Parameters
    ----------
    algorithm : Algorithm or str, default="random_forest"
    hyperparameters : dict or None, default=None
    regularization : Regularization or None, default=None
    random_state : int or None, default=None
    """

    _task = CLASSIFICATION

    def __sklearn_tags__(self) -> Tags:
        tags = super().__sklearn_tags__()
        tags.classifier_tags.multi_class = False
        return tags

    def _prepare_targets(self, y):
        y = np.asarray(y)
        if not np.isin(y, (0, 1)).all():
            raise ValidationError("Classification targets must be 0 or 1")
        y = y.astype(int)
        self.classes_ = unique_labels(y)
        return y

    def predict(self, X) -> np.ndarray:
        return (self.predict_value(X) >= 0.5).astype(int)

    def predict_proba(self, X) -> np.ndarray:
        positive = self.predict_value(X)
        return np.column_stack([1.0 - positive, positive])

    def _predict_raw(self, X) -> np.ndarray:
        if not hasattr(self.estimator_, "predict_proba"):
            return np.clip(np.asarray(self.estimator_.predict(X), dtype=float), 0.0, 1.0)
        proba = self.estimator_.predict_proba(X)
        if proba.shape[1] == 2:
            return proba[:, 1]
        # Single class seen during fit.
        if self.classes_[0] == 1:
            return np.ones(proba.shape[0])
        return np.zeros(proba.shape[0])


def make_estimator(algorithm, regression: bool, **params) -> BaseDonorEstimator:
    """Return an unfitted strategy for ``algorithm`` and the task type."""
    cls = DonorRegressor if regression else DonorClassifier
    return cls(algorithm=Algorithm(algorithm).value, **params)
