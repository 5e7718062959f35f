import warnings

import numpy as np
import pytest
from sklearn.base import clone
from sklearn.dummy import DummyRegressor
from sklearn.exceptions import NotFittedError

from donorsignal.enums import Algorithm
from donorsignal.exceptions import ValidationError
from donorsignal.models import (
    DonorClassifier,
    DonorRegressor,
    get_backend_factory,
    make_estimator,
    register_backend,
)
from donorsignal.schemas import Regularization


@pytest.fixture
def regression_data():
    rng = np.random.default_rng(0)
    X = rng.uniform(0, 100, size=(80, 3))
    y = 3.0 * X[:, 0] - 0.5 * X[:, 1] + rng.normal(0, 1, 80)
    return X, y


@pytest.fixture
def classification_data():
    rng = np.random.default_rng(1)
    X = rng.normal(size=(120, 3))
    y = (X[:, 0] + 0.2 * rng.normal(size=120) > 0).astype(int)
    return X, y


@pytest.mark.parametrize("algorithm", ["linear_regression", "random_forest", "gradient_boosting", "neural_network"])
def test_regressor_fits_every_algorithm(algorithm, regression_data):
    X, y = regression_data
    model = DonorRegressor(algorithm=algorithm, random_state=0).fit(X, y)

    assert model.predict_value(X).shape == (80,)
    assert model.feature_importances_.shape == (3,)
    assert model.feature_importances_.sum() == pytest.approx(1.0)
    assert (model.feature_importances_ >= 0).all()
    assert model.feature_mean_.shape == (3,)
    assert model.feature_std_.shape == (3,)
    assert model.n_features_in_ == 3
    assert model.training_loss_ >= 0
    assert isinstance(model.n_iter_, int)
    assert isinstance(model.converged_, bool)


@pytest.mark.parametrize(
    "algorithm",
    ["linear_regression", "logistic_regression", "random_forest", "gradient_boosting", "neural_network"],
)
def test_classifier_returns_probabilities(algorithm, classification_data):
    X, y = classification_data
    model = DonorClassifier(algorithm=algorithm, random_state=0).fit(X, y)
    proba = model.predict_value(X)

    assert proba.shape == (120,)
    assert ((proba >= 0) & (proba <= 1)).all()
    np.testing.assert_array_equal(model.classes_, [0, 1])
    assert set(np.unique(model.predict(X))) <= {0, 1}
    np.testing.assert_allclose(model.predict_proba(X).sum(axis=1), 1.0)


def test_logistic_regression_is_not_a_regressor(regression_data):
    X, y = regression_data
    with pytest.raises(ValidationError, match="does not support regression"):
        DonorRegressor(algorithm="logistic_regression").fit(X, y)


def test_classifier_rejects_non_binary_targets(classification_data):
    X, _ = classification_data
    with pytest.raises(ValidationError, match="0 or 1"):
        DonorClassifier().fit(X, np.arange(len(X)) % 3)


def test_single_class_fit_predicts_constant(classification_data):
    X, _ = classification_data
    model = DonorClassifier(algorithm="random_forest", random_state=0).fit(X, np.ones(len(X), dtype=int))
    np.testing.assert_array_equal(model.predict_value(X[:5]), np.ones(5))


def test_hyperparameters_reach_the_backend(regression_data):
    X, y = regression_data
    model = DonorRegressor(
        algorithm="random_forest", hyperparameters={"n_estimators": 7}, random_state=0
    ).fit(X, y)
    assert model.n_iter_ == 7
    assert model.converged_ is True


def test_unknown_hyperparameter_raises(regression_data):
    X, y = regression_data
    with pytest.raises(ValidationError, match="Unknown hyperparameters"):
        DonorRegressor(algorithm="random_forest", hyperparameters={"depth_of_trees": 3}).fit(X, y)


@pytest.mark.parametrize("kind", ["l1", "l2", "elastic_net"])
def test_regularized_linear_backends(kind, regression_data, classification_data):
    X, y = regression_data
    reg = DonorRegressor(
        algorithm="linear_regression", regularization=Regularization(kind, 0.5)
    ).fit(X, y)
    assert reg.feature_importances_.sum() == pytest.approx(1.0)

    Xc, yc = classification_data
    clf = DonorClassifier(
        algorithm="logistic_regression", regularization=Regularization(kind, 0.5), random_state=0
    ).fit(Xc, yc)
    assert ((clf.predict_value(Xc) >= 0) & (clf.predict_value(Xc) <= 1)).all()


@pytest.mark.parametrize("kind, l1_ratio", [("l1", 1.0), ("elastic_net", 0.5)])
def test_logistic_penalty_set_through_l1_ratio(kind, l1_ratio, classification_data):
    factory = get_backend_factory("logistic_regression", "classification")
    backend = factory(Regularization(kind, 0.5), 0)
    params = backend[-1].get_params()
    assert params["l1_ratio"] == l1_ratio
    assert params["C"] == pytest.approx(2.0)
    assert params["solver"] == "saga"

    Xc, yc = classification_data
    with warnings.catch_warnings():
        warnings.simplefilter("error", FutureWarning)
        backend.fit(Xc, yc)


def test_linear_importance_tracks_signal(regression_data):
    X, y = regression_data
    model = DonorRegressor(algorithm="linear_regression").fit(X, y)
    assert model.n_iter_ == 1
    assert np.argmax(model.feature_importances_) == 0
    assert model.feature_target_corr_[0] > 0.9
    assert model.feature_target_corr_[1] < 0


def test_constant_feature_has_zero_correlation():
    X = np.column_stack([np.arange(20, dtype=float), np.ones(20)])
    y = 2 * X[:, 0]
    model = DonorRegressor(algorithm="linear_regression").fit(X, y)
    assert model.feature_target_corr_[1] == 0.0
    assert model.feature_std_[1] == 0.0


def test_predict_before_fit_raises():
    with pytest.raises(NotFittedError):
        DonorRegressor().predict_value(np.zeros((1, 2)))


def test_clone_preserves_params():
    model = DonorRegressor(algorithm="gradient_boosting", hyperparameters={"max_iter": 50}, random_state=3)
    cloned = clone(model)
    assert cloned.get_params() == model.get_params()


def test_make_estimator_selects_task():
    assert isinstance(make_estimator(Algorithm.RANDOM_FOREST, regression=True), DonorRegressor)
    assert isinstance(make_estimator("logistic_regression", regression=False), DonorClassifier)


def test_register_backend_plugs_in_custom_estimator(regression_data):
    X, y = regression_data
    original = get_backend_factory("random_forest", "regression")
    register_backend("random_forest", "regression", lambda reg, rs: DummyRegressor())
    try:
        model = DonorRegressor(algorithm="random_forest", random_state=0).fit(X, y)
        np.testing.assert_allclose(model.predict_value(X[:3]), y.mean())
        # No native importances: permutation importance of a constant model is zero.
        np.testing.assert_allclose(model.feature_importances_, np.full(3, 1 / 3))
    finally:
        register_backend("random_forest", "regression", original)


def test_register_backend_rejects_unknown_task():
    with pytest.raises(ValueError, match="task"):
        register_backend("random_forest", "ranking", lambda reg, rs: DummyRegressor())
