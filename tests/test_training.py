import dataclasses
import logging
import re
from datetime import timedelta

import numpy as np
import pytest

from donorsignal.datasets import DEFAULT_FEATURES
from donorsignal.enums import Algorithm, ModelStatus
from donorsignal.exceptions import ValidationError
from donorsignal.prediction import PredictionEngine
from donorsignal.schemas import ModelConfig, TrainingDataSet, TrainingSample
from donorsignal.training import data_completeness, rank_feature_importance

from conftest import NOW


def _linear_dataset(n=100, tail_target=None):
    samples = []
    for i in range(n):
        x = float(i)
        target = 2.0 * x if tail_target is None or i < int(n * 0.8) else tail_target
        samples.append(
            TrainingSample(
                features={"total_donated": x, "donation_count": 1.0, "max_donation_amount": 5.0},
                target=target,
            )
        )
    return TrainingDataSet(samples=samples)


def _ltv_config(**overrides):
    params = dict(
        type="lifetime_value",
        algorithm="linear_regression",
        features=["total_donated", "donation_count", "max_donation_amount"],
    )
    params.update(overrides)
    return ModelConfig(**params)


def test_empty_churn_dataset_raises_and_registers_nothing(pipeline, registry, churn_config):
    with pytest.raises(ValidationError, match="cannot be empty"):
        pipeline.train(churn_config, TrainingDataSet(samples=[]))
    assert registry.all() == []


def test_train_registers_active_model(pipeline, registry, churn_config, churn_dataset):
    result = pipeline.train(churn_config, churn_dataset)
    model = result.model

    assert registry.get(model.id) is model
    assert model.status == ModelStatus.ACTIVE
    assert model.version == "1.0.0"
    assert model.name == "Churn Risk Model"
    assert re.fullmatch(r"model_churn_risk_\d+_[0-9a-f]{6}", model.id)
    assert model.last_trained_at == NOW
    assert model.next_training_due == NOW + timedelta(days=90)
    assert model.training_data.sample_size == len(churn_dataset)
    assert model.training_data.date_range == churn_dataset.date_range
    assert model.estimator is not None

    assert set(result.metrics) == {"training", "validation"}
    assert {"accuracy", "precision", "recall", "f1_score"} <= set(model.performance)
    assert model.performance == result.metrics["validation"]
    assert model.training_performance == result.metrics["training"]


def test_registered_model_can_predict(pipeline, registry, settings, churn_config, churn_dataset):
    model = pipeline.train(churn_config, churn_dataset).model
    engine = PredictionEngine(registry, settings)

    prediction = engine.predict(registry.get(model.id), "d1", churn_dataset.samples[0].features, now=NOW)

    assert prediction.model_id == model.id
    assert 0.0 <= prediction.prediction <= 1.0


def test_fields_assigned_after_construction_are_coerced(pipeline, churn_config, churn_dataset):
    config = dataclasses.replace(churn_config)
    config.algorithm = "gradient_boosting"
    config.hyperparameters = {"max_iter": 30}

    model = pipeline.train(config, churn_dataset).model

    assert model.algorithm == Algorithm.GRADIENT_BOOSTING
    assert model.estimator is not None


def test_importances_are_ranked_descending(pipeline, churn_config, churn_dataset):
    result = pipeline.train(churn_config, churn_dataset)
    ranking = result.feature_importance

    assert [fi.rank for fi in ranking] == list(range(1, len(churn_config.features) + 1))
    values = [fi.importance for fi in ranking]
    assert values == sorted(values, reverse=True)
    assert sum(values) == pytest.approx(1.0)
    assert set(result.model.training_data.feature_importance) == set(churn_config.features)


def test_convergence_descriptor(pipeline, churn_config, churn_dataset):
    result = pipeline.train(churn_config, churn_dataset)
    assert result.convergence.converged is True
    assert result.convergence.iterations == 20
    assert result.convergence.final_loss >= 0


def test_split_is_sequential(pipeline):
    # The last 20 samples break the linear relation; only validation sees them.
    result = pipeline.train(_ltv_config(), _linear_dataset(100, tail_target=-500.0))

    assert result.metrics["training"]["r2_score"] == pytest.approx(1.0)
    assert result.metrics["training"]["rmse"] == pytest.approx(0.0, abs=1e-6)
    assert result.metrics["validation"]["rmse"] > 100


def test_missing_feature_raises(pipeline, registry):
    config = _ltv_config(features=["total_donated", "engagement_score"])
    with pytest.raises(ValidationError, match="Missing required features: engagement_score"):
        pipeline.train(config, _linear_dataset())
    assert len(registry) == 0


def test_unproducible_feature_raises(pipeline, registry):
    dataset = TrainingDataSet(samples=[TrainingSample({"shoe_size": 1.0}, 1.0)] * 10)
    config = _ltv_config(features=["shoe_size"])
    with pytest.raises(ValidationError, match="not produced by the feature extractor"):
        pipeline.train(config, dataset)
    assert len(registry) == 0


def test_logistic_regression_rejected_for_regression_types(pipeline, registry):
    with pytest.raises(ValidationError, match="logistic_regression"):
        pipeline.train(_ltv_config(algorithm="logistic_regression"), _linear_dataset())
    assert len(registry) == 0


def test_bad_validation_split_raises(pipeline):
    with pytest.raises(ValidationError, match="validation_split"):
        pipeline.train(_ltv_config(validation_split=1.0), _linear_dataset())


def test_non_binary_classification_targets_raise(pipeline, registry):
    dataset = TrainingDataSet(
        samples=[TrainingSample({"engagement_score": float(i)}, i % 3) for i in range(30)]
    )
    config = ModelConfig(type="churn_risk", algorithm="random_forest", features=["engagement_score"])
    with pytest.raises(ValidationError, match="0/1"):
        pipeline.train(config, dataset)
    assert len(registry) == 0


def test_logistic_regression_needs_both_classes(pipeline):
    dataset = TrainingDataSet(
        samples=[TrainingSample({"engagement_score": float(i)}, 0) for i in range(30)]
    )
    config = ModelConfig(type="churn_risk", algorithm="logistic_regression", features=["engagement_score"])
    with pytest.raises(ValidationError, match="both target classes"):
        pipeline.train(config, dataset)


def test_invalid_hyperparameters_raise(pipeline, registry, churn_dataset):
    config = ModelConfig(
        type="churn_risk",
        algorithm="random_forest",
        features=list(DEFAULT_FEATURES["churn_risk"]),
        hyperparameters={"n_estimators": -3},
    )
    with pytest.raises(ValidationError, match="Training failed"):
        pipeline.train(config, churn_dataset)
    assert len(registry) == 0


def test_low_completeness_logs_warning(pipeline, caplog):
    samples = [
        TrainingSample(
            features={"total_donated": float(i), "donation_count": None, "max_donation_amount": ""},
            target=2.0 * i,
        )
        for i in range(50)
    ]
    with caplog.at_level(logging.WARNING, logger="donorsignal.training"):
        result = pipeline.train(_ltv_config(), TrainingDataSet(samples=samples))

    assert "completeness is low: 33.3%" in caplog.text
    assert result.model.status == ModelStatus.ACTIVE


def test_complete_data_does_not_warn(pipeline, caplog):
    with caplog.at_level(logging.WARNING, logger="donorsignal.training"):
        pipeline.train(_ltv_config(), _linear_dataset())
    assert "completeness" not in caplog.text


def test_cross_validation_metrics(pipeline, ltv_dataset):
    config = ModelConfig(
        type="lifetime_value",
        algorithm="gradient_boosting",
        features=list(DEFAULT_FEATURES["lifetime_value"]),
        cross_validation=True,
        random_state=0,
    )
    result = pipeline.train(config, ltv_dataset)
    assert set(result.metrics["cross_validation"]) == {"rmse", "mae", "r2_score", "mape"}


def test_feature_selection_drops_uninformative_features(pipeline):
    result = pipeline.train(_ltv_config(feature_selection=True), _linear_dataset())
    assert result.model.features == ("total_donated",)
    assert [fi.feature_name for fi in result.feature_importance] == ["total_donated"]
    assert result.model.estimator.n_features_in_ == 1


def test_retire_previous(pipeline, registry):
    first = pipeline.train(_ltv_config(), _linear_dataset()).model
    second = pipeline.train(_ltv_config(retire_previous=True), _linear_dataset()).model

    assert registry.get(first.id).status == ModelStatus.RETIRED
    assert registry.get(second.id).status == ModelStatus.ACTIVE
    assert second.version == "2.0.0"


def test_data_completeness_counts_every_field():
    dataset = TrainingDataSet(
        samples=[
            TrainingSample({"a": 1, "b": None}, 0),
            TrainingSample({"a": float("nan"), "b": "x"}, 1),
        ]
    )
    assert data_completeness(dataset) == 0.5


def test_rank_feature_importance():
    ranking = rank_feature_importance(["a", "b", "c"], np.array([0.2, 0.5, 0.3]))
    assert [(fi.feature_name, fi.rank) for fi in ranking] == [("b", 1), ("c", 2), ("a", 3)]
