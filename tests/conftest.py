"""
Shared pytest fixtures.
"""

from datetime import datetime, timedelta, timezone

import pytest

from donorsignal.config import Settings
from donorsignal.datasets import DEFAULT_FEATURES, generate_synthetic_training_set
from donorsignal.models import ModelRegistry
from donorsignal.schemas import ModelConfig, PredictionModel, TrainingDataDescriptor
from donorsignal.training import TrainingPipeline
from donorsignal.utils.testing import make_donor_dataset

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def donor_df():
    return make_donor_dataset(n_donors=50, random_state=0)


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def registry():
    return ModelRegistry()


@pytest.fixture
def pipeline(registry, settings):
    return TrainingPipeline(registry, settings=settings, clock=lambda: NOW)


@pytest.fixture(scope="session")
def churn_dataset():
    return generate_synthetic_training_set("churn_risk", n_samples=150, random_state=0)


@pytest.fixture(scope="session")
def ltv_dataset():
    return generate_synthetic_training_set("lifetime_value", n_samples=150, random_state=0)


@pytest.fixture
def churn_config():
    return ModelConfig(
        type="churn_risk",
        algorithm="random_forest",
        features=list(DEFAULT_FEATURES["churn_risk"]),
        hyperparameters={"n_estimators": 20},
        random_state=0,
    )


@pytest.fixture
def make_model():
    """Factory for hand-built models (no fitted estimator unless given)."""

    def _make(
        model_id="m1",
        type="churn_risk",
        performance=None,
        last_trained_at=NOW,
        status="active",
        estimator=None,
        features=("engagement_score", "days_since_last_donation"),
        training_performance=None,
        feature_importance=None,
    ):
        if feature_importance is None:
            feature_importance = {f: 1.0 / len(features) for f in features}
        return PredictionModel(
            id=model_id,
            name=f"{model_id} model",
            type=type,
            algorithm="random_forest",
            features=features,
            performance=performance if performance is not None else {"accuracy": 0.8},
            training_data=TrainingDataDescriptor(
                sample_size=100, date_range=None, feature_importance=feature_importance
            ),
            status=status,
            last_trained_at=last_trained_at,
            next_training_due=last_trained_at + timedelta(days=90),
            training_performance=training_performance or {},
            estimator=estimator,
        )

    return _make
