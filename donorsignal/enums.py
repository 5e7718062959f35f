"""
donorsignal.enums
=================
Enumerations shared by every DonorSignal component.

All enums inherit from both ``str`` and ``Enum`` so that values serialise to
plain JSON strings.
"""

from enum import Enum


class PredictionType(str, Enum):
    """What a model predicts about a donor."""

    LIFETIME_VALUE = "lifetime_value"
    CHURN_RISK = "churn_risk"
    NEXT_DONATION_AMOUNT = "next_donation_amount"
    NEXT_DONATION_TIMING = "next_donation_timing"
    CAMPAIGN_RESPONSE_LIKELIHOOD = "campaign_response_likelihood"
    UPGRADE_PROBABILITY = "upgrade_probability"

    @property
    def is_regression(self) -> bool:
        """``True`` for amount, value and timing predictions."""
        return self in REGRESSION_TYPES

    @property
    def is_probability(self) -> bool:
        return not self.is_regression

    @property
    def is_currency(self) -> bool:
        return self in (
            PredictionType.LIFETIME_VALUE,
            PredictionType.NEXT_DONATION_AMOUNT,
        )


REGRESSION_TYPES = frozenset(
    {
        PredictionType.LIFETIME_VALUE,
        PredictionType.NEXT_DONATION_AMOUNT,
        PredictionType.NEXT_DONATION_TIMING,
    }
)


class Algorithm(str, Enum):
    """Estimator family used to fit a model."""

    LINEAR_REGRESSION = "linear_regression"
    RANDOM_FOREST = "random_forest"
    GRADIENT_BOOSTING = "gradient_boosting"
    NEURAL_NETWORK = "neural_network"
    LOGISTIC_REGRESSION = "logistic_regression"


class ModelStatus(str, Enum):
    ACTIVE = "active"
    NEEDS_RETRAINING = "needs_retraining"
    RETIRED = "retired"


class RegularizationType(str, Enum):
    L1 = "l1"
    L2 = "l2"
    ELASTIC_NET = "elastic_net"


class RecommendationType(str, Enum):
    RETRAINING = "retraining"
    FEATURE_ENGINEERING = "feature_engineering"
    HYPERPARAMETER_TUNING = "hyperparameter_tuning"


class AlertType(str, Enum):
    PERFORMANCE_DEGRADATION = "performance_degradation"
    DATA_DRIFT = "data_drift"
    CONCEPT_DRIFT = "concept_drift"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EnsembleMethod(str, Enum):
    """Strategy used to merge member predictions.

    Only ``WEIGHTED`` is used by default; ``AVERAGE`` and ``VOTING`` are
    alternates that callers must request explicitly.
    """

    WEIGHTED = "weighted"
    AVERAGE = "average"
    VOTING = "voting"
