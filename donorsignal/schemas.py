"""
donorsignal.schemas
===================
Records exchanged between DonorSignal components.

Every record is a dataclass with a ``to_dict`` method returning JSON-safe
values (ISO-8601 timestamps, enum values as strings), so the shapes can be
served unchanged by any request/response layer.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from donorsignal.enums import (
    Algorithm,
    AlertType,
    EnsembleMethod,
    ModelStatus,
    PredictionType,
    Priority,
    RecommendationType,
    RegularizationType,
    Severity,
)
from donorsignal.exceptions import ValidationError
from donorsignal.utils._time import ensure_utc


def to_jsonable(value: Any) -> Any:
    """Recursively convert records, enums, datetimes and numpy scalars."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_jsonable(getattr(value, f.name))
            for f in dataclasses.fields(value)
            if f.metadata.get("serialize", True)
        }
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def _coerce_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} {value!r}; expected one of: {allowed}"
        ) from None


class _Record:
    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


# ---------------------------------------------------------------------------
# Donor input
# ---------------------------------------------------------------------------


@dataclass
class Donation(_Record):
    amount: float
    date: datetime


@dataclass
class DonorRecord(_Record):
    """A donor as read from the external donor datastore.

    Attributes
    ----------
    id : str
        Donor identifier.
    donations : list of Donation
        Donation events in any order.
    attributes : dict
        Demographic fields such as ``age``.
    engagement : dict
        Engagement signals such as ``engagement_score``,
        ``email_open_rate`` and ``campaign_response_rate``.
    """

    id: str
    donations: List[Donation] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)
    engagement: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------


@dataclass
class TrainingSample(_Record):
    features: Dict[str, Any]
    target: Any


@dataclass
class TrainingDataSet(_Record):
    """Ordered labelled samples.

    The keys of the first sample's ``features`` are the canonical feature
    set used for completeness checks.
    """

    samples: List[TrainingSample]
    date_range: Optional[Tuple[datetime, datetime]] = None

    def __len__(self) -> int:
        return len(self.samples)


@dataclass
class Regularization(_Record):
    type: RegularizationType
    strength: float = 1.0

    def __post_init__(self) -> None:
        self.type = _coerce_enum(RegularizationType, self.type, "regularization type")
        if self.strength <= 0:
            raise ValidationError(
                f"Regularization strength must be positive, got {self.strength!r}"
            )


@dataclass
class ModelConfig(_Record):
    """How to train one model.

    Attributes
    ----------
    type : PredictionType
    algorithm : Algorithm
    features : list of str
        Ordered feature names the model consumes.
    hyperparameters : dict
        Passed to the backend estimator through ``set_params``.
    validation_split : float, default=0.2
        Trailing share of the dataset used for validation.
    cross_validation : bool, default=False
        Run walk-forward cross-validation on the training split.
    feature_selection : bool, default=False
        Drop low-importance features and refit.
    regularization : Regularization or None
    retire_previous : bool, default=False
        Retire older active models of the same type on registration.
    random_state : int or None
    """

    type: PredictionType
    algorithm: Algorithm
    features: List[str]
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    validation_split: float = 0.2
    cross_validation: bool = False
    feature_selection: bool = False
    regularization: Optional[Regularization] = None
    retire_previous: bool = False
    random_state: Optional[int] = None

    def __post_init__(self) -> None:
        self.type = _coerce_enum(PredictionType, self.type, "prediction type")
        self.algorithm = _coerce_enum(Algorithm, self.algorithm, "algorithm")
        self.features = list(self.features)
        if isinstance(self.regularization, Mapping):
            self.regularization = Regularization(**self.regularization)


@dataclass
class TrainingDataDescriptor(_Record):
    sample_size: int
    date_range: Optional[Tuple[datetime, datetime]]
    feature_importance: Dict[str, float]


@dataclass(frozen=True)
class PredictionModel(_Record):
    """A trained, versioned model definition.

    Instances are immutable; the registry swaps whole objects on status
    changes so concurrent readers never observe a half-updated model.
    """

    id: str
    name: str
    type: PredictionType
    algorithm: Algorithm
    features: Tuple[str, ...]
    performance: Dict[str, float]
    training_data: TrainingDataDescriptor
    status: ModelStatus
    last_trained_at: datetime
    next_training_due: datetime
    version: str = "1.0.0"
    training_performance: Dict[str, float] = field(default_factory=dict)
    estimator: Any = field(
        default=None, compare=False, repr=False, metadata={"serialize": False}
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", PredictionType(self.type))
        object.__setattr__(self, "algorithm", Algorithm(self.algorithm))
        object.__setattr__(self, "status", ModelStatus(self.status))
        object.__setattr__(self, "features", tuple(self.features))
        object.__setattr__(self, "last_trained_at", ensure_utc(self.last_trained_at))
        object.__setattr__(self, "next_training_due", ensure_utc(self.next_training_due))

    @property
    def primary_metric(self) -> Optional[float]:
        """Validation accuracy, or R² when the model has no accuracy."""
        return primary_metric(self.performance)


def primary_metric(metrics: Mapping[str, float]) -> Optional[float]:
    for name in ("accuracy", "r2_score"):
        value = metrics.get(name)
        if value is not None and not math.isnan(value):
            return float(value)
    return None


@dataclass
class FeatureImportance(_Record):
    feature_name: str
    importance: float
    rank: int


@dataclass
class Convergence(_Record):
    converged: bool
    iterations: int
    final_loss: float


@dataclass
class TrainingResult(_Record):
    model: PredictionModel
    metrics: Dict[str, Dict[str, float]]
    feature_importance: List[FeatureImportance]
    convergence: Convergence


# ---------------------------------------------------------------------------
# Predictions
# ---------------------------------------------------------------------------


@dataclass
class PredictionFactor(_Record):
    feature: str
    impact: float
    value: Any


@dataclass
class DonorPrediction(_Record):
    donor_id: str
    model_id: str
    type: PredictionType
    prediction: float
    confidence: float
    reasoning: List[str]
    factors: List[PredictionFactor]
    generated_at: datetime
    valid_until: datetime

    def is_valid(self, now: datetime) -> bool:
        """``True`` while ``now`` has not passed ``valid_until``."""
        return ensure_utc(now) <= self.valid_until


@dataclass
class PredictionRequest(_Record):
    donor_id: str
    features: Dict[str, Any]
    models: List[str]
    ensemble: bool = False


@dataclass
class ModelContribution(_Record):
    model_id: str
    weight: float
    prediction: float
    confidence: float


@dataclass
class EnsembleResult(_Record):
    value: float
    confidence: float
    method: EnsembleMethod = EnsembleMethod.WEIGHTED


@dataclass
class EnsemblePrediction(_Record):
    donor_id: str
    type: PredictionType
    predictions: List[DonorPrediction]
    ensemble_result: EnsembleResult
    model_contributions: List[ModelContribution]


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


@dataclass
class Recommendation(_Record):
    type: RecommendationType
    priority: Priority
    description: str
    expected_improvement: float


@dataclass
class Alert(_Record):
    type: AlertType
    severity: Severity
    message: str
    action_required: bool


@dataclass
class SegmentPerformance(_Record):
    segment_id: str
    metrics: Dict[str, float]


@dataclass
class WindowPerformance(_Record):
    period: str
    metrics: Dict[str, float]


@dataclass
class PerformanceBreakdown(_Record):
    overall: Dict[str, float]
    by_segment: List[SegmentPerformance]
    by_time_window: List[WindowPerformance]


@dataclass
class ModelPerformanceReport(_Record):
    model_id: str
    performance: PerformanceBreakdown
    recommendations: List[Recommendation]
    alerts: List[Alert]
    generated_at: datetime


# ---------------------------------------------------------------------------
# Donor summaries
# ---------------------------------------------------------------------------


@dataclass
class PredictionSummary(_Record):
    risk_level: Priority
    recommended_actions: List[str]
    priority_score: float


@dataclass
class ComprehensivePredictions(_Record):
    summary: PredictionSummary
    lifetime_value: Optional[DonorPrediction] = None
    churn_risk: Optional[DonorPrediction] = None
    optimal_amount: Optional[DonorPrediction] = None
    contact_timing: Optional[DonorPrediction] = None
