"""
DonorSignal
===========
A scikit-learn based engine that trains, serves, combines and monitors
donor prediction models for nonprofit fundraising.
"""

__version__ = "0.1.0"

from . import preprocessing, models, metrics, model_selection, utils, datasets
from .config import Settings, configure_logging, get_settings
from .enums import Algorithm, ModelStatus, PredictionType
from .exceptions import (
    DonorSignalError,
    InsufficientModelsError,
    ModelNotFoundError,
    ValidationError,
)
from .service import DonorPredictionService

__all__ = [
    "Algorithm",
    "DonorPredictionService",
    "DonorSignalError",
    "InsufficientModelsError",
    "ModelNotFoundError",
    "ModelStatus",
    "PredictionType",
    "Settings",
    "ValidationError",
    "configure_logging",
    "get_settings",
]
