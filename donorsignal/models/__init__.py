"""
donorsignal.models
==================
Algorithm strategies for donor predictions and the model registry.
"""

from ._estimators import (
    DonorClassifier,
    DonorRegressor,
    get_backend_factory,
    make_estimator,
    register_backend,
)
from ._registry import ModelRegistry

__all__ = [
    "DonorRegressor",
    "DonorClassifier",
    "make_estimator",
    "register_backend",
    "get_backend_factory",
    "ModelRegistry",
]
