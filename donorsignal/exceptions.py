"""
donorsignal.exceptions
======================
Error taxonomy for the prediction engine.
"""


class DonorSignalError(Exception):
    """Base class for every error raised by DonorSignal."""


class ValidationError(DonorSignalError, ValueError):
    """Training data or model configuration is unusable.

    Raised before anything is written to the registry, so a failed
    validation never leaves a partial model behind.
    """


class ModelNotFoundError(DonorSignalError, LookupError):
    """A write-path operation referenced a model id the registry does not hold."""

    def __init__(self, model_id: str) -> None:
        super().__init__(f"Model {model_id!r} not found")
        self.model_id = model_id


class InsufficientModelsError(DonorSignalError):
    """An ensemble was requested with fewer than two active models."""

    def __init__(self, prediction_type, found: int) -> None:
        type_value = getattr(prediction_type, "value", prediction_type)
        super().__init__(
            f"Need at least 2 active {type_value} models for ensemble "
            f"prediction. Found {found}"
        )
        self.prediction_type = prediction_type
        self.found = found
