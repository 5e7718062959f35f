"""
donorsignal.utils._validation
=============================
Shared argument validation for DonorSignal components.
"""

from donorsignal.exceptions import ValidationError


def validate_validation_split(fraction: float) -> float:
    """
    Validate that the validation fraction lies strictly between 0 and 1.

    Parameters
    ----------
    fraction : float
        Share of the (ordered) dataset held out for validation.

    Returns
    -------
    fraction : float
        The validated fraction.

    Raises
    ------
    ValidationError
        If fraction is not in the open interval (0, 1).
    """
    if not (0.0 < fraction < 1.0):
        raise ValidationError(
            f"`validation_split` must be strictly between 0 and 1, got {fraction!r}."
        )
    return float(fraction)
