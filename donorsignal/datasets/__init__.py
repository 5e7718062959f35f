"""
donorsignal.datasets
====================
Synthetic data generators for developing and testing DonorSignal models.
"""

from ._generator import (
    DEFAULT_FEATURES,
    generate_synthetic_training_set,
    make_donor_records,
)

__all__ = ["DEFAULT_FEATURES", "generate_synthetic_training_set", "make_donor_records"]
