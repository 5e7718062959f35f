"""
donorsignal.preprocessing
=========================
Feature encoding and donor feature extraction.
"""

from ._encoding import (
    encode_feature_value,
    encode_feature_vector,
    is_missing,
    stable_category_hash,
)
from ._donor_features import (
    DONATION_FEATURES,
    ENGAGEMENT_FEATURES,
    NEVER_DONATED_DAYS,
    TEMPORAL_FEATURES,
    DonorFeatureExtractor,
    donation_features,
)

__all__ = [
    "encode_feature_value",
    "encode_feature_vector",
    "is_missing",
    "stable_category_hash",
    "DonorFeatureExtractor",
    "donation_features",
    "DONATION_FEATURES",
    "ENGAGEMENT_FEATURES",
    "NEVER_DONATED_DAYS",
    "TEMPORAL_FEATURES",
]
