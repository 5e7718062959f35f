"""
tests/test_datasets.py
======================
Unit tests for donorsignal.datasets.
"""

from datetime import datetime, timezone

import numpy as np
import pytest

from donorsignal.datasets import (
    DEFAULT_FEATURES,
    generate_synthetic_training_set,
    make_donor_records,
)
from donorsignal.enums import PredictionType
from donorsignal.preprocessing import DonorFeatureExtractor


# ---------------------------------------------------------------------------
# Training sets
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("prediction_type", list(PredictionType))
def test_every_type_has_default_features(prediction_type):
    producible = set(DonorFeatureExtractor().get_feature_names_out())
    assert DEFAULT_FEATURES[prediction_type]
    assert set(DEFAULT_FEATURES[prediction_type]) <= producible


@pytest.mark.parametrize("prediction_type", ["churn_risk", "campaign_response_likelihood", "upgrade_probability"])
def test_probability_targets_are_binary(prediction_type):
    ds = generate_synthetic_training_set(prediction_type, n_samples=150, random_state=0)
    targets = {s.target for s in ds.samples}
    assert targets == {0, 1}


def test_currency_targets_are_non_negative_cents():
    ds = generate_synthetic_training_set("lifetime_value", n_samples=80, random_state=0)
    targets = np.array([s.target for s in ds.samples])
    assert (targets >= 0).all()
    np.testing.assert_allclose(targets, np.round(targets, 2))


def test_timing_targets_are_whole_days():
    ds = generate_synthetic_training_set("next_donation_timing", n_samples=80, random_state=0)
    targets = np.array([s.target for s in ds.samples])
    assert (targets >= 1).all()
    assert (targets <= 730).all()
    np.testing.assert_array_equal(targets, np.round(targets))


def test_samples_carry_every_extracted_feature():
    ds = generate_synthetic_training_set("churn_risk", n_samples=20, random_state=0)
    expected = set(DonorFeatureExtractor().get_feature_names_out())
    assert len(ds) == 20
    assert all(set(s.features) == expected for s in ds.samples)


def test_reproducible_with_random_state():
    a = generate_synthetic_training_set("upgrade_probability", n_samples=30, random_state=7)
    b = generate_synthetic_training_set("upgrade_probability", n_samples=30, random_state=7)
    assert a.to_dict() == b.to_dict()


def test_date_range_ends_at_reference_date():
    reference = datetime(2024, 12, 31, tzinfo=timezone.utc)
    ds = generate_synthetic_training_set("churn_risk", n_samples=20, random_state=0, reference_date=reference)
    start, end = ds.date_range
    assert end == reference
    assert start < end


def test_unknown_type_raises():
    with pytest.raises(ValueError):
        generate_synthetic_training_set("shoe_size", n_samples=10)


# ---------------------------------------------------------------------------
# Donor records
# ---------------------------------------------------------------------------


def test_make_donor_records_groups_gifts(donor_df):
    records = make_donor_records(donor_df)

    assert len(records) == donor_df["donor_id"].nunique()
    assert [r.id for r in records] == sorted(r.id for r in records)
    assert sum(len(r.donations) for r in records) == len(donor_df)

    first = records[0]
    rows = donor_df[donor_df["donor_id"] == first.id]
    assert first.attributes == {"age": int(rows["age"].iloc[0])}
    assert first.engagement["engagement_score"] == pytest.approx(rows["engagement_score"].iloc[0])
    assert all(d.date.tzinfo is not None for d in first.donations)


def test_records_and_gift_log_extract_identically(donor_df):
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    extractor = DonorFeatureExtractor(reference_date=now)
    batch = extractor.fit_transform(donor_df).set_index("donor_id")

    for record in make_donor_records(donor_df)[:5]:
        single = extractor.extract(record, now)
        for name, value in single.items():
            assert batch.loc[record.id, name] == pytest.approx(value)
