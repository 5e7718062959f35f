"""
donorsignal.datasets._generator
===============================
Synthetic, learnable training sets for every prediction type.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from donorsignal.enums import PredictionType
from donorsignal.preprocessing import DonorFeatureExtractor
from donorsignal.schemas import (
    Donation,
    DonorRecord,
    TrainingDataSet,
    TrainingSample,
)
from donorsignal.utils._time import ensure_utc
from donorsignal.utils.testing import make_donor_dataset

ENGAGEMENT_COLUMNS = ("engagement_score", "email_open_rate", "campaign_response_rate")

DEFAULT_FEATURES: Dict[PredictionType, Tuple[str, ...]] = {
    PredictionType.LIFETIME_VALUE: (
        "total_donated",
        "donation_count",
        "avg_donation_amount",
        "donation_frequency",
        "engagement_score",
    ),
    PredictionType.CHURN_RISK: (
        "days_since_last_donation",
        "donation_frequency",
        "engagement_score",
        "recent_donation_count",
    ),
    PredictionType.NEXT_DONATION_AMOUNT: (
        "avg_donation_amount",
        "max_donation_amount",
        "recent_avg_amount",
        "donation_growth_trend",
    ),
    PredictionType.NEXT_DONATION_TIMING: (
        "days_since_last_donation",
        "donation_frequency",
        "season",
        "day_of_week",
    ),
    PredictionType.CAMPAIGN_RESPONSE_LIKELIHOOD: (
        "campaign_response_rate",
        "email_open_rate",
        "days_since_last_donation",
        "engagement_score",
    ),
    PredictionType.UPGRADE_PROBABILITY: (
        "donation_growth_trend",
        "consistency_score",
        "engagement_score",
        "avg_donation_amount",
    ),
}


def make_donor_records(gifts: pd.DataFrame) -> List[DonorRecord]:
    """Group a gift log into one :class:`DonorRecord` per donor.

    Engagement columns and ``age``, when present, are taken from the
    donor's first row.
    """
    records = []
    for donor_id, rows in gifts.groupby("donor_id", sort=True):
        first = rows.iloc[0]
        records.append(
            DonorRecord(
                id=str(donor_id),
                donations=[
                    Donation(amount=float(amount), date=ensure_utc(date))
                    for amount, date in zip(rows["gift_amount"], rows["gift_date"])
                ],
                attributes={"age": int(first["age"])} if "age" in rows else {},
                engagement={c: float(first[c]) for c in ENGAGEMENT_COLUMNS if c in rows},
            )
        )
    return records


def _sigmoid(z):
    return 1.0 / (1.0 + np.exp(-z))


def generate_synthetic_training_set(
    prediction_type,
    n_samples: int = 500,
    random_state: Optional[int] = None,
    reference_date=None,
) -> TrainingDataSet:
    """Generate a labelled training set for ``prediction_type``.

    Synthetic donors from :func:`~donorsignal.utils.testing.make_donor_dataset`
    are featurized with :class:`~donorsignal.preprocessing.DonorFeatureExtractor`
    as of ``reference_date``, and a target is derived from those features
    plus noise, so every type is learnable but not trivially so.

    Parameters
    ----------
    prediction_type : PredictionType or str
    n_samples : int, default=500
        Number of donors (one sample per donor).
    random_state : int or None, default=None
    reference_date : datetime-like or None, default=None
        Snapshot instant; defaults to 2025-01-01 UTC, just after the
        synthetic gift history ends.

    Returns
    -------
    dataset : TrainingDataSet
        Samples carry every feature the extractor produces.  Targets are
        ``0``/``1`` for probability types, non-negative currency for amount
        types and whole days for ``next_donation_timing``.

    Examples
    --------
    >>> ds = generate_synthetic_training_set("churn_risk", n_samples=50, random_state=0)
    >>> len(ds)
    50
    >>> sorted({s.target for s in ds.samples}) in ([0], [1], [0, 1])
    True
    """
    prediction_type = PredictionType(prediction_type)
    reference_date = ensure_utc(reference_date if reference_date is not None else "2025-01-01")
    rng = np.random.default_rng(None if random_state is None else random_state + 1)

    gifts = make_donor_dataset(n_donors=n_samples, random_state=random_state)
    extractor = DonorFeatureExtractor(reference_date=reference_date)
    f = extractor.fit_transform(gifts)
    n = len(f)

    if prediction_type == PredictionType.LIFETIME_VALUE:
        y = (
            f["total_donated"] * (1.0 + f["engagement_score"] / 200.0)
            + 2.0 * f["avg_donation_amount"] * f["donation_frequency"]
            + rng.normal(0, 25, n)
        )
        target = np.round(np.clip(y, 0, None), 2)
    elif prediction_type == PredictionType.NEXT_DONATION_AMOUNT:
        y = f["avg_donation_amount"] * (1.0 + 0.3 * np.clip(f["donation_growth_trend"], -1, 1))
        target = np.round(np.clip(y + rng.normal(0, 5, n), 1, None), 2)
    elif prediction_type == PredictionType.NEXT_DONATION_TIMING:
        y = 365.0 / np.maximum(f["donation_frequency"], 0.5) * rng.lognormal(0, 0.2, n)
        target = np.round(np.clip(y, 1, 730))
    else:
        if prediction_type == PredictionType.CHURN_RISK:
            z = (f["days_since_last_donation"] - 540) / 180 - (f["engagement_score"] - 50) / 25
        elif prediction_type == PredictionType.CAMPAIGN_RESPONSE_LIKELIHOOD:
            z = (
                8 * (f["campaign_response_rate"] - 0.175)
                + 4 * (f["email_open_rate"] - 0.375)
                - (f["days_since_last_donation"] - 540) / 360
            )
        else:
            z = (
                3 * f["donation_growth_trend"]
                + 2 * (f["consistency_score"] - 0.5)
                + (f["engagement_score"] - 50) / 50
            )
        target = rng.binomial(1, _sigmoid(np.asarray(z, dtype=float))).astype(int)

    target = np.asarray(target)
    rows = f.drop(columns="donor_id").to_dict("records")
    samples = [
        TrainingSample(features=row, target=target[i].item())
        for i, row in enumerate(rows)
    ]
    start = ensure_utc(gifts["gift_date"].min()) if len(gifts) else reference_date
    return TrainingDataSet(samples=samples, date_range=(start, reference_date))
