"""
donorsignal.utils.testing
=========================
"""

import numpy as np
import pandas as pd
from typing import Optional


def make_donor_dataset(
    n_donors: int = 200,
    start_year: int = 2018,
    end_year: int = 2024,
    max_gifts: int = 8,
    random_state: Optional[int] = 42,
) -> pd.DataFrame:
    rng = np.random.default_rng(random_state)
    records = []
    for i in range(1, n_donors + 1):
        donor_id = f"D{str(i).zfill(5)}"
        n_gifts = int(rng.integers(1, max_gifts + 1))
        typical_gift = float(rng.lognormal(mean=4.5, sigma=0.9))
        first_year = int(rng.integers(start_year, end_year + 1))
        profile = {
            "engagement_score": round(float(rng.uniform(0, 100)), 1),
            "email_open_rate": round(float(rng.uniform(0.05, 0.7)), 3),
            "campaign_response_rate": round(float(rng.uniform(0.0, 0.35)), 3),
            "age": int(rng.integers(22, 90)),
        }
        for _ in range(n_gifts):
            year = rng.integers(first_year, end_year + 1)
            month = rng.integers(1, 13)
            day = rng.integers(1, 28)
            gift_date = pd.Timestamp(year=int(year), month=int(month), day=int(day), tz="UTC")
            gift_amount = round(typical_gift * float(rng.lognormal(mean=0.0, sigma=0.35)), 2)
            records.append(
                {
                    "donor_id": donor_id,
                    "gift_date": gift_date,
                    "gift_amount": gift_amount,
                    **profile,
                }
            )
    df = pd.DataFrame(records).sort_values(["gift_date", "donor_id"], kind="stable")
    return df.reset_index(drop=True)
