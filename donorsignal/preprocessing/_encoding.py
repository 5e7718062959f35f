"""
donorsignal.preprocessing._encoding
===================================
Numeric encoding of loosely-typed feature values.

Raw donor features arrive as a mix of numbers, booleans, category strings,
dates and missing values.  :func:`encode_feature_value` dispatches on the
value's type and applies exactly one rule per variant:

====================  =========================================
Variant               Encoding
====================  =========================================
``bool``              ``1.0`` / ``0.0``
real number           ``float`` (NaN and ±inf become ``0.0``)
``str``               stable bounded hash in ``[0, 1000)``
date / datetime       epoch milliseconds (naive values are UTC)
``None`` / other      ``0.0``
====================  =========================================
"""

from __future__ import annotations

import math
import numbers
from datetime import date
from functools import singledispatch
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from donorsignal.utils._time import ensure_utc

CATEGORY_BUCKETS = 1000


def stable_category_hash(value: str, buckets: int = CATEGORY_BUCKETS) -> int:
    """Hash ``value`` into ``[0, buckets)`` identically in every process.

    Uses the 32-bit polynomial string hash (``h = 31 * h + code``) rather than
    :func:`hash`, which is salted per interpreter.
    """
    h = 0
    for char in value:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % buckets


@singledispatch
def encode_feature_value(value: Any) -> float:
    """Encode one raw feature value as a float.

    Parameters
    ----------
    value : any
        Raw value from a donor record or training sample.

    Returns
    -------
    float

    Examples
    --------
    >>> encode_feature_value(True)
    1.0
    >>> encode_feature_value(None)
    0.0
    >>> 0 <= encode_feature_value("major_gift") < 1000
    True
    """
    return 0.0


@encode_feature_value.register(bool)
@encode_feature_value.register(np.bool_)
def _(value) -> float:
    return 1.0 if value else 0.0


@encode_feature_value.register(numbers.Real)
def _(value) -> float:
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


@encode_feature_value.register(str)
def _(value: str) -> float:
    return float(stable_category_hash(value))


@encode_feature_value.register(date)
def _(value) -> float:
    if pd.isna(value):
        return 0.0
    return ensure_utc(value).timestamp() * 1000.0


def encode_feature_vector(names: Sequence[str], raw: Mapping[str, Any]) -> np.ndarray:
    """Encode ``raw[name]`` for each name, in order, as a float vector."""
    return np.array([encode_feature_value(raw.get(name)) for name in names], dtype=float)


def is_missing(value: Any) -> bool:
    """``True`` for ``None``, empty strings and NaN."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False
