"""
donorsignal.utils._time
=======================
UTC clock helpers.  Every timestamp inside the engine is timezone-aware UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pandas as pd

SECONDS_PER_DAY = 86_400.0


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value) -> datetime:
    """Coerce ``value`` to an aware UTC :class:`~datetime.datetime`.

    Naive datetimes are interpreted as UTC.  ``date`` objects map to
    midnight UTC; strings and ``pd.Timestamp`` are parsed by pandas.
    """
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    elif isinstance(value, datetime):
        pass
    elif isinstance(value, date):
        value = datetime(value.year, value.month, value.day)
    else:
        value = pd.Timestamp(value).to_pydatetime()

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(later, earlier) -> float:
    """Fractional days from ``earlier`` to ``later``."""
    delta = ensure_utc(later) - ensure_utc(earlier)
    return delta.total_seconds() / SECONDS_PER_DAY
