from __future__ import annotations
import datetime as dt
from typing import Sequence
import numpy as np
import pandas as pd


def clip(x, lo, hi):
    return np.clip(x, lo, hi)

def clip01(x):
    return np.clip(x, 0.0, 1.0)

def split_integer(total: int, weights: Sequence[float]) -> list[int]:
    """Split ``total`` into non-negative integers proportional to ``weights``.

    Largest-remainder rounding, so the parts always sum to ``total`` exactly.
    """
    n = len(weights)
    if n == 0:
        return []
    if total <= 0:
        return [0] * n
    w = np.asarray(weights, dtype=float)
    w = np.where(w > 0, w, 0.0)
    if w.sum() <= 0:
        w = np.ones(n)
    raw = w / w.sum() * total
    parts = np.floor(raw).astype(int)
    short = int(total - parts.sum())
    if short > 0:
        # stable order so ties resolve to the earliest index
        order = np.argsort(-(raw - parts), kind="stable")
        parts[order[:short]] += 1
    return [int(p) for p in parts]

def midnight(day: dt.date) -> dt.datetime:
    return dt.datetime(day.year, day.month, day.day)

def at_hours(day: dt.date, hours: float) -> dt.datetime:
    """Datetime ``hours`` after midnight of ``day`` (negative means the evening before), whole seconds."""
    return midnight(day) + dt.timedelta(seconds=int(round(hours * 3600.0)))

def hours_since_midnight(ts: dt.datetime, day: dt.date) -> float:
    return (ts - midnight(day)).total_seconds() / 3600.0

def is_weekend(day: dt.date) -> bool:
    return day.weekday() >= 5

def date_range(end: dt.date, n_days: int) -> list[dt.date]:
    """``n_days`` consecutive dates ending at ``end`` (inclusive), ascending."""
    start = pd.Timestamp(end) - pd.Timedelta(days=n_days - 1)
    return [ts.date() for ts in pd.date_range(start, periods=n_days, freq="D")]

def parse_date(value) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value))
