"""Deterministic per-(user, day) random streams.

The seed is the first 128 bits of SHA-256 over a composite key: a domain
constant, the user id, the explicit year/month/day, the proleptic day ordinal
and a stream label. Adjacent days differ in several key fields at once, so
their streams are unrelated. Every caller owns its own ``SeededRandom``;
there is no module-level generator.
"""
from __future__ import annotations
import datetime as dt
import hashlib
from typing import Sequence
import numpy as np

SEED_DOMAIN = "synthhealth/day-stream/v1"


def derive_seed(user_id: str, day: dt.date, stream: str = "") -> int:
    key = "|".join([
        SEED_DOMAIN,
        str(user_id),
        f"{day.year:04d}-{day.month:02d}-{day.day:02d}",
        str(day.toordinal()),
        stream,
    ])
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:16], "big")


class SeededRandom:
    """Thin wrapper over ``np.random.Generator`` with inclusive-range primitives."""

    def __init__(self, seed: int):
        self.seed = int(seed)
        self._rng = np.random.default_rng(self.seed)

    @classmethod
    def for_day(cls, user_id: str, day: dt.date, stream: str = "") -> "SeededRandom":
        return cls(derive_seed(user_id, day, stream))

    @property
    def generator(self) -> np.random.Generator:
        return self._rng

    def next_int(self, lo: int, hi: int) -> int:
        """Uniform integer in ``[lo, hi]``."""
        if hi < lo:
            raise ValueError(f"empty range [{lo}, {hi}]")
        return int(self._rng.integers(lo, hi + 1))

    def next_double(self, lo: float = 0.0, hi: float = 1.0) -> float:
        if hi < lo:
            raise ValueError(f"empty range [{lo}, {hi}]")
        return float(self._rng.uniform(lo, hi))

    def next_float(self, lo: float = 0.0, hi: float = 1.0) -> float:
        """Single-precision draw, kept inside ``[lo, hi]`` after rounding."""
        v = float(np.float32(self.next_double(lo, hi)))
        return min(max(v, lo), hi)

    def next_bool(self, p: float = 0.5) -> bool:
        if p <= 0.0:
            return False
        if p >= 1.0:
            return True
        return bool(self._rng.random() < p)

    def choice_weighted(self, options: Sequence, weights: Sequence[float]):
        w = np.asarray(weights, dtype=float)
        idx = int(self._rng.choice(len(options), p=w / w.sum()))
        return options[idx]


def seed_rng(user_id: str, day: dt.date, stream: str = "") -> SeededRandom:
    return SeededRandom.for_day(user_id, day, stream)
