"""Archetype classification: numeric baselines -> qualitative sleep/activity profile."""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import (
    ActivityIntensity,
    ActivityLevel,
    DailyActivityPattern,
    PersonalizedProfile,
    SleepType,
    VirtualUser,
)

logger = logging.getLogger(__name__)

# ---- thresholds ----
NIGHT_OWL_SLEEP_HOURS = 8.5
EARLY_BIRD_SLEEP_HOURS = 6.5
VERY_HIGH_STEPS = 15000
HIGH_STEPS = 10000
MEDIUM_STEPS = 5000


@dataclass(frozen=True)
class SleepArchetype:
    # hours relative to midnight of the wake date; negative = evening before
    bed_hour_weekday: float
    bed_hour_weekend: float
    wake_hour_weekday: float
    wake_hour_weekend: float
    duration_range: Tuple[float, float]
    consistency: float
    # probability of pre-sleep phone use and the number of uses when it happens
    phone_use_prob: float
    phone_uses: Tuple[int, int]
    nocturnal_wakings: Tuple[int, int]

    def window(self, weekend: bool) -> Tuple[float, float]:
        if weekend:
            return self.bed_hour_weekend, self.wake_hour_weekend
        return self.bed_hour_weekday, self.wake_hour_weekday


@dataclass(frozen=True)
class ActivityArchetype:
    step_range: Tuple[int, int]
    intensity_multiplier: float
    pattern: DailyActivityPattern


SLEEP_ARCHETYPES: Dict[SleepType, SleepArchetype] = {
    SleepType.NIGHT_OWL: SleepArchetype(1.0, 2.0, 10.0, 11.0, (6.0, 10.0), 0.8, 0.7, (1, 3), (0, 1)),
    SleepType.EARLY_BIRD: SleepArchetype(-3.0, -2.0, 5.0, 6.0, (7.0, 9.0), 0.9, 0.3, (1, 1), (0, 0)),
    SleepType.IRREGULAR: SleepArchetype(-1.0, -0.5, 8.0, 8.5, (5.0, 11.0), 0.3, 0.6, (1, 2), (1, 2)),
    SleepType.NORMAL: SleepArchetype(-2.0, -1.0, 6.0, 7.0, (7.0, 9.0), 0.7, 0.5, (1, 2), (0, 1)),
}

_I = ActivityIntensity
ACTIVITY_ARCHETYPES: Dict[ActivityLevel, ActivityArchetype] = {
    ActivityLevel.LOW: ActivityArchetype((1500, 4500), 0.7, DailyActivityPattern(_I.LOW, _I.NORMAL, _I.LOW, 0.8)),
    ActivityLevel.MEDIUM: ActivityArchetype((4500, 8500), 1.0, DailyActivityPattern(_I.NORMAL, _I.NORMAL, _I.NORMAL, 1.2)),
    ActivityLevel.HIGH: ActivityArchetype((8500, 13000), 1.3, DailyActivityPattern(_I.HIGH, _I.NORMAL, _I.HIGH, 1.4)),
    ActivityLevel.VERY_HIGH: ActivityArchetype((13000, 18000), 1.6, DailyActivityPattern(_I.VERY_HIGH, _I.HIGH, _I.VERY_HIGH, 1.6)),
}


def sleep_type_for(sleep_baseline: float) -> SleepType:
    if sleep_baseline >= NIGHT_OWL_SLEEP_HOURS:
        return SleepType.NIGHT_OWL
    if sleep_baseline <= EARLY_BIRD_SLEEP_HOURS:
        return SleepType.EARLY_BIRD
    return SleepType.NORMAL

def activity_level_for(steps_baseline: int) -> ActivityLevel:
    if steps_baseline >= VERY_HIGH_STEPS:
        return ActivityLevel.VERY_HIGH
    if steps_baseline >= HIGH_STEPS:
        return ActivityLevel.HIGH
    if steps_baseline >= MEDIUM_STEPS:
        return ActivityLevel.MEDIUM
    return ActivityLevel.LOW

def build_profile(sleep_type: SleepType, activity_level: ActivityLevel) -> PersonalizedProfile:
    return PersonalizedProfile(sleep_type, activity_level, ACTIVITY_ARCHETYPES[activity_level].pattern)

def classify(user: VirtualUser) -> PersonalizedProfile:
    """Pure mapping; ``irregular`` is never produced here, only by explicit assignment."""
    return build_profile(sleep_type_for(user.sleep_baseline), activity_level_for(user.steps_baseline))

def sleep_archetype(profile: PersonalizedProfile) -> SleepArchetype:
    return SLEEP_ARCHETYPES[profile.sleep_type]

def activity_archetype(profile: PersonalizedProfile) -> ActivityArchetype:
    return ACTIVITY_ARCHETYPES[profile.activity_level]


class ProfileCache:
    """Per-user profile cache shared across worker threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._profiles: Dict[str, PersonalizedProfile] = {}

    def assign(self, user_id: str, profile: PersonalizedProfile) -> None:
        with self._lock:
            self._profiles[user_id] = profile
        logger.debug(f"Assigned profile {profile.sleep_type.value}/{profile.activity_level.value} to {user_id}")

    def peek(self, user_id: str) -> Optional[PersonalizedProfile]:
        with self._lock:
            return self._profiles.get(user_id)

    def get(self, user: VirtualUser) -> PersonalizedProfile:
        with self._lock:
            cached = self._profiles.get(user.id)
            if cached is None:
                cached = classify(user)
                self._profiles[user.id] = cached
            return cached

    def clear(self) -> None:
        with self._lock:
            self._profiles.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)
