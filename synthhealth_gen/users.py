from __future__ import annotations
import datetime as dt
import uuid
from typing import List, Optional, Sequence, Tuple
import numpy as np
import pandas as pd

from .archetypes import ProfileCache, build_profile, classify
from .config import GeneratorConfig
from .models import ActivityLevel, Gender, PersonalizedProfile, SleepType, VirtualUser

DEVICE_MODELS = [
    "iPhone 12", "iPhone 12 Pro", "iPhone 13", "iPhone 13 Pro", "iPhone 14",
    "iPhone 14 Pro", "iPhone 15", "iPhone 15 Pro", "iPhone 15 Pro Max",
]
SERIAL_PREFIXES = ["F2L", "F4L", "G0N", "G5N", "DX3", "F17", "F93", "DN6"]
SERIAL_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ0123456789"

HEIGHT_RANGES_CM = {
    Gender.MALE: (160.0, 185.0),
    Gender.FEMALE: (150.0, 170.0),
    Gender.OTHER: (155.0, 180.0),
}

# baselines are drawn inside the band that classifies to the requested archetype
SLEEP_BASELINE_RANGES = {
    SleepType.NIGHT_OWL: (8.5, 9.5),
    SleepType.EARLY_BIRD: (5.8, 6.5),
    SleepType.NORMAL: (6.6, 8.4),
    SleepType.IRREGULAR: (6.6, 8.4),
}
STEPS_BASELINE_RANGES = {
    ActivityLevel.LOW: (2000, 4999),
    ActivityLevel.MEDIUM: (5000, 9999),
    ActivityLevel.HIGH: (10000, 14999),
    ActivityLevel.VERY_HIGH: (15000, 20000),
}

SLEEP_TYPE_PROBS = [(SleepType.NIGHT_OWL, 0.2), (SleepType.EARLY_BIRD, 0.2), (SleepType.NORMAL, 0.6)]
ACTIVITY_LEVEL_PROBS = [
    (ActivityLevel.LOW, 0.25), (ActivityLevel.MEDIUM, 0.40),
    (ActivityLevel.HIGH, 0.25), (ActivityLevel.VERY_HIGH, 0.10),
]


def _pick(rng: np.random.Generator, table):
    options = [o for o, _ in table]
    probs = np.array([p for _, p in table], dtype=float)
    return options[int(rng.choice(len(options), p=probs / probs.sum()))]

def _serial(rng: np.random.Generator) -> str:
    prefix = SERIAL_PREFIXES[int(rng.integers(len(SERIAL_PREFIXES)))]
    tail = "".join(SERIAL_ALPHABET[int(i)] for i in rng.integers(len(SERIAL_ALPHABET), size=5))
    return prefix + tail

def _uuid(rng: np.random.Generator) -> str:
    return str(uuid.UUID(bytes=rng.bytes(16), version=4)).upper()


def generate_personalized_user(rng: np.random.Generator,
                               sleep_type: Optional[SleepType] = None,
                               activity_level: Optional[ActivityLevel] = None,
                               user_id: Optional[str] = None,
                               created_at: Optional[dt.datetime] = None) -> Tuple[VirtualUser, PersonalizedProfile]:
    """One virtual user whose baselines match the requested (or randomly drawn) archetype.

    ``irregular`` cannot be reached from baselines alone, so the returned
    profile is the one to register in a ``ProfileCache``.
    """
    sleep_type = sleep_type or _pick(rng, SLEEP_TYPE_PROBS)
    activity_level = activity_level or _pick(rng, ACTIVITY_LEVEL_PROBS)

    gender = Gender(rng.choice([g.value for g in Gender], p=[0.48, 0.48, 0.04]))
    age = int(rng.integers(20, 46))
    h_lo, h_hi = HEIGHT_RANGES_CM[gender]
    height_cm = round(float(rng.uniform(h_lo, h_hi)), 1)
    bmi = float(rng.uniform(18.5, 28.0))
    weight_kg = round(float(np.clip(bmi * (height_cm / 100.0) ** 2, 50.0, 100.0)), 1)

    s_lo, s_hi = SLEEP_BASELINE_RANGES[sleep_type]
    sleep_baseline = round(float(rng.uniform(s_lo, s_hi)), 2)
    st_lo, st_hi = STEPS_BASELINE_RANGES[activity_level]
    steps_baseline = int(rng.integers(st_lo, st_hi + 1))

    device_uuid = _uuid(rng)
    user = VirtualUser(
        id=user_id or f"vu-{device_uuid[:8].lower()}",
        age=age,
        gender=gender,
        height_cm=height_cm,
        weight_kg=weight_kg,
        sleep_baseline=sleep_baseline,
        steps_baseline=steps_baseline,
        created_at=(created_at or dt.datetime(2024, 1, 1)).replace(microsecond=0),
        device_model=DEVICE_MODELS[int(rng.integers(len(DEVICE_MODELS)))],
        device_serial_number=_serial(rng),
        device_uuid=device_uuid,
    )
    if sleep_type is SleepType.IRREGULAR:
        return user, build_profile(SleepType.IRREGULAR, activity_level)
    return user, classify(user)


def generate_users(cfg: GeneratorConfig, rng: np.random.Generator,
                   profiles: Optional[ProfileCache] = None,
                   created_at: Optional[dt.datetime] = None) -> List[VirtualUser]:
    """``cfg.n_users`` users with ids ``u00001..``; irregular sleepers are registered in ``profiles``."""
    users = []
    for i in range(cfg.n_users):
        sleep_type = SleepType.IRREGULAR if rng.random() < cfg.irregular_share else None
        user, profile = generate_personalized_user(rng, sleep_type=sleep_type,
                                                   user_id=f"u{i + 1:05d}", created_at=created_at)
        if profiles is not None:
            profiles.assign(user.id, profile)
        users.append(user)
    return users


def users_frame(users: Sequence[VirtualUser], profiles: Optional[ProfileCache] = None) -> pd.DataFrame:
    rows = []
    for u in users:
        profile = profiles.get(u) if profiles is not None else classify(u)
        row = u.to_dict()
        row["bmi"] = u.bmi
        row["bmi_category"] = u.bmi_category
        row["sleep_type"] = profile.sleep_type.value
        row["activity_level"] = profile.activity_level.value
        row["weekend_multiplier"] = profile.activity_pattern.weekend_multiplier
        rows.append(row)
    return pd.DataFrame(rows)
