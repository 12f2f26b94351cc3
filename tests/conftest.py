import datetime as dt

import pytest

from synthhealth_gen.archetypes import build_profile
from synthhealth_gen.config import GeneratorConfig
from synthhealth_gen.models import ActivityLevel, Gender, SleepType, VirtualUser


@pytest.fixture
def cfg():
    return GeneratorConfig()


@pytest.fixture
def make_user():
    def _make(uid="u-test", sleep_baseline=7.5, steps_baseline=7000):
        return VirtualUser(
            id=uid,
            age=32,
            gender=Gender.FEMALE,
            height_cm=165.0,
            weight_kg=61.0,
            sleep_baseline=sleep_baseline,
            steps_baseline=steps_baseline,
            created_at=dt.datetime(2024, 1, 1, 9, 0),
            device_model="iPhone 14",
            device_serial_number="F2LABC12",
            device_uuid="00000000-0000-4000-8000-000000000000",
        )
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def normal_profile():
    return build_profile(SleepType.NORMAL, ActivityLevel.MEDIUM)


@pytest.fixture
def monday():
    return dt.date(2024, 3, 4)
