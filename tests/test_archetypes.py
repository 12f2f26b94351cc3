"""Tests for archetype classification and the profile cache."""
import threading

import pytest

from synthhealth_gen.archetypes import (
    ACTIVITY_ARCHETYPES,
    SLEEP_ARCHETYPES,
    ProfileCache,
    build_profile,
    classify,
)
from synthhealth_gen.models import ActivityLevel, SleepType


class TestClassify:
    """Threshold rules"""

    @pytest.mark.parametrize("hours,expected", [
        (9.2, SleepType.NIGHT_OWL),
        (8.5, SleepType.NIGHT_OWL),
        (8.49, SleepType.NORMAL),
        (7.0, SleepType.NORMAL),
        (6.51, SleepType.NORMAL),
        (6.5, SleepType.EARLY_BIRD),
        (5.0, SleepType.EARLY_BIRD),
    ])
    def test_sleep_thresholds(self, make_user, hours, expected):
        assert classify(make_user(sleep_baseline=hours)).sleep_type is expected

    @pytest.mark.parametrize("steps,expected", [
        (20000, ActivityLevel.VERY_HIGH),
        (15000, ActivityLevel.VERY_HIGH),
        (14999, ActivityLevel.HIGH),
        (10000, ActivityLevel.HIGH),
        (9999, ActivityLevel.MEDIUM),
        (5000, ActivityLevel.MEDIUM),
        (4999, ActivityLevel.LOW),
        (0, ActivityLevel.LOW),
    ])
    def test_steps_thresholds(self, make_user, steps, expected):
        assert classify(make_user(steps_baseline=steps)).activity_level is expected

    def test_never_irregular(self, make_user):
        for hours in [4.0, 6.0, 6.5, 7.0, 8.0, 8.5, 10.0]:
            assert classify(make_user(sleep_baseline=hours)).sleep_type is not SleepType.IRREGULAR

    def test_pattern_follows_level(self, make_user):
        profile = classify(make_user(steps_baseline=16000))
        assert profile.activity_pattern == ACTIVITY_ARCHETYPES[ActivityLevel.VERY_HIGH].pattern

    def test_pure(self, user):
        assert classify(user) == classify(user)


class TestArchetypeTables:
    """Archetype parameters"""

    def test_irregular_is_least_consistent(self):
        irregular = SLEEP_ARCHETYPES[SleepType.IRREGULAR].consistency
        others = [a.consistency for t, a in SLEEP_ARCHETYPES.items() if t is not SleepType.IRREGULAR]
        assert irregular < min(others)

    def test_step_ranges_ordered(self):
        levels = [ActivityLevel.LOW, ActivityLevel.MEDIUM, ActivityLevel.HIGH, ActivityLevel.VERY_HIGH]
        lows = [ACTIVITY_ARCHETYPES[l].step_range[0] for l in levels]
        mults = [ACTIVITY_ARCHETYPES[l].intensity_multiplier for l in levels]
        assert lows == sorted(lows)
        assert mults == sorted(mults)

    def test_window_uses_weekend_hours(self):
        owl = SLEEP_ARCHETYPES[SleepType.NIGHT_OWL]
        assert owl.window(True) == (2.0, 11.0)
        assert owl.window(False) == (1.0, 10.0)


class TestProfileCache:
    """Per-user profile caching"""

    def test_classifies_on_miss(self, user):
        cache = ProfileCache()
        assert cache.peek(user.id) is None
        assert cache.get(user) == classify(user)
        assert len(cache) == 1

    def test_explicit_assignment_wins(self, user):
        cache = ProfileCache()
        irregular = build_profile(SleepType.IRREGULAR, ActivityLevel.HIGH)
        cache.assign(user.id, irregular)
        assert cache.get(user).sleep_type is SleepType.IRREGULAR

    def test_concurrent_access(self, make_user):
        cache = ProfileCache()
        users = [make_user(uid=f"u{i}", steps_baseline=1000 * i) for i in range(20)]

        def work():
            for u in users:
                cache.get(u)

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache) == 20
        cache.clear()
        assert len(cache) == 0
