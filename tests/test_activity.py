"""Tests for layered step generation."""
import datetime as dt

import pytest

from synthhealth_gen.activity import (
    EVENING_KINDS,
    ActivityEventGenerator,
    _conflicts,
    compose_step_target,
    quality_factor,
    to_steps_data,
    truncate_at,
)
from synthhealth_gen.archetypes import build_profile
from synthhealth_gen.models import (
    ActivityIntensity,
    ActivityLevel,
    DailyActivityPattern,
    PersonalizedProfile,
    SleepData,
    SleepStage,
    SleepStageType,
    SleepType,
)
from synthhealth_gen.sleep import generate_sleep


def _single_stage_night(day, bed_hour, hours):
    bed = dt.datetime.combine(day, dt.time()) + dt.timedelta(hours=bed_hour)
    wake = bed + dt.timedelta(hours=hours)
    return SleepData(day, bed, wake, (SleepStage(SleepStageType.LIGHT, bed, wake),))


def _day(gen, user, profile, day, cfg):
    sleep = generate_sleep(user, profile, day, cfg)
    nxt = generate_sleep(user, profile, day + dt.timedelta(days=1), cfg)
    return sleep, nxt, gen.generate(user, profile, day, sleep=sleep, next_sleep=nxt)


class TestStepTarget:
    """Target composition and the final clamp"""

    def test_extreme_low_weekend_multiplier(self, cfg):
        target = compose_step_target(1500, 0.01, None, True, cfg)
        assert target.raw == pytest.approx(15.0)
        assert target.final >= 800
        assert target.final == cfg.steps_floor

    def test_extreme_low_everything(self, cfg):
        target = compose_step_target(1500, 0.01, cfg.quality_factor_min, True, cfg)
        assert target.raw == pytest.approx(9.0)
        assert target.final == 800

    def test_ceiling(self, cfg):
        target = compose_step_target(18000, 1.6, cfg.quality_factor_max, True, cfg)
        assert target.final == 25000

    def test_weekday_ignores_weekend_multiplier(self, cfg):
        target = compose_step_target(6000, 0.01, None, False, cfg)
        assert target.raw == pytest.approx(6000.0)
        assert target.final == 6000


class TestQualityFactor:
    """Cross-day coupling from last night's sleep"""

    def test_good_night_beats_poor_night(self, cfg):
        day = dt.date(2024, 3, 4)
        good = quality_factor(_single_stage_night(day, -1.0, 8.0), cfg)
        poor = quality_factor(_single_stage_night(day, 6.5, 4.5), cfg)
        assert good > poor
        for q in (good, poor):
            assert cfg.quality_factor_min <= q <= cfg.quality_factor_max

    def test_clamped(self, cfg):
        day = dt.date(2024, 3, 4)
        # very long, very late night
        q = quality_factor(_single_stage_night(day, 10.0, 12.0), cfg)
        assert q == pytest.approx(cfg.quality_factor_min)

    def test_no_prior_night_uses_unmodified_range(self, user, normal_profile, cfg, monday):
        outcome = ActivityEventGenerator(cfg).generate(user, normal_profile, monday)
        assert outcome.target.quality_factor is None
        assert 4500 <= outcome.target.base <= 8500
        assert outcome.target.final == outcome.target.base


class TestDistribution:
    """Emitted increments"""

    @pytest.mark.parametrize("sleep_type", list(SleepType))
    @pytest.mark.parametrize("level", [ActivityLevel.LOW, ActivityLevel.VERY_HIGH])
    def test_totals_and_bounds(self, make_user, cfg, sleep_type, level):
        user = make_user(uid=f"act-{sleep_type.value}-{level.value}")
        profile = build_profile(sleep_type, level)
        gen = ActivityEventGenerator(cfg)
        start = dt.date(2024, 3, 4)
        for k in range(10):
            day = start + dt.timedelta(days=k)
            sleep, nxt, outcome = _day(gen, user, profile, day, cfg)
            dist = outcome.distribution
            assert dist.total_steps == sum(i.steps for i in dist.increments)
            assert dist.total_steps == outcome.target.final
            assert 800 <= dist.total_steps <= 25000
            assert sum(s for _, s in dist.hourly) == dist.total_steps
            assert all(i.timestamp.date() == day for i in dist.increments)
            assert all(i.steps > 0 for i in dist.increments)
            stamps = [i.timestamp for i in dist.increments]
            assert stamps == sorted(stamps)
            assert outcome.issues == ()

    def test_sleep_period_share(self, make_user, cfg):
        gen = ActivityEventGenerator(cfg)
        start = dt.date(2024, 3, 4)
        for sleep_type in SleepType:
            user = make_user(uid=f"share-{sleep_type.value}")
            profile = build_profile(sleep_type, ActivityLevel.MEDIUM)
            for k in range(20):
                day = start + dt.timedelta(days=k)
                sleep, nxt, outcome = _day(gen, user, profile, day, cfg)
                dist = outcome.distribution
                in_sleep = sum(i.steps for i in dist.increments if sleep.bed_time <= i.timestamp <= sleep.wake_time)
                assert in_sleep <= 0.02 * dist.total_steps
                assert all(i.timestamp < nxt.bed_time for i in dist.increments)

    def test_nocturnal_event_is_single_and_small(self, make_user, cfg):
        gen = ActivityEventGenerator(cfg)
        user = make_user(uid="nocturnal")
        profile = build_profile(SleepType.NORMAL, ActivityLevel.HIGH)
        start = dt.date(2024, 3, 4)
        for k in range(20):
            day = start + dt.timedelta(days=k)
            sleep, _, outcome = _day(gen, user, profile, day, cfg)
            nocturnal = [e for e in outcome.events if e.tier == "nocturnal"]
            assert len(nocturnal) <= 1
            for e in nocturnal:
                assert 20 <= e.steps <= 50
                assert sleep.contains(e.start)

    def test_extreme_weekend_multiplier_profile(self, user, cfg):
        pattern = DailyActivityPattern(ActivityIntensity.LOW, ActivityIntensity.NORMAL, ActivityIntensity.LOW, 0.01)
        profile = PersonalizedProfile(SleepType.NORMAL, ActivityLevel.LOW, pattern)
        saturday = dt.date(2024, 3, 9)
        sleep = generate_sleep(user, profile, saturday, cfg)
        outcome = ActivityEventGenerator(cfg).generate(user, profile, saturday, sleep=sleep)
        assert outcome.target.raw < 100
        assert outcome.distribution.total_steps >= 800

    def test_deterministic(self, user, normal_profile, cfg, monday):
        gen = ActivityEventGenerator(cfg)
        sleep = generate_sleep(user, normal_profile, monday, cfg)
        a = gen.generate(user, normal_profile, monday, sleep=sleep)
        b = gen.generate(user, normal_profile, monday, sleep=sleep)
        assert a.distribution == b.distribution
        assert a.events == b.events


class TestEventTiers:
    """Major / minor / micro composition rules"""

    def _run(self, make_user, cfg, sleep_type, days=21):
        gen = ActivityEventGenerator(cfg)
        user = make_user(uid=f"tiers-{sleep_type.value}")
        profile = build_profile(sleep_type, ActivityLevel.HIGH)
        start = dt.date(2024, 3, 4)
        for k in range(days):
            day = start + dt.timedelta(days=k)
            yield day, _day(gen, user, profile, day, cfg)

    def test_evening_activity_every_day(self, make_user, cfg):
        for day, (_, _, outcome) in self._run(make_user, cfg, SleepType.NORMAL):
            majors = [e for e in outcome.events if e.tier == "major"]
            assert 1 <= len(majors) <= 4
            assert sum(1 for e in majors if e.kind in EVENING_KINDS) == 1

    def test_night_owls_skip_morning_exercise(self, make_user, cfg):
        for day, (_, _, outcome) in self._run(make_user, cfg, SleepType.NIGHT_OWL):
            assert all(e.kind != "morning_exercise" for e in outcome.events)

    def test_no_commute_on_weekends(self, make_user, cfg):
        for day, (_, _, outcome) in self._run(make_user, cfg, SleepType.NORMAL):
            if day.weekday() >= 5:
                assert all(e.kind != "commute" for e in outcome.events)

    def test_minor_events_respect_buffer(self, make_user, cfg):
        for day, (_, _, outcome) in self._run(make_user, cfg, SleepType.EARLY_BIRD, days=10):
            majors = [e for e in outcome.events if e.tier == "major"]
            minors = [e for e in outcome.events if e.tier == "minor"]
            assert len(minors) <= cfg.max_minor_events
            for i, m in enumerate(minors):
                for other in majors + minors[:i] + minors[i + 1:]:
                    assert not _conflicts(m.start, m.duration_s, other, cfg.collision_buffer_seconds)

    def test_micro_fidgets_are_tiny(self, make_user, cfg):
        for day, (sleep, _, outcome) in self._run(make_user, cfg, SleepType.NORMAL, days=10):
            for e in outcome.events:
                if e.tier == "micro":
                    assert 1 <= e.steps <= 15
                    assert e.start > sleep.wake_time

    def test_major_share_dominates(self, make_user, cfg):
        for day, (_, _, outcome) in self._run(make_user, cfg, SleepType.NORMAL, days=10):
            major = sum(e.steps for e in outcome.events if e.tier == "major")
            assert major >= 0.8 * outcome.distribution.total_steps


class TestViews:
    """StepsData and partial-day views"""

    def test_steps_data_matches_distribution(self, user, normal_profile, cfg, monday):
        sleep = generate_sleep(user, normal_profile, monday, cfg)
        dist = ActivityEventGenerator(cfg).generate(user, normal_profile, monday, sleep=sleep).distribution
        steps = to_steps_data(dist)
        assert steps.total_steps == dist.total_steps
        assert all(0 <= h.hour <= 23 for h in steps.hourly_steps)
        assert all(h.end_time - h.start_time == dt.timedelta(hours=1) for h in steps.hourly_steps)
        assert not steps.is_partial

    def test_truncate_at(self, user, normal_profile, cfg, monday):
        sleep = generate_sleep(user, normal_profile, monday, cfg)
        dist = ActivityEventGenerator(cfg).generate(user, normal_profile, monday, sleep=sleep).distribution
        now = dt.datetime.combine(monday, dt.time(13, 0))
        partial = truncate_at(dist, now)
        assert partial.is_partial
        assert all(i.timestamp <= now for i in partial.increments)
        assert partial.total_steps == sum(i.steps for i in partial.increments)
        assert partial.total_steps <= dist.total_steps
