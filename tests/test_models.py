"""Tests for value types and their snapshot encoding."""
import dataclasses
import datetime as dt
import json

import pytest

from synthhealth_gen.history import generate_range
from synthhealth_gen.io import dumps_snapshot, series_snapshot, snapshot_records
from synthhealth_gen.models import (
    DailyStepDistribution,
    Issue,
    Severity,
    SleepData,
    SleepStage,
    SleepStageType,
    VirtualUser,
)


class TestImmutability:
    """Values are frozen once built"""

    def test_sleep_data_frozen(self):
        bed = dt.datetime(2024, 3, 3, 23, 0)
        night = SleepData(dt.date(2024, 3, 4), bed, bed + dt.timedelta(hours=8), ())
        with pytest.raises(dataclasses.FrozenInstanceError):
            night.bed_time = bed

    def test_distribution_hashable_and_consistent(self, user, cfg):
        dist = generate_range(user, 1, cfg=cfg, today=dt.date(2024, 3, 15)).distributions[0]
        assert hash(dist) == hash(DailyStepDistribution.from_dict(dist.to_dict()))
        assert sum(s for _, s in dist.hourly) == dist.total_steps
        assert [h for h, _ in dist.hourly] == sorted(dist.hourly_map)
        with pytest.raises(TypeError):
            dist.hourly_map[12] = 5000
        assert sum(dist.hourly_map.values()) == dist.total_steps

    def test_derived_sleep_hours(self):
        bed = dt.datetime(2024, 3, 3, 23, 0)
        stages = (
            SleepStage(SleepStageType.LIGHT, bed, bed + dt.timedelta(hours=4)),
            SleepStage(SleepStageType.AWAKE, bed + dt.timedelta(hours=4), bed + dt.timedelta(hours=4, minutes=30)),
            SleepStage(SleepStageType.DEEP, bed + dt.timedelta(hours=4, minutes=30), bed + dt.timedelta(hours=8)),
        )
        night = SleepData(dt.date(2024, 3, 4), bed, bed + dt.timedelta(hours=8), stages)
        assert night.in_bed_hours == pytest.approx(8.0)
        assert night.total_sleep_hours == pytest.approx(7.5)
        assert night.awake_fragments == 1
        assert night.stage_at(bed + dt.timedelta(hours=4, minutes=10)).stage is SleepStageType.AWAKE


class TestUser:
    """VirtualUser helpers"""

    def test_bmi(self, user):
        assert user.bmi == pytest.approx(22.4, abs=0.05)
        assert user.bmi_category == "normal"

    def test_round_trip(self, user):
        assert VirtualUser.from_dict(json.loads(json.dumps(user.to_dict()))) == user


class TestSnapshotEncoding:
    """ISO-8601, sorted keys, lossless round trip"""

    def test_series_round_trip(self, user, cfg):
        series = generate_range(user, 3, cfg=cfg, today=dt.date(2024, 3, 15))
        text = dumps_snapshot(series_snapshot(series))
        sleep, steps = snapshot_records(json.loads(text))
        assert tuple(sleep) == series.sleep
        assert tuple(steps) == series.steps
        # stable encoding
        assert dumps_snapshot(json.loads(text)) == text

    def test_timestamps_are_iso(self, user, cfg):
        series = generate_range(user, 1, cfg=cfg, today=dt.date(2024, 3, 15))
        payload = series_snapshot(series)
        bed = payload["sleep"][0]["bed_time"]
        assert dt.datetime.fromisoformat(bed) == series.sleep[0].bed_time
        assert payload["steps"][0]["date"] == "2024-03-14"

    def test_distribution_round_trip(self, user, cfg):
        series = generate_range(user, 1, cfg=cfg, today=dt.date(2024, 3, 15))
        dist = series.distributions[0]
        again = DailyStepDistribution.from_dict(json.loads(json.dumps(dist.to_dict(), sort_keys=True)))
        assert again == dist

    def test_issue_round_trip(self):
        issue = Issue("steps_redistributed", Severity.WARNING, "moved", dt.date(2024, 3, 4))
        assert Issue.from_dict(issue.to_dict()) == issue
        assert Issue.from_dict(Issue("x", Severity.INFO, "y").to_dict()).date is None
