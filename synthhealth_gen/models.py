"""Immutable value types produced and consumed by the generators.

Every type round-trips through ``to_dict``/``from_dict`` using ISO-8601
timestamps and plain JSON values.
"""
from __future__ import annotations
import datetime as dt
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class SleepType(str, Enum):
    NIGHT_OWL = "night_owl"
    EARLY_BIRD = "early_bird"
    IRREGULAR = "irregular"
    NORMAL = "normal"


class ActivityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class ActivityIntensity(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def weight(self) -> float:
        return {"low": 0.5, "normal": 1.0, "high": 1.5, "very_high": 2.0}[self.value]


class SleepStageType(str, Enum):
    AWAKE = "awake"
    LIGHT = "light"
    DEEP = "deep"
    REM = "rem"


class ActivityType(str, Enum):
    WALKING = "walking"
    RUNNING = "running"
    STAIRS = "stairs"
    IDLE = "idle"


class DataMode(str, Enum):
    SIMPLE = "simple"       # phone-only: light sleep split by awake fragments
    WEARABLE = "wearable"   # light/deep/REM cycles


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def _ts(value: dt.datetime) -> str:
    return value.isoformat(timespec="seconds")

def _parse_ts(value: str) -> dt.datetime:
    return dt.datetime.fromisoformat(value)

def _parse_day(value: str) -> dt.date:
    return dt.date.fromisoformat(value)


@dataclass(frozen=True)
class VirtualUser:
    id: str
    age: int
    gender: Gender
    height_cm: float
    weight_kg: float
    sleep_baseline: float
    steps_baseline: int
    created_at: dt.datetime
    device_model: str = ""
    device_serial_number: str = ""
    device_uuid: str = ""

    @property
    def bmi(self) -> float:
        h = self.height_cm / 100.0
        return round(self.weight_kg / (h * h), 1)

    @property
    def bmi_category(self) -> str:
        b = self.bmi
        if b < 18.5:
            return "underweight"
        if b < 25.0:
            return "normal"
        if b < 30.0:
            return "overweight"
        return "obese"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "age": self.age,
            "gender": self.gender.value,
            "height_cm": self.height_cm,
            "weight_kg": self.weight_kg,
            "sleep_baseline": self.sleep_baseline,
            "steps_baseline": self.steps_baseline,
            "created_at": _ts(self.created_at),
            "device_model": self.device_model,
            "device_serial_number": self.device_serial_number,
            "device_uuid": self.device_uuid,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "VirtualUser":
        return VirtualUser(
            id=d["id"],
            age=int(d["age"]),
            gender=Gender(d["gender"]),
            height_cm=float(d["height_cm"]),
            weight_kg=float(d["weight_kg"]),
            sleep_baseline=float(d["sleep_baseline"]),
            steps_baseline=int(d["steps_baseline"]),
            created_at=_parse_ts(d["created_at"]),
            device_model=d.get("device_model", ""),
            device_serial_number=d.get("device_serial_number", ""),
            device_uuid=d.get("device_uuid", ""),
        )


@dataclass(frozen=True)
class DailyActivityPattern:
    morning: ActivityIntensity
    workday: ActivityIntensity
    evening: ActivityIntensity
    weekend_multiplier: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "morning": self.morning.value,
            "workday": self.workday.value,
            "evening": self.evening.value,
            "weekend_multiplier": self.weekend_multiplier,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "DailyActivityPattern":
        return DailyActivityPattern(
            morning=ActivityIntensity(d["morning"]),
            workday=ActivityIntensity(d["workday"]),
            evening=ActivityIntensity(d["evening"]),
            weekend_multiplier=float(d["weekend_multiplier"]),
        )


@dataclass(frozen=True)
class PersonalizedProfile:
    sleep_type: SleepType
    activity_level: ActivityLevel
    activity_pattern: DailyActivityPattern

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sleep_type": self.sleep_type.value,
            "activity_level": self.activity_level.value,
            "activity_pattern": self.activity_pattern.to_dict(),
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "PersonalizedProfile":
        return PersonalizedProfile(
            sleep_type=SleepType(d["sleep_type"]),
            activity_level=ActivityLevel(d["activity_level"]),
            activity_pattern=DailyActivityPattern.from_dict(d["activity_pattern"]),
        )


@dataclass(frozen=True)
class SleepStage:
    stage: SleepStageType
    start_time: dt.datetime
    end_time: dt.datetime

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.stage.value, "start_time": _ts(self.start_time), "end_time": _ts(self.end_time)}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "SleepStage":
        return SleepStage(SleepStageType(d["stage"]), _parse_ts(d["start_time"]), _parse_ts(d["end_time"]))


@dataclass(frozen=True)
class SleepData:
    """One sleep session, dated by the morning it ends on."""
    date: dt.date
    bed_time: dt.datetime
    wake_time: dt.datetime
    stages: Tuple[SleepStage, ...] = ()

    @property
    def in_bed_hours(self) -> float:
        return (self.wake_time - self.bed_time).total_seconds() / 3600.0

    @property
    def total_sleep_hours(self) -> float:
        if not self.stages:
            return self.in_bed_hours
        asleep = sum(s.duration_seconds for s in self.stages if s.stage is not SleepStageType.AWAKE)
        return asleep / 3600.0

    @property
    def awake_fragments(self) -> int:
        return sum(1 for s in self.stages if s.stage is SleepStageType.AWAKE)

    def contains(self, ts: dt.datetime) -> bool:
        return self.bed_time <= ts <= self.wake_time

    def stage_at(self, ts: dt.datetime) -> Optional[SleepStage]:
        for s in self.stages:
            if s.start_time <= ts < s.end_time:
                return s
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "bed_time": _ts(self.bed_time),
            "wake_time": _ts(self.wake_time),
            "stages": [s.to_dict() for s in self.stages],
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "SleepData":
        return SleepData(
            date=_parse_day(d["date"]),
            bed_time=_parse_ts(d["bed_time"]),
            wake_time=_parse_ts(d["wake_time"]),
            stages=tuple(SleepStage.from_dict(s) for s in d.get("stages", [])),
        )


@dataclass(frozen=True)
class StepIncrement:
    timestamp: dt.datetime
    steps: int
    activity_type: ActivityType

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": _ts(self.timestamp), "steps": self.steps, "activity_type": self.activity_type.value}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "StepIncrement":
        return StepIncrement(_parse_ts(d["timestamp"]), int(d["steps"]), ActivityType(d["activity_type"]))


@dataclass(frozen=True)
class HourlySteps:
    hour: int
    steps: int
    start_time: dt.datetime
    end_time: dt.datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"hour": self.hour, "steps": self.steps,
                "start_time": _ts(self.start_time), "end_time": _ts(self.end_time)}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "HourlySteps":
        return HourlySteps(int(d["hour"]), int(d["steps"]), _parse_ts(d["start_time"]), _parse_ts(d["end_time"]))


@dataclass(frozen=True)
class StepsData:
    date: dt.date
    hourly_steps: Tuple[HourlySteps, ...] = ()
    is_partial: bool = False

    @property
    def total_steps(self) -> int:
        return int(sum(h.steps for h in self.hourly_steps))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "hourly_steps": [h.to_dict() for h in self.hourly_steps],
            "is_partial": self.is_partial,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "StepsData":
        return StepsData(
            date=_parse_day(d["date"]),
            hourly_steps=tuple(HourlySteps.from_dict(h) for h in d.get("hourly_steps", [])),
            is_partial=bool(d.get("is_partial", False)),
        )


@dataclass(frozen=True)
class DailyStepDistribution:
    date: dt.date
    total_steps: int
    hourly: Tuple[Tuple[int, int], ...] = ()  # (hour, steps), ascending hour
    increments: Tuple[StepIncrement, ...] = ()
    is_partial: bool = False

    @property
    def hourly_map(self) -> Mapping[int, int]:
        return MappingProxyType(dict(self.hourly))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "total_steps": self.total_steps,
            # JSON keys are strings; zero-padded so sorted keys keep hour order
            "hourly": {f"{h:02d}": s for h, s in self.hourly},
            "increments": [i.to_dict() for i in self.increments],
            "is_partial": self.is_partial,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "DailyStepDistribution":
        return DailyStepDistribution(
            date=_parse_day(d["date"]),
            total_steps=int(d["total_steps"]),
            hourly=tuple(sorted((int(h), int(s)) for h, s in d.get("hourly", {}).items())),
            increments=tuple(StepIncrement.from_dict(i) for i in d.get("increments", [])),
            is_partial=bool(d.get("is_partial", False)),
        )


@dataclass(frozen=True)
class Issue:
    """Non-fatal diagnostic returned alongside generated data."""
    code: str
    severity: Severity
    message: str
    date: Optional[dt.date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "message": self.message,
            "date": self.date.isoformat() if self.date else None,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Issue":
        day = d.get("date")
        return Issue(d["code"], Severity(d["severity"]), d["message"], _parse_day(day) if day else None)
