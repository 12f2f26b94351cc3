"""Daily step generation as a layered composition of activity events.

A day's target is split into three tiers: major activities (~85%),
minor indoor movements (~12%) and micro fidgets (~3%). One rare nocturnal
bathroom trip may fall inside the sleep window; everything else is placed
between wake-up and the next night's bed time. The mandatory evening activity
absorbs whatever the other events leave of the target, so the emitted
increments always sum to it exactly.
"""
from __future__ import annotations
import dataclasses
import datetime as dt
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .archetypes import ACTIVITY_ARCHETYPES, SLEEP_ARCHETYPES
from .compliance import clamp_quality_factor, clamp_steps_total, hourly_totals
from .config import GeneratorConfig
from .models import (
    ActivityType,
    DailyStepDistribution,
    HourlySteps,
    Issue,
    PersonalizedProfile,
    Severity,
    SleepData,
    SleepStageType,
    SleepType,
    StepIncrement,
    StepsData,
    VirtualUser,
)
from .seed import SeededRandom, seed_rng
from .utils import at_hours, hours_since_midnight, is_weekend, midnight, split_integer

logger = logging.getLogger(__name__)

STEPS_STREAM = "steps"


@dataclass(frozen=True)
class EventKind:
    name: str
    duration_s: Tuple[int, int]
    steps: Tuple[int, int]
    activity_type: ActivityType


MAJOR_KINDS: Dict[str, EventKind] = {k.name: k for k in [
    EventKind("morning_exercise", (1800, 3600), (1500, 4000), ActivityType.RUNNING),
    EventKind("commute", (600, 1800), (300, 1500), ActivityType.WALKING),
    EventKind("lunch_walk", (300, 900), (200, 800), ActivityType.WALKING),
    EventKind("evening_walk", (1200, 3600), (1000, 4000), ActivityType.WALKING),
    EventKind("shopping", (1800, 5400), (2000, 6000), ActivityType.WALKING),
    EventKind("gym", (2400, 5400), (500, 2000), ActivityType.RUNNING),
    EventKind("sports", (1800, 7200), (3000, 10000), ActivityType.RUNNING),
]}

EVENING_KINDS = ("evening_walk", "shopping", "gym", "sports")
EVENING_BASE_WEIGHTS = (0.3, 0.2, 0.2, 0.3)

MINOR_KINDS: Sequence[EventKind] = (
    EventKind("bathroom", (60, 180), (20, 80), ActivityType.IDLE),
    EventKind("water", (30, 120), (30, 120), ActivityType.IDLE),
    EventKind("room_to_room", (20, 60), (10, 40), ActivityType.IDLE),
    EventKind("short_walk", (60, 300), (50, 300), ActivityType.WALKING),
    EventKind("stairs", (30, 120), (40, 150), ActivityType.STAIRS),
)
MINOR_WEIGHTS = (0.3, 0.2, 0.2, 0.2, 0.1)

NOCTURNAL_KIND = EventKind("nocturnal_bathroom", (60, 180), (20, 50), ActivityType.IDLE)

# optional majors may take at most this share of the major budget
OPTIONAL_MAJOR_CAP = 0.7
# major increments average this many steps
STEPS_PER_INCREMENT = 200
# brisk walking cadence bounds how short a long activity can be
MAX_STEPS_PER_SECOND = 2.0


@dataclass(frozen=True)
class StepTarget:
    base: int
    raw: float
    quality_factor: Optional[float]
    final: int


@dataclass(frozen=True)
class ActivityEvent:
    kind: str
    tier: str  # major / minor / micro / nocturnal
    start: dt.datetime
    duration_s: int
    steps: int
    activity_type: ActivityType

    @property
    def end(self) -> dt.datetime:
        return self.start + dt.timedelta(seconds=self.duration_s)


@dataclass(frozen=True)
class StepOutcome:
    target: StepTarget
    events: Tuple[ActivityEvent, ...]
    distribution: DailyStepDistribution
    issues: Tuple[Issue, ...] = ()


# ---- target ----

def quality_factor(prev_sleep: SleepData, cfg: GeneratorConfig) -> float:
    """Smooth score of last night's sleep, clamped into the configured range.

    Peaks around 7.75h of sleep; awake fragments and a late wake-up pull it down.
    """
    hours = prev_sleep.total_sleep_hours
    duration_score = math.exp(-((hours - 7.75) / 1.75) ** 2)
    wake_hour = hours_since_midnight(prev_sleep.wake_time, prev_sleep.date)
    raw = (0.75 + 0.4 * duration_score
           - 0.04 * prev_sleep.awake_fragments
           - 0.03 * max(0.0, wake_hour - 9.0))
    return clamp_quality_factor(raw, cfg)

def compose_step_target(base: int, weekend_multiplier: float, quality: Optional[float],
                        weekend: bool, cfg: GeneratorConfig) -> StepTarget:
    raw = float(base)
    if weekend:
        raw *= weekend_multiplier
    if quality is not None:
        raw *= quality
    # clamp last, after every multiplier
    return StepTarget(int(base), raw, quality, clamp_steps_total(raw, cfg))


# ---- helpers ----

def _conflicts(start: dt.datetime, duration_s: int, other: ActivityEvent, buffer_s: int) -> bool:
    buf = dt.timedelta(seconds=buffer_s)
    end = start + dt.timedelta(seconds=duration_s)
    return start < other.end + buf and other.start < end + buf

def _increments_for(event: ActivityEvent, rng: SeededRandom) -> List[StepIncrement]:
    if event.steps <= 0:
        return []
    if event.tier != "major":
        return [StepIncrement(event.start, event.steps, event.activity_type)]
    count = max(3, event.steps // STEPS_PER_INCREMENT)
    count = max(1, min(count, event.duration_s // 20))
    # +-25% around the mean increment
    weights = [rng.next_double(0.75, 1.25) for _ in range(count)]
    parts = split_integer(event.steps, weights)
    return [
        StepIncrement(event.start + dt.timedelta(seconds=int(k * event.duration_s / count)), p, event.activity_type)
        for k, p in enumerate(parts) if p > 0
    ]

def build_distribution(day: dt.date, increments: Sequence[StepIncrement],
                       is_partial: bool = False) -> DailyStepDistribution:
    ordered = tuple(sorted(increments, key=lambda i: i.timestamp))
    return DailyStepDistribution(
        date=day,
        total_steps=int(sum(i.steps for i in ordered)),
        hourly=hourly_totals(ordered),
        increments=ordered,
        is_partial=is_partial,
    )

def to_steps_data(dist: DailyStepDistribution) -> StepsData:
    base = midnight(dist.date)
    hourly = tuple(
        HourlySteps(hour, steps, base + dt.timedelta(hours=hour), base + dt.timedelta(hours=hour + 1))
        for hour, steps in dist.hourly if steps > 0
    )
    return StepsData(dist.date, hourly, dist.is_partial)

def truncate_at(dist: DailyStepDistribution, now: dt.datetime) -> DailyStepDistribution:
    """Partial view of a day containing only increments at or before ``now``."""
    return build_distribution(dist.date, [i for i in dist.increments if i.timestamp <= now], is_partial=True)


class ActivityEventGenerator:
    def __init__(self, cfg: Optional[GeneratorConfig] = None):
        self.cfg = cfg or GeneratorConfig()

    def step_target(self, profile: PersonalizedProfile, day: dt.date, prev_sleep: Optional[SleepData],
                    rng: SeededRandom) -> StepTarget:
        lo, hi = ACTIVITY_ARCHETYPES[profile.activity_level].step_range
        base = rng.next_int(lo, hi)
        quality = quality_factor(prev_sleep, self.cfg) if prev_sleep is not None else None
        return compose_step_target(base, profile.activity_pattern.weekend_multiplier, quality,
                                   is_weekend(day), self.cfg)

    def planned_total(self, user: VirtualUser, profile: PersonalizedProfile, day: dt.date) -> int:
        """The day's clamped step target before the sleep-quality factor.

        Replays only the first draw of the day's steps stream, so it depends on
        ``(user, day)`` alone and can feed the following night without recursion.
        """
        return self.step_target(profile, day, None, seed_rng(user.id, day, STEPS_STREAM)).final

    def waking_window(self, profile: PersonalizedProfile, day: dt.date, sleep: Optional[SleepData],
                      next_sleep: Optional[SleepData]) -> Tuple[dt.datetime, dt.datetime]:
        """[first minute after wake-up, next bed time or midnight)."""
        arch = SLEEP_ARCHETYPES[profile.sleep_type]
        weekend = is_weekend(day)
        day_end = midnight(day + dt.timedelta(days=1))
        wake = sleep.wake_time if sleep is not None else at_hours(day, arch.window(weekend)[1])
        if next_sleep is not None:
            bed = next_sleep.bed_time
        else:
            bed = at_hours(day + dt.timedelta(days=1), arch.window(is_weekend(day + dt.timedelta(days=1)))[0])
        start = max(wake, midnight(day)) + dt.timedelta(seconds=60)
        end = min(bed, day_end)
        if end <= start:
            # degenerate timing; keep at least an hour of waking time
            end = min(day_end, start + dt.timedelta(hours=1))
        return start, end

    def generate(self, user: VirtualUser, profile: PersonalizedProfile, day: dt.date,
                 sleep: Optional[SleepData] = None, next_sleep: Optional[SleepData] = None,
                 rng: Optional[SeededRandom] = None) -> StepOutcome:
        cfg = self.cfg
        rng = rng or seed_rng(user.id, day, STEPS_STREAM)
        target = self.step_target(profile, day, sleep, rng)
        win_start, win_end = self.waking_window(profile, day, sleep, next_sleep)

        major_budget = int(round(target.final * cfg.major_share))
        minor_budget = int(round(target.final * cfg.minor_share))
        micro_budget = max(0, target.final - major_budget - minor_budget)

        nocturnal = self._nocturnal(rng, day, sleep, target.final)
        optional, evening = self._majors(rng, profile, day, win_start, win_end, major_budget, target.final)
        majors = optional + [evening]
        minor_steps = max(0, minor_budget - (nocturnal.steps if nocturnal else 0))
        minors = self._minors(rng, win_start, win_end, majors, minor_steps)
        micros = self._micros(rng, win_start, win_end, majors, micro_budget)

        # evening activity absorbs the remainder
        used = sum(e.steps for e in optional + minors + micros) + (nocturnal.steps if nocturnal else 0)
        evening = dataclasses.replace(evening, steps=target.final - used)

        events = sorted(optional + [evening] + minors + micros + ([nocturnal] if nocturnal else []),
                        key=lambda e: e.start)
        increments: List[StepIncrement] = []
        for ev in events:
            increments.extend(_increments_for(ev, rng))
        dist = build_distribution(day, increments)

        issues: List[Issue] = []
        if dist.total_steps != target.final:
            msg = f"emitted {dist.total_steps} steps for target {target.final}"
            logger.warning(f"{user.id} {day}: {msg}")
            issues.append(Issue("steps_target_mismatch", Severity.WARNING, msg, day))
        logger.debug(f"{user.id} {day}: target={target.final} raw={target.raw:.1f} "
                     f"events={len(events)} increments={len(dist.increments)}")
        return StepOutcome(target, tuple(events), dist, tuple(issues))

    # ---- tiers ----

    def _fit(self, preferred: dt.datetime, duration_s: int, win_start: dt.datetime,
             win_end: dt.datetime) -> Tuple[dt.datetime, int]:
        window_s = int((win_end - win_start).total_seconds())
        duration_s = max(1, min(duration_s, window_s - 1))
        latest = win_end - dt.timedelta(seconds=duration_s)
        start = min(max(preferred, win_start), latest)
        return start.replace(microsecond=0), duration_s

    def _majors(self, rng: SeededRandom, profile: PersonalizedProfile, day: dt.date,
                win_start: dt.datetime, win_end: dt.datetime, budget: int,
                target: int) -> Tuple[List[ActivityEvent], ActivityEvent]:
        cfg = self.cfg
        pattern = profile.activity_pattern
        intensity = ACTIVITY_ARCHETYPES[profile.activity_level].intensity_multiplier
        workday = not is_weekend(day)
        wake_h = hours_since_midnight(win_start, day)

        planned: List[Tuple[EventKind, float]] = []
        if profile.sleep_type is not SleepType.NIGHT_OWL and rng.next_bool(min(0.9, 0.4 * pattern.morning.weight)):
            planned.append((MAJOR_KINDS["morning_exercise"], wake_h + rng.next_double(0.5, 1.5)))
        if workday and rng.next_bool(0.8):
            planned.append((MAJOR_KINDS["commute"], max(wake_h + 1.0, rng.next_double(7.0, 9.0))))
        if rng.next_bool(min(0.9, 0.6 * pattern.workday.weight)):
            planned.append((MAJOR_KINDS["lunch_walk"], 12.0 + rng.next_double(0.0, 1.0)))

        optional: List[ActivityEvent] = []
        draws = [rng.next_int(*kind.steps) for kind, _ in planned]
        cap = int(budget * OPTIONAL_MAJOR_CAP)
        if sum(draws) > cap:
            draws = split_integer(cap, draws)
        for (kind, hour), steps in sorted(zip(planned, draws), key=lambda p: p[0][1]):
            duration = rng.next_int(*kind.duration_s)
            preferred = at_hours(day, hour)
            if optional:
                preferred = max(preferred, optional[-1].end + dt.timedelta(seconds=cfg.collision_buffer_seconds))
            if preferred + dt.timedelta(seconds=duration) > win_end or steps <= 0:
                continue
            start, duration = self._fit(preferred, duration, win_start, win_end)
            optional.append(ActivityEvent(kind.name, "major", start, duration, steps, kind.activity_type))

        # mandatory evening activity; gym/sports favoured by more active archetypes
        weights = [w * (intensity if name in ("gym", "sports") else 1.0) * (pattern.evening.weight if name == "sports" else 1.0)
                   for name, w in zip(EVENING_KINDS, EVENING_BASE_WEIGHTS)]
        kind = MAJOR_KINDS[rng.choice_weighted(EVENING_KINDS, weights)]
        bed_h = hours_since_midnight(win_end, day)
        latest_h = max(17.0, min(bed_h - 1.0, 20.0))
        hour = rng.next_double(17.0, latest_h)
        # the evening event may end up carrying most of the day
        expected_steps = max(0, target - sum(e.steps for e in optional))
        duration = max(rng.next_int(*kind.duration_s), int(expected_steps / MAX_STEPS_PER_SECOND))
        preferred = at_hours(day, hour)
        if optional:
            preferred = max(preferred, optional[-1].end + dt.timedelta(seconds=cfg.collision_buffer_seconds))
        start, duration = self._fit(preferred, duration, win_start, win_end)
        evening = ActivityEvent(kind.name, "major", start, duration, 0, kind.activity_type)
        return optional, evening

    def _minors(self, rng: SeededRandom, win_start: dt.datetime, win_end: dt.datetime,
                majors: Sequence[ActivityEvent], budget: int) -> List[ActivityEvent]:
        cfg = self.cfg
        window_s = int((win_end - win_start).total_seconds())
        placed: List[ActivityEvent] = []
        draws: List[int] = []
        dropped = 0
        for _ in range(rng.next_int(cfg.min_minor_events, cfg.max_minor_events)):
            kind = rng.choice_weighted(MINOR_KINDS, MINOR_WEIGHTS)
            duration = rng.next_int(*kind.duration_s)
            drawn = rng.next_int(*kind.steps)
            if window_s - duration <= 0:
                dropped += 1
                continue
            for _attempt in range(cfg.placement_attempts):
                start = win_start + dt.timedelta(seconds=rng.next_int(0, window_s - duration - 1))
                if not any(_conflicts(start, duration, ev, cfg.collision_buffer_seconds)
                           for ev in list(majors) + placed):
                    placed.append(ActivityEvent(kind.name, "minor", start, duration, 0, kind.activity_type))
                    draws.append(drawn)
                    break
            else:
                dropped += 1
        if dropped:
            logger.debug(f"{win_start.date()}: dropped {dropped} minor movements with no free slot")
        steps = split_integer(budget, draws) if placed else []
        return [dataclasses.replace(ev, steps=s) for ev, s in zip(placed, steps) if s > 0]

    def _micros(self, rng: SeededRandom, win_start: dt.datetime, win_end: dt.datetime,
                majors: Sequence[ActivityEvent], budget: int) -> List[ActivityEvent]:
        candidates: List[Tuple[dt.datetime, int]] = []
        for _ in range(rng.next_int(3, 8)):
            ts = win_start + dt.timedelta(seconds=rng.next_int(0, 420))
            candidates.append((ts, rng.next_int(1, 15)))
        for ev in majors:
            for _ in range(rng.next_int(1, 3)):
                if rng.next_bool(0.5):
                    ts = ev.start - dt.timedelta(seconds=rng.next_int(60, 180))
                else:
                    ts = ev.end + dt.timedelta(seconds=rng.next_int(0, 180))
                candidates.append((ts, rng.next_int(1, 10)))

        kept = [(ts, s) for ts, s in candidates if win_start <= ts < win_end]
        steps = [s for _, s in kept]
        if sum(steps) > budget:
            steps = split_integer(budget, steps)
        return [ActivityEvent("fidget", "micro", ts, 1, s, ActivityType.IDLE)
                for (ts, _), s in zip(kept, steps) if s > 0]

    def _nocturnal(self, rng: SeededRandom, day: dt.date, sleep: Optional[SleepData],
                   target: int) -> Optional[ActivityEvent]:
        """At most one bathroom trip inside the in-day part of the sleep window."""
        cfg = self.cfg
        if sleep is None or not rng.next_bool(cfg.nocturnal_event_prob):
            return None
        steps = min(rng.next_int(*NOCTURNAL_KIND.steps), int(target * cfg.sleep_share_cap))
        if steps < NOCTURNAL_KIND.steps[0]:
            return None
        span_start = max(sleep.bed_time, midnight(day))
        span_end = sleep.wake_time
        if span_end <= span_start:
            return None
        awake = [s for s in sleep.stages
                 if s.stage is SleepStageType.AWAKE and s.start_time >= span_start and s.end_time <= span_end]
        if awake:
            stage = awake[rng.next_int(0, len(awake) - 1)]
            ts = stage.start_time + dt.timedelta(seconds=rng.next_int(0, max(0, int(stage.duration_seconds) - 1)))
        else:
            span = (span_end - span_start).total_seconds()
            ts = span_start + dt.timedelta(seconds=int(span * rng.next_double(0.3, 0.7)))
        return ActivityEvent(NOCTURNAL_KIND.name, "nocturnal", ts.replace(microsecond=0),
                             rng.next_int(*NOCTURNAL_KIND.duration_s), steps, NOCTURNAL_KIND.activity_type)


def generate_steps(user: VirtualUser, profile: PersonalizedProfile, day: dt.date,
                   sleep: Optional[SleepData] = None, next_sleep: Optional[SleepData] = None,
                   cfg: Optional[GeneratorConfig] = None) -> DailyStepDistribution:
    return ActivityEventGenerator(cfg).generate(user, profile, day, sleep, next_sleep).distribution
