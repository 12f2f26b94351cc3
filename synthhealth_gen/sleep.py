"""Sleep session generation.

A session is dated by the morning it ends on: the record for day D starts the
evening before (or shortly after midnight) and ends on D. Generation is a small
state machine:

    CHOOSE_BED_TIME -> CHOOSE_WAKE_TIME -> SEGMENT_STAGES -> VALIDATE -> DONE

A failed validation re-enters SEGMENT_STAGES with fresh draws from the same
stream; once ``sleep_retry_budget`` is spent a single uninterrupted stage is
emitted instead.
"""
from __future__ import annotations
import datetime as dt
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from .archetypes import SLEEP_ARCHETYPES, SleepArchetype
from .config import GeneratorConfig
from .models import (
    DataMode,
    Issue,
    PersonalizedProfile,
    Severity,
    SleepData,
    SleepStage,
    SleepStageType,
    SleepType,
    VirtualUser,
)
from .seed import SeededRandom, seed_rng
from .utils import at_hours, clip, is_weekend, split_integer

logger = logging.getLogger(__name__)

SLEEP_STREAM = "sleep"
# bed time never drifts further than this from the archetype's base hour
MAX_BED_DRIFT_HOURS = 4.0
CYCLE_SECONDS = (85 * 60, 100 * 60)
EARLY_CYCLE_MIX = (0.4, 0.4, 0.2)   # light, deep, rem
LATE_CYCLE_MIX = (0.3, 0.2, 0.5)


class SleepState(Enum):
    CHOOSE_BED_TIME = "choose_bed_time"
    CHOOSE_WAKE_TIME = "choose_wake_time"
    SEGMENT_STAGES = "segment_stages"
    VALIDATE = "validate"
    DONE = "done"


@dataclass(frozen=True)
class SleepOutcome:
    sleep: SleepData
    attempts: int
    fell_back: bool
    issues: Tuple[Issue, ...] = ()


# ---- timing ----

def plan_timing(rng: SeededRandom, sleep_type: SleepType, day: dt.date,
                cfg: GeneratorConfig) -> Tuple[float, float]:
    """Draw (bed_hour, wake_hour) relative to midnight of ``day``."""
    arch = SLEEP_ARCHETYPES[sleep_type]
    base_bed, base_wake = arch.window(is_weekend(day))
    amp = (1.0 - arch.consistency) * cfg.max_timing_jitter_hours
    biorhythm = math.sin(day.day * math.pi / 15.0) * 0.5

    bed = base_bed + rng.next_double(-amp, amp) + biorhythm
    wake = base_wake + rng.next_double(-amp, amp) + biorhythm

    night_person = sleep_type is not SleepType.EARLY_BIRD
    # Friday night; the session ends on Saturday
    if day.weekday() == 5 and night_person:
        bed += rng.next_double(0.5, 1.5)
    if rng.next_bool((1.0 - arch.consistency) * cfg.late_night_scale) and night_person:
        bed += rng.next_double(1.0, 3.0)
        wake += rng.next_double(0.5, 1.5)
    if rng.next_bool(0.05):
        wake -= rng.next_double(1.0, 2.0)

    bed = float(clip(bed, base_bed - MAX_BED_DRIFT_HOURS, base_bed + MAX_BED_DRIFT_HOURS))
    return bed, wake

def duration_bounds(arch: SleepArchetype, cfg: GeneratorConfig) -> Tuple[float, float]:
    lo = max(arch.duration_range[0], cfg.min_sleep_hours)
    hi = min(arch.duration_range[1], cfg.max_sleep_hours)
    return lo, hi

def planned_hours(bed_hour: float, wake_hour: float, arch: SleepArchetype, cfg: GeneratorConfig) -> float:
    lo, hi = duration_bounds(arch, cfg)
    return float(clip(wake_hour - bed_hour, lo, hi))

def debt_adjustment(rng: SeededRandom, debt: float, weekend: bool) -> float:
    """Hours added to (or removed from) tonight's sleep given accumulated debt."""
    if debt > 1.0:
        recovery = min(debt * 0.3, 1.5)
        # catching up mostly happens on weekends
        return recovery * (rng.next_double(0.8, 1.2) if weekend else rng.next_double(0.2, 0.5))
    if debt < -1.0:
        return -0.1 * abs(debt)
    return 0.0

def activity_sleep_adjustment(prev_total: int, steps_baseline: int) -> float:
    """Hours added to tonight's sleep need from yesterday's steps, within [-0.5, 2.0].

    Well above the user's usual activity calls for recovery sleep; a very
    inactive day adds a little rest too.
    """
    baseline = max(int(steps_baseline), 1)
    relative = (prev_total - baseline) / float(baseline)
    hours = 0.0
    if relative > 0.5:
        hours = min(relative * 0.8, 1.5)
    elif relative > 0.2:
        hours = relative * 0.5
    elif relative < -0.3:
        hours = abs(relative) * 0.3

    if prev_total > 15000:
        hours += 0.2 + (prev_total - 15000) / 10000.0 * 0.5
    elif prev_total < 3000:
        hours += 0.3
    return float(clip(hours, -0.5, 2.0))

def sleep_debt_before(user: VirtualUser, profile: PersonalizedProfile, day: dt.date,
                      cfg: GeneratorConfig) -> float:
    """Accumulated (baseline - planned) hours over the trailing debt window.

    Only the pure timing draws of each earlier night are replayed, so the
    result depends on ``(user, day)`` alone and not on where a range starts.
    """
    arch = SLEEP_ARCHETYPES[profile.sleep_type]
    limit = cfg.sleep_debt_limit_hours
    debt = 0.0
    for back in range(cfg.sleep_debt_window_days, 0, -1):
        d = day - dt.timedelta(days=back)
        bed, wake = plan_timing(seed_rng(user.id, d, SLEEP_STREAM), profile.sleep_type, d, cfg)
        hours = planned_hours(bed, wake, arch, cfg)
        debt = float(clip(debt + (user.sleep_baseline - hours), -limit, limit))
    return debt


# ---- segmentation ----

# [SleepStageType, start_offset, end_offset]; ends are moved in place while merging
Piece = List[Any]

def _overlay(base: Sequence[Tuple[SleepStageType, int, int]], awake: Sequence[Tuple[int, int]],
             total: int) -> List[Piece]:
    bounds = {0, total}
    for _, s, e in base:
        bounds.update((s, e))
    for s, e in awake:
        bounds.update((min(max(s, 0), total), min(max(e, 0), total)))
    ordered = sorted(bounds)

    pieces: List[Piece] = []
    for a, b in zip(ordered, ordered[1:]):
        if any(s <= a < e for s, e in awake):
            kind = SleepStageType.AWAKE
        else:
            kind = next((k for k, s, e in base if s <= a < e), SleepStageType.LIGHT)
        if pieces and pieces[-1][0] is kind:
            pieces[-1][2] = b
        else:
            pieces.append([kind, a, b])
    return pieces

def _merge_same(pieces: List[Piece]) -> List[Piece]:
    merged: List[Piece] = []
    for p in pieces:
        if merged and merged[-1][0] is p[0]:
            merged[-1][2] = p[2]
        else:
            merged.append(list(p))
    return merged

def _fold_short(pieces: List[Piece], min_seconds: int) -> List[Piece]:
    """Fold pieces shorter than ``min_seconds`` into their predecessor (successor for the first)."""
    pieces = _merge_same(pieces)
    while len(pieces) > 1:
        idx = next((i for i, p in enumerate(pieces) if p[2] - p[1] < min_seconds), None)
        if idx is None:
            break
        short = pieces.pop(idx)
        if idx > 0:
            pieces[idx - 1][2] = short[2]
        else:
            pieces[0][1] = short[1]
        pieces = _merge_same(pieces)
    return pieces


def check_sleep_structure(sleep: SleepData, cfg: GeneratorConfig, mode: DataMode = DataMode.SIMPLE) -> List[str]:
    """Return human-readable structural problems; empty means the session is valid."""
    problems: List[str] = []
    stages = sleep.stages
    if sleep.wake_time <= sleep.bed_time:
        problems.append("wake time not after bed time")
    if not stages:
        problems.append("no stages")
        return problems
    if stages[0].start_time != sleep.bed_time:
        problems.append("first stage does not start at bed time")
    if stages[-1].end_time != sleep.wake_time:
        problems.append("last stage does not end at wake time")
    for prev, nxt in zip(stages, stages[1:]):
        if nxt.start_time < prev.end_time:
            problems.append(f"stages overlap at {nxt.start_time.isoformat()}")
        elif nxt.start_time > prev.end_time:
            problems.append(f"gap between stages at {prev.end_time.isoformat()}")
    for s in stages:
        if s.duration_seconds < cfg.min_stage_seconds:
            problems.append(f"{s.stage.value} stage shorter than {cfg.min_stage_seconds}s at {s.start_time.isoformat()}")
    max_stages = cfg.max_sleep_stages_wearable if mode is DataMode.WEARABLE else cfg.max_sleep_stages
    if len(stages) > max_stages:
        problems.append(f"{len(stages)} stages exceeds maximum {max_stages}")
    if sleep.awake_fragments > cfg.max_awake_fragments:
        problems.append(f"{sleep.awake_fragments} awake fragments exceeds maximum {cfg.max_awake_fragments}")
    hours = sleep.total_sleep_hours
    if not cfg.min_sleep_hours <= hours <= cfg.max_sleep_hours:
        problems.append(f"total sleep {hours:.2f}h outside [{cfg.min_sleep_hours}, {cfg.max_sleep_hours}]")
    return problems


class SleepSessionGenerator:
    def __init__(self, cfg: Optional[GeneratorConfig] = None, mode: DataMode = DataMode.SIMPLE):
        self.cfg = cfg or GeneratorConfig()
        self.mode = DataMode(mode)

    def generate(self, user: VirtualUser, profile: PersonalizedProfile, day: dt.date,
                 sleep_debt: float = 0.0, rng: Optional[SeededRandom] = None,
                 activity_hours: float = 0.0) -> SleepOutcome:
        """One night dated ``day``.

        ``activity_hours`` comes from ``activity_sleep_adjustment`` for the
        previous day's steps and is applied before the duration clamp.
        """
        cfg = self.cfg
        rng = rng or seed_rng(user.id, day, SLEEP_STREAM)
        arch = SLEEP_ARCHETYPES[profile.sleep_type]

        state = SleepState.CHOOSE_BED_TIME
        bed_hour = wake_hour = 0.0
        bed = wake = None
        stages: Tuple[SleepStage, ...] = ()
        attempts = 0
        fell_back = False
        issues: List[Issue] = []

        while state is not SleepState.DONE:
            if state is SleepState.CHOOSE_BED_TIME:
                bed_hour, wake_hour = plan_timing(rng, profile.sleep_type, day, cfg)
                bed = at_hours(day, bed_hour)
                state = SleepState.CHOOSE_WAKE_TIME

            elif state is SleepState.CHOOSE_WAKE_TIME:
                lo, hi = duration_bounds(arch, cfg)
                hours = wake_hour - bed_hour + debt_adjustment(rng, sleep_debt, is_weekend(day)) + activity_hours
                hours = float(clip(hours, lo, hi))
                wake = bed + dt.timedelta(seconds=int(round(hours * 3600.0)))
                state = SleepState.SEGMENT_STAGES

            elif state is SleepState.SEGMENT_STAGES:
                attempts += 1
                stages = self._segment(rng, arch, bed, wake)
                state = SleepState.VALIDATE

            elif state is SleepState.VALIDATE:
                problems = check_sleep_structure(SleepData(day, bed, wake, stages), cfg, self.mode)
                if not problems:
                    state = SleepState.DONE
                elif attempts < cfg.sleep_retry_budget:
                    logger.debug(f"{user.id} {day}: segmentation attempt {attempts} rejected: {problems[0]}")
                    state = SleepState.SEGMENT_STAGES
                else:
                    stages = (SleepStage(SleepStageType.LIGHT, bed, wake),)
                    fell_back = True
                    msg = f"segmentation failed after {attempts} attempts ({problems[0]}); emitted a single stage"
                    logger.warning(f"{user.id} {day}: {msg}")
                    issues.append(Issue("sleep_segmentation_fallback", Severity.WARNING, msg, day))
                    state = SleepState.DONE

        sleep = SleepData(day, bed, wake, stages)
        return SleepOutcome(sleep, attempts, fell_back, tuple(issues))

    # ---- stage segmentation ----

    def _segment(self, rng: SeededRandom, arch: SleepArchetype, bed: dt.datetime,
                 wake: dt.datetime) -> Tuple[SleepStage, ...]:
        total = int((wake - bed).total_seconds())
        if self.mode is DataMode.WEARABLE:
            base, n_cycles = self._cycles(rng, total)
        else:
            base, n_cycles = [(SleepStageType.LIGHT, 0, total)], 0
        awake = self._awake_fragments(rng, arch, total, n_cycles)
        pieces = _fold_short(_overlay(base, awake, total), self.cfg.min_stage_seconds)
        return tuple(
            SleepStage(kind, bed + dt.timedelta(seconds=s), bed + dt.timedelta(seconds=e))
            for kind, s, e in pieces
        )

    def _cycles(self, rng: SeededRandom, total: int) -> Tuple[List[Tuple[SleepStageType, int, int]], int]:
        """Light/deep/REM cycles; deep sleep dominates the first half of the night."""
        expected = max(1, int(round(total / float(sum(CYCLE_SECONDS) / 2))))
        base: List[Tuple[SleepStageType, int, int]] = []
        t, i = 0, 0
        while t < total:
            end = min(total, t + rng.next_int(*CYCLE_SECONDS))
            # a sliver left at the end joins the last cycle
            if total - end < 3 * self.cfg.min_stage_seconds:
                end = total
            mix = EARLY_CYCLE_MIX if i < expected / 2.0 else LATE_CYCLE_MIX
            light, deep, rem = split_integer(end - t, mix)
            cursor = t
            for kind, length in ((SleepStageType.LIGHT, light), (SleepStageType.DEEP, deep), (SleepStageType.REM, rem)):
                if length > 0:
                    base.append((kind, cursor, cursor + length))
                    cursor += length
            t, i = end, i + 1
        return base, i

    def _awake_fragments(self, rng: SeededRandom, arch: SleepArchetype, total: int,
                         n_cycles: int) -> List[Tuple[int, int]]:
        cfg = self.cfg
        lo, hi = cfg.awake_fragment_min_seconds, cfg.awake_fragment_max_seconds
        fragments: List[Tuple[int, int]] = []

        # pre-sleep phone use, early in the night
        if rng.next_bool(arch.phone_use_prob):
            for _ in range(rng.next_int(*arch.phone_uses)):
                start = rng.next_int(0, int(total * 0.25))
                fragments.append((start, start + rng.next_int(lo, hi)))

        if self.mode is DataMode.WEARABLE:
            wakings = int(n_cycles * (1.0 - arch.consistency) * 3)
        else:
            wakings = rng.next_int(*arch.nocturnal_wakings)
        for _ in range(wakings):
            start = rng.next_int(int(total * 0.3), int(total * 0.9))
            fragments.append((start, start + rng.next_int(lo, hi)))

        return fragments[: cfg.max_awake_fragments]


def generate_sleep(user: VirtualUser, profile: PersonalizedProfile, day: dt.date,
                   cfg: Optional[GeneratorConfig] = None, mode: DataMode = DataMode.SIMPLE,
                   sleep_debt: Optional[float] = None, prev_steps: Optional[int] = None) -> SleepData:
    """Generate one night; ``sleep_debt`` defaults to the trailing-window debt for ``day``.

    ``prev_steps`` is the previous day's step total; without it activity does not affect the night.
    """
    cfg = cfg or GeneratorConfig()
    if sleep_debt is None:
        sleep_debt = sleep_debt_before(user, profile, day, cfg)
    activity_hours = activity_sleep_adjustment(prev_steps, user.steps_baseline) if prev_steps is not None else 0.0
    return SleepSessionGenerator(cfg, mode).generate(user, profile, day, sleep_debt,
                                                     activity_hours=activity_hours).sleep
