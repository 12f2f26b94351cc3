"""Final validation/repair gate for generated sleep and steps.

Nothing here raises for bad values: out-of-range data is clamped, regenerated
or redistributed, and every repair or anomaly comes back as an ``Issue``.
"""
from __future__ import annotations
import dataclasses
import datetime as dt
import logging
from typing import Callable, List, Optional, Tuple

from .config import GeneratorConfig
from .models import (
    ActivityType,
    DailyStepDistribution,
    DataMode,
    Issue,
    Severity,
    SleepData,
    SleepStage,
    SleepStageType,
    StepIncrement,
)
from .sleep import check_sleep_structure
from .utils import clip, midnight, split_integer

logger = logging.getLogger(__name__)


# ---- clamps ----

def clamp_steps_total(value: float, cfg: GeneratorConfig) -> int:
    """Clamp a daily step target into ``[steps_floor, steps_ceiling]``.

    Must run after every multiplicative adjustment (weekend, quality).
    """
    return int(min(max(int(round(value)), cfg.steps_floor), cfg.steps_ceiling))

def clamp_quality_factor(value: float, cfg: GeneratorConfig) -> float:
    return float(clip(value, cfg.quality_factor_min, cfg.quality_factor_max))


# ---- sleep ----

def validate_sleep_structure(sleep: SleepData, cfg: GeneratorConfig,
                             mode: DataMode = DataMode.SIMPLE) -> List[Issue]:
    return [Issue("sleep_structure", Severity.ERROR, p, sleep.date)
            for p in check_sleep_structure(sleep, cfg, mode)]

def fallback_sleep(sleep: SleepData, cfg: GeneratorConfig) -> SleepData:
    """Single-stage session with bed/wake times forced into the sleep-hour bounds."""
    bed = sleep.bed_time.replace(microsecond=0)
    hours = (sleep.wake_time - sleep.bed_time).total_seconds() / 3600.0
    if hours <= 0:
        hours = 8.0
    hours = float(clip(hours, cfg.min_sleep_hours, cfg.max_sleep_hours))
    wake = bed + dt.timedelta(seconds=int(round(hours * 3600.0)))
    return SleepData(sleep.date, bed, wake, (SleepStage(SleepStageType.LIGHT, bed, wake),))

def gate_sleep(sleep: SleepData, regenerate: Callable[[int], SleepData], cfg: GeneratorConfig,
               mode: DataMode = DataMode.SIMPLE) -> Tuple[SleepData, List[Issue]]:
    """Re-validate a session; regenerate on failure, fall back to a single stage when the budget runs out."""
    problems = check_sleep_structure(sleep, cfg, mode)
    if not problems:
        return sleep, []

    issues: List[Issue] = []
    attempt = 0
    while problems and attempt < cfg.sleep_retry_budget:
        attempt += 1
        logger.warning(f"{sleep.date}: invalid sleep session ({problems[0]}), regenerating (attempt {attempt})")
        issues.append(Issue("sleep_regenerated", Severity.WARNING, problems[0], sleep.date))
        sleep = regenerate(attempt)
        problems = check_sleep_structure(sleep, cfg, mode)

    if problems:
        sleep = fallback_sleep(sleep, cfg)
        issues.append(Issue("sleep_fallback", Severity.WARNING,
                            f"regeneration exhausted ({problems[0]}); emitted a single stage", sleep.date))
    return sleep, issues


# ---- steps ----

def round_timestamps(dist: DailyStepDistribution) -> DailyStepDistribution:
    increments = tuple(
        dataclasses.replace(i, timestamp=i.timestamp.replace(microsecond=0)) for i in dist.increments
    )
    return dataclasses.replace(dist, increments=increments)

def hourly_totals(increments) -> Tuple[Tuple[int, int], ...]:
    """(hour, steps) pairs in hour order for the hours that have steps."""
    hourly: dict = {}
    for inc in increments:
        hourly[inc.timestamp.hour] = hourly.get(inc.timestamp.hour, 0) + inc.steps
    return tuple(sorted(hourly.items()))

def enforce_steps_bounds(dist: DailyStepDistribution, cfg: GeneratorConfig,
                         sleep: Optional[SleepData] = None) -> Tuple[DailyStepDistribution, List[Issue]]:
    """Redistribute a completed day's total back into bounds.

    Extra steps go to increments outside the sleep window, proportionally to
    their size; excess is scaled away across all increments. Partial days are
    returned unchanged.
    """
    total = sum(i.steps for i in dist.increments)
    if dist.is_partial or cfg.steps_floor <= total <= cfg.steps_ceiling:
        if total != dist.total_steps:
            dist = dataclasses.replace(dist, total_steps=total, hourly=hourly_totals(dist.increments))
        return dist, []

    incs = list(dist.increments)
    if total < cfg.steps_floor:
        target = cfg.steps_floor
        awake_idx = [k for k, i in enumerate(incs) if sleep is None or not sleep.contains(i.timestamp)]
        if not awake_idx:
            # nothing to grow: a single walking increment at noon
            incs.append(StepIncrement(midnight(dist.date) + dt.timedelta(hours=12), 0, ActivityType.WALKING))
            awake_idx = [len(incs) - 1]
        extra = split_integer(target - total, [max(incs[k].steps, 1) for k in awake_idx])
        for k, add in zip(awake_idx, extra):
            incs[k] = dataclasses.replace(incs[k], steps=incs[k].steps + add)
    else:
        target = cfg.steps_ceiling
        parts = split_integer(target, [i.steps for i in incs])
        incs = [dataclasses.replace(i, steps=p) for i, p in zip(incs, parts)]

    incs = sorted((i for i in incs if i.steps > 0), key=lambda i: i.timestamp)
    msg = f"daily total {total} redistributed to {target}"
    logger.warning(f"{dist.date}: {msg}")
    fixed = dataclasses.replace(dist, total_steps=target, hourly=hourly_totals(incs), increments=tuple(incs))
    return fixed, [Issue("steps_redistributed", Severity.WARNING, msg, dist.date)]

def sleep_period_steps(dist: DailyStepDistribution, sleep: Optional[SleepData]) -> int:
    if sleep is None:
        return 0
    return int(sum(i.steps for i in dist.increments if sleep.contains(i.timestamp)))


# ---- diagnostics ----

def scan_anomalies(dist: Optional[DailyStepDistribution], sleep: Optional[SleepData],
                   cfg: GeneratorConfig) -> List[Issue]:
    """Collect non-fatal diagnostics for one day; never raises."""
    issues: List[Issue] = []

    def add(code: str, severity: Severity, message: str, day: dt.date):
        issues.append(Issue(code, severity, message, day))

    if dist is not None:
        day = dist.date
        total = sum(i.steps for i in dist.increments)
        if total != dist.total_steps:
            add("steps_sum_mismatch", Severity.ERROR,
                f"total_steps {dist.total_steps} != sum of increments {total}", day)
        if not dist.is_partial and total < cfg.implausible_steps_floor:
            add("steps_implausibly_low", Severity.WARNING,
                f"daily total {total} below plausible floor {cfg.implausible_steps_floor}", day)
        if not dist.is_partial and total > cfg.steps_ceiling:
            add("steps_above_ceiling", Severity.ERROR, f"daily total {total} above {cfg.steps_ceiling}", day)
        for hour, steps in dist.hourly:
            if steps > cfg.max_hourly_steps:
                add("hourly_steps_high", Severity.WARNING, f"hour {hour:02d} has {steps} steps", day)
        for inc in dist.increments:
            if inc.steps > cfg.max_increment_steps:
                add("increment_steps_high", Severity.WARNING,
                    f"{inc.steps} steps in one increment at {inc.timestamp.isoformat()}", day)
            if inc.timestamp.date() != day:
                add("increment_off_day", Severity.ERROR,
                    f"increment at {inc.timestamp.isoformat()} outside {day}", day)
        if sleep is not None and total > 0 and not dist.is_partial:
            share = sleep_period_steps(dist, sleep) / float(total)
            if share > cfg.sleep_share_cap:
                add("sleep_steps_share_high", Severity.WARNING,
                    f"{share:.1%} of steps fall inside the sleep window", day)

    if sleep is not None:
        hours = sleep.total_sleep_hours
        if not cfg.min_sleep_hours <= hours <= cfg.max_sleep_hours:
            add("sleep_hours_out_of_range", Severity.ERROR, f"total sleep {hours:.2f}h", sleep.date)
        stage_cover = sum(s.duration_seconds for s in sleep.stages)
        in_bed = (sleep.wake_time - sleep.bed_time).total_seconds()
        if in_bed > 0 and not 0.8 <= stage_cover / in_bed <= 1.2:
            add("sleep_stage_coverage", Severity.WARNING,
                f"stages cover {stage_cover / in_bed:.0%} of time in bed", sleep.date)

    for issue in issues:
        logger.debug(f"{issue.date}: [{issue.severity.value}] {issue.code}: {issue.message}")
    return issues
