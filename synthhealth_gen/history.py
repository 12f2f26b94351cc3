"""Historical orchestration: drive sleep + steps generation over a date range.

Each day is a pure function of ``(user, date, config, mode)``: sleep debt is
recomputed from a trailing window instead of carried through the range, so
overlapping ranges agree on every shared date. Days are streamed one at a
time, in batches of ``history_batch_size``; only the look-ahead night is
carried between days.
"""
from __future__ import annotations
import datetime as dt
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple, TypeVar

from .activity import ActivityEventGenerator, to_steps_data, truncate_at
from .archetypes import ProfileCache
from .compliance import enforce_steps_bounds, gate_sleep, round_timestamps, scan_anomalies
from .config import GeneratorConfig
from .models import (
    DailyStepDistribution,
    DataMode,
    Issue,
    PersonalizedProfile,
    Severity,
    SleepData,
    StepsData,
    VirtualUser,
)
from .seed import seed_rng
from .sleep import SLEEP_STREAM, SleepSessionGenerator, activity_sleep_adjustment, sleep_debt_before
from .utils import date_range, midnight

logger = logging.getLogger(__name__)


class EndBoundary(str, Enum):
    YESTERDAY = "yesterday"   # both series end yesterday
    TODAY = "today"           # steps end today (partial); sleep only once today's wake time has passed


class MissingInputError(ValueError):
    """A required input (user record, day count) was not supplied."""


@dataclass(frozen=True)
class DayRecord:
    date: dt.date
    sleep: Optional[SleepData]
    steps: StepsData
    distribution: DailyStepDistribution
    issues: Tuple[Issue, ...] = ()


@dataclass(frozen=True)
class HistoricalSeries:
    user_id: str
    sleep: Tuple[SleepData, ...]
    steps: Tuple[StepsData, ...]
    distributions: Tuple[DailyStepDistribution, ...]
    issues: Tuple[Issue, ...] = ()
    cancelled: bool = False

    @property
    def dates(self) -> List[dt.date]:
        return [s.date for s in self.steps]


def resolve_end_date(boundary: EndBoundary, today: dt.date) -> dt.date:
    if EndBoundary(boundary) is EndBoundary.YESTERDAY:
        return today - dt.timedelta(days=1)
    return today


T = TypeVar("T")

def merge_by_date(existing: Iterable[T], new: Iterable[T]) -> List[T]:
    """Union of two dated collections; on equal dates the newer record wins. Sorted by date."""
    by_date = {rec.date: rec for rec in existing}
    for rec in new:
        by_date[rec.date] = rec
    return [by_date[d] for d in sorted(by_date)]


class HistoricalOrchestrator:
    def __init__(self, cfg: Optional[GeneratorConfig] = None, mode: DataMode = DataMode.SIMPLE,
                 profiles: Optional[ProfileCache] = None):
        self.cfg = cfg or GeneratorConfig()
        self.mode = DataMode(mode)
        self.profiles = profiles if profiles is not None else ProfileCache()
        self._sleep = SleepSessionGenerator(self.cfg, self.mode)
        self._steps = ActivityEventGenerator(self.cfg)

    def profile_for(self, user: VirtualUser) -> PersonalizedProfile:
        return self.profiles.get(user)

    # ---- single night / day ----

    def night(self, user: VirtualUser, profile: PersonalizedProfile, day: dt.date) -> Tuple[SleepData, List[Issue]]:
        debt = sleep_debt_before(user, profile, day, self.cfg)
        prev_steps = self._steps.planned_total(user, profile, day - dt.timedelta(days=1))
        activity_hours = activity_sleep_adjustment(prev_steps, user.steps_baseline)
        outcome = self._sleep.generate(user, profile, day, sleep_debt=debt, activity_hours=activity_hours)

        def regenerate(attempt: int) -> SleepData:
            rng = seed_rng(user.id, day, f"{SLEEP_STREAM}/retry-{attempt}")
            return self._sleep.generate(user, profile, day, sleep_debt=debt, rng=rng,
                                        activity_hours=activity_hours).sleep

        sleep, gate_issues = gate_sleep(outcome.sleep, regenerate, self.cfg, self.mode)
        return sleep, list(outcome.issues) + gate_issues

    def _assemble(self, user: VirtualUser, profile: PersonalizedProfile, day: dt.date,
                  current: Tuple[SleepData, List[Issue]], upcoming: SleepData,
                  partial_at: Optional[dt.datetime]) -> DayRecord:
        sleep, sleep_issues = current
        outcome = self._steps.generate(user, profile, day, sleep=sleep, next_sleep=upcoming)
        dist = round_timestamps(outcome.distribution)
        issues: List[Issue] = list(sleep_issues) + list(outcome.issues)

        emitted_sleep: Optional[SleepData] = sleep
        if partial_at is not None:
            dist = truncate_at(dist, partial_at)
            if sleep.wake_time > partial_at:
                emitted_sleep = None
        else:
            dist, fixes = enforce_steps_bounds(dist, self.cfg, sleep)
            issues.extend(fixes)

        issues.extend(scan_anomalies(dist, sleep, self.cfg))
        return DayRecord(day, emitted_sleep, to_steps_data(dist), dist, tuple(issues))

    def generate_day(self, user: VirtualUser, day: dt.date) -> DayRecord:
        """One completed day with its own night and the following night's bed time."""
        if user is None:
            raise MissingInputError("a user record is required")
        profile = self.profile_for(user)
        current = self.night(user, profile, day)
        upcoming, _ = self.night(user, profile, day + dt.timedelta(days=1))
        return self._assemble(user, profile, day, current, upcoming, None)

    # ---- ranges ----

    def iter_days(self, user: VirtualUser, num_days: int,
                  end_boundary: EndBoundary = EndBoundary.YESTERDAY, *,
                  today: Optional[dt.date] = None, now: Optional[dt.datetime] = None,
                  cancel: Optional[threading.Event] = None) -> Iterator[DayRecord]:
        """Stream ``num_days`` contiguous day records ending at ``end_boundary``.

        ``cancel`` is checked between days; a set event ends the stream early.
        """
        if user is None:
            raise MissingInputError("a user record is required")
        if num_days is None or num_days < 1:
            raise MissingInputError(f"num_days must be a positive integer (got {num_days!r})")

        boundary = EndBoundary(end_boundary)
        today, now = _resolve_clock(today, now)
        dates = date_range(resolve_end_date(boundary, today), int(num_days))
        profile = self.profile_for(user)
        batch_size = max(1, self.cfg.history_batch_size)

        current: Optional[Tuple[SleepData, List[Issue]]] = None
        for b in range(0, len(dates), batch_size):
            batch = dates[b:b + batch_size]
            logger.debug(f"{user.id}: batch {b // batch_size + 1} ({batch[0]} .. {batch[-1]})")
            for day in batch:
                if cancel is not None and cancel.is_set():
                    logger.info(f"{user.id}: generation cancelled before {day}")
                    return
                if current is None:
                    current = self.night(user, profile, day)
                upcoming = self.night(user, profile, day + dt.timedelta(days=1))
                partial_at = now if (boundary is EndBoundary.TODAY and day == today) else None
                yield self._assemble(user, profile, day, current, upcoming[0], partial_at)
                current = upcoming

    def generate_range(self, user: VirtualUser, num_days: int,
                       end_boundary: EndBoundary = EndBoundary.YESTERDAY, *,
                       today: Optional[dt.date] = None, now: Optional[dt.datetime] = None,
                       cancel: Optional[threading.Event] = None) -> HistoricalSeries:
        sleep: List[SleepData] = []
        steps: List[StepsData] = []
        dists: List[DailyStepDistribution] = []
        issues: List[Issue] = []
        for rec in self.iter_days(user, num_days, end_boundary, today=today, now=now, cancel=cancel):
            if rec.sleep is not None:
                sleep.append(rec.sleep)
            steps.append(rec.steps)
            dists.append(rec.distribution)
            issues.extend(rec.issues)

        cancelled = len(steps) < num_days
        if cancelled:
            issues.append(Issue("generation_cancelled", Severity.INFO,
                                f"stopped after {len(steps)} of {num_days} days",
                                steps[-1].date if steps else None))
        n_warn = sum(1 for i in issues if i.severity is not Severity.INFO)
        if n_warn:
            logger.info(f"{user.id}: {len(steps)} days generated with {n_warn} issue(s)")
        return HistoricalSeries(user.id, tuple(sleep), tuple(steps), tuple(dists), tuple(issues), cancelled)


def _resolve_clock(today: Optional[dt.date], now: Optional[dt.datetime]) -> Tuple[dt.date, dt.datetime]:
    if today is None:
        today = now.date() if now is not None else dt.date.today()
    if now is None:
        if today == dt.date.today():
            now = dt.datetime.now().replace(microsecond=0)
        else:
            now = midnight(today) + dt.timedelta(hours=23, minutes=59, seconds=59)
    return today, now


def generate_range(user: VirtualUser, num_days: int, end_boundary: EndBoundary = EndBoundary.YESTERDAY, *,
                   cfg: Optional[GeneratorConfig] = None, mode: DataMode = DataMode.SIMPLE,
                   profiles: Optional[ProfileCache] = None, today: Optional[dt.date] = None,
                   now: Optional[dt.datetime] = None,
                   cancel: Optional[threading.Event] = None) -> HistoricalSeries:
    orchestrator = HistoricalOrchestrator(cfg, mode, profiles)
    return orchestrator.generate_range(user, num_days, end_boundary, today=today, now=now, cancel=cancel)
