"""Scheduler seam for periodic generation.

The engine never owns a clock. An external automation service implements
``Scheduler``; ``ManualScheduler`` is a deterministic in-process version
driven by ``advance_to``.
"""
from __future__ import annotations
import datetime as dt
import heapq
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from .history import DayRecord, HistoricalOrchestrator, MissingInputError
from .models import VirtualUser

logger = logging.getLogger(__name__)

Callback = Callable[[dt.datetime], None]


@dataclass(frozen=True, order=True)
class Handle:
    at: dt.datetime
    id: int


class Scheduler(Protocol):
    def schedule(self, at: dt.datetime, callback: Callback) -> Handle: ...

    def cancel(self, handle: Handle) -> bool: ...


class ManualScheduler:
    """Runs due callbacks, in time order, when the caller advances the clock."""

    def __init__(self, start: dt.datetime):
        self.now = start
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._queue: List[Tuple[Handle, Callback]] = []
        self._cancelled: set = set()

    def schedule(self, at: dt.datetime, callback: Callback) -> Handle:
        with self._lock:
            handle = Handle(at, next(self._ids))
            heapq.heappush(self._queue, (handle, callback))
        return handle

    def cancel(self, handle: Handle) -> bool:
        with self._lock:
            pending = any(h == handle for h, _ in self._queue) and handle.id not in self._cancelled
            if pending:
                self._cancelled.add(handle.id)
            return pending

    @property
    def pending(self) -> int:
        with self._lock:
            return sum(1 for h, _ in self._queue if h.id not in self._cancelled)

    def advance_to(self, when: dt.datetime) -> int:
        """Move the clock forward, firing every callback due at or before ``when``. Returns the count fired."""
        fired = 0
        while True:
            with self._lock:
                if not self._queue or self._queue[0][0].at > when:
                    break
                handle, callback = heapq.heappop(self._queue)
                if handle.id in self._cancelled:
                    self._cancelled.discard(handle.id)
                    continue
                self.now = max(self.now, handle.at)
            callback(handle.at)
            fired += 1
        with self._lock:
            self.now = max(self.now, when)
        return fired


class DailyGenerationJob:
    """Each day at ``at_time``, generate the completed previous day and hand it to ``sink``."""

    def __init__(self, user: VirtualUser, scheduler: Scheduler, orchestrator: HistoricalOrchestrator,
                 sink: Callable[[DayRecord], None], at_time: dt.time = dt.time(6, 0)):
        if user is None:
            raise MissingInputError("a user record is required")
        self.user = user
        self.scheduler = scheduler
        self.orchestrator = orchestrator
        self.sink = sink
        self.at_time = at_time
        self._handle: Optional[Handle] = None
        self.runs: Dict[dt.date, int] = {}

    @property
    def active(self) -> bool:
        return self._handle is not None

    def next_run_after(self, now: dt.datetime) -> dt.datetime:
        candidate = dt.datetime.combine(now.date(), self.at_time)
        if candidate <= now:
            candidate += dt.timedelta(days=1)
        return candidate

    def start(self, now: dt.datetime) -> Handle:
        self.stop()
        self._handle = self.scheduler.schedule(self.next_run_after(now), self._tick)
        logger.info(f"{self.user.id}: daily generation scheduled for {self._handle.at.isoformat()}")
        return self._handle

    def stop(self) -> None:
        if self._handle is not None:
            self.scheduler.cancel(self._handle)
            self._handle = None

    def _tick(self, fired_at: dt.datetime) -> None:
        day = fired_at.date() - dt.timedelta(days=1)
        record = self.orchestrator.generate_day(self.user, day)
        self.runs[day] = self.runs.get(day, 0) + 1
        self.sink(record)
        self._handle = self.scheduler.schedule(self.next_run_after(fired_at), self._tick)
