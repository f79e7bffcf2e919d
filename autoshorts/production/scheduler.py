"""
Scheduler / Quota Guard — recurring production triggers with a daily quota.

Fire times are times of day ("HH:MM") evaluated by a DailyTicker against an
injectable Clock.  Each tick():

  1. rolls the quota day over at midnight (runs_today → 0)
  2. collects fire times that fell in (last tick, now]; several missed fires
     collapse into one attempt
  3. skips (logged) when runs_today has reached the daily quota, otherwise
     calls pipeline.try_start("scheduled")
  4. runs the retention sweep when the daily cleanup time passed

start() spawns a daemon thread that calls tick() every poll_interval_s;
tests construct a Scheduler with a manual clock and call tick() themselves.
trigger_now() goes through the same pipeline entry guard, counts toward the
quota but is never blocked by it.

Quota accounting: with count_failed_runs=True every run that actually
started consumes quota; with False only completed runs do.  A request
rejected because a run was already in flight consumes nothing.
"""
from __future__ import annotations

import collections
import datetime
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from autoshorts.production.pipeline import ProductionPipeline
from autoshorts.production.workspace import WorkspaceManager
from autoshorts.schemas.config import SchedulerConfig, parse_time_of_day
from autoshorts.schemas.run import RunReport, RunState, SchedulerStatus

logger = logging.getLogger(__name__)

# Longest gap between ticks still scanned for missed fire times.
_MAX_CATCHUP = datetime.timedelta(days=1)


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime.datetime:
        """Current timezone-aware time."""


class SystemClock(Clock):

    def __init__(self, tz: datetime.tzinfo = datetime.timezone.utc) -> None:
        self.tz = tz

    def now(self) -> datetime.datetime:
        return datetime.datetime.now(self.tz)


class DailyTicker:
    """A fixed set of times of day, evaluated in the timezone of the times passed in."""

    def __init__(self, times: list[str]) -> None:
        self.times = sorted(parse_time_of_day(t) for t in times)

    def _on(self, day: datetime.date, tz: Optional[datetime.tzinfo]) -> list[datetime.datetime]:
        return [
            datetime.datetime(day.year, day.month, day.day, h, m, tzinfo=tz)
            for h, m in self.times
        ]

    def due_between(
        self, start: datetime.datetime, end: datetime.datetime
    ) -> list[datetime.datetime]:
        """Fire times t with start < t <= end, oldest first."""
        if end <= start or not self.times:
            return []
        start = max(start, end - _MAX_CATCHUP)
        due: list[datetime.datetime] = []
        day = start.date()
        while day <= end.date():
            due += [t for t in self._on(day, end.tzinfo) if start < t <= end]
            day += datetime.timedelta(days=1)
        return due

    def next_after(self, moment: datetime.datetime) -> Optional[datetime.datetime]:
        for offset in (0, 1):
            day = moment.date() + datetime.timedelta(days=offset)
            for t in self._on(day, moment.tzinfo):
                if t > moment:
                    return t
        return None


class Scheduler:

    def __init__(
        self,
        pipeline: ProductionPipeline,
        config: SchedulerConfig,
        workspaces: Optional[WorkspaceManager] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.pipeline = pipeline
        self.config = config
        self.workspaces = workspaces
        self.clock = clock or SystemClock()
        self.fire_ticker = DailyTicker(config.fire_times)
        self.cleanup_ticker = DailyTicker([config.cleanup_time])

        self._lock = threading.RLock()
        self._active = False
        self._last_check: Optional[datetime.datetime] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self.runs_today = 0
        self.quota_day: Optional[datetime.date] = None
        self.total_success_count = 0
        self.last_run_at: Optional[datetime.datetime] = None
        self.errors: collections.deque[str] = collections.deque(maxlen=config.error_buffer_size)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, background: bool = True) -> SchedulerStatus:
        """Activate scheduled triggering.  Idempotent."""
        with self._lock:
            if self._active:
                logger.info("Scheduler already active")
                return self.status()
            if not self.config.enabled:
                logger.warning("Scheduler is disabled by configuration; not starting")
                return self.status()
            self._active = True
            self._last_check = self.clock.now()
            self._roll_day(self._last_check)
            self._stop_event = threading.Event()
            if background:
                self._thread = threading.Thread(
                    target=self._loop, name="autoshorts-scheduler", daemon=True
                )
                self._thread.start()
        logger.info(
            "Scheduler started: fire times %s, quota %d/day",
            ", ".join(self.config.fire_times), self.config.daily_quota,
        )
        return self.status()

    def stop(self) -> SchedulerStatus:
        """Deactivate scheduled triggering.  Idempotent; an in-flight run finishes."""
        with self._lock:
            if not self._active:
                return self.status()
            self._active = False
            self._stop_event.set()
            thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.poll_interval_s)
        logger.info("Scheduler stopped")
        return self.status()

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._active

    def _loop(self) -> None:
        stop_event = self._stop_event
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception as exc:
                logger.exception("Scheduler tick failed")
                self._remember_error(f"tick: {type(exc).__name__}: {exc}")
            stop_event.wait(self.config.poll_interval_s)

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def tick(self, now: Optional[datetime.datetime] = None) -> Optional[RunReport]:
        """
        Evaluate due fire and cleanup times.

        Returns the RunReport of the run started by this tick, or None if no
        run was attempted.
        """
        now = now or self.clock.now()
        with self._lock:
            if not self._active:
                return None
            since = self._last_check or now
            self._last_check = now
            self._roll_day(now)
            fires = self.fire_ticker.due_between(since, now)
            cleanup_due = bool(self.cleanup_ticker.due_between(since, now))

        report: Optional[RunReport] = None
        if fires:
            if len(fires) > 1:
                logger.info("%d fire times elapsed since last tick; attempting one run", len(fires))
            report = self._fire(fires[-1], now)
        if cleanup_due:
            self.cleanup(now)
        return report

    def trigger_now(self) -> RunReport:
        """Start a run immediately, bypassing (but counting toward) the quota."""
        logger.info("Manual trigger")
        report = self.pipeline.try_start("manual")
        self._account(report, self.clock.now())
        return report

    def cleanup(self, now: Optional[datetime.datetime] = None) -> list[Path]:
        if self.workspaces is None:
            return []
        try:
            return self.workspaces.sweep(now)
        except OSError as exc:
            logger.error("Retention sweep failed: %s", exc)
            self._remember_error(f"cleanup: {exc}")
            return []

    def _fire(self, at: datetime.datetime, now: datetime.datetime) -> Optional[RunReport]:
        with self._lock:
            if self.runs_today >= self.config.daily_quota:
                logger.info(
                    "Skipping %s fire: daily quota reached (%d/%d)",
                    at.strftime("%H:%M"), self.runs_today, self.config.daily_quota,
                )
                return None
        logger.info("Scheduled fire at %s", at.strftime("%H:%M"))
        report = self.pipeline.try_start("scheduled")
        self._account(report, now)
        return report

    def _account(self, report: RunReport, now: datetime.datetime) -> None:
        if report.already_running or report.run is None:
            logger.info("Run already in flight; nothing counted")
            return
        run = report.run
        completed = run.state is RunState.COMPLETED
        with self._lock:
            self._roll_day(now)
            self.last_run_at = run.started_at
            if completed:
                self.total_success_count += 1
            else:
                self._remember_error(
                    f"{run.run_id} [{run.failed_in.value if run.failed_in else '?'}] "
                    f"{run.error_type}: {run.last_error}"
                )
            if completed or self.config.count_failed_runs:
                self.runs_today += 1

    def _roll_day(self, now: datetime.datetime) -> None:
        today = now.date()
        if self.quota_day != today:
            if self.quota_day is not None:
                logger.info("Quota day rolled over to %s (%d run(s) yesterday)", today, self.runs_today)
            self.quota_day = today
            self.runs_today = 0

    def _remember_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> SchedulerStatus:
        with self._lock:
            next_run = None
            if self._active:
                next_run = self.fire_ticker.next_after(self._last_check or self.clock.now())
            return SchedulerStatus(
                is_active=self._active,
                last_run_at=self.last_run_at,
                next_run_at=next_run,
                runs_today=self.runs_today,
                quota_day=self.quota_day,
                daily_quota=self.config.daily_quota,
                total_success_count=self.total_success_count,
                recent_errors=list(self.errors),
                pipeline_state=self.pipeline.status().state,
            )
