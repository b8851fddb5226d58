from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from .database import FocusGuardDatabase
from .sessions import SessionTracker
from .telemetry import TelemetryOracle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncReport:
    records_written: list[str] = field(default_factory=list)
    sessions_closed: list[str] = field(default_factory=list)
    skipped_apps: list[str] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return len(self.records_written)


class SyncScheduler:
    """Background reconciliation of telemetry into daily records, plus limit checks on running sessions.

    Usage reconciliation and session checks run on separate cadences from one
    thread. A failure for one app is logged and that app is skipped until the
    next tick.
    """

    def __init__(
        self,
        db: FocusGuardDatabase,
        telemetry: TelemetryOracle,
        tracker: SessionTracker,
        is_daily_limit_exceeded: Callable[[str, datetime], bool],
        end_session: Callable[[str, datetime], object],
        clock: Callable[[], datetime],
        usage_interval_seconds: float = 30.0,
        session_interval_seconds: float = 5.0,
    ):
        self._db = db
        self._telemetry = telemetry
        self._tracker = tracker
        self._is_daily_limit_exceeded = is_daily_limit_exceeded
        self._end_session = end_session
        self._clock = clock
        self._usage_interval = max(1.0, float(usage_interval_seconds))
        self._session_interval = max(0.5, float(session_interval_seconds))

        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._tick_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        with self._lock:
            if self.is_running:
                return False

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop,
                name="focusguard-sync",
                daemon=True,
            )
            self._thread.start()
            return True

    def stop(self, timeout_seconds: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()

        thread.join(timeout=timeout_seconds)
        if thread.is_alive():
            logger.warning(f"sync tick still running after {timeout_seconds:g}s, not waiting for it")
            return

        with self._lock:
            if self._thread is thread:
                self._thread = None

    def run_once(self) -> SyncReport:
        now = self._clock()
        with self._tick_lock:
            closed = self._check_sessions(now)
            written, skipped = self._reconcile_usage(now)
        return SyncReport(records_written=written, sessions_closed=closed, skipped_apps=skipped)

    def _run_loop(self) -> None:
        next_usage = time.monotonic()
        next_session = time.monotonic()

        while not self._stop_event.is_set():
            now_mono = time.monotonic()
            next_due = min(next_usage, next_session)
            if now_mono < next_due:
                if self._stop_event.wait(next_due - now_mono):
                    break
                now_mono = time.monotonic()

            try:
                with self._tick_lock:
                    now = self._clock()
                    if now_mono >= next_session:
                        self._check_sessions(now)
                    if now_mono >= next_usage:
                        self._reconcile_usage(now)
            except Exception:  # noqa: BLE001
                logger.exception("sync tick failed")

            if now_mono >= next_session:
                next_session = max(next_session + self._session_interval, time.monotonic() + 0.05)
            if now_mono >= next_usage:
                next_usage = max(next_usage + self._usage_interval, time.monotonic() + 0.05)

    def _check_sessions(self, now: datetime) -> list[str]:
        closed: list[str] = []
        for app_id in self._tracker.snapshot():
            try:
                exceeded = self._is_daily_limit_exceeded(app_id, now)
            except Exception:  # noqa: BLE001
                logger.exception(f"limit check failed app={app_id}")
                continue
            if not exceeded or app_id not in self._tracker:
                continue
            logger.info(f"app={app_id} went over its daily limit during the session, ending it")
            self._end_session(app_id, now)
            closed.append(app_id)
        return closed

    def _reconcile_usage(self, now: datetime) -> tuple[list[str], list[str]]:
        written: list[str] = []
        skipped: list[str] = []
        try:
            apps = self._db.list_monitored_apps(enabled_only=True)
        except sqlite3.Error:
            logger.exception("could not list monitored apps, skipping usage sync")
            return written, skipped

        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)

        for app in apps:
            try:
                reading = self._telemetry.foreground_minutes(app.app_id, day_start, day_end)
            except Exception:  # noqa: BLE001
                logger.exception(f"telemetry query failed app={app.app_id}, skipped this tick")
                skipped.append(app.app_id)
                continue
            if not reading.available:
                logger.warning(f"telemetry unavailable app={app.app_id}, skipped this tick")
                skipped.append(app.app_id)
                continue

            try:
                changed = self._db.reconcile_daily_usage(app.app_id, now.date(), reading.minutes, now)
            except sqlite3.Error:
                logger.exception(f"usage record not written app={app.app_id}, skipped this tick")
                skipped.append(app.app_id)
                continue
            if changed:
                logger.debug(f"usage synced app={app.app_id} minutes={reading.minutes}")
                written.append(app.app_id)

        return written, skipped
