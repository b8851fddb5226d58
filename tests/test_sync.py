from __future__ import annotations

import tempfile
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from focusguard.config import EngineSettings
from focusguard.database import FocusGuardDatabase
from focusguard.engine import FocusGuardEngine
from focusguard.models import MonitoredApp
from focusguard.telemetry import RecordedUsageTelemetry, StaticTelemetry, TelemetryReading

T0 = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)
DAY = T0.date()


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class PartlyFailingTelemetry:
    def __init__(self, failing: str, minutes: int):
        self.failing = failing
        self.minutes = minutes
        self.calls: list[str] = []

    def foreground_minutes(self, app_id, day_start, day_end):
        self.calls.append(app_id)
        if app_id == self.failing:
            raise RuntimeError("query failed")
        return TelemetryReading(minutes=self.minutes)


class HeldTelemetry:
    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def foreground_minutes(self, app_id, day_start, day_end):
        self.entered.set()
        self.release.wait(5)
        return TelemetryReading(minutes=0)


class SyncTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db = FocusGuardDatabase(Path(self._tmp.name) / "focusguard.sqlite3")
        self.clock = FakeClock(T0)
        self.db.upsert_monitored_app(MonitoredApp("chrome", "Chrome", 30, 240))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _engine(self, telemetry=None, **settings) -> FocusGuardEngine:
        return FocusGuardEngine(self.db, telemetry=telemetry, settings=EngineSettings(**settings), clock=self.clock)


class ForceSyncTests(SyncTestCase):
    def test_repeated_sync_without_changes_writes_nothing(self) -> None:
        telemetry = StaticTelemetry({"chrome": 12})
        engine = self._engine(telemetry)

        self.assertEqual(engine.force_sync().records_written, ["chrome"])
        self.assertEqual(engine.force_sync().writes, 0)
        self.assertEqual(engine.force_sync().writes, 0)

        telemetry.set_minutes("chrome", 14)
        self.assertEqual(engine.force_sync().records_written, ["chrome"])
        record = self.db.get_daily_record("chrome", DAY)
        self.assertEqual(record.total_foreground_minutes, 14)
        self.assertEqual(record.last_synced_at, T0)

    def test_disabled_apps_are_not_synced(self) -> None:
        self.db.upsert_monitored_app(MonitoredApp("steam", "Steam", 30, 240, enabled=False))
        engine = self._engine(StaticTelemetry({"chrome": 5, "steam": 50}))
        self.assertEqual(engine.force_sync().records_written, ["chrome"])
        self.assertIsNone(self.db.get_daily_record("steam", DAY))

    def test_session_over_daily_limit_is_closed_once(self) -> None:
        telemetry = StaticTelemetry({"chrome": 10})
        engine = self._engine(telemetry)
        engine.start_session("chrome")
        engine.start_session("notes")

        self.assertEqual(engine.force_sync().sessions_closed, [])

        self.clock.advance(minutes=20)
        telemetry.set_minutes("chrome", 30)
        first = engine.force_sync()
        second = engine.force_sync()

        self.assertEqual(first.sessions_closed, ["chrome"])
        self.assertNotIn("chrome", engine.tracker)
        self.assertIn("notes", engine.tracker)
        self.assertEqual(second.sessions_closed, [])
        self.assertEqual(second.writes, 0)
        self.assertEqual([s.duration_minutes for s in self.db.sessions_for_day("chrome", DAY)], [20])

    def test_session_check_ignores_session_length(self) -> None:
        self.db.upsert_monitored_app(MonitoredApp("chrome", "Chrome", 300, 5))
        engine = self._engine(StaticTelemetry({"chrome": 10}))
        engine.start_session("chrome")
        self.clock.advance(minutes=30)
        self.assertEqual(engine.force_sync().sessions_closed, [])
        self.assertIn("chrome", engine.tracker)

    def test_failed_telemetry_query_skips_only_that_app(self) -> None:
        self.db.upsert_monitored_app(MonitoredApp("steam", "Steam", 30, 240))
        telemetry = PartlyFailingTelemetry(failing="chrome", minutes=7)
        engine = self._engine(telemetry)

        report = engine.force_sync()

        self.assertEqual(report.skipped_apps, ["chrome"])
        self.assertEqual(report.records_written, ["steam"])
        self.assertEqual(telemetry.calls.count("chrome"), 1)

    def test_unavailable_telemetry_writes_nothing(self) -> None:
        engine = self._engine(StaticTelemetry({"chrome": 99}, available=False))
        engine.start_session("chrome")
        report = engine.force_sync()
        self.assertEqual(report.skipped_apps, ["chrome"])
        self.assertEqual(report.writes, 0)
        self.assertIn("chrome", engine.tracker)

    def test_recorded_telemetry_converges(self) -> None:
        engine = self._engine()
        self.assertIsInstance(engine.telemetry, RecordedUsageTelemetry)
        engine.start_session("chrome")
        self.clock.advance(minutes=10)

        self.assertEqual(engine.force_sync().records_written, ["chrome"])
        self.assertEqual(self.db.get_daily_record("chrome", DAY).total_foreground_minutes, 10)

        self.clock.advance(minutes=25)
        report = engine.force_sync()
        self.assertEqual(report.sessions_closed, ["chrome"])
        self.assertEqual(self.db.get_daily_record("chrome", DAY).total_foreground_minutes, 35)
        self.assertEqual(engine.force_sync().writes, 0)


class SchedulerThreadTests(SyncTestCase):
    def test_background_thread_closes_sessions_and_stops(self) -> None:
        telemetry = StaticTelemetry({"chrome": 45})
        engine = self._engine(telemetry, usage_sync_interval_seconds=1.0, session_check_interval_seconds=0.5)
        engine.start_session("chrome")
        self.clock.advance(minutes=2)

        engine.start()
        self.assertFalse(engine.scheduler.start())
        deadline = time.monotonic() + 5.0
        while "chrome" in engine.tracker and time.monotonic() < deadline:
            time.sleep(0.05)
        engine.shutdown()

        self.assertNotIn("chrome", engine.tracker)
        self.assertFalse(engine.scheduler.is_running)
        self.assertEqual(self.db.get_daily_record("chrome", DAY).total_foreground_minutes, 45)

    def test_stop_warns_when_tick_outlasts_timeout(self) -> None:
        telemetry = HeldTelemetry()
        engine = self._engine(telemetry)
        engine.start()
        self.assertTrue(telemetry.entered.wait(5))

        with self.assertLogs("focusguard.sync", level="WARNING") as logs:
            engine.scheduler.stop(timeout_seconds=0.1)
        self.assertIn("still running", logs.output[0])
        self.assertTrue(engine.scheduler.is_running)

        telemetry.release.set()
        engine.scheduler.stop()
        self.assertFalse(engine.scheduler.is_running)

    def test_stop_without_start(self) -> None:
        engine = self._engine(StaticTelemetry())
        engine.scheduler.stop()
        self.assertFalse(engine.scheduler.is_running)


if __name__ == "__main__":
    unittest.main()
