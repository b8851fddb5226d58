from __future__ import annotations

import tempfile
import threading
import unittest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from focusguard.database import FocusGuardDatabase
from focusguard.models import Challenge, MonitoredApp, UsageSession

DAY = date(2026, 3, 2)
NOON = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


class DatabaseTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db = FocusGuardDatabase(Path(self._tmp.name) / "focusguard.sqlite3")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_monitored_app_round_trip(self) -> None:
        self.db.upsert_monitored_app(MonitoredApp("chrome", "Chrome", 45, 10, True))
        self.db.upsert_monitored_app(MonitoredApp("steam", "Steam", 90, 30, False))

        app = self.db.get_monitored_app("chrome")
        self.assertEqual(app, MonitoredApp("chrome", "Chrome", 45, 10, True))
        self.assertEqual([a.app_id for a in self.db.list_monitored_apps()], ["chrome", "steam"])
        self.assertEqual([a.app_id for a in self.db.list_monitored_apps(enabled_only=True)], ["chrome"])

        self.assertTrue(self.db.set_app_enabled("steam", True))
        self.assertTrue(self.db.get_monitored_app("steam").enabled)
        self.assertFalse(self.db.set_app_enabled("missing", True))

        self.assertTrue(self.db.remove_monitored_app("chrome"))
        self.assertIsNone(self.db.get_monitored_app("chrome"))

    def test_extra_time_increments_in_place(self) -> None:
        self.assertIsNone(self.db.get_extra_time("chrome", DAY))
        self.assertFalse(self.db.add_extra_used("chrome", DAY, 3))

        self.db.add_extra_earned("chrome", DAY, 10)
        self.db.add_extra_earned("chrome", DAY, 8)
        self.assertTrue(self.db.add_extra_used("chrome", DAY, 5))

        entry = self.db.get_extra_time("chrome", DAY)
        self.assertEqual(entry.earned_minutes, 18)
        self.assertEqual(entry.used_minutes, 5)
        self.assertEqual(entry.remaining, 13)

    def test_concurrent_earned_increments_are_not_lost(self) -> None:
        def worker() -> None:
            for _ in range(10):
                self.db.add_extra_earned("chrome", DAY, 1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(self.db.get_extra_time("chrome", DAY).earned_minutes, 40)

    def test_daily_counters(self) -> None:
        self.db.increment_daily_counter("chrome", DAY, "blocked_attempts")
        self.db.increment_daily_counter("chrome", DAY, "blocked_attempts")
        self.db.increment_daily_counter("chrome", DAY, "challenges_solved")
        self.db.increment_daily_counter("chrome", DAY, "challenges_failed", 3)

        record = self.db.get_daily_record("chrome", DAY)
        self.assertEqual(record.blocked_attempts, 2)
        self.assertEqual(record.challenges_solved, 1)
        self.assertEqual(record.challenges_failed, 3)
        self.assertEqual(record.total_foreground_minutes, 0)

        with self.assertRaises(ValueError):
            self.db.increment_daily_counter("chrome", DAY, "total_foreground_minutes")

    def test_reconcile_only_writes_changes(self) -> None:
        self.assertFalse(self.db.reconcile_daily_usage("chrome", DAY, 0, NOON))
        self.assertIsNone(self.db.get_daily_record("chrome", DAY))

        self.assertTrue(self.db.reconcile_daily_usage("chrome", DAY, 25, NOON))
        self.assertFalse(self.db.reconcile_daily_usage("chrome", DAY, 25, NOON + timedelta(seconds=30)))
        self.assertTrue(self.db.reconcile_daily_usage("chrome", DAY, 27, NOON + timedelta(minutes=1)))

        record = self.db.get_daily_record("chrome", DAY)
        self.assertEqual(record.total_foreground_minutes, 27)
        self.assertEqual(record.last_synced_at, NOON + timedelta(minutes=1))

    def test_usage_session_folds_into_daily_record(self) -> None:
        self.db.increment_daily_counter("chrome", DAY, "blocked_attempts")
        for started, minutes in ((NOON, 12), (NOON + timedelta(hours=1), 30)):
            self.db.record_usage_session(
                UsageSession(
                    app_id="chrome",
                    day=DAY,
                    started_at=started,
                    ended_at=started + timedelta(minutes=minutes),
                    duration_minutes=minutes,
                    challenges_completed=1,
                )
            )

        record = self.db.get_daily_record("chrome", DAY)
        self.assertEqual(record.total_foreground_minutes, 42)
        self.assertEqual(record.sessions_completed, 2)
        self.assertEqual(record.longest_session_minutes, 30)
        self.assertEqual(record.blocked_attempts, 1)

        sessions = self.db.sessions_for_day("chrome", DAY)
        self.assertEqual([s.duration_minutes for s in sessions], [12, 30])
        day_start = datetime(2026, 3, 2, tzinfo=timezone.utc)
        self.assertEqual(self.db.usage_minutes_between("chrome", day_start, day_start + timedelta(days=1)), 42)
        self.assertEqual(self.db.usage_minutes_between("chrome", NOON + timedelta(minutes=1), NOON + timedelta(hours=2)), 41)

    def test_challenges_are_appended(self) -> None:
        for offset, correct in ((0, False), (1, True), (2, True)):
            self.db.insert_challenge(
                Challenge(
                    app_id="chrome",
                    question_text="12 + 30 = ?",
                    correct_answer=42,
                    difficulty_level=2 + offset,
                    timestamp=NOON + timedelta(minutes=offset),
                    user_answer=42 if correct else 41,
                    is_correct=correct,
                    solve_seconds=4,
                    minutes_awarded=10 if correct else 0,
                )
            )

        recent = self.db.recent_challenges("chrome", limit=2)
        self.assertEqual(len(recent), 2)
        self.assertEqual(recent[0].difficulty_level, 4)
        self.assertTrue(recent[0].is_correct)
        self.assertEqual(self.db.correct_challenge_count("chrome", NOON), 2)
        self.assertEqual(self.db.average_difficulty("chrome", NOON), 3.5)
        self.assertIsNone(self.db.average_difficulty("steam", NOON))

    def test_settings_round_trip(self) -> None:
        self.db.set_setting("challenge_difficulty", "3")
        self.assertEqual(self.db.get_setting("challenge_difficulty"), "3")
        self.assertEqual(self.db.get_setting("missing", "x"), "x")

    def test_purge_before_cutoff(self) -> None:
        old_day = DAY - timedelta(days=40)
        self.db.add_extra_earned("chrome", old_day, 5)
        self.db.increment_daily_counter("chrome", old_day, "blocked_attempts")
        self.db.add_extra_earned("chrome", DAY, 5)

        removed = self.db.purge_before(DAY - timedelta(days=30))

        self.assertEqual(removed, 2)
        self.assertIsNone(self.db.get_extra_time("chrome", old_day))
        self.assertIsNotNone(self.db.get_extra_time("chrome", DAY))


if __name__ == "__main__":
    unittest.main()
