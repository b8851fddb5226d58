from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path

from .models import (
    Challenge,
    DailyUsageRecord,
    ExtraTimeLedgerEntry,
    MonitoredApp,
    UsageSession,
)

DAILY_COUNTERS = frozenset(
    {
        "blocked_attempts",
        "challenges_solved",
        "challenges_failed",
    }
)


class FocusGuardDatabase:
    """SQLite store for monitored apps, daily usage, the extra-time ledger and challenges.

    Every call opens its own connection, so one instance may be shared between
    the foreground-event path and the sync thread. Counters are changed with
    single-statement upserts that increment in place; nothing here reads a
    row, modifies it in Python and writes it back.
    """

    def __init__(self, db_file: Path):
        self._db_file = Path(db_file)
        self._db_file.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._db_file

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_file, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _connection(self):
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS monitored_apps (
                    app_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    daily_limit_minutes INTEGER NOT NULL DEFAULT 60,
                    session_limit_minutes INTEGER NOT NULL DEFAULT 15,
                    enabled INTEGER NOT NULL DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS daily_usage (
                    app_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    total_foreground_minutes INTEGER NOT NULL DEFAULT 0,
                    blocked_attempts INTEGER NOT NULL DEFAULT 0,
                    challenges_solved INTEGER NOT NULL DEFAULT 0,
                    challenges_failed INTEGER NOT NULL DEFAULT 0,
                    sessions_completed INTEGER NOT NULL DEFAULT 0,
                    longest_session_minutes INTEGER NOT NULL DEFAULT 0,
                    last_synced_at TEXT,
                    PRIMARY KEY (app_id, day)
                );

                CREATE TABLE IF NOT EXISTS extra_time (
                    app_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    earned_minutes INTEGER NOT NULL DEFAULT 0,
                    used_minutes INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (app_id, day)
                );

                CREATE TABLE IF NOT EXISTS challenges (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    app_id TEXT NOT NULL,
                    question TEXT NOT NULL,
                    correct_answer INTEGER NOT NULL,
                    user_answer INTEGER,
                    is_correct INTEGER NOT NULL DEFAULT 0,
                    difficulty_level INTEGER NOT NULL,
                    solve_seconds INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    minutes_awarded INTEGER NOT NULL DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_challenges_app_created
                ON challenges(app_id, created_at);

                CREATE TABLE IF NOT EXISTS usage_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    app_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    ended_at TEXT NOT NULL,
                    duration_minutes INTEGER NOT NULL,
                    challenges_completed INTEGER NOT NULL DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_usage_sessions_app_day
                ON usage_sessions(app_id, day);

                CREATE TABLE IF NOT EXISTS app_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            conn.commit()

    # Monitored apps

    def upsert_monitored_app(self, app: MonitoredApp) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO monitored_apps(
                    app_id, name, daily_limit_minutes, session_limit_minutes, enabled
                )
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(app_id) DO UPDATE SET
                    name = excluded.name,
                    daily_limit_minutes = excluded.daily_limit_minutes,
                    session_limit_minutes = excluded.session_limit_minutes,
                    enabled = excluded.enabled
                """,
                (
                    app.app_id,
                    app.name or "",
                    int(app.daily_limit_minutes),
                    int(app.session_limit_minutes),
                    1 if app.enabled else 0,
                ),
            )
            conn.commit()

    def get_monitored_app(self, app_id: str) -> MonitoredApp | None:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT app_id, name, daily_limit_minutes, session_limit_minutes, enabled
                FROM monitored_apps
                WHERE app_id = ?
                """,
                (app_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_app(row)

    def list_monitored_apps(self, enabled_only: bool = False) -> list[MonitoredApp]:
        query = """
            SELECT app_id, name, daily_limit_minutes, session_limit_minutes, enabled
            FROM monitored_apps
        """
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY app_id ASC"
        with self._connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_app(row) for row in rows]

    def set_app_enabled(self, app_id: str, enabled: bool) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE monitored_apps SET enabled = ? WHERE app_id = ?",
                (1 if enabled else 0, app_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def remove_monitored_app(self, app_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM monitored_apps WHERE app_id = ?", (app_id,))
            conn.commit()
            return cursor.rowcount > 0

    # Extra-time ledger

    def get_extra_time(self, app_id: str, day: date) -> ExtraTimeLedgerEntry | None:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT app_id, day, earned_minutes, used_minutes
                FROM extra_time
                WHERE app_id = ? AND day = ?
                """,
                (app_id, day.isoformat()),
            ).fetchone()
        if row is None:
            return None
        return ExtraTimeLedgerEntry(
            app_id=str(row["app_id"]),
            day=date.fromisoformat(str(row["day"])),
            earned_minutes=int(row["earned_minutes"]),
            used_minutes=int(row["used_minutes"]),
        )

    def add_extra_earned(self, app_id: str, day: date, minutes: int) -> None:
        now = datetime.now().astimezone().isoformat()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO extra_time(app_id, day, earned_minutes, used_minutes, updated_at)
                VALUES (?, ?, ?, 0, ?)
                ON CONFLICT(app_id, day) DO UPDATE SET
                    earned_minutes = extra_time.earned_minutes + excluded.earned_minutes,
                    updated_at = excluded.updated_at
                """,
                (app_id, day.isoformat(), int(minutes), now),
            )
            conn.commit()

    def add_extra_used(self, app_id: str, day: date, minutes: int) -> bool:
        now = datetime.now().astimezone().isoformat()
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE extra_time
                SET used_minutes = used_minutes + ?, updated_at = ?
                WHERE app_id = ? AND day = ?
                """,
                (int(minutes), now, app_id, day.isoformat()),
            )
            conn.commit()
            return cursor.rowcount > 0

    # Daily usage

    def get_daily_record(self, app_id: str, day: date) -> DailyUsageRecord | None:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM daily_usage
                WHERE app_id = ? AND day = ?
                """,
                (app_id, day.isoformat()),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_daily(row)

    def daily_records(self, day: date) -> list[DailyUsageRecord]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM daily_usage WHERE day = ? ORDER BY app_id ASC",
                (day.isoformat(),),
            ).fetchall()
        return [self._row_to_daily(row) for row in rows]

    def increment_daily_counter(self, app_id: str, day: date, counter: str, amount: int = 1) -> None:
        if counter not in DAILY_COUNTERS:
            raise ValueError(f"Unknown daily counter: {counter}")
        with self._connection() as conn:
            conn.execute(
                f"""
                INSERT INTO daily_usage(app_id, day, {counter})
                VALUES (?, ?, ?)
                ON CONFLICT(app_id, day) DO UPDATE SET
                    {counter} = daily_usage.{counter} + excluded.{counter}
                """,
                (app_id, day.isoformat(), int(amount)),
            )
            conn.commit()

    def reconcile_daily_usage(
        self,
        app_id: str,
        day: date,
        minutes: int,
        synced_at: datetime,
    ) -> bool:
        """Store the telemetry total for the day. Returns False when nothing changed."""
        params = (app_id, day.isoformat(), int(minutes), synced_at.isoformat())
        with self._connection() as conn:
            before = conn.total_changes
            if minutes > 0:
                conn.execute(
                    """
                    INSERT INTO daily_usage(app_id, day, total_foreground_minutes, last_synced_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(app_id, day) DO UPDATE SET
                        total_foreground_minutes = excluded.total_foreground_minutes,
                        last_synced_at = excluded.last_synced_at
                    WHERE daily_usage.total_foreground_minutes != excluded.total_foreground_minutes
                    """,
                    params,
                )
            else:
                # No record is created for a day without usage.
                conn.execute(
                    """
                    UPDATE daily_usage
                    SET total_foreground_minutes = 0, last_synced_at = ?
                    WHERE app_id = ? AND day = ? AND total_foreground_minutes != 0
                    """,
                    (synced_at.isoformat(), app_id, day.isoformat()),
                )
            changed = conn.total_changes - before
            conn.commit()
        return changed > 0

    # Usage sessions

    def record_usage_session(self, session: UsageSession) -> int:
        day = session.day.isoformat()
        duration = int(session.duration_minutes)
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO usage_sessions(
                    app_id, day, started_at, ended_at, duration_minutes, challenges_completed
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session.app_id,
                    day,
                    session.started_at.isoformat(),
                    session.ended_at.isoformat(),
                    duration,
                    int(session.challenges_completed),
                ),
            )
            conn.execute(
                """
                INSERT INTO daily_usage(
                    app_id, day, total_foreground_minutes, sessions_completed, longest_session_minutes
                )
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(app_id, day) DO UPDATE SET
                    total_foreground_minutes =
                        daily_usage.total_foreground_minutes + excluded.total_foreground_minutes,
                    sessions_completed = daily_usage.sessions_completed + 1,
                    longest_session_minutes =
                        MAX(daily_usage.longest_session_minutes, excluded.longest_session_minutes)
                """,
                (session.app_id, day, duration, duration),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def sessions_for_day(self, app_id: str, day: date) -> list[UsageSession]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT app_id, day, started_at, ended_at, duration_minutes, challenges_completed
                FROM usage_sessions
                WHERE app_id = ? AND day = ?
                ORDER BY started_at ASC, id ASC
                """,
                (app_id, day.isoformat()),
            ).fetchall()
        return [
            UsageSession(
                app_id=str(row["app_id"]),
                day=date.fromisoformat(str(row["day"])),
                started_at=datetime.fromisoformat(str(row["started_at"])),
                ended_at=datetime.fromisoformat(str(row["ended_at"])),
                duration_minutes=int(row["duration_minutes"]),
                challenges_completed=int(row["challenges_completed"]),
            )
            for row in rows
        ]

    def usage_minutes_between(self, app_id: str, start: datetime, end: datetime) -> int:
        """Whole minutes of stored sessions that fall inside ``[start, end)``.

        A session crossing a window edge counts only the part inside the window.
        """
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT started_at, ended_at, duration_minutes
                FROM usage_sessions
                WHERE app_id = ? AND started_at < ? AND ended_at > ?
                """,
                (app_id, end.isoformat(), start.isoformat()),
            ).fetchall()

        total = 0
        for row in rows:
            started_at = datetime.fromisoformat(str(row["started_at"]))
            ended_at = datetime.fromisoformat(str(row["ended_at"]))
            if started_at >= start and ended_at <= end:
                total += int(row["duration_minutes"])
                continue
            seconds = (min(ended_at, end) - max(started_at, start)).total_seconds()
            if seconds > 0:
                total += int(seconds // 60)
        return total

    # Challenges

    def insert_challenge(self, challenge: Challenge) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO challenges(
                    app_id,
                    question,
                    correct_answer,
                    user_answer,
                    is_correct,
                    difficulty_level,
                    solve_seconds,
                    created_at,
                    minutes_awarded
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    challenge.app_id,
                    challenge.question_text,
                    int(challenge.correct_answer),
                    challenge.user_answer,
                    1 if challenge.is_correct else 0,
                    int(challenge.difficulty_level),
                    int(challenge.solve_seconds),
                    challenge.timestamp.isoformat(),
                    int(challenge.minutes_awarded),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def recent_challenges(self, app_id: str, limit: int = 10) -> list[Challenge]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM challenges
                WHERE app_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (app_id, int(limit)),
            ).fetchall()
        return [self._row_to_challenge(row) for row in rows]

    def correct_challenge_count(self, app_id: str, since: datetime) -> int:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total
                FROM challenges
                WHERE app_id = ? AND created_at >= ? AND is_correct = 1
                """,
                (app_id, since.isoformat()),
            ).fetchone()
        return int(row["total"]) if row is not None else 0

    def average_difficulty(self, app_id: str, since: datetime) -> float | None:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT AVG(difficulty_level) AS average
                FROM challenges
                WHERE app_id = ? AND created_at >= ? AND is_correct = 1
                """,
                (app_id, since.isoformat()),
            ).fetchone()
        if row is None or row["average"] is None:
            return None
        return float(row["average"])

    # Settings

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM app_settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def set_setting(self, key: str, value: str) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO app_settings(key, value)
                VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            conn.commit()

    # Retention

    def purge_before(self, cutoff: date) -> int:
        cutoff_day = cutoff.isoformat()
        removed = 0
        with self._connection() as conn:
            for table in ("daily_usage", "extra_time", "usage_sessions"):
                cursor = conn.execute(f"DELETE FROM {table} WHERE day < ?", (cutoff_day,))
                removed += max(0, cursor.rowcount)
            cursor = conn.execute(
                "DELETE FROM challenges WHERE substr(created_at, 1, 10) < ?",
                (cutoff_day,),
            )
            removed += max(0, cursor.rowcount)
            conn.commit()
        return removed

    @staticmethod
    def _row_to_app(row: sqlite3.Row) -> MonitoredApp:
        return MonitoredApp(
            app_id=str(row["app_id"]),
            name=str(row["name"]),
            daily_limit_minutes=int(row["daily_limit_minutes"]),
            session_limit_minutes=int(row["session_limit_minutes"]),
            enabled=bool(row["enabled"]),
        )

    @staticmethod
    def _row_to_daily(row: sqlite3.Row) -> DailyUsageRecord:
        synced = row["last_synced_at"]
        try:
            last_synced_at = datetime.fromisoformat(str(synced)) if synced else None
        except ValueError:
            last_synced_at = None

        return DailyUsageRecord(
            app_id=str(row["app_id"]),
            day=date.fromisoformat(str(row["day"])),
            total_foreground_minutes=int(row["total_foreground_minutes"]),
            blocked_attempts=int(row["blocked_attempts"]),
            challenges_solved=int(row["challenges_solved"]),
            challenges_failed=int(row["challenges_failed"]),
            sessions_completed=int(row["sessions_completed"]),
            longest_session_minutes=int(row["longest_session_minutes"]),
            last_synced_at=last_synced_at,
        )

    @staticmethod
    def _row_to_challenge(row: sqlite3.Row) -> Challenge:
        user_answer = row["user_answer"]
        return Challenge(
            app_id=str(row["app_id"]),
            question_text=str(row["question"]),
            correct_answer=int(row["correct_answer"]),
            difficulty_level=int(row["difficulty_level"]),
            timestamp=datetime.fromisoformat(str(row["created_at"])),
            user_answer=int(user_answer) if user_answer is not None else None,
            is_correct=bool(row["is_correct"]),
            solve_seconds=int(row["solve_seconds"]),
            minutes_awarded=int(row["minutes_awarded"]),
        )
