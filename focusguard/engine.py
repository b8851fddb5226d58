from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Callable

from .challenges import ChallengeGenerator, clamp_difficulty, parse_answer
from .config import MIN_REWARD_MINUTES, REWARD_DECAY_MINUTES, EngineSettings
from .database import FocusGuardDatabase
from .ledger import UsageLedger
from .models import (
    AccessDecision,
    Allowed,
    BlockedDailyLimit,
    BlockedSessionLimit,
    Challenge,
    MonitoredApp,
    SubmitResult,
    UsageSession,
)
from .sessions import SessionTracker
from .sync import SyncReport, SyncScheduler
from .telemetry import UNAVAILABLE, RecordedUsageTelemetry, TelemetryOracle, TelemetryReading

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def local_now() -> datetime:
    return datetime.now().astimezone()


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


class AccessDecisionEngine:
    """Decides whether a monitored app may run and how much a solved challenge is worth."""

    def __init__(
        self,
        db: FocusGuardDatabase,
        ledger: UsageLedger,
        telemetry: TelemetryOracle,
        tracker: SessionTracker,
        settings: EngineSettings,
    ):
        self._db = db
        self._ledger = ledger
        self._telemetry = telemetry
        self._tracker = tracker
        self.settings = settings

    def monitored_app(self, app_id: str) -> MonitoredApp | None:
        try:
            app = self._db.get_monitored_app(app_id)
        except sqlite3.Error:
            logger.exception(f"monitored app lookup failed app={app_id}, treating as unmonitored")
            return None
        if app is None or not app.enabled:
            return None
        return app

    def usage_today(self, app_id: str, now: datetime) -> TelemetryReading:
        day_start, day_end = day_bounds(now)
        try:
            reading = self._telemetry.foreground_minutes(app_id, day_start, day_end)
        except Exception:  # noqa: BLE001
            logger.exception(f"telemetry read failed app={app_id}, assuming no usage")
            return UNAVAILABLE
        if not reading.available:
            logger.warning(f"telemetry unavailable app={app_id}, assuming no usage")
            return UNAVAILABLE
        return reading

    def remaining_extra(self, app_id: str, day: date) -> int:
        try:
            return self._ledger.remaining(app_id, day)
        except sqlite3.Error:
            logger.exception(f"ledger read failed app={app_id}, treating as empty")
            return 0

    def escalated_difficulty(self, app_id: str) -> int:
        base = clamp_difficulty(self.settings.challenge_difficulty)
        session = self._tracker.get(app_id)
        if session is None:
            return base
        return min(5, base + session.challenges_solved_in_session)

    def reward_minutes(self, solved_in_session: int) -> int:
        decayed = self.settings.default_time_earned - (solved_in_session - 1) * REWARD_DECAY_MINUTES
        return max(MIN_REWARD_MINUTES, decayed)

    def is_daily_limit_exceeded(self, app_id: str, now: datetime) -> bool:
        app = self.monitored_app(app_id)
        if app is None:
            return False
        used = self.usage_today(app_id, now).minutes
        effective_limit = app.daily_limit_minutes + self.remaining_extra(app_id, now.date())
        return used >= effective_limit

    def decide_access(self, app_id: str, now: datetime, record_attempt: bool = True) -> AccessDecision:
        """Evaluate access. With ``record_attempt=False`` a daily-limit block is not counted."""
        app = self.monitored_app(app_id)
        if app is None:
            return Allowed(monitored=False)

        reading = self.usage_today(app_id, now)
        used = reading.minutes
        remaining_extra = self.remaining_extra(app_id, now.date())
        effective_limit = app.daily_limit_minutes + remaining_extra

        logger.debug(
            f"access check app={app_id} used={used} limit={app.daily_limit_minutes} "
            f"extra={remaining_extra} effective={effective_limit}"
        )

        if used >= effective_limit:
            if record_attempt:
                self._count_blocked_attempt(app_id, now.date())
            return BlockedDailyLimit(
                daily_limit_minutes=app.daily_limit_minutes,
                used_minutes=used,
                effective_limit_minutes=effective_limit,
                difficulty=self.escalated_difficulty(app_id),
                telemetry_available=reading.available,
            )

        session = self._tracker.get(app_id)
        if session is not None:
            session_minutes = session.elapsed_minutes(now)
            if session_minutes >= app.session_limit_minutes:
                return BlockedSessionLimit(
                    session_limit_minutes=app.session_limit_minutes,
                    session_minutes=session_minutes,
                    minutes_remaining=effective_limit - used,
                    difficulty=self.escalated_difficulty(app_id),
                    telemetry_available=reading.available,
                )

        return Allowed(
            minutes_remaining=effective_limit - used,
            telemetry_available=reading.available,
        )

    def _count_blocked_attempt(self, app_id: str, day: date) -> None:
        try:
            self._db.increment_daily_counter(app_id, day, "blocked_attempts")
        except sqlite3.Error:
            logger.exception(f"blocked attempt not recorded app={app_id}")


class FocusGuardEngine:
    """Entry point used by the foreground observer and the challenge screen."""

    def __init__(
        self,
        db: FocusGuardDatabase,
        telemetry: TelemetryOracle | None = None,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        generator: ChallengeGenerator | None = None,
    ):
        self.db = db
        self.settings = settings or EngineSettings()
        self.clock = clock or local_now
        self.tracker = SessionTracker()
        self.ledger = UsageLedger(db)
        self.telemetry = telemetry or RecordedUsageTelemetry(db, self.tracker, self.clock)
        self.decisions = AccessDecisionEngine(
            db=db,
            ledger=self.ledger,
            telemetry=self.telemetry,
            tracker=self.tracker,
            settings=self.settings,
        )
        self.generator = generator or ChallengeGenerator(clock=self.clock)
        self.scheduler = SyncScheduler(
            db=db,
            telemetry=self.telemetry,
            tracker=self.tracker,
            is_daily_limit_exceeded=self.decisions.is_daily_limit_exceeded,
            end_session=self.end_session,
            clock=self.clock,
            usage_interval_seconds=self.settings.usage_sync_interval_seconds,
            session_interval_seconds=self.settings.session_check_interval_seconds,
        )

        self._dispatch_lock = threading.Lock()
        self._event_lock = threading.Lock()
        self._last_app: str | None = None
        self._last_event_at: datetime | None = None

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> dict[str, UsageSession]:
        self.scheduler.stop()
        return self.end_all_sessions()

    def decide_access(self, app_id: str, now: datetime | None = None) -> AccessDecision:
        decision = self.decisions.decide_access(app_id, now or self.clock())
        if not decision.allowed:
            logger.info(f"blocked app={app_id} reason={decision.reason!r} difficulty={decision.difficulty}")
        return decision

    def new_challenge(self, app_id: str, difficulty: int | None = None) -> Challenge:
        level = difficulty if difficulty is not None else self.decisions.escalated_difficulty(app_id)
        return self.generator.generate(level, app_id)

    def submit_answer(self, app_id: str, challenge: Challenge, answer: int) -> SubmitResult:
        now = self.clock()
        day = now.date()
        correct = answer == challenge.correct_answer

        minutes_awarded = 0
        if correct:
            session = self.tracker.record_challenge_solved(app_id, now)
            minutes_awarded = self.decisions.reward_minutes(session.challenges_solved_in_session)

        finalized = replace(
            challenge,
            user_answer=answer,
            is_correct=correct,
            solve_seconds=max(0, int((now - challenge.timestamp).total_seconds())),
            minutes_awarded=minutes_awarded,
        )
        try:
            self.db.insert_challenge(finalized)
        except sqlite3.Error:
            logger.exception(f"challenge not recorded app={app_id}")

        try:
            if correct:
                self.ledger.add_earned(app_id, day, minutes_awarded)
                self.db.increment_daily_counter(app_id, day, "challenges_solved")
            else:
                self.db.increment_daily_counter(app_id, day, "challenges_failed")
        except sqlite3.Error:
            logger.exception(f"challenge result not stored app={app_id} correct={correct}")

        logger.info(
            f"challenge app={app_id} level={challenge.difficulty_level} "
            f"correct={correct} awarded={minutes_awarded}"
        )
        return SubmitResult(correct=correct, minutes_awarded=minutes_awarded)

    def submit_text_answer(self, app_id: str, challenge: Challenge, text: str) -> SubmitResult:
        return self.submit_answer(app_id, challenge, parse_answer(text))

    def start_session(self, app_id: str, now: datetime | None = None) -> None:
        self.tracker.start(app_id, now or self.clock())

    def end_session(self, app_id: str, now: datetime | None = None) -> UsageSession | None:
        ended = self.tracker.end(app_id, now or self.clock())
        if ended is not None:
            self._store_session(ended)
        return ended

    def end_all_sessions(self, now: datetime | None = None) -> dict[str, UsageSession]:
        ended = self.tracker.end_all(now or self.clock())
        for session in ended.values():
            self._store_session(session)
        return ended

    def active_session_minutes(self, app_id: str, now: datetime | None = None) -> int:
        session = self.tracker.get(app_id)
        if session is None:
            return 0
        return session.elapsed_minutes(now or self.clock())

    def currently_used_app(self) -> str | None:
        with self._event_lock:
            last = self._last_app
        if last is not None and last in self.tracker:
            return last
        return None

    def force_sync(self) -> SyncReport:
        return self.scheduler.run_once()

    def on_foreground(self, app_id: str | None, timestamp: datetime | None = None) -> AccessDecision | None:
        """Handle an app-switch event. ``None`` means no app is in front (home screen, lock).

        Events are handled one at a time.
        """
        now = timestamp or self.clock()
        with self._dispatch_lock:
            with self._event_lock:
                if (
                    app_id == self._last_app
                    and self._last_event_at is not None
                    and (now - self._last_event_at).total_seconds() < self.settings.debounce_seconds
                ):
                    return None
                previous = self._last_app
                self._last_app = app_id
                self._last_event_at = now

            if previous is not None and previous != app_id:
                self.end_session(previous, now)

            if app_id is None:
                self.end_all_sessions(now)
                return None

            decision = self.decide_access(app_id, now)
            if decision.allowed and decision.monitored:
                self.start_session(app_id, now)
            return decision

    def _store_session(self, session: UsageSession) -> None:
        try:
            self.db.record_usage_session(session)
        except sqlite3.Error:
            logger.exception(f"usage session not recorded app={session.app_id}")
