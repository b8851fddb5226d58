from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime


@dataclass(frozen=True)
class MonitoredApp:
    app_id: str
    name: str = ""
    daily_limit_minutes: int = 60
    session_limit_minutes: int = 15
    enabled: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.app_id


@dataclass(frozen=True)
class DailyUsageRecord:
    app_id: str
    day: date
    total_foreground_minutes: int = 0
    blocked_attempts: int = 0
    challenges_solved: int = 0
    challenges_failed: int = 0
    sessions_completed: int = 0
    longest_session_minutes: int = 0
    last_synced_at: datetime | None = None


@dataclass(frozen=True)
class ExtraTimeLedgerEntry:
    app_id: str
    day: date
    earned_minutes: int = 0
    used_minutes: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.earned_minutes - self.used_minutes)


@dataclass(frozen=True)
class ActiveSession:
    app_id: str
    started_at: datetime
    challenges_solved_in_session: int = 0
    last_challenge_at: datetime | None = None

    def elapsed_minutes(self, now: datetime) -> int:
        seconds = (now - self.started_at).total_seconds()
        if seconds <= 0:
            return 0
        return int(seconds // 60)


@dataclass(frozen=True)
class UsageSession:
    app_id: str
    day: date
    started_at: datetime
    ended_at: datetime
    duration_minutes: int
    challenges_completed: int = 0


@dataclass(frozen=True)
class Challenge:
    app_id: str
    question_text: str
    correct_answer: int
    difficulty_level: int
    timestamp: datetime
    user_answer: int | None = None
    is_correct: bool = False
    solve_seconds: int = 0
    minutes_awarded: int = 0


@dataclass(frozen=True)
class SubmitResult:
    correct: bool
    minutes_awarded: int


@dataclass(frozen=True)
class Allowed:
    minutes_remaining: int | None = None
    monitored: bool = True
    telemetry_available: bool = True

    allowed = True
    requires_challenge = False
    difficulty = 0

    @property
    def reason(self) -> str:
        if not self.monitored:
            return "App not monitored"
        return "Access granted"


@dataclass(frozen=True)
class BlockedDailyLimit:
    daily_limit_minutes: int
    used_minutes: int
    effective_limit_minutes: int
    difficulty: int
    telemetry_available: bool = True

    allowed = False
    requires_challenge = True
    minutes_remaining = 0

    @property
    def reason(self) -> str:
        return f"Daily limit of {self.daily_limit_minutes} minutes exceeded"


@dataclass(frozen=True)
class BlockedSessionLimit:
    session_limit_minutes: int
    session_minutes: int
    minutes_remaining: int
    difficulty: int
    telemetry_available: bool = True

    allowed = False
    requires_challenge = True

    @property
    def reason(self) -> str:
        return f"Session limit of {self.session_limit_minutes} minutes exceeded"


AccessDecision = Allowed | BlockedDailyLimit | BlockedSessionLimit
