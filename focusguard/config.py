from __future__ import annotations

from dataclasses import dataclass, fields

from .challenges import MAX_DIFFICULTY, MIN_DIFFICULTY
from .database import FocusGuardDatabase

MIN_REWARD_MINUTES = 5
REWARD_DECAY_MINUTES = 2


@dataclass(frozen=True)
class EngineSettings:
    challenge_difficulty: int = 2
    default_time_earned: int = 10
    debounce_seconds: float = 1.0
    usage_sync_interval_seconds: float = 30.0
    session_check_interval_seconds: float = 5.0
    poll_interval_seconds: float = 1.0

    def __post_init__(self) -> None:
        if not MIN_DIFFICULTY <= self.challenge_difficulty <= MAX_DIFFICULTY:
            raise ValueError(
                f"challenge_difficulty must be between {MIN_DIFFICULTY} and {MAX_DIFFICULTY}"
            )
        if self.default_time_earned < 0:
            raise ValueError("default_time_earned must not be negative")
        for name in (
            "debounce_seconds",
            "usage_sync_interval_seconds",
            "session_check_interval_seconds",
            "poll_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


def load_settings(db: FocusGuardDatabase) -> EngineSettings:
    defaults = EngineSettings()
    values = {}
    for field in fields(EngineSettings):
        raw = db.get_setting(field.name)
        if raw is None:
            continue
        default = getattr(defaults, field.name)
        try:
            value = type(default)(raw)
        except ValueError:
            continue
        values[field.name] = value

    try:
        return EngineSettings(**values)
    except ValueError:
        return _keep_valid(values)


def save_settings(db: FocusGuardDatabase, settings: EngineSettings) -> None:
    for field in fields(EngineSettings):
        db.set_setting(field.name, str(getattr(settings, field.name)))


def _keep_valid(values: dict) -> EngineSettings:
    kept = {}
    for name, value in values.items():
        try:
            EngineSettings(**{**kept, name: value})
        except ValueError:
            continue
        kept[name] = value
    return EngineSettings(**kept)
