from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol

from .database import FocusGuardDatabase
from .sessions import SessionTracker


@dataclass(frozen=True)
class TelemetryReading:
    minutes: int
    available: bool = True


UNAVAILABLE = TelemetryReading(minutes=0, available=False)


class TelemetryOracle(Protocol):
    def foreground_minutes(self, app_id: str, day_start: datetime, day_end: datetime) -> TelemetryReading:
        ...


class RecordedUsageTelemetry:
    """Foreground minutes computed from the stored usage sessions.

    When a tracker is attached, the whole minutes of the app's running session
    are added, clipped to the requested window, so limits are enforced during
    continuous use and not only after the session closes.
    """

    def __init__(
        self,
        db: FocusGuardDatabase,
        tracker: SessionTracker | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._db = db
        self._tracker = tracker
        self._clock = clock or (lambda: datetime.now().astimezone())

    def foreground_minutes(self, app_id: str, day_start: datetime, day_end: datetime) -> TelemetryReading:
        total = self._db.usage_minutes_between(app_id, day_start, day_end)

        if self._tracker is not None:
            session = self._tracker.get(app_id)
            if session is not None:
                start = max(session.started_at, day_start)
                end = min(self._clock(), day_end)
                seconds = (end - start).total_seconds()
                if seconds > 0:
                    total += int(seconds // 60)

        return TelemetryReading(minutes=total)


class StaticTelemetry:
    """In-memory readings keyed by app id."""

    def __init__(self, readings: dict[str, int] | None = None, available: bool = True):
        self._readings = dict(readings or {})
        self._available = available

    def set_minutes(self, app_id: str, minutes: int) -> None:
        self._readings[app_id] = int(minutes)

    def foreground_minutes(self, app_id: str, day_start: datetime, day_end: datetime) -> TelemetryReading:
        if not self._available:
            return UNAVAILABLE
        return TelemetryReading(minutes=int(self._readings.get(app_id, 0)))
