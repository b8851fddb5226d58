from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime

from .models import ActiveSession, UsageSession

logger = logging.getLogger(__name__)


class SessionTracker:
    """In-memory registry of running sessions, one per app id.

    All reads and writes go through a single lock. Sessions are immutable;
    every change swaps in a new value.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, ActiveSession] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, app_id: object) -> bool:
        with self._lock:
            return app_id in self._sessions

    def get(self, app_id: str) -> ActiveSession | None:
        with self._lock:
            return self._sessions.get(app_id)

    def snapshot(self) -> dict[str, ActiveSession]:
        with self._lock:
            return dict(self._sessions)

    def start(self, app_id: str, now: datetime) -> ActiveSession:
        with self._lock:
            existing = self._sessions.get(app_id)
            if existing is not None:
                return existing
            session = ActiveSession(app_id=app_id, started_at=now)
            self._sessions[app_id] = session
        logger.info(f"session start app={app_id}")
        return session

    def record_challenge_solved(self, app_id: str, now: datetime) -> ActiveSession:
        with self._lock:
            current = self._sessions.get(app_id) or ActiveSession(app_id=app_id, started_at=now)
            updated = replace(
                current,
                challenges_solved_in_session=current.challenges_solved_in_session + 1,
                last_challenge_at=now,
            )
            self._sessions[app_id] = updated
        return updated

    def end(self, app_id: str, now: datetime) -> UsageSession | None:
        with self._lock:
            session = self._sessions.pop(app_id, None)
        if session is None:
            return None
        return self._close(session, now)

    def end_all(self, now: datetime) -> dict[str, UsageSession]:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        ended: dict[str, UsageSession] = {}
        for session in sessions:
            closed = self._close(session, now)
            if closed is not None:
                ended[session.app_id] = closed
        return ended

    @staticmethod
    def _close(session: ActiveSession, now: datetime) -> UsageSession | None:
        seconds = (now - session.started_at).total_seconds()
        if seconds < 0:
            logger.warning(
                f"session end app={session.app_id} before its start ({seconds:.0f}s), discarded"
            )
            return None

        duration_minutes = int(seconds // 60)
        logger.info(f"session end app={session.app_id} duration={duration_minutes}min")
        if duration_minutes <= 0:
            return None

        return UsageSession(
            app_id=session.app_id,
            day=session.started_at.date(),
            started_at=session.started_at,
            ended_at=now,
            duration_minutes=duration_minutes,
            challenges_completed=session.challenges_solved_in_session,
        )
