from __future__ import annotations

import ctypes
import logging
import sys
import threading
import time
from datetime import datetime
from typing import Callable

import psutil

from .models import AccessDecision

logger = logging.getLogger(__name__)

ForegroundProbe = Callable[[], str | None]
BlockedCallback = Callable[[str, AccessDecision], None]


def foreground_supported() -> bool:
    return sys.platform == "win32"


def normalize_process_name(name: str | None) -> str | None:
    if not name:
        return None
    value = name.strip().lower()
    if value.endswith(".exe"):
        value = value[:-4]
    return value or None


def foreground_pid() -> int | None:
    if not foreground_supported():
        return None
    user32 = ctypes.windll.user32
    hwnd = user32.GetForegroundWindow()
    if not hwnd:
        return None
    pid = ctypes.c_ulong(0)
    user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
    return pid.value or None


def process_name(pid: int | None) -> str | None:
    if not pid:
        return None
    try:
        return psutil.Process(pid).name()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None


def foreground_app_id() -> str | None:
    return normalize_process_name(process_name(foreground_pid()))


class ForegroundWatcher:
    """Polls the foreground app and reports switches to the engine."""

    def __init__(
        self,
        on_foreground: Callable[[str | None, datetime], AccessDecision | None],
        probe: ForegroundProbe = foreground_app_id,
        clock: Callable[[], datetime] | None = None,
        on_blocked: BlockedCallback | None = None,
    ):
        self._on_foreground = on_foreground
        self._probe = probe
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._on_blocked = on_blocked
        self._interval_seconds = 1.0
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._last_seen: str | None = None
        self._has_seen = False

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval_seconds: float = 1.0) -> bool:
        with self._lock:
            if self.is_running:
                return False

            self._interval_seconds = max(0.1, float(interval_seconds))
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_poll_loop,
                name="focusguard-foreground",
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

        with self._lock:
            if self._thread is thread:
                self._thread = None

    def poll_once(self) -> AccessDecision | None:
        app_id = self._probe()
        if self._has_seen and app_id == self._last_seen:
            return None
        self._has_seen = True
        self._last_seen = app_id

        decision = self._on_foreground(app_id, self._clock())
        if app_id is not None and decision is not None and not decision.allowed:
            callback = self._on_blocked
            if callback is not None:
                callback(app_id, decision)
        return decision

    def _run_poll_loop(self) -> None:
        next_due = time.monotonic()

        while not self._stop_event.is_set():
            now = time.monotonic()
            if now < next_due:
                if self._stop_event.wait(next_due - now):
                    break

            try:
                self.poll_once()
            except Exception:  # noqa: BLE001
                logger.exception("foreground poll failed")

            next_due = max(next_due + self._interval_seconds, time.monotonic() + 0.05)
