from __future__ import annotations

import argparse
import logging
import threading
from dataclasses import replace
from pathlib import Path

from . import __version__
from .config import load_settings, save_settings
from .database import FocusGuardDatabase
from .engine import FocusGuardEngine
from .foreground import ForegroundWatcher, foreground_supported
from .logging_setup import setup_logger
from .models import AccessDecision, MonitoredApp
from .paths import database_path, ensure_directories

logger = logging.getLogger(__name__)


def _open_engine(db_file: Path | None) -> FocusGuardEngine:
    ensure_directories()
    db = FocusGuardDatabase(db_file or database_path())
    return FocusGuardEngine(db, settings=load_settings(db))


def _apps_cli(engine: FocusGuardEngine, args: argparse.Namespace) -> int:
    db = engine.db
    if args.apps_command == "add":
        existing = db.get_monitored_app(args.app_id) or MonitoredApp(app_id=args.app_id)
        app = replace(
            existing,
            name=args.name if args.name is not None else existing.name,
            daily_limit_minutes=args.daily if args.daily is not None else existing.daily_limit_minutes,
            session_limit_minutes=args.session if args.session is not None else existing.session_limit_minutes,
        )
        db.upsert_monitored_app(app)
        print(f"monitoring {app.app_id} daily={app.daily_limit_minutes}m session={app.session_limit_minutes}m")
        return 0

    if args.apps_command in {"enable", "disable"}:
        if not db.set_app_enabled(args.app_id, args.apps_command == "enable"):
            print(f"unknown app: {args.app_id}")
            return 1
        print(f"{args.app_id} {args.apps_command}d")
        return 0

    if args.apps_command == "remove":
        if not db.remove_monitored_app(args.app_id):
            print(f"unknown app: {args.app_id}")
            return 1
        print(f"removed {args.app_id}")
        return 0

    apps = db.list_monitored_apps()
    if not apps:
        print("no monitored apps")
    for app in apps:
        state = "on" if app.enabled else "off"
        print(
            f"{app.app_id:<24} {state:<3} daily={app.daily_limit_minutes}m "
            f"session={app.session_limit_minutes}m {app.name}"
        )
    return 0


def _describe(decision: AccessDecision) -> str:
    if decision.allowed:
        if not decision.monitored:
            return decision.reason
        return f"allowed, {decision.minutes_remaining}m left"
    return f"blocked: {decision.reason} (challenge level {decision.difficulty})"


def _status_cli(engine: FocusGuardEngine, app_id: str | None) -> int:
    now = engine.clock()
    apps = engine.db.list_monitored_apps()
    if app_id is not None:
        apps = [app for app in apps if app.app_id == app_id]
        if not apps:
            print(f"unknown app: {app_id}")
            return 1

    for app in apps:
        reading = engine.decisions.usage_today(app.app_id, now)
        entry = engine.ledger.entry(app.app_id, now.date())
        record = engine.db.get_daily_record(app.app_id, now.date())
        blocked = record.blocked_attempts if record else 0
        if app.enabled:
            summary = _describe(engine.decisions.decide_access(app.app_id, now, record_attempt=False))
        else:
            summary = "monitoring disabled"
        telemetry = "" if reading.available else " (usage unavailable)"
        print(
            f"{app.app_id}: used={reading.minutes}m{telemetry} limit={app.daily_limit_minutes}m "
            f"extra={entry.remaining}m (earned {entry.earned_minutes}, used {entry.used_minutes}) "
            f"blocked={blocked} -> {summary}"
        )
    return 0


def _sync_cli(engine: FocusGuardEngine) -> int:
    report = engine.force_sync()
    print(
        f"records_written={report.writes} sessions_closed={len(report.sessions_closed)} "
        f"skipped={len(report.skipped_apps)}"
    )
    return 0


def _settings_cli(engine: FocusGuardEngine, args: argparse.Namespace) -> int:
    settings = engine.settings
    changes = {}
    if args.difficulty is not None:
        changes["challenge_difficulty"] = args.difficulty
    if args.time_earned is not None:
        changes["default_time_earned"] = args.time_earned
    if changes:
        try:
            settings = replace(settings, **changes)
        except ValueError as exc:
            print(f"invalid setting: {exc}")
            return 1
        save_settings(engine.db, settings)

    print(
        f"challenge_difficulty={settings.challenge_difficulty} "
        f"default_time_earned={settings.default_time_earned} "
        f"usage_sync_interval={settings.usage_sync_interval_seconds:g}s "
        f"session_check_interval={settings.session_check_interval_seconds:g}s"
    )
    return 0


def _run_cli(engine: FocusGuardEngine) -> int:
    if not foreground_supported():
        print("foreground tracking is only available on Windows; running sync only")

    def on_blocked(app_id: str, decision: AccessDecision) -> None:
        print(f"{app_id}: {_describe(decision)}")

    watcher = ForegroundWatcher(engine.on_foreground, clock=engine.clock, on_blocked=on_blocked)
    engine.start()
    if foreground_supported():
        watcher.start(engine.settings.poll_interval_seconds)
    logger.info("focusguard running")
    print("focusguard running, press Ctrl+C to stop")

    stop = threading.Event()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        print("stopping")
    finally:
        watcher.stop()
        ended = engine.shutdown()
        logger.info(f"focusguard stopped, {len(ended)} session(s) recorded")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="focusguard")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--db", type=Path, default=None, help="Database file to use")
    parser.add_argument("--verbose", action="store_true", help="Also log to the console")
    commands = parser.add_subparsers(dest="command")

    apps = commands.add_parser("apps", help="Manage monitored apps")
    apps_commands = apps.add_subparsers(dest="apps_command")
    apps_commands.add_parser("list", help="List monitored apps")
    add = apps_commands.add_parser("add", help="Monitor an app or update its limits")
    add.add_argument("app_id")
    add.add_argument("--name", default=None)
    add.add_argument("--daily", type=int, default=None, help="Daily limit in minutes")
    add.add_argument("--session", type=int, default=None, help="Session limit in minutes")
    for name in ("enable", "disable", "remove"):
        apps_commands.add_parser(name).add_argument("app_id")

    status = commands.add_parser("status", help="Show today's usage and access state")
    status.add_argument("app_id", nargs="?", default=None)

    commands.add_parser("sync", help="Reconcile usage now")

    settings = commands.add_parser("settings", help="Show or change challenge settings")
    settings.add_argument("--difficulty", type=int, default=None)
    settings.add_argument("--time-earned", type=int, default=None)

    commands.add_parser("run", help="Track the foreground app until interrupted")

    args = parser.parse_args(argv)
    if args.version:
        print(__version__)
        return 0

    setup_logger(level=logging.DEBUG if args.verbose else logging.INFO, console=args.verbose)
    engine = _open_engine(args.db)

    if args.command == "apps":
        return _apps_cli(engine, args)
    if args.command == "status":
        return _status_cli(engine, args.app_id)
    if args.command == "sync":
        return _sync_cli(engine)
    if args.command == "settings":
        return _settings_cli(engine, args)
    if args.command == "run":
        return _run_cli(engine)

    parser.print_help()
    return 0
