"""
autoledger - Command line interface

Usage:
    autoledger init-db [--reset]
    autoledger serve [--host 127.0.0.1] [--port 5001] [--no-scheduler]
    autoledger run-scheduler [--interval 60]
    autoledger tick [--at "2025-01-15 09:00"]
"""

import argparse
import datetime
import sys
import time

from autoledger.config import get_settings
from autoledger.database import Database
from autoledger.log import configure_logging
from autoledger.schema import create_database, reset_database, verify_schema


def _engine(settings):
    from autoledger.engine import LedgerEngine
    return LedgerEngine(Database.from_settings(settings), settings=settings)


def _scheduler(engine, settings, interval=None):
    from autoledger.scheduler import Scheduler
    return Scheduler(
        engine,
        interval=interval or settings.scheduler_interval,
        balance_check_time=settings.balance_check_time,
    )


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_init_db(args, settings):
    db = Database.from_settings(settings)
    if args.reset:
        reset_database(db)
    else:
        create_database(db)

    missing = verify_schema(db)
    if missing:
        print(f"[ERROR] Missing tables: {', '.join(missing)}")
        return 1
    print("[OK] Database ready")
    return 0


def cmd_serve(args, settings):
    from autoledger.api import create_app

    engine = _engine(settings)
    scheduler = None if args.no_scheduler else _scheduler(engine, settings)
    app = create_app(engine, scheduler)

    if scheduler is not None:
        scheduler.start()
    try:
        app.run(host=args.host, port=args.port, debug=False, use_reloader=False)
    finally:
        if scheduler is not None:
            scheduler.stop()
    return 0


def cmd_run_scheduler(args, settings):
    scheduler = _scheduler(_engine(settings), settings, args.interval)
    scheduler.start()
    print(f"Scheduler running every {scheduler.interval:g}s. Press Ctrl+C to stop.")
    try:
        while scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        print()
    finally:
        scheduler.stop()
    return 0


def cmd_tick(args, settings):
    now = None
    if args.at:
        try:
            now = datetime.datetime.strptime(args.at, "%Y-%m-%d %H:%M")
        except ValueError:
            print("Invalid --at value. Use 'YYYY-MM-DD HH:MM'.")
            return 2

    outcome = _scheduler(_engine(settings), settings).tick(now)
    executed = outcome['executed']
    failed = [r for r in executed if not r.success]

    print(f"Executed plans: {len(executed)} ({len(failed)} failed)")
    for result in failed:
        print(f"  - plan {result.record.plan_id}: {result.error}")
    print(f"Insufficient balance reminders: {len(outcome['reminders'])}")
    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================

def build_parser():
    parser = argparse.ArgumentParser(prog="autoledger", description="Personal finance ledger engine")
    commands = parser.add_subparsers(dest="command", required=True)

    init_db = commands.add_parser("init-db", help="Create the database tables")
    init_db.add_argument("--reset", action="store_true", help="Drop and recreate every table")
    init_db.set_defaults(handler=cmd_init_db)

    serve = commands.add_parser("serve", help="Run the REST API (and the scheduler)")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5001)
    serve.add_argument("--no-scheduler", action="store_true", help="Do not execute plans in this process")
    serve.set_defaults(handler=cmd_serve)

    run_scheduler = commands.add_parser("run-scheduler", help="Run the plan scheduler in the foreground")
    run_scheduler.add_argument("--interval", type=float, help="Seconds between ticks")
    run_scheduler.set_defaults(handler=cmd_run_scheduler)

    tick = commands.add_parser("tick", help="Run one scheduler pass and exit")
    tick.add_argument("--at", help="Pretend the current time is 'YYYY-MM-DD HH:MM'")
    tick.set_defaults(handler=cmd_tick)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    return args.handler(args, settings)


if __name__ == "__main__":
    sys.exit(main())
