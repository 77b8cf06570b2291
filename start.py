#!/usr/bin/env python3
"""
autoledger - Simple Launcher

This script handles:
1. Python version check (requires 3.9+)
2. Dependency verification
3. Database setup (creates tables if missing)
4. Plan scheduler startup
5. Flask server startup

Usage:
    python start.py
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))


# =============================================================================
# STARTUP CHECKS
# =============================================================================

def check_python_version():
    """Verify Python 3.9+ is installed"""
    print("[1/5] Checking Python version...", end=" ")

    if sys.version_info < (3, 9):
        print("[ERROR]")
        print()
        print("=" * 60)
        print("ERROR: Python 3.9 or higher is required")
        print("=" * 60)
        print(f"You are using Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")
        sys.exit(1)

    print(f"[OK] Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")


def check_dependencies():
    """Verify required packages are installed"""
    print("[2/5] Checking dependencies...", end=" ")

    missing = []
    required = {
        'flask': 'Flask',
        'flask_cors': 'Flask-CORS',
        'mysql.connector': 'mysql-connector-python',
        'dotenv': 'python-dotenv',
        'structlog': 'structlog',
    }

    for module, package in required.items():
        try:
            __import__(module)
        except ImportError:
            missing.append(package)

    if missing:
        print("[ERROR]")
        print()
        print("Missing packages:")
        for pkg in missing:
            print(f"  - {pkg}")
        print()
        print("To install all dependencies, run:")
        print("  pip install -e .")
        sys.exit(1)

    print("[OK]")


def setup_database(settings):
    """Create any missing tables"""
    from autoledger.database import Database
    from autoledger.schema import create_database, verify_schema

    print("[3/5] Checking database...", end=" ")
    db = Database.from_settings(settings)
    missing = verify_schema(db)
    if missing:
        create_database(db)
        print(f"[OK] Created {len(missing)} table(s)")
    else:
        print("[OK]")
    return db


def start_server(settings, db):
    """Start the scheduler thread and the Flask API"""
    from autoledger.api import create_app
    from autoledger.engine import LedgerEngine
    from autoledger.scheduler import Scheduler

    engine = LedgerEngine(db, settings=settings)
    scheduler = Scheduler(engine, interval=settings.scheduler_interval,
                          balance_check_time=settings.balance_check_time)

    print("[4/5] Starting plan scheduler...", end=" ")
    scheduler.start()
    print(f"[OK] every {settings.scheduler_interval:g}s")

    print("[5/5] Starting autoledger server...")
    print()
    print("=" * 60)
    print("autoledger is running!")
    print("=" * 60)
    print()
    print("  Server: http://127.0.0.1:5001/api")
    print("  Press Ctrl+C to stop the server")
    print()

    try:
        create_app(engine, scheduler).run(debug=False, port=5001, use_reloader=False)
    finally:
        scheduler.stop()


def main():
    """Main entry point"""
    print()
    print("=" * 60)
    print("autoledger - Personal Finance Ledger")
    print("=" * 60)
    print()

    try:
        check_python_version()
        check_dependencies()

        from autoledger.config import get_settings
        from autoledger.log import configure_logging

        settings = get_settings()
        configure_logging(settings.log_level, settings.log_json)
        db = setup_database(settings)
        start_server(settings, db)
    except KeyboardInterrupt:
        print()
        print()
        print("=" * 60)
        print("Server stopped.")
        print("=" * 60)
        print()


if __name__ == "__main__":
    main()
