"""Scheduler ticks and thread lifecycle."""

import datetime
import time
from decimal import Decimal

from autoledger.scheduler import Scheduler

from conftest import USER_ID, balance_of

DT = datetime.datetime


def test_tick_runs_due_plans_and_daily_sweep(engine, bank, fund):
    engine.plans.create(USER_ID, "Daily", bank.id, fund.id, "100", "daily")
    scheduler = Scheduler(engine, interval=60)

    early = scheduler.tick(DT(2025, 1, 16, 7, 0))
    assert early == {'executed': [], 'reminders': []}
    assert scheduler.last_balance_check is None

    on_time = scheduler.tick(DT(2025, 1, 16, 9, 0))
    assert len(on_time['executed']) == 1
    assert scheduler.last_balance_check == datetime.date(2025, 1, 16)
    assert balance_of(engine, bank) == Decimal("900.00")


def test_balance_sweep_runs_once_per_day(engine, bank, fund):
    engine.plans.create(USER_ID, "Too big", bank.id, fund.id, "5000", "daily", execution_time="23:00")
    scheduler = Scheduler(engine, balance_check_time="08:00")

    # Plan fires on the 16th; the sweep on the 15th warns about it
    assert len(scheduler.tick(DT(2025, 1, 15, 8, 0))['reminders']) == 1
    engine.reminders.mark_all_read(USER_ID)
    assert scheduler.tick(DT(2025, 1, 15, 12, 0))['reminders'] == []


def test_failed_plan_does_not_break_tick(engine, wallet, fund):
    engine.plans.create(USER_ID, "Empty source", wallet.id, fund.id, "100", "daily")
    scheduler = Scheduler(engine)

    outcome = scheduler.tick(DT(2025, 1, 16, 9, 0))

    assert [r.success for r in outcome['executed']] == [False]
    assert scheduler.last_tick_at == DT(2025, 1, 16, 9, 0)


def test_start_and_stop(engine):
    scheduler = Scheduler(engine, interval=0.05)
    scheduler.start()
    try:
        assert scheduler.is_running
        deadline = time.time() + 2
        while scheduler.last_tick_at is None and time.time() < deadline:
            time.sleep(0.01)
        assert scheduler.last_tick_at == engine.clock()
    finally:
        scheduler.stop()

    assert not scheduler.is_running
    assert scheduler.status()['running'] is False
