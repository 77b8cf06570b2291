"""Reminders: insufficient balance sweep and read state."""

import datetime

import pytest

from autoledger.errors import NotFound
from autoledger.models import ReminderType

from conftest import USER_ID, OTHER_USER_ID


def test_sweep_warns_about_tomorrows_uncovered_plans(engine, bank, fund):
    short = engine.plans.create(USER_ID, "Too big", bank.id, fund.id, "1500", "daily")
    engine.plans.create(USER_ID, "Covered", bank.id, fund.id, "500", "daily")

    created = engine.reminders.check_insufficient_balance()

    assert len(created) == 1
    reminders = engine.reminders.list_reminders(USER_ID)
    assert reminders[0].plan_id == short.id
    assert reminders[0].type == ReminderType.INSUFFICIENT_BALANCE
    assert "Too big" in reminders[0].message


def test_sweep_keeps_one_unread_reminder_per_plan(engine, bank, fund):
    engine.plans.create(USER_ID, "Too big", bank.id, fund.id, "1500", "daily")

    assert len(engine.reminders.check_insufficient_balance()) == 1
    assert engine.reminders.check_insufficient_balance() == []

    engine.reminders.mark_all_read(USER_ID)
    assert len(engine.reminders.check_insufficient_balance()) == 1


def test_sweep_ignores_plans_not_due_tomorrow(engine, bank, fund):
    engine.plans.create(USER_ID, "Monthly", bank.id, fund.id, "1500", "monthly", execution_day=20)

    assert engine.reminders.check_insufficient_balance() == []
    assert len(engine.reminders.check_insufficient_balance(today=datetime.date(2025, 2, 19))) == 1


def test_sweep_limited_to_one_user(engine, bank, fund):
    engine.plans.create(USER_ID, "Too big", bank.id, fund.id, "1500", "daily")
    assert engine.reminders.check_insufficient_balance(user_id=OTHER_USER_ID) == []


def test_read_state(engine, clock):
    first = engine.reminders.create(USER_ID, 1, "execution_failed", "first")
    clock.advance(minutes=1)
    engine.reminders.create(USER_ID, 1, "execution_failed", "second")

    assert engine.reminders.unread_count(USER_ID) == 2
    assert [r.message for r in engine.reminders.list_reminders(USER_ID)] == ["second", "first"]

    engine.reminders.mark_read(USER_ID, first)
    assert engine.reminders.unread_count(USER_ID) == 1
    assert [r.message for r in engine.reminders.list_reminders(USER_ID, unread_only=True)] == ["second"]

    assert engine.reminders.mark_all_read(USER_ID) == 1
    assert engine.reminders.unread_count(USER_ID) == 0


def test_mark_read_of_someone_elses_reminder(engine):
    reminder_id = engine.reminders.create(USER_ID, 1, "execution_failed", "mine")
    with pytest.raises(NotFound):
        engine.reminders.mark_read(OTHER_USER_ID, reminder_id)
