"""Plan calendar rules and lifecycle."""

import datetime
from decimal import Decimal

import pytest

from autoledger.errors import (
    LedgerError, NotFound, InvalidAccountRole, InvalidFrequencyConfig, InvalidPlanState,
)
from autoledger.models import PlanStatus
from autoledger.plans import next_execution_date, validate_frequency, validate_execution_time

from conftest import USER_ID, OTHER_USER_ID

D = datetime.date


# =============================================================================
# CALENDAR
# =============================================================================

@pytest.mark.parametrize("frequency, day, reference, expected", [
    ("monthly", 31, D(2025, 1, 15), D(2025, 2, 28)),
    ("monthly", 29, D(2024, 1, 15), D(2024, 2, 29)),
    ("monthly", 15, D(2025, 12, 20), D(2026, 1, 15)),
    ("monthly", 31, D(2025, 3, 31), D(2025, 4, 30)),
    ("daily", None, D(2025, 1, 15), D(2025, 1, 16)),
    ("daily", None, D(2025, 12, 31), D(2026, 1, 1)),
    ("weekly", 5, D(2025, 1, 15), D(2025, 1, 17)),
    ("weekly", 3, D(2025, 1, 15), D(2025, 1, 22)),
    ("weekly", 1, D(2025, 1, 15), D(2025, 1, 20)),
])
def test_next_execution_date(frequency, day, reference, expected):
    assert next_execution_date(frequency, day, reference) == expected


@pytest.mark.parametrize("frequency, day", [
    ("weekly", None),
    ("weekly", 0),
    ("weekly", 8),
    ("monthly", None),
    ("monthly", 32),
    ("monthly", "x"),
    ("yearly", 1),
])
def test_invalid_frequency_config(frequency, day):
    with pytest.raises(InvalidFrequencyConfig):
        validate_frequency(frequency, day)


def test_daily_plans_drop_execution_day():
    frequency, day = validate_frequency("daily", 5)
    assert frequency.value == "daily"
    assert day is None


def test_execution_time_is_zero_padded():
    assert validate_execution_time("9:30") == "09:30"
    assert validate_execution_time("23:59") == "23:59"
    with pytest.raises(LedgerError):
        validate_execution_time("24:00")
    with pytest.raises(LedgerError):
        validate_execution_time("noon")


# =============================================================================
# LIFECYCLE
# =============================================================================

def test_create_plan_schedules_first_run_after_today(engine, bank, fund):
    plan = engine.plans.create(USER_ID, "Monthly index", bank.id, fund.id, "100", "monthly", execution_day=31)

    assert plan.status == PlanStatus.ACTIVE
    assert plan.next_execution_date == D(2025, 2, 28)
    assert plan.execution_time == "09:00"
    assert plan.amount == Decimal("100.00")


def test_create_plan_checks_account_roles(engine, bank, card, fund):
    with pytest.raises(InvalidAccountRole):
        engine.plans.create(USER_ID, "From card", card.id, fund.id, "100", "daily")
    with pytest.raises(InvalidAccountRole):
        engine.plans.create(USER_ID, "From fund", fund.id, bank.id, "100", "daily")
    with pytest.raises(InvalidAccountRole):
        engine.plans.create(USER_ID, "To card", bank.id, card.id, "100", "daily")
    with pytest.raises(InvalidAccountRole):
        engine.plans.create(USER_ID, "Loop", bank.id, bank.id, "100", "daily")


def test_create_plan_rejects_foreign_accounts(engine, bank, fund):
    with pytest.raises(NotFound):
        engine.plans.create(OTHER_USER_ID, "Not mine", bank.id, fund.id, "100", "daily")


def test_pause_and_resume(engine, clock, bank, fund):
    plan = engine.plans.create(USER_ID, "Weekly", bank.id, fund.id, "50", "weekly", execution_day=5)

    paused = engine.plans.pause(USER_ID, plan.id)
    assert paused.status == PlanStatus.PAUSED
    with pytest.raises(InvalidPlanState):
        engine.plans.pause(USER_ID, plan.id)

    clock.set(2025, 2, 3, 12, 0)  # Monday
    resumed = engine.plans.resume(USER_ID, plan.id)
    assert resumed.status == PlanStatus.ACTIVE
    assert resumed.next_execution_date == D(2025, 2, 7)
    with pytest.raises(InvalidPlanState):
        engine.plans.resume(USER_ID, plan.id)


def test_deleted_plans_are_invisible(engine, bank, fund):
    keep = engine.plans.create(USER_ID, "Keep", bank.id, fund.id, "10", "daily")
    drop = engine.plans.create(USER_ID, "Drop", bank.id, fund.id, "10", "daily")

    engine.plans.delete(USER_ID, drop.id)

    assert [p.id for p in engine.plans.list_plans(USER_ID)] == [keep.id]
    with pytest.raises(NotFound):
        engine.plans.get_plan(USER_ID, drop.id)
    with pytest.raises(NotFound):
        engine.plans.resume(USER_ID, drop.id)


def test_deleted_plan_rejects_every_lifecycle_change(engine, bank, fund):
    plan = engine.plans.create(USER_ID, "Gone", bank.id, fund.id, "10", "daily")
    engine.plans.delete(USER_ID, plan.id)

    with pytest.raises(NotFound):
        engine.plans.pause(USER_ID, plan.id)
    with pytest.raises(NotFound):
        engine.plans.update(USER_ID, plan.id, name="Back")
    with pytest.raises(NotFound):
        engine.plans.delete(USER_ID, plan.id)
    with pytest.raises(NotFound):
        engine.execution.trigger_plan(USER_ID, plan.id)
    assert engine.execution.records_for_plan(USER_ID, plan.id) == []


def test_list_plans_by_status(engine, bank, fund):
    active = engine.plans.create(USER_ID, "Active", bank.id, fund.id, "10", "daily")
    paused = engine.plans.create(USER_ID, "Paused", bank.id, fund.id, "10", "daily")
    engine.plans.pause(USER_ID, paused.id)

    assert [p.id for p in engine.plans.list_plans(USER_ID, "active")] == [active.id]
    assert [p.id for p in engine.plans.list_plans(USER_ID, "paused")] == [paused.id]


def test_update_recomputes_schedule_only_when_it_changes(engine, bank, fund):
    plan = engine.plans.create(USER_ID, "Plan", bank.id, fund.id, "10", "daily")

    renamed = engine.plans.update(USER_ID, plan.id, name="Renamed", amount="25")
    assert renamed.name == "Renamed"
    assert renamed.amount == Decimal("25.00")
    assert renamed.next_execution_date == plan.next_execution_date

    monthly = engine.plans.update(USER_ID, plan.id, frequency="monthly", execution_day=10)
    assert monthly.next_execution_date == D(2025, 2, 10)


def test_update_validates(engine, bank, fund):
    plan = engine.plans.create(USER_ID, "Plan", bank.id, fund.id, "10", "daily")

    with pytest.raises(InvalidFrequencyConfig):
        engine.plans.update(USER_ID, plan.id, frequency="weekly")
    with pytest.raises(LedgerError):
        engine.plans.update(USER_ID, plan.id, status="deleted")


def test_is_due(engine, bank, fund):
    plan = engine.plans.create(USER_ID, "Plan", bank.id, fund.id, "10", "daily", execution_time="09:30")
    due_day = plan.next_execution_date

    assert not plan.is_due(datetime.datetime.combine(due_day, datetime.time(9, 29)))
    assert plan.is_due(datetime.datetime.combine(due_day, datetime.time(9, 30)))
    assert plan.is_due(datetime.datetime.combine(due_day + datetime.timedelta(days=1), datetime.time(0, 0)))

    paused = engine.plans.pause(USER_ID, plan.id)
    assert not paused.is_due(datetime.datetime.combine(due_day, datetime.time(12, 0)))
