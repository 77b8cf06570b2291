"""
autoledger - Recurring plan scheduler

Owns the auto-investment plan lifecycle and the next-date calendar rule.

Lifecycle:
    active  --pause-->  paused
    paused  --resume--> active
    active|paused --delete--> deleted   (terminal; deleted plans are invisible)

Next execution date, from a reference date:
    daily    reference + 1 day
    weekly   first day after reference whose ISO weekday == execution_day
             (1 = Monday ... 7 = Sunday)
    monthly  execution_day of the following month, clamped to that month's
             last day (31 in February becomes 28 or 29)
"""

import calendar
import datetime
import re

from autoledger.calculations import to_money, require_positive
from autoledger.errors import LedgerError, NotFound, InvalidAccountRole, InvalidFrequencyConfig, InvalidPlanState
from autoledger.log import get_logger
from autoledger.models import Plan, Frequency, PlanStatus

logger = get_logger(__name__)

PLAN_COLUMNS = (
    "id, user_id, name, source_account_id, target_account_id, amount, frequency, "
    "execution_day, execution_time, status, next_execution_date"
)

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# =============================================================================
# CALENDAR RULES
# =============================================================================

def validate_frequency(frequency, execution_day):
    """
    Check a frequency/day pair and return the normalized pair.

    Daily plans carry no execution day; any value given is dropped.

    Raises:
        InvalidFrequencyConfig: unknown frequency, or a weekly/monthly day
            that is missing or out of range.
    """
    try:
        frequency = Frequency(frequency)
    except ValueError:
        raise InvalidFrequencyConfig(f"Unsupported frequency: {frequency}", frequency=frequency) from None

    if frequency == Frequency.DAILY:
        return frequency, None

    low, high = (1, 7) if frequency == Frequency.WEEKLY else (1, 31)
    if execution_day is None or isinstance(execution_day, bool):
        raise InvalidFrequencyConfig(
            f"{frequency.value.capitalize()} plans require an execution day ({low}-{high}).",
            frequency=frequency.value,
        )
    try:
        execution_day = int(execution_day)
    except (TypeError, ValueError):
        raise InvalidFrequencyConfig(f"Execution day must be an integer, got {execution_day!r}.") from None
    if not low <= execution_day <= high:
        raise InvalidFrequencyConfig(
            f"{frequency.value.capitalize()} execution day must be between {low} and {high}.",
            frequency=frequency.value,
            execution_day=execution_day,
        )
    return frequency, execution_day


def validate_execution_time(value):
    """Return a zero-padded 'HH:MM' string or raise LedgerError."""
    value = str(value).strip()
    if len(value) == 4 and value[1] == ':':
        value = "0" + value
    if not _TIME_PATTERN.match(value):
        raise LedgerError(f"Execution time must be HH:MM, got {value!r}.", execution_time=value)
    return value


def next_execution_date(frequency, execution_day, reference):
    """
    Compute the next calendar date a plan fires after `reference`.

    Args:
        frequency (str): daily, weekly or monthly.
        execution_day (int): ISO weekday (weekly) or day of month (monthly).
        reference (date): Date the search starts after.

    Returns:
        datetime.date

    Example:
        next_execution_date('monthly', 31, date(2025, 1, 15)) -> date(2025, 2, 28)
    """
    frequency, execution_day = validate_frequency(frequency, execution_day)

    if frequency == Frequency.DAILY:
        return reference + datetime.timedelta(days=1)

    if frequency == Frequency.WEEKLY:
        candidate = reference + datetime.timedelta(days=1)
        while candidate.isoweekday() != execution_day:
            candidate += datetime.timedelta(days=1)
        return candidate

    year, month = (reference.year + 1, 1) if reference.month == 12 else (reference.year, reference.month + 1)
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(execution_day, last_day))


# =============================================================================
# PLAN SERVICE
# =============================================================================

class PlanService:
    """Create, update and move plans through their lifecycle."""

    def __init__(self, db, accounts, clock, default_execution_time="09:00"):
        self.db = db
        self.accounts = accounts
        self.clock = clock
        self.default_execution_time = default_execution_time

    def _today(self):
        return self.clock().date()

    def _check_accounts(self, cursor, user_id, source_account_id, target_account_id):
        if source_account_id == target_account_id:
            raise InvalidAccountRole("Source and target accounts must differ.", account_id=source_account_id)

        source = self.accounts.get(user_id, source_account_id, cursor=cursor)
        target = self.accounts.get(user_id, target_account_id, cursor=cursor)
        if source.is_credit or source.is_investment:
            raise InvalidAccountRole(
                f"Account '{source.name}' cannot fund a plan.",
                account_id=source.id,
            )
        if target.is_credit:
            raise InvalidAccountRole(
                f"Credit account '{target.name}' cannot be a plan target.",
                account_id=target.id,
            )

    def _load(self, cursor, user_id, plan_id, lock=False):
        suffix = cursor.for_update if lock else ""
        row = cursor.execute(
            f"SELECT {PLAN_COLUMNS} FROM auto_investment_plans "
            f"WHERE id = ? AND user_id = ? AND status != ?{suffix}",
            (plan_id, user_id, PlanStatus.DELETED.value)
        ).fetchone()
        if row is None:
            raise NotFound(f"Plan {plan_id} not found.", plan_id=plan_id)
        return Plan.from_row(row)

    def _set_status(self, cursor, plan_id, status, next_date=None):
        now = self.clock()
        if next_date is None:
            cursor.execute(
                "UPDATE auto_investment_plans SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, now, plan_id)
            )
        else:
            cursor.execute(
                "UPDATE auto_investment_plans SET status = ?, next_execution_date = ?, updated_at = ? WHERE id = ?",
                (status.value, next_date, now, plan_id)
            )

    # =============================================================================
    # CREATE / READ / UPDATE
    # =============================================================================

    def create(self, user_id, name, source_account_id, target_account_id, amount, frequency,
               execution_day=None, execution_time=None):
        """
        Create an active plan whose first run is the next matching date after today.

        Returns:
            Plan
        """
        amount = to_money(require_positive(amount, "Amount"))
        frequency, execution_day = validate_frequency(frequency, execution_day)
        execution_time = validate_execution_time(execution_time or self.default_execution_time)
        if not name or not str(name).strip():
            raise LedgerError("Plan name is required.")

        with self.db.transaction() as cursor:
            self._check_accounts(cursor, user_id, source_account_id, target_account_id)
            next_date = next_execution_date(frequency, execution_day, self._today())
            now = self.clock()
            cursor.execute(
                "INSERT INTO auto_investment_plans (user_id, name, source_account_id, target_account_id, amount, "
                "frequency, execution_day, execution_time, status, next_execution_date, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (user_id, str(name).strip(), source_account_id, target_account_id, amount, frequency.value,
                 execution_day, execution_time, PlanStatus.ACTIVE.value, next_date, now, now)
            )
            plan = self._load(cursor, user_id, cursor.lastrowid)

        logger.info("plan_created", user_id=user_id, plan_id=plan.id, next_execution_date=str(plan.next_execution_date))
        return plan

    def get_plan(self, user_id, plan_id, cursor=None):
        with self.db.read(cursor) as cur:
            return self._load(cur, user_id, plan_id)

    def list_plans(self, user_id, status=None):
        """Non-deleted plans of a user, newest first."""
        query = f"SELECT {PLAN_COLUMNS} FROM auto_investment_plans WHERE user_id = ? AND status != ?"
        params = [user_id, PlanStatus.DELETED.value]
        if status:
            try:
                status = PlanStatus(status)
            except ValueError:
                raise LedgerError(f"Unknown plan status: {status}", status=status) from None
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY id DESC"

        with self.db.read() as cursor:
            rows = cursor.execute(query, params).fetchall()
        return [Plan.from_row(row) for row in rows]

    def update(self, user_id, plan_id, **changes):
        """
        Update a non-deleted plan.

        Accepted keys: name, source_account_id, target_account_id, amount,
        frequency, execution_day, execution_time. The next execution date is
        recomputed from today when frequency or execution_day changes.
        """
        allowed = {'name', 'source_account_id', 'target_account_id', 'amount',
                   'frequency', 'execution_day', 'execution_time'}
        unknown = set(changes) - allowed
        if unknown:
            raise LedgerError(f"Unknown plan fields: {', '.join(sorted(unknown))}")

        with self.db.transaction() as cursor:
            plan = self._load(cursor, user_id, plan_id, lock=True)

            name = changes.get('name', plan.name)
            if not name or not str(name).strip():
                raise LedgerError("Plan name is required.")
            source_id = changes.get('source_account_id', plan.source_account_id)
            target_id = changes.get('target_account_id', plan.target_account_id)
            if source_id != plan.source_account_id or target_id != plan.target_account_id:
                self._check_accounts(cursor, user_id, source_id, target_id)

            amount = plan.amount
            if 'amount' in changes:
                amount = to_money(require_positive(changes['amount'], "Amount"))

            execution_time = plan.execution_time
            if 'execution_time' in changes:
                execution_time = validate_execution_time(changes['execution_time'])

            schedule_changed = 'frequency' in changes or 'execution_day' in changes
            frequency, execution_day = validate_frequency(
                changes.get('frequency', plan.frequency),
                changes.get('execution_day', plan.execution_day),
            )
            next_date = plan.next_execution_date
            if schedule_changed:
                next_date = next_execution_date(frequency, execution_day, self._today())

            cursor.execute(
                "UPDATE auto_investment_plans SET name = ?, source_account_id = ?, target_account_id = ?, "
                "amount = ?, frequency = ?, execution_day = ?, execution_time = ?, next_execution_date = ?, "
                "updated_at = ? WHERE id = ?",
                (str(name).strip(), source_id, target_id, amount, frequency.value, execution_day,
                 execution_time, next_date, self.clock(), plan_id)
            )
            plan = self._load(cursor, user_id, plan_id)

        logger.info("plan_updated", user_id=user_id, plan_id=plan_id, fields=sorted(changes))
        return plan

    # =============================================================================
    # LIFECYCLE
    # =============================================================================

    def pause(self, user_id, plan_id):
        with self.db.transaction() as cursor:
            plan = self._load(cursor, user_id, plan_id, lock=True)
            if plan.status != PlanStatus.ACTIVE:
                raise InvalidPlanState(f"Plan {plan_id} is not active.", plan_id=plan_id, status=plan.status.value)
            self._set_status(cursor, plan_id, PlanStatus.PAUSED)
            plan = self._load(cursor, user_id, plan_id)

        logger.info("plan_paused", user_id=user_id, plan_id=plan_id)
        return plan

    def resume(self, user_id, plan_id):
        """Reactivate a paused plan; its next date is recomputed from today."""
        with self.db.transaction() as cursor:
            plan = self._load(cursor, user_id, plan_id, lock=True)
            if plan.status != PlanStatus.PAUSED:
                raise InvalidPlanState(f"Plan {plan_id} is not paused.", plan_id=plan_id, status=plan.status.value)
            next_date = next_execution_date(plan.frequency, plan.execution_day, self._today())
            self._set_status(cursor, plan_id, PlanStatus.ACTIVE, next_date)
            plan = self._load(cursor, user_id, plan_id)

        logger.info("plan_resumed", user_id=user_id, plan_id=plan_id, next_execution_date=str(next_date))
        return plan

    def delete(self, user_id, plan_id):
        """Soft-delete. Execution records and reminders are kept."""
        with self.db.transaction() as cursor:
            self._load(cursor, user_id, plan_id, lock=True)
            self._set_status(cursor, plan_id, PlanStatus.DELETED)

        logger.info("plan_deleted", user_id=user_id, plan_id=plan_id)

    # =============================================================================
    # SCHEDULER SUPPORT
    # =============================================================================

    def due_plans(self, now):
        """Active plans that should fire at `now`, across all users."""
        with self.db.read() as cursor:
            rows = cursor.execute(
                f"SELECT {PLAN_COLUMNS} FROM auto_investment_plans "
                "WHERE status = ? AND next_execution_date <= ? ORDER BY next_execution_date, id",
                (PlanStatus.ACTIVE.value, now.date())
            ).fetchall()
        plans = [Plan.from_row(row) for row in rows]
        return [plan for plan in plans if plan.is_due(now)]

    def plans_due_on(self, on_date):
        """Active plans whose next execution date is `on_date`."""
        with self.db.read() as cursor:
            rows = cursor.execute(
                f"SELECT {PLAN_COLUMNS} FROM auto_investment_plans "
                "WHERE status = ? AND next_execution_date = ? ORDER BY id",
                (PlanStatus.ACTIVE.value, on_date)
            ).fetchall()
        return [Plan.from_row(row) for row in rows]

    def lock_plan(self, cursor, user_id, plan_id):
        return self._load(cursor, user_id, plan_id, lock=True)

    def advance(self, cursor, plan, today):
        """
        Move a plan past the date just attempted.

        The reference is the later of the plan's scheduled date and today,
        so a plan that missed several periods catches up once, not once per
        missed period.
        """
        reference = max(plan.next_execution_date, today)
        next_date = next_execution_date(plan.frequency, plan.execution_day, reference)
        cursor.execute(
            "UPDATE auto_investment_plans SET next_execution_date = ?, updated_at = ? WHERE id = ?",
            (next_date, self.clock(), plan.id)
        )
        return next_date
