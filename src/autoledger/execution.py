"""
autoledger - Execution engine

Runs plan transfers and records every attempt as an immutable execution
record.

Scheduled and manually triggered plan runs never raise for a failed
transfer: the failure becomes a `failed` record, the plan still advances to
its next date, and the owner gets an execution_failed reminder.

One-off discounted buys are different: there is no next attempt to protect,
so their failures propagate to the caller and nothing is written.
"""

import datetime
from dataclasses import dataclass

from autoledger.calculations import to_money, discount_rate, require_positive, ZERO, ONE
from autoledger.database import to_date
from autoledger.errors import LedgerError, NotFound
from autoledger.log import get_logger
from autoledger.models import ExecutionRecord, ExecutionStatus, ReminderType
from autoledger.transfer import INVEST

logger = get_logger(__name__)

RECORD_COLUMNS = (
    "id, plan_id, user_id, source_account_id, target_account_id, paid_amount, invested_amount, "
    "discount_rate, shares, net_value, status, fail_reason, executed_at"
)


@dataclass
class ExecutionResult:
    success: bool
    record: ExecutionRecord
    error: str = None

    def to_dict(self):
        return {'success': self.success, 'record': self.record.to_dict(), 'error': self.error}


class ExecutionService:

    def __init__(self, db, transfers, plans, reminders, clock):
        self.db = db
        self.transfers = transfers
        self.plans = plans
        self.reminders = reminders
        self.clock = clock

    # =============================================================================
    # RECORDS
    # =============================================================================

    def _insert_record(self, cursor, user_id, plan_id, source_account_id, target_account_id,
                       paid_amount, invested_amount, rate, shares, net_value, status,
                       executed_at, fail_reason=None):
        cursor.execute(
            "INSERT INTO execution_records (plan_id, user_id, source_account_id, target_account_id, "
            "paid_amount, invested_amount, discount_rate, shares, net_value, status, fail_reason, executed_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (plan_id, user_id, source_account_id, target_account_id, to_money(paid_amount),
             to_money(invested_amount), rate, shares, net_value, status.value, fail_reason, executed_at)
        )
        return self._get_record(cursor, cursor.lastrowid)

    def _get_record(self, cursor, record_id):
        row = cursor.execute(
            f"SELECT {RECORD_COLUMNS} FROM execution_records WHERE id = ?", (record_id,)
        ).fetchone()
        return ExecutionRecord.from_row(row)

    # =============================================================================
    # PLAN EXECUTION
    # =============================================================================

    def execute_plan(self, plan, require_due=False, now=None):
        """
        Run one plan's transfer and record the outcome.

        The plan row is re-read under lock inside the transaction. With
        `require_due` the run is skipped (None returned) when the locked row
        is no longer due, so two sweeps can never fire the same date twice.

        Args:
            plan (Plan): Plan to run (as listed by the caller).
            require_due (bool): Only run if still due at the current time.
            now (datetime): Execution time; defaults to the clock.

        Returns:
            ExecutionResult, or None when skipped.
        """
        now = (now or self.clock()).replace(microsecond=0)
        today = now.date()
        attempted = plan.next_execution_date

        try:
            with self.db.transaction() as cursor:
                current = self.plans.lock_plan(cursor, plan.user_id, plan.id)
                if require_due and not current.is_due(now):
                    return None
                attempted = current.next_execution_date

                result = self.transfers.transfer(
                    current.user_id, current.source_account_id, current.target_account_id,
                    current.amount, on_date=today, kind=INVEST, cursor=cursor,
                )
                record = self._insert_record(
                    cursor, current.user_id, current.id, current.source_account_id,
                    current.target_account_id, current.amount, current.amount, ONE,
                    result.shares, result.net_value, ExecutionStatus.SUCCESS, now,
                )
                next_date = self.plans.advance(cursor, current, today)
        except LedgerError as exc:
            logger.warning("plan_execution_failed", plan_id=plan.id, user_id=plan.user_id,
                           code=exc.code, reason=exc.message)
            return self._record_failure(plan, exc.message, now, attempted, require_due)
        except Exception as exc:
            logger.warning("plan_execution_failed", plan_id=plan.id, user_id=plan.user_id,
                           reason=str(exc), exc_info=True)
            return self._record_failure(plan, str(exc) or exc.__class__.__name__, now,
                                        attempted, require_due)

        logger.info(
            "plan_executed",
            plan_id=plan.id,
            user_id=plan.user_id,
            amount=str(record.paid_amount),
            shares=str(record.shares),
            next_execution_date=str(next_date),
        )
        return ExecutionResult(success=True, record=record)

    def _record_failure(self, plan, reason, now, attempted, require_due=False):
        """
        Write the failed record, advance the plan and remind the owner, in one transaction.

        Nothing is written (None returned) when another run has already
        moved the plan off `attempted`, or it is no longer due.
        """
        with self.db.transaction() as cursor:
            current = self.plans.lock_plan(cursor, plan.user_id, plan.id)
            if current.next_execution_date != attempted or (require_due and not current.is_due(now)):
                logger.info("plan_failure_superseded", plan_id=plan.id, attempted=str(attempted),
                            next_execution_date=str(current.next_execution_date))
                return None
            record = self._insert_record(
                cursor, current.user_id, current.id, current.source_account_id,
                current.target_account_id, current.amount, ZERO, ONE, ZERO, ZERO,
                ExecutionStatus.FAILED, now, fail_reason=reason,
            )
            self.plans.advance(cursor, current, now.date())
            self.reminders.create(
                current.user_id, current.id, ReminderType.EXECUTION_FAILED,
                f"Plan '{current.name}' failed to execute: {reason}",
                cursor=cursor,
            )
        return ExecutionResult(success=False, record=record, error=reason)

    def run_due_plans(self, now=None):
        """
        Execute every plan due at `now`, each in its own transaction.

        Returns:
            list: ExecutionResult for each plan that ran.
        """
        now = now or self.clock()
        results = []
        for plan in self.plans.due_plans(now):
            try:
                result = self.execute_plan(plan, require_due=True, now=now)
            except NotFound:
                # Deleted between listing and locking
                continue
            except Exception:
                logger.error("plan_execution_error", plan_id=plan.id, exc_info=True)
                continue
            if result is not None:
                results.append(result)
        return results

    def trigger_plan(self, user_id, plan_id):
        """
        Run a non-deleted plan now, regardless of its status or date.

        Returns None when the run failed and a concurrent run had already
        settled the same date.
        """
        plan = self.plans.get_plan(user_id, plan_id)
        return self.execute_plan(plan)

    # =============================================================================
    # ONE-OFF DISCOUNTED BUY
    # =============================================================================

    def execute_one_time_buy(self, user_id, source_account_id, target_account_id, paid_amount,
                             invested_amount, executed_at=None):
        """
        Pay `paid_amount` from the source for `invested_amount` of value in the target.

        Example: paying 95 for 100 of fund value records a discount rate of 0.95.

        Raises:
            InvalidAmount, InsufficientBalance, InvalidAccountRole, NotFound
        """
        paid_amount = to_money(require_positive(paid_amount, "Paid amount"))
        invested_amount = to_money(require_positive(invested_amount, "Invested amount"))
        rate = discount_rate(paid_amount, invested_amount)

        if executed_at is None:
            executed_at = self.clock()
        elif not isinstance(executed_at, datetime.datetime):
            executed_at = datetime.datetime.combine(to_date(executed_at), self.clock().time())
        executed_at = executed_at.replace(microsecond=0)

        with self.db.transaction() as cursor:
            result = self.transfers.transfer(
                user_id, source_account_id, target_account_id, paid_amount, invested_amount,
                on_date=executed_at.date(), kind=INVEST, cursor=cursor,
            )
            record = self._insert_record(
                cursor, user_id, None, source_account_id, target_account_id, paid_amount,
                invested_amount, rate, result.shares, result.net_value, ExecutionStatus.SUCCESS, executed_at,
            )

        logger.info("one_time_buy_executed", user_id=user_id, record_id=record.id,
                    paid_amount=str(paid_amount), invested_amount=str(invested_amount), discount_rate=str(rate))
        return ExecutionResult(success=True, record=record)

    # =============================================================================
    # QUERIES
    # =============================================================================

    def list_execution_records(self, user_id, plan_id=None, status=None, start_date=None, end_date=None,
                               page=1, page_size=20):
        """
        Page through a user's execution records, newest first.

        Returns:
            dict: {'records': [...], 'total': int, 'page': int, 'page_size': int}
        """
        where = ["user_id = ?"]
        params = [user_id]
        if plan_id is not None:
            where.append("plan_id = ?")
            params.append(plan_id)
        if status:
            try:
                status = ExecutionStatus(status)
            except ValueError:
                raise LedgerError(f"Unknown execution status: {status}", status=status) from None
            where.append("status = ?")
            params.append(status.value)
        if start_date:
            where.append("executed_at >= ?")
            params.append(datetime.datetime.combine(to_date(start_date), datetime.time.min))
        if end_date:
            where.append("executed_at <= ?")
            params.append(datetime.datetime.combine(to_date(end_date), datetime.time(23, 59, 59)))

        page = max(int(page), 1)
        page_size = max(int(page_size), 1)
        clause = " AND ".join(where)

        with self.db.read() as cursor:
            total = cursor.execute(
                f"SELECT COUNT(*) AS total FROM execution_records WHERE {clause}", params
            ).fetchone()['total']
            rows = cursor.execute(
                f"SELECT {RECORD_COLUMNS} FROM execution_records WHERE {clause} "
                "ORDER BY executed_at DESC, id DESC LIMIT ? OFFSET ?",
                params + [page_size, (page - 1) * page_size]
            ).fetchall()

        return {
            'records': [ExecutionRecord.from_row(row) for row in rows],
            'total': int(total),
            'page': page,
            'page_size': page_size,
        }

    def records_for_plan(self, user_id, plan_id):
        with self.db.read() as cursor:
            rows = cursor.execute(
                f"SELECT {RECORD_COLUMNS} FROM execution_records WHERE plan_id = ? AND user_id = ? "
                "ORDER BY executed_at DESC, id DESC",
                (plan_id, user_id)
            ).fetchall()
        return [ExecutionRecord.from_row(row) for row in rows]
