"""
autoledger - Investment reminders

Notices raised for plan owners: a scheduled run failed, or tomorrow's run
will not be covered by the source account. Reminders are only ever created
here and only ever changed by marking them read.
"""

import datetime

from autoledger.calculations import to_decimal
from autoledger.errors import NotFound
from autoledger.log import get_logger
from autoledger.models import Reminder, ReminderType, PlanStatus

logger = get_logger(__name__)

REMINDER_COLUMNS = "id, user_id, plan_id, type, message, is_read, created_at"


class ReminderService:

    def __init__(self, db, clock):
        self.db = db
        self.clock = clock

    def create(self, user_id, plan_id, reminder_type, message, cursor=None):
        reminder_type = ReminderType(reminder_type)
        with self.db.transaction(cursor) as cur:
            cur.execute(
                "INSERT INTO investment_reminders (user_id, plan_id, type, message, is_read, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (user_id, plan_id, reminder_type.value, message, 0, self.clock())
            )
            reminder_id = cur.lastrowid

        logger.info("reminder_created", user_id=user_id, plan_id=plan_id, type=reminder_type.value)
        return reminder_id

    def has_unread(self, cursor, user_id, plan_id, reminder_type):
        row = cursor.execute(
            "SELECT id FROM investment_reminders WHERE user_id = ? AND plan_id = ? AND type = ? AND is_read = 0",
            (user_id, plan_id, ReminderType(reminder_type).value)
        ).fetchone()
        return row is not None

    # =============================================================================
    # QUERIES
    # =============================================================================

    def list_reminders(self, user_id, unread_only=False, limit=50):
        """Newest first."""
        query = f"SELECT {REMINDER_COLUMNS} FROM investment_reminders WHERE user_id = ?"
        if unread_only:
            query += " AND is_read = 0"
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"

        with self.db.read() as cursor:
            rows = cursor.execute(query, (user_id, int(limit))).fetchall()
        return [Reminder.from_row(row) for row in rows]

    def unread_count(self, user_id):
        with self.db.read() as cursor:
            row = cursor.execute(
                "SELECT COUNT(*) AS total FROM investment_reminders WHERE user_id = ? AND is_read = 0",
                (user_id,)
            ).fetchone()
        return int(row['total'])

    # =============================================================================
    # MARK READ
    # =============================================================================

    def mark_read(self, user_id, reminder_id):
        with self.db.transaction() as cursor:
            row = cursor.execute(
                "SELECT id FROM investment_reminders WHERE id = ? AND user_id = ?",
                (reminder_id, user_id)
            ).fetchone()
            if row is None:
                raise NotFound(f"Reminder {reminder_id} not found.", reminder_id=reminder_id)
            cursor.execute("UPDATE investment_reminders SET is_read = 1 WHERE id = ?", (reminder_id,))

    def mark_all_read(self, user_id):
        """Returns the number of reminders that were unread."""
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE investment_reminders SET is_read = 1 WHERE user_id = ? AND is_read = 0",
                (user_id,)
            )
            return cursor.rowcount

    # =============================================================================
    # INSUFFICIENT BALANCE SWEEP
    # =============================================================================

    def check_insufficient_balance(self, user_id=None, today=None):
        """
        Warn about plans due tomorrow that their source account cannot cover.

        At most one unread insufficient_balance reminder exists per plan; a
        plan that already has one is skipped.

        Args:
            user_id (int): Limit the sweep to one user; None sweeps everyone.
            today (date): Defaults to the clock's date.

        Returns:
            list: ids of the reminders created.
        """
        tomorrow = (today or self.clock().date()) + datetime.timedelta(days=1)
        query = (
            "SELECT p.id AS plan_id, p.user_id, p.name AS plan_name, p.amount, "
            "a.name AS account_name, a.balance "
            "FROM auto_investment_plans p JOIN accounts a ON a.id = p.source_account_id "
            "WHERE p.status = ? AND p.next_execution_date = ?"
        )
        params = [PlanStatus.ACTIVE.value, tomorrow]
        if user_id is not None:
            query += " AND p.user_id = ?"
            params.append(user_id)

        created = []
        with self.db.transaction() as cursor:
            for row in cursor.execute(query + " ORDER BY p.id", params).fetchall():
                balance = to_decimal(row['balance'])
                amount = to_decimal(row['amount'])
                if balance >= amount:
                    continue
                if self.has_unread(cursor, row['user_id'], row['plan_id'], ReminderType.INSUFFICIENT_BALANCE):
                    continue

                message = (
                    f"Plan '{row['plan_name']}' runs tomorrow but source account '{row['account_name']}' "
                    f"holds {balance}, less than the plan amount {amount}."
                )
                created.append(self.create(
                    row['user_id'], row['plan_id'], ReminderType.INSUFFICIENT_BALANCE, message, cursor=cursor,
                ))

        if created:
            logger.info("insufficient_balance_reminders", count=len(created), date=str(tomorrow))
        return created
