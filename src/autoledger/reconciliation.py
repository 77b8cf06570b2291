"""
autoledger - Balance reconciliation (quick balance)

Brings an account's stored balance in line with the amount the user says it
actually holds. The correction replaces the balance outright and leaves an
immutable balance_adjustments row behind:

    difference = actual_balance - current_balance
    > 0 profit, < 0 loss, = 0 nothing to do
"""

import datetime

from autoledger.calculations import to_decimal, to_money, ZERO
from autoledger.database import to_date
from autoledger.errors import InvalidAccountRole, InvalidAmount, NoAdjustmentNeeded
from autoledger.log import get_logger
from autoledger.models import BalanceAdjustment

logger = get_logger(__name__)

PROFIT = "profit"
LOSS = "loss"
NONE = "none"

ADJUSTMENT_COLUMNS = "id, user_id, account_id, previous_balance, new_balance, difference, note, created_at"


def calculate_difference(actual_balance, current_balance):
    return to_money(to_decimal(actual_balance) - to_decimal(current_balance))


def difference_type(difference):
    difference = to_decimal(difference)
    if difference > 0:
        return PROFIT
    if difference < 0:
        return LOSS
    return NONE


class ReconciliationService:

    def __init__(self, db, accounts, clock):
        self.db = db
        self.accounts = accounts
        self.clock = clock

    @staticmethod
    def _check_account(account):
        # Credit and investment balances are derived, not asserted
        if account.is_credit or account.is_investment:
            raise InvalidAccountRole(
                f"Account '{account.name}' cannot be reconciled by hand.",
                account_id=account.id,
                type=account.type.value,
            )

    def preview(self, user_id, account_id, actual_balance):
        """Show what a reconciliation would change without changing anything."""
        account = self.accounts.get(user_id, account_id)
        self._check_account(account)
        difference = calculate_difference(actual_balance, account.balance)
        return {
            'account_id': account.id,
            'account_name': account.name,
            'current_balance': account.balance,
            'actual_balance': to_money(actual_balance),
            'difference': difference,
            'difference_type': difference_type(difference),
        }

    def reconcile(self, user_id, account_id, actual_balance, note=None):
        """
        Set the stored balance to `actual_balance` and record the adjustment.

        The difference is computed against the balance read under the row
        lock, not against any earlier preview.

        Raises:
            InvalidAmount: negative actual balance.
            NoAdjustmentNeeded: balance already equals `actual_balance`.

        Returns:
            BalanceAdjustment
        """
        actual_balance = to_money(actual_balance)
        if actual_balance < 0:
            raise InvalidAmount("Actual balance cannot be negative.", actual_balance=str(actual_balance))

        with self.db.transaction() as cursor:
            account = self.accounts.lock(cursor, user_id, account_id)
            self._check_account(account)

            difference = calculate_difference(actual_balance, account.balance)
            if difference == ZERO:
                raise NoAdjustmentNeeded(
                    f"Balance of '{account.name}' already equals {actual_balance}.",
                    account_id=account_id,
                )

            self.accounts.set_balance(cursor, account_id, actual_balance)
            cursor.execute(
                "INSERT INTO balance_adjustments (user_id, account_id, previous_balance, new_balance, "
                "difference, note, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (user_id, account_id, account.balance, actual_balance, difference, note,
                 self.clock().replace(microsecond=0))
            )
            row = cursor.execute(
                f"SELECT {ADJUSTMENT_COLUMNS} FROM balance_adjustments WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()

        logger.info("balance_reconciled", user_id=user_id, account_id=account_id,
                    previous_balance=str(account.balance), new_balance=str(actual_balance),
                    difference=str(difference))
        return BalanceAdjustment.from_row(row)

    def list_adjustments(self, user_id, account_id=None, start_date=None, end_date=None, page=1, page_size=20):
        """Newest first, paged."""
        where = ["user_id = ?"]
        params = [user_id]
        if account_id is not None:
            where.append("account_id = ?")
            params.append(account_id)
        if start_date:
            where.append("created_at >= ?")
            params.append(datetime.datetime.combine(to_date(start_date), datetime.time.min))
        if end_date:
            where.append("created_at <= ?")
            params.append(datetime.datetime.combine(to_date(end_date), datetime.time(23, 59, 59)))

        page = max(int(page), 1)
        page_size = max(int(page_size), 1)
        clause = " AND ".join(where)
        with self.db.read() as cursor:
            total = cursor.execute(
                f"SELECT COUNT(*) AS total FROM balance_adjustments WHERE {clause}", params
            ).fetchone()
            rows = cursor.execute(
                f"SELECT {ADJUSTMENT_COLUMNS} FROM balance_adjustments WHERE {clause} "
                "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                params + [page_size, (page - 1) * page_size]
            ).fetchall()

        records = []
        for row in rows:
            record = BalanceAdjustment.from_row(row).to_dict()
            record['difference_type'] = difference_type(record['difference'])
            records.append(record)
        return {'records': records, 'total': int(total['total'])}
