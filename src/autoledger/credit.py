"""
autoledger - Credit calculator

A credit account has no persisted running balance. What the user owes is
recomputed from the transaction log every time it is asked for:

    outstanding = max(0, sum(expense) - sum(repayment))
    available   = credit_limit - outstanding

Because nothing is cached, the figures stay consistent with every
transaction create, update and delete automatically.
"""

import calendar
import datetime

from autoledger.calculations import to_decimal, to_money, ZERO
from autoledger.errors import InvalidAccountRole
from autoledger.models import TransactionType


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def outstanding_balance(expense_total, repayment_total):
    return to_money(max(ZERO, to_decimal(expense_total) - to_decimal(repayment_total)))


def available_credit(credit_limit, outstanding):
    return to_money(to_decimal(credit_limit) - to_decimal(outstanding))


def is_over_limit(outstanding, additional_amount, credit_limit):
    return to_decimal(outstanding) + to_decimal(additional_amount) > to_decimal(credit_limit)


def _due_date(year, month, due_day):
    # Months shorter than due_day fall due on their last day
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(due_day, last_day))


def days_until_due(due_day, now):
    """
    Whole days from `now` to the next due date.

    The due date is `due_day` of this month, or of next month once this
    month's day has passed it. A due date of today counts as 0.
    """
    today = now.date() if isinstance(now, datetime.datetime) else now
    if today.day > due_day:
        year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
    else:
        year, month = today.year, today.month
    return (_due_date(year, month, due_day) - today).days


def is_overdue(due_day, now):
    return now.day > due_day


# =============================================================================
# LEDGER-BACKED CALCULATOR
# =============================================================================

class CreditCalculator:
    """Derives credit figures from the `transactions` table."""

    def __init__(self, db, accounts, clock):
        self.db = db
        self.accounts = accounts
        self.clock = clock

    def _totals(self, cursor, account_id):
        rows = cursor.execute(
            "SELECT type, amount FROM transactions WHERE account_id = ? AND type IN (?, ?)",
            (account_id, TransactionType.EXPENSE.value, TransactionType.REPAYMENT.value)
        ).fetchall()

        # Summed in Python: SQLite stores amounts as TEXT
        totals = {t.value: ZERO for t in TransactionType}
        for row in rows:
            totals[row['type']] += to_decimal(row['amount'])
        return totals

    def outstanding(self, account_id, cursor=None):
        """Amount currently owed on a credit account."""
        with self.db.read(cursor) as cur:
            totals = self._totals(cur, account_id)
        return outstanding_balance(
            totals[TransactionType.EXPENSE.value],
            totals[TransactionType.REPAYMENT.value],
        )

    def details(self, account, cursor=None):
        """Credit account figures for display."""
        if not account.is_credit:
            raise InvalidAccountRole(f"Account {account.id} is not a credit account.", account_id=account.id)

        owed = self.outstanding(account.id, cursor=cursor)
        limit = to_money(account.credit_limit or ZERO)
        return {
            'id': account.id,
            'name': account.name,
            'credit_limit': limit,
            'billing_day': account.billing_day or 1,
            'due_day': account.due_day or 1,
            'outstanding_balance': owed,
            'available_credit': available_credit(limit, owed),
        }

    def over_limit(self, account, additional_amount=ZERO, cursor=None):
        if not account.is_credit:
            return False
        return is_over_limit(self.outstanding(account.id, cursor=cursor), additional_amount, account.credit_limit or ZERO)

    def summary(self, user_id):
        """Totals across all of a user's credit accounts."""
        accounts = [self.details(account) for account in self.accounts.list(user_id, account_type='credit')]
        total_outstanding = to_money(sum((a['outstanding_balance'] for a in accounts), ZERO))
        total_limit = to_money(sum((a['credit_limit'] for a in accounts), ZERO))
        return {
            'total_outstanding': total_outstanding,
            'total_credit_limit': total_limit,
            'total_available': available_credit(total_limit, total_outstanding),
            'accounts': accounts,
        }

    def due_reminders(self, user_id, threshold=3):
        """
        Credit accounts with money owed whose due date is near or past.

        An account qualifies when it owes more than 0 and is either overdue
        or at most `threshold` days from its due date.

        Returns:
            list: dicts sorted overdue first, then by days until due.
        """
        now = self.clock()
        reminders = []
        for account in self.accounts.list(user_id, account_type='credit'):
            owed = self.outstanding(account.id)
            if owed <= 0:
                continue

            due_day = account.due_day or 1
            days = days_until_due(due_day, now)
            overdue = is_overdue(due_day, now)
            if days <= threshold or overdue:
                reminders.append({
                    'account_id': account.id,
                    'account_name': account.name,
                    'outstanding_balance': owed,
                    'due_day': due_day,
                    'days_until_due': days,
                    'is_overdue': overdue,
                })

        reminders.sort(key=lambda r: (not r['is_overdue'], r['days_until_due']))
        return reminders
