"""
autoledger - Value objects

Plain dataclasses built from database rows. Services read rows, convert them
with `from_row`, and hand these objects (or their `to_dict()`) to callers.
Nothing here writes to the database.
"""

import datetime
from dataclasses import dataclass, asdict
from decimal import Decimal
from enum import Enum

from autoledger.calculations import to_decimal, investment_stats
from autoledger.database import to_date, to_datetime


class AccountType(str, Enum):
    CASH = "cash"
    BANK = "bank"
    ALIPAY = "alipay"
    WECHAT = "wechat"
    CREDIT = "credit"
    INVESTMENT = "investment"
    OTHER = "other"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    REPAYMENT = "repayment"
    REFUND = "refund"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class ReminderType(str, Enum):
    EXECUTION_FAILED = "execution_failed"
    INSUFFICIENT_BALANCE = "insufficient_balance"


def _optional_decimal(value):
    return None if value is None else to_decimal(value)


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    return value


class _Record:
    """Shared dict conversion for the dataclasses below."""

    def to_dict(self):
        return {key: _plain(value) for key, value in asdict(self).items()}


# =============================================================================
# ACCOUNTS AND LEDGER ENTRIES
# =============================================================================

@dataclass
class Account(_Record):
    id: int
    user_id: int
    name: str
    type: AccountType
    balance: Decimal
    credit_limit: Decimal = None
    billing_day: int = None
    due_day: int = None
    shares: Decimal = None
    cost_price: Decimal = None
    current_net_value: Decimal = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            name=row['name'],
            type=AccountType(row['type']),
            balance=to_decimal(row['balance']),
            credit_limit=_optional_decimal(row.get('credit_limit')),
            billing_day=row.get('billing_day'),
            due_day=row.get('due_day'),
            shares=_optional_decimal(row.get('shares')),
            cost_price=_optional_decimal(row.get('cost_price')),
            current_net_value=_optional_decimal(row.get('current_net_value')),
        )

    @property
    def is_credit(self):
        return self.type == AccountType.CREDIT

    @property
    def is_investment(self):
        return self.type == AccountType.INVESTMENT

    def position(self):
        """Cost, market value and profit of an investment account."""
        return investment_stats(self.shares, self.cost_price, self.current_net_value)


@dataclass
class Transaction(_Record):
    id: int
    user_id: int
    account_id: int
    type: TransactionType
    amount: Decimal
    date: datetime.date
    category_id: int = None
    note: str = None
    source_account_id: int = None
    original_transaction_id: int = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            account_id=row['account_id'],
            type=TransactionType(row['type']),
            amount=to_decimal(row['amount']),
            date=to_date(row['date']),
            category_id=row.get('category_id'),
            note=row.get('note'),
            source_account_id=row.get('source_account_id'),
            original_transaction_id=row.get('original_transaction_id'),
        )


@dataclass
class Valuation(_Record):
    id: int
    account_id: int
    net_value: Decimal
    market_value: Decimal
    date: datetime.date

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            account_id=row['account_id'],
            net_value=to_decimal(row['net_value']),
            market_value=to_decimal(row['market_value']),
            date=to_date(row['date']),
        )


# =============================================================================
# PLANS, EXECUTIONS, ADJUSTMENTS, REMINDERS
# =============================================================================

@dataclass
class Plan(_Record):
    id: int
    user_id: int
    name: str
    source_account_id: int
    target_account_id: int
    amount: Decimal
    frequency: Frequency
    execution_day: int
    execution_time: str
    status: PlanStatus
    next_execution_date: datetime.date

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            name=row['name'],
            source_account_id=row['source_account_id'],
            target_account_id=row['target_account_id'],
            amount=to_decimal(row['amount']),
            frequency=Frequency(row['frequency']),
            execution_day=row.get('execution_day'),
            execution_time=row['execution_time'],
            status=PlanStatus(row['status']),
            next_execution_date=to_date(row['next_execution_date']),
        )

    def is_due(self, now):
        """
        True when an active plan should fire at `now`.

        Dates before today are overdue and always fire; today's date fires
        once the wall clock reaches the plan's execution time.
        """
        if self.status != PlanStatus.ACTIVE:
            return False
        today = now.date()
        if self.next_execution_date < today:
            return True
        return self.next_execution_date == today and self.execution_time <= now.strftime('%H:%M')


@dataclass
class ExecutionRecord(_Record):
    id: int
    plan_id: int
    user_id: int
    source_account_id: int
    target_account_id: int
    paid_amount: Decimal
    invested_amount: Decimal
    discount_rate: Decimal
    shares: Decimal
    net_value: Decimal
    status: ExecutionStatus
    fail_reason: str
    executed_at: datetime.datetime

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            plan_id=row.get('plan_id'),
            user_id=row['user_id'],
            source_account_id=row['source_account_id'],
            target_account_id=row['target_account_id'],
            paid_amount=to_decimal(row['paid_amount']),
            invested_amount=to_decimal(row['invested_amount']),
            discount_rate=to_decimal(row['discount_rate']),
            shares=to_decimal(row['shares']),
            net_value=to_decimal(row['net_value']),
            status=ExecutionStatus(row['status']),
            fail_reason=row.get('fail_reason'),
            executed_at=to_datetime(row['executed_at']),
        )


@dataclass
class BalanceAdjustment(_Record):
    id: int
    user_id: int
    account_id: int
    previous_balance: Decimal
    new_balance: Decimal
    difference: Decimal
    note: str
    created_at: datetime.datetime

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            account_id=row['account_id'],
            previous_balance=to_decimal(row['previous_balance']),
            new_balance=to_decimal(row['new_balance']),
            difference=to_decimal(row['difference']),
            note=row.get('note'),
            created_at=to_datetime(row['created_at']),
        )


@dataclass
class Reminder(_Record):
    id: int
    user_id: int
    plan_id: int
    type: ReminderType
    message: str
    is_read: bool
    created_at: datetime.datetime

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            plan_id=row['plan_id'],
            type=ReminderType(row['type']),
            message=row['message'],
            is_read=bool(row['is_read']),
            created_at=to_datetime(row['created_at']),
        )
