"""
autoledger - Ledger engine

LedgerEngine wires the services together around one Database and one clock.
It is stateless apart from that wiring: every operation opens its own unit
of work, so a single engine is shared by the API, the scheduler thread and
the CLI.

Services (attributes):
    accounts        AccountStore          balances, locking, valuations
    credit          CreditCalculator      outstanding balance, due reminders
    transfers       TransferExecutor      debit/credit in one transaction
    plans           PlanService           plan lifecycle and next dates
    reminders       ReminderService       failure / low balance notices
    execution       ExecutionService      plan runs, one-off buys, records
    transactions    TransactionService    entries, repayments, refunds
    investments     InvestmentService     buy, sell, net value
    reconciliation  ReconciliationService quick balance

Usage:
    engine = LedgerEngine(Database.sqlite("ledger.db"))
    engine.transfer(user_id=1, source_account_id=1, target_account_id=2, amount="50.00")
"""

import datetime

from autoledger.accounts import AccountStore
from autoledger.config import get_settings
from autoledger.credit import CreditCalculator
from autoledger.database import Database
from autoledger.execution import ExecutionService
from autoledger.investment import InvestmentService, account_view
from autoledger.plans import PlanService
from autoledger.reconciliation import ReconciliationService
from autoledger.reminders import ReminderService
from autoledger.transactions import TransactionService
from autoledger.transfer import TransferExecutor, TRANSFER


class LedgerEngine:

    def __init__(self, db=None, clock=None, settings=None):
        self.settings = settings or get_settings()
        self.db = db or Database.from_settings(self.settings)
        self.clock = clock or datetime.datetime.now

        self.accounts = AccountStore(self.db)
        self.credit = CreditCalculator(self.db, self.accounts, self.clock)
        self.transfers = TransferExecutor(self.db, self.accounts, self.clock)
        self.plans = PlanService(self.db, self.accounts, self.clock, self.settings.default_execution_time)
        self.reminders = ReminderService(self.db, self.clock)
        self.execution = ExecutionService(self.db, self.transfers, self.plans, self.reminders, self.clock)
        self.transactions = TransactionService(self.db, self.accounts, self.transfers, self.credit, self.clock)
        self.investments = InvestmentService(self.db, self.accounts, self.transfers, self.clock)
        self.reconciliation = ReconciliationService(self.db, self.accounts, self.clock)

    # =============================================================================
    # ACCOUNTS
    # =============================================================================

    def describe_account(self, account):
        """Account dict with the figures derived for its type."""
        if account.is_investment:
            return account_view(account)
        view = account.to_dict()
        if account.is_credit:
            details = self.credit.details(account)
            view['outstanding_balance'] = details['outstanding_balance']
            view['available_credit'] = details['available_credit']
        return view

    def create_account(self, user_id, name, account_type, balance=0, credit_limit=None,
                       billing_day=None, due_day=None):
        account = self.accounts.create(user_id, name, account_type, balance, credit_limit, billing_day, due_day)
        return self.describe_account(account)

    def get_account(self, user_id, account_id):
        return self.describe_account(self.accounts.get(user_id, account_id))

    def list_accounts(self, user_id, account_type=None):
        return [self.describe_account(a) for a in self.accounts.list(user_id, account_type)]

    # =============================================================================
    # TRANSFERS
    # =============================================================================

    def transfer(self, user_id, source_account_id, target_account_id, amount, on_date=None):
        """Plain transfer between two ordinary accounts."""
        return self.transfers.transfer(
            user_id, source_account_id, target_account_id, amount, on_date=on_date, kind=TRANSFER,
        )

    def run_due_plans(self, now=None):
        return self.execution.run_due_plans(now)
