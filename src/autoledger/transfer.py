"""
autoledger - Transfer executor

One transactional move of money: debit one account, credit another. Every
money-moving operation in the engine is an instance of this (scheduled plan
runs, one-off discounted buys, share purchases funded from cash, sells,
repayments and refunds).

Rules enforced here:
- both accounts are locked in ascending id order before anything is read
- credit and investment accounts can never be the debited side
- the debited account must hold at least the debit amount
- a credit account can never be credited by a transfer (repayments record a
  ledger entry instead; see transactions.TransactionService.repay)
- an investment target receives shares at its current net value; its cost
  price moves by weighted average and a valuation row is written

All steps run in one transaction. Any failure rolls every step back.
"""

from dataclasses import dataclass
from decimal import Decimal

from autoledger.calculations import (
    to_decimal, to_money, weighted_average_cost, share_count, market_value, require_positive, ZERO,
)
from autoledger.errors import InsufficientBalance, InvalidAccountRole, MissingNetValue
from autoledger.log import get_logger

logger = get_logger(__name__)

# Transfer kinds
TRANSFER = "transfer"   # plain move between ordinary accounts
INVEST = "invest"       # target may be an investment account


@dataclass
class TransferResult:
    source_account_id: int
    target_account_id: int
    debit_amount: Decimal
    credit_amount: Decimal
    source_balance: Decimal
    target_balance: Decimal
    shares: Decimal = ZERO
    net_value: Decimal = ZERO


class TransferExecutor:

    def __init__(self, db, accounts, clock):
        self.db = db
        self.accounts = accounts
        self.clock = clock

    # =============================================================================
    # LEGS (caller's transaction, accounts already locked)
    # =============================================================================

    def debit(self, cursor, account, amount):
        """
        Take `amount` out of a locked ordinary account.

        Returns:
            Decimal: The account's new balance.
        """
        if account.is_credit:
            raise InvalidAccountRole(
                f"Credit account '{account.name}' cannot be used as a funding source.",
                account_id=account.id,
            )
        if account.is_investment:
            raise InvalidAccountRole(
                f"Investment account '{account.name}' cannot be used as a funding source.",
                account_id=account.id,
            )
        if account.balance < to_money(amount):
            raise InsufficientBalance(
                f"Insufficient balance in '{account.name}'.",
                account_id=account.id,
                balance=str(account.balance),
                required=str(to_money(amount)),
            )
        return self.accounts.adjust_balance(cursor, account.id, -to_money(amount))

    def credit(self, cursor, account, amount, on_date):
        """
        Put `amount` into a locked account.

        Returns:
            tuple: (new balance, shares bought, net value used). Shares and
            net value are 0 for ordinary accounts.
        """
        if account.is_credit:
            raise InvalidAccountRole(
                f"Credit account '{account.name}' cannot receive a transfer.",
                account_id=account.id,
            )
        if not account.is_investment:
            return self.accounts.adjust_balance(cursor, account.id, amount), ZERO, ZERO

        net_value = to_decimal(account.current_net_value)
        if net_value <= 0:
            raise MissingNetValue(
                f"Investment account '{account.name}' has no net value to buy at.",
                account_id=account.id,
            )
        bought = share_count(amount, net_value)
        balance = self.buy_into(cursor, account, bought, net_value, on_date)
        return balance, bought, net_value

    def buy_into(self, cursor, account, shares, price, on_date):
        """
        Add `shares` bought at `price` to a locked investment account.

        Net value is left unchanged; only shares and cost price move.

        Returns:
            Decimal: The account's new market value.
        """
        current_shares = to_decimal(account.shares)
        new_cost = weighted_average_cost(current_shares, account.cost_price, shares, price)
        new_shares = current_shares + to_decimal(shares)
        net_value = to_decimal(account.current_net_value) or to_decimal(price)

        balance = self.accounts.update_position(cursor, account.id, new_shares, new_cost, net_value)
        self.accounts.add_valuation(cursor, account.id, net_value, market_value(new_shares, net_value), on_date)
        return balance

    # =============================================================================
    # TRANSFER
    # =============================================================================

    def transfer(self, user_id, source_account_id, target_account_id, debit_amount, credit_amount=None,
                 on_date=None, kind=TRANSFER, cursor=None):
        """
        Move money from one account to another, all or nothing.

        Args:
            user_id (int): Owner of both accounts.
            source_account_id (int): Account debited.
            target_account_id (int): Account credited.
            debit_amount: Amount taken from the source.
            credit_amount: Amount given to the target (defaults to
                debit_amount; differs for discounted buys).
            on_date (date): Valuation date for investment targets.
            kind (str): TRANSFER rejects investment targets, INVEST allows them.
            cursor: Join an outer transaction instead of opening one.

        Returns:
            TransferResult
        """
        debit_amount = to_money(require_positive(debit_amount, "Amount"))
        credit_amount = debit_amount if credit_amount is None else to_money(require_positive(credit_amount, "Amount"))

        if source_account_id == target_account_id:
            raise InvalidAccountRole("Source and target accounts must differ.", account_id=source_account_id)
        on_date = on_date or self.clock().date()

        with self.db.transaction(cursor) as cur:
            locked = self.accounts.lock_many(cur, user_id, [source_account_id, target_account_id])
            source = locked[source_account_id]
            target = locked[target_account_id]

            if kind == TRANSFER and target.is_investment:
                raise InvalidAccountRole(
                    f"Investment account '{target.name}' cannot receive a plain transfer.",
                    account_id=target.id,
                )
            if target.is_credit:
                raise InvalidAccountRole(
                    f"Credit account '{target.name}' cannot receive a transfer.",
                    account_id=target.id,
                )

            source_balance = self.debit(cur, source, debit_amount)
            target_balance, shares, net_value = self.credit(cur, target, credit_amount, on_date)

        logger.info(
            "transfer_completed",
            user_id=user_id,
            source_account_id=source_account_id,
            target_account_id=target_account_id,
            debit_amount=str(debit_amount),
            credit_amount=str(credit_amount),
            shares=str(shares),
        )
        return TransferResult(
            source_account_id=source_account_id,
            target_account_id=target_account_id,
            debit_amount=debit_amount,
            credit_amount=credit_amount,
            source_balance=source_balance,
            target_balance=target_balance,
            shares=shares,
            net_value=net_value,
        )
