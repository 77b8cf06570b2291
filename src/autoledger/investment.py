"""
autoledger - Investment positions

Buying, selling and revaluing investment accounts. An investment account's
balance is always shares x current net value; every trade or revaluation
writes a valuation snapshot.
"""

from autoledger.calculations import (
    to_decimal, to_money, to_quantity, realized_profit, profit, profit_rate,
    require_positive, ZERO,
)
from autoledger.database import to_date
from autoledger.errors import LedgerError, InvalidAccountRole, InvalidAmount, InsufficientShares
from autoledger.log import get_logger

logger = get_logger(__name__)


def account_view(account):
    """Investment account as a dict with cost and profit figures."""
    view = account.to_dict()
    view.update(account.position())
    return view


class InvestmentService:

    def __init__(self, db, accounts, transfers, clock):
        self.db = db
        self.accounts = accounts
        self.transfers = transfers
        self.clock = clock

    def _date(self, value):
        return to_date(value) if value else self.clock().date()

    @staticmethod
    def _require_investment(account):
        if not account.is_investment:
            raise InvalidAccountRole(
                f"Account '{account.name}' is not an investment account.",
                account_id=account.id,
            )

    # =============================================================================
    # ACCOUNTS
    # =============================================================================

    def create_investment_account(self, user_id, name, net_value, shares=0, cost_price=0, on_date=None):
        """
        Open an investment account holding `shares` bought at `cost_price`.

        Returns:
            dict: account_view of the new account
        """
        net_value = require_positive(net_value, "Net value")
        if to_decimal(shares) < 0 or to_decimal(cost_price) < 0:
            raise InvalidAmount("Shares and cost price cannot be negative.")
        if not name or not str(name).strip():
            raise LedgerError("Account name is required.")

        account = self.accounts.create_investment(
            user_id, str(name).strip(), shares, cost_price, net_value, self._date(on_date),
        )
        logger.info("investment_account_created", user_id=user_id, account_id=account.id,
                    shares=str(account.shares), net_value=str(account.current_net_value))
        return account_view(account)

    def get_investment_account(self, user_id, account_id):
        account = self.accounts.get(user_id, account_id)
        self._require_investment(account)
        return account_view(account)

    def investment_summary(self, user_id):
        """Totals across all of a user's investment accounts."""
        views = [account_view(a) for a in self.accounts.list(user_id, account_type='investment')]
        cost = to_money(sum((v['total_cost'] for v in views), ZERO))
        value = to_money(sum((v['balance'] for v in views), ZERO))
        gain = profit(value, cost)
        return {
            'total_cost': cost,
            'total_value': value,
            'total_profit': gain,
            'profit_rate': profit_rate(gain, cost),
            'accounts': views,
        }

    def valuation_history(self, user_id, account_id, start_date=None, end_date=None):
        account = self.accounts.get(user_id, account_id)
        self._require_investment(account)
        return self.accounts.valuations(account_id, start_date and to_date(start_date), end_date and to_date(end_date))

    # =============================================================================
    # TRADES
    # =============================================================================

    def buy_shares(self, user_id, account_id, shares, price, on_date=None, source_account_id=None):
        """
        Buy `shares` at `price`, optionally paid from an ordinary account.

        The cost price moves to the weighted average of the old position and
        the purchase. The account's net value is not changed by a buy.

        Returns:
            dict: account (view) and trade_amount
        """
        shares = to_quantity(require_positive(shares, "Shares"))
        price = to_quantity(require_positive(price, "Price"))
        trade_amount = to_money(shares * price)
        on_date = self._date(on_date)

        ids = [account_id] + ([source_account_id] if source_account_id else [])
        with self.db.transaction() as cursor:
            locked = self.accounts.lock_many(cursor, user_id, ids)
            account = locked[account_id]
            self._require_investment(account)
            if source_account_id:
                if source_account_id == account_id:
                    raise InvalidAccountRole("Source and target accounts must differ.", account_id=account_id)
                self.transfers.debit(cursor, locked[source_account_id], trade_amount)
            self.transfers.buy_into(cursor, account, shares, price, on_date)
            account = self.accounts.get(user_id, account_id, cursor=cursor)

        logger.info("shares_bought", user_id=user_id, account_id=account_id, shares=str(shares),
                    price=str(price), trade_amount=str(trade_amount), source_account_id=source_account_id)
        return {'account': account_view(account), 'trade_amount': trade_amount}

    def sell_shares(self, user_id, account_id, shares, price, on_date=None, target_account_id=None):
        """
        Sell `shares` at `price`, optionally paying the proceeds into an ordinary account.

        Selling the whole position resets the cost price to 0.

        Returns:
            dict: account (view), realized_profit and trade_amount

        Raises:
            InsufficientShares: selling more than is held.
        """
        shares = to_quantity(require_positive(shares, "Shares"))
        price = to_quantity(require_positive(price, "Price"))
        trade_amount = to_money(shares * price)
        on_date = self._date(on_date)

        ids = [account_id] + ([target_account_id] if target_account_id else [])
        with self.db.transaction() as cursor:
            locked = self.accounts.lock_many(cursor, user_id, ids)
            account = locked[account_id]
            self._require_investment(account)

            held = to_decimal(account.shares)
            if shares > held:
                raise InsufficientShares(
                    f"Cannot sell {shares} shares; only {held} held.",
                    account_id=account_id,
                    shares=str(held),
                    requested=str(shares),
                )

            gain = realized_profit(shares, price, account.cost_price)
            remaining = held - shares
            cost_price = account.cost_price if remaining > 0 else ZERO
            net_value = to_decimal(account.current_net_value) or price
            balance = self.accounts.update_position(cursor, account_id, remaining, cost_price, net_value)
            self.accounts.add_valuation(cursor, account_id, net_value, balance, on_date)

            if target_account_id:
                if target_account_id == account_id:
                    raise InvalidAccountRole("Source and target accounts must differ.", account_id=account_id)
                target = locked[target_account_id]
                if target.is_investment:
                    raise InvalidAccountRole(
                        f"Sale proceeds cannot go to investment account '{target.name}'.",
                        account_id=target.id,
                    )
                self.transfers.credit(cursor, target, trade_amount, on_date)

            account = self.accounts.get(user_id, account_id, cursor=cursor)

        logger.info("shares_sold", user_id=user_id, account_id=account_id, shares=str(shares),
                    price=str(price), realized_profit=str(gain), target_account_id=target_account_id)
        return {'account': account_view(account), 'realized_profit': gain, 'trade_amount': trade_amount}

    # =============================================================================
    # NET VALUE
    # =============================================================================

    def _revalue(self, cursor, user_id, account_id, net_value, on_date):
        net_value = to_quantity(require_positive(net_value, "Net value"))
        account = self.accounts.lock(cursor, user_id, account_id)
        self._require_investment(account)
        balance = self.accounts.update_position(cursor, account_id, account.shares or ZERO,
                                                account.cost_price or ZERO, net_value)
        self.accounts.add_valuation(cursor, account_id, net_value, balance, on_date)
        return self.accounts.get(user_id, account_id, cursor=cursor)

    def update_net_value(self, user_id, account_id, net_value, on_date=None):
        """Set a new net value; balance becomes shares x net value."""
        with self.db.transaction() as cursor:
            account = self._revalue(cursor, user_id, account_id, net_value, self._date(on_date))

        logger.info("net_value_updated", user_id=user_id, account_id=account_id,
                    net_value=str(account.current_net_value), balance=str(account.balance))
        return account_view(account)

    def update_net_values(self, user_id, updates, on_date=None):
        """
        Revalue several accounts at once; all succeed or none do.

        Args:
            updates (list): dicts with 'account_id' and 'net_value'.
        """
        on_date = self._date(on_date)
        with self.db.transaction() as cursor:
            results = [
                self._revalue(cursor, user_id, update['account_id'], update['net_value'], on_date)
                for update in updates
            ]

        logger.info("net_values_updated", user_id=user_id, count=len(results))
        return [account_view(account) for account in results]
