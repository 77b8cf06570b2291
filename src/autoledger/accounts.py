"""
autoledger - Account store

Per-account balance and investment position. Account rows are mutated only
through this module: `adjust_balance` for ordinary deltas, `set_balance` for
reconciliation, and `update_position` for investment accounts.

Every method that mutates takes the caller's cursor; it never opens its own
transaction, so the caller decides what commits together.
"""

from autoledger.calculations import to_money, to_quantity, market_value, require_positive, ZERO
from autoledger.errors import LedgerError, NotFound, InvalidAccountRole, InvalidAmount
from autoledger.log import get_logger
from autoledger.models import Account, AccountType, Valuation

logger = get_logger(__name__)

ACCOUNT_COLUMNS = (
    "id, user_id, name, type, balance, credit_limit, billing_day, due_day, "
    "shares, cost_price, current_net_value"
)


def _account_type(value):
    try:
        return AccountType(value)
    except ValueError:
        raise LedgerError(f"Unknown account type: {value}", type=value) from None


class AccountStore:
    """Reads and row-locked writes of the `accounts` and `valuations` tables."""

    def __init__(self, db):
        self.db = db

    # =============================================================================
    # CREATION
    # =============================================================================

    def create(self, user_id, name, account_type, balance=0, credit_limit=None,
               billing_day=None, due_day=None, cursor=None):
        """
        Create a cash, bank, wallet, credit or other account.

        Credit accounts keep no stored balance; their owed amount is derived
        from the transaction log (see CreditCalculator).

        Args:
            user_id (int): Owner.
            name (str): Display name.
            account_type (str): One of AccountType (not 'investment').
            balance: Opening balance for non-credit accounts.
            credit_limit: Required for credit accounts.
            billing_day (int): Statement day of month (credit only).
            due_day (int): Payment due day of month (credit only).

        Returns:
            Account: The created account.
        """
        account_type = _account_type(account_type)
        if account_type == AccountType.INVESTMENT:
            raise InvalidAccountRole("Use create_investment_account for investment accounts.")
        if not name or not str(name).strip():
            raise LedgerError("Account name is required.")

        if account_type == AccountType.CREDIT:
            credit_limit = require_positive(credit_limit, "Credit limit")
            for label, day in (("billing_day", billing_day), ("due_day", due_day)):
                if day is not None and not 1 <= int(day) <= 31:
                    raise InvalidAmount(f"{label} must be between 1 and 31.", **{label: day})
            balance = ZERO
        else:
            credit_limit = billing_day = due_day = None

        with self.db.transaction(cursor) as cur:
            cur.execute(
                "INSERT INTO accounts (user_id, name, type, balance, credit_limit, billing_day, due_day) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (user_id, str(name).strip(), account_type.value, to_money(balance),
                 to_money(credit_limit) if credit_limit is not None else None,
                 billing_day, due_day)
            )
            account_id = cur.lastrowid
            account = self.get(user_id, account_id, cursor=cur)

        logger.info("account_created", user_id=user_id, account_id=account_id, type=account_type.value)
        return account

    def create_investment(self, user_id, name, shares, cost_price, net_value, on_date, cursor=None):
        """Insert an investment account and its opening valuation row."""
        shares = to_quantity(shares)
        cost_price = to_quantity(cost_price)
        net_value = to_quantity(net_value)
        balance = market_value(shares, net_value)

        with self.db.transaction(cursor) as cur:
            cur.execute(
                "INSERT INTO accounts (user_id, name, type, balance, shares, cost_price, current_net_value) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (user_id, name, AccountType.INVESTMENT.value, balance, shares, cost_price, net_value)
            )
            account_id = cur.lastrowid
            self.add_valuation(cur, account_id, net_value, balance, on_date)
            return self.get(user_id, account_id, cursor=cur)

    # =============================================================================
    # READS
    # =============================================================================

    def get(self, user_id, account_id, cursor=None):
        """Fetch one account owned by `user_id`; NotFound otherwise."""
        with self.db.read(cursor) as cur:
            row = cur.execute(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ? AND user_id = ?",
                (account_id, user_id)
            ).fetchone()
        if row is None:
            raise NotFound(f"Account {account_id} not found.", account_id=account_id)
        return Account.from_row(row)

    def list(self, user_id, account_type=None, cursor=None):
        query = f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE user_id = ?"
        params = [user_id]
        if account_type:
            query += " AND type = ?"
            params.append(_account_type(account_type).value)
        query += " ORDER BY id"

        with self.db.read(cursor) as cur:
            rows = cur.execute(query, params).fetchall()
        return [Account.from_row(row) for row in rows]

    # =============================================================================
    # LOCKING
    # =============================================================================

    def lock(self, cursor, user_id, account_id):
        """
        Load an account under a row lock for the rest of the caller's transaction.

        On SQLite the whole database is already write-locked by BEGIN IMMEDIATE.
        """
        row = cursor.execute(
            f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ? AND user_id = ?{cursor.for_update}",
            (account_id, user_id)
        ).fetchone()
        if row is None:
            raise NotFound(f"Account {account_id} not found.", account_id=account_id)
        return Account.from_row(row)

    def lock_many(self, cursor, user_id, account_ids):
        """
        Lock several accounts in ascending id order.

        Two transfers touching the same pair always acquire the pair in the
        same order, so neither can hold one lock while waiting on the other.

        Returns:
            dict: account id -> Account
        """
        locked = {}
        for account_id in sorted(set(account_ids)):
            locked[account_id] = self.lock(cursor, user_id, account_id)
        return locked

    # =============================================================================
    # MUTATIONS (caller's transaction)
    # =============================================================================

    def adjust_balance(self, cursor, account_id, delta):
        """
        Add `delta` to an account's stored balance.

        The balance is re-read under the row lock, so concurrent deltas on the
        same account never interleave their read-modify-write.

        Returns:
            Decimal: The new balance.
        """
        row = cursor.execute(
            f"SELECT balance FROM accounts WHERE id = ?{cursor.for_update}",
            (account_id,)
        ).fetchone()
        if row is None:
            raise NotFound(f"Account {account_id} not found.", account_id=account_id)

        new_balance = to_money(to_money(row['balance']) + to_money(delta))
        cursor.execute("UPDATE accounts SET balance = ? WHERE id = ?", (new_balance, account_id))
        return new_balance

    def set_balance(self, cursor, account_id, balance):
        """Replace the stored balance. Reserved for balance reconciliation."""
        balance = to_money(balance)
        cursor.execute("UPDATE accounts SET balance = ? WHERE id = ?", (balance, account_id))
        return balance

    def update_position(self, cursor, account_id, shares, cost_price, net_value):
        """
        Persist an investment position; balance becomes shares x net value.

        Returns:
            Decimal: The new market value (stored balance).
        """
        shares = to_quantity(shares)
        balance = market_value(shares, net_value)
        cursor.execute(
            "UPDATE accounts SET shares = ?, cost_price = ?, current_net_value = ?, balance = ? WHERE id = ?",
            (shares, to_quantity(cost_price), to_quantity(net_value), balance, account_id)
        )
        return balance

    # =============================================================================
    # VALUATIONS
    # =============================================================================

    def add_valuation(self, cursor, account_id, net_value, market_value_, on_date):
        cursor.execute(
            "INSERT INTO valuations (account_id, net_value, market_value, date) VALUES (?, ?, ?, ?)",
            (account_id, to_quantity(net_value), to_money(market_value_), on_date)
        )
        return cursor.lastrowid

    def valuations(self, account_id, start_date=None, end_date=None, cursor=None):
        """Valuation snapshots for one account, oldest first."""
        query = "SELECT id, account_id, net_value, market_value, date FROM valuations WHERE account_id = ?"
        params = [account_id]
        if start_date:
            query += " AND date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND date <= ?"
            params.append(end_date)
        query += " ORDER BY date, id"

        with self.db.read(cursor) as cur:
            rows = cur.execute(query, params).fetchall()
        return [Valuation.from_row(row) for row in rows]
