"""
autoledger - Ledger entries, repayments and refunds

Every entry's balance effect is derived from its type and account:

    income, refund   +amount on the entry's account
    expense          -amount on the entry's account
    repayment        none on the credit account itself; the source account
                     was debited when the repayment was made

Credit accounts never have their stored balance touched here; what they owe
is recomputed from these rows by the CreditCalculator. Investment accounts
do not take ordinary income or expense entries.

Update and delete reverse the old effect and apply the new one inside the
same transaction, so balances always equal the sum of their entries' effects.
"""

from autoledger.calculations import to_decimal, to_money, require_positive, ZERO
from autoledger.database import to_date
from autoledger.errors import (
    LedgerError, NotFound, InvalidAccountRole, InvalidTransactionType,
    AlreadyFullyRefunded, RefundExceedsRefundable,
)
from autoledger.log import get_logger
from autoledger.models import Transaction, TransactionType
from autoledger.credit import available_credit

logger = get_logger(__name__)

TRANSACTION_COLUMNS = (
    "id, user_id, account_id, category_id, type, amount, date, note, "
    "source_account_id, original_transaction_id"
)

ENTRY_TYPES = (TransactionType.INCOME, TransactionType.EXPENSE)


def balance_effect(account, transaction_type, amount):
    """Signed change an entry makes to its account's stored balance."""
    if account.is_credit:
        return ZERO
    transaction_type = TransactionType(transaction_type)
    if transaction_type in (TransactionType.INCOME, TransactionType.REFUND):
        return to_money(amount)
    if transaction_type == TransactionType.EXPENSE:
        return -to_money(amount)
    return ZERO


class TransactionService:

    def __init__(self, db, accounts, transfers, credit, clock):
        self.db = db
        self.accounts = accounts
        self.transfers = transfers
        self.credit = credit
        self.clock = clock

    # =============================================================================
    # HELPERS
    # =============================================================================

    def _date(self, value):
        return to_date(value) if value else self.clock().date()

    def _load(self, cursor, user_id, transaction_id, lock=False):
        suffix = cursor.for_update if lock else ""
        row = cursor.execute(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE id = ? AND user_id = ?{suffix}",
            (transaction_id, user_id)
        ).fetchone()
        if row is None:
            raise NotFound(f"Transaction {transaction_id} not found.", transaction_id=transaction_id)
        return Transaction.from_row(row)

    def _insert(self, cursor, user_id, account_id, transaction_type, amount, on_date, category_id=None,
                note=None, source_account_id=None, original_transaction_id=None):
        cursor.execute(
            "INSERT INTO transactions (user_id, account_id, category_id, type, amount, date, note, "
            "source_account_id, original_transaction_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (user_id, account_id, category_id, TransactionType(transaction_type).value, to_money(amount),
             on_date, note, source_account_id, original_transaction_id)
        )
        return self._load(cursor, user_id, cursor.lastrowid)

    def _refunds_of(self, cursor, user_id, original_id, exclude_id=None):
        rows = cursor.execute(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions "
            "WHERE original_transaction_id = ? AND type = ? AND user_id = ? ORDER BY id",
            (original_id, TransactionType.REFUND.value, user_id)
        ).fetchall()
        return [Transaction.from_row(row) for row in rows if row['id'] != exclude_id]

    @staticmethod
    def _check_entry_account(account):
        if account.is_investment:
            raise InvalidAccountRole(
                f"Investment account '{account.name}' does not take income or expense entries.",
                account_id=account.id,
            )

    # =============================================================================
    # INCOME / EXPENSE
    # =============================================================================

    def create_transaction(self, user_id, account_id, transaction_type, amount, on_date=None,
                           category_id=None, note=None):
        """
        Record an income or expense and apply its balance effect.

        Expenses on a credit account only add to what the account owes.

        Returns:
            Transaction
        """
        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError:
            raise InvalidTransactionType(f"Unknown transaction type: {transaction_type}") from None
        if transaction_type not in ENTRY_TYPES:
            raise InvalidTransactionType(
                f"Use the dedicated operation to record a {transaction_type.value}.",
                type=transaction_type.value,
            )
        amount = to_money(require_positive(amount, "Amount"))

        with self.db.transaction() as cursor:
            account = self.accounts.lock(cursor, user_id, account_id)
            self._check_entry_account(account)
            entry = self._insert(cursor, user_id, account_id, transaction_type, amount,
                                 self._date(on_date), category_id, note)
            delta = balance_effect(account, transaction_type, amount)
            if delta:
                self.accounts.adjust_balance(cursor, account_id, delta)

        logger.info("transaction_created", user_id=user_id, transaction_id=entry.id,
                    type=transaction_type.value, amount=str(amount), account_id=account_id)
        return entry

    def get_transaction(self, user_id, transaction_id):
        with self.db.read() as cursor:
            return self._load(cursor, user_id, transaction_id)

    def list_transactions(self, user_id, account_id=None, category_id=None, transaction_type=None,
                          start_date=None, end_date=None, page=1, page_size=20):
        """Newest first, paged."""
        where = ["user_id = ?"]
        params = [user_id]
        if account_id:
            where.append("account_id = ?")
            params.append(account_id)
        if category_id:
            where.append("category_id = ?")
            params.append(category_id)
        if transaction_type:
            try:
                transaction_type = TransactionType(transaction_type)
            except ValueError:
                raise InvalidTransactionType(f"Unknown transaction type: {transaction_type}") from None
            where.append("type = ?")
            params.append(transaction_type.value)
        if start_date:
            where.append("date >= ?")
            params.append(to_date(start_date))
        if end_date:
            where.append("date <= ?")
            params.append(to_date(end_date))

        page = max(int(page), 1)
        page_size = max(int(page_size), 1)
        clause = " AND ".join(where)
        with self.db.read() as cursor:
            total = cursor.execute(f"SELECT COUNT(*) AS total FROM transactions WHERE {clause}", params).fetchone()
            rows = cursor.execute(
                f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE {clause} "
                "ORDER BY date DESC, id DESC LIMIT ? OFFSET ?",
                params + [page_size, (page - 1) * page_size]
            ).fetchall()

        return {
            'items': [Transaction.from_row(row) for row in rows],
            'total': int(total['total']),
            'page': page,
            'page_size': page_size,
        }

    def update_transaction(self, user_id, transaction_id, **changes):
        """
        Change an income or expense entry.

        Accepted keys: account_id, category_id, type, amount, date, note.
        The old balance effect is reversed on the old account and the new
        one applied to the (possibly different) new account.

        An expense that has refunds keeps its type, and its amount cannot
        drop below what has been refunded.
        """
        allowed = {'account_id', 'category_id', 'type', 'amount', 'date', 'note'}
        unknown = set(changes) - allowed
        if unknown:
            raise LedgerError(f"Unknown transaction fields: {', '.join(sorted(unknown))}")

        with self.db.transaction() as cursor:
            old = self._load(cursor, user_id, transaction_id, lock=True)
            if old.type not in ENTRY_TYPES:
                raise InvalidTransactionType(
                    f"A {old.type.value} cannot be edited as an income or expense entry.",
                    type=old.type.value,
                )

            try:
                new_type = TransactionType(changes.get('type', old.type))
            except ValueError:
                raise InvalidTransactionType(f"Unknown transaction type: {changes['type']}") from None
            if new_type not in ENTRY_TYPES:
                raise InvalidTransactionType(f"Cannot change an entry into a {new_type.value}.")

            new_amount = old.amount
            if 'amount' in changes:
                new_amount = to_money(require_positive(changes['amount'], "Amount"))
            new_account_id = changes.get('account_id') or old.account_id

            refunds = self._refunds_of(cursor, user_id, old.id)
            if refunds:
                refunded = sum((r.amount for r in refunds), ZERO)
                if new_type != TransactionType.EXPENSE:
                    raise InvalidTransactionType("An expense with refunds cannot change type.")
                if new_amount < refunded:
                    raise RefundExceedsRefundable(
                        f"Amount cannot be less than the {refunded} already refunded.",
                        refunded=str(refunded),
                    )

            locked = self.accounts.lock_many(cursor, user_id, [old.account_id, new_account_id])
            old_account = locked[old.account_id]
            new_account = locked[new_account_id]
            self._check_entry_account(new_account)

            reverse = -balance_effect(old_account, old.type, old.amount)
            if reverse:
                self.accounts.adjust_balance(cursor, old_account.id, reverse)
            apply = balance_effect(new_account, new_type, new_amount)
            if apply:
                self.accounts.adjust_balance(cursor, new_account.id, apply)

            cursor.execute(
                "UPDATE transactions SET account_id = ?, category_id = ?, type = ?, amount = ?, "
                "date = ?, note = ? WHERE id = ?",
                (new_account_id, changes.get('category_id', old.category_id), new_type.value, new_amount,
                 to_date(changes['date']) if changes.get('date') else old.date,
                 changes.get('note', old.note), transaction_id)
            )
            # Refunds follow their expense to its new account
            if refunds and new_account_id != old.account_id:
                for refund in refunds:
                    self._move_refund(cursor, refund, old_account, new_account)

            entry = self._load(cursor, user_id, transaction_id)

        logger.info("transaction_updated", user_id=user_id, transaction_id=transaction_id,
                    fields=sorted(changes))
        return entry

    def _move_refund(self, cursor, refund, old_account, new_account):
        reverse = -balance_effect(old_account, TransactionType.REFUND, refund.amount)
        if reverse:
            self.accounts.adjust_balance(cursor, old_account.id, reverse)
        apply = balance_effect(new_account, TransactionType.REFUND, refund.amount)
        if apply:
            self.accounts.adjust_balance(cursor, new_account.id, apply)
        cursor.execute("UPDATE transactions SET account_id = ? WHERE id = ?", (new_account.id, refund.id))

    def delete_transaction(self, user_id, transaction_id):
        """
        Delete any entry and reverse its balance effect.

        Deleting an expense also deletes its refunds. Repayments and refunds
        are routed to delete_repayment and delete_refund.
        """
        with self.db.transaction() as cursor:
            entry = self._load(cursor, user_id, transaction_id, lock=True)
            if entry.type == TransactionType.REPAYMENT:
                return self.delete_repayment(user_id, transaction_id, cursor=cursor)
            if entry.type == TransactionType.REFUND:
                return self.delete_refund(user_id, transaction_id, cursor=cursor)

            account = self.accounts.lock(cursor, user_id, entry.account_id)
            refunds = self._refunds_of(cursor, user_id, entry.id)
            reverse = -balance_effect(account, entry.type, entry.amount)
            for refund in refunds:
                reverse -= balance_effect(account, TransactionType.REFUND, refund.amount)
                cursor.execute("DELETE FROM transactions WHERE id = ?", (refund.id,))
            if reverse:
                self.accounts.adjust_balance(cursor, account.id, reverse)
            cursor.execute("DELETE FROM transactions WHERE id = ?", (entry.id,))

        logger.info("transaction_deleted", user_id=user_id, transaction_id=transaction_id,
                    refunds_deleted=len(refunds))

    # =============================================================================
    # REPAYMENT
    # =============================================================================

    def repay(self, user_id, credit_account_id, source_account_id, amount, on_date=None, note=None,
              category_id=None):
        """
        Pay down a credit account from an ordinary account.

        The source is debited; a repayment entry is recorded against the
        credit account, which lowers its derived outstanding balance.

        Returns:
            dict: transaction, outstanding_balance, available_credit
        """
        amount = to_money(require_positive(amount, "Amount"))

        with self.db.transaction() as cursor:
            locked = self.accounts.lock_many(cursor, user_id, [credit_account_id, source_account_id])
            credit_account = locked[credit_account_id]
            source = locked[source_account_id]
            if not credit_account.is_credit:
                raise InvalidAccountRole(
                    f"Account '{credit_account.name}' is not a credit account.",
                    account_id=credit_account_id,
                )
            self.transfers.debit(cursor, source, amount)
            entry = self._insert(
                cursor, user_id, credit_account_id, TransactionType.REPAYMENT, amount,
                self._date(on_date), category_id, note or "Repayment", source_account_id=source_account_id,
            )
            owed = self.credit.outstanding(credit_account_id, cursor=cursor)

        logger.info("repayment_recorded", user_id=user_id, credit_account_id=credit_account_id,
                    source_account_id=source_account_id, amount=str(amount), outstanding=str(owed))
        return {
            'transaction': entry,
            'outstanding_balance': owed,
            'available_credit': available_credit(credit_account.credit_limit or ZERO, owed),
        }

    def delete_repayment(self, user_id, transaction_id, cursor=None):
        """Remove a repayment and give the money back to its source account."""
        with self.db.transaction(cursor) as cur:
            entry = self._load(cur, user_id, transaction_id, lock=True)
            if entry.type != TransactionType.REPAYMENT:
                raise NotFound(f"Repayment {transaction_id} not found.", transaction_id=transaction_id)
            if entry.source_account_id is not None:
                self.accounts.lock(cur, user_id, entry.source_account_id)
                self.accounts.adjust_balance(cur, entry.source_account_id, entry.amount)
            cur.execute("DELETE FROM transactions WHERE id = ?", (entry.id,))

        logger.info("repayment_deleted", user_id=user_id, transaction_id=transaction_id,
                    amount=str(entry.amount))

    def repayment_history(self, user_id, account_id=None, limit=20, offset=0):
        where = "user_id = ? AND type = ?"
        params = [user_id, TransactionType.REPAYMENT.value]
        if account_id:
            where += " AND account_id = ?"
            params.append(account_id)

        with self.db.read() as cursor:
            total = cursor.execute(f"SELECT COUNT(*) AS total FROM transactions WHERE {where}", params).fetchone()
            rows = cursor.execute(
                f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE {where} "
                "ORDER BY date DESC, id DESC LIMIT ? OFFSET ?",
                params + [int(limit), int(offset)]
            ).fetchall()
        return {'transactions': [Transaction.from_row(row) for row in rows], 'total': int(total['total'])}

    # =============================================================================
    # REFUND
    # =============================================================================

    def _refund_totals(self, cursor, user_id, original, exclude_id=None):
        refunds = self._refunds_of(cursor, user_id, original.id, exclude_id=exclude_id)
        refunded = to_money(sum((r.amount for r in refunds), ZERO))
        return refunds, refunded, to_money(max(ZERO, original.amount - refunded))

    def refundable_amount(self, user_id, transaction_id):
        with self.db.read() as cursor:
            original = self._load(cursor, user_id, transaction_id)
            return self._refund_totals(cursor, user_id, original)[2]

    def refund_info(self, user_id, transaction_id):
        """Original entry, its refunds (newest first) and what is left to refund."""
        with self.db.read() as cursor:
            original = self._load(cursor, user_id, transaction_id)
            refunds, refunded, refundable = self._refund_totals(cursor, user_id, original)
        return {
            'original_transaction': original,
            'refunds': list(reversed(refunds)),
            'total_refunded': refunded,
            'refundable_amount': refundable,
        }

    def create_refund(self, user_id, original_transaction_id, amount, on_date=None, note=None):
        """
        Refund part or all of an expense.

        The refund is credited to the expense's account. On a credit account
        it is recorded against the expense but moves no balance, and the
        outstanding balance stays expense minus repayment.

        Returns:
            dict: refund, original (id, amount, refunded_amount,
            refundable_amount) and the account's balance afterwards.
        """
        with self.db.transaction() as cursor:
            original = self._load(cursor, user_id, original_transaction_id, lock=True)
            if original.type != TransactionType.EXPENSE:
                raise InvalidTransactionType(
                    "Only expenses can be refunded.",
                    transaction_id=original.id,
                    type=original.type.value,
                )
            amount = to_money(require_positive(amount, "Amount"))

            _, refunded, refundable = self._refund_totals(cursor, user_id, original)
            if refundable == 0:
                raise AlreadyFullyRefunded(f"Transaction {original.id} is already fully refunded.",
                                           transaction_id=original.id)
            if amount > refundable:
                raise RefundExceedsRefundable(
                    f"Refund exceeds the refundable amount of {refundable}.",
                    refundable_amount=str(refundable),
                )

            account = self.accounts.lock(cursor, user_id, original.account_id)
            refund = self._insert(
                cursor, user_id, original.account_id, TransactionType.REFUND, amount, self._date(on_date),
                original.category_id, note or f"Refund - {original.note or ''}".strip(' -'),
                original_transaction_id=original.id,
            )
            delta = balance_effect(account, TransactionType.REFUND, amount)
            balance = self.accounts.adjust_balance(cursor, account.id, delta) if delta else account.balance

        logger.info("refund_created", user_id=user_id, refund_id=refund.id,
                    original_transaction_id=original.id, amount=str(amount))
        return {
            'refund': refund,
            'original': {
                'id': original.id,
                'amount': original.amount,
                'refunded_amount': to_money(refunded + amount),
                'refundable_amount': to_money(refundable - amount),
            },
            'account_balance': balance,
        }

    def update_refund(self, user_id, refund_id, amount=None, on_date=None, note=None):
        with self.db.transaction() as cursor:
            refund = self._load(cursor, user_id, refund_id, lock=True)
            if refund.type != TransactionType.REFUND:
                raise NotFound(f"Refund {refund_id} not found.", refund_id=refund_id)

            new_amount = refund.amount
            if amount is not None and to_money(to_decimal(amount)) != refund.amount:
                new_amount = to_money(require_positive(amount, "Amount"))
                original = self._load(cursor, user_id, refund.original_transaction_id, lock=True)
                _, _, refundable = self._refund_totals(cursor, user_id, original, exclude_id=refund.id)
                if new_amount > refundable:
                    raise RefundExceedsRefundable(
                        f"Refund exceeds the refundable amount of {refundable}.",
                        refundable_amount=str(refundable),
                    )
                account = self.accounts.lock(cursor, user_id, refund.account_id)
                delta = balance_effect(account, TransactionType.REFUND, new_amount - refund.amount)
                if delta:
                    self.accounts.adjust_balance(cursor, account.id, delta)

            cursor.execute(
                "UPDATE transactions SET amount = ?, date = ?, note = ? WHERE id = ?",
                (new_amount, to_date(on_date) if on_date else refund.date,
                 refund.note if note is None else note, refund_id)
            )
            refund = self._load(cursor, user_id, refund_id)

        logger.info("refund_updated", user_id=user_id, refund_id=refund_id, amount=str(new_amount))
        return refund

    def delete_refund(self, user_id, refund_id, cursor=None):
        with self.db.transaction(cursor) as cur:
            refund = self._load(cur, user_id, refund_id, lock=True)
            if refund.type != TransactionType.REFUND:
                raise NotFound(f"Refund {refund_id} not found.", refund_id=refund_id)
            account = self.accounts.lock(cur, user_id, refund.account_id)
            delta = -balance_effect(account, TransactionType.REFUND, refund.amount)
            if delta:
                self.accounts.adjust_balance(cur, account.id, delta)
            cur.execute("DELETE FROM transactions WHERE id = ?", (refund.id,))

        logger.info("refund_deleted", user_id=user_id, refund_id=refund_id, amount=str(refund.amount))
