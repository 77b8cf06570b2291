"""Income and expense entries, repayments and refunds."""

import datetime
from decimal import Decimal

import pytest

from autoledger.errors import (
    AlreadyFullyRefunded, InsufficientBalance, InvalidAccountRole, InvalidTransactionType,
    NotFound, RefundExceedsRefundable,
)

from conftest import USER_ID, balance_of


# =============================================================================
# INCOME / EXPENSE
# =============================================================================

def test_income_and_expense_change_balance(engine, bank):
    income = engine.transactions.create_transaction(USER_ID, bank.id, "income", "500", note="Salary")
    engine.transactions.create_transaction(USER_ID, bank.id, "expense", "200")

    assert income.date == datetime.date(2025, 1, 15)
    assert income.note == "Salary"
    assert balance_of(engine, bank) == Decimal("1300.00")


def test_expense_may_overdraw_account(engine, wallet):
    engine.transactions.create_transaction(USER_ID, wallet.id, "expense", "25")
    assert balance_of(engine, wallet) == Decimal("-25.00")


@pytest.mark.parametrize("transaction_type", ["refund", "repayment", "gift"])
def test_only_income_and_expense_are_created_directly(engine, bank, transaction_type):
    with pytest.raises(InvalidTransactionType):
        engine.transactions.create_transaction(USER_ID, bank.id, transaction_type, "10")


def test_investment_accounts_take_no_entries(engine, fund):
    with pytest.raises(InvalidAccountRole):
        engine.transactions.create_transaction(USER_ID, fund.id, "income", "10")


def test_update_reverses_old_effect(engine, bank, wallet):
    expense = engine.transactions.create_transaction(USER_ID, bank.id, "expense", "200")

    engine.transactions.update_transaction(USER_ID, expense.id, amount="150")
    assert balance_of(engine, bank) == Decimal("850.00")

    moved = engine.transactions.update_transaction(USER_ID, expense.id, account_id=wallet.id, type="income")
    assert moved.account_id == wallet.id
    assert balance_of(engine, bank) == Decimal("1000.00")
    assert balance_of(engine, wallet) == Decimal("150.00")


def test_delete_reverses_effect(engine, bank):
    income = engine.transactions.create_transaction(USER_ID, bank.id, "income", "75.50")
    engine.transactions.delete_transaction(USER_ID, income.id)

    assert balance_of(engine, bank) == Decimal("1000.00")
    with pytest.raises(NotFound):
        engine.transactions.get_transaction(USER_ID, income.id)


def test_list_transactions_pages_newest_first(engine, clock, bank):
    for day in range(3):
        engine.transactions.create_transaction(USER_ID, bank.id, "income", "10")
        clock.advance(days=1)

    page = engine.transactions.list_transactions(USER_ID, page=1, page_size=2)
    assert page['total'] == 3
    assert [t.date.day for t in page['items']] == [17, 16]

    filtered = engine.transactions.list_transactions(USER_ID, start_date="2025-01-16", transaction_type="income")
    assert filtered['total'] == 2


# =============================================================================
# REPAYMENT
# =============================================================================

def test_repay_debits_source_and_lowers_outstanding(engine, bank, card):
    engine.transactions.create_transaction(USER_ID, card.id, "expense", "400")

    result = engine.transactions.repay(USER_ID, card.id, bank.id, "150")

    assert result['outstanding_balance'] == Decimal("250.00")
    assert result['available_credit'] == Decimal("4750.00")
    assert result['transaction'].source_account_id == bank.id
    assert balance_of(engine, bank) == Decimal("850.00")


def test_repay_requires_credit_target_and_funds(engine, bank, wallet, card):
    with pytest.raises(InvalidAccountRole):
        engine.transactions.repay(USER_ID, wallet.id, bank.id, "10")
    with pytest.raises(InsufficientBalance):
        engine.transactions.repay(USER_ID, card.id, wallet.id, "10")


def test_delete_repayment_refunds_source(engine, bank, card):
    entry = engine.transactions.repay(USER_ID, card.id, bank.id, "150")['transaction']

    engine.transactions.delete_transaction(USER_ID, entry.id)

    assert balance_of(engine, bank) == Decimal("1000.00")
    assert engine.transactions.repayment_history(USER_ID)['total'] == 0


def test_repayment_history(engine, bank, card):
    engine.transactions.repay(USER_ID, card.id, bank.id, "10")
    engine.transactions.repay(USER_ID, card.id, bank.id, "20")

    history = engine.transactions.repayment_history(USER_ID, account_id=card.id, limit=1)
    assert history['total'] == 2
    assert len(history['transactions']) == 1


def test_repayment_cannot_be_edited_as_entry(engine, bank, card):
    entry = engine.transactions.repay(USER_ID, card.id, bank.id, "10")['transaction']
    with pytest.raises(InvalidTransactionType):
        engine.transactions.update_transaction(USER_ID, entry.id, amount="20")


# =============================================================================
# REFUND
# =============================================================================

@pytest.fixture
def expense(engine, bank):
    return engine.transactions.create_transaction(USER_ID, bank.id, "expense", "300", note="Shoes")


def test_partial_and_full_refund(engine, bank, expense):
    first = engine.transactions.create_refund(USER_ID, expense.id, "100")

    assert first['account_balance'] == Decimal("800.00")
    assert first['original']['refunded_amount'] == Decimal("100.00")
    assert first['original']['refundable_amount'] == Decimal("200.00")
    assert first['refund'].note == "Refund - Shoes"

    with pytest.raises(RefundExceedsRefundable):
        engine.transactions.create_refund(USER_ID, expense.id, "200.01")

    engine.transactions.create_refund(USER_ID, expense.id, "200")
    with pytest.raises(AlreadyFullyRefunded):
        engine.transactions.create_refund(USER_ID, expense.id, "1")

    info = engine.transactions.refund_info(USER_ID, expense.id)
    assert info['total_refunded'] == Decimal("300.00")
    assert info['refundable_amount'] == Decimal("0.00")
    assert [r.amount for r in info['refunds']] == [Decimal("200.00"), Decimal("100.00")]
    assert balance_of(engine, bank) == Decimal("1000.00")


def test_only_expenses_are_refundable(engine, bank):
    income = engine.transactions.create_transaction(USER_ID, bank.id, "income", "10")
    with pytest.raises(InvalidTransactionType):
        engine.transactions.create_refund(USER_ID, income.id, "5")


def test_update_and_delete_refund(engine, bank, expense):
    refund = engine.transactions.create_refund(USER_ID, expense.id, "100")['refund']

    engine.transactions.update_refund(USER_ID, refund.id, amount="150")
    assert balance_of(engine, bank) == Decimal("850.00")
    with pytest.raises(RefundExceedsRefundable):
        engine.transactions.update_refund(USER_ID, refund.id, amount="300.01")

    engine.transactions.delete_refund(USER_ID, refund.id)
    assert balance_of(engine, bank) == Decimal("700.00")
    assert engine.transactions.refundable_amount(USER_ID, expense.id) == Decimal("300.00")


def test_refunded_expense_keeps_type_and_minimum(engine, expense):
    engine.transactions.create_refund(USER_ID, expense.id, "100")

    with pytest.raises(InvalidTransactionType):
        engine.transactions.update_transaction(USER_ID, expense.id, type="income")
    with pytest.raises(RefundExceedsRefundable):
        engine.transactions.update_transaction(USER_ID, expense.id, amount="99.99")


def test_refunds_follow_expense_to_new_account(engine, bank, wallet, expense):
    refund = engine.transactions.create_refund(USER_ID, expense.id, "100")['refund']

    engine.transactions.update_transaction(USER_ID, expense.id, account_id=wallet.id)

    assert balance_of(engine, bank) == Decimal("1000.00")
    assert balance_of(engine, wallet) == Decimal("-200.00")
    assert engine.transactions.get_transaction(USER_ID, refund.id).account_id == wallet.id


def test_deleting_expense_deletes_its_refunds(engine, bank, expense):
    refund = engine.transactions.create_refund(USER_ID, expense.id, "100")['refund']

    engine.transactions.delete_transaction(USER_ID, expense.id)

    assert balance_of(engine, bank) == Decimal("1000.00")
    with pytest.raises(NotFound):
        engine.transactions.get_transaction(USER_ID, refund.id)
