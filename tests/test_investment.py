"""Investment accounts: opening positions, trades and net value updates."""

from decimal import Decimal

import pytest

from autoledger.errors import InsufficientBalance, InsufficientShares, InvalidAccountRole, InvalidAmount, LedgerError

from conftest import USER_ID, balance_of


@pytest.fixture
def position(engine):
    view = engine.investments.create_investment_account(
        USER_ID, "Bond Fund", "2.0000", shares="100", cost_price="1.5",
    )
    return view['id']


def test_create_investment_account(engine, position):
    view = engine.investments.get_investment_account(USER_ID, position)

    assert view['type'] == "investment"
    assert view['balance'] == Decimal("200.00")
    assert view['total_cost'] == Decimal("150.00")
    assert view['profit'] == Decimal("50.00")
    assert view['profit_rate'] == Decimal("33.3333")
    assert len(engine.investments.valuation_history(USER_ID, position)) == 1


def test_create_requires_positive_net_value(engine):
    with pytest.raises(InvalidAmount):
        engine.investments.create_investment_account(USER_ID, "Fund", "0")
    with pytest.raises(LedgerError):
        engine.investments.create_investment_account(USER_ID, " ", "1")


def test_ordinary_create_refuses_investment_type(engine):
    with pytest.raises(InvalidAccountRole):
        engine.accounts.create(USER_ID, "Fund", "investment")


def test_buy_from_cash_moves_cost_to_weighted_average(engine, bank, position):
    result = engine.investments.buy_shares(USER_ID, position, "50", "2.1", source_account_id=bank.id)

    account = result['account']
    assert result['trade_amount'] == Decimal("105.00")
    assert account['shares'] == Decimal("150")
    assert account['cost_price'] == Decimal("1.7")
    # Net value is unchanged by a buy
    assert account['current_net_value'] == Decimal("2")
    assert account['balance'] == Decimal("300.00")
    assert balance_of(engine, bank) == Decimal("895.00")


def test_buy_without_funding_source(engine, position):
    result = engine.investments.buy_shares(USER_ID, position, "10", "2")
    assert result['account']['shares'] == Decimal("110")


def test_buy_with_short_funding_source_changes_nothing(engine, wallet, position):
    with pytest.raises(InsufficientBalance):
        engine.investments.buy_shares(USER_ID, position, "50", "2", source_account_id=wallet.id)
    assert engine.investments.get_investment_account(USER_ID, position)['shares'] == Decimal("100")


def test_sell_realizes_profit_and_pays_proceeds(engine, bank, position):
    result = engine.investments.sell_shares(USER_ID, position, "50", "2.5", target_account_id=bank.id)

    assert result['realized_profit'] == Decimal("50.00")
    assert result['trade_amount'] == Decimal("125.00")
    assert result['account']['shares'] == Decimal("50")
    assert result['account']['cost_price'] == Decimal("1.5")
    assert balance_of(engine, bank) == Decimal("1125.00")


def test_sell_at_a_loss(engine, position):
    result = engine.investments.sell_shares(USER_ID, position, "10", "1")
    assert result['realized_profit'] == Decimal("-5.00")


def test_selling_whole_position_resets_cost(engine, position):
    result = engine.investments.sell_shares(USER_ID, position, "100", "2")

    assert result['account']['shares'] == Decimal("0")
    assert result['account']['cost_price'] == Decimal("0")
    assert result['account']['balance'] == Decimal("0.00")


def test_cannot_sell_more_than_held(engine, position):
    with pytest.raises(InsufficientShares) as excinfo:
        engine.investments.sell_shares(USER_ID, position, "100.0001", "2")
    assert excinfo.value.code == "INSUFFICIENT_SHARES"


def test_sale_proceeds_cannot_go_to_credit_account(engine, card, position):
    with pytest.raises(InvalidAccountRole):
        engine.investments.sell_shares(USER_ID, position, "10", "2", target_account_id=card.id)
    assert engine.investments.get_investment_account(USER_ID, position)['shares'] == Decimal("100")


def test_trades_require_investment_account(engine, bank):
    with pytest.raises(InvalidAccountRole):
        engine.investments.buy_shares(USER_ID, bank.id, "1", "1")


def test_update_net_value_revalues_position(engine, clock, position):
    clock.advance(days=1)
    view = engine.investments.update_net_value(USER_ID, position, "2.5")

    assert view['balance'] == Decimal("250.00")
    assert view['profit'] == Decimal("100.00")
    history = engine.investments.valuation_history(USER_ID, position)
    assert [v.net_value for v in history] == [Decimal("2"), Decimal("2.5")]


def test_valuation_history_date_range(engine, clock, position):
    clock.advance(days=10)
    engine.investments.update_net_value(USER_ID, position, "2.2")

    history = engine.investments.valuation_history(USER_ID, position, start_date="2025-01-20")
    assert len(history) == 1
    assert history[0].net_value == Decimal("2.2")


def test_batch_net_value_update_is_all_or_nothing(engine, position, fund):
    with pytest.raises(InvalidAmount):
        engine.investments.update_net_values(USER_ID, [
            {'account_id': position, 'net_value': "3"},
            {'account_id': fund.id, 'net_value': "0"},
        ])
    assert engine.investments.get_investment_account(USER_ID, position)['current_net_value'] == Decimal("2")

    views = engine.investments.update_net_values(USER_ID, [
        {'account_id': position, 'net_value': "3"},
        {'account_id': fund.id, 'net_value': "1.5"},
    ])
    assert [v['balance'] for v in views] == [Decimal("300.00"), Decimal("0.00")]


def test_investment_summary(engine, position, fund):
    summary = engine.investments.investment_summary(USER_ID)

    assert summary['total_cost'] == Decimal("150.00")
    assert summary['total_value'] == Decimal("200.00")
    assert summary['total_profit'] == Decimal("50.00")
    assert len(summary['accounts']) == 2
