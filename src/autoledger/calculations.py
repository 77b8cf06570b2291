"""
autoledger - Ledger primitives

Pure decimal arithmetic for balances and investment positions. Nothing here
touches the database.

Rounding policy: every public function rounds its result exactly once, half
away from zero, to the precision of the field it produces:

    money (balances, amounts, profit)          2 places
    quantity (shares, prices, net values, rates) 4 places

Inputs may be Decimal, int or str; floats are converted through str() so a
float 0.1 becomes Decimal("0.1") rather than its binary expansion.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from autoledger.errors import InvalidAmount

MONEY_PLACES = 2
QUANTITY_PLACES = 4

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


# =============================================================================
# ROUNDING HELPERS
# =============================================================================

def to_decimal(value):
    """Convert a stored or caller-supplied value to Decimal (None -> 0)."""
    if value is None or value == '':
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise InvalidAmount(f"Not a number: {value!r}", value=str(value)) from None


def quantize(value, places):
    """Round half away from zero to a fixed number of decimal places."""
    exponent = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def to_money(value):
    return quantize(value, MONEY_PLACES)


def to_quantity(value):
    return quantize(value, QUANTITY_PLACES)


# =============================================================================
# POSITION ARITHMETIC
# =============================================================================

def weighted_average_cost(current_shares, current_cost, buy_shares, buy_price):
    """
    Cost price per share after adding `buy_shares` bought at `buy_price`.

    (cur_shares * cur_cost + buy_shares * buy_price) / (cur_shares + buy_shares)

    Returns 0 when the resulting position holds no shares.
    """
    current_shares = to_decimal(current_shares)
    buy_shares = to_decimal(buy_shares)
    total_shares = current_shares + buy_shares
    if total_shares == 0:
        return to_quantity(ZERO)

    total_cost = current_shares * to_decimal(current_cost) + buy_shares * to_decimal(buy_price)
    return to_quantity(total_cost / total_shares)


def realized_profit(sell_shares, sell_price, cost_price):
    """Profit locked in by selling `sell_shares` at `sell_price`."""
    return to_money(to_decimal(sell_shares) * (to_decimal(sell_price) - to_decimal(cost_price)))


def market_value(shares, net_value):
    return to_money(to_decimal(shares) * to_decimal(net_value))


def total_cost(shares, cost_price):
    return to_money(to_decimal(shares) * to_decimal(cost_price))


def profit(market_value_, total_cost_):
    return to_money(to_decimal(market_value_) - to_decimal(total_cost_))


def profit_rate(profit_, total_cost_):
    """Profit as a percentage of cost (10.5 means 10.5%); 0 when there is no cost."""
    total_cost_ = to_decimal(total_cost_)
    if total_cost_ <= 0:
        return to_quantity(ZERO)
    return to_quantity(HUNDRED * to_decimal(profit_) / total_cost_)


def discount_rate(paid_amount, invested_amount):
    """
    Ratio of the amount actually paid to the investment value received.

    Example: paying 95 for 100 of fund value gives 0.95.
    """
    invested_amount = to_decimal(invested_amount)
    if invested_amount <= 0:
        raise InvalidAmount("Invested amount must be greater than 0.", invested_amount=str(invested_amount))
    return to_quantity(to_decimal(paid_amount) / invested_amount)


def share_count(amount, net_value):
    """Shares obtained for `amount` at `net_value` per share."""
    net_value = to_decimal(net_value)
    if net_value <= 0:
        raise InvalidAmount("Net value must be greater than 0.", net_value=str(net_value))
    return to_quantity(to_decimal(amount) / net_value)


def investment_stats(shares, cost_price, net_value):
    """Derived figures shown alongside an investment position."""
    cost = total_cost(shares, cost_price)
    value = market_value(shares, net_value)
    gain = profit(value, cost)
    return {
        'total_cost': cost,
        'market_value': value,
        'profit': gain,
        'profit_rate': profit_rate(gain, cost),
    }


def require_positive(value, label):
    """Return `value` as Decimal, raising InvalidAmount unless it is > 0."""
    value = to_decimal(value)
    if value <= 0:
        raise InvalidAmount(f"{label} must be greater than 0.", **{label.lower().replace(' ', '_'): str(value)})
    return value
