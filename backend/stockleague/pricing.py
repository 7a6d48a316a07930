from decimal import Decimal


STARTING_BANKROLL = Decimal("10000")

# Money columns hold 6 decimal places; anything closer than this is equal.
RESERVE_TOLERANCE = Decimal("0.000001")


def to_decimal(value: object) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def trade_cost(price: Decimal, quantity: Decimal) -> Decimal:
    """Cash needed for a fill: price * quantity, no fees."""
    return price * quantity


def covers_cost(reserve_value: Decimal, cost: Decimal) -> bool:
    return reserve_value + RESERVE_TOLERANCE >= cost


def weighted_average_price(
    average_buy_price: Decimal,
    quantity: Decimal,
    fill_price: Decimal,
    fill_quantity: Decimal,
) -> Decimal:
    """
    Cost basis after merging a fill into an existing position:
    (avg * qty + price * new_qty) / (qty + new_qty).
    """
    total_quantity = quantity + fill_quantity
    if total_quantity <= 0:
        return Decimal("0")
    return (average_buy_price * quantity + fill_price * fill_quantity) / total_quantity


def invested_value(total_value: Decimal, reserve_value: Decimal) -> Decimal:
    return total_value - reserve_value


def market_value(current_price: Decimal | None, quantity: Decimal) -> Decimal:
    if current_price is None:
        return Decimal("0")
    return current_price * quantity
