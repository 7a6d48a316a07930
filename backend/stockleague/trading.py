from __future__ import annotations

from decimal import Decimal, InvalidOperation

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import Identity
from .errors import ErrorCode, LedgerError
from .gateway import DataGateway
from .logging_config import get_logger
from .market import get_stock
from .models import Portfolio, PortfolioHolding
from .portfolios import PortfolioScope, resolve_portfolio
from .pricing import RESERVE_TOLERANCE, covers_cost, to_decimal, trade_cost, weighted_average_price
from .schemas import ActionResult, BuyResult

logger = get_logger(__name__)

TRANSACTION_TYPE_BUY = "buy"


def normalize_price(raw_price: object) -> Decimal:
    if isinstance(raw_price, bool):
        raise LedgerError(ErrorCode.VALIDATION, "price must be a number")
    try:
        price = Decimal(str(raw_price))
    except (InvalidOperation, ValueError):
        raise LedgerError(ErrorCode.VALIDATION, "price must be a number") from None
    if not price.is_finite() or price <= 0:
        raise LedgerError(ErrorCode.VALIDATION, "price must be > 0")
    return price


def normalize_quantity(raw_quantity: object) -> int:
    if isinstance(raw_quantity, bool) or not isinstance(raw_quantity, int):
        raise LedgerError(ErrorCode.VALIDATION, "quantity must be a whole number of shares")
    if raw_quantity < 1:
        raise LedgerError(ErrorCode.VALIDATION, "quantity must be >= 1")
    return raw_quantity


def holding_merge_values(holding: PortfolioHolding, price: Decimal, quantity: int) -> dict:
    held = int(holding.quantity or 0)
    average = weighted_average_price(
        to_decimal(holding.average_buy_price),
        Decimal(held),
        price,
        Decimal(quantity),
    )
    return {"quantity": held + quantity, "average_buy_price": float(average)}


def debit_reserve(gateway: DataGateway, portfolio_id: int, cost: Decimal) -> Portfolio:
    """
    Conditionally decrement `reserve_value` by `cost`.

    Uses the same tolerance as `covers_cost`, so a reserve that reads as exactly
    `cost` can be spent even when the stored float sits a hair below it. The
    result is clamped at zero.
    """
    remaining = Portfolio.reserve_value - float(cost)
    debit = gateway.update(
        "Portfolios",
        {"reserve_value": case((remaining < 0, 0), else_=remaining)},
        eq={"portfolio_id": portfolio_id},
        where=[Portfolio.reserve_value >= float(cost - RESERVE_TOLERANCE)],
    )
    if debit.error:
        raise LedgerError(ErrorCode.UPDATE_FAILED, "Error updating portfolio reserve: " + debit.error.message)
    if not debit.count:
        raise LedgerError(ErrorCode.INSUFFICIENT_FUNDS, "Insufficient reserve value")
    return debit.data[0]


def lock_holding(gateway: DataGateway, keys: dict) -> PortfolioHolding | None:
    existing = gateway.select("Portfolio Holdings", eq=keys, mode="maybe_single", for_update=True)
    if existing.error:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Error checking existing holding: " + existing.error.message)
    return existing.data


def merge_holding(gateway: DataGateway, portfolio_id: int, stock_id: int, price: Decimal, quantity: int) -> int:
    """Insert or merge the (portfolio, stock) holding and return its id."""
    keys = {"portfolio_id": portfolio_id, "stock_id": stock_id}
    holding = lock_holding(gateway, keys)

    if holding is None:
        inserted = gateway.insert(
            "Portfolio Holdings",
            {**keys, "quantity": quantity, "average_buy_price": float(price)},
        )
        if inserted.ok:
            return int(inserted.data.portfolio_holding_id)
        if not inserted.error.is_conflict:
            raise LedgerError(ErrorCode.INSERT_FAILED, "Error inserting holding: " + inserted.error.message)
        # A concurrent first buy created the row; merge into it instead.
        holding = lock_holding(gateway, keys)
        if holding is None:
            raise LedgerError(ErrorCode.UPDATE_FAILED, "Error updating existing holding: no row matched")

    # Only write over the quantity we computed from.
    merged = gateway.update(
        "Portfolio Holdings",
        holding_merge_values(holding, price, quantity),
        eq=keys,
        where=[PortfolioHolding.quantity == holding.quantity],
    )
    if merged.error:
        raise LedgerError(ErrorCode.UPDATE_FAILED, "Error updating existing holding: " + merged.error.message)
    if not merged.data:
        raise LedgerError(ErrorCode.UPDATE_FAILED, "Error updating existing holding: holding changed during the trade")
    return int(merged.data[0].portfolio_holding_id)


def _execute_buy(
    db: Session,
    identity: Identity,
    stock_id: int,
    price: Decimal,
    quantity: int,
    scope: PortfolioScope | None,
    portfolio_id: int | None,
) -> BuyResult:
    gateway = DataGateway(db)
    get_stock(db, stock_id)

    portfolio = resolve_portfolio(db, identity, scope=scope, portfolio_id=portfolio_id)
    locked = gateway.select(
        "Portfolios",
        eq={"portfolio_id": portfolio.portfolio_id},
        mode="single",
        for_update=True,
    )
    if locked.error:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Error fetching portfolio: " + locked.error.message)
    target_id = int(locked.data.portfolio_id)

    cost = trade_cost(price, Decimal(quantity))
    if not covers_cost(to_decimal(locked.data.reserve_value), cost):
        raise LedgerError(ErrorCode.INSUFFICIENT_FUNDS, "Insufficient reserve value")

    # total_value is a nominal figure and stays put; only the reserve moves.
    debited = debit_reserve(gateway, target_id, cost)
    holding_id = merge_holding(gateway, target_id, stock_id, price, quantity)

    tx = gateway.insert(
        "Transactions",
        {
            "portfolio_id": target_id,
            "stock_id": stock_id,
            "quantity": quantity,
            "price": float(price),
            "type": TRANSACTION_TYPE_BUY,
        },
    )
    if tx.error:
        raise LedgerError(ErrorCode.INSERT_FAILED, "Error inserting transaction: " + tx.error.message)
    transaction_id = int(tx.data.transaction_id)
    reserve_after = debited.reserve_value

    db.commit()
    logger.info(
        "buy filled: user=%s portfolio=%s stock=%s qty=%s price=%s reserve_after=%s",
        identity.user_id,
        target_id,
        stock_id,
        quantity,
        price,
        reserve_after,
    )
    return BuyResult(
        success=True,
        portfolio_id=target_id,
        portfolio_holding_id=holding_id,
        transaction_id=transaction_id,
    )


def buy(
    db: Session,
    identity: Identity,
    stock_id: int,
    price: object,
    quantity: object = 1,
    scope: PortfolioScope | None = None,
    portfolio_id: int | None = None,
) -> BuyResult:
    """
    Buy `quantity` shares of `stock_id` at `price` into the caller's portfolio.

    The target is `portfolio_id` when given (it must belong to `identity`),
    otherwise the portfolio for `scope`, opened on first use. The funds check,
    reserve debit, holding merge and transaction record commit together; if any
    step fails, none of them persist.
    """
    try:
        unit_price = normalize_price(price)
        qty = normalize_quantity(quantity)
        if scope is None and portfolio_id is None:
            raise LedgerError(ErrorCode.VALIDATION, "A portfolio scope (solo or league) or a portfolio id is required")
    except LedgerError as exc:
        return BuyResult(success=False, error=exc.code, message=exc.message)

    try:
        return _execute_buy(db, identity, stock_id, unit_price, qty, scope, portfolio_id)
    except LedgerError as exc:
        db.rollback()
        logger.warning("buy rejected for user %s stock %s: %s", identity.user_id, stock_id, exc.message)
        return BuyResult(success=False, error=exc.code, message=exc.message)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("buy commit failed for user %s stock %s: %s", identity.user_id, stock_id, exc)
        return BuyResult(success=False, error=ErrorCode.UPDATE_FAILED, message="Error committing trade: " + str(exc))


def not_implemented(action: str) -> ActionResult:
    return ActionResult(success=False, error=ErrorCode.NOT_IMPLEMENTED, message=f"{action} not implemented yet")


def sell(db: Session, identity: Identity, stock_id: int, price: object, quantity: object = 1) -> ActionResult:
    return not_implemented("Sell")


def transfer(db: Session, identity: Identity, stock_id: int, target_portfolio_id: int | None) -> ActionResult:
    return not_implemented("Transfer")


def bookmark(db: Session, identity: Identity, stock_id: int) -> ActionResult:
    return not_implemented("Bookmark")
