"""
Portfolio resolution and read-side views.

A user holds at most one portfolio per scope: their solo portfolio, or one per
league they belong to. `resolve_portfolio` finds that portfolio or opens it
with the starting bankroll.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from .auth import Identity
from .errors import ErrorCode, LedgerError
from .gateway import DataGateway
from .logging_config import get_logger
from .market import stock_to_out
from .models import SOLO_SCOPE_KEY, Portfolio, Stock, league_scope_key
from .pricing import STARTING_BANKROLL, invested_value, market_value, to_decimal
from .schemas import HoldingViewOut, PortfolioOut, PortfolioTotalsOut, PortfolioViewOut

logger = get_logger(__name__)


@dataclass(frozen=True)
class PortfolioScope:
    is_solo: bool
    league_id: int | None = None

    def __post_init__(self) -> None:
        if self.is_solo and self.league_id is not None:
            raise ValueError("a solo scope cannot carry a league_id")
        if not self.is_solo and self.league_id is None:
            raise ValueError("a league scope needs a league_id")

    @classmethod
    def solo(cls) -> "PortfolioScope":
        return cls(is_solo=True)

    @classmethod
    def league(cls, league_id: int) -> "PortfolioScope":
        return cls(is_solo=False, league_id=int(league_id))

    @classmethod
    def from_params(cls, is_solo: bool | None, league_id: int | None) -> "PortfolioScope | None":
        if is_solo and league_id is not None:
            raise LedgerError(ErrorCode.VALIDATION, "A portfolio is either solo or in a league, not both")
        if league_id is not None:
            return cls.league(league_id)
        if is_solo:
            return cls.solo()
        return None

    @property
    def key(self) -> str:
        return SOLO_SCOPE_KEY if self.is_solo else league_scope_key(int(self.league_id))

    def describe(self) -> str:
        return "solo" if self.is_solo else f"league {self.league_id}"


def new_portfolio_values(identity: Identity, scope: PortfolioScope) -> dict:
    return {
        "user_id": identity.user_id,
        "league_id": scope.league_id,
        "is_solo": scope.is_solo,
        "scope_key": scope.key,
        "total_value": float(STARTING_BANKROLL),
        "reserve_value": float(STARTING_BANKROLL),
        "last_recalculated": datetime.utcnow(),
    }


def portfolio_to_out(portfolio: Portfolio) -> PortfolioOut:
    return PortfolioOut(
        portfolio_id=int(portfolio.portfolio_id),
        user_id=str(portfolio.user_id),
        league_id=portfolio.league_id,
        is_solo=bool(portfolio.is_solo),
        total_value=float(portfolio.total_value or 0),
        reserve_value=float(portfolio.reserve_value or 0),
        created_at=portfolio.created_at,
    )


def find_portfolio(gateway: DataGateway, identity: Identity, scope: PortfolioScope) -> Portfolio | None:
    result = gateway.select(
        "Portfolios",
        eq={"user_id": identity.user_id, "is_solo": scope.is_solo, "league_id": scope.league_id},
        order_by=("-created_at", "-portfolio_id"),
        limit=1,
        mode="maybe_single",
    )
    if result.error:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Error fetching portfolio: " + result.error.message)
    return result.data


def get_owned_portfolio(gateway: DataGateway, identity: Identity, portfolio_id: int) -> Portfolio:
    result = gateway.select("Portfolios", eq={"portfolio_id": portfolio_id}, mode="maybe_single")
    if result.error:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Error fetching portfolio: " + result.error.message)
    if result.data is None:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, f"Portfolio {portfolio_id} not found")
    if str(result.data.user_id) != identity.user_id:
        raise LedgerError(ErrorCode.OWNERSHIP_MISMATCH, "Portfolio does not belong to user")
    return result.data


def resolve_portfolio(
    db: Session,
    identity: Identity,
    scope: PortfolioScope | None = None,
    portfolio_id: int | None = None,
    create: bool = True,
) -> Portfolio | None:
    """
    Return the caller's portfolio for `scope`, or the explicit `portfolio_id` once
    ownership is confirmed.

    With `create` the portfolio is opened when missing. Changes are flushed, not
    committed; the caller owns the unit of work.
    """
    gateway = DataGateway(db)
    if portfolio_id is not None:
        return get_owned_portfolio(gateway, identity, portfolio_id)
    if scope is None:
        raise LedgerError(ErrorCode.VALIDATION, "A portfolio scope (solo or league) or a portfolio id is required")

    existing = find_portfolio(gateway, identity, scope)
    if existing is not None or not create:
        return existing

    inserted = gateway.insert("Portfolios", new_portfolio_values(identity, scope))
    if inserted.error:
        if inserted.error.is_conflict:
            # Someone else opened it between our search and insert.
            winner = find_portfolio(gateway, identity, scope)
            if winner is not None:
                return winner
        raise LedgerError(ErrorCode.CREATION_FAILED, "Error creating portfolio: " + inserted.error.message)
    if inserted.data is None or inserted.data.portfolio_id is None:
        raise LedgerError(ErrorCode.CREATION_FAILED, "Unable to determine portfolio id")

    logger.info(
        "opened %s portfolio %s for user %s",
        scope.describe(),
        inserted.data.portfolio_id,
        identity.user_id,
    )
    return inserted.data


def fetch_latest_portfolio(db: Session, identity: Identity, scope: PortfolioScope) -> Portfolio | None:
    portfolio = resolve_portfolio(db, identity, scope=scope, create=False)
    if portfolio is None:
        return None
    if (
        str(portfolio.user_id) != identity.user_id
        or bool(portfolio.is_solo) != scope.is_solo
        or portfolio.league_id != scope.league_id
    ):
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Portfolio filters mismatch")
    return portfolio


def fetch_holdings_with_stocks(db: Session, portfolio_id: int) -> list[HoldingViewOut]:
    gateway = DataGateway(db)
    holdings = gateway.select(
        "Portfolio Holdings",
        eq={"portfolio_id": portfolio_id},
        order_by=("portfolio_holding_id",),
    )
    if holdings.error:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Error fetching holdings: " + holdings.error.message)

    stocks_by_id = {}
    stock_ids = sorted({int(holding.stock_id) for holding in holdings.data})
    if stock_ids:
        stocks = gateway.select("Stocks", where=[Stock.stock_id.in_(stock_ids)])
        if stocks.error:
            # Holdings still render without their stock info.
            logger.warning("stock lookup for portfolio %s failed: %s", portfolio_id, stocks.error.message)
        else:
            stocks_by_id = {int(stock.stock_id): stock for stock in stocks.data}

    out: list[HoldingViewOut] = []
    for holding in holdings.data:
        stock = stocks_by_id.get(int(holding.stock_id))
        quantity = int(holding.quantity or 0)
        out.append(
            HoldingViewOut(
                portfolio_holding_id=int(holding.portfolio_holding_id),
                portfolio_id=int(holding.portfolio_id),
                stock_id=int(holding.stock_id),
                quantity=quantity,
                average_buy_price=(
                    float(holding.average_buy_price) if holding.average_buy_price is not None else None
                ),
                market_value=float(
                    market_value(
                        to_decimal(stock.current_price) if stock and stock.current_price is not None else None,
                        Decimal(quantity),
                    )
                ),
                stock=stock_to_out(stock) if stock else None,
            )
        )
    return out


def fetch_portfolio_view(db: Session, identity: Identity, scope: PortfolioScope) -> PortfolioViewOut:
    portfolio = fetch_latest_portfolio(db, identity, scope)
    if portfolio is None:
        return PortfolioViewOut()

    total = to_decimal(portfolio.total_value)
    reserve = to_decimal(portfolio.reserve_value)
    return PortfolioViewOut(
        portfolio=portfolio_to_out(portfolio),
        totals=PortfolioTotalsOut(
            total_value=float(total),
            reserve_value=float(reserve),
            invested_value=float(invested_value(total, reserve)),
        ),
        holdings=fetch_holdings_with_stocks(db, int(portfolio.portfolio_id)),
    )
