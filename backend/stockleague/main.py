import os

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .auth import Identity, identity_from_token
from .db import SessionLocal, get_db
from .errors import ErrorCode, LedgerError
from .leagues import create_league, get_league_detail, join_league
from .logging_config import get_logger, setup_logging
from .market import get_stock_by_symbol, list_stocks, stock_to_out
from .portfolios import PortfolioScope, fetch_portfolio_view, portfolio_to_out, resolve_portfolio
from .schemas import (
    ActionResult,
    BuyResult,
    JoinResult,
    LeagueCreateIn,
    LeagueDetailOut,
    LeagueJoinIn,
    LeagueResult,
    PortfolioOut,
    PortfolioViewOut,
    StockOut,
    TradeIn,
)
from .seed import init_db, seed
from .trading import bookmark, buy, sell, transfer

logger = get_logger(__name__)

app = FastAPI(title="StockLeague Ledger")
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SEED_STOCKS = os.environ.get("SEED_STOCKS", "true").strip().lower() in {"1", "true", "yes"}

ERROR_STATUS = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.INVALID_TIME_RANGE: 400,
    ErrorCode.INVALID_DRAFT_ROUNDS: 400,
    ErrorCode.INSUFFICIENT_FUNDS: 400,
    ErrorCode.OWNERSHIP_MISMATCH: 403,
    ErrorCode.LOOKUP_FAILED: 404,
    ErrorCode.NOT_IMPLEMENTED: 501,
    ErrorCode.CREATION_FAILED: 502,
    ErrorCode.INSERT_FAILED: 502,
    ErrorCode.UPDATE_FAILED: 502,
    ErrorCode.PARTIAL_FAILURE: 502,
    ErrorCode.NO_IDENTITY_RETURNED: 502,
}


@app.get("/")
def root():
    return {"ok": True, "service": "StockLeague Ledger API", "docs": "/docs", "health": "/healthz"}


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.on_event("startup")
def on_startup():
    setup_logging()
    init_db()
    if not SEED_STOCKS:
        return
    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()


def ledger_http_exception(code: ErrorCode | None, message: str | None) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(code, 500),
        detail=message or "Request failed.",
    )


def raise_for_result(result):
    if not result.success:
        raise ledger_http_exception(result.error, result.message)
    return result


def auth_exception(detail: str = "Authentication required.") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_bearer_token(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> str:
    if not authorization:
        raise auth_exception()
    scheme, _, token = authorization.partition(" ")
    if scheme.strip().lower() != "bearer" or not token.strip():
        raise auth_exception("Invalid authorization header.")
    return token.strip()


def get_identity(
    bearer_token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
) -> Identity:
    identity = identity_from_token(db, bearer_token)
    # Release the read so the workflow starts its own unit of work.
    db.rollback()
    if identity is None:
        raise auth_exception("Session is invalid or expired.")
    return identity


def scope_from_params(is_solo: bool | None, league_id: int | None) -> PortfolioScope | None:
    try:
        return PortfolioScope.from_params(is_solo=is_solo, league_id=league_id)
    except LedgerError as exc:
        raise ledger_http_exception(exc.code, exc.message)


def scope_from_query(is_solo: bool | None, league_id: int | None) -> PortfolioScope:
    scope = scope_from_params(is_solo, league_id)
    if scope is None:
        raise HTTPException(400, "Pass is_solo=true or a league_id.")
    return scope


@app.get("/stocks", response_model=list[StockOut])
def stocks(db: Session = Depends(get_db)):
    try:
        return [stock_to_out(stock) for stock in list_stocks(db)]
    except LedgerError as exc:
        raise ledger_http_exception(exc.code, exc.message)


@app.get("/stocks/{symbol}", response_model=StockOut)
def stock_by_symbol(symbol: str, db: Session = Depends(get_db)):
    try:
        return stock_to_out(get_stock_by_symbol(db, symbol))
    except LedgerError as exc:
        raise ledger_http_exception(exc.code, exc.message)


@app.post("/stocks/{stock_id}/bookmark", response_model=ActionResult)
def bookmark_stock(
    stock_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    return raise_for_result(bookmark(db, identity, stock_id))


@app.get("/portfolio", response_model=PortfolioViewOut)
def portfolio_view(
    is_solo: bool | None = Query(default=None),
    league_id: int | None = Query(default=None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    scope = scope_from_query(is_solo, league_id)
    try:
        return fetch_portfolio_view(db, identity, scope)
    except LedgerError as exc:
        raise ledger_http_exception(exc.code, exc.message)


@app.post("/portfolio/resolve", response_model=PortfolioOut)
def portfolio_resolve(
    is_solo: bool | None = Query(default=None),
    league_id: int | None = Query(default=None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    scope = scope_from_query(is_solo, league_id)
    try:
        portfolio = resolve_portfolio(db, identity, scope=scope)
        out = portfolio_to_out(portfolio)
        db.commit()
    except LedgerError as exc:
        db.rollback()
        raise ledger_http_exception(exc.code, exc.message)
    return out


@app.post("/trade/buy", response_model=BuyResult)
def trade_buy(
    trade: TradeIn,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    scope = scope_from_params(trade.is_solo, trade.league_id)
    result = buy(
        db,
        identity,
        stock_id=trade.stock_id,
        price=trade.price,
        quantity=trade.quantity,
        scope=scope,
        portfolio_id=trade.portfolio_id,
    )
    return raise_for_result(result)


@app.post("/trade/sell", response_model=ActionResult)
def trade_sell(
    trade: TradeIn,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    return raise_for_result(sell(db, identity, trade.stock_id, trade.price, trade.quantity))


@app.post("/trade/transfer", response_model=ActionResult)
def trade_transfer(
    trade: TradeIn,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    return raise_for_result(transfer(db, identity, trade.stock_id, trade.portfolio_id))


@app.post("/leagues", response_model=LeagueResult)
def leagues_create(
    payload: LeagueCreateIn,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    return raise_for_result(create_league(db, identity, payload))


@app.post("/leagues/join", response_model=JoinResult)
def leagues_join(
    payload: LeagueJoinIn,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    return raise_for_result(join_league(db, identity, payload.league_id))


@app.get("/leagues/{league_id}", response_model=LeagueDetailOut)
def leagues_detail(league_id: int, db: Session = Depends(get_db)):
    try:
        return get_league_detail(db, league_id)
    except LedgerError as exc:
        raise ledger_http_exception(exc.code, exc.message)
