from datetime import datetime
from pydantic import BaseModel, Field

from .errors import ErrorCode


class ProfileOut(BaseModel):
    id: str
    username: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    badge: str | None = None


class StockOut(BaseModel):
    stock_id: int
    stock_symbol: str
    name: str | None = None
    current_price: float | None = None


class PortfolioOut(BaseModel):
    portfolio_id: int
    user_id: str
    league_id: int | None = None
    is_solo: bool
    total_value: float
    reserve_value: float
    created_at: datetime | None = None


class PortfolioTotalsOut(BaseModel):
    total_value: float
    reserve_value: float
    invested_value: float


class HoldingViewOut(BaseModel):
    portfolio_holding_id: int
    portfolio_id: int
    stock_id: int
    quantity: int
    average_buy_price: float | None = None
    market_value: float = 0.0
    stock: StockOut | None = None


class PortfolioViewOut(BaseModel):
    portfolio: PortfolioOut | None = None
    totals: PortfolioTotalsOut | None = None
    holdings: list[HoldingViewOut] = Field(default_factory=list)


class TradeIn(BaseModel):
    stock_id: int
    price: float
    quantity: int = 1
    portfolio_id: int | None = None
    is_solo: bool | None = None
    league_id: int | None = None


class BuyResult(BaseModel):
    success: bool
    message: str | None = None
    error: ErrorCode | None = None
    portfolio_id: int | None = None
    portfolio_holding_id: int | None = None
    transaction_id: int | None = None


class ActionResult(BaseModel):
    success: bool
    message: str | None = None
    error: ErrorCode | None = None


class LeagueCreateIn(BaseModel):
    name: str = Field(default="", max_length=128)
    start_time: datetime | None = None
    finish_time: datetime | None = None
    has_trading: bool = True
    has_drafting: bool = True
    draft_rounds: int | None = 3
    sectors: str | None = Field(default=None, max_length=1000)


class LeagueResult(BaseModel):
    success: bool
    message: str | None = None
    error: ErrorCode | None = None
    league_id: int | None = None
    portfolio_id: int | None = None
    draft_id: int | None = None
    draft_error: str | None = None


class LeagueJoinIn(BaseModel):
    league_id: int | None = None


class JoinResult(BaseModel):
    success: bool
    message: str | None = None
    error: ErrorCode | None = None
    league_id: int | None = None
    portfolio_id: int | None = None


class LeagueOut(BaseModel):
    league_id: int
    name: str
    owner_id: str
    start_time: datetime | None = None
    finish_time: datetime | None = None
    has_trading: bool
    has_drafting: bool
    sectors: list[str] | None = None
    created_at: datetime | None = None


class LeagueDetailOut(BaseModel):
    league: LeagueOut
    owner: ProfileOut | None = None
    members: list[ProfileOut] = Field(default_factory=list)
