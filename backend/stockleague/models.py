from __future__ import annotations
from datetime import datetime
from sqlalchemy import JSON, String, Integer, Numeric, DateTime, ForeignKey, UniqueConstraint, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship
from .db import Base

NUM = Numeric(18, 6)

SOLO_SCOPE_KEY = "solo"


def league_scope_key(league_id: int) -> str:
    return f"league:{int(league_id)}"


class Profile(Base):
    __tablename__ = "Profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    username: Mapped[str | None] = mapped_column(String(64), unique=True, index=True, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    badge: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    sessions: Mapped[list["ProfileSession"]] = relationship(back_populates="profile")
    portfolios: Mapped[list["Portfolio"]] = relationship(back_populates="owner")


class ProfileSession(Base):
    __tablename__ = "Profile Sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    profile_id: Mapped[str] = mapped_column(ForeignKey("Profiles.id"), index=True)
    token_hash: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    profile: Mapped["Profile"] = relationship(back_populates="sessions")


class Stock(Base):
    __tablename__ = "Stocks"

    stock_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    stock_symbol: Mapped[str] = mapped_column(String(16), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    current_price: Mapped[float | None] = mapped_column(NUM, nullable=True)


class League(Base):
    __tablename__ = "Leagues"

    league_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    owner_id: Mapped[str] = mapped_column(ForeignKey("Profiles.id"), index=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finish_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    has_trading: Mapped[bool] = mapped_column(Boolean, default=True)
    has_drafting: Mapped[bool] = mapped_column(Boolean, default=False)
    sectors: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class Portfolio(Base):
    __tablename__ = "Portfolios"
    __table_args__ = (UniqueConstraint("user_id", "scope_key", name="uq_portfolio_user_scope"),)

    portfolio_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("Profiles.id"), index=True)
    league_id: Mapped[int | None] = mapped_column(ForeignKey("Leagues.league_id"), nullable=True, index=True)
    is_solo: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    # "solo" or "league:<id>"; one portfolio per (user, scope)
    scope_key: Mapped[str] = mapped_column(String(32))
    total_value: Mapped[float] = mapped_column(NUM, default=0)
    reserve_value: Mapped[float] = mapped_column(NUM, default=0)
    last_recalculated: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    owner: Mapped["Profile"] = relationship(back_populates="portfolios")
    holdings: Mapped[list["PortfolioHolding"]] = relationship(back_populates="portfolio")


class PortfolioHolding(Base):
    __tablename__ = "Portfolio Holdings"
    __table_args__ = (UniqueConstraint("portfolio_id", "stock_id", name="uq_holding_portfolio_stock"),)

    portfolio_holding_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("Portfolios.portfolio_id"), index=True)
    stock_id: Mapped[int] = mapped_column(ForeignKey("Stocks.stock_id"), index=True)

    quantity: Mapped[int] = mapped_column(Integer, default=0)
    average_buy_price: Mapped[float] = mapped_column(NUM, default=0)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="holdings")
    stock: Mapped["Stock"] = relationship()


class Transaction(Base):
    __tablename__ = "Transactions"

    transaction_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("Portfolios.portfolio_id"), index=True)
    stock_id: Mapped[int] = mapped_column(ForeignKey("Stocks.stock_id"), index=True)

    type: Mapped[str] = mapped_column(String(16))  # buy; sell is reserved
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    price: Mapped[float] = mapped_column(NUM, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class Draft(Base):
    __tablename__ = "Drafts"

    draft_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    league_id: Mapped[int] = mapped_column(ForeignKey("Leagues.league_id"), index=True)
    total_rounds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_round: Mapped[int] = mapped_column(Integer, default=0)
    current_pick: Mapped[int] = mapped_column(Integer, default=0)
    current_portfolio_id: Mapped[int | None] = mapped_column(
        ForeignKey("Portfolios.portfolio_id"),
        nullable=True,
    )
    is_snaking_forward: Mapped[bool] = mapped_column(Boolean, default=True)
    timer_start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_started: Mapped[bool] = mapped_column(Boolean, default=False)
    is_ended: Mapped[bool] = mapped_column(Boolean, default=False)
