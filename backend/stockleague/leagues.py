from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import Identity
from .errors import ErrorCode, LedgerError
from .gateway import DataGateway
from .logging_config import get_logger
from .models import League, Profile
from .portfolios import PortfolioScope, new_portfolio_values
from .schemas import JoinResult, LeagueCreateIn, LeagueDetailOut, LeagueOut, LeagueResult, ProfileOut

logger = get_logger(__name__)


def parse_sectors(raw_sectors: str | None) -> list[str] | None:
    """Split a comma separated sector list; blank input means no sector filter."""
    if not raw_sectors:
        return None
    sectors = [sector.strip() for sector in raw_sectors.split(",")]
    return [sector for sector in sectors if sector] or None


def to_utc_naive(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def validate_league_params(identity: Identity | None, params: LeagueCreateIn) -> str:
    name = (params.name or "").strip()
    if not name:
        raise LedgerError(ErrorCode.VALIDATION, "Please enter a league name.")
    if identity is None:
        raise LedgerError(ErrorCode.VALIDATION, "You must be signed in to create a league.")
    if params.has_drafting and (params.draft_rounds is None or params.draft_rounds < 1):
        raise LedgerError(ErrorCode.INVALID_DRAFT_ROUNDS, "Please enter a valid number of draft rounds.")

    start_time = to_utc_naive(params.start_time)
    finish_time = to_utc_naive(params.finish_time)
    if start_time is not None and finish_time is not None and start_time > finish_time:
        raise LedgerError(ErrorCode.INVALID_TIME_RANGE, "Start time must be before end time.")
    return name


def league_to_out(league: League) -> LeagueOut:
    return LeagueOut(
        league_id=int(league.league_id),
        name=str(league.name),
        owner_id=str(league.owner_id),
        start_time=league.start_time,
        finish_time=league.finish_time,
        has_trading=bool(league.has_trading),
        has_drafting=bool(league.has_drafting),
        sectors=list(league.sectors) if league.sectors else None,
        created_at=league.created_at,
    )


def profile_to_out(profile: Profile) -> ProfileOut:
    return ProfileOut(
        id=str(profile.id),
        username=profile.username,
        email=profile.email,
        avatar_url=profile.avatar_url,
        badge=profile.badge,
    )


def create_league(db: Session, identity: Identity | None, params: LeagueCreateIn) -> LeagueResult:
    """
    Create a league, open the owner's league portfolio and, when drafting is
    enabled, the league's draft record.

    League and portfolio are one unit: if the portfolio cannot be opened the
    league insert is rolled back. The draft is optional; if its insert fails the
    league and portfolio are kept and the failure is reported in `draft_error`.
    """
    try:
        name = validate_league_params(identity, params)
    except LedgerError as exc:
        return LeagueResult(success=False, error=exc.code, message=exc.message)

    gateway = DataGateway(db)
    league = gateway.insert(
        "Leagues",
        {
            "name": name,
            "owner_id": identity.user_id,
            "start_time": to_utc_naive(params.start_time),
            "finish_time": to_utc_naive(params.finish_time),
            "has_trading": params.has_trading,
            "has_drafting": params.has_drafting,
            "sectors": parse_sectors(params.sectors),
            "created_at": datetime.utcnow(),
        },
    )
    if league.error:
        db.rollback()
        return LeagueResult(success=False, error=ErrorCode.INSERT_FAILED, message=league.error.message)
    league_id = getattr(league.data, "league_id", None)
    if not league_id:
        db.rollback()
        return LeagueResult(
            success=False,
            error=ErrorCode.NO_IDENTITY_RETURNED,
            message="League creation did not return an id.",
        )

    portfolio = gateway.insert("Portfolios", new_portfolio_values(identity, PortfolioScope.league(league_id)))
    if portfolio.error or portfolio.data is None:
        detail = portfolio.error.message if portfolio.error else "no portfolio id returned"
        db.rollback()
        logger.warning("league %s rolled back, owner portfolio insert failed: %s", league_id, detail)
        return LeagueResult(
            success=False,
            error=ErrorCode.PARTIAL_FAILURE,
            message=f"Error creating league portfolio: {detail}. League creation was rolled back.",
        )
    portfolio_id = int(portfolio.data.portfolio_id)

    draft_id: int | None = None
    draft_error: str | None = None
    if params.has_drafting:
        draft = gateway.insert(
            "Drafts",
            {
                "league_id": league_id,
                "total_rounds": params.draft_rounds,
                "current_round": 0,
                "current_pick": 0,
                "current_portfolio_id": portfolio_id,
                "is_snaking_forward": True,
                "timer_start_time": None,
                "is_started": False,
                "is_ended": False,
            },
        )
        if draft.error:
            draft_error = "Error creating draft: " + draft.error.message
            logger.warning("league %s created without a draft: %s", league_id, draft.error.message)
        else:
            draft_id = int(draft.data.draft_id)

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        return LeagueResult(success=False, error=ErrorCode.INSERT_FAILED, message=str(exc))

    logger.info("league %s '%s' created by %s (draft=%s)", league_id, name, identity.user_id, draft_id)
    return LeagueResult(
        success=True,
        league_id=int(league_id),
        portfolio_id=portfolio_id,
        draft_id=draft_id,
        draft_error=draft_error,
    )


def join_league(db: Session, identity: Identity | None, league_id: object) -> JoinResult:
    """
    Open the caller's portfolio in `league_id` with the starting bankroll.

    The league is not checked for existence or for being open to new members.
    """
    if league_id is None or not str(league_id).strip():
        return JoinResult(success=False, error=ErrorCode.VALIDATION, message="Please enter a League Id")
    if identity is None:
        return JoinResult(
            success=False,
            error=ErrorCode.VALIDATION,
            message="You must be signed in to join a league.",
        )
    try:
        target = int(str(league_id).strip())
    except ValueError:
        return JoinResult(success=False, error=ErrorCode.VALIDATION, message="League Id must be a number")

    inserted = DataGateway(db).insert("Portfolios", new_portfolio_values(identity, PortfolioScope.league(target)))
    if inserted.error:
        db.rollback()
        return JoinResult(success=False, error=ErrorCode.INSERT_FAILED, message=inserted.error.message, league_id=target)
    portfolio_id = int(inserted.data.portfolio_id)

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        return JoinResult(success=False, error=ErrorCode.INSERT_FAILED, message=str(exc), league_id=target)

    logger.info("user %s joined league %s with portfolio %s", identity.user_id, target, portfolio_id)
    return JoinResult(success=True, league_id=target, portfolio_id=portfolio_id)


def fetch_league_members(gateway: DataGateway, league_id: int) -> list[ProfileOut]:
    """Profiles holding a portfolio in the league, in join order. Failures yield an empty list."""
    portfolios = gateway.select("Portfolios", eq={"league_id": league_id}, order_by=("portfolio_id",))
    if portfolios.error:
        logger.warning("member lookup for league %s failed: %s", league_id, portfolios.error.message)
        return []

    user_ids: list[str] = []
    for portfolio in portfolios.data:
        if str(portfolio.user_id) not in user_ids:
            user_ids.append(str(portfolio.user_id))
    if not user_ids:
        return []

    profiles = gateway.select("Profiles", where=[Profile.id.in_(user_ids)])
    if profiles.error:
        logger.warning("member profiles for league %s failed: %s", league_id, profiles.error.message)
        return []
    by_id = {str(profile.id): profile for profile in profiles.data}
    return [profile_to_out(by_id[user_id]) for user_id in user_ids if user_id in by_id]


def get_league_detail(db: Session, league_id: int) -> LeagueDetailOut:
    gateway = DataGateway(db)
    result = gateway.select("Leagues", eq={"league_id": league_id}, mode="maybe_single")
    if result.error:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Error loading league: " + result.error.message)
    if result.data is None:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, f"League {league_id} not found")
    league = result.data

    owner = None
    # Owner and member display info is decoration; a failed lookup must not hide the league.
    owner_result = gateway.select("Profiles", eq={"id": league.owner_id}, mode="maybe_single")
    if owner_result.error:
        logger.warning("owner lookup for league %s failed: %s", league_id, owner_result.error.message)
    elif owner_result.data is not None:
        owner = profile_to_out(owner_result.data)

    return LeagueDetailOut(
        league=league_to_out(league),
        owner=owner,
        members=fetch_league_members(gateway, league_id),
    )
