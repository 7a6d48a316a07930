import os
import sys
from pathlib import Path


def main() -> int:
    # Ensure `import stockleague.*` works when running from repo root in CI.
    backend_dir = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(backend_dir))

    database_url = os.environ.get("DATABASE_URL", "").strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL is required for CI smoke test")

    from stockleague.auth import Identity
    from stockleague.db import SessionLocal
    from stockleague.leagues import create_league
    from stockleague.models import League, Portfolio, Profile, Stock, Transaction
    from stockleague.portfolios import PortfolioScope
    from stockleague.schemas import LeagueCreateIn
    from stockleague.seed import init_db, seed
    from stockleague.trading import buy

    safe_url = database_url
    if "://" in safe_url and "@" in safe_url:
        scheme, rest = safe_url.split("://", 1)
        creds, host = rest.split("@", 1)
        if ":" in creds:
            user, _pw = creds.split(":", 1)
            safe_url = f"{scheme}://{user}:***@{host}"
    print("CI smoke DATABASE_URL:", safe_url)

    # 1) Create tables and verify the schema.
    init_db()

    # 2) Seed is idempotent. Run twice to verify "from scratch" and "restart" behavior.
    db = SessionLocal()
    try:
        seed(db)
        seed(db)

        from sqlalchemy import func, select

        profile = db.execute(select(Profile).where(Profile.id == "ci-smoke")).scalar_one_or_none()
        if profile is None:
            db.add(Profile(id="ci-smoke", username="ci-smoke"))
            db.commit()
        identity = Identity(user_id="ci-smoke")

        # 3) One league and one solo buy through the real workflows.
        league = create_league(db, identity, LeagueCreateIn(name="CI Smoke League", draft_rounds=2))
        stock = db.execute(select(Stock).order_by(Stock.stock_id)).scalars().first()
        stock_id = int(stock.stock_id)
        db.rollback()
        trade = buy(db, identity, stock_id=stock_id, price=1.0, quantity=1, scope=PortfolioScope.solo())

        stock_count = int(db.execute(select(func.count()).select_from(Stock)).scalar_one())
        league_count = int(db.execute(select(func.count()).select_from(League)).scalar_one())
        portfolio_count = int(db.execute(select(func.count()).select_from(Portfolio)).scalar_one())
        tx_count = int(db.execute(select(func.count()).select_from(Transaction)).scalar_one())
    finally:
        db.close()

    if stock_count < 1:
        raise RuntimeError("Expected at least 1 seeded stock")
    if not league.success:
        raise RuntimeError(f"League creation failed: {league.message}")
    if not trade.success:
        raise RuntimeError(f"Solo buy failed: {trade.message}")

    print(
        "OK create_all + seed + workflows",
        {
            "stocks": stock_count,
            "leagues": league_count,
            "portfolios": portfolio_count,
            "transactions": tx_count,
        },
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
