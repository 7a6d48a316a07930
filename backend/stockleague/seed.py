import os
import time
import uuid

from sqlalchemy import inspect, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .db import Base, engine
from .logging_config import get_logger
from .models import Profile, Stock

logger = get_logger(__name__)

STOCK_CATALOG: list[dict[str, object]] = [
    # Technology
    {"symbol": "AAPL", "name": "Apple Inc.", "price": 227.52},
    {"symbol": "MSFT", "name": "Microsoft Corporation", "price": 415.10},
    {"symbol": "NVDA", "name": "NVIDIA Corporation", "price": 118.85},
    {"symbol": "GOOGL", "name": "Alphabet Inc.", "price": 163.24},
    {"symbol": "META", "name": "Meta Platforms, Inc.", "price": 582.77},
    {"symbol": "AMD", "name": "Advanced Micro Devices, Inc.", "price": 155.64},
    # Consumer
    {"symbol": "AMZN", "name": "Amazon.com, Inc.", "price": 186.51},
    {"symbol": "TSLA", "name": "Tesla, Inc.", "price": 219.57},
    {"symbol": "NKE", "name": "NIKE, Inc.", "price": 82.14},
    {"symbol": "KO", "name": "The Coca-Cola Company", "price": 69.35},
    {"symbol": "MCD", "name": "McDonald's Corporation", "price": 306.83},
    # Financials
    {"symbol": "JPM", "name": "JPMorgan Chase & Co.", "price": 222.05},
    {"symbol": "V", "name": "Visa Inc.", "price": 289.40},
    {"symbol": "GS", "name": "The Goldman Sachs Group, Inc.", "price": 517.29},
    # Healthcare
    {"symbol": "JNJ", "name": "Johnson & Johnson", "price": 161.91},
    {"symbol": "PFE", "name": "Pfizer Inc.", "price": 29.11},
    {"symbol": "UNH", "name": "UnitedHealth Group Incorporated", "price": 592.86},
    # Energy and industrials
    {"symbol": "XOM", "name": "Exxon Mobil Corporation", "price": 120.42},
    {"symbol": "CAT", "name": "Caterpillar Inc.", "price": 390.34},
    {"symbol": "BA", "name": "The Boeing Company", "price": 155.11},
]

SEED_UPDATE_EXISTING_PRICES = os.environ.get("SEED_UPDATE_EXISTING_PRICES", "false").strip().lower() in {
    "1",
    "true",
    "yes",
}
RAW_SANDBOX_USERNAME = (os.environ.get("SANDBOX_USERNAME") or "").strip().lower()


def init_db(bind: Engine | None = None):
    target = bind or engine
    # Wait for the database to accept connections
    for attempt in range(30):  # ~30 seconds
        try:
            with target.connect() as conn:
                conn.execute(text("SELECT 1"))
            break
        except OperationalError:
            time.sleep(1)
    else:
        raise RuntimeError("Database not ready after 30 seconds")

    Base.metadata.create_all(bind=target)
    verify_schema(target)


def missing_schema_objects(bind: Engine) -> list[str]:
    inspector = inspect(bind)
    existing_tables = set(inspector.get_table_names())
    missing: list[str] = []
    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            missing.append(f"table '{table.name}'")
            continue
        existing_columns = {column["name"] for column in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name not in existing_columns:
                missing.append(f"column '{table.name}.{column.name}'")
    return missing


def verify_schema(bind: Engine) -> None:
    """Fail fast when the store does not carry the schema the ledger is written against."""
    missing = missing_schema_objects(bind)
    if missing:
        raise RuntimeError("Database schema is out of date. Missing: " + ", ".join(missing))


def seed(db: Session):
    existing_by_symbol = {
        str(stock.stock_symbol): stock for stock in db.execute(select(Stock)).scalars().all()
    }

    new_stocks: list[Stock] = []
    for row in STOCK_CATALOG:
        symbol = str(row["symbol"]).upper()
        existing = existing_by_symbol.get(symbol)
        if existing is not None:
            # Prices belong to the market feed once a stock exists.
            if SEED_UPDATE_EXISTING_PRICES:
                existing.current_price = float(row["price"])
            continue
        existing_by_symbol[symbol] = Stock(
            stock_symbol=symbol,
            name=str(row["name"]),
            current_price=float(row["price"]),
        )
        new_stocks.append(existing_by_symbol[symbol])

    if new_stocks:
        db.add_all(new_stocks)

    if RAW_SANDBOX_USERNAME:
        sandbox = db.execute(
            select(Profile).where(Profile.username == RAW_SANDBOX_USERNAME)
        ).scalar_one_or_none()
        if sandbox is None:
            db.add(Profile(id=str(uuid.uuid4()), username=RAW_SANDBOX_USERNAME))

    db.commit()
    logger.info("seeded %s new stocks (%s in catalogue)", len(new_stocks), len(existing_by_symbol))
