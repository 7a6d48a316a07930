"""Pytest configuration and shared fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEED_STOCKS", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from stockleague.auth import Identity, issue_session_token
from stockleague.db import get_db, make_engine
from stockleague.main import app
from stockleague.models import Profile, Stock
from stockleague.seed import init_db

ALICE_ID = "11111111-1111-1111-1111-111111111111"
BOB_ID = "22222222-2222-2222-2222-222222222222"


@pytest.fixture
def engine(tmp_path):
    """A file-backed SQLite database per test, with the full schema created."""
    engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def profiles(db):
    db.add_all(
        [
            Profile(id=ALICE_ID, username="alice", email="alice@example.com"),
            Profile(id=BOB_ID, username="bob", email="bob@example.com"),
        ]
    )
    db.commit()
    return {"alice": ALICE_ID, "bob": BOB_ID}


@pytest.fixture
def alice(profiles) -> Identity:
    return Identity(user_id=profiles["alice"])


@pytest.fixture
def bob(profiles) -> Identity:
    return Identity(user_id=profiles["bob"])


@pytest.fixture
def stocks(db) -> dict[str, int]:
    """Symbol -> stock_id for a small fixed catalogue."""
    rows = [
        Stock(stock_symbol="SLG", name="StockLeague Test Corp", current_price=50.0),
        Stock(stock_symbol="ACME", name="Acme Widgets", current_price=12.5),
        Stock(stock_symbol="BIG", name="Big Ticket Holdings", current_price=9000.0),
    ]
    db.add_all(rows)
    db.flush()
    ids = {str(row.stock_symbol): int(row.stock_id) for row in rows}
    db.commit()
    return ids


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def alice_headers(db, alice) -> dict[str, str]:
    token = issue_session_token(db, alice.user_id)
    db.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def count_rows(session_factory):
    """Count rows of a model in a fresh session, so no transaction stays open."""

    def _count(model) -> int:
        session = session_factory()
        try:
            return int(session.execute(select(func.count()).select_from(model)).scalar_one())
        finally:
            session.close()

    return _count
