from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, text

from stockleague import seed as seed_module
from stockleague.auth import Identity, hash_session_token, identity_from_token, issue_session_token
from stockleague.models import Profile, ProfileSession, Stock
from stockleague.seed import STOCK_CATALOG, missing_schema_objects, seed, verify_schema


def test_identity_requires_a_user_id() -> None:
    with pytest.raises(ValueError):
        Identity(user_id="  ")


def test_issued_token_resolves_to_identity(db, alice) -> None:
    token = issue_session_token(db, alice.user_id)
    db.commit()

    assert identity_from_token(db, token) == alice
    assert identity_from_token(db, token + "x") is None


def test_only_the_hash_is_stored(db, alice) -> None:
    token = issue_session_token(db, alice.user_id)
    db.commit()

    stored = db.execute(select(ProfileSession.token_hash)).scalar_one()
    assert stored == hash_session_token(token)
    assert token not in stored


def test_expired_and_revoked_sessions_are_rejected(db, alice) -> None:
    token = issue_session_token(db, alice.user_id)
    db.commit()

    assert identity_from_token(db, token, now=datetime.utcnow() + timedelta(days=365)) is None

    session = db.execute(select(ProfileSession)).scalar_one()
    session.revoked_at = datetime.utcnow()
    db.commit()
    assert identity_from_token(db, token) is None


def test_seed_is_idempotent(db, count_rows) -> None:
    seed(db)
    seed(db)

    assert count_rows(Stock) == len(STOCK_CATALOG)


def test_seed_keeps_existing_prices(db, session_factory) -> None:
    db.add(Stock(stock_symbol="AAPL", name="Apple Inc.", current_price=1.0))
    db.commit()

    seed(db)

    session = session_factory()
    try:
        apple = session.execute(select(Stock).where(Stock.stock_symbol == "AAPL")).scalar_one()
        assert float(apple.current_price) == pytest.approx(1.0)
    finally:
        session.close()


def test_seed_creates_sandbox_profile_once(db, count_rows, monkeypatch) -> None:
    monkeypatch.setattr(seed_module, "RAW_SANDBOX_USERNAME", "sandbox")

    seed(db)
    seed(db)

    assert count_rows(Profile) == 1


def test_verify_schema_reports_missing_tables(engine) -> None:
    verify_schema(engine)

    with engine.begin() as conn:
        conn.execute(text('DROP TABLE "Drafts"'))

    assert missing_schema_objects(engine) == ["table 'Drafts'"]
    with pytest.raises(RuntimeError, match="Drafts"):
        verify_schema(engine)
