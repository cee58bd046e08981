"""Pytest configuration and shared fixtures."""
import os

# The engine is built at import time; point it at SQLite before anything loads
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite://"

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from stockledger.core import Base, build_engine, get_db
from stockledger.models import DailySummary
from tests.helpers import make_snapshot


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    """API client bound to the test database."""
    from main import app

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
def snapshot():
    """Two grades, two strategies; B100 and B200 allocated to S1, B300 to S2."""
    return make_snapshot(
        grades={"GRADEA": 500.0, "GRADEB": 300.0},
        strategies={"S1": 600.0, "S2": 200.0},
        batches={"B100": "S1", "B200": "S1", "B300": "S2"},
    )


@pytest.fixture
def summary(db):
    row = DailySummary(date=date(2024, 3, 2))
    db.add(row)
    db.commit()
    db.refresh(row)
    return row
