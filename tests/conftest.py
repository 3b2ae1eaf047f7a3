"""
Pytest fixtures for the FlockTrack test suite.

Provides:
- a fresh in-memory SQLite database per test (StaticPool, one shared connection)
- session / session_factory fixtures mirroring utils.db.SessionLocal
- small factories for farmers and cycles
- captured structured logs
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import io
import json
import logging
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from utils.db import Base
from utils.logging_config import StructuredFormatter, configure_logging, reset_logging
from services import stock_service, cycle_service

TODAY = date(2024, 3, 10)
TEST_USER_ID = 1


# =============================================================================
# Logging fixtures
# =============================================================================

@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=io.StringIO())
    yield
    reset_logging()


@pytest.fixture
def captured_logs():
    """
    Capture flocktrack logs as parsed JSON dicts.

        logs = captured_logs()
        assert any(r["message"] == "cycle_ended" for r in logs)
    """
    buffer = io.StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(StructuredFormatter())
    logger = logging.getLogger("flocktrack")
    logger.addHandler(handler)

    def _read():
        return [json.loads(line) for line in buffer.getvalue().splitlines() if line.strip()]

    yield _read
    logger.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================

@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_farmer(db):
    def _make(stock=Decimal("0"), organization_id=1, officer_id=10, name="Karim"):
        farmer = stock_service.create_farmer(
            db,
            organization_id=organization_id,
            name=name,
            officer_id=officer_id,
            initial_stock=stock,
            user_id=TEST_USER_ID,
        )
        db.commit()
        return farmer

    return _make


@pytest.fixture
def make_cycle(db):
    def _make(farmer, doc=1000, age=1, name="Batch 1", today=TODAY):
        cycle = cycle_service.create_cycle(
            db, farmer.farmer_id, name, doc, age=age, user_id=TEST_USER_ID, today=today
        )
        db.commit()
        return cycle

    return _make
