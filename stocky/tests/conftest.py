from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.pool import StaticPool

from stocky.corporate_actions import CorporateActionService
from stocky.db import UnitOfWork, build_session_factory, init_db
from stocky.prices import PriceStore
from stocky.reporting import ReportingService
from stocky.service import RewardLedgerService


USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
OTHER_USER_ID = UUID("660e8400-e29b-41d4-a716-446655440001")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def reward_service(session_factory):
    return RewardLedgerService(session_factory)


@pytest.fixture
def action_service(session_factory):
    return CorporateActionService(session_factory)


@pytest.fixture
def reporting(session_factory):
    """Factory for reporting services, each on a fresh session so reads see the latest commits."""
    sessions = []

    def _make():
        session = session_factory()
        sessions.append(session)
        return ReportingService(session)

    yield _make
    for session in sessions:
        session.close()


@pytest.fixture
def fetch_all(session_factory):
    """Load every row of a table in a fresh session."""
    def _fetch(model, *criteria):
        query = select(model)
        if criteria:
            query = query.where(*criteria)
        with session_factory() as session:
            return list(session.scalars(query))
    return _fetch


@pytest.fixture
def add_price(session_factory):
    """Append a price tick, committed in its own unit of work."""
    def _add(symbol, price, fetched_at=None):
        with UnitOfWork(session_factory) as session:
            PriceStore(session).append(symbol, Decimal(str(price)), fetched_at)
    return _add


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
