"""
Shared fixtures: an in-memory SQLite database per test.
StaticPool keeps one connection, so every session from the factory sees the same data.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from griva.database import Base
from griva.feed import broadcaster


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def published():
    """Collects (kind, row) pairs published by the workers during a test."""
    events = []
    unsubscribe = broadcaster.subscribe(lambda kind, row: events.append((kind, row)))
    yield events
    unsubscribe()
