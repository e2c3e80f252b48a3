"""Shared database fixtures."""

import tempfile
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from shelf_agent.db.engine import create_db_engine
from shelf_agent.db.models import Base, CollectableDB, ShelfItemDB
from shelf_agent.db.repositories import SqlPersistenceGateway, SqlReviewQueue


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine with every table."""
    engine = create_db_engine(temp_db_path)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def persistence(session_factory) -> SqlPersistenceGateway:
    return SqlPersistenceGateway(session_factory)


@pytest.fixture
def review_queue(session_factory) -> SqlReviewQueue:
    return SqlReviewQueue(session_factory)


@pytest.fixture
def engine_without_review_table(temp_db_path):
    """Engine whose schema predates the review queue."""
    engine = create_db_engine(temp_db_path)
    Base.metadata.create_all(engine, tables=[CollectableDB.__table__, ShelfItemDB.__table__])
    yield engine
    engine.dispose()
