"""Database layer for Shelf Agent."""

from shelf_agent.db.engine import get_session_factory, init_db
from shelf_agent.db.repositories import (
    CollectableRepository,
    ReviewRepository,
    ShelfItemRepository,
    SqlPersistenceGateway,
    SqlReviewQueue,
)

__all__ = [
    "get_session_factory",
    "init_db",
    "CollectableRepository",
    "ReviewRepository",
    "ShelfItemRepository",
    "SqlPersistenceGateway",
    "SqlReviewQueue",
]
