"""
Database Engine
===============

Builds the SQLAlchemy engine and session factory shared by the
session-per-call gateways. The pipeline runs gateway calls in worker
threads, so SQLite connections may cross threads and foreign keys are
switched on for every connection.
"""

import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".shelf_agent" / "shelf_agent.db"
MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# One session factory per database URL for the life of the process
_session_factories: dict[str, sessionmaker[Session]] = {}


def get_database_url(url: Path | str | None = None) -> str:
    """
    Resolve the database URL.

    Args:
        url: SQLAlchemy URL or SQLite file path. Falls back to the
             DATABASE_URL environment variable, then the default path.

    Returns:
        SQLAlchemy connection URL. Parent directories of SQLite files
        are created.
    """
    value = str(url) if url is not None else os.environ.get("DATABASE_URL") or str(DEFAULT_DB_PATH)
    if "://" in value:
        return value

    path = Path(value).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: Path | str | None = None, echo: bool = False) -> Engine:
    """
    Create an engine for the gateways.

    Args:
        url: SQLAlchemy URL or SQLite file path (see get_database_url).
        echo: If True, log all SQL statements.
    """
    database_url = get_database_url(url)
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url, echo=echo, connect_args={"check_same_thread": False}
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def get_session_factory(url: Path | str | None = None) -> sessionmaker[Session]:
    """Process-wide session factory for a database, created on first use."""
    database_url = get_database_url(url)
    factory = _session_factories.get(database_url)
    if factory is None:
        engine = create_db_engine(database_url)
        factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
        _session_factories[database_url] = factory
        logger.info(f"Opened database {engine.url.render_as_string(hide_password=True)}")
    return factory


def init_db(url: Path | str | None = None) -> None:
    """
    Create every table that does not exist yet.

    Note: In production, use Alembic migrations instead.
    """
    from shelf_agent.db.models import Base

    engine = get_session_factory(url).kw["bind"]
    Base.metadata.create_all(bind=engine)


def run_migrations(url: Path | str | None = None) -> None:
    """
    Upgrade a database to the latest Alembic revision.

    Uses alembic.ini from the working directory when present, for its
    logging setup; the migration scripts always come from the package.
    """
    alembic_ini = Path.cwd() / "alembic.ini"
    config = Config(str(alembic_ini)) if alembic_ini.exists() else Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", get_database_url(url))
    command.upgrade(config, "head")
