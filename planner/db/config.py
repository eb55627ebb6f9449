"""Database configuration for the planner service."""
import logging
from typing import Generator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine

from planner import config

logger = logging.getLogger(__name__)


def build_engine(database_url: Optional[str] = None, **kwargs) -> Engine:
    """
    Create a SQLModel engine for ``database_url`` (defaults to DATABASE_URL).

    SQLite connections get foreign keys enabled and, for file databases,
    WAL journaling.
    """
    url = database_url or config.DATABASE_URL
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    connect_args.update(kwargs.pop("connect_args", {}))

    if is_sqlite:
        logger.info(f"Using SQLite database: {url}")
        db_engine = create_engine(url, echo=False, connect_args=connect_args, **kwargs)
        in_memory = url in ("sqlite://", "sqlite:///:memory:")

        @event.listens_for(db_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return db_engine

    logger.info("Using PostgreSQL database")
    return create_engine(url, echo=False, pool_pre_ping=True, connect_args=connect_args, **kwargs)


engine = build_engine()


def get_session() -> Generator[Session, None, None]:
    """Dependency for getting database sessions."""
    with Session(engine) as session:
        yield session
