"""Initialize database tables."""
import logging
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

# Imported so the tables register on SQLModel.metadata
from planner.models import RecurringPatternRecord, TaskRecord  # noqa: F401
from planner.db.config import engine as default_engine

logger = logging.getLogger(__name__)


def init_db(db_engine: Optional[Engine] = None):
    """Create all tables in the database."""
    logger.info("Creating planner tables")
    SQLModel.metadata.create_all(db_engine or default_engine)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
    print("Database tables created successfully.")
