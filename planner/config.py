"""Runtime configuration for the planner service."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables from a local .env file when present
load_dotenv()

# Use the DATABASE_URL from environment variable, with fallback to SQLite for local dev
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./planner.db")

ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")

# How far ahead pattern instances are materialized, in days
GENERATION_DAYS = int(os.environ.get("PLANNER_GENERATION_DAYS", "90"))

# Upper bound on occurrences produced by a single expansion
MAX_RECURRING_INSTANCES = int(os.environ.get("PLANNER_MAX_RECURRING_INSTANCES", "1000"))

# IANA zone used to decide what "today" is
TIMEZONE = os.environ.get("PLANNER_TIMEZONE", "UTC")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def get_log_level() -> int:
    """Resolve LOG_LEVEL to a logging constant, defaulting to INFO."""
    return getattr(logging, LOG_LEVEL, logging.INFO)
