"""
Logging Utility for the Planner Engine.

Provides structured JSON logging for engine events (materialization,
reorder rollback, migration) on top of the standard logging module.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Optional

from planner import config


class StructuredLogger:
    """Structured logger for planner components."""

    def __init__(self, name: str, level: Optional[int] = None):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            level: Logging level, defaults to the configured LOG_LEVEL
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level if level is not None else config.get_log_level())

        # Prevent adding handlers multiple times
        if not self.logger.handlers:
            self._setup_handlers()

    def _setup_handlers(self):
        """Set up logging handlers."""
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        self.logger.addHandler(console_handler)

    def _payload(self, level_name: str, event: str, **fields) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": level_name,
            "event": event,
            "component": self.logger.name,
        }
        log_data.update(fields)
        # Dates and enums in the payload are rendered with str()
        return json.dumps(log_data, default=str)

    def _log_structured(self, level: int, event: str, **fields):
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self._payload(logging.getLevelName(level), event, **fields))

    def debug(self, event: str, **fields):
        self._log_structured(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields):
        self._log_structured(logging.INFO, event, **fields)

    def warning(self, event: str, **fields):
        self._log_structured(logging.WARNING, event, **fields)

    def error(self, event: str, **fields):
        self._log_structured(logging.ERROR, event, **fields)

    def critical(self, event: str, **fields):
        self._log_structured(logging.CRITICAL, event, **fields)

    def exception(self, event: str, **fields):
        """Log an error event with the active traceback."""
        if self.logger.isEnabledFor(logging.ERROR):
            self.logger.exception(self._payload("ERROR", event, exception=True, **fields))


engine_logger = StructuredLogger("planner.engine")


def get_logger(component: str) -> StructuredLogger:
    """
    Get a structured logger for a planner component.

    Args:
        component: Dotted component name, e.g. "planner.migrator"

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(component)
