"""
Metrics Collection for the Planner Engine.

Counts materializations, reorder outcomes, pattern generation and migration
results, and accumulates timings for long-running operations.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict

OCCURRENCES_MATERIALIZED = "occurrences_materialized_total"
MATERIALIZATION_COMPENSATIONS = "materialization_compensations_total"
REORDERS_CONFIRMED = "reorders_confirmed_total"
REORDERS_ROLLED_BACK = "reorders_rolled_back_total"
PATTERNS_CREATED = "patterns_created_total"
INSTANCES_GENERATED = "instances_generated_total"
MIGRATION_ERRORS = "migration_errors_total"
MIGRATION_DURATION = "migration_duration_seconds"


class MetricsCollector:
    """Collects and manages metrics for the planner engine."""

    def __init__(self):
        """Initialize metrics collector."""
        self.metrics = defaultdict(int)
        self.timers = defaultdict(float)
        self.lock = threading.Lock()

        for name in (
            OCCURRENCES_MATERIALIZED,
            MATERIALIZATION_COMPENSATIONS,
            REORDERS_CONFIRMED,
            REORDERS_ROLLED_BACK,
            PATTERNS_CREATED,
            INSTANCES_GENERATED,
            MIGRATION_ERRORS,
        ):
            self.metrics[name] = 0

    def increment_counter(self, metric_name: str, value: int = 1):
        """Increment a counter metric."""
        with self.lock:
            self.metrics[metric_name] += value

    def record_timer(self, metric_name: str, duration: float):
        """Record a timing metric."""
        with self.lock:
            self.timers[metric_name] += duration

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics values."""
        with self.lock:
            return {
                "counters": dict(self.metrics),
                "timers": dict(self.timers),
                "timestamp": datetime.utcnow().isoformat()
            }

    def reset(self):
        with self.lock:
            for name in list(self.metrics):
                self.metrics[name] = 0
            self.timers.clear()

    @contextmanager
    def time_operation(self, metric_name: str):
        """Context manager that adds the block's wall time to a timer."""
        start_time = time.time()
        try:
            yield
        finally:
            self.record_timer(metric_name, time.time() - start_time)


# Global metrics instance
metrics_collector = MetricsCollector()
