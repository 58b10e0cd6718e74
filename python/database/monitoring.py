"""
Query timing for the deduplication engine.

Candidate retrieval and case history are the two hot read paths. Each run
through query_timer() feeds a Prometheus histogram and an in-process
summary that the health endpoint reports.

Usage:
    from database.monitoring import query_timer

    with query_timer("retrieve_candidates"):
        rows = session.execute(stmt).all()
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any

from prometheus_client import Histogram, Counter

logger = logging.getLogger(__name__)

SLOW_QUERY_MS = 250.0


dedup_query_seconds = Histogram(
    'dedup_db_query_duration_seconds',
    'Deduplication query duration in seconds',
    ['operation', 'status'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)

dedup_slow_queries = Counter(
    'dedup_db_slow_queries_total',
    'Deduplication queries slower than the slow-query threshold',
    ['operation']
)


@dataclass
class OperationTimings:
    """Running totals for one named operation."""
    operation: str
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    errors: int = 0
    slow: int = 0
    last_run: Optional[datetime] = None

    def add(self, duration_ms: float, failed: bool) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.max_ms = max(self.max_ms, duration_ms)
        self.last_run = datetime.now()
        if failed:
            self.errors += 1
        if duration_ms > SLOW_QUERY_MS:
            self.slow += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'count': self.count,
            'avg_time_ms': round(self.total_ms / self.count, 2) if self.count else 0.0,
            'max_time_ms': round(self.max_ms, 2),
            'errors': self.errors,
            'slow_queries': self.slow,
            'last_executed': self.last_run.isoformat() if self.last_run else None
        }


_timings: Dict[str, OperationTimings] = {}
_timings_lock = threading.Lock()


def get_db_metrics(operation: Optional[str] = None) -> Dict[str, Any]:
    """
    Summaries keyed by operation name, or the single summary for
    ``operation`` ({} when it never ran).
    """
    with _timings_lock:
        if operation:
            entry = _timings.get(operation)
            return entry.to_dict() if entry else {}
        return {name: entry.to_dict() for name, entry in _timings.items()}


def reset_metrics() -> None:
    """Forget in-process summaries. Prometheus series are left alone."""
    with _timings_lock:
        _timings.clear()


@contextmanager
def query_timer(operation: str):
    """
    Time the enclosed block under ``operation``.

    A failing block is counted as an error and its exception re-raised.
    """
    started = time.perf_counter()
    failed = False
    try:
        yield
    except Exception:
        failed = True
        raise
    finally:
        elapsed = time.perf_counter() - started
        elapsed_ms = elapsed * 1000

        with _timings_lock:
            entry = _timings.setdefault(operation, OperationTimings(operation))
            entry.add(elapsed_ms, failed)

        dedup_query_seconds.labels(
            operation=operation, status="error" if failed else "success"
        ).observe(elapsed)
        if elapsed_ms > SLOW_QUERY_MS:
            dedup_slow_queries.labels(operation=operation).inc()
            logger.warning("Slow %s query: %.1fms", operation, elapsed_ms)
