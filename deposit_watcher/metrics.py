"""
Ingestion Metrics

Counters and histograms reported by the watcher core. The scrape endpoint
that exposes them is owned by the host process.
"""

from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Tuple
import time


# Bucket upper bounds in seconds
FETCH_LATENCY_BUCKETS: Tuple[float, ...] = (0.1, 0.5, 1, 2, 5, 10)
DB_QUERY_BUCKETS: Tuple[float, ...] = (0.001, 0.01, 0.1, 0.5, 1, 5)
CYCLE_DURATION_BUCKETS: Tuple[float, ...] = (0.1, 0.5, 1, 2, 5, 10, 30)


class MetricsSink(Protocol):
    """Protocol for anything that receives watcher metrics."""
    def increment_processed(self) -> None: ...
    def increment_errored(self) -> None: ...
    def observe_fetch_latency(self, seconds: float, status: str) -> None: ...
    def observe_cycle_duration(self, seconds: float) -> None: ...
    def observe_db_query(self, seconds: float) -> None: ...
    def increment_db_errors(self) -> None: ...


@dataclass
class Histogram:
    """Cumulative bucketed histogram."""

    buckets: Tuple[float, ...]
    counts: List[int] = field(default_factory=list)
    total: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.counts:
            # Last slot is +Inf
            self.counts = [0] * (len(self.buckets) + 1)

    def observe(self, value: float) -> None:
        self.counts[bisect_left(self.buckets, value)] += 1
        self.total += value
        self.count += 1

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count > 0 else 0.0

    def snapshot(self) -> dict:
        cumulative = 0
        buckets = {}
        for bound, n in zip(list(self.buckets) + ["+Inf"], self.counts):
            cumulative += n
            buckets[str(bound)] = cumulative
        return {"buckets": buckets, "sum": self.total, "count": self.count}


@dataclass
class IngestionMetrics:
    """In-memory MetricsSink."""

    # Event counts
    events_processed: int = 0
    events_errored: int = 0

    # Storage
    db_query_count: int = 0
    db_query_errors: int = 0

    # Timing
    start_time: float = field(default_factory=time.time)
    fetch_latency: Dict[str, Histogram] = field(default_factory=dict)
    cycle_duration: Histogram = field(
        default_factory=lambda: Histogram(CYCLE_DURATION_BUCKETS)
    )
    db_query_duration: Histogram = field(
        default_factory=lambda: Histogram(DB_QUERY_BUCKETS)
    )

    def increment_processed(self) -> None:
        self.events_processed += 1

    def increment_errored(self) -> None:
        self.events_errored += 1

    def observe_fetch_latency(self, seconds: float, status: str) -> None:
        # One series per outcome status
        histogram = self.fetch_latency.setdefault(
            str(status), Histogram(FETCH_LATENCY_BUCKETS)
        )
        histogram.observe(seconds)

    def observe_cycle_duration(self, seconds: float) -> None:
        self.cycle_duration.observe(seconds)

    def observe_db_query(self, seconds: float) -> None:
        self.db_query_count += 1
        self.db_query_duration.observe(seconds)

    def increment_db_errors(self) -> None:
        self.db_query_errors += 1

    @property
    def fetch_count(self) -> int:
        return sum(h.count for h in self.fetch_latency.values())

    @property
    def events_per_second(self) -> float:
        elapsed = time.time() - self.start_time
        return self.events_processed / elapsed if elapsed > 0 else 0.0

    def snapshot(self) -> dict:
        """Plain-dict view of every series, for export or logging."""
        return {
            "events_processed": self.events_processed,
            "events_errored": self.events_errored,
            "db_query_count": self.db_query_count,
            "db_query_errors": self.db_query_errors,
            "fetch_latency_seconds": {
                status: h.snapshot() for status, h in self.fetch_latency.items()
            },
            "cycle_duration_seconds": self.cycle_duration.snapshot(),
            "db_query_duration_seconds": self.db_query_duration.snapshot(),
        }
