"""
Performance Monitor
Per-operation timing counters for the prediction pipeline.
"""
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Deque, Dict, Iterator

import numpy as np
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class OperationStats(BaseModel):
    """Timing summary for one operation name."""
    count: int = 0
    avg_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    p95_ms: float = 0.0


class PerformanceMonitor:
    """
    Records durations of named operations.

    Keeps the most recent ``max_samples`` durations per operation plus a
    running count. Disabled monitors record nothing.
    """

    def __init__(self, enabled: bool = True, max_samples: int = 1000):
        self.enabled = enabled
        self.max_samples = max_samples
        self._durations: Dict[str, Deque[float]] = {}
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def record(self, operation: str, duration_ms: float) -> None:
        if not self.enabled:
            return
        with self._lock:
            samples = self._durations.setdefault(operation, deque(maxlen=self.max_samples))
            samples.append(duration_ms)
            self._counts[operation] = self._counts.get(operation, 0) + 1
        logger.debug(f"ML performance: {operation} took {duration_ms:.1f}ms")

    @contextmanager
    def track(self, operation: str) -> Iterator[None]:
        """Time the enclosed block, recording it even if the block raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(operation, (time.perf_counter() - start) * 1000.0)

    def get_stats(self) -> Dict[str, OperationStats]:
        with self._lock:
            snapshot = {op: (list(d), self._counts[op]) for op, d in self._durations.items()}

        stats = {}
        for operation, (durations, count) in snapshot.items():
            values = np.array(durations)
            stats[operation] = OperationStats(
                count=count,
                avg_ms=round(float(values.mean()), 2),
                min_ms=round(float(values.min()), 2),
                max_ms=round(float(values.max()), 2),
                p95_ms=round(float(np.percentile(values, 95)), 2),
            )
        return stats

    def log_stats(self) -> None:
        if not self.enabled:
            return
        for operation, s in self.get_stats().items():
            logger.info(
                f"ML performance {operation}: {s.count} calls, avg {s.avg_ms}ms, "
                f"min {s.min_ms}ms, max {s.max_ms}ms, p95 {s.p95_ms}ms"
            )

    def clear(self) -> None:
        with self._lock:
            self._durations.clear()
            self._counts.clear()
