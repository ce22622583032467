"""
Per-operation performance aggregates for the request pipeline.
"""
import time
from dataclasses import asdict, dataclass
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class OperationMetrics:
    """Aggregated timings for one logical operation."""

    operation: str
    count: int = 0
    total_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    success_count: int = 0
    error_count: int = 0
    success_rate: float = 0.0

    def record(self, duration_ms: float, success: bool) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        self.avg_duration_ms = self.total_duration_ms / self.count
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)

        if success:
            self.success_count += 1
        else:
            self.error_count += 1

        self.success_rate = self.success_count / self.count


class OperationTimer:
    """
    Timer for a single pipeline call.

    Example:
        >>> timer = monitor.start_operation("req-1", "GET /content.json")
        >>> duration_ms = timer.end(success=True)
    """

    def __init__(self, monitor: "PerformanceMonitor", request_id: str, operation: str) -> None:
        self.monitor = monitor
        self.request_id = request_id
        self.operation = operation
        self._started = time.perf_counter()

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000

    def end(self, success: bool) -> float:
        """Stop the timer, record it, and return the duration in milliseconds."""
        duration_ms = self.elapsed_ms()
        self.monitor.record_operation(self.request_id, self.operation, duration_ms, success)
        return duration_ms


class PerformanceMonitor:
    """
    Collects duration and success aggregates keyed by operation name.

    Operations slower than ``slow_threshold_ms`` are logged as warnings.

    Attributes:
        slow_threshold_ms: Duration above which a call is reported as slow
    """

    def __init__(self, slow_threshold_ms: float = 5000.0) -> None:
        self.slow_threshold_ms = slow_threshold_ms
        self._metrics: dict[str, OperationMetrics] = {}

    def start_operation(self, request_id: str, operation: str) -> OperationTimer:
        return OperationTimer(self, request_id, operation)

    def record_operation(
        self,
        request_id: str,
        operation: str,
        duration_ms: float,
        success: bool,
    ) -> None:
        metrics = self._metrics.get(operation)
        if metrics is None:
            metrics = OperationMetrics(operation=operation)
            self._metrics[operation] = metrics

        metrics.record(duration_ms, success)

        if duration_ms > self.slow_threshold_ms:
            logger.warning(
                "slow_operation_detected",
                request_id=request_id,
                operation=operation,
                duration_ms=round(duration_ms, 2),
            )

    def get_metrics(self) -> list[dict[str, Any]]:
        """Return a snapshot of all operation aggregates."""
        return [asdict(m) for m in self._metrics.values()]

    def get_operation(self, operation: str) -> Optional[dict[str, Any]]:
        metrics = self._metrics.get(operation)
        return asdict(metrics) if metrics else None

    def reset(self) -> None:
        self._metrics.clear()
