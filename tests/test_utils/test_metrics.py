"""Unit tests for performance aggregation."""

from unittest.mock import patch

from src.utils.metrics import OperationMetrics, PerformanceMonitor


class TestOperationMetrics:
    """Test suite for OperationMetrics."""

    def test_record(self):
        metrics = OperationMetrics(operation="GET /content.json")

        metrics.record(10.0, success=True)
        metrics.record(30.0, success=False)

        assert metrics.count == 2
        assert metrics.avg_duration_ms == 20.0
        assert metrics.min_duration_ms == 10.0
        assert metrics.max_duration_ms == 30.0
        assert metrics.success_count == 1
        assert metrics.error_count == 1
        assert metrics.success_rate == 0.5


class TestPerformanceMonitor:
    """Test suite for PerformanceMonitor."""

    def test_timer_records_operation(self):
        monitor = PerformanceMonitor()

        timer = monitor.start_operation("req-1", "GET /content.json")
        duration = timer.end(success=True)

        snapshot = monitor.get_operation("GET /content.json")
        assert snapshot["count"] == 1
        assert snapshot["total_duration_ms"] == duration
        assert duration >= 0

    def test_operations_kept_apart(self):
        monitor = PerformanceMonitor()

        monitor.record_operation("r1", "GET /a", 5.0, True)
        monitor.record_operation("r2", "GET /b", 7.0, False)

        names = {m["operation"] for m in monitor.get_metrics()}
        assert names == {"GET /a", "GET /b"}

    def test_slow_operation_logged(self):
        monitor = PerformanceMonitor(slow_threshold_ms=100)

        with patch("src.utils.metrics.logger") as mock_logger:
            monitor.record_operation("r1", "GET /a", 150.0, True)
            monitor.record_operation("r2", "GET /a", 50.0, True)

        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "slow_operation_detected"

    def test_reset(self):
        monitor = PerformanceMonitor()
        monitor.record_operation("r1", "GET /a", 5.0, True)

        monitor.reset()

        assert monitor.get_metrics() == []
        assert monitor.get_operation("GET /a") is None
