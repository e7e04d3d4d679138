"""
Tests for operation timing counters.
"""
import pytest

from glucose_forecast.services.performance_monitor import PerformanceMonitor


class TestPerformanceMonitor:
    def test_record_and_stats(self):
        monitor = PerformanceMonitor()
        for ms in (10.0, 20.0, 30.0):
            monitor.record("inference", ms)

        stats = monitor.get_stats()["inference"]

        assert stats.count == 3
        assert stats.avg_ms == 20.0
        assert stats.min_ms == 10.0
        assert stats.max_ms == 30.0

    def test_track_records_on_exception(self):
        monitor = PerformanceMonitor()

        with pytest.raises(ValueError):
            with monitor.track("feature_building"):
                raise ValueError("bad")

        assert monitor.get_stats()["feature_building"].count == 1

    def test_disabled_monitor(self):
        monitor = PerformanceMonitor(enabled=False)
        with monitor.track("inference"):
            pass
        assert monitor.get_stats() == {}

    def test_sample_window(self):
        monitor = PerformanceMonitor(max_samples=2)
        for ms in (100.0, 1.0, 3.0):
            monitor.record("inference", ms)

        stats = monitor.get_stats()["inference"]

        assert stats.count == 3
        assert stats.max_ms == 3.0

    def test_clear(self):
        monitor = PerformanceMonitor()
        monitor.record("inference", 5.0)
        monitor.clear()
        assert monitor.get_stats() == {}
