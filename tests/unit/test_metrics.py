"""
Unit tests for relay metrics and quota tracking.
"""

from datetime import date

from integrity_relay.metrics.performance import MetricsCollector, get_performance_stats


class Today:
    def __init__(self, day: date):
        self.day = day

    def __call__(self) -> date:
        return self.day


class TestQuotaTracking:
    """Test cases for daily decode quota accounting."""

    def test_counts_calls(self):
        collector = MetricsCollector(daily_quota=10, quota_alert_threshold=0.8,
                                     today=Today(date(2026, 1, 1)))

        for _ in range(3):
            collector.record_decode_call()

        stats = collector.get_quota_stats()
        assert stats["decode_calls"] == 3
        assert stats["day"] == "2026-01-01"
        assert stats["alerted"] is False

    def test_alert_once_at_threshold(self, caplog):
        collector = MetricsCollector(daily_quota=10, quota_alert_threshold=0.8,
                                     today=Today(date(2026, 1, 1)))

        with caplog.at_level("WARNING"):
            for _ in range(10):
                collector.record_decode_call()

        alerts = [r for r in caplog.records if "alert threshold" in r.getMessage()]
        assert len(alerts) == 1
        assert "8/10" in alerts[0].getMessage()

    def test_resets_on_new_day(self):
        today = Today(date(2026, 1, 1))
        collector = MetricsCollector(daily_quota=2, quota_alert_threshold=0.5, today=today)
        collector.record_decode_call()
        assert collector.get_quota_stats()["alerted"] is True

        today.day = date(2026, 1, 2)
        used = collector.record_decode_call()

        assert used == 1
        stats = collector.get_quota_stats()
        assert stats["day"] == "2026-01-02"

    def test_rate_limited_and_failures_counted(self):
        collector = MetricsCollector()

        collector.record_rate_limited(30)
        collector.record_upstream_failure()

        stats = collector.get_quota_stats()
        assert stats["rate_limited"] == 1
        assert stats["upstream_failures"] == 1


class TestDecisionMetrics:
    def test_decisions_and_reasons(self):
        collector = MetricsCollector()

        collector.record_decision("ALLOW", [])
        collector.record_decision("DENY", ["APP_INTEGRITY_FAILED", "DEVICE_INTEGRITY_FAILED"])
        collector.record_decision("DENY", ["DEVICE_INTEGRITY_FAILED"])

        stats = get_performance_stats(collector)
        assert stats["decisions"] == {"ALLOW": 1, "DENY": 2}
        assert stats["deny_reasons"] == {"APP_INTEGRITY_FAILED": 1, "DEVICE_INTEGRITY_FAILED": 2}

    def test_request_durations(self):
        collector = MetricsCollector()

        for duration in (0.1, 0.2, 0.3):
            collector.observe_request_duration("POST", "/v1/integrity/verdicts", 200, duration)

        stats = get_performance_stats(collector)
        assert stats["total_requests"] == 3
        assert abs(stats["avg_duration"] - 0.2) < 1e-9
        assert stats["p99_duration"] == 0.3
