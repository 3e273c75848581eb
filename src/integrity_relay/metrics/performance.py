"""
Performance and quota metrics for the integrity relay
"""

import threading
import time
import uuid
import logging
from collections import defaultdict, deque
from contextvars import ContextVar
from datetime import date, datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Context for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class MetricsCollector:
    """Simplified metrics collection for request timing, decode quota and decisions"""

    def __init__(self, daily_quota: int = 10000, quota_alert_threshold: float = 0.8,
                 today: Callable[[], date] = _utc_today):
        self.daily_quota = daily_quota
        self.quota_alert_threshold = quota_alert_threshold
        self._today = today
        self._lock = threading.Lock()

        self.request_durations = deque(maxlen=10000)
        self.active_connections = 0
        self.decode_calls_today = 0
        self.quota_day: Optional[date] = None
        self.quota_alerted = False
        self.upstream_rate_limited = 0
        self.upstream_failures = 0
        self.decisions = defaultdict(int)
        self.deny_reasons = defaultdict(int)

    def configure_quota(self, daily_quota: int, quota_alert_threshold: float):
        self.daily_quota = daily_quota
        self.quota_alert_threshold = quota_alert_threshold

    def observe_request_duration(self, method: str, endpoint: str, status: int, duration: float):
        """Record HTTP request duration"""
        self.request_durations.append({
            'method': method,
            'endpoint': endpoint,
            'status': status,
            'duration': duration,
            'timestamp': time.time()
        })
        logger.info(f"Request {method} {endpoint} [{status}] took {duration:.3f}s")

    def record_decode_call(self) -> int:
        """
        Count one call against the decoding authority's daily quota.

        Logs a capacity warning once per UTC day when usage crosses the
        alert threshold. Returns the calls made today.
        """
        with self._lock:
            today = self._today()
            if self.quota_day != today:
                self.quota_day = today
                self.decode_calls_today = 0
                self.quota_alerted = False

            self.decode_calls_today += 1
            used = self.decode_calls_today
            limit = self.daily_quota * self.quota_alert_threshold
            alert = not self.quota_alerted and used >= limit
            if alert:
                self.quota_alerted = True

        if alert:
            logger.warning(f"Decoding authority quota usage {used}/{self.daily_quota} "
                           f"crossed {self.quota_alert_threshold:.0%} alert threshold")
        return used

    def record_rate_limited(self, retry_after: float):
        """Record a 429 from the decoding authority"""
        with self._lock:
            self.upstream_rate_limited += 1
        logger.warning(f"Decoding authority rate limited (retry after {retry_after:.0f}s), "
                       f"calls today: {self.decode_calls_today}/{self.daily_quota}")

    def record_upstream_failure(self):
        with self._lock:
            self.upstream_failures += 1

    def record_decision(self, outcome: str, reason_codes):
        with self._lock:
            self.decisions[outcome] += 1
            for reason in reason_codes:
                self.deny_reasons[reason] += 1

    def increment_connections(self):
        """Increment active connections"""
        self.active_connections += 1

    def decrement_connections(self):
        """Decrement active connections"""
        self.active_connections = max(0, self.active_connections - 1)

    def get_quota_stats(self) -> dict:
        with self._lock:
            return {
                "day": self.quota_day.isoformat() if self.quota_day else None,
                "decode_calls": self.decode_calls_today,
                "daily_quota": self.daily_quota,
                "alert_threshold": self.quota_alert_threshold,
                "alerted": self.quota_alerted,
                "rate_limited": self.upstream_rate_limited,
                "upstream_failures": self.upstream_failures,
            }


# Global metrics collector
metrics = MetricsCollector()


async def track_performance(request, call_next):
    """Performance tracking middleware"""
    start = time.time()

    # Generate request ID
    request_id = str(uuid.uuid4())
    request_id_var.set(request_id)

    # Track active connections
    metrics.increment_connections()

    try:
        response = await call_next(request)
        duration = time.time() - start

        # Record metrics
        metrics.observe_request_duration(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code,
            duration=duration
        )

        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as e:
        duration = time.time() - start
        logger.error(f"Request failed after {duration:.3f}s: {e}")
        raise
    finally:
        metrics.decrement_connections()


def get_performance_stats(collector: Optional[MetricsCollector] = None):
    """Get current performance, quota and decision statistics"""
    collector = collector or metrics

    durations = sorted(r["duration"] for r in list(collector.request_durations)[-1000:])  # Last 1000 requests

    return {
        "total_requests": len(collector.request_durations),
        "active_connections": collector.active_connections,
        "avg_duration": sum(durations) / len(durations) if durations else 0,
        "p95_duration": durations[int(len(durations) * 0.95)] if durations else 0,
        "p99_duration": durations[int(len(durations) * 0.99)] if durations else 0,
        "decisions": dict(collector.decisions),
        "deny_reasons": dict(collector.deny_reasons),
        "quota": collector.get_quota_stats(),
    }
