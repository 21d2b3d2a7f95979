"""
OKX Connector - Metrics.

============================================================
PURPOSE
============================================================
Counters and latency statistics for the connector.

METRICS TRACKED:
- Request latency (by endpoint)
- Request success/failure counts
- Rate-limit hits, timeouts, connection errors
- Orders submitted, rejected, canceled
- Live events published

============================================================
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ErrorCategory


class MetricType(Enum):
    """Counted metrics."""

    REQUEST_SUCCESS = "request_success"
    REQUEST_FAILURE = "request_failure"
    ORDER_SUBMITTED = "order_submitted"
    ORDER_REJECTED = "order_rejected"
    ORDER_CANCELED = "order_canceled"
    RATE_LIMIT_HIT = "rate_limit_hit"
    CONNECTION_ERROR = "connection_error"
    TIMEOUT = "timeout"
    EVENT_PUBLISHED = "event_published"


@dataclass
class LatencyStats:
    """Latency statistics."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count > 0 else 0.0

    def record(self, latency_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        self.min_ms = min(self.min_ms, latency_ms)
        self.max_ms = max(self.max_ms, latency_ms)

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg_ms": self.avg_ms,
            "min_ms": self.min_ms if self.min_ms != float("inf") else 0,
            "max_ms": self.max_ms,
        }


@dataclass
class CounterStats:
    """Counter with a rolling one-minute window."""

    total: int = 0
    last_minute: int = 0
    _stamps: List[float] = field(default_factory=list)

    def increment(self) -> None:
        now = time.time()
        self.total += 1
        self._stamps.append(now)
        minute_ago = now - 60
        self._stamps = [t for t in self._stamps if t > minute_ago]
        self.last_minute = len(self._stamps)


# Error categories counted on their own
_CATEGORY_COUNTERS = {
    ErrorCategory.RATE_LIMIT: MetricType.RATE_LIMIT_HIT,
    ErrorCategory.TIMEOUT: MetricType.TIMEOUT,
    ErrorCategory.NETWORK: MetricType.CONNECTION_ERROR,
}


class ConnectorMetrics:
    """
    Metrics collector for one connector instance.
    """

    def __init__(self, exchange_id: str = "okx", max_recent: int = 100):
        self._exchange_id = exchange_id
        self._start_time = datetime.now(timezone.utc)
        self._latency: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self._counters: Dict[MetricType, CounterStats] = {
            mt: CounterStats() for mt in MetricType
        }
        self._error_codes: Dict[str, int] = defaultdict(int)
        self._recent_requests: List[Dict[str, Any]] = []
        self._max_recent = max_recent

    # --------------------------------------------------------
    # RECORDING
    # --------------------------------------------------------

    def record_request(
        self,
        endpoint: str,
        latency_ms: float,
        success: bool,
        status_code: int = None,
        error_code: str = None,
        category: Optional[ErrorCategory] = None,
    ) -> None:
        """
        Record one REST call.

        Args:
            endpoint: API path
            latency_ms: Round-trip latency
            success: Whether the call succeeded
            status_code: HTTP status, if a response arrived
            error_code: Exchange code or error label
            category: Error category of a failed call
        """
        self._latency[endpoint].record(latency_ms)
        self._latency["_all"].record(latency_ms)

        if success:
            self._counters[MetricType.REQUEST_SUCCESS].increment()
        else:
            self._counters[MetricType.REQUEST_FAILURE].increment()
            if error_code:
                self._error_codes[error_code] += 1
            if category in _CATEGORY_COUNTERS:
                self._counters[_CATEGORY_COUNTERS[category]].increment()

        self._recent_requests.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoint": endpoint,
            "latency_ms": latency_ms,
            "success": success,
            "status_code": status_code,
            "error_code": error_code,
        })
        if len(self._recent_requests) > self._max_recent:
            self._recent_requests.pop(0)

    def record_rate_limit(self) -> None:
        self._counters[MetricType.RATE_LIMIT_HIT].increment()

    def record_order_submitted(self) -> None:
        self._counters[MetricType.ORDER_SUBMITTED].increment()

    def record_order_rejected(self, error_code: str = None) -> None:
        self._counters[MetricType.ORDER_REJECTED].increment()
        if error_code:
            self._error_codes[error_code] += 1

    def record_order_canceled(self, count: int = 1) -> None:
        for _ in range(count):
            self._counters[MetricType.ORDER_CANCELED].increment()

    def record_event_published(self) -> None:
        self._counters[MetricType.EVENT_PUBLISHED].increment()

    # --------------------------------------------------------
    # REPORTING
    # --------------------------------------------------------

    def count(self, metric: MetricType) -> int:
        """Total count of one metric."""
        return self._counters[metric].total

    def get_summary(self) -> Dict[str, Any]:
        """
        Get metrics summary.

        Returns:
            Dict with all metrics
        """
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        success = self._counters[MetricType.REQUEST_SUCCESS]
        failure = self._counters[MetricType.REQUEST_FAILURE]
        total_requests = success.total + failure.total

        return {
            "exchange_id": self._exchange_id,
            "uptime_seconds": uptime,
            "requests": {
                "total": total_requests,
                "success": success.total,
                "failure": failure.total,
                "success_rate": success.total / total_requests if total_requests else 1.0,
                "last_minute": {
                    "success": success.last_minute,
                    "failure": failure.last_minute,
                },
            },
            "latency": self._latency.get("_all", LatencyStats()).to_dict(),
            "orders": {
                "submitted": self.count(MetricType.ORDER_SUBMITTED),
                "rejected": self.count(MetricType.ORDER_REJECTED),
                "canceled": self.count(MetricType.ORDER_CANCELED),
            },
            "events": {
                "published": self.count(MetricType.EVENT_PUBLISHED),
            },
            "errors": {
                "rate_limit_hits": self.count(MetricType.RATE_LIMIT_HIT),
                "timeouts": self.count(MetricType.TIMEOUT),
                "connection_errors": self.count(MetricType.CONNECTION_ERROR),
                "by_code": dict(self._error_codes),
            },
        }

    def get_latency_by_endpoint(self) -> Dict[str, Dict[str, float]]:
        return {
            endpoint: stats.to_dict()
            for endpoint, stats in self._latency.items()
            if endpoint != "_all"
        }

    def get_recent_requests(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self._recent_requests[-limit:]

    def reset(self) -> None:
        """Reset all metrics."""
        self._start_time = datetime.now(timezone.utc)
        self._latency.clear()
        self._counters = {mt: CounterStats() for mt in MetricType}
        self._error_codes.clear()
        self._recent_requests.clear()
