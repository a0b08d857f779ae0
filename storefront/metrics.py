"""
In-process request metrics.

Tracks:
- Latency percentiles (p50, p95, p99) per endpoint
- Cache hit rate per cache kind (search, categories, suggestions, product)
- Request, error and degraded-response counts per endpoint
"""

from typing import Dict, Optional
from collections import defaultdict, deque
from datetime import datetime
import statistics
import threading


class MetricsCollector:
    """
    Sliding-window metrics collector.

    Handlers run in FastAPI's threadpool, so counters are updated under a lock.
    """

    def __init__(self, window_size: int = 1000):
        """
        Args:
            window_size: Number of recent latency samples kept per endpoint
        """
        self.window_size = window_size
        self._lock = threading.Lock()

        self.latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=window_size))
        self.cache_hits: Dict[str, int] = defaultdict(int)
        self.cache_misses: Dict[str, int] = defaultdict(int)
        self.request_counts: Dict[str, int] = defaultdict(int)
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.degraded_counts: Dict[str, int] = defaultdict(int)

        self.start_time = datetime.utcnow()

    def record_latency(self, endpoint: str, latency_ms: float):
        """Record a latency sample for an endpoint."""
        with self._lock:
            self.latencies[endpoint].append(latency_ms)
            self.request_counts[endpoint] += 1

    def record_cache(self, kind: str, hit: bool):
        """Record a cache lookup outcome."""
        with self._lock:
            if hit:
                self.cache_hits[kind] += 1
            else:
                self.cache_misses[kind] += 1

    def record_error(self, endpoint: str):
        with self._lock:
            self.error_counts[endpoint] += 1

    def record_degraded(self, endpoint: str):
        """Record a response served in degraded mode (search backend down)."""
        with self._lock:
            self.degraded_counts[endpoint] += 1

    def get_percentile(self, endpoint: str, percentile: float) -> Optional[float]:
        """
        Latency percentile for an endpoint, or None with fewer than 10 samples.
        """
        values = sorted(self.latencies.get(endpoint, ()))
        if len(values) < 10:
            return None
        index = min(int(len(values) * (percentile / 100.0)), len(values) - 1)
        return values[index]

    def get_cache_hit_rate(self, kind: Optional[str] = None) -> float:
        """Cache hit rate as a percentage, overall or for one cache kind."""
        if kind is None:
            hits = sum(self.cache_hits.values())
            misses = sum(self.cache_misses.values())
        else:
            hits = self.cache_hits.get(kind, 0)
            misses = self.cache_misses.get(kind, 0)
        total = hits + misses
        if total == 0:
            return 0.0
        return (hits / total) * 100.0

    def get_error_rate(self, endpoint: str) -> float:
        total_requests = self.request_counts.get(endpoint, 0)
        if total_requests == 0:
            return 0.0
        return (self.error_counts.get(endpoint, 0) / total_requests) * 100.0

    def get_summary(self) -> Dict:
        """Snapshot of all metrics, as served by ``GET /metrics``."""
        summary = {
            "uptime_seconds": (datetime.utcnow() - self.start_time).total_seconds(),
            "cache": {
                "hit_rate_pct": round(self.get_cache_hit_rate(), 2),
                "total_hits": sum(self.cache_hits.values()),
                "total_misses": sum(self.cache_misses.values()),
                "by_kind": {
                    kind: {
                        "hits": self.cache_hits.get(kind, 0),
                        "misses": self.cache_misses.get(kind, 0),
                        "hit_rate_pct": round(self.get_cache_hit_rate(kind), 2),
                    }
                    for kind in sorted(set(self.cache_hits) | set(self.cache_misses))
                },
            },
            "endpoints": {},
        }

        for endpoint in list(self.request_counts.keys()):
            endpoint_metrics = {
                "total_requests": self.request_counts[endpoint],
                "total_errors": self.error_counts.get(endpoint, 0),
                "total_degraded": self.degraded_counts.get(endpoint, 0),
                "error_rate_pct": round(self.get_error_rate(endpoint), 2),
            }
            for pct in (50, 95, 99):
                value = self.get_percentile(endpoint, pct)
                if value is not None:
                    endpoint_metrics[f"latency_p{pct}_ms"] = round(value, 2)
            if self.latencies[endpoint]:
                endpoint_metrics["latency_avg_ms"] = round(
                    statistics.mean(self.latencies[endpoint]), 2
                )
            summary["endpoints"][endpoint] = endpoint_metrics

        return summary

    def reset(self):
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self.latencies.clear()
            self.cache_hits.clear()
            self.cache_misses.clear()
            self.request_counts.clear()
            self.error_counts.clear()
            self.degraded_counts.clear()


# Global metrics collector instance
metrics_collector = MetricsCollector()


def record_request_metrics(
    endpoint: str,
    latency_ms: float,
    is_error: bool = False,
    degraded: bool = False,
):
    """Record latency plus error/degraded flags for one request."""
    metrics_collector.record_latency(endpoint, latency_ms)
    if is_error:
        metrics_collector.record_error(endpoint)
    if degraded:
        metrics_collector.record_degraded(endpoint)
