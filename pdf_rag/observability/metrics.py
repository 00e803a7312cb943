import threading
from typing import Dict, List


class MetricsTracker:
    """
    In-process request counters and latency history.

    Counters reset with the process. Safe for concurrent requests.
    """

    def __init__(self, max_latencies: int = 10000):

        self._lock = threading.Lock()

        self._max_latencies = max_latencies

        self._metrics = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "total_latency": 0.0,
            "avg_latency": 0.0,
        }

        self._latencies: List[float] = []

    def record_success(self, latency: float):

        with self._lock:

            self._metrics["total_requests"] += 1
            self._metrics["successful_requests"] += 1
            self._metrics["total_latency"] += latency
            self._metrics["avg_latency"] = (
                self._metrics["total_latency"]
                / self._metrics["successful_requests"]
            )

            self._latencies.append(latency)

            # keep the most recent window only
            if len(self._latencies) > self._max_latencies:
                del self._latencies[0]

    def record_failure(self):

        with self._lock:

            self._metrics["total_requests"] += 1
            self._metrics["failed_requests"] += 1

    def get_latency_percentile(self, percentile: float) -> float:

        with self._lock:
            latencies = sorted(self._latencies)

        if not latencies:
            return 0.0

        index = min(int(len(latencies) * percentile / 100), len(latencies) - 1)

        return latencies[index]

    def get_metrics(self) -> Dict:

        with self._lock:
            snapshot = dict(self._metrics)

        snapshot["p95_latency"] = self.get_latency_percentile(95)

        return snapshot

    def reset(self):

        with self._lock:

            for key in self._metrics:
                self._metrics[key] = 0 if isinstance(self._metrics[key], int) else 0.0

            self._latencies.clear()


metrics_tracker = MetricsTracker()
