import threading
import time
from collections import Counter, defaultdict
from typing import Dict, Optional


class _Average:
    __slots__ = ("total", "count")

    def __init__(self) -> None:
        self.total = 0.0
        self.count = 0

    def add(self, value: float) -> None:
        self.total += value
        self.count += 1

    @property
    def value(self) -> float:
        return self.total / self.count if self.count else 0.0


class MetricsCollector:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start_time = time.time()
        self._requests_by_owner: Counter = Counter()
        self._requests_by_endpoint: Counter = Counter()
        self._latency_total = _Average()
        self._latency_by_endpoint: Dict[str, _Average] = defaultdict(_Average)
        self._errors_by_status: Counter = Counter()
        self._errors_by_owner: Counter = Counter()
        self._queries_by_shape: Counter = Counter()
        self._rows_by_shape: Dict[str, _Average] = defaultdict(_Average)

    def record_request(
        self,
        endpoint: str,
        owner_id: Optional[int],
        status_code: int,
        latency_ms: float,
    ) -> None:
        owner_key = str(owner_id) if owner_id is not None else None
        with self._lock:
            self._requests_by_endpoint[endpoint] += 1
            if owner_key:
                self._requests_by_owner[owner_key] += 1
            self._latency_total.add(latency_ms)
            self._latency_by_endpoint[endpoint].add(latency_ms)
            if status_code >= 400:
                self._errors_by_status[str(status_code)] += 1
                if owner_key:
                    self._errors_by_owner[owner_key] += 1

    def record_query(self, shape: str, rows: int) -> None:
        with self._lock:
            self._queries_by_shape[shape] += 1
            self._rows_by_shape[shape].add(rows)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "uptimeSeconds": int(time.time() - self._start_time),
                "requests": {
                    "total": self._latency_total.count,
                    "byOwner": dict(self._requests_by_owner),
                    "byEndpoint": dict(self._requests_by_endpoint),
                    "queriesByShape": dict(self._queries_by_shape),
                    "avgRowsByShape": {
                        shape: avg.value for shape, avg in self._rows_by_shape.items()
                    },
                },
                "latencyMs": {
                    "avgOverall": self._latency_total.value,
                    "byEndpointAvg": {
                        endpoint: avg.value
                        for endpoint, avg in self._latency_by_endpoint.items()
                    },
                },
                "errors": {
                    "total": sum(self._errors_by_status.values()),
                    "byStatus": dict(self._errors_by_status),
                    "byOwner": dict(self._errors_by_owner),
                },
            }
