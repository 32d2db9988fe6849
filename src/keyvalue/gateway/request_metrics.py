"""Per-request latency and outcome recording."""

from __future__ import annotations

import time
from typing import Callable, Optional

import structlog

from ..common.metrics import GLOBAL_REGISTRY, Counter, Histogram, MetricsRegistry
from ..common.schemas import Operation, RequestMetrics

LATENCY_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]


class MetricsCollector:
    """Times one gateway request; ``finish`` must run exactly once."""

    def __init__(
        self,
        hook: "RequestMetricsHook",
        tenant_id: str,
        operation: Operation,
        clock: Callable[[], float],
    ):
        self._hook = hook
        self._tenant_id = tenant_id
        self._operation = operation
        self._clock = clock
        self._started = clock()
        self._record: Optional[RequestMetrics] = None

    @property
    def finished(self) -> bool:
        return self._record is not None

    def finish(self, status_code: int, key_hash: str, object_size: Optional[int] = None) -> RequestMetrics:
        if self._record is not None:
            self._hook.logger.warning(
                "metrics_finish_repeated",
                tenant_id=self._tenant_id,
                operation=self._operation,
                key_hash=key_hash,
            )
            return self._record
        latency_ms = round((self._clock() - self._started) * 1000, 3)
        self._record = RequestMetrics(
            tenant_id=self._tenant_id,
            operation=self._operation,
            status_code=status_code,
            object_size=object_size,
            latency_ms=latency_ms,
            key_hash=key_hash,
        )
        self._hook.emit(self._record)
        return self._record


class RequestMetricsHook:
    def __init__(self, registry: MetricsRegistry = GLOBAL_REGISTRY, clock: Callable[[], float] = time.perf_counter):
        self.logger = structlog.get_logger("keyvalue.metrics")
        self._clock = clock
        self.requests = registry.register(Counter("keyvalue_requests_total", "KV requests by operation and status"))
        self.bytes = registry.register(Counter("keyvalue_object_bytes_total", "Object bytes read or written"))
        self.latency = registry.register(
            Histogram("keyvalue_request_latency_seconds", LATENCY_BUCKETS, "KV request latency")
        )

    def start_timer(self, tenant_id: str, operation: Operation) -> MetricsCollector:
        return MetricsCollector(self, tenant_id, operation, self._clock)

    def emit(self, record: RequestMetrics) -> None:
        self.requests.inc(labels={"operation": record.operation, "status": str(record.status_code)})
        self.latency.observe(record.latency_ms / 1000, labels={"operation": record.operation})
        if record.object_size:
            self.bytes.inc(record.object_size, labels={"operation": record.operation})
        self.logger.info("request_completed", **record.model_dump(exclude_none=True))
