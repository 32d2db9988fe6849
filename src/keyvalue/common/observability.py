"""Logging and tracing setup shared by keyvalue services."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from structlog.contextvars import bind_contextvars, bound_contextvars

from .keys import logging_hash

KV_PREFIX = "/v1/kv/"
_PATH_ATTRIBUTES = ("http.target", "url.path")
_URL_ATTRIBUTES = ("http.url", "url.full")


_logging_configured = False
_tracer_configured = False
_instrumented_apps: set[int] = set()


def _log_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        numeric = logging.getLevelName(level.strip().upper())
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(service_name: str, level: str | int | None = None) -> None:
    """Configure structlog for JSON structured logging."""

    global _logging_configured
    numeric_level = _log_level(level)
    if not _logging_configured:
        logging.basicConfig(level=numeric_level, format="%(message)s")
        _logging_configured = True
    else:
        logging.getLogger().setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    bind_contextvars(service=service_name)


def parse_otlp_headers(headers: str | None) -> Dict[str, str]:
    if not headers:
        return {}
    result: Dict[str, str] = {}
    for item in headers.split(","):
        if not item.strip():
            continue
        key, _, value = item.partition("=")
        if key and value:
            result[key.strip()] = value.strip()
    return result


def configure_tracing(
    service_name: str,
    endpoint: Optional[str] = None,
    headers: Optional[str] = None,
    sampler_ratio: float = 1.0,
) -> None:
    """Install an OpenTelemetry tracer provider once per process.

    Spans go to the OTLP endpoint when one is configured and to an in-memory
    exporter otherwise, so local runs and tests never need a collector.
    """

    global _tracer_configured
    if _tracer_configured:
        return

    if isinstance(trace.get_tracer_provider(), TracerProvider):
        _tracer_configured = True
        return

    resource = Resource.create({"service.name": service_name})
    sampler_ratio = max(0.0, min(1.0, sampler_ratio))
    provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sampler_ratio))

    if endpoint:
        processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=parse_otlp_headers(headers)))
    else:
        processor = SimpleSpanProcessor(InMemorySpanExporter())

    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)
    _tracer_configured = True


def loggable_path(path: str) -> str:
    """Replace the logical key in KV paths with its logging hash."""

    if path.startswith(KV_PREFIX):
        return f"{KV_PREFIX}<{logging_hash(path[len(KV_PREFIX):])}>"
    return path


def request_log_context(tenant_id: str, operation: str, key_hash: str) -> AbstractContextManager:
    """Bind request identifiers so store-layer log lines carry them too."""

    return bound_contextvars(tenant_id=tenant_id, operation=operation, key_hash=key_hash)


def scrub_server_span(span, scope: Dict[str, Any]) -> None:
    """Rewrite URL attributes on the HTTP server span so raw keys are never exported."""

    if span is None or not span.is_recording():
        return
    attributes = getattr(span, "attributes", None) or {}
    path = loggable_path(scope.get("path") or "")
    for name in _PATH_ATTRIBUTES:
        if name in attributes:
            span.set_attribute(name, path)
    for name in _URL_ATTRIBUTES:
        value = attributes.get(name)
        if isinstance(value, str):
            parts = urlsplit(value)
            span.set_attribute(name, urlunsplit((parts.scheme, parts.netloc, path, "", "")))
    if "url.query" in attributes:
        span.set_attribute("url.query", "")


def instrument_fastapi_app(app) -> None:
    """Attach OpenTelemetry instrumentation to a FastAPI app exactly once."""

    if id(app) in _instrumented_apps:
        return
    FastAPIInstrumentor.instrument_app(
        app,
        tracer_provider=trace.get_tracer_provider(),
        server_request_hook=scrub_server_span,
    )
    _instrumented_apps.add(id(app))
