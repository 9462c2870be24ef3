"""Logging and tracing setup for the ticket engine.

Every log record handled by the stream handler carries the trace and span id
of the command span that was active when it was emitted, so log lines written
by :mod:`worktrackr.tickets` can be matched to the exported traces.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from worktrackr.core.config import Settings

NO_TRACE = "-"
TICKETS_LOGGER = "worktrackr.tickets"

_active_provider: TracerProvider | None = None


class TraceContextFilter(logging.Filter):
    """Attach ``trace_id`` and ``span_id`` of the current span to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        if context.is_valid:
            record.trace_id = trace.format_trace_id(context.trace_id)
            record.span_id = trace.format_span_id(context.span_id)
        else:
            record.trace_id = NO_TRACE
            record.span_id = NO_TRACE
        return True


def _level(name: str | None, default: int = logging.INFO) -> int:
    if not name:
        return default
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


def _otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` as used by ``OTEL_EXPORTER_OTLP_HEADERS``."""

    pairs = (item.split("=", 1) for item in (raw or "").split(",") if "=" in item)
    return {key.strip(): value.strip() for key, value in pairs}


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the stream handler and return the ticket engine logger."""

    root_level = _level(settings.log_level)
    tickets_level = _level(settings.tickets_log_level, root_level)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"trace_context": {"()": TraceContextFilter}},
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["trace_context"],
                }
            },
            "loggers": {TICKETS_LOGGER: {"level": tickets_level}},
            "root": {"handlers": ["default"], "level": root_level},
        }
    )
    return logging.getLogger(TICKETS_LOGGER)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP exporting tracer provider when tracing is enabled."""

    global _active_provider

    if not settings.otel_enabled or _active_provider is not None:
        return None

    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=_otlp_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "deployment.environment": settings.environment,
            }
        )
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _active_provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _active_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None
