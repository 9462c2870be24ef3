import logging

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider

from worktrackr.core.config import Settings
from worktrackr.core.logging import NO_TRACE, TraceContextFilter, _otlp_headers, configure_logging


def _record() -> logging.LogRecord:
    return logging.LogRecord("worktrackr.tickets.service", logging.INFO, __file__, 1, "moved", None, None)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    tickets = logging.getLogger("worktrackr.tickets")
    root_level, tickets_level = root.level, tickets.level
    yield
    for handler in list(root.handlers):
        if any(isinstance(item, TraceContextFilter) for item in handler.filters):
            root.removeHandler(handler)
    root.setLevel(root_level)
    tickets.setLevel(tickets_level)


def test_filter_stamps_ids_of_active_span():
    tracer = TracerProvider().get_tracer(__name__)
    record = _record()

    with tracer.start_as_current_span("tickets.update") as span:
        TraceContextFilter().filter(record)
        context = span.get_span_context()

    assert record.trace_id == format(context.trace_id, "032x")
    assert record.span_id == format(context.span_id, "016x")


def test_filter_marks_records_outside_a_span():
    record = _record()

    assert TraceContextFilter().filter(record)
    assert record.trace_id == NO_TRACE
    assert record.span_id == NO_TRACE


def test_configure_logging_sets_ticket_logger_level(restore_logging):
    logger = configure_logging(Settings(log_level="WARNING", tickets_log_level="DEBUG"))

    assert logger.name == "worktrackr.tickets"
    assert logger.level == logging.DEBUG
    assert logging.getLogger().level == logging.WARNING


def test_configure_logging_formats_trace_ids(restore_logging, capsys):
    logger = configure_logging(Settings(log_format="%(trace_id)s|%(message)s"))
    tracer = TracerProvider().get_tracer(__name__)

    with tracer.start_as_current_span("tickets.create") as span:
        logger.getChild("service").info("created")
        trace_id = trace.format_trace_id(span.get_span_context().trace_id)

    assert f"{trace_id}|created" in capsys.readouterr().err


def test_unknown_level_falls_back_to_root_level(restore_logging):
    logger = configure_logging(Settings(log_level="ERROR", tickets_log_level="chatty"))

    assert logger.level == logging.ERROR


def test_otlp_headers_skip_malformed_items():
    assert _otlp_headers("api-key=abc, tenant = ops,broken") == {"api-key": "abc", "tenant": "ops"}
    assert _otlp_headers(None) == {}
