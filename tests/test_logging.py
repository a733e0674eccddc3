"""JSON log records carry the service name and trace context."""
import json
import logging

from opentelemetry.sdk.trace import TracerProvider

from storefront.logging_config import StorefrontJsonFormatter


def render(message):
    formatter = StorefrontJsonFormatter('%(levelname)s %(name)s %(message)s', rename_fields={'levelname': 'level'})
    record = logging.LogRecord("storefront.orders", logging.INFO, __file__, 1, message, None, None)
    return json.loads(formatter.format(record))


def test_record_is_tagged_with_service():
    entry = render("Order created")

    assert entry["msg"] == "Order created"
    assert entry["level"] == "INFO"
    assert entry["service"] == "storefront-service"
    assert "trace_id" not in entry


def test_record_inside_span_carries_trace_ids():
    tracer = TracerProvider().get_tracer(__name__)

    with tracer.start_as_current_span("create_order") as span:
        entry = render("Order created")

    context = span.get_span_context()
    assert entry["trace_id"] == format(context.trace_id, "032x")
    assert entry["span_id"] == format(context.span_id, "016x")
