"""Monitoring and observability setup.

Tracing and metrics are exported over OTLP when ``OTEL_ENABLED`` is set.
Otherwise the OpenTelemetry API falls back to its no-op providers, so the
instruments below can always be recorded.

Exemplars are attached automatically to histogram metrics recorded inside an
active trace context (OpenTelemetry Python SDK 1.28.0+), linking order amounts
and slow payment provider calls to the traces that produced them.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from storefront.config import (
    OTEL_ENABLED,
    OTEL_EXPORTER_OTLP_ENDPOINT,
    PYROSCOPE_SERVER,
    SERVICE_NAME
)

logger = logging.getLogger(__name__)


def init_tracing() -> None:
    """Install the global tracer provider exporting spans over OTLP."""
    resource = Resource.create({"service.name": SERVICE_NAME})

    tracer_provider = TracerProvider(resource=resource)
    otlp_span_exporter = OTLPSpanExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
    trace.set_tracer_provider(tracer_provider)

    logger.info(f"Tracing initialized with endpoint: {OTEL_EXPORTER_OTLP_ENDPOINT}")


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})

    otlp_metric_exporter = OTLPMetricExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    otlp_metric_reader = PeriodicExportingMetricReader(
        otlp_metric_exporter,
        export_interval_millis=5000
    )

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[otlp_metric_reader]
    )
    metrics.set_meter_provider(meter_provider)

    logger.info("Metrics initialized with OTLP exporter")

    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": "production"}
        )
        logger.info(f"Profiling initialized with server: {PYROSCOPE_SERVER}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


if OTEL_ENABLED:
    init_tracing()
    meter = init_metrics()
else:
    meter = metrics.get_meter(__name__)

# Order intake metrics
orders_created_counter = meter.create_counter(
    "storefront.orders.created",
    description="Total number of orders created, by customer type",
    unit="1"
)

order_rejections_counter = meter.create_counter(
    "storefront.orders.rejected",
    description="Total number of rejected order submissions, by reason",
    unit="1"
)

order_amount_histogram = meter.create_histogram(
    "storefront.orders.amount",
    description="Order item total",
    unit="GBP"
)

price_mismatch_counter = meter.create_counter(
    "storefront.orders.price_mismatch",
    description="Order lines whose submitted price differs from the catalog price",
    unit="1"
)

order_status_changes_counter = meter.create_counter(
    "storefront.orders.status_changes",
    description="Order status transitions made from the back office",
    unit="1"
)

# Payment provider metrics
payment_provider_duration_histogram = meter.create_histogram(
    "storefront.payment_provider.duration",
    description="Duration of payment provider calls",
    unit="s"
)

payment_captures_counter = meter.create_counter(
    "storefront.payments.captures",
    description="Payment capture outcomes",
    unit="1"
)

# Media host metrics
media_upload_duration_histogram = meter.create_histogram(
    "storefront.media.upload.duration",
    description="Duration of product image uploads",
    unit="s"
)

# Security monitoring metrics
auth_failures_counter = meter.create_counter(
    "storefront.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

rate_limit_exceeded_counter = meter.create_counter(
    "storefront.rate_limit.exceeded",
    description="Total number of rate limit violations",
    unit="1"
)
