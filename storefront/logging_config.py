"""Structured logging configuration."""
import logging
import sys
from pythonjsonlogger import jsonlogger
from opentelemetry import trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource

from storefront.config import OTEL_ENABLED, OTEL_EXPORTER_OTLP_ENDPOINT, SERVICE_NAME

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


class StorefrontJsonFormatter(jsonlogger.JsonFormatter):
    """JSON records tagged with the service name and the active span."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            log_record['trace_id'] = format(span_context.trace_id, '032x')
            log_record['span_id'] = format(span_context.span_id, '016x')
            log_record['trace_flags'] = span_context.trace_flags

        log_record['service'] = SERVICE_NAME
        if 'message' in log_record:
            log_record['msg'] = log_record.pop('message')


def _add_otlp_handler(root_logger: logging.Logger) -> None:
    """Forward records to the collector alongside stdout."""
    try:
        provider = LoggerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
        provider.add_log_record_processor(
            BatchLogRecordProcessor(OTLPLogExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True))
        )
        set_logger_provider(provider)
        root_logger.addHandler(LoggingHandler(level=logging.INFO, logger_provider=provider))
        logging.info("OTLP log export enabled", extra={"endpoint": OTEL_EXPORTER_OTLP_ENDPOINT})
    except Exception as e:
        logging.warning(f"OTLP log export unavailable, logging to stdout only: {e}")


def setup_logging(level: int = logging.INFO):
    """Configure structured logging for the application."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StorefrontJsonFormatter(
        '%(levelname)s %(name)s %(message)s',
        rename_fields={'levelname': 'level'}
    ))
    root_logger.addHandler(console_handler)

    if OTEL_ENABLED:
        _add_otlp_handler(root_logger)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
