"""
OpenTelemetry Tracing Setup for the Anonymization Pipeline
"""

from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

# Global tracer instance
tracer: Optional[trace.Tracer] = None


def init_tracing(
    service_name: str = "customer-anonymizer",
    enable_console_export: bool = False,
) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing

    Args:
        service_name: Name of the service for trace identification
        enable_console_export: Whether to export traces to console (dev mode)

    Returns:
        Configured Tracer instance
    """
    global tracer

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    tracer = trace.get_tracer(__name__)

    return tracer


def get_tracer() -> trace.Tracer:
    """
    Get the global tracer instance

    Raises:
        RuntimeError: If tracing has not been initialized
    """
    if tracer is None:
        raise RuntimeError("Tracing not initialized. Call init_tracing() first.")
    return tracer


def trace_change_event(
    event_id: str,
    operation: str,
    collection: str,
) -> trace.Span:
    """
    Create a span for processing one change event

    The caller ends the span.

    Args:
        event_id: Change event identifier
        operation: Operation type
        collection: Destination collection name

    Returns:
        Started span, or a non-recording span if tracing is not initialized
    """
    if tracer is None:
        return trace.INVALID_SPAN

    return tracer.start_span(
        "anonymize_event",
        attributes={
            "event.id": event_id,
            "event.operation": operation,
            "destination": collection,
        },
    )
