"""
apilink OpenTelemetry Setup

Optional tracing for integration calls:
- One span per logical request (retries and replays included)
- Attributes for integration id, method, URL, status and attempts
"""
from __future__ import annotations
from contextlib import nullcontext
from typing import Any, ContextManager, Optional
import logging
import os

logger = logging.getLogger(__name__)

SERVICE_NAME_ENV = "APILINK_SERVICE_NAME"


def setup_tracing(
    service_name: Optional[str] = None,
    endpoint: Optional[str] = None,
    set_global: bool = True,
):
    """Build a tracer for integration calls, or None when the SDK is absent.

    ``service_name`` falls back to $APILINK_SERVICE_NAME, then "apilink".
    Spans are exported over OTLP only when an endpoint is given or
    $OTEL_EXPORTER_OTLP_ENDPOINT is set. With ``set_global=False`` the
    provider stays private to the returned tracer.
    """
    service_name = service_name or os.getenv(SERVICE_NAME_ENV, "apilink")
    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.info("opentelemetry-sdk not installed; integration tracing disabled")
        return None

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    otlp_endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
        logger.info("Exporting integration spans to %s", otlp_endpoint)

    if set_global:
        trace.set_tracer_provider(provider)
        return trace.get_tracer(service_name)
    return provider.get_tracer(service_name)


def request_span(tracer: Any, integration_id: str, method: str, url: str) -> ContextManager[Any]:
    """Span around one logical integration call. Yields None without a tracer."""
    if tracer is None:
        return nullcontext()
    return tracer.start_as_current_span(
        f"integration.{integration_id}",
        attributes={
            "integration.id": integration_id,
            "http.method": method,
            "http.url": url,
        },
    )


def annotate_span(span: Any, **attributes: Any) -> None:
    if span is None:
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)
