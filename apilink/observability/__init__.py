"""
apilink Observability — logging and optional tracing setup.
"""
from apilink.observability.logger_setup import setup_logging
from apilink.observability.tracing import annotate_span, request_span, setup_tracing

__all__ = [
    "setup_logging",
    "setup_tracing",
    "request_span",
    "annotate_span",
]
