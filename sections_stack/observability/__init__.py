"""
Observability module - Logging, Metrics, and Tracing.
"""

from sections_stack.observability.logging import get_logger, log_context, setup_logging
from sections_stack.observability.metrics import metrics
from sections_stack.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
