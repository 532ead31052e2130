"""
Observability module - Logging, Metrics, and Tracing.
"""

from loyalty.observability.logging import get_logger, log_context, setup_logging
from loyalty.observability.metrics import metrics
from loyalty.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
