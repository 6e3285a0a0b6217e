"""
Observability module - Logging, Metrics, and Tracing.
"""

from listing_engine.observability.logging import get_logger, log_context, setup_logging
from listing_engine.observability.metrics import metrics
from listing_engine.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
