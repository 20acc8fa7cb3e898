"""
Structured logging and OpenTelemetry metrics.
"""

from .logging import get_logger, setup_logging
from .metrics import get_metrics_collector, setup_metrics, timer

__all__ = ["get_logger", "setup_logging", "get_metrics_collector", "setup_metrics", "timer"]
