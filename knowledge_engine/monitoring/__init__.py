"""Logging and metrics."""

from .logging import configure_logging
from .metrics import Metrics, get_metrics

__all__ = [
    "configure_logging",
    "Metrics",
    "get_metrics",
]
