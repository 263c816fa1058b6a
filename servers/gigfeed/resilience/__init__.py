"""Resilience helpers for the collection pipeline."""

from .health import HealthMonitor
from .retry import backoff_delay, retry_with_backoff

__all__ = [
    "retry_with_backoff",
    "backoff_delay",
    "HealthMonitor",
]
