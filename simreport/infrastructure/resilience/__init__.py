"""Resilience patterns for robust backend operation."""

from simreport.infrastructure.resilience.retry import Backoff, retry


__all__ = [
    "Backoff",
    "retry",
]
