"""Infrastructure I/O helpers (URI handling)."""

from .uri import ReportURI


__all__ = ["ReportURI"]
