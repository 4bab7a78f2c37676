"""
Configuration dataclasses for reports.

Settings apply per report; backend specific options travel as URI query
parameters and are validated against each plugin's config dataclass.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass


logger = logging.getLogger(__name__)


@dataclass
class ReportSettings:
    """Report runtime settings.

    Attributes
    ----------
    buffer_size : int
        Default frame buffer capacity of stream readers (minimum 1)
    poll_interval : float
        Seconds the stream producer waits on the transport per fetch
    open_timeout : float
        Seconds a stream reader waits for the header at open time
    frame_cache_mb : float
        Memory cap of the decoded-frame cache of file compartment reports
    decode_retries : int
        Extra attempts for a transient stream decode failure
    """

    buffer_size: int = 1
    poll_interval: float = 0.05  # Short enough to notice close() promptly
    open_timeout: float = 10.0
    frame_cache_mb: float = 256.0
    decode_retries: int = 1

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.buffer_size < 1:
            raise ValueError(f"buffer_size must be >= 1, got {self.buffer_size}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.open_timeout < 0:
            raise ValueError(f"open_timeout must be >= 0, got {self.open_timeout}")
        if self.frame_cache_mb < 0:
            raise ValueError(f"frame_cache_mb must be >= 0, got {self.frame_cache_mb}")
        if self.decode_retries < 0:
            raise ValueError(f"decode_retries must be >= 0, got {self.decode_retries}")

    def stream_defaults(self) -> dict[str, object]:
        """Defaults handed to stream backends unless the URI overrides them."""
        return {"buffer_size": self.buffer_size, "open_timeout": self.open_timeout}

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for easy serialization."""
        return asdict(self)


__all__ = ["ReportSettings"]
