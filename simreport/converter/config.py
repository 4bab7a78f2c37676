"""Configuration of the compartment report converter."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass


logger = logging.getLogger(__name__)


@dataclass
class ConverterConfig:
    """Conversion run parameters.

    Attributes
    ----------
    input : str
        Source report URI
    output : str
        Destination report URI (overwritten)
    max_frames : int | None
        Convert at most this many frames (None = all)
    workers : int
        Worker processes; 0 or 1 converts inline
    compare : bool
        Re-open both reports afterwards and compare them
    dump : bool
        Only print information about the source report
    """

    input: str
    output: str = "out.h5"
    max_frames: int | None = None
    workers: int = 1
    compare: bool = False
    dump: bool = False

    def __post_init__(self):
        """Validate settings after initialization."""
        self.input = str(self.input)
        self.output = str(self.output)
        if not self.input:
            raise ValueError("Missing input URI")
        if self.max_frames is not None and self.max_frames < 0:
            raise ValueError(f"max_frames must be >= 0, got {self.max_frames}")
        if self.workers < 0:
            raise ValueError(f"workers must be >= 0, got {self.workers}")
        if not self.dump and self.input == self.output:
            raise ValueError("Input and output must differ")

    @property
    def parallel(self) -> bool:
        return self.workers > 1

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for easy serialization."""
        return asdict(self)


__all__ = ["ConverterConfig"]
