"""Frame result types for compartment reports."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

import numpy as np

from simreport.domain.types import TIME_DTYPE, UNDEFINED_TIME, VALUE_DTYPE


@dataclass(frozen=True)
class Frame:
    """All values of one timestamp, addressable through Offsets/Counts.

    ``values`` is read-only; frames are never mutated once produced.
    """

    timestamp: float
    values: np.ndarray

    def __post_init__(self):
        if self.values.flags.writeable:
            self.values.setflags(write=False)

    def __len__(self) -> int:
        return int(self.values.size)

    @classmethod
    def from_values(cls, timestamp: float, values: Sequence[float] | np.ndarray) -> Frame:
        """Build a frame owning a float32 copy of ``values``."""
        return cls(float(timestamp), np.array(values, dtype=VALUE_DTYPE, copy=True))


@dataclass(frozen=True)
class Frames:
    """Ordered frames returned by a windowed compartment read.

    Attributes
    ----------
    frames : tuple[Frame, ...]
        Frames in ascending timestamp order
    start_time : float
        Nominal (inclusive) window start
    end_time : float
        Nominal (exclusive) window end
    complete : bool
        False when a timed-out read truncated the requested window
    """

    frames: tuple[Frame, ...] = ()
    start_time: float = UNDEFINED_TIME
    end_time: float = UNDEFINED_TIME
    complete: bool = True
    _timestamps: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        timestamps = np.fromiter(
            (f.timestamp for f in self.frames), dtype=TIME_DTYPE, count=len(self.frames)
        )
        timestamps.setflags(write=False)
        object.__setattr__(self, "_timestamps", timestamps)

    def __len__(self) -> int:
        return len(self.frames)

    def __iter__(self) -> Iterator[Frame]:
        return iter(self.frames)

    def __getitem__(self, index: int) -> Frame:
        return self.frames[index]

    @property
    def timestamps(self) -> np.ndarray:
        return self._timestamps

    def to_array(self) -> np.ndarray:
        """Stack all frames into a ``(n_frames, frame_size)`` array (copy)."""
        if not self.frames:
            return np.empty((0, 0), dtype=VALUE_DTYPE)
        return np.stack([f.values for f in self.frames])


__all__ = ["Frame", "Frames"]
