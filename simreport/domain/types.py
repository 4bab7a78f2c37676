"""Core value types shared by every report and backend.

This module defines:
- UNDEFINED_TIME: sentinel for unknown / unbounded timestamps
- AccessMode: how a report is opened
- TimeWindow: half-open ``[start, end)`` time range
- ReportMetadata: header information of a report
- EntitySet: ordered set of cell GIDs
- Compartment layout helpers (SectionOffsets / CompartmentCounts)
"""

from __future__ import annotations

import sys
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import asdict, dataclass, replace
from enum import Enum, auto

import numpy as np


UNDEFINED_TIME: float = sys.float_info.max

# Offset of a section that has no compartments
NO_COMPARTMENTS: int = int(np.iinfo(np.uint64).max)

GID_DTYPE = np.uint32
TIME_DTYPE = np.float64
VALUE_DTYPE = np.float32
COUNT_DTYPE = np.uint16
OFFSET_DTYPE = np.uint64


def is_undefined(timestamp: float) -> bool:
    """Whether a timestamp is the UNDEFINED_TIME sentinel."""
    return timestamp >= UNDEFINED_TIME


class AccessMode(Enum):
    """Report access modes."""

    READ = auto()  # Source must exist and be decodable
    WRITE = auto()  # Create new; fails if destination exists and is non-empty
    OVERWRITE = auto()  # Replace existing destination

    @property
    def is_write(self) -> bool:
        return self is not AccessMode.READ

    @classmethod
    def parse(cls, value: AccessMode | str) -> AccessMode:
        """Accept an AccessMode or its (case-insensitive) name."""
        if isinstance(value, AccessMode):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ValueError(f"Unknown access mode: {value!r}") from None


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time range ``[start, end)`` in milliseconds.

    Either bound may be UNDEFINED_TIME, meaning unbounded (start) or
    "everything available" (end).
    """

    start: float = UNDEFINED_TIME
    end: float = UNDEFINED_TIME

    def __post_init__(self):
        if (
            not is_undefined(self.start)
            and not is_undefined(self.end)
            and self.end < self.start
        ):
            raise ValueError(f"Invalid time window: end {self.end} < start {self.start}")

    @property
    def open_start(self) -> bool:
        return is_undefined(self.start)

    @property
    def open_end(self) -> bool:
        return is_undefined(self.end)

    def contains(self, timestamp: float) -> bool:
        """Check whether ``timestamp`` lies in the window."""
        if not self.open_start and timestamp < self.start:
            return False
        if not self.open_end and timestamp >= self.end:
            return False
        return True

    def reported_start(self, first: float | None) -> float:
        """Start bound of a read result over this window.

        An open start reports ``first`` (the earliest available timestamp,
        None when nothing is available), clamped to a bounded end so the
        result window never inverts.
        """
        if not self.open_start:
            return self.start
        if first is None:
            return UNDEFINED_TIME
        return first if self.open_end else min(first, self.end)


@dataclass(frozen=True)
class ReportMetadata:
    """Report header.

    Attributes
    ----------
    start_time : float
        First timestamp of the report (UNDEFINED_TIME if unknown)
    end_time : float
        End of the report's time range (UNDEFINED_TIME if unknown)
    timestep : float
        Sampling interval (0 for spike reports / unknown)
    data_unit : str
        Unit of the reported values (e.g. 'mV')
    time_unit : str
        Unit of timestamps (e.g. 'ms')
    frame_size : int
        Number of values per frame (0 for spike reports)
    """

    start_time: float = UNDEFINED_TIME
    end_time: float = UNDEFINED_TIME
    timestep: float = 0.0
    data_unit: str = ""
    time_unit: str = "ms"
    frame_size: int = 0

    @property
    def frame_count(self) -> int:
        """Number of frames in ``[start_time, end_time)`` (0 when undefined)."""
        if (
            self.timestep <= 0
            or is_undefined(self.start_time)
            or is_undefined(self.end_time)
        ):
            return 0
        return max(0, int(round((self.end_time - self.start_time) / self.timestep)))

    def with_updates(self, **changes: object) -> ReportMetadata:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for easy serialization."""
        return asdict(self)


class EntitySet(Sequence[int]):
    """Immutable, ascending, duplicate-free set of cell GIDs.

    Defines both read filtering and output iteration order.

    Example
    -------
    >>> gids = EntitySet([5, 1, 3, 3])
    >>> list(gids)
    [1, 3, 5]
    >>> gids.intersection([3, 4, 5])
    EntitySet([3, 5])
    """

    __slots__ = ("_gids",)

    def __init__(self, gids: Iterable[int] | np.ndarray = ()):
        array = np.unique(np.asarray(list(gids) if not isinstance(gids, np.ndarray) else gids))
        if array.size and array.min() < 0:
            raise ValueError("GIDs must be non-negative")
        self._gids = array.astype(GID_DTYPE)
        self._gids.setflags(write=False)

    def __len__(self) -> int:
        return int(self._gids.size)

    def __iter__(self) -> Iterator[int]:
        return (int(gid) for gid in self._gids)

    def __getitem__(self, index):  # type: ignore[override]
        if isinstance(index, slice):
            return EntitySet(self._gids[index])
        return int(self._gids[index])

    def __contains__(self, gid: object) -> bool:
        try:
            value = int(gid)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False
        pos = int(np.searchsorted(self._gids, value))
        return pos < self._gids.size and int(self._gids[pos]) == value

    def __eq__(self, other: object) -> bool:
        if isinstance(other, EntitySet):
            return np.array_equal(self._gids, other._gids)
        if isinstance(other, (set, frozenset, list, tuple)):
            return self == EntitySet(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._gids.tobytes())

    def __repr__(self) -> str:
        if len(self) > 10:
            head = ", ".join(str(g) for g in self._gids[:10])
            return f"EntitySet([{head}, ...] n={len(self)})"
        return f"EntitySet([{', '.join(str(g) for g in self._gids)}])"

    def index(self, gid: int, start: int = 0, stop: int | None = None) -> int:  # type: ignore[override]
        """Position of ``gid`` in iteration order."""
        pos = int(np.searchsorted(self._gids, int(gid)))
        if pos >= self._gids.size or int(self._gids[pos]) != int(gid):
            raise ValueError(f"GID {gid} not in EntitySet")
        return pos

    def intersection(self, other: Iterable[int]) -> EntitySet:
        """Return the GIDs present in both sets."""
        other_array = other.as_array() if isinstance(other, EntitySet) else np.asarray(list(other))
        return EntitySet(np.intersect1d(self._gids, other_array.astype(np.int64)))

    def union(self, other: Iterable[int]) -> EntitySet:
        other_array = other.as_array() if isinstance(other, EntitySet) else np.asarray(list(other))
        return EntitySet(np.union1d(self._gids, other_array.astype(np.int64)))

    def as_array(self) -> np.ndarray:
        """Read-only uint32 array view of the GIDs."""
        return self._gids


def compute_offsets(counts: Sequence[Sequence[int]]) -> list[np.ndarray]:
    """Compute SectionOffsets for per-cell, per-section compartment counts.

    Offsets are assigned in cell order, then section order. Sections with
    zero compartments get the NO_COMPARTMENTS sentinel.

    Parameters
    ----------
    counts : Sequence[Sequence[int]]
        CompartmentCounts in EntitySet order

    Returns
    -------
    list[np.ndarray]
        One uint64 array of section offsets per cell
    """
    offsets: list[np.ndarray] = []
    position = 0
    for cell_counts in counts:
        cell_counts = np.asarray(cell_counts, dtype=np.int64)
        cell_offsets = np.full(cell_counts.size, NO_COMPARTMENTS, dtype=OFFSET_DTYPE)
        for section, count in enumerate(cell_counts):
            if count > 0:
                cell_offsets[section] = position
                position += int(count)
        cell_offsets.setflags(write=False)
        offsets.append(cell_offsets)
    return offsets


def frame_size_of(counts: Sequence[Sequence[int]]) -> int:
    """Total number of values in one frame (sum of all counts)."""
    return int(sum(int(np.sum(np.asarray(c, dtype=np.int64))) for c in counts))


__all__ = [
    "AccessMode",
    "COUNT_DTYPE",
    "EntitySet",
    "GID_DTYPE",
    "NO_COMPARTMENTS",
    "OFFSET_DTYPE",
    "ReportMetadata",
    "TIME_DTYPE",
    "TimeWindow",
    "UNDEFINED_TIME",
    "VALUE_DTYPE",
    "compute_offsets",
    "frame_size_of",
    "is_undefined",
]
