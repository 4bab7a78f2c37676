"""Immutable, shareable spike containers.

A ``Spikes`` object is a sorted view over a slice of spike events produced by
a report read. Storage is a pair of read-only numpy arrays shared between
every container cut from the same source, so copies and sub-windows are
cheap and never invalidate each other.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import NamedTuple

import numpy as np

from simreport.domain.types import GID_DTYPE, TIME_DTYPE, UNDEFINED_TIME


class Spike(NamedTuple):
    """A single spike event."""

    time: float
    gid: int


def _readonly(array: np.ndarray) -> np.ndarray:
    if array.flags.writeable:
        array.setflags(write=False)
    return array


def end_after(timestamp: float) -> float:
    """Smallest representable time strictly greater than ``timestamp``."""
    return float(np.nextafter(timestamp, np.inf))


class Spikes:
    """Sorted, immutable sequence of ``(time, gid)`` spike events.

    ``start_time``/``end_time`` report the nominal half-open window the
    container was read for, not merely its first and last element:
    ``start_time <= min(time)`` and ``end_time > max(time)`` whenever the
    container is non-empty. Both are UNDEFINED_TIME for an empty, unanchored
    container.

    Instances are only built by report reads. Copying (``copy.copy``,
    slicing) shares the backing arrays.

    Example
    -------
    >>> spikes = report.read(2.0, 5.0)
    >>> spikes.start_time, spikes.end_time
    (2.0, 5.0)
    >>> spikes[-1]
    Spike(time=4.9, gid=12)
    """

    __slots__ = ("_times", "_gids", "_lo", "_hi", "_start", "_end", "_complete")

    def __init__(
        self,
        times: np.ndarray,
        gids: np.ndarray,
        start_time: float = UNDEFINED_TIME,
        end_time: float = UNDEFINED_TIME,
        *,
        lo: int = 0,
        hi: int | None = None,
        complete: bool = True,
    ) -> None:
        if times.shape != gids.shape:
            raise ValueError(
                f"times and gids must have the same shape ({times.shape} != {gids.shape})"
            )
        self._times = _readonly(times)
        self._gids = _readonly(gids)
        self._lo = lo
        self._hi = times.size if hi is None else hi
        self._start = float(start_time)
        self._end = float(end_time)
        self._complete = complete

    @classmethod
    def empty(
        cls,
        start_time: float = UNDEFINED_TIME,
        end_time: float = UNDEFINED_TIME,
        *,
        complete: bool = True,
    ) -> Spikes:
        """Create an empty container anchored at the given window."""
        return cls(
            np.empty(0, dtype=TIME_DTYPE),
            np.empty(0, dtype=GID_DTYPE),
            start_time,
            end_time,
            complete=complete,
        )

    @classmethod
    def from_arrays(
        cls,
        times: np.ndarray,
        gids: np.ndarray,
        start_time: float | None = None,
        end_time: float | None = None,
        *,
        complete: bool = True,
    ) -> Spikes:
        """Build a container owning freshly sorted copies of the arrays.

        Missing bounds are derived from the data (UNDEFINED_TIME when empty).
        """
        times = np.asarray(times, dtype=TIME_DTYPE)
        gids = np.asarray(gids, dtype=GID_DTYPE)
        order = np.argsort(times, kind="stable")
        times = times[order]
        gids = gids[order]
        if start_time is None:
            start_time = float(times[0]) if times.size else UNDEFINED_TIME
        if end_time is None:
            end_time = end_after(float(times[-1])) if times.size else UNDEFINED_TIME
        return cls(times, gids, start_time, end_time, complete=complete)

    # --- Window accessors ---

    @property
    def start_time(self) -> float:
        """Nominal (inclusive) start of the window."""
        return self._start

    @property
    def end_time(self) -> float:
        """Nominal (exclusive) end of the window."""
        return self._end

    def get_start_time(self) -> float:
        return self._start

    def get_end_time(self) -> float:
        return self._end

    @property
    def complete(self) -> bool:
        """False when a timed-out read truncated the requested window."""
        return self._complete

    # --- Sequence protocol ---

    def __len__(self) -> int:
        return self._hi - self._lo

    @property
    def size(self) -> int:
        return len(self)

    def __bool__(self) -> bool:
        return len(self) > 0

    def __getitem__(self, index):
        if isinstance(index, slice):
            lo, hi, step = index.indices(len(self))
            if step != 1:
                raise ValueError("Spikes slices must be contiguous")
            hi = max(lo, hi)
            first, last = self._lo + lo, self._lo + hi
            # Sub-windows are cut at the neighbouring spike times, unless the
            # cut would split spikes sharing one timestamp
            start, end = self._start, self._end
            if 0 < lo < len(self) and self._times[first] > self._times[first - 1]:
                start = float(self._times[first])
            if hi < len(self) and (hi == 0 or self._times[last] > self._times[last - 1]):
                end = float(self._times[last])
            return Spikes(
                self._times,
                self._gids,
                start,
                end,
                lo=first,
                hi=last,
                complete=self._complete,
            )

        position = int(index)
        if position < 0:
            position += len(self)
        if not 0 <= position < len(self):
            raise IndexError(f"Spike index {index} out of range (size: {len(self)})")
        i = self._lo + position
        return Spike(float(self._times[i]), int(self._gids[i]))

    def __iter__(self) -> Iterator[Spike]:
        for i in range(self._lo, self._hi):
            yield Spike(float(self._times[i]), int(self._gids[i]))

    def __copy__(self) -> Spikes:
        return Spikes(
            self._times,
            self._gids,
            self._start,
            self._end,
            lo=self._lo,
            hi=self._hi,
            complete=self._complete,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Spikes):
            return NotImplemented
        return (
            self._start == other._start
            and self._end == other._end
            and np.array_equal(self.times, other.times)
            and np.array_equal(self.gids, other.gids)
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"Spikes(size={len(self)}, start={self._start}, end={self._end}, "
            f"complete={self._complete})"
        )

    # --- Array views ---

    @property
    def times(self) -> np.ndarray:
        """Read-only view of the spike times."""
        return self._times[self._lo:self._hi]

    @property
    def gids(self) -> np.ndarray:
        """Read-only view of the spike GIDs."""
        return self._gids[self._lo:self._hi]

    def shares_storage(self, other: Spikes) -> bool:
        """Whether both containers view the same backing arrays."""
        return self._times is other._times


__all__ = ["Spike", "Spikes", "end_after"]
