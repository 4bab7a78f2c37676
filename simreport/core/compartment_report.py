"""
Compartment reports.

Frame ``i`` of a report holds the values at ``start_time + i * timestep``.
A windowed read returns the frames whose timestamps fall in ``[start, end)``.

File reports decode frames on demand through a memory-capped FrameCache.
Stream reports store frames as they arrive (possibly out of time order) and
confirm the contiguous run of frame indices from the first one.

Writers assemble frames per cell: ``write_frame(gid, values, t)`` may be
called in any order, and a frame goes to the backend once every registered
cell contributed to it.
"""

from __future__ import annotations

import bisect
import logging
import math
from collections.abc import Sequence

import numpy as np

from simreport.core.report import Report
from simreport.domain.frames import Frame, Frames
from simreport.domain.interfaces import ReportKind
from simreport.domain.types import (
    COUNT_DTYPE,
    VALUE_DTYPE,
    EntitySet,
    ReportMetadata,
    TimeWindow,
    compute_offsets,
    is_undefined,
)
from simreport.infrastructure.cache import FrameCache
from simreport.shared.exceptions import InvalidModeError


logger = logging.getLogger(__name__)

# Relative tolerance when mapping timestamps onto the frame grid
_GRID_EPS = 1e-6


class _FrameStore:
    """Frames received from a stream, sorted by timestamp."""

    def __init__(self) -> None:
        self.frames: list[Frame] = []
        self.stamps: list[float] = []
        self.present: set[int] = set()
        self.contiguous = 0  # indices [0, contiguous) have all arrived
        self.last: float | None = None

    def add(self, index: int, frame: Frame) -> None:
        pos = bisect.bisect_left(self.stamps, frame.timestamp)
        if pos < len(self.stamps) and self.stamps[pos] == frame.timestamp:
            self.frames[pos] = frame
        else:
            self.stamps.insert(pos, frame.timestamp)
            self.frames.insert(pos, frame)
        self.present.add(index)
        while self.contiguous in self.present:
            self.contiguous += 1
        self.last = frame.timestamp if self.last is None else max(self.last, frame.timestamp)

    def find(self, timestamp: float) -> Frame | None:
        pos = bisect.bisect_left(self.stamps, timestamp)
        if pos < len(self.stamps) and self.stamps[pos] == timestamp:
            return self.frames[pos]
        return None

    def clear(self) -> None:
        # Arrival bookkeeping is kept: cleared frames stay confirmed
        self.frames = []
        self.stamps = []


class CompartmentReport(Report):
    """Report of per-compartment values sampled on a fixed time grid.

    Example
    -------
    >>> with CompartmentReport("voltages.h5") as report:
    ...     frames = report.read(0.0, 3.0)
    ...     offset = report.offsets[0][2]  # first value of cell 0, section 2
    >>> [f.timestamp for f in frames]
    [0.0, 1.0, 2.0]
    """

    kind = ReportKind.COMPARTMENTS

    def __init__(self, *args, **kwargs) -> None:
        self._store = _FrameStore()
        self._fixed_end: float | None = None
        # Write side
        self._header: ReportMetadata | None = None
        self._layouts: dict[int, np.ndarray] = {}
        self._mapped = False
        self._cell_slices: dict[int, tuple[int, int]] = {}
        self._write_frame_size = 0
        self._pending: dict[int, tuple[np.ndarray, set[int]]] = {}
        super().__init__(*args, **kwargs)
        self._cache = FrameCache(max_memory_mb=self._settings.frame_cache_mb)

    # ------------------------------------------------------------------ #
    # Layout accessors
    # ------------------------------------------------------------------ #
    @property
    def entities(self) -> EntitySet:
        if self._mode.is_write and not self._mapped:
            return EntitySet(self._layouts.keys())
        return self._backend.entities

    @property
    def offsets(self) -> list[np.ndarray]:
        """Per cell, per section index of the first value in a frame."""
        if self._mode.is_write and not self._mapped:
            return compute_offsets(self._ordered_counts())
        return self._backend.offsets

    @property
    def compartment_counts(self) -> list[np.ndarray]:
        """Per cell, per section number of compartments."""
        if self._mode.is_write and not self._mapped:
            return self._ordered_counts()
        return self._backend.counts

    @property
    def frame_size(self) -> int:
        return int(sum(int(np.sum(c, dtype=np.int64)) for c in self.compartment_counts))

    def num_compartments(self, index: int) -> int:
        """Number of values of the cell at position ``index`` of ``entities``."""
        return int(np.sum(self.compartment_counts[index], dtype=np.int64))

    @property
    def metadata(self) -> ReportMetadata:
        metadata = self._backend.metadata
        if self._stream is not None and self._fixed_end is not None:
            return metadata.with_updates(end_time=self._fixed_end)
        return metadata

    # ------------------------------------------------------------------ #
    # Frame grid
    # ------------------------------------------------------------------ #
    def _grid(self) -> tuple[float, float]:
        metadata = self._backend.metadata
        return metadata.start_time, metadata.timestep

    def _index_at_or_after(self, timestamp: float) -> int:
        t0, dt = self._grid()
        return math.ceil((timestamp - t0) / dt - _GRID_EPS)

    def _index_containing(self, timestamp: float) -> int:
        t0, dt = self._grid()
        return math.floor((timestamp - t0) / dt + _GRID_EPS)

    def _timestamp_of(self, index: int) -> float:
        t0, dt = self._grid()
        return t0 + index * dt

    def _file_frame_count(self) -> int:
        return min(self._backend.frame_count, self._backend.metadata.frame_count)

    # ------------------------------------------------------------------ #
    # File read
    # ------------------------------------------------------------------ #
    def _load(self, first: int, last: int) -> list[np.ndarray]:
        """Values of frames ``[first, last)``, decoding only cache misses."""
        values: list[np.ndarray | None] = [self._cache.get(i) for i in range(first, last)]
        i = 0
        while i < len(values):
            if values[i] is not None:
                i += 1
                continue
            j = i
            while j < len(values) and values[j] is None:
                j += 1
            block = self._backend.load_frames(first + i, j - i)
            for k in range(j - i):
                values[i + k] = self._cache.put(first + i + k, np.array(block[k], dtype=VALUE_DTYPE))
            i = j
        return values  # type: ignore[return-value]

    def _read_file(self, window: TimeWindow) -> Frames:
        n_frames = self._file_frame_count()
        t0, _ = self._grid()
        if n_frames == 0:
            lo = hi = 0
        else:
            lo = 0 if window.open_start else min(max(0, self._index_at_or_after(window.start)), n_frames)
            hi = n_frames if window.open_end else min(max(0, self._index_at_or_after(window.end)), n_frames)
            hi = max(lo, hi)

        values = self._load(lo, hi)
        frames = tuple(Frame(self._timestamp_of(lo + k), v) for k, v in enumerate(values))

        start = window.reported_start(t0 if n_frames else None)
        if not window.open_end:
            end = window.end
        elif n_frames:
            end = max(start, self._timestamp_of(n_frames))
        else:
            end = start
        return Frames(frames, start, end, True)

    def load_frame(self, timestamp: float, *, timeout: float | None = None) -> Frame | None:
        """Frame whose interval ``[t_i, t_i + timestep)`` contains ``timestamp``.

        Returns None outside the report's time range, or when a stream
        reader times out first.
        """
        self._require_read("load_frame")
        index = self._index_containing(timestamp)
        if index < 0:
            return None

        if self._stream is None:
            if index >= self._file_frame_count():
                return None
            return Frame(self._timestamp_of(index), self._load(index, index + 1)[0])

        end = self._backend.metadata.end_time
        if not is_undefined(end) and self._timestamp_of(index) >= end:
            return None
        stamp = self._timestamp_of(index)
        self._stream.wait_until(lambda: index in self._store.present, timeout)
        self._raise_stream_error()
        with self._stream.lock:
            frame = self._store.find(stamp)
            return frame if frame is not None else self._nearest(index)

    def _nearest(self, index: int) -> Frame | None:
        for frame in self._store.frames:
            if self._index_containing(frame.timestamp) == index:
                return frame
        return None

    # ------------------------------------------------------------------ #
    # Stream read
    # ------------------------------------------------------------------ #
    def _apply_slot(self, item: Frame) -> None:
        self._store.add(self._index_containing(item.timestamp), item)

    def _horizon(self) -> float:
        return self._timestamp_of(self._store.contiguous)

    def _stream_exhausted(self) -> bool:
        end = self._backend.metadata.end_time
        return not is_undefined(end) and self._horizon() >= end

    def _read_stream(self, window: TimeWindow, timeout: float | None) -> Frames:
        store = self._store
        reader = self._stream

        if window.open_start and window.open_end:
            reader.poll()
            satisfied = True
        elif window.open_end:
            satisfied = reader.wait_until(
                lambda: self._horizon() > window.start or self._stream_exhausted(), timeout
            )
        else:
            satisfied = reader.wait_until(
                lambda: self._horizon() >= window.end or self._stream_exhausted(), timeout
            )

        with reader.lock:
            frames = list(store.frames)
            stamps = list(store.stamps)
            finished = reader.finished
            contiguous = store.contiguous
            last = store.last

        t0, dt = self._grid()
        if finished:
            confirmed = len(frames)
            limit = last + dt if last is not None else None
        else:
            limit = self._timestamp_of(contiguous) if contiguous else None
            confirmed = bisect.bisect_left(stamps, limit) if limit is not None else 0

        lo = 0 if window.open_start else bisect.bisect_left(stamps, window.start, 0, confirmed)
        if window.open_end:
            hi = confirmed
        else:
            hi = min(confirmed, bisect.bisect_left(stamps, window.end))
        hi = max(lo, hi)

        start = window.reported_start(stamps[0] if stamps else (t0 if contiguous else None))
        complete = satisfied or reader.end_of_stream

        if not window.open_end and complete:
            end = window.end
        elif limit is not None:
            end = limit if window.open_end else min(limit, window.end)
            if not is_undefined(start):
                end = max(start, end)
        else:
            end = start

        return Frames(tuple(frames[lo:hi]), start, end, complete)

    def _fix_end_time(self) -> None:
        store = self._store
        if store.last is None:
            self._fixed_end = self._backend.metadata.end_time
            return
        _, dt = self._grid()
        fixed = store.last + dt
        end = self._backend.metadata.end_time
        self._fixed_end = fixed if is_undefined(end) else min(end, fixed)

    def _clear_decoded(self) -> None:
        self._cache.clear()
        if self._stream is not None:
            with self._stream.lock:
                self._store.clear()

    # ------------------------------------------------------------------ #
    # Write
    # ------------------------------------------------------------------ #
    def write_header(self, metadata: ReportMetadata) -> None:
        """Set start time, end time, timestep and units of the report.

        Raises
        ------
        InvalidModeError
            If the report is open for reading or frames were already written
        ValueError
            If the time grid is undefined
        """
        self._require_write("write_header")
        if self._mapped:
            raise InvalidModeError("Header cannot change after frames were written", "write_header", self._mode)
        if is_undefined(metadata.start_time) or metadata.timestep <= 0:
            raise ValueError("A compartment report needs a start time and a positive timestep")
        self._header = metadata
        self._backend.write_header(metadata)

    def register_entity(self, gid: int, counts: Sequence[int] | np.ndarray) -> None:
        """Declare a cell and its per-section compartment counts.

        Cells may be registered in any order; the layout follows ascending
        GIDs.
        """
        self._require_write("register_entity")
        if self._mapped:
            raise InvalidModeError(
                "Cells cannot be registered after frames were written", "register_entity", self._mode
            )
        counts = np.asarray(counts, dtype=np.int64)
        if counts.ndim != 1 or (counts.size and (counts.min() < 0 or counts.max() > np.iinfo(COUNT_DTYPE).max)):
            raise ValueError(f"Invalid compartment counts for gid {gid}: {counts}")
        self._layouts[int(gid)] = counts.astype(COUNT_DTYPE)

    def _ordered_counts(self) -> list[np.ndarray]:
        return [self._layouts[gid] for gid in sorted(self._layouts)]

    def write_mapping(self) -> None:
        """Fix the cell layout registered so far.

        Called implicitly by the first frame write. Stream writers call it
        to publish the header before any frame exists, so that readers can
        open. Does nothing once the layout is fixed.
        """
        self._require_write("write_mapping")
        self._commit_mapping()

    def _commit_mapping(self) -> None:
        if self._mapped:
            return
        if self._header is None:
            raise InvalidModeError("write_header must be called first", "write_mapping", self._mode)
        gids = EntitySet(self._layouts.keys())
        counts = self._ordered_counts()
        self._backend.write_mapping(gids, counts)

        position = 0
        for gid, cell_counts in zip(gids, counts):
            size = int(cell_counts.sum(dtype=np.int64))
            self._cell_slices[gid] = (position, position + size)
            position += size
        self._write_frame_size = position
        self._mapped = True
        logger.debug(
            "[%s] Mapping written: %d cells, frame_size=%d", self.plugin_name, len(gids), position
        )

    def write_frame(self, gid: int, values: Sequence[float] | np.ndarray, timestamp: float) -> None:
        """Write the values of one cell at ``timestamp``.

        Frames are keyed by index on the time grid, so cells and frames may
        arrive in any order.
        """
        self._require_write("write_frame")
        self._commit_mapping()

        gid = int(gid)
        if gid not in self._cell_slices:
            raise ValueError(f"GID {gid} was not registered")
        lo, hi = self._cell_slices[gid]
        values = np.asarray(values, dtype=VALUE_DTYPE).ravel()
        if values.size != hi - lo:
            raise ValueError(f"GID {gid} has {hi - lo} compartments, got {values.size} values")

        index = self._index_containing(timestamp + 0.5 * self._header.timestep)
        if index < 0:
            raise ValueError(f"Timestamp {timestamp} precedes the report start {self._header.start_time}")

        frame, written = self._pending.get(index, (None, None))
        if frame is None:
            frame = np.zeros(self._write_frame_size, dtype=VALUE_DTYPE)
            written = set()
            self._pending[index] = (frame, written)
        frame[lo:hi] = values
        written.add(gid)

        if len(written) == len(self._cell_slices):
            del self._pending[index]
            self._backend.write_frame(index, self._timestamp_of(index), frame)

    def write_frame_values(self, timestamp: float, values: Sequence[float] | np.ndarray) -> None:
        """Write a whole frame at once (values in ``offsets`` layout)."""
        self._require_write("write_frame")
        self._commit_mapping()
        values = np.asarray(values, dtype=VALUE_DTYPE).ravel()
        if values.size != self._write_frame_size:
            raise ValueError(f"Frame needs {self._write_frame_size} values, got {values.size}")
        index = self._index_containing(timestamp + 0.5 * self._header.timestep)
        if index < 0:
            raise ValueError(f"Timestamp {timestamp} precedes the report start {self._header.start_time}")
        self._pending.pop(index, None)
        self._backend.write_frame(index, self._timestamp_of(index), values)

    def _flush_pending(self) -> None:
        # Streams publish partial frames only at close
        if self.is_stream and not self._closed:
            return
        for index in sorted(self._pending):
            frame, written = self._pending[index]
            logger.warning(
                "[%s] Frame %d incomplete (%d/%d cells), missing values written as 0",
                self.plugin_name,
                index,
                len(written),
                len(self._cell_slices),
            )
            self._backend.write_frame(index, self._timestamp_of(index), frame)
        if self._closed:
            self._pending.clear()

    def _finalize(self) -> None:
        if self._header is not None:
            self._commit_mapping()
        self._flush_pending()


__all__ = ["CompartmentReport"]
