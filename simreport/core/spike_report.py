"""
Spike reports.

File reports decode all spikes once and serve every window as a view over
the shared, read-only arrays. Stream reports accumulate batches and only
hand out timestamps confirmed by a later arrival (or by the end of the
stream), so no read ever splits the spikes of one timestamp.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

import numpy as np

from simreport.core.report import Report
from simreport.domain.interfaces import ReportKind, SpikeBatch
from simreport.domain.spikes import Spikes, end_after
from simreport.domain.types import (
    GID_DTYPE,
    TIME_DTYPE,
    UNDEFINED_TIME,
    ReportMetadata,
    TimeWindow,
    is_undefined,
)
from simreport.shared.exceptions import OutOfOrderError


logger = logging.getLogger(__name__)


class _SpikeStore:
    """Arrivals of a spike stream, in time order."""

    def __init__(self) -> None:
        self.chunks_t: list[np.ndarray] = []
        self.chunks_g: list[np.ndarray] = []
        self.times = np.empty(0, dtype=TIME_DTYPE)
        self.gids = np.empty(0, dtype=GID_DTYPE)
        self.first: float | None = None  # earliest time ever seen
        self.last: float | None = None  # latest spike time ever seen
        self.horizon: float | None = None  # highest timestamp the producer reached
        self._dirty = False

    def append(self, batch: SpikeBatch) -> None:
        if len(batch):
            self.chunks_t.append(batch.times)
            self.chunks_g.append(batch.gids)
            self._dirty = True
            if self.first is None:
                self.first = float(batch.times[0])
            self.last = float(batch.times[-1])
        if batch.last_time is not None:
            self.horizon = (
                batch.last_time if self.horizon is None else max(self.horizon, batch.last_time)
            )

    def arrays(self) -> tuple[np.ndarray, np.ndarray]:
        """Concatenated read-only arrays (rebuilt after new arrivals)."""
        if self._dirty:
            self.times = np.concatenate(self.chunks_t) if self.chunks_t else self.times[:0]
            self.gids = np.concatenate(self.chunks_g) if self.chunks_g else self.gids[:0]
            self.times.setflags(write=False)
            self.gids.setflags(write=False)
            # Keep one chunk so later appends concatenate once
            self.chunks_t = [self.times]
            self.chunks_g = [self.gids]
            self._dirty = False
        return self.times, self.gids

    def clear(self) -> None:
        self.chunks_t, self.chunks_g = [], []
        self.times = np.empty(0, dtype=TIME_DTYPE)
        self.gids = np.empty(0, dtype=GID_DTYPE)
        self._dirty = False


class SpikeReport(Report):
    """Report of ``(time, gid)`` spike events.

    Example
    -------
    >>> with SpikeReport("out.h5", "write") as report:
    ...     report.write([(0.5, 1), (1.5, 2)])
    >>> with SpikeReport("out.h5") as report:
    ...     spikes = report.read(0.0, 1.0)
    >>> list(spikes)
    [Spike(time=0.5, gid=1)]
    """

    kind = ReportKind.SPIKES

    def __init__(self, *args, **kwargs) -> None:
        self._store = _SpikeStore()
        self._cache_lock = threading.Lock()
        self._loaded: tuple[np.ndarray, np.ndarray] | None = None
        self._last_written: float | None = None
        self._fixed_end: float | None = None
        super().__init__(*args, **kwargs)

    # ------------------------------------------------------------------ #
    # Metadata
    # ------------------------------------------------------------------ #
    @property
    def metadata(self) -> ReportMetadata:
        metadata = self._backend.metadata
        if self._stream is None:
            return metadata
        with self._stream.lock:
            start = self._store.first if self._store.first is not None else UNDEFINED_TIME
            end = self._fixed_end if self._fixed_end is not None else UNDEFINED_TIME
        return metadata.with_updates(start_time=start, end_time=end)

    def _fix_end_time(self) -> None:
        last = self._store.horizon if self._store.horizon is not None else self._store.last
        self._fixed_end = end_after(last) if last is not None else UNDEFINED_TIME

    # ------------------------------------------------------------------ #
    # File read
    # ------------------------------------------------------------------ #
    def _arrays(self) -> tuple[np.ndarray, np.ndarray]:
        with self._cache_lock:
            if self._loaded is None:
                times, gids = self._backend.load_spikes()
                times = np.ascontiguousarray(times, dtype=TIME_DTYPE)
                gids = np.ascontiguousarray(gids, dtype=GID_DTYPE)
                times.setflags(write=False)
                gids.setflags(write=False)
                self._loaded = (times, gids)
                logger.debug("[%s] Decoded %d spikes", self.plugin_name, times.size)
            return self._loaded

    def _read_file(self, window: TimeWindow) -> Spikes:
        times, gids = self._arrays()
        lo = 0 if window.open_start else int(np.searchsorted(times, window.start, side="left"))
        hi = times.size if window.open_end else int(np.searchsorted(times, window.end, side="left"))
        hi = max(lo, hi)

        start = window.reported_start(float(times[0]) if times.size else None)

        if not window.open_end:
            end = window.end
        elif times.size and (window.open_start or float(times[-1]) >= window.start):
            end = end_after(float(times[-1]))
        else:
            end = start

        return Spikes(times, gids, start, end, lo=lo, hi=hi)

    # ------------------------------------------------------------------ #
    # Stream read
    # ------------------------------------------------------------------ #
    def _apply_slot(self, item: SpikeBatch) -> None:
        self._store.append(item)

    def _read_stream(self, window: TimeWindow, timeout: float | None) -> Spikes:
        store = self._store
        reader = self._stream

        if window.open_start and window.open_end:
            reader.poll()
            satisfied = True
        elif window.open_end:
            satisfied = reader.wait_until(
                lambda: store.horizon is not None and store.horizon > window.start, timeout
            )
        else:
            satisfied = reader.wait_until(
                lambda: store.horizon is not None and store.horizon >= window.end, timeout
            )

        with reader.lock:
            times, gids = store.arrays()
            finished = reader.finished
            horizon = store.horizon
            first = store.first
            last = store.last

        # Spikes at the horizon may still have siblings in flight
        if finished:
            confirmed = times.size
            limit = end_after(last) if last is not None else None
        elif horizon is not None:
            confirmed = int(np.searchsorted(times, horizon, side="left"))
            limit = horizon
        else:
            confirmed = 0
            limit = None

        lo = 0 if window.open_start else int(np.searchsorted(times[:confirmed], window.start))
        if window.open_end:
            hi = confirmed
        else:
            hi = min(confirmed, int(np.searchsorted(times, window.end, side="left")))
        hi = max(lo, hi)

        start = window.reported_start(first)
        complete = satisfied or reader.end_of_stream

        if not window.open_end and complete:
            end = window.end
        elif limit is not None:
            # Truncated at the confirmation point, never before the start
            end = limit if window.open_end else min(limit, window.end)
            if not is_undefined(start):
                end = max(start, end)
        else:
            end = start

        return Spikes(times, gids, start, end, lo=lo, hi=hi, complete=complete)

    def _clear_decoded(self) -> None:
        with self._cache_lock:
            self._loaded = None
        if self._stream is not None:
            with self._stream.lock:
                self._store.clear()

    # ------------------------------------------------------------------ #
    # Write
    # ------------------------------------------------------------------ #
    def write(self, spikes: Iterable[tuple[float, int]] | Spikes) -> None:
        """Append spikes.

        The batch must be sorted by time and start strictly after the last
        spike already written.

        Raises
        ------
        InvalidModeError
            If the report is open for reading
        OutOfOrderError
            If the monotonicity rule is violated
        """
        self._require_write("write")
        if isinstance(spikes, Spikes):
            times = np.array(spikes.times, dtype=TIME_DTYPE)
            gids = np.array(spikes.gids, dtype=GID_DTYPE)
        else:
            pairs = list(spikes)
            times = np.array([float(t) for t, _ in pairs], dtype=TIME_DTYPE)
            raw_gids = np.array([int(g) for _, g in pairs], dtype=np.int64)
            if raw_gids.size and raw_gids.min() < 0:
                raise ValueError("GIDs must be non-negative")
            gids = raw_gids.astype(GID_DTYPE)
        if times.size == 0:
            return

        steps = np.diff(times)
        if np.any(steps < 0):
            bad = int(np.argmax(steps < 0)) + 1
            raise OutOfOrderError(
                "Spike batch is not sorted by time",
                timestamp=float(times[bad]),
                last_timestamp=float(times[bad - 1]),
            )
        if self._last_written is not None and times[0] <= self._last_written:
            raise OutOfOrderError(
                "Spike timestamps must increase",
                timestamp=float(times[0]),
                last_timestamp=self._last_written,
            )

        self._backend.write_spikes(times, gids)
        self._last_written = float(times[-1])

    def write_spike(self, time: float, gid: int) -> None:
        """Append a single spike."""
        self.write([(time, gid)])


__all__ = ["SpikeReport"]
