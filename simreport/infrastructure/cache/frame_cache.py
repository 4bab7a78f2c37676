"""
Memory-capped cache of decoded compartment frames.

Random-access backends decode frames on demand; repeated reads over
already-fetched ranges are served from here. Cached arrays are read-only and
are retired whole, so frames handed out to callers stay valid after eviction
or ``clear()``.
"""

from __future__ import annotations

import logging
import threading

import numpy as np

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


class FrameCache:
    """
    Frame-index keyed cache with a byte budget.

    When the budget is exceeded, frames the reader has already moved past
    (behind the cursor for forward reads, ahead of it for backward reads)
    go first, then whichever frame is furthest from the cursor.
    """

    def __init__(self, *, max_memory_mb: float = 256):
        self.max_memory_bytes = int(max_memory_mb * _MB)

        self._frames: dict[int, np.ndarray] = {}
        self._bytes = 0
        self._cursor: int | None = None
        self._direction = 1  # -1 when reading backwards
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

        logger.debug("[FrameCache] Budget %.0f MB", max_memory_mb)

    def has_cache(self, frame_idx: int) -> bool:
        with self._lock:
            return frame_idx in self._frames

    def get(self, frame_idx: int) -> np.ndarray | None:
        """Cached frame ``frame_idx``, or None on a miss."""
        with self._lock:
            self._cursor = frame_idx
            values = self._frames.get(frame_idx)
            if values is None:
                self._misses += 1
            else:
                self._hits += 1
            return values

    def put(self, frame_idx: int, values: np.ndarray) -> np.ndarray:
        """Cache ``values`` (made read-only in place) and return them."""
        values.setflags(write=False)
        with self._lock:
            if self._cursor is not None and frame_idx != self._cursor:
                self._direction = 1 if frame_idx > self._cursor else -1
            self._cursor = frame_idx
            self._store(frame_idx, values)
        return values

    def _store(self, frame_idx: int, values: np.ndarray) -> None:
        size = int(values.nbytes)
        if size > self.max_memory_bytes:
            return

        replaced = self._frames.pop(frame_idx, None)
        if replaced is not None:
            self._bytes -= int(replaced.nbytes)

        while self._frames and self._bytes + size > self.max_memory_bytes:
            victim = self._pick_victim()
            self._bytes -= int(self._frames.pop(victim).nbytes)
            logger.debug("[FrameCache] Dropped frame %d", victim)

        self._frames[frame_idx] = values
        self._bytes += size

    def _pick_victim(self) -> int:
        cursor = self._cursor
        if cursor is None:
            return min(self._frames)
        if self._direction > 0:
            passed = [i for i in self._frames if i < cursor]
            if passed:
                return min(passed)
        else:
            passed = [i for i in self._frames if i > cursor]
            if passed:
                return max(passed)
        return max(self._frames, key=lambda i: abs(i - cursor))

    def resize(self, max_memory_bytes: int) -> None:
        """Change the byte budget, evicting frames until it holds."""
        with self._lock:
            self.max_memory_bytes = int(max_memory_bytes)
            while self._frames and self._bytes > self.max_memory_bytes:
                victim = self._pick_victim()
                self._bytes -= int(self._frames.pop(victim).nbytes)
        logger.debug("[FrameCache] Budget now %d bytes", self.max_memory_bytes)

    def clear(self) -> None:
        with self._lock:
            count = len(self._frames)
            self._frames.clear()
            self._bytes = 0
            self._cursor = None
        logger.debug("[FrameCache] Cleared %d frames", count)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "memory_frames": len(self._frames),
                "memory_usage_mb": self._bytes / _MB,
                "memory_limit_mb": self.max_memory_bytes / _MB,
                "hits": self._hits,
                "misses": self._misses,
                "read_direction": "forward" if self._direction > 0 else "backward",
            }


__all__ = ["FrameCache"]
