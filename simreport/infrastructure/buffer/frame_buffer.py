"""
Bounded producer/consumer queue for stream backends.

The buffer decouples a background producer (transport fetch + decode) from
the report's consumer calls. Suspension points:

- ``put`` blocks while the buffer is full and open
- ``get`` blocks while the buffer is empty and open

``close`` wakes every waiter. Consumers then receive whatever remains and
``None`` once empty; producers get ``False`` from ``put``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any

logger = logging.getLogger(__name__)


class FrameBuffer:
    """Thread-safe bounded FIFO of decoded slots.

    Parameters
    ----------
    capacity : int
        Maximum number of undelivered slots (minimum 1)
    name : str
        Name for logging
    """

    def __init__(self, capacity: int = 1, *, name: str = "FrameBuffer") -> None:
        self.name = name
        self._slots: deque[Any] = deque()
        self._capacity = max(1, int(capacity))
        self._closed = False
        self._error: BaseException | None = None
        self._cond = threading.Condition(threading.Lock())

        logger.debug("[%s] Initialized (capacity=%d)", self.name, self._capacity)

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #
    @property
    def capacity(self) -> int:
        return self._capacity

    @capacity.setter
    def capacity(self, value: int) -> None:
        with self._cond:
            self._capacity = max(1, int(value))
            # Growing may unblock a producer
            self._cond.notify_all()
        logger.debug("[%s] Capacity set to %d", self.name, self._capacity)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> BaseException | None:
        """Producer error that closed the buffer, if any."""
        return self._error

    def __len__(self) -> int:
        with self._cond:
            return len(self._slots)

    # ------------------------------------------------------------------ #
    # Producer side
    # ------------------------------------------------------------------ #
    def put(self, slot: Any, timeout: float | None = None) -> bool:
        """Append a slot, blocking while the buffer is full.

        Returns
        -------
        bool
            True if the slot was queued, False if the buffer closed or the
            timeout elapsed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._closed and len(self._slots) >= self._capacity:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            if self._closed:
                return False
            self._slots.append(slot)
            self._cond.notify_all()
            return True

    # ------------------------------------------------------------------ #
    # Consumer side
    # ------------------------------------------------------------------ #
    def get(self, timeout: float | None = None) -> Any | None:
        """Pop the oldest slot, blocking while empty and open.

        Returns
        -------
        Any | None
            The slot, or None on timeout or when closed and drained
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._slots and not self._closed:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(remaining)
            if not self._slots:
                return None
            slot = self._slots.popleft()
            self._cond.notify_all()
            return slot

    def drain(self) -> list[Any]:
        """Pop every queued slot without blocking."""
        with self._cond:
            slots = list(self._slots)
            self._slots.clear()
            if slots:
                self._cond.notify_all()
            return slots

    # ------------------------------------------------------------------ #
    # Shutdown / memory
    # ------------------------------------------------------------------ #
    def close(self, error: BaseException | None = None) -> None:
        """Mark end of stream and wake every blocked producer and consumer."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._error = error
            self._cond.notify_all()
        if error is not None:
            logger.warning("[%s] Closed with error: %s", self.name, error)
        else:
            logger.debug("[%s] Closed", self.name)

    def clear(self) -> int:
        """Discard undelivered slots. Returns the number dropped."""
        with self._cond:
            dropped = len(self._slots)
            self._slots.clear()
            self._cond.notify_all()
        if dropped:
            logger.debug("[%s] Cleared %d undelivered slots", self.name, dropped)
        return dropped

    def get_stats(self) -> dict[str, Any]:
        with self._cond:
            return {
                "queued": len(self._slots),
                "capacity": self._capacity,
                "closed": self._closed,
                "error": repr(self._error) if self._error else None,
            }


__all__ = ["FrameBuffer"]
