"""
Background consumption of stream backends.

A ``StreamReader`` owns a FrameBuffer and a daemon producer thread:

    backend.fetch() -> backend.decode() (retried once) -> FrameBuffer.put()

Report reads pump slots out of the buffer into the report's arrival store
through ``wait_until``. Slots carry a sequence number and are applied in
production order even when several threads consume concurrently.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from simreport.domain.interfaces import END_OF_STREAM
from simreport.infrastructure.buffer import FrameBuffer
from simreport.infrastructure.resilience import retry
from simreport.shared.exceptions import BackendFailureError


logger = logging.getLogger(__name__)


class StreamReader:
    """Producer/consumer bridge between a stream backend and a report.

    Parameters
    ----------
    backend : StreamBackend
        Opened stream backend (fetch/decode)
    apply : Callable[[Any], None]
        Called with every decoded slot, in order, under ``lock``
    buffer_size : int
        Frame buffer capacity
    poll_interval : float
        Seconds per transport fetch; bounds how fast the producer notices
        shutdown
    decode_retries : int
        Extra attempts for recoverable decode failures

    Example
    -------
    >>> reader = StreamReader(backend, store.append, buffer_size=4)
    >>> reader.wait_until(lambda: store.horizon >= 10.0, timeout=1.0)
    True
    >>> reader.close()
    """

    def __init__(
        self,
        backend: Any,
        apply: Callable[[Any], None],
        *,
        buffer_size: int = 1,
        poll_interval: float = 0.05,
        decode_retries: int = 1,
        name: str = "stream",
    ) -> None:
        self.name = name
        self._backend = backend
        self._apply = apply
        self._poll_interval = poll_interval
        self._buffer = FrameBuffer(buffer_size, name=f"FrameBuffer:{name}")
        self._decode = retry(max_attempts=decode_retries + 1)(backend.decode)

        # Guards the consumer-side store; reports take it for snapshots
        self.lock = threading.RLock()
        self._pending: dict[int, Any] = {}
        self._next_seq = 0
        self._produced = 0
        self._applied = 0
        self._end_of_stream = False
        self._cancelled = False

        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._produce, name=f"StreamReader-{name}", daemon=True
        )
        self._thread.start()
        logger.debug("[StreamReader:%s] Producer started", name)

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #
    @property
    def buffer_size(self) -> int:
        return self._buffer.capacity

    @buffer_size.setter
    def buffer_size(self, value: int) -> None:
        self._buffer.capacity = value

    @property
    def end_of_stream(self) -> bool:
        """The producer closed the stream and every slot was applied."""
        return self._end_of_stream

    @property
    def cancelled(self) -> bool:
        """``close()`` was called by the consumer."""
        return self._cancelled

    @property
    def finished(self) -> bool:
        """No further data will ever be applied."""
        return self._end_of_stream or self._cancelled or self.error is not None

    @property
    def error(self) -> BaseException | None:
        return self._buffer.error

    # ------------------------------------------------------------------ #
    # Producer (background thread)
    # ------------------------------------------------------------------ #
    def _produce(self) -> None:
        try:
            while not self._stop.is_set():
                message = self._backend.fetch(self._poll_interval)
                if message is None:
                    continue
                item = self._decode(message)
                if item is None:
                    continue
                if item is END_OF_STREAM:
                    logger.debug("[StreamReader:%s] End of stream", self.name)
                    self._buffer.close()
                    return
                slot = (self._produced, item)
                self._produced += 1
                while not self._buffer.put(slot, timeout=self._poll_interval):
                    if self._buffer.closed or self._stop.is_set():
                        return
        except Exception as e:
            error = e
            if not isinstance(e, BackendFailureError):
                error = BackendFailureError("Stream producer failed", plugin_name=self.name, cause=e)
            logger.debug("[StreamReader:%s] Producer failed: %s", self.name, error)
            # The backend is FAILED before any consumer can observe the error
            self._backend.mark_failed()
            self._buffer.close(error=error)

    # ------------------------------------------------------------------ #
    # Consumer
    # ------------------------------------------------------------------ #
    def _absorb(self, slots: list[tuple[int, Any]]) -> None:
        with self.lock:
            for seq, item in slots:
                self._pending[seq] = item
            while self._next_seq in self._pending:
                item = self._pending.pop(self._next_seq)
                self._next_seq += 1
                if item is not None:
                    self._apply(item)
                    self._applied += 1

    def poll(self) -> None:
        """Apply every slot already buffered, without blocking."""
        self._absorb(self._buffer.drain())
        self._check_closed()

    def _check_closed(self) -> None:
        if self._buffer.closed and len(self._buffer) == 0:
            with self.lock:
                if not self._pending and self._buffer.error is None and not self._cancelled:
                    self._end_of_stream = True

    def wait_until(self, satisfied: Callable[[], bool], timeout: float | None = None) -> bool:
        """Pump slots until ``satisfied()`` holds, the stream finishes, or
        ``timeout`` seconds elapse.

        ``satisfied`` is evaluated under ``lock``.

        Returns
        -------
        bool
            The final value of ``satisfied()``
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.poll()
            with self.lock:
                if satisfied():
                    return True
            if self.finished or self._buffer.closed:
                # Closed after the last poll: apply what is left
                self.poll()
                with self.lock:
                    return satisfied()

            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                with self.lock:
                    return satisfied()
            slot = self._buffer.get(timeout=remaining)
            if slot is not None:
                self._absorb([slot])

    def clear(self) -> int:
        """Discard undelivered slots. Returns the number dropped."""
        with self.lock:
            dropped = self._buffer.drain()
            for seq, _ in dropped:
                self._pending[seq] = None
            self._absorb([])
        if dropped:
            logger.debug("[StreamReader:%s] Dropped %d undelivered slots", self.name, len(dropped))
        return len(dropped)

    def close(self, join_timeout: float = 1.0) -> None:
        """Stop the producer and wake every blocked consumer."""
        self._cancelled = not self._end_of_stream
        self._stop.set()
        self._buffer.close()
        if self._thread is not threading.current_thread():
            self._thread.join(join_timeout)
            if self._thread.is_alive():
                logger.warning("[StreamReader:%s] Producer did not stop in time", self.name)

    def get_stats(self) -> dict[str, Any]:
        return {
            "produced": self._produced,
            "applied": self._applied,
            "end_of_stream": self._end_of_stream,
            "cancelled": self._cancelled,
            "buffer": self._buffer.get_stats(),
        }


__all__ = ["StreamReader"]
