"""Open/failed/closed bookkeeping shared by every backend.

A backend starts in ``CREATED`` while its constructor runs, becomes ``OPEN``
once its source or destination is usable, may drop to ``FAILED`` when a
stream breaks underneath it, and ends ``CLOSED``. ``CLOSED`` is terminal.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum, auto
from typing import Any

from simreport.shared.exceptions import ReportError


logger = logging.getLogger(__name__)


class BackendState(Enum):
    CREATED = auto()
    OPEN = auto()
    FAILED = auto()  # only close() is legal from here
    CLOSED = auto()


_ALLOWED: dict[BackendState, frozenset[BackendState]] = {
    BackendState.CREATED: frozenset({BackendState.OPEN, BackendState.CLOSED}),
    BackendState.OPEN: frozenset({BackendState.FAILED, BackendState.CLOSED}),
    BackendState.FAILED: frozenset({BackendState.CLOSED}),
    BackendState.CLOSED: frozenset(),
}


class LifecycleMixin:
    """State tracking plus context-manager support.

    Subclasses call ``_mark_open()`` when their handles are ready and
    override ``_release()`` to free them. ``close()`` may be called any
    number of times.

    Example
    -------
    >>> class TextBackend(LifecycleMixin):
    ...     def __init__(self, path):
    ...         super().__init__()
    ...         self._file = open(path)
    ...         self._mark_open()
    ...     def _release(self):
    ...         self._file.close()
    """

    def __init__(self) -> None:
        self._state = BackendState.CREATED
        # Stream producers mark failures from their own thread
        self._state_lock = threading.RLock()

    @property
    def state(self) -> BackendState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is BackendState.OPEN

    def _move(self, target: BackendState) -> None:
        with self._state_lock:
            if target not in _ALLOWED[self._state]:
                raise ReportError(
                    f"{type(self).__name__} cannot go from {self._state.name} to {target.name}"
                )
            logger.debug("[%s] %s -> %s", type(self).__name__, self._state.name, target.name)
            self._state = target

    def _mark_open(self) -> None:
        self._move(BackendState.OPEN)

    def mark_failed(self) -> None:
        """Record a failure of the underlying source; no-op unless OPEN."""
        with self._state_lock:
            if self._state is BackendState.OPEN:
                self._move(BackendState.FAILED)

    def _release(self) -> None:
        """Free handles; backends override this."""

    def close(self) -> None:
        with self._state_lock:
            if self._state is BackendState.CLOSED:
                return
            try:
                self._release()
            finally:
                self._move(BackendState.CLOSED)

    def __enter__(self) -> Any:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = ["BackendState", "LifecycleMixin"]
