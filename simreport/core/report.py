"""
Report base class: one public contract over file and stream backends.

A report is opened by URI and access mode. Opening selects exactly one
backend plugin from the registry of the report's kind or fails; the report
then owns the backend and, for stream reads, a StreamReader (frame buffer +
producer thread). ``close()`` releases everything.
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from simreport.config.settings import ReportSettings
from simreport.core.stream_reader import StreamReader
from simreport.domain.interfaces import PluginDescriptor, ReportKind
from simreport.domain.types import (
    UNDEFINED_TIME,
    AccessMode,
    EntitySet,
    ReportMetadata,
    TimeWindow,
)
from simreport.infrastructure.io.uri import ReportURI
from simreport.infrastructure.registry import register_defaults, registry_for
from simreport.shared.exceptions import BackendFailureError, InvalidModeError, ReportError


logger = logging.getLogger(__name__)


class Report(ABC):
    """Time-windowed reader/writer of per-cell report data.

    Parameters
    ----------
    uri : str | os.PathLike | ReportURI
        Report location; scheme and suffix select the backend
    mode : AccessMode | str
        READ, WRITE or OVERWRITE
    gids : Iterable[int] | None
        Read mode only: restrict visible cells to this subset. Stream
        backends forward the filter to the producer.
    settings : ReportSettings | None
        Runtime settings (buffer size, cache size, timeouts)
    **options
        Backend options, validated against the plugin's config schema
        (URI query parameters take the same names)
    """

    kind: ReportKind

    def __init__(
        self,
        uri: str | os.PathLike[str] | ReportURI,
        mode: AccessMode | str = AccessMode.READ,
        gids: Iterable[int] | None = None,
        *,
        settings: ReportSettings | None = None,
        **options: Any,
    ) -> None:
        register_defaults()
        self._settings = settings or ReportSettings()
        self._uri = ReportURI.parse(uri)
        self._mode = AccessMode.parse(mode)
        self._closed = False
        self._close_lock = threading.Lock()
        self._stream: StreamReader | None = None

        if gids is not None and self._mode.is_write:
            raise InvalidModeError("A GID filter only applies to reading", "open", self._mode)
        gid_filter = None
        if gids is not None:
            gid_filter = gids if isinstance(gids, EntitySet) else EntitySet(gids)

        registry = registry_for(self.kind)
        descriptor = registry.select(self._uri, self._mode)
        if descriptor.streaming:
            for key, value in self._settings.stream_defaults().items():
                if key not in self._uri.query:
                    options.setdefault(key, value)

        self._descriptor: PluginDescriptor
        self._descriptor, self._backend = registry.open(
            self._uri, self._mode, gid_filter, **options
        )

        if descriptor.streaming and not self._mode.is_write:
            self._stream = StreamReader(
                self._backend,
                self._apply_slot,
                buffer_size=getattr(self._backend.options, "buffer_size", self._settings.buffer_size),
                poll_interval=self._settings.poll_interval,
                decode_retries=self._settings.decode_retries,
                name=f"{self._descriptor.name}:{self._uri.location}",
            )

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #
    @property
    def uri(self) -> str:
        return str(self._uri)

    @property
    def mode(self) -> AccessMode:
        return self._mode

    @property
    def plugin_name(self) -> str:
        return self._descriptor.name

    @property
    def is_stream(self) -> bool:
        return self._descriptor.streaming

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def entities(self) -> EntitySet:
        """Visible cells, in output order."""
        return self._backend.entities

    @property
    def metadata(self) -> ReportMetadata:
        return self._backend.metadata

    @property
    def start_time(self) -> float:
        return self.metadata.start_time

    @property
    def end_time(self) -> float:
        return self.metadata.end_time

    @property
    def timestep(self) -> float:
        return self.metadata.timestep

    @property
    def data_unit(self) -> str:
        return self.metadata.data_unit

    @property
    def time_unit(self) -> str:
        return self.metadata.time_unit

    def get_entities(self) -> EntitySet:
        return self.entities

    def get_metadata(self) -> ReportMetadata:
        return self.metadata

    @property
    def buffer_size(self) -> int:
        """Frame buffer capacity (stream readers only)."""
        if self._stream is None:
            raise InvalidModeError("Only stream readers have a frame buffer", "buffer_size", self._mode)
        return self._stream.buffer_size

    @buffer_size.setter
    def buffer_size(self, value: int) -> None:
        if self._stream is None:
            raise InvalidModeError("Only stream readers have a frame buffer", "buffer_size", self._mode)
        self._stream.buffer_size = value

    # ------------------------------------------------------------------ #
    # Guards
    # ------------------------------------------------------------------ #
    def _require_open(self, operation: str) -> None:
        if self._closed:
            raise ReportError(f"Report is closed (operation: {operation})")

    def _require_read(self, operation: str) -> None:
        self._require_open(operation)
        if self._mode.is_write:
            raise InvalidModeError("Report is open for writing", operation, self._mode)

    def _require_write(self, operation: str) -> None:
        self._require_open(operation)
        if not self._mode.is_write:
            raise InvalidModeError("Report is open for reading", operation, self._mode)

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #
    def read(
        self,
        start: float = UNDEFINED_TIME,
        end: float = UNDEFINED_TIME,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Read the half-open window ``[start, end)``.

        UNDEFINED_TIME leaves a bound open. File reports never block. Stream
        reports block until the window is complete, the stream ends, the
        report is closed, or ``timeout`` seconds elapse; an incomplete result
        has ``complete=False`` and ends at the truncation point.

        Raises
        ------
        InvalidModeError
            If the report is open for writing
        BackendFailureError
            If the stream failed; the report is closed
        """
        self._require_read("read")
        window = TimeWindow(float(start), float(end))
        if self._stream is None:
            return self._read_file(window)
        result = self._read_stream(window, timeout)
        self._raise_stream_error()
        return result

    @abstractmethod
    def _read_file(self, window: TimeWindow) -> Any: ...

    @abstractmethod
    def _read_stream(self, window: TimeWindow, timeout: float | None) -> Any: ...

    @abstractmethod
    def _apply_slot(self, item: Any) -> None:
        """Store one decoded stream slot (called under the reader lock)."""

    def _raise_stream_error(self) -> None:
        error = self._stream.error if self._stream is not None else None
        if error is None:
            return
        logger.error("[%s] Stream failed, closing report: %s", self.plugin_name, error)
        self.close()
        if isinstance(error, BackendFailureError):
            raise error
        raise BackendFailureError("Stream failed", plugin_name=self.plugin_name, cause=error)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def flush(self) -> None:
        """Push buffered writes to the backend."""
        self._require_write("flush")
        self._flush_pending()
        self._backend.flush()

    def _flush_pending(self) -> None:
        """Hand partially assembled data to the backend. Default: none."""

    def _finalize(self) -> None:
        """Last write-side step before the backend closes."""
        self._flush_pending()

    def _fix_end_time(self) -> None:
        """Freeze stream read metadata once no more data can arrive."""

    def clear_cache(self) -> None:
        """Drop buffered and decoded data. Returned results stay valid."""
        if self._stream is not None:
            self._stream.clear()
        self._clear_decoded()

    def _clear_decoded(self) -> None: ...

    def close(self) -> None:
        """Release the backend. Safe to call more than once.

        Stream readers: unblocks any blocked ``read`` and fixes ``end_time``
        to the end of the last known timestamp. Writers: flush and finalize.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        try:
            if self._stream is not None:
                self._stream.close()
                with self._stream.lock:
                    self._fix_end_time()
            elif self._mode.is_write:
                self._finalize()
                self._backend.flush()
        finally:
            self._backend.close()
            logger.debug("[%s] Closed %s", self.plugin_name, self._uri)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self):
        if not getattr(self, "_closed", True) and getattr(self, "_backend", None) is not None:
            try:
                self.close()
            except ReportError as e:
                logger.warning("Error closing report %s: %s", getattr(self, "_uri", "?"), e)

    def __repr__(self) -> str:
        state = "closed" if self._closed else self._mode.name.lower()
        return f"{type(self).__name__}({self.uri!r}, {state}, plugin={self.plugin_name!r})"


__all__ = ["Report"]
