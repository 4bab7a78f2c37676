"""In-process stream compartment backend (``inproc://<channel>``).

The publisher retains a header (metadata + cell mapping) on the channel;
a reader blocks at open time until it arrives. Frames are atomic messages
and are published as they are completed, not necessarily in time order.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

import numpy as np

from simreport.domain.frames import Frame
from simreport.domain.interfaces import ReportKind
from simreport.domain.types import (
    COUNT_DTYPE,
    AccessMode,
    EntitySet,
    ReportMetadata,
    compute_offsets,
    frame_size_of,
)
from simreport.infrastructure.io.uri import ReportURI
from simreport.plugins.base import backend_plugin
from simreport.plugins.stream.base import StreamBackendBase, StreamConfig
from simreport.plugins.stream.channel import Subscription
from simreport.plugins.stream.codec import (
    END,
    FRAME,
    HEADER,
    StreamMessage,
    decode_frame,
    decode_header,
    encode_frame,
    encode_header,
)
from simreport.shared.exceptions import CannotOpenError


logger = logging.getLogger(__name__)


def select_columns(
    gids: EntitySet, counts: Sequence[np.ndarray], wanted: EntitySet
) -> tuple[np.ndarray | None, list[np.ndarray]]:
    """Columns of a frame belonging to ``wanted`` cells.

    Returns
    -------
    tuple[np.ndarray | None, list[np.ndarray]]
        Column indices (None when every cell is kept) and the kept counts
    """
    if wanted == gids:
        return None, list(counts)
    sizes = [int(np.sum(c, dtype=np.int64)) for c in counts]
    starts = np.concatenate(([0], np.cumsum(sizes)[:-1])) if sizes else np.empty(0, np.int64)
    columns: list[np.ndarray] = []
    kept: list[np.ndarray] = []
    for gid in wanted:
        row = gids.index(gid)
        columns.append(np.arange(starts[row], starts[row] + sizes[row], dtype=np.int64))
        kept.append(counts[row])
    return (np.concatenate(columns) if columns else np.empty(0, dtype=np.int64)), kept


@backend_plugin(
    name="inproc-compartments",
    kind=ReportKind.COMPARTMENTS,
    description="In-process compartment stream",
    schemes=("inproc",),
    streaming=True,
    config_schema=StreamConfig,
)
class StreamCompartmentBackend(StreamBackendBase):
    """Compartment stream over an in-process channel."""

    def __init__(
        self,
        uri: ReportURI,
        mode: AccessMode,
        gids: EntitySet | None = None,
        options: StreamConfig | None = None,
    ) -> None:
        super().__init__(uri, mode, gids, options)
        self._counts: list[np.ndarray] = []
        self._offsets: list[np.ndarray] = []
        self._columns: np.ndarray | None = None
        self._wire_frame_size = 0
        self._mapped = False

        if mode is AccessMode.READ:
            try:
                self._await_header()
            except CannotOpenError:
                self._subscription.close()
                raise
        self._mark_open()

    def _await_header(self) -> None:
        deadline = time.monotonic() + self.options.open_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CannotOpenError(
                    f"No stream header within {self.options.open_timeout}s",
                    uri=str(self.uri),
                    plugin_name=self.plugin_name,
                )
            message = self._subscription.get(remaining)
            if message is None:
                continue
            if message.kind == END:
                raise CannotOpenError(
                    "Stream ended before its header", uri=str(self.uri), plugin_name=self.plugin_name
                )
            if message.kind == HEADER:
                break

        try:
            metadata, wire_gids, wire_counts = decode_header(message.payload)
        except ValueError as e:
            raise CannotOpenError(
                "Invalid stream header", uri=str(self.uri), plugin_name=self.plugin_name, cause=e
            ) from e

        selected = self._filter_entities(wire_gids)
        self._columns, counts = select_columns(wire_gids, wire_counts, selected)
        self._wire_frame_size = frame_size_of(wire_counts)
        self._set_layout(selected, counts, metadata)
        logger.debug(
            "[%s] Header received on '%s': %d cells, frame_size=%d",
            self.plugin_name,
            self.channel.name,
            len(selected),
            self._metadata.frame_size,
        )

    def _set_layout(
        self, gids: EntitySet, counts: Sequence[np.ndarray], metadata: ReportMetadata
    ) -> None:
        self._counts = []
        for cell in counts:
            cell = np.array(cell, dtype=COUNT_DTYPE)
            cell.setflags(write=False)
            self._counts.append(cell)
        self._offsets = compute_offsets(self._counts)
        self._entities = gids
        self._metadata = metadata.with_updates(frame_size=frame_size_of(self._counts))

    @property
    def offsets(self) -> list[np.ndarray]:
        return self._offsets

    @property
    def counts(self) -> list[np.ndarray]:
        return self._counts

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #
    def _decode_payload(self, message: StreamMessage) -> Frame | None:
        if message.kind == HEADER:
            return None
        if message.kind != FRAME:
            raise self._failure(f"Unexpected message kind '{message.kind}' on a compartment stream")

        frame = decode_frame(message.payload)
        if len(frame) == self._metadata.frame_size:
            return frame
        if self._columns is not None and len(frame) == self._wire_frame_size:
            # Publisher ignored the subscription filter
            return Frame(frame.timestamp, frame.values[self._columns])
        raise ValueError(
            f"Frame at t={frame.timestamp} has {len(frame)} values, "
            f"expected {self._metadata.frame_size}"
        )

    # ------------------------------------------------------------------ #
    # Write
    # ------------------------------------------------------------------ #
    def write_header(self, metadata: ReportMetadata) -> None:
        self._require_write("write_header")
        self._metadata = metadata

    def write_mapping(self, gids: EntitySet, counts: Sequence[np.ndarray]) -> None:
        """Publish the retained header; late subscribers receive it first."""
        self._require_write("write_mapping")
        if self._mapped:
            raise self._failure("Entity mapping already written")
        self._set_layout(gids, counts, self._metadata)
        self._mapped = True
        self.channel.set_header(self._header_for)

    def _header_for(self, subscription: Subscription) -> StreamMessage:
        wanted = self._entities
        if subscription.gids is not None:
            wanted = self._entities.intersection(subscription.gids)
        columns, counts = select_columns(self._entities, self._counts, wanted)
        subscription.state["columns"] = columns
        metadata = self._metadata.with_updates(frame_size=frame_size_of(counts))
        return encode_header(metadata, wanted, counts)

    def write_frame(self, index: int, timestamp: float, values: np.ndarray) -> None:
        self._require_write("write_frame")
        if not self._mapped:
            raise self._failure("Frames written before the entity mapping")

        def build(subscription: Subscription) -> StreamMessage:
            columns = subscription.state.get("columns")
            return encode_frame(timestamp, values if columns is None else values[columns])

        self.channel.publish(build)


__all__ = ["StreamCompartmentBackend", "select_columns"]
