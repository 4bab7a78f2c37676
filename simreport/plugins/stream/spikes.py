"""In-process stream spike backend (``inproc://<channel>``)."""

from __future__ import annotations

import logging

import numpy as np

from simreport.domain.interfaces import ReportKind, SpikeBatch
from simreport.domain.spikes import end_after
from simreport.domain.types import AccessMode, EntitySet
from simreport.infrastructure.io.uri import ReportURI
from simreport.plugins.base import backend_plugin
from simreport.plugins.stream.base import StreamBackendBase, StreamConfig
from simreport.plugins.stream.codec import HEADER, SPIKES, StreamMessage, decode_spikes, encode_spikes


logger = logging.getLogger(__name__)


def _select(
    filter_gids: np.ndarray | None, times: np.ndarray, gids: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    if filter_gids is None:
        return times, gids
    keep = np.isin(gids, filter_gids)
    return times[keep], gids[keep]


@backend_plugin(
    name="inproc-spikes",
    kind=ReportKind.SPIKES,
    description="In-process spike stream",
    schemes=("inproc",),
    streaming=True,
    config_schema=StreamConfig,
)
class StreamSpikeBackend(StreamBackendBase):
    """Spike stream over an in-process channel.

    Readers see only spikes published after they subscribed. Without a GID
    filter the visible entity set grows as spikes arrive.
    """

    def __init__(
        self,
        uri: ReportURI,
        mode: AccessMode,
        gids: EntitySet | None = None,
        options: StreamConfig | None = None,
    ) -> None:
        super().__init__(uri, mode, gids, options)
        if gids is not None and mode is AccessMode.READ:
            self._entities = gids
        self._mark_open()

    def _decode_payload(self, message: StreamMessage) -> SpikeBatch | None:
        if message.kind == HEADER:
            return None
        if message.kind != SPIKES:
            raise self._failure(f"Unexpected message kind '{message.kind}' on a spike stream")

        batch = decode_spikes(message.payload)
        if self.requested_gids is not None:
            # The publisher filters already; re-apply in case it did not
            times, gids = _select(self.requested_gids.as_array(), batch.times, batch.gids)
            return SpikeBatch(times, gids, horizon=batch.horizon)

        if batch.gids.size:
            new = np.setdiff1d(batch.gids, self._entities.as_array())
            if new.size:
                self._entities = self._entities.union(new)
        return batch

    def write_spikes(self, times: np.ndarray, gids: np.ndarray) -> None:
        """Publish a time-sorted batch, filtered per subscriber."""
        self._require_write("write_spikes")
        if times.size == 0:
            return
        horizon = float(times[-1])
        self.channel.publish(lambda sub: encode_spikes(*_select(sub.gids, times, gids), horizon))

        if not self._entities:
            self._metadata = self._metadata.with_updates(start_time=float(times[0]))
        self._metadata = self._metadata.with_updates(end_time=end_after(horizon))
        self._entities = self._entities.union(gids)


__all__ = ["StreamSpikeBackend"]
