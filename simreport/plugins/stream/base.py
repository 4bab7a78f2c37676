"""Shared plumbing of the in-process stream backends."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from simreport.domain.interfaces import END_OF_STREAM
from simreport.domain.types import AccessMode, EntitySet
from simreport.infrastructure.io.uri import ReportURI
from simreport.plugins.base import BackendBase
from simreport.plugins.stream.channel import Subscription, hub
from simreport.plugins.stream.codec import END, StreamMessage
from simreport.shared.exceptions import CannotOpenError


logger = logging.getLogger(__name__)


@dataclass
class StreamConfig:
    """Options accepted as ``inproc://`` query parameters.

    Attributes
    ----------
    buffer_size : int
        Frame buffer capacity of the reading report
    open_timeout : float
        Seconds a compartment reader waits for the stream header
    """

    buffer_size: int = field(default=1, metadata={"min": 1})
    open_timeout: float = field(default=10.0, metadata={"min": 0.0})


class StreamBackendBase(BackendBase):
    """Publisher (write modes) or subscriber (read mode) of one channel."""

    def __init__(
        self,
        uri: ReportURI,
        mode: AccessMode,
        gids: EntitySet | None = None,
        options: StreamConfig | None = None,
    ) -> None:
        super().__init__(uri, mode, gids, options or StreamConfig())
        if not uri.location:
            raise CannotOpenError(
                "Stream URI names no channel", uri=str(uri), plugin_name=self.plugin_name
            )
        self.channel = hub.get(uri.location)
        self._subscription: Subscription | None = None

        if mode.is_write:
            try:
                self.channel.attach(self)
            except RuntimeError as e:
                raise CannotOpenError(
                    str(e), uri=str(uri), plugin_name=self.plugin_name
                ) from e
        else:
            self._subscription = self.channel.subscribe(
                None if gids is None else gids.as_array()
            )

    def fetch(self, timeout: float) -> StreamMessage | None:
        """Next raw message, or None if nothing arrived within ``timeout``."""
        return self._subscription.get(timeout)

    def decode(self, message: StreamMessage) -> Any:
        """Decode a message into a batch, a frame or END_OF_STREAM.

        A malformed payload decodes the same way on every attempt, so it
        raises a non-recoverable BackendFailureError. Backends whose decoding
        depends on state that can change between attempts (e.g. a header
        still in flight) may raise ``recoverable=True``; the reader's producer
        retries those before giving up.
        """
        if message.kind == END:
            return END_OF_STREAM
        try:
            return self._decode_payload(message)
        except ValueError as e:
            raise self._failure("Cannot decode stream message", e) from e

    def _decode_payload(self, message: StreamMessage) -> Any:
        raise NotImplementedError

    def _release(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
        if self.mode.is_write:
            self.channel.close(self)


__all__ = ["StreamBackendBase", "StreamConfig"]
