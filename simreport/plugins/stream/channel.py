"""
In-process publish/subscribe channels behind ``inproc://<name>`` URIs.

A channel has at most one publisher and any number of subscribers. Each
subscriber declares its GID filter when it subscribes; the publisher builds
every message per subscription, so excluded cells are never sent.

Delivery to a subscription is an unbounded FIFO: publishers never block on
slow readers (readers bound their own memory through the report's frame
buffer). A header may be retained so that late subscribers receive it first.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

import numpy as np

from simreport.plugins.stream.codec import END_MESSAGE, StreamMessage


logger = logging.getLogger(__name__)

MessageBuilder = Callable[["Subscription"], "StreamMessage | None"]


class Subscription:
    """One subscriber's end of a channel.

    Attributes
    ----------
    gids : np.ndarray | None
        Sorted uint32 GID filter sent with the subscription (None = all)
    state : dict
        Scratch space for the publisher (e.g. cached column selections)
    """

    _ids = itertools.count(1)

    def __init__(self, channel: Channel, gids: np.ndarray | None) -> None:
        self.id = next(self._ids)
        self.channel = channel
        self.gids = gids
        self.state: dict[str, Any] = {}
        self._queue: queue.SimpleQueue[StreamMessage] = queue.SimpleQueue()

    def deliver(self, message: StreamMessage) -> None:
        self._queue.put(message)

    def get(self, timeout: float | None = None) -> StreamMessage | None:
        """Next message, or None if none arrived within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.channel.unsubscribe(self)


class Channel:
    """A named stream endpoint."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._subscriptions: dict[int, Subscription] = {}
        self._publisher: object | None = None
        self._header: MessageBuilder | None = None
        self._closed = False

    @property
    def has_publisher(self) -> bool:
        return self._publisher is not None

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Subscriber side
    # ------------------------------------------------------------------ #
    def subscribe(self, gids: np.ndarray | None = None) -> Subscription:
        """Register a subscriber with its GID filter.

        A retained header is delivered first; on a closed channel the
        subscription immediately receives the end marker.
        """
        with self._lock:
            subscription = Subscription(self, gids)
            self._subscriptions[subscription.id] = subscription
            if self._header is not None:
                self._deliver(subscription, self._header)
            if self._closed:
                subscription.deliver(END_MESSAGE)
        logger.debug(
            "[Channel:%s] Subscription %d (filter: %s)",
            self.name,
            subscription.id,
            "all" if gids is None else f"{gids.size} gids",
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(subscription.id, None)

    # ------------------------------------------------------------------ #
    # Publisher side
    # ------------------------------------------------------------------ #
    def attach(self, publisher: object) -> None:
        """Claim the channel for a publisher, starting a new stream.

        Raises
        ------
        RuntimeError
            If another publisher is attached
        """
        with self._lock:
            if self._publisher is not None:
                raise RuntimeError(f"Channel '{self.name}' already has a publisher")
            self._publisher = publisher
            self._header = None
            self._closed = False
        logger.debug("[Channel:%s] Publisher attached", self.name)

    def set_header(self, build: MessageBuilder) -> None:
        """Retain a header builder and send the header to current subscribers."""
        with self._lock:
            self._header = build
            for subscription in self._subscriptions.values():
                self._deliver(subscription, build)

    def publish(self, build: MessageBuilder) -> int:
        """Send one message, built per subscription. Returns deliveries made."""
        delivered = 0
        with self._lock:
            for subscription in self._subscriptions.values():
                delivered += self._deliver(subscription, build)
        return delivered

    def close(self, publisher: object) -> None:
        """End the stream: every subscriber receives the end marker."""
        with self._lock:
            if self._publisher is not publisher:
                return
            self._publisher = None
            self._closed = True
            for subscription in self._subscriptions.values():
                subscription.deliver(END_MESSAGE)
        logger.debug("[Channel:%s] Closed", self.name)

    @staticmethod
    def _deliver(subscription: Subscription, build: MessageBuilder) -> int:
        message = build(subscription)
        if message is None:
            return 0
        subscription.deliver(message)
        return 1


class ChannelHub:
    """Process-wide directory of channels, created on first use."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: dict[str, Channel] = {}

    def get(self, name: str) -> Channel:
        with self._lock:
            channel = self._channels.get(name)
            if channel is None:
                channel = self._channels[name] = Channel(name)
            return channel

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._channels)

    def reset(self) -> None:
        """Forget every channel (for testing)."""
        with self._lock:
            self._channels.clear()


hub = ChannelHub()


__all__ = ["Channel", "ChannelHub", "Subscription", "hub"]
