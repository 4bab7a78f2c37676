"""In-process stream backends (``inproc://<channel>``)."""

from simreport.plugins.stream.base import StreamConfig
from simreport.plugins.stream.channel import Channel, Subscription, hub
from simreport.plugins.stream.compartments import StreamCompartmentBackend
from simreport.plugins.stream.spikes import StreamSpikeBackend

__all__ = [
    "Channel",
    "StreamCompartmentBackend",
    "StreamConfig",
    "StreamSpikeBackend",
    "Subscription",
    "hub",
]
