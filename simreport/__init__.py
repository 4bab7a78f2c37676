"""
simreport: time-windowed reading and writing of neuron simulation reports.

Spike reports hold ``(time, gid)`` events; compartment reports hold
per-compartment values sampled on a fixed time grid; synapse reports hold
per-synapse values on the same grid. All are opened by URI
and served by pluggable file (HDF5, ASCII) or stream (in-process) backends.

Example
-------
>>> from simreport import SpikeReport
>>> with SpikeReport("spikes.h5") as report:
...     spikes = report.read(2.0, 5.0)
"""

from simreport.config.settings import ReportSettings
from simreport.core import (
    CompartmentReport,
    Report,
    SpikeReport,
    SynapseReport,
    open_compartment_report,
    open_spike_report,
    open_synapse_report,
)
from simreport.domain.frames import Frame, Frames
from simreport.domain.interfaces import PluginDescriptor, ReportKind
from simreport.domain.spikes import Spike, Spikes
from simreport.domain.types import (
    NO_COMPARTMENTS,
    UNDEFINED_TIME,
    AccessMode,
    EntitySet,
    ReportMetadata,
    is_undefined,
)
from simreport.infrastructure.registry import compartment_plugins, spike_plugins, synapse_plugins
from simreport.shared.exceptions import (
    BackendFailureError,
    CannotOpenError,
    ConfigValidationError,
    ConversionError,
    InvalidModeError,
    OutOfOrderError,
    ReportError,
    UnsupportedFormatError,
)

__version__ = "0.1.0"

__all__ = [
    "AccessMode",
    "BackendFailureError",
    "CannotOpenError",
    "CompartmentReport",
    "ConfigValidationError",
    "ConversionError",
    "EntitySet",
    "Frame",
    "Frames",
    "InvalidModeError",
    "NO_COMPARTMENTS",
    "OutOfOrderError",
    "PluginDescriptor",
    "Report",
    "ReportError",
    "ReportKind",
    "ReportMetadata",
    "ReportSettings",
    "Spike",
    "Spikes",
    "SpikeReport",
    "SynapseReport",
    "UNDEFINED_TIME",
    "UnsupportedFormatError",
    "compartment_plugins",
    "is_undefined",
    "open_compartment_report",
    "open_spike_report",
    "open_synapse_report",
    "spike_plugins",
    "synapse_plugins",
]
