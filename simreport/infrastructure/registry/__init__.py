"""
Backend plugin registries.

This module provides centralized registration and discovery of report
backends, enabling easy extension with new formats and transports.

Usage
-----
>>> from simreport.infrastructure.registry import (
...     spike_plugins,
...     compartment_plugins,
...     register_defaults,
... )
>>>
>>> # Initialize built-in backends
>>> register_defaults()
>>>
>>> # Select and open a backend
>>> descriptor, backend = spike_plugins.open("/data/out.h5", "read")
"""

import logging

from simreport.domain.interfaces import ReportKind

from .plugin_registry import PluginRegistry


logger = logging.getLogger(__name__)

spike_plugins = PluginRegistry(ReportKind.SPIKES, "simreport.spike_plugins")
compartment_plugins = PluginRegistry(ReportKind.COMPARTMENTS, "simreport.compartment_plugins")
synapse_plugins = PluginRegistry(ReportKind.SYNAPSES, "simreport.synapse_plugins")

_defaults_registered = False


def registry_for(kind: ReportKind) -> PluginRegistry:
    """Return the registry holding plugins of the given kind."""
    return {
        ReportKind.SPIKES: spike_plugins,
        ReportKind.COMPARTMENTS: compartment_plugins,
        ReportKind.SYNAPSES: synapse_plugins,
    }[kind]


def register_default_spike_plugins() -> None:
    """Register all built-in spike backends."""
    # Import here to avoid circular imports
    from simreport.plugins.ascii.spikes import AsciiSpikeBackend
    from simreport.plugins.hdf5.spikes import HDF5SpikeBackend
    from simreport.plugins.stream.spikes import StreamSpikeBackend

    spike_plugins.register(HDF5SpikeBackend.descriptor())
    spike_plugins.register(AsciiSpikeBackend.descriptor())
    spike_plugins.register(StreamSpikeBackend.descriptor())


def register_default_compartment_plugins() -> None:
    """Register all built-in compartment backends."""
    from simreport.plugins.hdf5.compartments import HDF5CompartmentBackend
    from simreport.plugins.stream.compartments import StreamCompartmentBackend

    compartment_plugins.register(HDF5CompartmentBackend.descriptor())
    compartment_plugins.register(StreamCompartmentBackend.descriptor())


def register_default_synapse_plugins() -> None:
    """Register all built-in synapse backends."""
    from simreport.plugins.hdf5.synapses import HDF5SynapseBackend

    synapse_plugins.register(HDF5SynapseBackend.descriptor())


def register_defaults(*, force: bool = False) -> None:
    """Register all default backends.

    Safe to call multiple times - will only register once unless ``force``.
    """
    global _defaults_registered
    if _defaults_registered and not force:
        return

    logger.debug("Registering default report backends")
    register_default_spike_plugins()
    register_default_compartment_plugins()
    register_default_synapse_plugins()
    _defaults_registered = True


__all__ = [
    "PluginRegistry",
    "compartment_plugins",
    "register_default_compartment_plugins",
    "register_default_spike_plugins",
    "register_default_synapse_plugins",
    "register_defaults",
    "registry_for",
    "spike_plugins",
    "synapse_plugins",
]
