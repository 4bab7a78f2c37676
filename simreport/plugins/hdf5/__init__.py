"""HDF5 container backends."""

from simreport.plugins.hdf5.compartments import HDF5CompartmentBackend, HDF5CompartmentConfig
from simreport.plugins.hdf5.spikes import HDF5SpikeBackend, HDF5SpikeConfig
from simreport.plugins.hdf5.synapses import HDF5SynapseBackend

__all__ = [
    "HDF5CompartmentBackend",
    "HDF5CompartmentConfig",
    "HDF5SpikeBackend",
    "HDF5SpikeConfig",
    "HDF5SynapseBackend",
]
