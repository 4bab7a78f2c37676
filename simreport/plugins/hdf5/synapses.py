"""
HDF5 synapse report backend (read only).

Layout
------
    /data                         float32 (n_frames, frame_size)
    /mapping/gids                 uint32 (n_cells,) ascending
    /mapping/synapse_counts       uint32 (n_cells,)
    root attrs: start_time, end_time, timestep, data_unit, time_unit

Within a row, each cell's synapse values are contiguous and cells follow
``/mapping/gids``. A cell is laid out as a single section, so the
compartment machinery (GID filtering, frame decoding) applies unchanged.
"""

from __future__ import annotations

import logging

import h5py
import numpy as np

from simreport.domain.interfaces import ReportKind
from simreport.domain.types import GID_DTYPE, AccessMode
from simreport.plugins.base import backend_plugin
from simreport.plugins.hdf5.compartments import HDF5CompartmentBackend, HDF5CompartmentConfig


logger = logging.getLogger(__name__)

SYNAPSE_COUNT_DTYPE = np.uint32


@backend_plugin(
    name="hdf5-synapses",
    kind=ReportKind.SYNAPSES,
    description="HDF5 synapse files (/data + /mapping/synapse_counts)",
    extensions=(".h5", ".hdf5"),
    modes=frozenset({AccessMode.READ}),
    config_schema=HDF5CompartmentConfig,
)
class HDF5SynapseBackend(HDF5CompartmentBackend):
    """Per-synapse values of each cell, one frame per timestep."""

    def _read_mapping(self, mapping: h5py.Group) -> tuple[np.ndarray, list[np.ndarray]]:
        file_gids = np.asarray(mapping["gids"][...], dtype=GID_DTYPE)
        counts = np.asarray(mapping["synapse_counts"][...], dtype=SYNAPSE_COUNT_DTYPE)
        if counts.shape != file_gids.shape:
            raise ValueError(
                f"{counts.size} synapse counts for {file_gids.size} cells"
            )
        return file_gids, [counts[i:i + 1] for i in range(counts.size)]


__all__ = ["HDF5SynapseBackend", "SYNAPSE_COUNT_DTYPE"]
