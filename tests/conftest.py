"""Pytest configuration and shared fixtures."""

import itertools
import shutil
import tempfile
from pathlib import Path

import h5py
import numpy as np
import pytest

from simreport.plugins.stream import hub


# Compartment fixture layout: gid -> per-section counts
CELL_GIDS = [1, 2, 5]
CELL_COUNTS = [[2, 1], [3], [1, 0, 2]]
FRAME_SIZE = 9

# Synapse fixture layout: gid -> number of synapses
SYNAPSE_GIDS = [1, 4, 7]
SYNAPSE_COUNTS = [3, 0, 2]

_channel_ids = itertools.count()


def write_spike_file(path, times, gids, time_unit="ms"):
    """Write an HDF5 spike report directly with h5py."""
    with h5py.File(path, "w") as f:
        group = f.create_group("spikes")
        group.create_dataset("timestamps", data=np.asarray(times, dtype=np.float64))
        group.create_dataset("gids", data=np.asarray(gids, dtype=np.uint32))
        group.attrs["time_unit"] = time_unit
    return path


def write_compartment_file(
    path,
    *,
    start=0.0,
    end=10.0,
    step=1.0,
    gids=CELL_GIDS,
    counts=CELL_COUNTS,
    n_rows=None,
):
    """Write an HDF5 compartment report; value = frame * 100 + column."""
    frame_size = sum(sum(c) for c in counts)
    n_frames = int(round((end - start) / step))
    rows = n_frames if n_rows is None else n_rows
    data = (
        np.arange(rows, dtype=np.float32)[:, None] * 100
        + np.arange(frame_size, dtype=np.float32)[None, :]
    )
    with h5py.File(path, "w") as f:
        f.create_dataset("data", data=data)
        mapping = f.create_group("mapping")
        mapping.create_dataset("gids", data=np.asarray(gids, dtype=np.uint32))
        mapping.create_dataset(
            "sections_per_cell", data=np.array([len(c) for c in counts], dtype=np.uint32)
        )
        mapping.create_dataset(
            "section_counts",
            data=np.array([n for c in counts for n in c], dtype=np.uint16),
        )
        f.attrs["start_time"] = start
        f.attrs["end_time"] = end
        f.attrs["timestep"] = step
        f.attrs["data_unit"] = "mV"
        f.attrs["time_unit"] = "ms"
    return path


def write_synapse_file(path, *, gids=SYNAPSE_GIDS, counts=SYNAPSE_COUNTS, start=0.0, end=5.0, step=0.5):
    """Write an HDF5 synapse report; value = frame * 100 + column."""
    frame_size = sum(counts)
    n_frames = int(round((end - start) / step))
    data = (
        np.arange(n_frames, dtype=np.float32)[:, None] * 100
        + np.arange(frame_size, dtype=np.float32)[None, :]
    )
    with h5py.File(path, "w") as f:
        f.create_dataset("data", data=data)
        mapping = f.create_group("mapping")
        mapping.create_dataset("gids", data=np.asarray(gids, dtype=np.uint32))
        mapping.create_dataset("synapse_counts", data=np.asarray(counts, dtype=np.uint32))
        f.attrs["start_time"] = start
        f.attrs["end_time"] = end
        f.attrs["timestep"] = step
        f.attrs["data_unit"] = "nS"
        f.attrs["time_unit"] = "ms"
    return path


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def spike_file(temp_dir):
    """HDF5 spike report with six spikes between 0.5 and 7.0 ms."""
    return write_spike_file(
        temp_dir / "spikes.h5",
        [0.5, 1.0, 2.0, 3.5, 4.9, 7.0],
        [1, 2, 1, 3, 2, 1],
    )


@pytest.fixture
def compartment_file(temp_dir):
    """HDF5 compartment report: t = 0..10 ms, timestep 1, three cells."""
    return write_compartment_file(temp_dir / "voltages.h5")


@pytest.fixture
def synapse_file(temp_dir):
    """HDF5 synapse report: t = 0..5 ms, timestep 0.5, three cells."""
    return write_synapse_file(temp_dir / "synapses.h5")


@pytest.fixture
def channel_uri():
    """A fresh in-process stream URI."""
    return f"inproc://test-channel-{next(_channel_ids)}"


@pytest.fixture(autouse=True)
def reset_channels():
    """Forget in-process channels between tests."""
    yield
    hub.reset()
