"""
HDF5 spike report backend.

Layout
------
    /spikes/timestamps   float64, resizable, sorted ascending
    /spikes/gids         uint32, resizable
    /spikes.attrs["time_unit"]

Reading decodes both datasets in one pass; the report keeps the decoded
arrays so repeated windowed reads do no further I/O.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

import h5py
import numpy as np

from simreport.domain.interfaces import ReportKind
from simreport.domain.spikes import end_after
from simreport.domain.types import (
    GID_DTYPE,
    TIME_DTYPE,
    UNDEFINED_TIME,
    AccessMode,
    EntitySet,
    ReportMetadata,
)
from simreport.infrastructure.io.uri import ReportURI
from simreport.plugins.base import FileBackendBase, backend_plugin
from simreport.shared.exceptions import CannotOpenError


logger = logging.getLogger(__name__)

SPIKES_GROUP = "spikes"
TIMESTAMPS = "timestamps"
GIDS = "gids"


@dataclass
class HDF5SpikeConfig:
    """Options for HDF5 spike files.

    Attributes
    ----------
    chunk_size : int
        Chunk length of the resizable datasets (write mode)
    time_unit : str
        Unit stored with newly written files
    """

    chunk_size: int = field(default=4096, metadata={"min": 1})
    time_unit: str = "ms"


@backend_plugin(
    name="hdf5-spikes",
    kind=ReportKind.SPIKES,
    description="HDF5 spike files (/spikes/timestamps, /spikes/gids)",
    extensions=(".h5", ".hdf5"),
    config_schema=HDF5SpikeConfig,
)
class HDF5SpikeBackend(FileBackendBase):
    """Random-access spike backend on top of h5py."""

    def __init__(
        self,
        uri: ReportURI,
        mode: AccessMode,
        gids: EntitySet | None = None,
        options: HDF5SpikeConfig | None = None,
    ) -> None:
        super().__init__(uri, mode, gids, options or HDF5SpikeConfig())
        self._lock = threading.Lock()
        path = self._prepare_path()

        try:
            if mode is AccessMode.READ:
                self._file = h5py.File(path, "r")
            else:
                self._file = h5py.File(path, "w")
        except OSError as e:
            raise CannotOpenError(
                "Cannot open HDF5 file", uri=str(uri), plugin_name=self.plugin_name, cause=e
            ) from e

        if mode is AccessMode.READ:
            self._open_existing()
        else:
            self._create_layout()
        self._mark_open()

    def _open_existing(self) -> None:
        group = self._file.get(SPIKES_GROUP)
        if not isinstance(group, h5py.Group) or TIMESTAMPS not in group or GIDS not in group:
            self._file.close()
            raise CannotOpenError(
                "Not a spike report (missing /spikes/timestamps or /spikes/gids)",
                uri=str(self.uri),
                plugin_name=self.plugin_name,
            )

        self._times_ds = group[TIMESTAMPS]
        self._gids_ds = group[GIDS]
        if self._times_ds.shape != self._gids_ds.shape:
            self._file.close()
            raise CannotOpenError(
                "Corrupted spike report (timestamps and gids differ in length)",
                uri=str(self.uri),
                plugin_name=self.plugin_name,
            )

        time_unit = group.attrs.get("time_unit", "ms")
        if isinstance(time_unit, bytes):
            time_unit = time_unit.decode()

        n_spikes = self._times_ds.shape[0]
        if n_spikes:
            start = float(self._times_ds[0])
            end = end_after(float(self._times_ds[n_spikes - 1]))
            self._entities = self._filter_entities(EntitySet(self._gids_ds[...]))
        else:
            start = end = UNDEFINED_TIME
        self._metadata = ReportMetadata(start_time=start, end_time=end, time_unit=str(time_unit))

        logger.debug(
            "[%s] Opened %s: %d spikes, %d cells", self.plugin_name, self.uri, n_spikes,
            len(self._entities),
        )

    def _create_layout(self) -> None:
        chunk = (self.options.chunk_size,)
        group = self._file.create_group(SPIKES_GROUP)
        self._times_ds = group.create_dataset(
            TIMESTAMPS, shape=(0,), maxshape=(None,), dtype=TIME_DTYPE, chunks=chunk
        )
        self._gids_ds = group.create_dataset(
            GIDS, shape=(0,), maxshape=(None,), dtype=GID_DTYPE, chunks=chunk
        )
        group.attrs["time_unit"] = self.options.time_unit
        self._metadata = ReportMetadata(time_unit=self.options.time_unit)

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #
    def load_spikes(self) -> tuple[np.ndarray, np.ndarray]:
        """Decode all spikes visible through the GID filter."""
        self._require_read("load_spikes")
        with self._lock:
            times = np.asarray(self._times_ds[...], dtype=TIME_DTYPE)
            gids = np.asarray(self._gids_ds[...], dtype=GID_DTYPE)

        if times.size > 1 and np.any(np.diff(times) < 0):
            order = np.argsort(times, kind="stable")
            times, gids = times[order], gids[order]

        if self.requested_gids is not None:
            keep = np.isin(gids, self._entities.as_array())
            times, gids = times[keep], gids[keep]
        return times, gids

    # ------------------------------------------------------------------ #
    # Write
    # ------------------------------------------------------------------ #
    def write_spikes(self, times: np.ndarray, gids: np.ndarray) -> None:
        """Append a time-sorted batch."""
        self._require_write("write_spikes")
        if times.size == 0:
            return

        with self._lock:
            n = self._times_ds.shape[0]
            self._times_ds.resize((n + times.size,))
            self._gids_ds.resize((n + times.size,))
            self._times_ds[n:] = times
            self._gids_ds[n:] = gids

        start = self._metadata.start_time if n else float(times[0])
        self._metadata = self._metadata.with_updates(
            start_time=start, end_time=end_after(float(times[-1]))
        )
        self._entities = self._entities.union(gids)

    def flush(self) -> None:
        if self.mode.is_write and self.is_open:
            with self._lock:
                self._file.flush()

    def _release(self) -> None:
        with self._lock:
            if self._file.id.valid:
                self._file.close()


__all__ = ["HDF5SpikeBackend", "HDF5SpikeConfig"]
