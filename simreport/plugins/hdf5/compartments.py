"""
HDF5 compartment report backend.

Layout
------
    /data                         float32 (n_frames, frame_size)
    /mapping/gids                 uint32 (n_cells,) ascending
    /mapping/sections_per_cell    uint32 (n_cells,)
    /mapping/section_counts       uint16 (sum(sections_per_cell),)
    root attrs: start_time, end_time, timestep, data_unit, time_unit

Row ``i`` of ``/data`` holds the frame at ``start_time + i * timestep``;
within a row, cells follow ``/mapping/gids`` and sections follow their
counts.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

import h5py
import numpy as np

from simreport.domain.interfaces import ReportKind
from simreport.domain.types import (
    COUNT_DTYPE,
    GID_DTYPE,
    VALUE_DTYPE,
    AccessMode,
    EntitySet,
    ReportMetadata,
    compute_offsets,
)
from simreport.infrastructure.io.uri import ReportURI
from simreport.plugins.base import FileBackendBase, backend_plugin
from simreport.shared.exceptions import CannotOpenError


logger = logging.getLogger(__name__)

HEADER_ATTRS = ("start_time", "end_time", "timestep", "data_unit", "time_unit")


@dataclass
class HDF5CompartmentConfig:
    """Options for HDF5 compartment files.

    Attributes
    ----------
    chunk_frames : int
        Frames per chunk of ``/data`` (write mode)
    compression : str | None
        h5py compression filter for ``/data`` (e.g. "gzip")
    """

    chunk_frames: int = field(default=1, metadata={"min": 1})
    compression: str | None = None


def _attr_str(value: object) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


@backend_plugin(
    name="hdf5-compartments",
    kind=ReportKind.COMPARTMENTS,
    description="HDF5 compartment files (/data + /mapping)",
    extensions=(".h5", ".hdf5"),
    config_schema=HDF5CompartmentConfig,
)
class HDF5CompartmentBackend(FileBackendBase):
    """Random-access compartment backend on top of h5py.

    With a GID filter, frames are decoded as full rows and narrowed to the
    selected cells' columns, so offsets always describe the filtered layout.
    """

    def __init__(
        self,
        uri: ReportURI,
        mode: AccessMode,
        gids: EntitySet | None = None,
        options: HDF5CompartmentConfig | None = None,
    ) -> None:
        super().__init__(uri, mode, gids, options or HDF5CompartmentConfig())
        self._lock = threading.Lock()
        self._counts: list[np.ndarray] = []
        self._offsets: list[np.ndarray] = []
        self._columns: np.ndarray | None = None
        self._data: h5py.Dataset | None = None
        path = self._prepare_path()

        try:
            self._file = h5py.File(path, "r" if mode is AccessMode.READ else "w")
        except OSError as e:
            raise CannotOpenError(
                "Cannot open HDF5 file", uri=str(uri), plugin_name=self.plugin_name, cause=e
            ) from e

        if mode is AccessMode.READ:
            try:
                self._open_existing()
            except (KeyError, ValueError) as e:
                self._file.close()
                raise CannotOpenError(
                    "Corrupted compartment report",
                    uri=str(uri),
                    plugin_name=self.plugin_name,
                    cause=e,
                ) from e
        self._mark_open()

    def _open_existing(self) -> None:
        if "data" not in self._file or "mapping" not in self._file:
            raise KeyError("missing /data or /mapping")

        file_gids, per_cell = self._read_mapping(self._file["mapping"])
        cell_sizes = np.array([int(c.sum(dtype=np.int64)) for c in per_cell], dtype=np.int64)
        cell_starts = np.concatenate(([0], np.cumsum(cell_sizes)[:-1])) if cell_sizes.size else cell_sizes

        self._data = self._file["data"]
        full_size = int(cell_sizes.sum())
        if self._data.ndim != 2 or self._data.shape[1] != full_size:
            raise ValueError(
                f"/data has shape {self._data.shape}, mapping describes {full_size} values per frame"
            )

        selected = self._filter_entities(EntitySet(file_gids))
        positions = {int(g): i for i, g in enumerate(file_gids)}
        rows = [positions[gid] for gid in selected]

        self._counts = []
        for row in rows:
            counts = per_cell[row].copy()
            counts.setflags(write=False)
            self._counts.append(counts)
        self._offsets = compute_offsets(self._counts)

        if rows != list(range(file_gids.size)):
            self._columns = np.concatenate(
                [np.arange(cell_starts[r], cell_starts[r] + cell_sizes[r]) for r in rows]
            ).astype(np.int64) if rows else np.empty(0, dtype=np.int64)

        attrs = self._file.attrs
        self._entities = selected
        self._metadata = ReportMetadata(
            start_time=float(attrs["start_time"]),
            end_time=float(attrs["end_time"]),
            timestep=float(attrs["timestep"]),
            data_unit=_attr_str(attrs.get("data_unit", "")),
            time_unit=_attr_str(attrs.get("time_unit", "ms")),
            frame_size=int(sum(int(c.sum(dtype=np.int64)) for c in self._counts)),
        )
        logger.debug(
            "[%s] Opened %s: %d frames, %d cells, frame_size=%d",
            self.plugin_name,
            self.uri,
            self._data.shape[0],
            len(selected),
            self._metadata.frame_size,
        )

    def _read_mapping(self, mapping: h5py.Group) -> tuple[np.ndarray, list[np.ndarray]]:
        """File GIDs and, per cell, its section counts."""
        file_gids = np.asarray(mapping["gids"][...], dtype=GID_DTYPE)
        sections = np.asarray(mapping["sections_per_cell"][...], dtype=np.int64)
        flat_counts = np.asarray(mapping["section_counts"][...], dtype=COUNT_DTYPE)
        if sections.size != file_gids.size or int(sections.sum()) != flat_counts.size:
            raise ValueError("inconsistent mapping tables")
        per_cell = np.split(flat_counts, np.cumsum(sections)[:-1]) if sections.size else []
        return file_gids, per_cell

    # ------------------------------------------------------------------ #
    # Layout
    # ------------------------------------------------------------------ #
    @property
    def offsets(self) -> list[np.ndarray]:
        return self._offsets

    @property
    def counts(self) -> list[np.ndarray]:
        return self._counts

    @property
    def frame_count(self) -> int:
        """Rows stored in ``/data``."""
        return 0 if self._data is None else int(self._data.shape[0])

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #
    def load_frames(self, first: int, count: int) -> np.ndarray:
        """Decode ``count`` frames from row ``first`` in the filtered layout."""
        self._require_read("load_frames")
        with self._lock:
            block = np.asarray(self._data[first:first + count], dtype=VALUE_DTYPE)
        if self._columns is not None:
            block = block[:, self._columns]
        return block

    # ------------------------------------------------------------------ #
    # Write
    # ------------------------------------------------------------------ #
    def write_header(self, metadata: ReportMetadata) -> None:
        self._require_write("write_header")
        with self._lock:
            for name in HEADER_ATTRS:
                self._file.attrs[name] = getattr(metadata, name)
        self._metadata = metadata

    def write_mapping(self, gids: EntitySet, counts: Sequence[np.ndarray]) -> None:
        """Store the cell layout and allocate ``/data``."""
        self._require_write("write_mapping")
        if self._data is not None:
            raise self._failure("Entity mapping already written")

        self._counts = [np.asarray(c, dtype=COUNT_DTYPE) for c in counts]
        self._offsets = compute_offsets(self._counts)
        self._entities = gids
        frame_size = int(sum(int(c.sum(dtype=np.int64)) for c in self._counts))
        n_frames = self._metadata.frame_count
        self._metadata = self._metadata.with_updates(frame_size=frame_size)

        flat = (
            np.concatenate(self._counts).astype(COUNT_DTYPE)
            if self._counts
            else np.empty(0, dtype=COUNT_DTYPE)
        )
        chunks = None
        if n_frames and frame_size:
            chunks = (min(self.options.chunk_frames, n_frames), frame_size)

        with self._lock:
            mapping = self._file.create_group("mapping")
            mapping.create_dataset("gids", data=gids.as_array().astype(GID_DTYPE))
            mapping.create_dataset(
                "sections_per_cell",
                data=np.array([c.size for c in self._counts], dtype=np.uint32),
            )
            mapping.create_dataset("section_counts", data=flat)
            self._data = self._file.create_dataset(
                "data",
                shape=(n_frames, frame_size),
                dtype=VALUE_DTYPE,
                chunks=chunks,
                compression=self.options.compression if chunks else None,
                fillvalue=0.0,
            )
        logger.debug(
            "[%s] Allocated %d frames x %d values", self.plugin_name, n_frames, frame_size
        )

    def write_frame(self, index: int, timestamp: float, values: np.ndarray) -> None:
        self._require_write("write_frame")
        if self._data is None:
            raise self._failure("Frames written before the entity mapping")
        if not 0 <= index < self._data.shape[0]:
            raise self._failure(
                f"Frame index {index} (t={timestamp}) outside the report's "
                f"{self._data.shape[0]} frames"
            )
        with self._lock:
            self._data[index, :] = values

    def flush(self) -> None:
        if self.mode.is_write and self.is_open:
            with self._lock:
                self._file.flush()

    def _release(self) -> None:
        with self._lock:
            if self._file.id.valid:
                self._file.close()


__all__ = ["HDF5CompartmentBackend", "HDF5CompartmentConfig"]
