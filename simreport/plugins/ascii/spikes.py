"""
ASCII spike report backend.

One spike per line. ``.dat`` and ``.txt`` files store ``time gid``
(optionally preceded by a ``/scatter`` header line); ``.gdf`` files follow
the NEST convention ``gid time``. Lines starting with ``#`` or ``/`` are
ignored when reading.
"""

from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass

import numpy as np

from simreport.domain.interfaces import ReportKind
from simreport.domain.spikes import end_after
from simreport.domain.types import (
    GID_DTYPE,
    TIME_DTYPE,
    AccessMode,
    EntitySet,
    ReportMetadata,
)
from simreport.infrastructure.io.uri import ReportURI
from simreport.plugins.base import FileBackendBase, backend_plugin
from simreport.shared.exceptions import CannotOpenError


logger = logging.getLogger(__name__)

SCATTER_HEADER = "/scatter"


@dataclass
class AsciiSpikeConfig:
    """Options for ASCII spike files.

    Attributes
    ----------
    precision : int
        Significant digits of written timestamps
    header : bool
        Write the ``/scatter`` header line (``.dat`` / ``.txt`` only)
    """

    precision: int = 17
    header: bool = True


@backend_plugin(
    name="ascii-spikes",
    kind=ReportKind.SPIKES,
    description="Plain text spike files (time gid per line)",
    extensions=(".dat", ".gdf", ".txt"),
    config_schema=AsciiSpikeConfig,
)
class AsciiSpikeBackend(FileBackendBase):
    """Text spike backend. The whole file is parsed at open time."""

    def __init__(
        self,
        uri: ReportURI,
        mode: AccessMode,
        gids: EntitySet | None = None,
        options: AsciiSpikeConfig | None = None,
    ) -> None:
        super().__init__(uri, mode, gids, options or AsciiSpikeConfig())
        self._lock = threading.Lock()
        self._gid_first = uri.suffix == ".gdf"
        self._stream: io.TextIOBase | None = None
        self._times: np.ndarray | None = None
        self._gids: np.ndarray | None = None
        path = self._prepare_path()

        if mode is AccessMode.READ:
            self._times, self._gids = self._parse(path.read_text())
            if self._times.size:
                self._metadata = ReportMetadata(
                    start_time=float(self._times[0]), end_time=end_after(float(self._times[-1]))
                )
                self._entities = self._filter_entities(EntitySet(self._gids))
        else:
            try:
                self._stream = open(path, "w", encoding="utf-8")
            except OSError as e:
                raise CannotOpenError(
                    "Cannot create spike file", uri=str(uri), plugin_name=self.plugin_name, cause=e
                ) from e
            if self.options.header and not self._gid_first:
                self._stream.write(SCATTER_HEADER + "\n")
        self._mark_open()

    def _parse(self, text: str) -> tuple[np.ndarray, np.ndarray]:
        lines = [
            line for line in text.splitlines()
            if line.strip() and not line.lstrip().startswith(("#", "/"))
        ]
        if not lines:
            return np.empty(0, dtype=TIME_DTYPE), np.empty(0, dtype=GID_DTYPE)

        try:
            table = np.loadtxt(lines, ndmin=2, dtype=np.float64)
        except ValueError as e:
            raise CannotOpenError(
                "Malformed spike file", uri=str(self.uri), plugin_name=self.plugin_name, cause=e
            ) from e
        if table.shape[1] < 2:
            raise CannotOpenError(
                "Spike file needs two columns (time, gid)",
                uri=str(self.uri),
                plugin_name=self.plugin_name,
            )

        time_col, gid_col = (1, 0) if self._gid_first else (0, 1)
        times = table[:, time_col].astype(TIME_DTYPE)
        gids = table[:, gid_col].astype(GID_DTYPE)
        order = np.argsort(times, kind="stable")
        logger.debug("[%s] Parsed %d spikes from %s", self.plugin_name, times.size, self.uri)
        return times[order], gids[order]

    def load_spikes(self) -> tuple[np.ndarray, np.ndarray]:
        self._require_read("load_spikes")
        times, gids = self._times, self._gids
        if self.requested_gids is not None:
            keep = np.isin(gids, self._entities.as_array())
            times, gids = times[keep], gids[keep]
        return times, gids

    def write_spikes(self, times: np.ndarray, gids: np.ndarray) -> None:
        self._require_write("write_spikes")
        if times.size == 0:
            return
        fmt = f"%.{self.options.precision}g"
        with self._lock:
            for t, gid in zip(times, gids):
                stamp = fmt % t
                self._stream.write(f"{gid} {stamp}\n" if self._gid_first else f"{stamp} {gid}\n")

        if not self._entities:
            self._metadata = self._metadata.with_updates(start_time=float(times[0]))
        self._metadata = self._metadata.with_updates(end_time=end_after(float(times[-1])))
        self._entities = self._entities.union(gids)

    def flush(self) -> None:
        if self._stream is not None and not self._stream.closed:
            with self._lock:
                self._stream.flush()

    def _release(self) -> None:
        if self._stream is not None:
            with self._lock:
                self._stream.close()
        self._times = self._gids = None


__all__ = ["AsciiSpikeBackend", "AsciiSpikeConfig"]
