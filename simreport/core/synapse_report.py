"""
Synapse reports.

Per-synapse values (e.g. conductances) of each cell, sampled on the same
fixed time grid as compartment reports. A frame holds, cell after cell in
``entities`` order, every synapse value of that cell; ``offsets[i]`` is the
index of cell ``i``'s first value and ``counts[i]`` its number of synapses.

Synapse reports are read only: no plugin accepts a write mode, so opening
one for writing raises UnsupportedFormatError.
"""

from __future__ import annotations

import logging

import numpy as np

from simreport.core.compartment_report import CompartmentReport
from simreport.domain.interfaces import ReportKind
from simreport.domain.types import OFFSET_DTYPE, VALUE_DTYPE


logger = logging.getLogger(__name__)


class SynapseReport(CompartmentReport):
    """Report of per-synapse values sampled on a fixed time grid.

    Decoded frames are kept in a cache of ``buffer_size`` frames (at least
    one), which ``clear_cache()`` empties.

    Example
    -------
    >>> with SynapseReport("synapses.h5", gids=[3]) as report:
    ...     frame = report.load_frame(1.5)
    ...     lo = int(report.offsets[0])
    ...     cell = frame.values[lo:lo + int(report.counts[0])]
    """

    kind = ReportKind.SYNAPSES

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._buffer_frames = 0
        self.buffer_size = self._settings.buffer_size

    @property
    def counts(self) -> np.ndarray:
        """Number of synapses of each cell, in ``entities`` order."""
        return np.array([int(c[0]) for c in self._backend.counts], dtype=np.uint32)

    @property
    def offsets(self) -> np.ndarray:
        """Index of each cell's first value in a frame."""
        counts = self.counts.astype(np.int64)
        offsets = np.zeros(counts.size, dtype=OFFSET_DTYPE)
        if counts.size:
            offsets[1:] = np.cumsum(counts)[:-1]
        return offsets

    def num_synapses(self, index: int) -> int:
        """Number of values of the cell at position ``index`` of ``entities``."""
        return int(self.counts[index])

    @property
    def buffer_size(self) -> int:
        """Number of decoded frames kept in memory."""
        return self._buffer_frames

    @buffer_size.setter
    def buffer_size(self, value: int) -> None:
        value = int(value)
        if value < 1:
            raise ValueError(f"buffer_size must be >= 1, got {value}")
        self._buffer_frames = value
        frame_bytes = self.frame_size * np.dtype(VALUE_DTYPE).itemsize
        self._cache.resize(value * frame_bytes)
        logger.debug("[%s] Buffering %d frames", self.plugin_name, value)


__all__ = ["SynapseReport"]
