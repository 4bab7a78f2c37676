"""
Conversion worker.

A worker opens the source report read-only and serves coordinator requests
until it receives ``Terminate``. Any failure is reported back as a
``WorkerFailed`` message; the coordinator decides what to do with it.
"""

from __future__ import annotations

import logging
from multiprocessing.queues import Queue

import numpy as np

from simreport.converter.protocol import (
    AssignFrame,
    EntityLayouts,
    FrameDone,
    RegisterRange,
    Terminate,
    WorkerFailed,
)
from simreport.core.compartment_report import CompartmentReport
from simreport.domain.types import VALUE_DTYPE
from simreport.shared.exceptions import ConversionError


logger = logging.getLogger(__name__)


def read_layouts(source: CompartmentReport, first: int, last: int) -> list[tuple[int, np.ndarray]]:
    """``(gid, counts)`` of the source entities at positions ``[first, last)``."""
    entities = source.entities
    counts = source.compartment_counts
    return [(int(entities[i]), np.array(counts[i])) for i in range(first, last)]


def convert_frame(source: CompartmentReport, index: int) -> tuple[float, list[tuple[int, np.ndarray]]]:
    """Reassemble frame ``index`` of ``source`` into per-entity value runs.

    Sections are visited through the source offsets, so the runs come out in
    section order for every entity regardless of how the source lays them
    out within the frame.

    Returns
    -------
    tuple[float, list[tuple[int, np.ndarray]]]
        Frame timestamp and one ``(gid, values)`` run per entity

    Raises
    ------
    ConversionError
        If the source has no frame at that index
    """
    timestamp = source.start_time + index * source.timestep
    frame = source.load_frame(timestamp)
    if frame is None:
        raise ConversionError("Source frame is missing", frame_index=index)

    runs = []
    for gid, offsets, counts in zip(source.entities, source.offsets, source.compartment_counts):
        parts = [
            frame.values[int(offset) : int(offset) + int(count)]
            for offset, count in zip(offsets, counts)
            if count > 0
        ]
        values = np.concatenate(parts) if parts else np.empty(0, dtype=VALUE_DTYPE)
        runs.append((int(gid), values))
    return frame.timestamp, runs


def worker_main(worker: int, source_uri: str, tasks: Queue, results: Queue, log_level: str = "INFO") -> None:
    """Process entry point of a conversion worker."""
    from simreport.converter.main import setup_logging

    setup_logging(log_level)
    source = None
    index = None
    try:
        source = CompartmentReport(source_uri)
        logger.debug("[Worker %d] Opened %s", worker, source_uri)
        while True:
            message = tasks.get()
            if isinstance(message, Terminate):
                break
            if isinstance(message, RegisterRange):
                results.put(EntityLayouts(worker, read_layouts(source, message.first, message.last)))
            elif isinstance(message, AssignFrame):
                index = message.index
                timestamp, runs = convert_frame(source, index)
                results.put(FrameDone(worker, index, timestamp, runs))
                index = None
            else:
                raise TypeError(f"Unexpected message: {message!r}")
    except Exception as e:
        logger.error("[Worker %d] Failed: %s", worker, e)
        results.put(WorkerFailed(worker, index, f"{type(e).__name__}: {e}"))
    finally:
        if source is not None:
            source.close()
    logger.debug("[Worker %d] Done", worker)


__all__ = ["convert_frame", "read_layouts", "worker_main"]
