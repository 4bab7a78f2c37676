"""Comparison of a converted report against its source."""

from __future__ import annotations

import logging
import math
import sys
from dataclasses import dataclass, field

import numpy as np
from tqdm import tqdm

from simreport.core.compartment_report import CompartmentReport
from simreport.domain.types import NO_COMPARTMENTS


logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    """Mismatches found while comparing two reports."""

    frames_compared: int = 0
    mismatches: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches

    def add(self, message: str) -> None:
        self.mismatches.append(message)
        logger.error("[Verify] %s", message)

    def require_equal(self, what: str, expected: object, actual: object) -> None:
        if expected != actual:
            self.add(f"{what}: expected {expected!r}, got {actual!r}")

    def __bool__(self) -> bool:
        return self.ok


def _same_time(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-9)


def verify_conversion(
    input_uri: str,
    output_uri: str,
    max_frames: int | None = None,
) -> VerificationResult:
    """Re-open both reports and compare header, layout and every frame.

    Parameters
    ----------
    input_uri : str
        Source report
    output_uri : str
        Converted report
    max_frames : int | None
        Frame cap used for the conversion

    Returns
    -------
    VerificationResult
        Collected mismatches (empty when the reports agree)
    """
    result = VerificationResult()
    with CompartmentReport(input_uri) as source, CompartmentReport(output_uri) as converted:
        expected = source.metadata
        n_frames = expected.frame_count
        if max_frames is not None:
            n_frames = min(n_frames, max_frames)
        expected_end = expected.start_time + n_frames * expected.timestep
        actual = converted.metadata

        if not _same_time(expected.start_time, actual.start_time):
            result.add(f"start_time: expected {expected.start_time}, got {actual.start_time}")
        if not _same_time(expected_end, actual.end_time):
            result.add(f"end_time: expected {expected_end}, got {actual.end_time}")
        if not _same_time(expected.timestep, actual.timestep):
            result.add(f"timestep: expected {expected.timestep}, got {actual.timestep}")
        result.require_equal("data_unit", expected.data_unit, actual.data_unit)
        result.require_equal("time_unit", expected.time_unit, actual.time_unit)
        if not expected.data_unit or not expected.time_unit:
            result.add("Source report has no data or time unit")
        result.require_equal("frame_size", source.frame_size, converted.frame_size)
        result.require_equal("entities", list(source.entities), list(converted.entities))

        offsets1, offsets2 = source.offsets, converted.offsets
        counts1, counts2 = source.compartment_counts, converted.compartment_counts
        result.require_equal("offsets length", len(offsets1), len(offsets2))
        result.require_equal("counts length", len(counts1), len(counts2))
        frame_size = source.frame_size
        for i, (a, b) in enumerate(zip(offsets1, offsets2)):
            if not np.array_equal(a, b):
                result.add(f"offsets of cell #{i} differ")
            if np.any((a >= frame_size) & (a != NO_COMPARTMENTS)):
                result.add(f"offsets of cell #{i} exceed the frame size")
        for i, (a, b) in enumerate(zip(counts1, counts2)):
            if not np.array_equal(a, b):
                result.add(f"counts of cell #{i} differ")

        if not result.ok:
            return result

        for index in tqdm(
            range(n_frames),
            desc="Comparing frames",
            unit="frame",
            file=sys.stderr,
            disable=not sys.stderr.isatty(),
        ):
            timestamp = expected.start_time + index * expected.timestep
            frame1 = source.load_frame(timestamp)
            frame2 = converted.load_frame(timestamp)
            if frame1 is None or frame2 is None:
                result.add(f"frame {index} (t={timestamp}) is missing")
                continue
            if not np.array_equal(frame1.values, frame2.values):
                result.add(f"frame {index} (t={timestamp}) differs")
            result.frames_compared += 1

    if result.ok:
        logger.info("[Verify] %d frames identical", result.frames_compared)
    return result


__all__ = ["VerificationResult", "verify_conversion"]
