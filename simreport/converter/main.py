"""
Compartment report converter - CLI entry point.

Converts a compartment report into another container (default ``out.h5``),
optionally with several worker processes, and can verify the result.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Annotated

import tyro

from simreport.converter.config import ConverterConfig
from simreport.converter.coordinator import convert
from simreport.converter.verify import verify_conversion
from simreport.core.compartment_report import CompartmentReport
from simreport.shared.exceptions import ReportError


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """
    Setup logging configuration.

    Parameters
    ----------
    level : str
        Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def describe_report(uri: str) -> str:
    """Human readable summary of a compartment report."""
    with CompartmentReport(uri) as report:
        metadata = report.metadata
        return (
            f"Compartment report {uri}:\n"
            f"  Time: {metadata.start_time}..{metadata.end_time} / {metadata.timestep} "
            f"{metadata.time_unit}\n"
            f"  {len(report.entities)} neurons\n"
            f"  {report.frame_size} compartments"
        )


def main(
    input: Annotated[Path, tyro.conf.Positional],
    output: Path = Path("out.h5"),
    max_frames: int | None = None,
    workers: int = 1,
    compare: bool = False,
    dump: bool = False,
    log_level: str = "INFO",
) -> int:
    """
    Convert a compartment report.

    Parameters
    ----------
    input : Path
        Source report URI
    output : Path
        Destination report URI, overwritten if it exists (default: out.h5)
    max_frames : int | None
        Convert at most this many frames (default: all)
    workers : int
        Number of worker processes; 1 converts inline (default: 1)
    compare : bool
        Compare the written report with the input afterwards
    dump : bool
        Print information about the input report; no conversion
    log_level : str
        Logging level: DEBUG, INFO, WARNING, ERROR (default: INFO)

    Returns
    -------
    int
        Process exit status: 0 on success, 1 on failure or mismatch

    Examples
    --------
    Convert with four workers and verify:
        simreport-convert voltages.h5 --output copy.h5 --workers 4 --compare

    Inspect a report:
        simreport-convert voltages.h5 --dump
    """
    setup_logging(log_level)

    try:
        config = ConverterConfig(
            input=str(input),
            output=str(output),
            max_frames=max_frames,
            workers=workers,
            compare=compare,
            dump=dump,
        )
    except ValueError as e:
        logger.error("Invalid arguments: %s", e)
        return 1

    try:
        if config.dump:
            print(describe_report(config.input))
            return 0

        summary = convert(config, log_level)
        print(
            f"Converted {summary.input} -> {summary.output} in {summary.elapsed:.3f}s "
            f"({summary.frames} frames, {summary.entities} cells, {summary.workers} worker(s))"
        )

        if config.compare:
            result = verify_conversion(config.input, config.output, config.max_frames)
            if not result.ok:
                logger.error("Verification failed with %d mismatch(es)", len(result.mismatches))
                return 1
    except ReportError as e:
        logger.error("Conversion of %s failed: %s", config.input, e)
        return 1

    return 0


def cli() -> None:
    """Entry point for the installed script."""
    sys.exit(tyro.cli(main))


if __name__ == "__main__":
    cli()
