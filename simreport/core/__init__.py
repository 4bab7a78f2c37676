"""
Report engine.

- Report: common contract over file and stream backends
- SpikeReport / CompartmentReport: spike and compartment reports
- SynapseReport: read-only per-synapse values on the compartment machinery
- StreamReader: frame buffer + producer thread of stream reads
"""

from __future__ import annotations

import os
from collections.abc import Iterable

from simreport.config.settings import ReportSettings
from simreport.core.compartment_report import CompartmentReport
from simreport.core.report import Report
from simreport.core.spike_report import SpikeReport
from simreport.core.stream_reader import StreamReader
from simreport.core.synapse_report import SynapseReport
from simreport.domain.types import AccessMode


def open_spike_report(
    uri: str | os.PathLike[str],
    mode: AccessMode | str = AccessMode.READ,
    gids: Iterable[int] | None = None,
    *,
    settings: ReportSettings | None = None,
    **options,
) -> SpikeReport:
    """Open a spike report, selecting the backend from the URI."""
    return SpikeReport(uri, mode, gids, settings=settings, **options)


def open_compartment_report(
    uri: str | os.PathLike[str],
    mode: AccessMode | str = AccessMode.READ,
    gids: Iterable[int] | None = None,
    *,
    settings: ReportSettings | None = None,
    **options,
) -> CompartmentReport:
    """Open a compartment report, selecting the backend from the URI."""
    return CompartmentReport(uri, mode, gids, settings=settings, **options)


def open_synapse_report(
    uri: str | os.PathLike[str],
    gids: Iterable[int] | None = None,
    *,
    settings: ReportSettings | None = None,
    **options,
) -> SynapseReport:
    """Open a synapse report for reading, selecting the backend from the URI."""
    return SynapseReport(uri, AccessMode.READ, gids, settings=settings, **options)


__all__ = [
    "CompartmentReport",
    "Report",
    "SpikeReport",
    "StreamReader",
    "SynapseReport",
    "open_compartment_report",
    "open_spike_report",
    "open_synapse_report",
]
