"""
Messages exchanged between the conversion coordinator and its workers.

Coordinator -> worker (one task queue per worker):
    RegisterRange, AssignFrame, Terminate
Worker -> coordinator (shared result queue):
    EntityLayouts, FrameDone, WorkerFailed

All messages are plain picklable dataclasses; workers share no memory with
the coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True)
class RegisterRange:
    """Read the layouts of source entities ``[first, last)``."""

    first: int
    last: int


@dataclass(frozen=True)
class EntityLayouts:
    """Per-section compartment counts of a worker's entity range."""

    worker: int
    layouts: list[tuple[int, np.ndarray]] = field(default_factory=list)


@dataclass(frozen=True)
class AssignFrame:
    index: int


@dataclass(frozen=True)
class FrameDone:
    """Converted frame: ``(gid, values)`` runs in entity order."""

    worker: int
    index: int
    timestamp: float
    values: list[tuple[int, np.ndarray]] = field(default_factory=list)


@dataclass(frozen=True)
class WorkerFailed:
    worker: int
    index: int | None
    error: str


@dataclass(frozen=True)
class Terminate:
    pass


__all__ = [
    "AssignFrame",
    "EntityLayouts",
    "FrameDone",
    "RegisterRange",
    "Terminate",
    "WorkerFailed",
]
