"""Domain interfaces (protocols) for dependency inversion.

This module defines the capability contracts between reports and backend
plugins:
- SpikeBackend / CompartmentBackend: common accessors and write path
- RandomAccess* variants: file backends decoded on demand
- StreamBackend: ordered, blocking delivery of raw messages
- PluginDescriptor: registry entry describing one concrete backend

Reports depend only on these protocols, never on a container's byte layout.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

from simreport.domain.types import AccessMode


if TYPE_CHECKING:
    from simreport.domain.frames import Frame
    from simreport.domain.types import EntitySet, ReportMetadata
    from simreport.infrastructure.io.uri import ReportURI


class ReportKind(Enum):
    """Kind of per-entity time series a plugin handles."""

    SPIKES = auto()
    COMPARTMENTS = auto()
    SYNAPSES = auto()


# ============================================================================
# Stream messages
# ============================================================================


@dataclass(frozen=True)
class SpikeBatch:
    """A decoded batch of spikes, sorted by time.

    ``horizon`` is the highest timestamp the producer had emitted when the
    batch was sent. It can exceed the last time of a batch thinned out by a
    GID filter, and is what advances the reader's lookahead.
    """

    times: np.ndarray
    gids: np.ndarray
    horizon: float | None = None

    @property
    def last_time(self) -> float | None:
        if self.horizon is not None:
            return self.horizon
        return float(self.times[-1]) if self.times.size else None

    def __len__(self) -> int:
        return int(self.times.size)


class _EndOfStream:
    """Sentinel returned by StreamBackend.decode() when the producer closed."""

    _instance: _EndOfStream | None = None

    def __new__(cls) -> _EndOfStream:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


# ============================================================================
# Backend protocols
# ============================================================================


@runtime_checkable
class ReportBackend(Protocol):
    """Accessors every backend provides once opened."""

    @property
    def metadata(self) -> ReportMetadata:
        """Current report header (fields may be UNDEFINED_TIME for streams)."""
        ...

    @property
    def entities(self) -> EntitySet:
        """GIDs visible through this backend."""
        ...

    def flush(self) -> None:
        """Push buffered writes to storage / transport."""
        ...

    def close(self) -> None:
        """Release handles. Safe to call more than once."""
        ...


@runtime_checkable
class RandomAccessSpikeBackend(ReportBackend, Protocol):
    """File-based spike backend decoded on demand."""

    def load_spikes(self) -> tuple[np.ndarray, np.ndarray]:
        """Decode every spike: time-sorted ``(times, gids)`` arrays."""
        ...

    def write_spikes(self, times: np.ndarray, gids: np.ndarray) -> None:
        """Encode a time-sorted batch of spikes."""
        ...


@runtime_checkable
class RandomAccessCompartmentBackend(ReportBackend, Protocol):
    """File-based compartment backend with random frame access."""

    @property
    def offsets(self) -> list[np.ndarray]: ...

    @property
    def counts(self) -> list[np.ndarray]: ...

    def load_frames(self, first: int, count: int) -> np.ndarray:
        """Decode ``count`` frames starting at frame index ``first``.

        Returns
        -------
        np.ndarray
            ``(count, frame_size)`` float32 array in the backend's layout
        """
        ...

    def write_header(self, metadata: ReportMetadata) -> None: ...

    def write_mapping(self, gids: EntitySet, counts: Sequence[np.ndarray]) -> None: ...

    def write_frame(self, index: int, timestamp: float, values: np.ndarray) -> None: ...


@runtime_checkable
class StreamBackend(ReportBackend, Protocol):
    """Stream-based backend: ordered, blocking message delivery.

    ``fetch`` returns a raw transport message (or None on poll timeout);
    ``decode`` turns it into a SpikeBatch, a Frame, or END_OF_STREAM.
    Splitting the two lets the reader retry a failed decode without losing
    the message.
    """

    def fetch(self, timeout: float) -> Any | None: ...

    def decode(self, message: Any) -> SpikeBatch | Frame | _EndOfStream | None: ...


# ============================================================================
# Plugin descriptors
# ============================================================================


@dataclass
class PluginDescriptor:
    """Registry entry for one concrete backend.

    Attributes
    ----------
    name : str
        Plugin identifier (e.g. "hdf5-spikes")
    kind : ReportKind
        Spike or compartment plugin
    factory : Callable
        Called as ``factory(uri, mode, gids, config)`` to open a backend
    schemes : tuple[str, ...]
        URI schemes handled ("" / "file" for plain paths)
    extensions : tuple[str, ...]
        File suffixes handled (empty means any)
    modes : frozenset[AccessMode]
        Supported access modes
    streaming : bool
        Whether the backend delivers data through fetch/decode
    config_schema : type | None
        Dataclass validated against URI query parameters
    description : str
        Human readable summary
    """

    name: str
    kind: ReportKind
    factory: Callable[..., Any]
    schemes: tuple[str, ...] = ("", "file")
    extensions: tuple[str, ...] = ()
    modes: frozenset[AccessMode] = field(
        default_factory=lambda: frozenset(AccessMode)
    )
    streaming: bool = False
    config_schema: type | None = None
    description: str = ""
    accepts: Callable[[ReportURI, AccessMode], bool] | None = None

    def claims(self, uri: ReportURI, mode: AccessMode) -> bool:
        """Whether this plugin handles the URI in the given mode."""
        if mode not in self.modes:
            return False
        if uri.scheme not in self.schemes:
            return False
        if self.extensions and uri.suffix not in self.extensions:
            return False
        if self.accepts is not None:
            return self.accepts(uri, mode)
        return True


__all__ = [
    "END_OF_STREAM",
    "PluginDescriptor",
    "RandomAccessCompartmentBackend",
    "RandomAccessSpikeBackend",
    "ReportBackend",
    "ReportKind",
    "SpikeBatch",
    "StreamBackend",
]
