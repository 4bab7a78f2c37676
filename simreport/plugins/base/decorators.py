"""Decorators for plugin development.

Provides a decorator that turns a backend class into a registrable plugin.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from simreport.domain.interfaces import PluginDescriptor, ReportKind
from simreport.domain.types import AccessMode


T = TypeVar("T")


def backend_plugin(
    name: str,
    kind: ReportKind,
    description: str = "",
    *,
    schemes: tuple[str, ...] = ("", "file"),
    extensions: tuple[str, ...] = (),
    modes: frozenset[AccessMode] | None = None,
    streaming: bool = False,
    config_schema: type | None = None,
) -> Callable[[type[T]], type[T]]:
    """Decorator to define registry metadata for a backend class.

    Sets up a ``descriptor()`` classmethod returning the PluginDescriptor,
    with the class itself as factory. The class is instantiated as
    ``cls(uri, mode, gids, options)``. A ``accepts(uri, mode)`` classmethod on
    the class, if defined, refines URI claiming.

    Example
    -------
    >>> @backend_plugin(
    ...     name="hdf5-spikes",
    ...     kind=ReportKind.SPIKES,
    ...     description="SONATA-style HDF5 spike files",
    ...     extensions=(".h5", ".hdf5"),
    ... )
    ... class HDF5SpikeBackend(FileBackendBase):
    ...     ...

    Parameters
    ----------
    name : str
        Plugin identifier
    kind : ReportKind
        Spike or compartment plugin
    description : str
        Brief description of the format
    schemes : tuple[str, ...]
        URI schemes handled
    extensions : tuple[str, ...]
        File suffixes handled
    modes : frozenset[AccessMode] | None
        Supported modes (default: all)
    streaming : bool
        Whether the backend delivers data through fetch/decode
    config_schema : type | None
        Dataclass for URI query parameter validation
    """

    def decorator(cls: type[T]) -> type[T]:
        accepts = getattr(cls, "accepts", None)
        descriptor = PluginDescriptor(
            name=name,
            kind=kind,
            factory=cls,
            schemes=schemes,
            extensions=extensions,
            modes=modes if modes is not None else frozenset(AccessMode),
            streaming=streaming,
            config_schema=config_schema,
            description=description,
            accepts=accepts if callable(accepts) else None,
        )

        cls._plugin_descriptor = descriptor  # type: ignore[attr-defined]
        cls.plugin_name = name  # type: ignore[attr-defined]

        @classmethod  # type: ignore[misc]
        def descriptor_method(cls_inner: type) -> PluginDescriptor:
            return descriptor

        cls.descriptor = descriptor_method  # type: ignore[attr-defined]
        return cls

    return decorator


__all__ = ["backend_plugin"]
