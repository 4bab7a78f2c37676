"""Ordered registry of report backend plugins.

This module provides a registry that combines:
- Plugin registration (ordered, first match wins)
- URI + access mode based selection
- Validated plugin creation with config checking
- Entry point discovery

One registry exists per report kind (spikes, compartments).
"""

from __future__ import annotations

import logging
import os
from importlib.metadata import entry_points
from typing import Any

from simreport.domain.interfaces import PluginDescriptor, ReportKind
from simreport.domain.types import AccessMode, EntitySet
from simreport.infrastructure.io.uri import ReportURI
from simreport.infrastructure.validation.config_validator import ConfigValidator
from simreport.shared.exceptions import (
    CannotOpenError,
    ReportError,
    UnsupportedFormatError,
)


logger = logging.getLogger(__name__)


class PluginRegistry:
    """Ordered registry of backend plugins for one report kind.

    Selection is first match in registration order; there is no priority
    negotiation. Callers never need to change when a plugin is added.

    Example
    -------
    >>> registry = PluginRegistry(ReportKind.SPIKES, "simreport.spike_plugins")
    >>> registry.register(PluginDescriptor(
    ...     name="hdf5-spikes",
    ...     kind=ReportKind.SPIKES,
    ...     factory=HDF5SpikeBackend,
    ...     extensions=(".h5",),
    ... ))
    >>> backend = registry.open("/data/out.h5", AccessMode.READ)
    """

    def __init__(self, kind: ReportKind, entry_point_group: str | None = None) -> None:
        self.kind = kind
        self.entry_point_group = entry_point_group
        self._plugins: list[PluginDescriptor] = []
        self._entry_points_loaded = False

    def register(self, descriptor: PluginDescriptor) -> None:
        """Register a backend plugin.

        Re-registering a name replaces the previous descriptor in place,
        keeping its position in the selection order.

        Raises
        ------
        TypeError
            If the descriptor is for another report kind or has no factory
        """
        if descriptor.kind is not self.kind:
            raise TypeError(
                f"Plugin '{descriptor.name}' is a {descriptor.kind.name} plugin, "
                f"registry holds {self.kind.name} plugins"
            )
        if not callable(descriptor.factory):
            raise TypeError(f"Plugin '{descriptor.name}' factory is not callable")

        for i, existing in enumerate(self._plugins):
            if existing.name == descriptor.name:
                self._plugins[i] = descriptor
                logger.debug("Replaced %s plugin: %s", self.kind.name.lower(), descriptor.name)
                return

        self._plugins.append(descriptor)
        logger.debug(
            "Registered %s plugin: %s (%s) - schemes: %s, extensions: %s",
            self.kind.name.lower(),
            descriptor.name,
            descriptor.description,
            descriptor.schemes,
            descriptor.extensions,
        )

    def unregister(self, name: str) -> bool:
        """Remove a plugin by name. Returns True if it was registered."""
        before = len(self._plugins)
        self._plugins = [p for p in self._plugins if p.name != name]
        return len(self._plugins) != before

    def get(self, name: str) -> PluginDescriptor | None:
        """Get a registered plugin by name."""
        self._load_entry_points()
        for descriptor in self._plugins:
            if descriptor.name == name:
                return descriptor
        return None

    def select(
        self,
        uri: str | os.PathLike[str] | ReportURI,
        mode: AccessMode | str = AccessMode.READ,
    ) -> PluginDescriptor:
        """Find the first plugin claiming the URI in the given mode.

        Raises
        ------
        UnsupportedFormatError
            If no plugin claims the URI/mode combination
        """
        self._load_entry_points()
        parsed = ReportURI.parse(uri)
        mode = AccessMode.parse(mode)

        for descriptor in self._plugins:
            try:
                if descriptor.claims(parsed, mode):
                    logger.debug("Selected plugin '%s' for %s", descriptor.name, parsed)
                    return descriptor
            except Exception as e:
                logger.debug(
                    "Plugin '%s' claim check failed for '%s': %s", descriptor.name, parsed, e
                )
                continue

        raise UnsupportedFormatError(
            f"No {self.kind.name.lower()} plugin handles this report",
            uri=parsed.raw,
            mode=mode,
        )

    def open(
        self,
        uri: str | os.PathLike[str] | ReportURI,
        mode: AccessMode | str = AccessMode.READ,
        gids: EntitySet | None = None,
        **config: Any,
    ) -> tuple[PluginDescriptor, Any]:
        """Select a plugin and open a backend instance.

        URI query parameters and keyword arguments are merged (keywords win)
        and validated against the plugin's config schema.

        Returns
        -------
        tuple[PluginDescriptor, Any]
            The selected descriptor and the opened backend

        Raises
        ------
        UnsupportedFormatError
            If no plugin claims the URI
        CannotOpenError
            If the plugin fails to open (including invalid configuration)
        """
        parsed = ReportURI.parse(uri)
        mode = AccessMode.parse(mode)
        descriptor = self.select(parsed, mode)

        options: Any = None
        if descriptor.config_schema is not None:
            options = ConfigValidator.build(
                {**parsed.query, **config},
                descriptor.config_schema,
                plugin_name=descriptor.name,
            )

        try:
            backend = descriptor.factory(parsed, mode, gids, options)
        except CannotOpenError:
            raise
        except ReportError as e:
            raise CannotOpenError(
                str(e), uri=parsed.raw, plugin_name=descriptor.name, cause=e
            ) from e
        except Exception as e:
            raise CannotOpenError(
                "Failed to open report",
                uri=parsed.raw,
                plugin_name=descriptor.name,
                cause=e,
            ) from e

        logger.info("Opened %s (%s, %s)", parsed, descriptor.name, mode.name)
        return descriptor, backend

    def list_all(self) -> list[PluginDescriptor]:
        """All registered descriptors in selection order."""
        self._load_entry_points()
        return list(self._plugins)

    def names(self) -> list[str]:
        """Registered plugin names in selection order."""
        self._load_entry_points()
        return [p.name for p in self._plugins]

    def clear(self) -> None:
        """Clear all registered plugins (for testing)."""
        self._plugins.clear()
        self._entry_points_loaded = False

    # Entry point discovery

    def _load_entry_points(self) -> None:
        """Load plugins from entry_points (lazy, called once).

        An entry point resolves either to a PluginDescriptor or to a
        zero-argument callable returning one.
        """
        if self._entry_points_loaded or self.entry_point_group is None:
            return

        self._entry_points_loaded = True

        for ep in entry_points(group=self.entry_point_group):
            try:
                loaded = ep.load()
                descriptor = loaded if isinstance(loaded, PluginDescriptor) else loaded()
                if self.get_registered(descriptor.name) is None:
                    self.register(descriptor)
                    logger.debug("Loaded plugin from entry_point: %s", ep.name)
            except Exception as e:
                logger.warning(
                    "Failed to load plugin entry_point '%s': %s",
                    ep.name,
                    e,
                )

    def get_registered(self, name: str) -> PluginDescriptor | None:
        """Lookup without triggering entry point discovery."""
        for descriptor in self._plugins:
            if descriptor.name == name:
                return descriptor
        return None


__all__ = ["PluginRegistry"]
