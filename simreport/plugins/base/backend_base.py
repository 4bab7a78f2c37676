"""Base classes for backend plugins.

Provides sensible defaults for implementing the backend protocols of
``simreport.domain.interfaces``: lifecycle handling, entity filtering,
access mode checks and file destination preparation.
"""

from __future__ import annotations

import logging
from abc import ABC
from pathlib import Path
from typing import Any

from simreport.domain.lifecycle import LifecycleMixin
from simreport.domain.types import AccessMode, EntitySet, ReportMetadata
from simreport.infrastructure.io.uri import ReportURI
from simreport.shared.exceptions import (
    BackendFailureError,
    CannotOpenError,
    InvalidModeError,
)

logger = logging.getLogger(__name__)


class BackendBase(LifecycleMixin, ABC):
    """Base class for backend plugins.

    Provides:
    - Lifecycle management via LifecycleMixin
    - metadata / entities accessors
    - GID filter handling (intersection with the available set)
    - Access mode guards

    Subclasses open their handles in ``__init__``, then call
    ``self._mark_open()``, and free them in ``_release()``.
    """

    plugin_name: str = "backend"

    def __init__(
        self,
        uri: ReportURI,
        mode: AccessMode,
        gids: EntitySet | None = None,
        options: Any = None,
    ) -> None:
        super().__init__()
        self.uri = uri
        self.mode = mode
        self.requested_gids = gids
        self.options = options
        self._metadata = ReportMetadata()
        self._entities = EntitySet()

    @property
    def metadata(self) -> ReportMetadata:
        return self._metadata

    @property
    def entities(self) -> EntitySet:
        return self._entities

    def _filter_entities(self, available: EntitySet) -> EntitySet:
        """Restrict the available GIDs to the requested subset, if any."""
        if self.requested_gids is None:
            return available
        return available.intersection(self.requested_gids)

    def _require_write(self, operation: str) -> None:
        if not self.mode.is_write:
            raise InvalidModeError(
                "Operation requires a report opened for writing",
                operation=operation,
                mode=self.mode,
            )

    def _require_read(self, operation: str) -> None:
        if self.mode.is_write:
            raise InvalidModeError(
                "Operation requires a report opened for reading",
                operation=operation,
                mode=self.mode,
            )

    def _failure(
        self,
        message: str,
        cause: Exception | None = None,
        *,
        recoverable: bool = False,
    ) -> BackendFailureError:
        return BackendFailureError(
            message,
            plugin_name=self.plugin_name,
            recoverable=recoverable,
            cause=cause,
        )

    def flush(self) -> None:
        """Push buffered writes. Default: nothing buffered."""


class FileBackendBase(BackendBase):
    """Base class for file container backends.

    ``_prepare_path()`` enforces the access mode contract:

    - READ: the file must exist
    - WRITE: the destination must not exist or must be empty
    - OVERWRITE: an existing destination is replaced
    """

    def _prepare_path(self) -> Path:
        path = self.uri.path

        if self.mode is AccessMode.READ:
            if not path.is_file():
                raise CannotOpenError(
                    "Report file does not exist",
                    uri=str(self.uri),
                    plugin_name=self.plugin_name,
                )
            return path

        if not path.parent.exists() or not path.parent.is_dir():
            raise CannotOpenError(
                "Destination directory does not exist",
                uri=str(self.uri),
                plugin_name=self.plugin_name,
            )
        if path.exists():
            if self.mode is AccessMode.WRITE and (not path.is_file() or path.stat().st_size > 0):
                raise CannotOpenError(
                    "Destination exists and is not empty",
                    uri=str(self.uri),
                    plugin_name=self.plugin_name,
                )
            try:
                path.unlink()
            except OSError as e:
                raise CannotOpenError(
                    "Cannot replace destination",
                    uri=str(self.uri),
                    plugin_name=self.plugin_name,
                    cause=e,
                ) from e
            logger.debug("[%s] Replacing existing destination %s", self.plugin_name, path)
        return path


__all__ = ["BackendBase", "FileBackendBase"]
