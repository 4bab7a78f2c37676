"""
Custom exceptions for simreport.

This module provides the error taxonomy shared by reports, backend plugins
and the conversion pipeline.

Clean Architecture Note:
- This file belongs to the Shared layer (cross-cutting concerns)
- Can be imported by any layer (domain, infrastructure, plugins, core)
"""

from __future__ import annotations


class ReportError(Exception):
    """Base exception for all report-related errors."""

    pass


class UnsupportedFormatError(ReportError):
    """Raised when no registered plugin claims a URI / access mode combination."""

    def __init__(self, message: str, uri: str | None = None, mode: object = None):
        """
        Initialize UnsupportedFormatError.

        Parameters
        ----------
        message : str
            Error message
        uri : str | None
            URI that could not be resolved
        mode : AccessMode | None
            Requested access mode
        """
        self.uri = uri
        self.mode = mode

        full_message = message
        if uri:
            full_message = f"{full_message} (uri: {uri})"
        if mode is not None:
            full_message = f"{full_message} (mode: {getattr(mode, 'name', mode)})"

        super().__init__(full_message)


class CannotOpenError(ReportError):
    """Raised when the matched plugin fails to open its source or destination.

    Covers missing files, corrupted containers, unwritable destinations and
    handshake failures on streams.
    """

    def __init__(
        self,
        message: str,
        uri: str | None = None,
        plugin_name: str | None = None,
        *,
        cause: Exception | None = None,
    ):
        self.uri = uri
        self.plugin_name = plugin_name
        self.cause = cause

        full_message = message
        if plugin_name:
            full_message = f"[{plugin_name}] {full_message}"
        if uri:
            full_message = f"{full_message} (uri: {uri})"
        if cause:
            full_message = f"{full_message} (caused by: {cause})"

        super().__init__(full_message)


class ConfigValidationError(CannotOpenError):
    """Raised when plugin configuration (URI query parameters) is invalid.

    Not recoverable without fixing the configuration.
    """

    def __init__(
        self,
        message: str,
        plugin_name: str | None = None,
        field_name: str | None = None,
        expected_type: type | None = None,
        actual_value: object = None,
        *,
        cause: Exception | None = None,
    ):
        self.field_name = field_name
        self.expected_type = expected_type
        self.actual_value = actual_value

        full_message = message
        if field_name:
            full_message = f"{full_message} (field: {field_name})"
        if expected_type is not None:
            full_message = f"{full_message} (expected: {expected_type.__name__})"

        super().__init__(full_message, plugin_name=plugin_name, cause=cause)


class InvalidModeError(ReportError):
    """Raised when an operation is not legal for the report's access mode."""

    def __init__(self, message: str, operation: str | None = None, mode: object = None):
        """
        Initialize InvalidModeError.

        Parameters
        ----------
        message : str
            Error message
        operation : str | None
            Name of the rejected operation (e.g., 'write', 'read')
        mode : AccessMode | None
            Access mode the report was opened with
        """
        self.operation = operation
        self.mode = mode

        full_message = message
        if operation:
            full_message = f"{full_message} (operation: {operation})"
        if mode is not None:
            full_message = f"{full_message} (mode: {getattr(mode, 'name', mode)})"

        super().__init__(full_message)


class OutOfOrderError(ReportError):
    """Raised when written spike timestamps are not strictly increasing."""

    def __init__(
        self,
        message: str,
        timestamp: float | None = None,
        last_timestamp: float | None = None,
    ):
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp

        full_message = message
        if timestamp is not None and last_timestamp is not None:
            full_message = f"{full_message} (got: {timestamp}, last written: {last_timestamp})"
        elif timestamp is not None:
            full_message = f"{full_message} (got: {timestamp})"

        super().__init__(full_message)


class BackendFailureError(ReportError):
    """Raised when the underlying I/O or transport fails.

    Carries a 'recoverable' flag indicating whether the operation can be
    retried (e.g. a transient decode hiccup) or must propagate.
    """

    def __init__(
        self,
        message: str,
        plugin_name: str | None = None,
        *,
        recoverable: bool = False,
        cause: Exception | None = None,
    ):
        self.plugin_name = plugin_name
        self.recoverable = recoverable
        self.cause = cause

        full_message = message
        if plugin_name:
            full_message = f"[{plugin_name}] {full_message}"
        if cause:
            full_message = f"{full_message} (caused by: {cause})"

        super().__init__(full_message)


class ConversionError(ReportError):
    """Raised when the frame conversion pipeline aborts."""

    def __init__(
        self,
        message: str,
        worker: int | None = None,
        frame_index: int | None = None,
    ):
        self.worker = worker
        self.frame_index = frame_index

        full_message = message
        if worker is not None:
            full_message = f"{full_message} (worker: {worker})"
        if frame_index is not None:
            full_message = f"{full_message} (frame: {frame_index})"

        super().__init__(full_message)
