"""Backend option validation.

Each backend plugin declares its options as a dataclass. Options reach the
backend from two places: URI query parameters, which are always strings
(``inproc://sim?buffer_size=4``), and keyword arguments of the report
constructor, which are Python values. Both are checked against the dataclass
fields here, coerced to the declared types and range-checked against the
``min`` / ``max`` entries of the field metadata.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import MISSING, Field, dataclass, field, fields, is_dataclass
from typing import Any, Union, get_args, get_origin, get_type_hints

from simreport.shared.exceptions import ConfigValidationError


logger = logging.getLogger(__name__)

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})
_NONE = frozenset({"", "none", "null"})


class _Rejected(Exception):
    """A value that cannot be coerced to the declared option type."""


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in _TRUE | _FALSE:
        return value.lower() in _TRUE
    raise _Rejected


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise _Rejected
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            raise _Rejected from None
    raise _Rejected


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise _Rejected
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            raise _Rejected from None
    raise _Rejected


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    raise _Rejected


_COERCERS: dict[type, Callable[[Any], Any]] = {
    bool: _to_bool,
    int: _to_int,
    float: _to_float,
    str: _to_str,
}


@dataclass
class ValidationResult:
    """Outcome of checking one option set against a plugin schema.

    Attributes
    ----------
    values : dict[str, Any]
        Coerced values of the options given (empty when invalid)
    errors : list[str]
        One message per rejected or missing option
    warnings : list[str]
        Options the schema does not know about
    """

    values: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def error_message(self) -> str:
        return "; ".join(self.errors)


class ConfigValidator:
    """Coerce and check backend options against a dataclass schema.

    Example
    -------
    >>> @dataclass
    ... class StreamConfig:
    ...     buffer_size: int = field(default=1, metadata={"min": 1})
    >>> ConfigValidator.build({"buffer_size": "4"}, StreamConfig)
    StreamConfig(buffer_size=4)
    """

    @classmethod
    def validate(
        cls,
        options: dict[str, Any],
        schema: type,
        *,
        plugin_name: str | None = None,
        strict: bool = False,
    ) -> ValidationResult:
        """Check ``options`` against ``schema``.

        Parameters
        ----------
        options : dict[str, Any]
            Raw option values (query strings or Python values)
        schema : type
            Plugin config dataclass
        plugin_name : str | None
            Used in log messages only
        strict : bool
            Treat unknown options as errors instead of warnings

        Returns
        -------
        ValidationResult
        """
        if not is_dataclass(schema):
            raise TypeError(f"Plugin config schema must be a dataclass, got {schema!r}")

        result = ValidationResult()
        hints = get_type_hints(schema)
        declared = {f.name: f for f in fields(schema) if f.init}

        for name in sorted(set(options) - set(declared)):
            message = f"Unknown option '{name}'"
            (result.errors if strict else result.warnings).append(message)

        for name, option in declared.items():
            if name not in options:
                if option.default is MISSING and option.default_factory is MISSING:
                    result.errors.append(f"Missing required option '{name}'")
                continue
            try:
                value = cls._coerce(options[name], hints.get(name, Any))
            except _Rejected:
                result.errors.append(
                    f"Option '{name}': cannot use {options[name]!r} as {cls._type_name(hints.get(name))}"
                )
                continue
            problem = cls._out_of_range(name, value, option)
            if problem:
                result.errors.append(problem)
            else:
                result.values[name] = value

        if result.errors:
            result.values = {}
        elif result.warnings:
            logger.debug("[%s] %s", plugin_name or "config", "; ".join(result.warnings))
        return result

    @classmethod
    def validate_or_raise(
        cls,
        options: dict[str, Any],
        schema: type,
        *,
        plugin_name: str | None = None,
    ) -> dict[str, Any]:
        """Coerced options, or ConfigValidationError listing every problem."""
        result = cls.validate(options, schema, plugin_name=plugin_name)
        if not result.valid:
            raise ConfigValidationError(result.error_message, plugin_name=plugin_name)
        for warning in result.warnings:
            logger.warning("[%s] %s (ignored)", plugin_name or "config", warning)
        return result.values

    @classmethod
    def build(
        cls,
        options: dict[str, Any],
        schema: type,
        *,
        plugin_name: str | None = None,
    ) -> Any:
        """Validate ``options`` and instantiate ``schema``; unset fields keep defaults."""
        return schema(**cls.validate_or_raise(options, schema, plugin_name=plugin_name))

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    @classmethod
    def _coerce(cls, value: Any, declared: Any) -> Any:
        if declared is Any:
            return value

        args = get_args(declared)
        if get_origin(declared) is Union or type(None) in args:
            # Optional option: a blank query value means "unset"
            if type(None) in args and (value is None or (isinstance(value, str) and value.lower() in _NONE)):
                return None
            for candidate in args:
                if candidate is type(None):
                    continue
                try:
                    return cls._coerce(value, candidate)
                except _Rejected:
                    continue
            raise _Rejected

        coercer = _COERCERS.get(declared)
        if coercer is not None:
            return coercer(value)
        if isinstance(declared, type) and isinstance(value, declared):
            return value
        raise _Rejected

    @staticmethod
    def _out_of_range(name: str, value: Any, option: Field) -> str | None:
        if value is None:
            return None
        low = option.metadata.get("min")
        high = option.metadata.get("max")
        if low is not None and value < low:
            return f"Option '{name}' must be >= {low}, got {value}"
        if high is not None and value > high:
            return f"Option '{name}' must be <= {high}, got {value}"
        return None

    @staticmethod
    def _type_name(declared: Any) -> str:
        return getattr(declared, "__name__", None) or str(declared)


__all__ = ["ConfigValidator", "ValidationResult"]
