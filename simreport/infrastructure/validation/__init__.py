"""Validation infrastructure for plugin configuration."""

from simreport.infrastructure.validation.config_validator import (
    ConfigValidator,
    ValidationResult,
)

__all__ = ["ConfigValidator", "ValidationResult"]
