"""Configuration dataclasses for simreport."""

from simreport.config.settings import ReportSettings

__all__ = ["ReportSettings"]
