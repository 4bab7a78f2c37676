"""Decoded frame caching for random-access backends."""

from simreport.infrastructure.cache.frame_cache import FrameCache


__all__ = ["FrameCache"]
