"""Plain text spike backend."""

from simreport.plugins.ascii.spikes import AsciiSpikeBackend, AsciiSpikeConfig

__all__ = ["AsciiSpikeBackend", "AsciiSpikeConfig"]
