"""Producer/consumer buffering for stream backends."""

from simreport.infrastructure.buffer.frame_buffer import FrameBuffer


__all__ = ["FrameBuffer"]
