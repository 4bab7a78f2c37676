"""
Message encoding for the in-process stream transport.

Payloads are plain bytes so that nothing a subscriber receives aliases the
publisher's arrays.

Kinds
-----
header  JSON: report metadata plus the (filtered) cell mapping
spikes  float64 horizon followed by packed ``(time <f8, gid <u4)`` records
frame   float64 timestamp followed by float32 values
end     empty; the publisher closed the stream
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from simreport.domain.frames import Frame
from simreport.domain.interfaces import SpikeBatch
from simreport.domain.types import (
    COUNT_DTYPE,
    GID_DTYPE,
    TIME_DTYPE,
    EntitySet,
    ReportMetadata,
)


HEADER = "header"
SPIKES = "spikes"
FRAME = "frame"
END = "end"

SPIKE_RECORD = np.dtype([("time", "<f8"), ("gid", "<u4")])
_STAMP = np.dtype("<f8")


@dataclass(frozen=True)
class StreamMessage:
    """One transport message."""

    kind: str
    payload: bytes = b""


END_MESSAGE = StreamMessage(END)


def encode_spikes(times: np.ndarray, gids: np.ndarray, horizon: float) -> StreamMessage:
    records = np.empty(times.size, dtype=SPIKE_RECORD)
    records["time"] = times
    records["gid"] = gids
    return StreamMessage(SPIKES, np.array(horizon, dtype=_STAMP).tobytes() + records.tobytes())


def decode_spikes(payload: bytes) -> SpikeBatch:
    """Decode a spike payload.

    Raises
    ------
    ValueError
        If the payload is truncated
    """
    if len(payload) < _STAMP.itemsize or (len(payload) - _STAMP.itemsize) % SPIKE_RECORD.itemsize:
        raise ValueError(f"Truncated spike payload ({len(payload)} bytes)")
    horizon = float(np.frombuffer(payload, dtype=_STAMP, count=1)[0])
    records = np.frombuffer(payload, dtype=SPIKE_RECORD, offset=_STAMP.itemsize)
    return SpikeBatch(
        records["time"].astype(TIME_DTYPE),
        records["gid"].astype(GID_DTYPE),
        horizon=horizon,
    )


def encode_frame(timestamp: float, values: np.ndarray) -> StreamMessage:
    return StreamMessage(
        FRAME, np.array(timestamp, dtype=_STAMP).tobytes() + values.astype("<f4").tobytes()
    )


def decode_frame(payload: bytes) -> Frame:
    if len(payload) < _STAMP.itemsize or (len(payload) - _STAMP.itemsize) % 4:
        raise ValueError(f"Truncated frame payload ({len(payload)} bytes)")
    timestamp = float(np.frombuffer(payload, dtype=_STAMP, count=1)[0])
    values = np.frombuffer(payload, dtype="<f4", offset=_STAMP.itemsize).copy()
    return Frame(timestamp, values)


def encode_header(
    metadata: ReportMetadata,
    gids: EntitySet,
    counts: Sequence[np.ndarray],
) -> StreamMessage:
    document = {
        "metadata": metadata.to_dict(),
        "gids": [int(g) for g in gids],
        "counts": [[int(c) for c in cell] for cell in counts],
    }
    return StreamMessage(HEADER, json.dumps(document).encode("utf-8"))


def decode_header(payload: bytes) -> tuple[ReportMetadata, EntitySet, list[np.ndarray]]:
    try:
        document = json.loads(payload.decode("utf-8"))
        metadata = ReportMetadata(**document["metadata"])
        gids = document["gids"]
        counts = [np.asarray(cell, dtype=COUNT_DTYPE) for cell in document["counts"]]
    except (KeyError, TypeError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Malformed stream header: {e}") from e
    if len(gids) != len(counts):
        raise ValueError("Malformed stream header: gids and counts differ in length")
    if list(gids) != sorted(set(gids)):
        raise ValueError("Malformed stream header: gids must be ascending and unique")
    return metadata, EntitySet(gids), counts


__all__ = [
    "END",
    "END_MESSAGE",
    "FRAME",
    "HEADER",
    "SPIKES",
    "StreamMessage",
    "decode_frame",
    "decode_header",
    "decode_spikes",
    "encode_frame",
    "encode_header",
    "encode_spikes",
]
