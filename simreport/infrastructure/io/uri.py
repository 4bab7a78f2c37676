"""URI handling for report locations.

Reports are addressed by URI. Plain paths and ``file://`` URIs name
container files; other schemes (e.g. ``inproc://channel``) name stream
endpoints. Query parameters are passed to the selected plugin as config.

Examples
--------
>>> uri = ReportURI.parse("/data/spikes.h5")
>>> uri.scheme, uri.suffix
('', '.h5')
>>> uri = ReportURI.parse("inproc://sim?buffer_size=4")
>>> uri.scheme, uri.location, uri.query
('inproc', 'sim', {'buffer_size': '4'})
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import parse_qsl, unquote, urlsplit


@dataclass(frozen=True)
class ReportURI:
    """Parsed report URI.

    Attributes
    ----------
    raw : str
        Original string
    scheme : str
        Lower-case scheme, empty for plain paths
    location : str
        Path for file URIs, network location (channel name) otherwise
    query : dict[str, str]
        Query parameters
    """

    raw: str
    scheme: str
    location: str
    query: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, uri: str | os.PathLike[str] | ReportURI) -> ReportURI:
        if isinstance(uri, ReportURI):
            return uri
        if isinstance(uri, os.PathLike):
            return cls(raw=os.fspath(uri), scheme="", location=os.fspath(uri))

        raw = str(uri)
        parts = urlsplit(raw)
        scheme = parts.scheme.lower()

        # Windows drive letters ("C:\\...") parse as one-letter schemes
        if len(scheme) == 1:
            return cls(raw=raw, scheme="", location=raw)

        query = dict(parse_qsl(parts.query, keep_blank_values=True))
        if scheme == "":
            return cls(raw=raw, scheme="", location=unquote(parts.path), query=query)
        if scheme == "file":
            return cls(raw=raw, scheme="file", location=unquote(parts.path), query=query)
        location = parts.netloc + parts.path if parts.netloc else parts.path.lstrip("/")
        return cls(raw=raw, scheme=scheme, location=unquote(location), query=query)

    @property
    def is_file(self) -> bool:
        return self.scheme in ("", "file")

    @property
    def path(self) -> Path:
        """Filesystem path (only meaningful for file URIs)."""
        return Path(self.location)

    @property
    def suffix(self) -> str:
        """Lower-case file suffix, empty for non-file URIs."""
        if not self.is_file:
            return ""
        return self.path.suffix.lower()

    def __str__(self) -> str:
        return self.raw


__all__ = ["ReportURI"]
