"""Base classes and decorators for backend plugin development.

This module provides convenience classes that simplify plugin development:
- BackendBase / FileBackendBase: lifecycle, filtering and mode handling
- backend_plugin: Decorator for defining registry metadata

Example
-------
>>> from simreport.plugins.base import FileBackendBase, backend_plugin
>>>
>>> @backend_plugin(
...     name="csv-spikes",
...     kind=ReportKind.SPIKES,
...     extensions=(".csv",),
... )
>>> class CsvSpikeBackend(FileBackendBase):
...     def __init__(self, uri, mode, gids=None, options=None) -> None:
...         super().__init__(uri, mode, gids, options)
...         self._path = self._prepare_path()
...         self._mark_open()
...
...     def load_spikes(self):
...         data = np.loadtxt(self._path, delimiter=",", ndmin=2)
...         return data[:, 0], data[:, 1].astype(np.uint32)
"""

from simreport.plugins.base.backend_base import BackendBase, FileBackendBase
from simreport.plugins.base.decorators import backend_plugin

__all__ = ["BackendBase", "FileBackendBase", "backend_plugin"]
