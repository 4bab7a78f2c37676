"""
Backend plugins for simreport.

Each subpackage implements the backend protocols of
``simreport.domain.interfaces`` for one storage or transport family:
- hdf5: spike and compartment container files (h5py)
- ascii: plain text spike files
- stream: in-process publish/subscribe streams (``inproc://``)

See ``simreport.plugins.base`` for the helpers used to write new plugins.
"""
