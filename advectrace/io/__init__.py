# advectrace/io/__init__.py
"""
advectrace I/O module.

- HDF5 (h5py): particle writer, structured velocity series provider
- VTK: PolyData (.vtp) export of assembled particle output
"""

from .hdf5_io import (
    HDF5_AVAILABLE,
    H5ParticleWriter,
    H5SnapshotSeries,
    read_particle_step,
    write_snapshot_series,
)

from .vtk_io import (
    VTK_AVAILABLE,
    to_polydata,
    write_particle_output,
    read_particle_output,
)

__all__ = [
    "HDF5_AVAILABLE",
    "H5ParticleWriter",
    "H5SnapshotSeries",
    "read_particle_step",
    "write_snapshot_series",
    "VTK_AVAILABLE",
    "to_polydata",
    "write_particle_output",
    "read_particle_output",
]
