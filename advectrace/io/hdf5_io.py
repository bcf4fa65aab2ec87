# advectrace/io/hdf5_io.py
"""
HDF5 I/O for particle output and structured velocity series.

- H5ParticleWriter: particle sink, one group per step with points, times,
  point arrays and polyline connectivity.
- H5SnapshotSeries: temporal dataset provider reading uniform-grid
  velocity snapshots, either a 5D dataset (T, Nx, Ny, Nz, 3) with a
  "times" dataset, or a group of per-time datasets carrying a "time"
  attribute.
"""

from __future__ import annotations
import warnings
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union
import numpy as np

try:
    import h5py
    HDF5_AVAILABLE = True
except Exception:
    HDF5_AVAILABLE = False
    warnings.warn("h5py not available. HDF5 I/O will be disabled", stacklevel=2)

from ..errors import MissingTimeInformationError
from ..fields.snapshot import FieldSnapshot
from ..fields.structured import StructuredBlock
from ..tracking.output import ParticleOutput


def _step_key(step: int) -> str:
    return f"step_{int(step):06d}"


def _pack_lines(lines: Sequence[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    """Polylines as (offsets, connectivity), VTK-style."""
    offsets = np.zeros(len(lines) + 1, dtype=np.int64)
    if lines:
        offsets[1:] = np.cumsum([len(line) for line in lines])
        connectivity = np.concatenate([np.asarray(line, dtype=np.int64) for line in lines])
    else:
        connectivity = np.zeros(0, dtype=np.int64)
    return offsets, connectivity


class H5ParticleWriter:
    """
    Writes assembled particle output to an HDF5 file, one group per step.

    Parameters
    ----------
    path : str or Path
        Output filename (truncated on the first write)
    group : str
        Root group holding the step groups
    compression : str, optional
        Dataset compression ('gzip', 'lzf' or None)
    compression_opts : int
        Compression level (0-9 for gzip)
    """

    def __init__(self, path: Union[str, Path], group: str = "particles",
                 compression: Optional[str] = "gzip", compression_opts: int = 4):
        if not HDF5_AVAILABLE:
            raise RuntimeError("h5py not available; cannot write HDF5 files")
        self.path = str(path)
        self.group = group
        self.compression = compression
        self.compression_opts = compression_opts if compression == "gzip" else None
        self._opened = False
        self.steps_written: List[int] = []

    def _dataset(self, grp, name: str, data: np.ndarray):
        data = np.asarray(data)
        if data.size == 0 or self.compression is None:
            return grp.create_dataset(name, data=data)
        return grp.create_dataset(
            name, data=data, compression=self.compression, compression_opts=self.compression_opts
        )

    def write(self, step: int, time: float, output: ParticleOutput) -> None:
        mode = "a" if self._opened else "w"
        try:
            with h5py.File(self.path, mode) as f:
                root = f.require_group(self.group)
                key = _step_key(step)
                if key in root:
                    del root[key]
                grp = root.create_group(key)
                grp.attrs["step"] = int(step)
                grp.attrs["time"] = float(time)
                grp.attrs["num_points"] = output.num_points

                self._dataset(grp, "points", np.asarray(output.points, dtype=np.float64))
                if output.times is not None:
                    self._dataset(grp, "times", np.asarray(output.times, dtype=np.float64))
                arrays = grp.create_group("arrays")
                for name, arr in output.arrays.items():
                    self._dataset(arrays, name, arr)
                offsets, connectivity = _pack_lines(output.lines)
                grp.create_dataset("line_offsets", data=offsets)
                grp.create_dataset("line_connectivity", data=connectivity)
                grp.create_dataset("vertices", data=np.asarray(output.vertices, dtype=np.int64))
        except OSError as e:
            raise RuntimeError(f"Failed to write HDF5 file {self.path}: {e}") from e
        self._opened = True
        self.steps_written.append(int(step))


def read_particle_step(path: Union[str, Path], step: int, group: str = "particles") -> Tuple[float, ParticleOutput]:
    """Read one step written by H5ParticleWriter; returns (time, output)."""
    if not HDF5_AVAILABLE:
        raise RuntimeError("h5py not available; cannot open HDF5 files")
    with h5py.File(str(path), "r") as f:
        key = _step_key(step)
        if group not in f or key not in f[group]:
            raise KeyError(f"Step {step} not found in '/{group}' of {path}")
        grp = f[group][key]
        offsets = np.asarray(grp["line_offsets"][...])
        connectivity = np.asarray(grp["line_connectivity"][...])
        lines = [connectivity[offsets[i]:offsets[i + 1]] for i in range(len(offsets) - 1)]
        output = ParticleOutput(
            points=np.asarray(grp["points"][...]).reshape(-1, 3),
            times=np.asarray(grp["times"][...]) if "times" in grp else None,
            arrays={name: np.asarray(ds[...]) for name, ds in grp["arrays"].items()},
            lines=lines,
            vertices=np.asarray(grp["vertices"][...]),
        )
        return float(grp.attrs["time"]), output


class H5SnapshotSeries:
    """
    Temporal dataset provider over uniform-grid velocity snapshots.

    Supported layouts under `/dataset`:
    1. 5D dataset (T, Nx, Ny, Nz, 3) plus a 1D `/times` dataset
    2. Group of per-time datasets t0000, t0001, ... each (Nx, Ny, Nz, 3)
       with a "time" attribute

    Grid geometry comes from "origin" and "spacing" attributes on the
    dataset or group (defaults: origin 0, spacing 1).
    """

    def __init__(self, path: Union[str, Path], dataset: str = "velocity", vector_name: Optional[str] = None):
        if not HDF5_AVAILABLE:
            raise RuntimeError("h5py not available; cannot open HDF5 datasets")
        self.path = str(path)
        self.dataset = dataset
        self.vector_name = vector_name or dataset
        self.fetch_count = 0
        self._keys: List[str] = []
        self._times, self._origin, self._spacing = self._scan()

    def _scan(self):
        with h5py.File(self.path, "r") as f:
            if self.dataset not in f:
                raise ValueError(f"Dataset '{self.dataset}' not found in {self.path}")
            obj = f[self.dataset]
            origin = np.asarray(obj.attrs.get("origin", np.zeros(3)), dtype=float)
            spacing = np.asarray(obj.attrs.get("spacing", np.ones(3)), dtype=float)

            if isinstance(obj, h5py.Dataset):
                if obj.ndim != 5 or obj.shape[-1] != 3:
                    raise ValueError(f"Expected (T, Nx, Ny, Nz, 3) dataset, got shape {obj.shape}")
                if "times" not in f:
                    raise MissingTimeInformationError(f"{self.path} has no '/times' dataset")
                times = np.asarray(f["times"][...], dtype=float)
                if times.shape[0] != obj.shape[0]:
                    raise ValueError(f"'/times' has {times.shape[0]} entries for {obj.shape[0]} snapshots")
                return times, origin, spacing

            keys = sorted(k for k in obj.keys() if isinstance(obj[k], h5py.Dataset))
            times = []
            for k in keys:
                if "time" not in obj[k].attrs:
                    raise MissingTimeInformationError(f"Snapshot '/{self.dataset}/{k}' has no 'time' attribute")
                times.append(float(obj[k].attrs["time"]))
            order = np.argsort(times)
            self._keys = [keys[i] for i in order]
            return np.asarray(times, dtype=float)[order], origin, spacing

    @property
    def times(self) -> np.ndarray:
        return self._times

    def __len__(self) -> int:
        return int(self._times.shape[0])

    def load_slice(self, index: int) -> np.ndarray:
        """Grid velocity of snapshot `index`, shape (Nx, Ny, Nz, 3)."""
        if not (0 <= index < len(self)):
            raise IndexError(f"Time index {index} out of range [0, {len(self)})")
        with h5py.File(self.path, "r") as f:
            obj = f[self.dataset]
            if isinstance(obj, h5py.Dataset):
                return np.asarray(obj[index, ...], dtype=float)
            return np.asarray(obj[self._keys[index]][...], dtype=float)

    def snapshot(self, index: int) -> FieldSnapshot:
        self.fetch_count += 1
        grid = self.load_slice(index)
        block = StructuredBlock(
            origin=self._origin,
            spacing=self._spacing,
            shape=grid.shape[:3],
            point_data={self.vector_name: grid.reshape(-1, 3)},
            vector_name=self.vector_name,
        )
        return FieldSnapshot(time=float(self._times[index]), blocks=[block])


def write_snapshot_series(path: Union[str, Path], velocities: np.ndarray, times: Sequence[float],
                          origin=(0.0, 0.0, 0.0), spacing=(1.0, 1.0, 1.0), dataset: str = "velocity") -> str:
    """
    Write a (T, Nx, Ny, Nz, 3) velocity series readable by H5SnapshotSeries.

    Returns
    -------
    str
        Path to written file
    """
    if not HDF5_AVAILABLE:
        raise RuntimeError("h5py not available; cannot write HDF5 files")
    data = np.asarray(velocities, dtype=np.float64)
    if data.ndim != 5 or data.shape[-1] != 3:
        raise ValueError("velocities must be (T, Nx, Ny, Nz, 3)")
    times = np.asarray(times, dtype=np.float64)
    if times.shape[0] != data.shape[0]:
        raise ValueError(f"times length {times.shape[0]} != T={data.shape[0]}")
    with h5py.File(str(path), "w") as f:
        ds = f.create_dataset(dataset, data=data, chunks=(1,) + data.shape[1:])
        ds.attrs["origin"] = np.asarray(origin, dtype=float)
        ds.attrs["spacing"] = np.asarray(spacing, dtype=float)
        f.create_dataset("times", data=times)
    return str(path)
