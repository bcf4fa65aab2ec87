# advectrace/fields/time_series.py
"""
Temporal dataset providers.

A provider exposes the ordered list of available simulation times and,
for an index into that list, the local partition of the field snapshot.

- InMemoryTemporalDataset: a list of prebuilt FieldSnapshot objects.
- FunctionTemporalDataset: samples an analytic velocity f(points, t) on a
  uniform grid covering this process's partition, one block per box.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union
import threading
import numpy as np

from ..errors import MissingTimeInformationError
from .snapshot import FieldSnapshot
from .structured import create_uniform_block

Bounds3 = Tuple[Tuple[float, float], Tuple[float, float], Tuple[float, float]]


class TemporalDatasetProvider(Protocol):
    """Source of time-stamped field snapshots."""

    @property
    def times(self) -> Sequence[float]:
        """Ordered simulation times of the available snapshots."""
        ...

    def snapshot(self, index: int) -> FieldSnapshot:
        """Snapshot for `times[index]` (local partition)."""
        ...


def _checked_times(times: Sequence[Optional[float]]) -> np.ndarray:
    if len(times) == 0:
        raise ValueError("Provider must expose at least one time")
    if any(t is None for t in times):
        raise MissingTimeInformationError("Provider could not report the time of every snapshot")
    arr = np.asarray(times, dtype=float)
    if not np.all(np.isfinite(arr)):
        raise MissingTimeInformationError("Provider reported non-finite snapshot times")
    if np.any(np.diff(arr) <= 0):
        raise ValueError("Snapshot times must be strictly increasing")
    return arr


@dataclass
class InMemoryTemporalDataset:
    """
    Provider over prebuilt snapshots.

    Attributes
    ----------
    snapshots : list of FieldSnapshot
        Snapshots ordered by time
    fetch_count : int
        Number of `snapshot()` calls served (cache diagnostics)
    """
    snapshots: List[FieldSnapshot]
    fetch_count: int = field(default=0, init=False)

    def __post_init__(self):
        self.snapshots = list(self.snapshots)
        self._times = _checked_times([s.time for s in self.snapshots])
        self._lock = threading.Lock()

    @property
    def times(self) -> np.ndarray:
        return self._times

    def snapshot(self, index: int) -> FieldSnapshot:
        with self._lock:
            self.fetch_count += 1
        return self.snapshots[index]


@dataclass
class FunctionTemporalDataset:
    """
    Provider sampling an analytic velocity on uniform grids.

    Attributes
    ----------
    velocity_function : callable
        Function(points (P, 3), t) -> (P, 3)
    times : sequence of float
        Snapshot times
    boxes : list of bounds
        Local partition, one structured block per entry
        (((x0, x1), (y0, y1), (z0, z1)), ...)
    resolution : int or (Nx, Ny, Nz)
        Node counts per block
    extra_arrays : dict, optional
        name -> Function(points, t) -> (P,) or (P, C) additional point data
    vector_name : str
        Name of the velocity array
    """
    velocity_function: Callable[[np.ndarray, float], np.ndarray]
    times: Sequence[float]
    boxes: Sequence[Bounds3]
    resolution: Union[int, Tuple[int, int, int]] = 5
    extra_arrays: Optional[Dict[str, Callable[[np.ndarray, float], np.ndarray]]] = None
    vector_name: str = "velocity"
    fetch_count: int = field(default=0, init=False)

    def __post_init__(self):
        self.times = _checked_times(list(self.times))
        self.boxes = list(self.boxes)
        if not self.boxes:
            raise ValueError("At least one block box is required")
        self._lock = threading.Lock()

    def snapshot(self, index: int) -> FieldSnapshot:
        with self._lock:
            self.fetch_count += 1
        t = float(self.times[index])
        extras = {
            name: (lambda pts, fn=fn: fn(pts, t))
            for name, fn in (self.extra_arrays or {}).items()
        }
        blocks = [
            create_uniform_block(
                bounds=box,
                resolution=self.resolution,
                velocity_function=lambda pts: self.velocity_function(pts, t),
                extra_arrays=extras,
                vector_name=self.vector_name,
                block_id=i,
            )
            for i, box in enumerate(self.boxes)
        ]
        return FieldSnapshot(time=t, blocks=blocks)


def constant_velocity(velocity: Sequence[float]) -> Callable[[np.ndarray, float], np.ndarray]:
    """Velocity function returning the same vector everywhere."""
    v = np.asarray(velocity, dtype=float).reshape(1, 3)

    def fn(points: np.ndarray, t: float) -> np.ndarray:
        return np.repeat(v, np.asarray(points).shape[0], axis=0)

    return fn


def solid_body_rotation(omega: float = 1.0, center: Sequence[float] = (0.0, 0.0, 0.0)) -> Callable[[np.ndarray, float], np.ndarray]:
    """Rigid rotation about the z axis: v = omega * (-(y - cy), x - cx, 0)."""
    c = np.asarray(center, dtype=float)

    def fn(points: np.ndarray, t: float) -> np.ndarray:
        p = np.asarray(points, dtype=float) - c
        return omega * np.stack([-p[:, 1], p[:, 0], np.zeros(p.shape[0])], axis=1)

    return fn
