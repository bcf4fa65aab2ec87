# advectrace/utils/spatial.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence
import numpy as np

from .jax_utils import JAX_AVAILABLE, array_namespace, maybe_jit, to_numpy

Array = np.ndarray

# Relative slack applied to box tests so points sitting on a shared face
# are seen by both neighbours.
BOX_TOLERANCE = 1e-9

# -------------------------
# AABB
# -------------------------

@dataclass
class AABB:
    """
    Axis-aligned bounding box in 3D.

    Attributes
    ----------
    lo : (3,) lower corner
    hi : (3,) upper corner
    """
    lo: Array
    hi: Array

    def __post_init__(self):
        self.lo = np.asarray(self.lo, dtype=float)
        self.hi = np.asarray(self.hi, dtype=float)
        if self.lo.shape != self.hi.shape:
            raise ValueError("lo and hi must have same shape")
        if not np.all(self.lo <= self.hi):
            lo = np.minimum(self.lo, self.hi)
            hi = np.maximum(self.lo, self.hi)
            self.lo, self.hi = lo, hi

    @classmethod
    def from_points(cls, pts: Array) -> "AABB":
        pts = np.asarray(pts, dtype=float)
        return cls(pts.min(axis=0), pts.max(axis=0))

    @property
    def dim(self) -> int:
        return self.lo.shape[0]

    def size(self) -> Array:
        return self.hi - self.lo

    def contains(self, pts: Array, tol: float = 0.0) -> Array:
        pts = np.asarray(pts)
        return np.logical_and(np.all(pts >= self.lo - tol, axis=-1), np.all(pts <= self.hi + tol, axis=-1))

    def intersects(self, other: "AABB") -> bool:
        return bool(np.all(self.hi >= other.lo) and np.all(other.hi >= self.lo))

    def expand(self, margin: float) -> "AABB":
        m = float(margin)
        return AABB(self.lo - m, self.hi + m)

    def as_array(self) -> Array:
        """(2, 3) [[lo], [hi]]"""
        return np.stack([self.lo, self.hi], axis=0)


# -------------------------
# Bounds tables
# -------------------------

def bounds_table(boxes: Sequence[AABB]) -> Array:
    """Stack boxes into a (B, 2, 3) table."""
    if len(boxes) == 0:
        return np.zeros((0, 2, 3), dtype=float)
    return np.stack([b.as_array() for b in boxes], axis=0)


def _table_tolerance(table: Array) -> float:
    if table.size == 0:
        return 0.0
    extent = float(np.max(table[:, 1, :] - table[:, 0, :]))
    return BOX_TOLERANCE * max(extent, 1.0)


def boxes_containing_point(point: Array, table: Array) -> Array:
    """
    Indices of boxes in `table` (B, 2, 3) containing a single point.

    Plain NumPy: called once per particle lookup, where JIT dispatch would
    cost more than the test itself.
    """
    if table.shape[0] == 0:
        return np.zeros((0,), dtype=np.int64)
    p = np.asarray(point, dtype=float)[:3]
    tol = _table_tolerance(table)
    inside = np.all(p >= table[:, 0, :] - tol, axis=1) & np.all(p <= table[:, 1, :] + tol, axis=1)
    return np.nonzero(inside)[0]


def _points_in_boxes_kernel(points, lo, hi, tol):
    xp = array_namespace()
    # (N, 1, 3) against (1, B, 3)
    p = points[:, None, :]
    inside = xp.all(p >= lo[None, :, :] - tol, axis=2) & xp.all(p <= hi[None, :, :] + tol, axis=2)
    return inside


_points_in_boxes_jit = maybe_jit(_points_in_boxes_kernel)


def points_in_boxes(points: Array, table: Array, use_jit: bool = True) -> Array:
    """
    Vectorised box membership.

    Parameters
    ----------
    points : (N, 3+) positions (extra columns ignored)
    table : (B, 2, 3) bounds table

    Returns
    -------
    (N, B) boolean NumPy array
    """
    pts = np.asarray(points, dtype=float)
    if pts.ndim == 1:
        pts = pts.reshape(1, -1)
    pts = np.ascontiguousarray(pts[:, :3])
    if pts.shape[0] == 0 or table.shape[0] == 0:
        return np.zeros((pts.shape[0], table.shape[0]), dtype=bool)
    tol = _table_tolerance(table)
    lo = np.ascontiguousarray(table[:, 0, :])
    hi = np.ascontiguousarray(table[:, 1, :])
    kernel = _points_in_boxes_jit if (JAX_AVAILABLE and use_jit) else _points_in_boxes_kernel
    return to_numpy(kernel(pts, lo, hi, tol), dtype=bool)


def union_box(table: Array) -> Optional[AABB]:
    """Smallest AABB covering every box of the table, or None if empty."""
    if table.shape[0] == 0:
        return None
    return AABB(table[:, 0, :].min(axis=0), table[:, 1, :].max(axis=0))
