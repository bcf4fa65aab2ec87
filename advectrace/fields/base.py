# advectrace/fields/base.py
"""
Base protocols and utilities for field snapshots.

Defines the FieldBlock protocol (one spatial partition of a snapshot),
locator strategies, the per-point sample container and barycentric
coordinate helpers for tetrahedral meshes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Protocol, Sequence
import numpy as np

from ..utils.spatial import AABB

# Slack on barycentric and cell-box tests so points on shared faces are inside.
CELL_TOLERANCE = 1e-9


class LocatorStrategy(str, Enum):
    """
    How a block searches for the cell containing a point.

    point : nearest mesh node (cKDTree) then its incident cells. Fast, may
            miss points that sit in a cell none of whose nodes is closest.
    cell  : robust search over every cell (Delaunay.find_simplex when the
            block owns its triangulation).
    """
    point = "point"
    cell = "cell"

    # Upper-case aliases
    POINT_LOCATOR = "point"
    CELL_LOCATOR = "cell"


@dataclass
class BlockSample:
    """Values interpolated inside one cell of one block."""
    velocity: np.ndarray                       # (3,)
    data: Dict[str, np.ndarray] = field(default_factory=dict)
    gradient: Optional[np.ndarray] = None      # (3, 3), grad[i, j] = d v_i / d x_j


class FieldBlock(Protocol):
    """
    Protocol for one partition of a field snapshot.

    A block owns point data arrays (flat, one row per mesh node) and a
    named vector array used as the advecting velocity.
    """

    block_id: int
    vector_name: str
    point_data: Dict[str, np.ndarray]

    def bounds(self) -> AABB:
        """Axis-aligned bounds of the block."""
        ...

    def find_cell(self, point: np.ndarray, strategy: LocatorStrategy = LocatorStrategy.cell) -> Optional[int]:
        """Cell id containing `point`, or None."""
        ...

    def cell_contains(self, cell_id: int, point: np.ndarray) -> bool:
        """Cheap test used to validate a cached cell hint."""
        ...

    def interpolate(self, point: np.ndarray, cell_id: int, want_gradient: bool = False) -> BlockSample:
        """Interpolate every point-data array at `point` inside `cell_id`."""
        ...


# ---------- Point data helpers ----------

def normalize_point_data(point_data: Dict[str, np.ndarray], n_points: int) -> Dict[str, np.ndarray]:
    """
    Coerce point data arrays to (P,) or (P, C) float/int arrays.

    Raises ValueError if any array has the wrong number of rows.
    """
    out: Dict[str, np.ndarray] = {}
    for name, arr in point_data.items():
        a = np.asarray(arr)
        if a.ndim > 2:
            a = a.reshape(-1, a.shape[-1])
        if a.shape[0] != n_points:
            raise ValueError(f"Point data '{name}' has {a.shape[0]} rows, expected {n_points}")
        out[name] = a
    return out


def blend_rows(values: np.ndarray, idx: Sequence[int], weights: np.ndarray) -> np.ndarray:
    """Weighted sum of rows `idx` of `values` (works for (P,) and (P, C))."""
    rows = values[np.asarray(idx)]
    w = np.asarray(weights, dtype=float)
    if rows.ndim == 1:
        return np.asarray(np.dot(w, rows.astype(float)))
    return (w[:, None] * rows.astype(float)).sum(axis=0)


# ---------- Barycentric coordinate helpers ----------

def tetrahedron_inverse_transforms(vertices: np.ndarray) -> np.ndarray:
    """
    Per-tetrahedron inverse edge matrices.

    Parameters
    ----------
    vertices : (M, 4, 3) tetrahedron corner coordinates

    Returns
    -------
    (M, 3, 3) matrices R with [λ2, λ3, λ4] = R @ (p - a)
    """
    a = vertices[:, 0, :]
    T = np.stack([vertices[:, 1, :] - a,
                  vertices[:, 2, :] - a,
                  vertices[:, 3, :] - a], axis=2)  # (M, 3, 3), columns are edges
    # pinv: flat cells yield a finite map
    return np.linalg.pinv(T)


def barycentric_coords_tetrahedron(
    p: np.ndarray,
    a: np.ndarray,
    inv_transform: np.ndarray,
) -> np.ndarray:
    """
    Barycentric coordinates of point p in a tetrahedron.

    Parameters
    ----------
    p : (3,) query point
    a : (3,) first vertex
    inv_transform : (3, 3) inverse edge matrix from `tetrahedron_inverse_transforms`

    Returns
    -------
    (4,) [λ1, λ2, λ3, λ4], sum(λ) = 1
    """
    l234 = inv_transform @ (np.asarray(p, dtype=float) - a)
    return np.concatenate([[1.0 - l234.sum()], l234])


def velocity_curl(gradient: np.ndarray) -> np.ndarray:
    """Curl of a velocity field from its gradient grad[i, j] = d v_i / d x_j."""
    g = np.asarray(gradient, dtype=float)
    return np.array([
        g[2, 1] - g[1, 2],
        g[0, 2] - g[2, 0],
        g[1, 0] - g[0, 1],
    ])
