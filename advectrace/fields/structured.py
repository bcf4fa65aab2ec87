# advectrace/fields/structured.py
"""
Structured (uniform) grid block with trilinear interpolation.

Cells are located by index arithmetic under every locator strategy, so a
cached hint is validated by a single box test. Grid axes with a single
node are allowed and make the block planar (or linear) along that axis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple, Union
import numpy as np

from ..utils.spatial import AABB
from .base import (
    CELL_TOLERANCE,
    BlockSample,
    LocatorStrategy,
    blend_rows,
    normalize_point_data,
)


@dataclass
class StructuredBlock:
    """
    Uniform grid block.

    Attributes
    ----------
    origin : (3,) coordinates of node (0, 0, 0)
    spacing : (3,) node spacing dx, dy, dz
    shape : (Nx, Ny, Nz) node counts
    point_data : dict
        Arrays with one row per node in C order over (i, j, k), i.e.
        row = (i * Ny + j) * Nz + k. Shape (Nx*Ny*Nz,) or (Nx*Ny*Nz, C).
    vector_name : str
        Name of the velocity array in `point_data`
    block_id : int
        Index of the block within its snapshot
    """
    origin: np.ndarray
    spacing: np.ndarray
    shape: Tuple[int, int, int]
    point_data: Dict[str, np.ndarray]
    vector_name: str = "velocity"
    block_id: int = 0

    _cells: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        self.origin = np.asarray(self.origin, dtype=float).reshape(3)
        self.spacing = np.asarray(self.spacing, dtype=float).reshape(3)
        self.shape = tuple(int(n) for n in self.shape)
        if len(self.shape) != 3 or min(self.shape) < 1:
            raise ValueError(f"shape must be three positive node counts, got {self.shape}")
        if np.any(self.spacing <= 0):
            raise ValueError(f"spacing must be positive, got {self.spacing}")

        n_points = int(np.prod(self.shape))
        self.point_data = normalize_point_data(self.point_data, n_points)
        if self.vector_name not in self.point_data:
            raise ValueError(f"Vector array '{self.vector_name}' not in point data")
        vec = self.point_data[self.vector_name]
        if vec.ndim != 2 or vec.shape[1] != 3:
            raise ValueError(f"Vector array must have shape (P, 3), got {vec.shape}")

        # Cell counts per axis; single-node axes still have one (flat) cell
        self._cells = np.maximum(np.asarray(self.shape) - 1, 1)

    # ---------- Geometry ----------

    @property
    def num_points(self) -> int:
        return int(np.prod(self.shape))

    @property
    def num_cells(self) -> int:
        return int(np.prod(self._cells))

    def bounds(self) -> AABB:
        hi = self.origin + (np.asarray(self.shape) - 1) * self.spacing
        return AABB(self.origin, hi)

    def _tolerance(self) -> float:
        return CELL_TOLERANCE * float(max(np.max(self.spacing), 1.0))

    def _continuous_index(self, point: np.ndarray) -> np.ndarray:
        return (np.asarray(point, dtype=float)[:3] - self.origin) / self.spacing

    def _decode(self, cell_id: int) -> Tuple[int, int, int]:
        cy, cz = int(self._cells[1]), int(self._cells[2])
        i, rem = divmod(int(cell_id), cy * cz)
        j, k = divmod(rem, cz)
        return i, j, k

    def _encode(self, i: int, j: int, k: int) -> int:
        return int((i * self._cells[1] + j) * self._cells[2] + k)

    def find_cell(self, point: np.ndarray, strategy: LocatorStrategy = LocatorStrategy.cell) -> Optional[int]:
        """Cell id containing `point` (index arithmetic for every strategy)."""
        p = np.asarray(point, dtype=float)[:3]
        if not bool(self.bounds().contains(p, tol=self._tolerance())):
            return None
        f = self._continuous_index(p)
        ijk = np.clip(np.floor(f).astype(np.int64), 0, self._cells - 1)
        return self._encode(*ijk)

    def cell_contains(self, cell_id: int, point: np.ndarray) -> bool:
        if cell_id is None or cell_id < 0 or cell_id >= self.num_cells:
            return False
        i, j, k = self._decode(cell_id)
        lo = self.origin + np.array([i, j, k]) * self.spacing
        hi = lo + self.spacing * (np.asarray(self.shape) > 1)
        return bool(AABB(lo, hi).contains(np.asarray(point, dtype=float)[:3], tol=self._tolerance()))

    # ---------- Interpolation ----------

    def _corner_weights(self, point: np.ndarray, cell_id: int):
        """
        Trilinear corner rows, weights and weight derivatives.

        Returns
        -------
        rows : (8,) node rows
        w : (8,) weights
        dw : (8, 3) d w / d x
        """
        i, j, k = self._decode(cell_id)
        Nx, Ny, Nz = self.shape
        f = self._continuous_index(point)
        base = np.array([i, j, k], dtype=float)
        frac = np.clip(f - base, 0.0, 1.0)
        # Single-node axes carry no weight on the (missing) upper node
        active = np.asarray(self.shape) > 1
        frac = np.where(active, frac, 0.0)

        rows = np.empty(8, dtype=np.int64)
        w = np.empty(8, dtype=float)
        dw = np.empty((8, 3), dtype=float)
        n = 0
        for a in (0, 1):
            for b in (0, 1):
                for c in (0, 1):
                    ii = min(i + a, Nx - 1)
                    jj = min(j + b, Ny - 1)
                    kk = min(k + c, Nz - 1)
                    rows[n] = (ii * Ny + jj) * Nz + kk
                    fx = frac[0] if a else 1.0 - frac[0]
                    fy = frac[1] if b else 1.0 - frac[1]
                    fz = frac[2] if c else 1.0 - frac[2]
                    w[n] = fx * fy * fz
                    sx = (1.0 if a else -1.0) / self.spacing[0] if active[0] else 0.0
                    sy = (1.0 if b else -1.0) / self.spacing[1] if active[1] else 0.0
                    sz = (1.0 if c else -1.0) / self.spacing[2] if active[2] else 0.0
                    dw[n] = (sx * fy * fz, fx * sy * fz, fx * fy * sz)
                    n += 1
        return rows, w, dw

    def interpolate(self, point: np.ndarray, cell_id: int, want_gradient: bool = False) -> BlockSample:
        rows, w, dw = self._corner_weights(point, cell_id)
        data = {name: blend_rows(arr, rows, w) for name, arr in self.point_data.items()}
        velocity = np.asarray(data[self.vector_name], dtype=float)
        gradient = None
        if want_gradient:
            V = self.point_data[self.vector_name][rows].astype(float)  # (8, 3)
            gradient = V.T @ dw                                       # (3, 3)
        return BlockSample(velocity=velocity, data=data, gradient=gradient)


# ------------------------- Factory functions -------------------------

def create_uniform_block(
    bounds: Tuple[Tuple[float, float], Tuple[float, float], Tuple[float, float]],
    resolution: Union[int, Tuple[int, int, int]],
    velocity_function: Callable[[np.ndarray], np.ndarray],
    extra_arrays: Optional[Dict[str, Callable[[np.ndarray], np.ndarray]]] = None,
    vector_name: str = "velocity",
    block_id: int = 0,
) -> StructuredBlock:
    """
    Create a uniform structured block from an analytical velocity function.

    Parameters
    ----------
    bounds : tuple
        ((x_min, x_max), (y_min, y_max), (z_min, z_max))
    resolution : int or tuple
        Node counts. If int, uses same resolution for all dimensions.
    velocity_function : callable
        Function(points (P, 3)) -> (P, 3) velocities
    extra_arrays : dict, optional
        Additional point arrays, name -> Function(points) -> (P,) or (P, C)
    vector_name : str
        Name given to the velocity array
    block_id : int
        Block index within its snapshot

    Returns
    -------
    StructuredBlock
    """
    (x_min, x_max), (y_min, y_max), (z_min, z_max) = bounds

    if isinstance(resolution, int):
        Nx = Ny = Nz = resolution
    else:
        Nx, Ny, Nz = resolution

    x = np.linspace(x_min, x_max, Nx)
    y = np.linspace(y_min, y_max, Ny)
    z = np.linspace(z_min, z_max, Nz)
    X, Y, Z = np.meshgrid(x, y, z, indexing="ij")
    points = np.stack([X.ravel(), Y.ravel(), Z.ravel()], axis=1)

    def _step(lo, hi, n):
        return (hi - lo) / (n - 1) if n > 1 else 1.0

    point_data = {vector_name: np.asarray(velocity_function(points), dtype=float).reshape(-1, 3)}
    for name, fn in (extra_arrays or {}).items():
        point_data[name] = np.asarray(fn(points))

    return StructuredBlock(
        origin=np.array([x_min, y_min, z_min]),
        spacing=np.array([_step(x_min, x_max, Nx), _step(y_min, y_max, Ny), _step(z_min, z_max, Nz)]),
        shape=(Nx, Ny, Nz),
        point_data=point_data,
        vector_name=vector_name,
        block_id=block_id,
    )
