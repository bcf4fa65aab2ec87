# advectrace/fields/unstructured.py
"""
Unstructured tetrahedral block with linear (barycentric) interpolation.

- Connectivity is optional: without it the nodes are tetrahedralised with
  scipy.spatial.Delaunay and the cell locator uses `find_simplex`.
- The point locator queries a cKDTree for the nearest nodes and only tests
  their incident cells.
- Velocity gradients are constant per cell (linear elements).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import numpy as np

try:
    from scipy.spatial import cKDTree, Delaunay
    SCIPY_AVAILABLE = True
except ImportError:
    SCIPY_AVAILABLE = False

from ..utils.spatial import AABB
from .base import (
    CELL_TOLERANCE,
    BlockSample,
    LocatorStrategy,
    barycentric_coords_tetrahedron,
    blend_rows,
    normalize_point_data,
    tetrahedron_inverse_transforms,
)

# Nearest nodes consulted by the point locator
POINT_LOCATOR_NEIGHBORS = 4


@dataclass
class TetrahedralBlock:
    """
    Tetrahedral mesh block.

    Attributes
    ----------
    nodes : (P, 3) node coordinates
    point_data : dict
        Arrays with one row per node, shape (P,) or (P, C)
    cells : (M, 4) connectivity, optional (Delaunay if None)
    vector_name : str
        Name of the velocity array in `point_data`
    block_id : int
        Index of the block within its snapshot
    """
    nodes: np.ndarray
    point_data: Dict[str, np.ndarray]
    cells: Optional[np.ndarray] = None
    vector_name: str = "velocity"
    block_id: int = 0

    _delaunay: Optional["Delaunay"] = field(default=None, init=False, repr=False)
    _tree: Optional["cKDTree"] = field(default=None, init=False, repr=False)
    _inv: np.ndarray = field(init=False, repr=False)
    _node_cells: List[np.ndarray] = field(init=False, repr=False)

    def __post_init__(self):
        if not SCIPY_AVAILABLE:
            raise ImportError("TetrahedralBlock requires scipy")

        self.nodes = np.asarray(self.nodes, dtype=float)
        if self.nodes.ndim != 2 or self.nodes.shape[1] != 3:
            raise ValueError(f"nodes must have shape (P, 3), got {self.nodes.shape}")

        self.point_data = normalize_point_data(self.point_data, self.nodes.shape[0])
        if self.vector_name not in self.point_data:
            raise ValueError(f"Vector array '{self.vector_name}' not in point data")

        if self.cells is None:
            self._delaunay = Delaunay(self.nodes)
            self.cells = np.asarray(self._delaunay.simplices, dtype=np.int64)
        else:
            self.cells = np.asarray(self.cells, dtype=np.int64)
            if self.cells.ndim != 2 or self.cells.shape[1] != 4:
                raise ValueError(f"cells must have shape (M, 4), got {self.cells.shape}")
            if self.cells.size and int(self.cells.max()) >= self.nodes.shape[0]:
                raise ValueError("cells reference nodes beyond the node array")

        self._inv = tetrahedron_inverse_transforms(self.nodes[self.cells])
        self._tree = cKDTree(self.nodes)

        incident: List[List[int]] = [[] for _ in range(self.nodes.shape[0])]
        for cid, cell in enumerate(self.cells):
            for n in cell:
                incident[int(n)].append(cid)
        self._node_cells = [np.asarray(c, dtype=np.int64) for c in incident]

    # ---------- Geometry ----------

    @property
    def num_points(self) -> int:
        return int(self.nodes.shape[0])

    @property
    def num_cells(self) -> int:
        return int(self.cells.shape[0])

    def bounds(self) -> AABB:
        return AABB.from_points(self.nodes)

    def _barycentric(self, cell_id: int, point: np.ndarray) -> np.ndarray:
        a = self.nodes[self.cells[cell_id, 0]]
        return barycentric_coords_tetrahedron(point, a, self._inv[cell_id])

    def cell_contains(self, cell_id: int, point: np.ndarray) -> bool:
        if cell_id is None or cell_id < 0 or cell_id >= self.num_cells:
            return False
        lam = self._barycentric(cell_id, np.asarray(point, dtype=float)[:3])
        return bool(np.all(lam >= -CELL_TOLERANCE))

    def _search_all(self, p: np.ndarray) -> Optional[int]:
        a = self.nodes[self.cells[:, 0]]                        # (M, 3)
        l234 = np.einsum("mij,mj->mi", self._inv, p[None, :] - a)
        lam = np.concatenate([1.0 - l234.sum(axis=1, keepdims=True), l234], axis=1)
        hits = np.nonzero(np.all(lam >= -CELL_TOLERANCE, axis=1))[0]
        return int(hits[0]) if hits.size else None

    def find_cell(self, point: np.ndarray, strategy: LocatorStrategy = LocatorStrategy.cell) -> Optional[int]:
        p = np.asarray(point, dtype=float)[:3]
        if not bool(self.bounds().contains(p, tol=CELL_TOLERANCE)):
            return None

        if LocatorStrategy(strategy) == LocatorStrategy.point:
            k = min(POINT_LOCATOR_NEIGHBORS, self.num_points)
            _, idx = self._tree.query(p, k=k)
            for node in np.atleast_1d(idx):
                for cid in self._node_cells[int(node)]:
                    if self.cell_contains(int(cid), p):
                        return int(cid)
            return None

        if self._delaunay is not None:
            cid = int(self._delaunay.find_simplex(p[None, :], tol=CELL_TOLERANCE)[0])
            if cid >= 0:
                return cid
        return self._search_all(p)

    # ---------- Interpolation ----------

    def interpolate(self, point: np.ndarray, cell_id: int, want_gradient: bool = False) -> BlockSample:
        p = np.asarray(point, dtype=float)[:3]
        lam = self._barycentric(cell_id, p)
        rows = self.cells[cell_id]
        data = {name: blend_rows(arr, rows, lam) for name, arr in self.point_data.items()}
        velocity = np.asarray(data[self.vector_name], dtype=float)
        gradient = None
        if want_gradient:
            # d λ / d x: rows of the inverse edge matrix, λ1 = 1 - (λ2 + λ3 + λ4)
            R = self._inv[cell_id]
            dlam = np.vstack([-R.sum(axis=0, keepdims=True), R])    # (4, 3)
            V = self.point_data[self.vector_name][rows].astype(float)  # (4, 3)
            gradient = V.T @ dlam
        return BlockSample(velocity=velocity, data=data, gradient=gradient)


def create_tetrahedral_block(
    nodes: np.ndarray,
    velocity: np.ndarray,
    cells: Optional[np.ndarray] = None,
    extra_arrays: Optional[Dict[str, np.ndarray]] = None,
    vector_name: str = "velocity",
    block_id: int = 0,
) -> TetrahedralBlock:
    """Build a TetrahedralBlock from node coordinates and nodal velocities."""
    point_data = {vector_name: np.asarray(velocity, dtype=float)}
    point_data.update(extra_arrays or {})
    return TetrahedralBlock(
        nodes=nodes,
        point_data=point_data,
        cells=cells,
        vector_name=vector_name,
        block_id=block_id,
    )
