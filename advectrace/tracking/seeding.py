# advectrace/tracking/seeding.py
"""
Seed sources and seed position generators.

A SeedSource is point geometry with an optional explicit id array; the
generators return (N, 3) float64 positions to build sources from.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
import numpy as np

from ..utils.jax_utils import JAX_AVAILABLE

if JAX_AVAILABLE:
    import jax
    import jax.numpy as jnp


def _ensure_seed_positions_shape(positions: np.ndarray) -> np.ndarray:
    """
    Ensure seed positions have shape (N, 3) with float64 dtype.

    2D input gets a zero z coordinate.
    """
    pos = np.asarray(positions, dtype=np.float64)
    if pos.ndim == 1:
        pos = pos.reshape(1, -1)
    if pos.ndim != 2:
        raise ValueError(f"Seed positions must be 2D array, got shape {pos.shape}")
    if pos.shape[1] == 2:
        pos = np.concatenate([pos, np.zeros((pos.shape[0], 1))], axis=1)
    elif pos.shape[1] != 3:
        raise ValueError(f"Seed positions must have 2 or 3 columns, got {pos.shape[1]}")
    return pos


def _validate_bounds(bounds) -> np.ndarray:
    """
    Standardize domain bounds to [[x_min, y_min, z_min], [x_max, y_max, z_max]].

    Accepts (2, 3), (3, 2) or flat [x_min, x_max, y_min, y_max, z_min, z_max].
    """
    b = np.asarray(bounds, dtype=np.float64)
    if b.ndim == 1 and b.shape[0] == 6:
        b = np.array([[b[0], b[2], b[4]], [b[1], b[3], b[5]]])
    elif b.shape == (3, 2):
        b = b.T
    elif b.shape != (2, 3):
        raise ValueError(f"Bounds must have shape (2,3), (3,2) or (6,), got {b.shape}")
    if not np.all(b[0] <= b[1]):
        raise ValueError(f"Invalid bounds: min {b[0]} > max {b[1]}")
    return b


@dataclass
class SeedSource:
    """
    Seed geometry.

    Attributes
    ----------
    points : (M, 3) seed positions
    ids : (M,) int, optional
        Explicit per-seed ids; defaults to the point index
    source_id : int
        Identifies the source in the ParticleSourceId output array
    """
    points: np.ndarray
    ids: Optional[np.ndarray] = None
    source_id: int = 0

    def __post_init__(self):
        self.points = _ensure_seed_positions_shape(self.points)
        if self.ids is None:
            self.ids = np.arange(self.points.shape[0], dtype=np.int64)
        else:
            self.ids = np.asarray(self.ids, dtype=np.int64).ravel()
            if self.ids.shape[0] != self.points.shape[0]:
                raise ValueError(f"ids has {self.ids.shape[0]} entries for {self.points.shape[0]} points")

    @property
    def num_points(self) -> int:
        return int(self.points.shape[0])

    def moved_to(self, points: np.ndarray) -> "SeedSource":
        """Same source (ids, source id) at new positions."""
        return SeedSource(points=points, ids=self.ids, source_id=self.source_id)


# ---------- Basic seeding strategies ----------

def random_seeds(n: int, bounds, rng_seed: int = 0) -> np.ndarray:
    """
    Uniformly sample n seed positions within bounds.

    Parameters
    ----------
    n : int
        Number of seed positions to generate
    bounds : array-like
        Domain bounds
    rng_seed : int
        Random number generator seed for reproducibility

    Returns
    -------
    np.ndarray
        Random seed positions, shape (n, 3)
    """
    if n <= 0:
        return np.zeros((0, 3))

    b = _validate_bounds(bounds)
    if JAX_AVAILABLE:
        key = jax.random.PRNGKey(rng_seed)
        u = np.asarray(jax.random.uniform(key, shape=(n, 3), dtype=jnp.float32), dtype=np.float64)
    else:
        u = np.random.default_rng(rng_seed).uniform(0.0, 1.0, size=(n, 3))
    return b[0] + u * (b[1] - b[0])


def uniform_grid_seeds(resolution: Union[int, Tuple[int, int, int]], bounds,
                       include_boundaries: bool = True) -> np.ndarray:
    """
    Generate seeds on a uniform grid within bounds.

    Parameters
    ----------
    resolution : int or tuple
        Grid resolution. If int, uses same resolution for all dimensions.
    bounds : array-like
        Domain bounds
    include_boundaries : bool
        Whether to include points exactly on domain boundaries

    Returns
    -------
    np.ndarray
        Grid seed positions, shape (N, 3)
    """
    b = _validate_bounds(bounds)
    if isinstance(resolution, int):
        nx = ny = nz = resolution
    elif len(resolution) == 2:
        (nx, ny), nz = resolution, 1
    else:
        nx, ny, nz = resolution

    axes = []
    for lo, hi, n in zip(b[0], b[1], (nx, ny, nz)):
        if n <= 1:
            axes.append(np.array([lo if include_boundaries else 0.5 * (lo + hi)]))
        elif include_boundaries:
            axes.append(np.linspace(lo, hi, n))
        else:
            d = (hi - lo) / (n + 1)
            axes.append(np.linspace(lo + d, hi - d, n))

    X, Y, Z = np.meshgrid(*axes, indexing="ij")
    return np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])


def line_seeds(start, end, n: int) -> np.ndarray:
    """Seeds evenly spaced on the segment [start, end], shape (n, 3)."""
    if n <= 0:
        return np.zeros((0, 3))
    a = _ensure_seed_positions_shape(start)[0]
    b = _ensure_seed_positions_shape(end)[0]
    t = np.linspace(0.0, 1.0, n)
    return a[None, :] + t[:, None] * (b - a)[None, :]


def circle_seeds(center, radius: float, n: int, plane: str = "xy", start_angle: float = 0.0) -> np.ndarray:
    """
    Generate seeds on a circle.

    Parameters
    ----------
    center : array-like
        Circle center, shape (2,) or (3,)
    radius : float
        Circle radius
    n : int
        Number of seed points
    plane : str
        Circle plane: 'xy', 'xz', or 'yz'
    start_angle : float
        Starting angle in radians
    """
    if n <= 0:
        return np.zeros((0, 3))
    c = _ensure_seed_positions_shape(center)[0]
    angles = np.linspace(start_angle, start_angle + 2 * np.pi, n, endpoint=False)
    axes = {"xy": (0, 1), "xz": (0, 2), "yz": (1, 2)}
    if plane not in axes:
        raise ValueError(f"Unknown plane: {plane}. Use 'xy', 'xz', or 'yz'")
    i, j = axes[plane]
    positions = np.repeat(c[None, :], n, axis=0)
    positions[:, i] += radius * np.cos(angles)
    positions[:, j] += radius * np.sin(angles)
    return positions


def make_sources(*point_sets: np.ndarray) -> List[SeedSource]:
    """One SeedSource per point set, numbered in order."""
    return [SeedSource(points=p, source_id=i) for i, p in enumerate(point_sets)]
