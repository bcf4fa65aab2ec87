# advectrace/fields/snapshot.py
"""Composite (multi-block) field snapshot at one simulation time."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import numpy as np

from ..utils.spatial import AABB, bounds_table, union_box
from .base import FieldBlock


@dataclass
class FieldSnapshot:
    """
    The local partition of a vector field at one time.

    Attributes
    ----------
    time : float or None
        Simulation time of the snapshot (None if the source did not report one)
    blocks : list of FieldBlock
        Local blocks; `block_id` of each block is its index in this list
    """
    time: Optional[float]
    blocks: List[FieldBlock] = field(default_factory=list)

    def __post_init__(self):
        self.blocks = list(self.blocks)
        for i, block in enumerate(self.blocks):
            block.block_id = i
        self._table: Optional[np.ndarray] = None

    @property
    def num_blocks(self) -> int:
        return len(self.blocks)

    def bounds_table(self) -> np.ndarray:
        """(B, 2, 3) per-block bounds, computed once."""
        if self._table is None:
            self._table = bounds_table([b.bounds() for b in self.blocks])
        return self._table

    def bounds(self) -> Optional[AABB]:
        return union_box(self.bounds_table())

    @property
    def vector_names(self) -> Sequence[str]:
        return [b.vector_name for b in self.blocks]
