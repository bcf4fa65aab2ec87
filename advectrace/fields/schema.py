# advectrace/fields/schema.py
"""
Attribute schema of point data and the validity gate.

Every block of every cached snapshot, on every process, must expose the
same arrays (name, dtype kind, component count) because the per-particle
attribute layout is built once from the first snapshot.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, Optional, Tuple
import numpy as np

from ..errors import SchemaMismatchError

if TYPE_CHECKING:
    from ..parallel import Communicator
    from .snapshot import FieldSnapshot


@dataclass(frozen=True)
class ArraySpec:
    """Name, dtype and component count of one per-point array."""
    name: str
    dtype: str
    components: int

    @classmethod
    def from_array(cls, name: str, arr: np.ndarray) -> "ArraySpec":
        a = np.asarray(arr)
        components = 1 if a.ndim == 1 else int(a.shape[1])
        return cls(name=name, dtype=np.dtype(a.dtype).str, components=components)

    def empty(self, n: int = 0) -> np.ndarray:
        shape = (n,) if self.components == 1 else (n, self.components)
        return np.zeros(shape, dtype=np.dtype(self.dtype))


@dataclass(frozen=True)
class AttributeSchema:
    """Ordered collection of ArraySpec (sorted by name)."""
    specs: Tuple[ArraySpec, ...] = ()

    @classmethod
    def from_point_data(cls, point_data: Dict[str, np.ndarray]) -> "AttributeSchema":
        return cls(tuple(ArraySpec.from_array(n, point_data[n]) for n in sorted(point_data)))

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.specs)

    def extended(self, extra: Iterable[ArraySpec]) -> "AttributeSchema":
        """Schema with `extra` arrays appended (engine-generated arrays)."""
        return AttributeSchema(self.specs + tuple(extra))

    def as_tuples(self) -> Tuple[Tuple[str, str, int], ...]:
        return tuple((s.name, s.dtype, s.components) for s in self.specs)

    def __len__(self) -> int:
        return len(self.specs)

    def __iter__(self):
        return iter(self.specs)


def validate_point_data(
    snapshots: Iterable["FieldSnapshot"],
    communicator: Optional["Communicator"] = None,
) -> AttributeSchema:
    """
    Check that every block of `snapshots` and every process agree on the schema.

    Parameters
    ----------
    snapshots : iterable of FieldSnapshot
        Snapshots currently cached on this process
    communicator : Communicator, optional
        When given, local schemas are all-gathered and compared across ranks.
        Every rank must call this collectively.

    Returns
    -------
    AttributeSchema
        The common schema

    Raises
    ------
    SchemaMismatchError
        If blocks or processes disagree
    """
    local: Optional[AttributeSchema] = None
    mismatch: Optional[str] = None
    for snap in snapshots:
        for block in snap.blocks:
            schema = AttributeSchema.from_point_data(block.point_data)
            if local is None:
                local = schema
            elif schema != local and mismatch is None:
                mismatch = (
                    f"block {block.block_id} at t={snap.time} exposes {schema.as_tuples()}, "
                    f"expected {local.as_tuples()}"
                )

    if communicator is not None and communicator.size > 1:
        # Gather before raising so no rank is left waiting in the collective
        gathered = communicator.allgather((local.as_tuples() if local is not None else None, mismatch))
        for rank, (tuples, remote_mismatch) in enumerate(gathered):
            if remote_mismatch is not None and mismatch is None:
                mismatch = f"rank {rank}: {remote_mismatch}"
            if tuples is None:
                continue
            if local is None:
                local = AttributeSchema(tuple(ArraySpec(*t) for t in tuples))
            elif tuples != local.as_tuples() and mismatch is None:
                mismatch = f"rank {rank} exposes {tuples}, expected {local.as_tuples()}"

    if mismatch is not None:
        raise SchemaMismatchError(f"Point data schema mismatch: {mismatch}")
    return local if local is not None else AttributeSchema()
