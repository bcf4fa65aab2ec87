# advectrace/tracking/cache.py
"""
Two-slot temporal cache of bracketing field snapshots.

Slot 0 holds the snapshot at the start of the current input-time bracket,
slot 1 the one at its end. Moving forward by one bracket shifts slot 1
into slot 0 and fetches only the new end snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional, Sequence, Tuple
import numpy as np

from ..errors import MissingTimeInformationError
from ..fields.snapshot import FieldSnapshot
from ..fields.time_series import TemporalDatasetProvider
from ..utils.spatial import boxes_containing_point


class MeshOverTime(IntEnum):
    """
    How the mesh of consecutive snapshots relates.

    DIFFERENT             : any change; cell hints are invalidated on fetch
    STATIC                : same mesh and positions; hints and weights reused
    LINEAR_TRANSFORMATION : same topology, points moved by a linear map
    SAME_TOPOLOGY         : same cells, points may move arbitrarily

    The classification is trusted, not checked: declaring a changing mesh
    STATIC produces wrong trajectories without any error.
    """
    DIFFERENT = 0
    STATIC = 1
    LINEAR_TRANSFORMATION = 2
    SAME_TOPOLOGY = 3


@dataclass
class CacheSlot:
    """One cached snapshot with its input index, time and bounds table."""
    snapshot: FieldSnapshot
    index: int
    time: float
    table: np.ndarray


@dataclass
class CacheUpdate:
    """Result of a refresh."""
    snapshots: Tuple[FieldSnapshot, FieldSnapshot]
    times: Tuple[float, float]
    fetched: bool = False
    shifted: bool = False


class TemporalCache:
    """
    Two-slot cache over a TemporalDatasetProvider.

    Parameters
    ----------
    provider : TemporalDatasetProvider
        Source of snapshots
    mesh_over_time : MeshOverTime
        Mesh variance classification (see MeshOverTime)
    """

    def __init__(self, provider: TemporalDatasetProvider, mesh_over_time: MeshOverTime = MeshOverTime.DIFFERENT):
        self.provider = provider
        self.mesh_over_time = MeshOverTime(mesh_over_time)
        self.slots: List[Optional[CacheSlot]] = [None, None]
        self.fetch_count = 0
        self._prefetched: Dict[int, CacheSlot] = {}

    # ---------- Times ----------

    def input_times(self) -> np.ndarray:
        times = self.provider.times
        if times is None or len(times) == 0:
            raise MissingTimeInformationError("Temporal dataset provider reported no times")
        if any(t is None for t in times):
            raise MissingTimeInformationError("Temporal dataset provider could not report a snapshot time")
        return np.asarray(times, dtype=float)

    def bracket(self, target_time: float) -> Tuple[int, int]:
        """Input indices (i0, i1) of the bracket containing `target_time` (clamped)."""
        times = self.input_times()
        if times.shape[0] == 1:
            return 0, 0
        i1 = int(np.searchsorted(times, target_time, side="left"))
        i1 = min(max(i1, 1), times.shape[0] - 1)
        return i1 - 1, i1

    # ---------- Refresh ----------

    def _load(self, index: int) -> CacheSlot:
        snapshot = self.provider.snapshot(index)
        self.fetch_count += 1
        if snapshot.time is None:
            raise MissingTimeInformationError(f"Snapshot {index} does not carry a simulation time")
        return CacheSlot(
            snapshot=snapshot,
            index=index,
            time=float(snapshot.time),
            table=snapshot.bounds_table(),
        )

    def _fetch(self, index: int) -> CacheSlot:
        slot = self._prefetched.pop(index, None)
        return slot if slot is not None else self._load(index)

    def prefetch(self, target_times: Sequence[float]) -> List[Tuple[FieldSnapshot, ...]]:
        """
        Load ahead every snapshot the brackets of `target_times` need.

        Returns the distinct snapshots of each bracket, in order. Loaded
        snapshots are held until `refresh` moves them into a slot, so each
        is still fetched from the provider only once.
        """
        held = {s.index: s for s in self.slots if s is not None}
        held.update(self._prefetched)
        brackets = []
        for t in target_times:
            i0, i1 = self.bracket(t)
            for i in (i0, i1):
                if i not in held:
                    held[i] = self._prefetched[i] = self._load(i)
            brackets.append((held[i0].snapshot,) if i0 == i1 else (held[i0].snapshot, held[i1].snapshot))
        return brackets

    def drop_prefetched(self) -> None:
        self._prefetched.clear()

    def refresh(self, target_time: float) -> CacheUpdate:
        """
        Make the slots bracket `target_time`.

        Nothing is fetched when the slots already hold the bracket. When the
        current slot holds the start of the new bracket it is shifted into
        the previous slot and only the new end is fetched.
        """
        i0, i1 = self.bracket(target_time)
        prev, cur = self.slots
        fetched = shifted = False

        if prev is not None and cur is not None and prev.index == i0 and cur.index == i1:
            pass
        elif cur is not None and cur.index == i0 and i0 != i1:
            self.slots[0] = cur
            self.slots[1] = self._fetch(i1)
            fetched = shifted = True
        else:
            first = self._fetch(i0)
            self.slots[0] = first
            self.slots[1] = first if i1 == i0 else self._fetch(i1)
            fetched = True

        return CacheUpdate(
            snapshots=(self.slots[0].snapshot, self.slots[1].snapshot),
            times=(self.slots[0].time, self.slots[1].time),
            fetched=fetched,
            shifted=shifted,
        )

    def reset(self) -> None:
        """Drop both slots; the next refresh rebuilds from scratch."""
        self.slots = [None, None]
        self._prefetched.clear()

    # ---------- Queries ----------

    @property
    def ready(self) -> bool:
        return self.slots[0] is not None and self.slots[1] is not None

    def _slot(self, slot: int) -> CacheSlot:
        s = self.slots[slot]
        if s is None:
            raise RuntimeError("Temporal cache is empty; call refresh() first")
        return s

    def snapshot(self, slot: int) -> FieldSnapshot:
        return self._slot(slot).snapshot

    def time(self, slot: int) -> float:
        return self._slot(slot).time

    def window(self) -> Tuple[float, float]:
        """Time span covered by the two slots."""
        return self._slot(0).time, self._slot(1).time

    @property
    def steady(self) -> bool:
        """Both slots hold the same snapshot (single-time provider)."""
        return self._slot(0).snapshot is self._slot(1).snapshot

    def bounds(self, slot: int = 1) -> np.ndarray:
        """(B, 2, 3) bounds table of a slot."""
        return self._slot(slot).table

    def contains(self, point: np.ndarray, slot: int = 1) -> bool:
        """Cheap test: is `point` inside any block box of `slot`?"""
        return boxes_containing_point(point, self.bounds(slot)).size > 0
