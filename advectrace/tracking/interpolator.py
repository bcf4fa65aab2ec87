# advectrace/tracking/interpolator.py
"""
Spatial/temporal field evaluation for single particles.

`locate` finds a point in one cache slot: the cached (block, cell) hint
is tried first, then the blocks whose bounding box contains the point,
then every remaining block. `evaluate` locates in the slots that carry
weight at the requested time and blends them linearly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import numpy as np

from ..errors import PointNotLocated
from ..fields.base import BlockSample, LocatorStrategy
from ..utils.spatial import boxes_containing_point
from .cache import MeshOverTime, TemporalCache
from .particles import CacheHint, LocationState


@dataclass
class FieldSample:
    """Field values at one point and time."""
    velocity: np.ndarray
    gradient: Optional[np.ndarray]
    data: Dict[str, np.ndarray]
    hints: List[Optional[CacheHint]]
    state: LocationState

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))


class TemporalInterpolator:
    """
    Evaluates the cached field at (x, y, z, t).

    Stateless apart from the cache it reads, so one instance is shared by
    every worker thread.
    """

    def __init__(self, cache: TemporalCache, locator: LocatorStrategy = LocatorStrategy.cell):
        self.cache = cache
        self.locator = LocatorStrategy(locator)

    # ---------- Single slot ----------

    def locate(
        self,
        point: np.ndarray,
        time: float,
        hint: Optional[CacheHint] = None,
        slot: int = 1,
        want_gradient: bool = False,
    ) -> Tuple[Optional[BlockSample], Optional[CacheHint], bool]:
        """
        Locate `point` in one slot and interpolate there.

        Returns
        -------
        (value, new_hint, found)
            `new_hint is hint` when the hint was valid.
        """
        p = np.asarray(point, dtype=float)[:3]
        snapshot = self.cache.snapshot(slot)
        blocks = snapshot.blocks

        if hint is not None and 0 <= hint.block_id < len(blocks):
            block = blocks[hint.block_id]
            if block.cell_contains(hint.cell_id, p):
                return block.interpolate(p, hint.cell_id, want_gradient), hint, True

        candidates = [int(b) for b in boxes_containing_point(p, self.cache.bounds(slot))]
        tried = set(candidates)
        order = candidates + [b for b in range(len(blocks)) if b not in tried]
        for b in order:
            cell = blocks[b].find_cell(p, self.locator)
            if cell is not None:
                new_hint = CacheHint(b, int(cell))
                return blocks[b].interpolate(p, cell, want_gradient), new_hint, True

        return None, None, False

    # ---------- Both slots ----------

    def weight(self, time: float) -> float:
        """Interpolation weight of slot 1 at `time` (0 for a steady cache)."""
        t0, t1 = self.cache.window()
        if t1 == t0:
            return 0.0
        return float(np.clip((time - t0) / (t1 - t0), 0.0, 1.0))

    def evaluate(
        self,
        point: np.ndarray,
        time: float,
        hints: Optional[Sequence[Optional[CacheHint]]] = None,
        want_gradient: bool = False,
    ) -> FieldSample:
        """
        Field at (point, time), blended between the two slots.

        Raises
        ------
        PointNotLocated
            If the point is outside the local partition in a slot it needs.
        """
        hints = list(hints) if hints is not None else [None, None]
        w = self.weight(time)
        steady = self.cache.steady
        static = self.cache.mesh_over_time == MeshOverTime.STATIC

        samples: List[Optional[BlockSample]] = [None, None]
        new_hints: List[Optional[CacheHint]] = list(hints)
        via_hint = True

        # Slot 1 first: with a static mesh its cell is reused for slot 0
        needed = [s for s in (1, 0) if (w > 0.0 if s == 1 else w < 1.0)]
        if steady:
            needed = [0]

        for s in needed:
            if s == 0 and static and samples[1] is not None and new_hints[1] is not None:
                h = new_hints[1]
                block = self.cache.snapshot(0).blocks[h.block_id]
                samples[0] = block.interpolate(point, h.cell_id, want_gradient)
                new_hints[0] = h
                continue
            value, new_hint, found = self.locate(point, time, hints[s], s, want_gradient)
            if not found:
                raise PointNotLocated(np.asarray(point, dtype=float), time)
            samples[s] = value
            new_hints[s] = new_hint
            via_hint = via_hint and (hints[s] is not None and new_hint == hints[s])

        if steady:
            new_hints[1] = new_hints[0]
            return self._sample(samples[0], None, 0.0, new_hints, via_hint)

        return self._sample(samples[0], samples[1], w, new_hints, via_hint)

    @staticmethod
    def _sample(s0: Optional[BlockSample], s1: Optional[BlockSample], w: float,
                hints: List[Optional[CacheHint]], via_hint: bool) -> FieldSample:
        state = LocationState.LOCATED_VIA_HINT if via_hint else LocationState.LOCATED_VIA_SEARCH
        if s1 is None:
            return FieldSample(s0.velocity, s0.gradient, dict(s0.data), hints, state)
        if s0 is None:
            return FieldSample(s1.velocity, s1.gradient, dict(s1.data), hints, state)

        velocity = (1.0 - w) * s0.velocity + w * s1.velocity
        gradient = None
        if s0.gradient is not None and s1.gradient is not None:
            gradient = (1.0 - w) * s0.gradient + w * s1.gradient
        data = {}
        for name, v0 in s0.data.items():
            v1 = s1.data.get(name, v0)
            data[name] = (1.0 - w) * np.asarray(v0, dtype=float) + w * np.asarray(v1, dtype=float)
        return FieldSample(velocity, gradient, data, hints, state)

    def velocity_function(self, hints: Optional[List[Optional[CacheHint]]] = None):
        """
        Derivative callable for the solvers.

        Stage evaluations reuse and refresh `hints` in place, so a particle's
        later stages start from the cell found by the earlier ones.
        """
        hints = hints if hints is not None else [None, None]

        def fn(x: np.ndarray, t: float) -> np.ndarray:
            sample = self.evaluate(x, t, hints)
            hints[:] = sample.hints
            return sample.velocity

        return fn
