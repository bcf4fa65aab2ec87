# advectrace/tracking/trails.py
"""
Temporal path-line trails.

Consumes one point set per time step (typically the particle fronts of a
tracer) and keeps, per particle id, a ring buffer of its most recent
positions. Each update returns the trails as polylines and the current
fronts as vertices.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple
import warnings
import numpy as np

from ..errors import MissingTimeInformationError
from .output import PARTICLE_ID, ParticleOutput

# Steps shorter than this are not appended to a trail
MIN_STEP_LENGTH = 1e-9


@dataclass
class _Trail:
    trail_id: int
    points: Deque[np.ndarray]
    values: Deque[Dict[str, np.ndarray]]
    front_point_id: int = -1
    alive: bool = True
    updated: bool = False

    @property
    def length(self) -> int:
        return len(self.points)


class TemporalPathLineFilter:
    """
    Builds path-line trails from successive point sets.

    Parameters
    ----------
    max_track_length : int
        Points kept per trail (ring buffer)
    mask_points : int
        Follow every n-th particle (by id, or by point index without ids)
    max_step_distance : (3,) float
        A step longer than this along any axis ends the trail
    keep_dead_trails : bool
        Keep trails whose particle disappeared
    backward_time : bool
        Time is expected to decrease between updates
    id_array_name : str
        Array holding particle ids (point index is used when absent)
    """

    def __init__(
        self,
        max_track_length: int = 10,
        mask_points: int = 200,
        max_step_distance=(1.0, 1.0, 1.0),
        keep_dead_trails: bool = False,
        backward_time: bool = False,
        id_array_name: Optional[str] = PARTICLE_ID,
    ):
        self.max_track_length = max_track_length
        self.mask_points = mask_points
        self.max_step_distance = np.asarray(max_step_distance, dtype=float).reshape(3)
        self.keep_dead_trails = keep_dead_trails
        self.backward_time = backward_time
        self.id_array_name = id_array_name
        self.selection: Optional[Set[int]] = None

        self.trails: Dict[int, _Trail] = {}
        self._latest_time: Optional[float] = None
        self._last_track_length: Optional[int] = None
        self._last_id_array_name = ""
        self._field_names: Optional[Tuple[str, ...]] = None

    # ---------- Configuration ----------

    @property
    def max_track_length(self) -> int:
        return self._max_track_length

    @max_track_length.setter
    def max_track_length(self, value: int) -> None:
        if value < 1:
            warnings.warn(f"max_track_length={value} is not positive, using 1")
            value = 1
        self._max_track_length = int(value)

    @property
    def mask_points(self) -> int:
        return self._mask_points

    @mask_points.setter
    def mask_points(self, value: int) -> None:
        if value < 1:
            warnings.warn(f"mask_points={value} is not positive, using 1")
            value = 1
        self._mask_points = int(value)

    def set_selection(self, ids: Optional[Iterable[int]]) -> None:
        """Restrict trails to these particle ids (None clears the selection)."""
        self.selection = None if ids is None else {int(i) for i in ids}

    def flush(self) -> None:
        """Drop every trail."""
        self.trails.clear()
        self._field_names = None

    # ---------- Update ----------

    def _trail(self, key: int) -> _Trail:
        trail = self.trails.get(key)
        if trail is None:
            trail = _Trail(
                trail_id=key,
                points=deque(maxlen=self.max_track_length),
                values=deque(maxlen=self.max_track_length),
            )
            self.trails[key] = trail
        return trail

    def _row(self, arrays: Dict[str, np.ndarray], index: int) -> Dict[str, np.ndarray]:
        return {name: np.asarray(arrays[name][index]) for name in self._field_names if name in arrays}

    def _increment(self, trail: _Trail, points: np.ndarray, arrays: Dict[str, np.ndarray], index: int) -> None:
        if index >= points.shape[0]:
            trail.alive = False
            trail.updated = True
            return

        point = points[index]
        if trail.updated and trail.length > 0:
            # Same id seen twice this step: keep the point closest to the previous one
            if trail.length > 1:
                ref = trail.points[-2]
                if np.sum((point - ref) ** 2) < np.sum((trail.points[-1] - ref) ** 2):
                    trail.points[-1] = point.copy()
                    trail.values[-1] = self._row(arrays, index)
            return

        dist = 1.0
        if trail.length > 0:
            delta = np.abs(trail.points[-1] - point)
            dist = float(np.linalg.norm(delta))
            if np.any(delta > self.max_step_distance):
                trail.alive = False
                trail.updated = True
                return

        if dist > MIN_STEP_LENGTH:
            trail.points.append(point.copy())
            trail.values.append(self._row(arrays, index))
            trail.updated = True
        trail.front_point_id = index
        trail.alive = True

    def _needs_flush(self, time: float, ids_name: str) -> bool:
        flush = False
        if ids_name != self._last_id_array_name:
            flush = True
            self._last_id_array_name = ids_name
        if self._latest_time is not None:
            if (not self.backward_time and time < self._latest_time) or (self.backward_time and time > self._latest_time):
                flush = True
        if self._last_track_length is not None and self._last_track_length != self.max_track_length:
            flush = True
        return flush

    def update(self, frame: ParticleOutput, time: Optional[float] = None) -> Tuple[ParticleOutput, ParticleOutput]:
        """
        Add one time step.

        Parameters
        ----------
        frame : ParticleOutput
            Points and point arrays of this step
        time : float
            Time of the step (taken from `frame.times` when omitted)

        Returns
        -------
        (lines, fronts) : ParticleOutput, ParticleOutput
        """
        if time is None:
            if frame.times is None or frame.times.size == 0:
                raise MissingTimeInformationError("Trail update without a time")
            time = float(frame.times[0])
        time = float(time)

        points = np.asarray(frame.points, dtype=float).reshape(-1, 3)
        arrays = frame.arrays
        ids = None
        if self.id_array_name and self.id_array_name in arrays:
            ids = np.asarray(arrays[self.id_array_name]).astype(np.int64).ravel()
        ids_name = self.id_array_name if ids is not None else ""

        if self._needs_flush(time, ids_name):
            self.flush()
        self._latest_time = time
        self._last_track_length = self.max_track_length

        if self._field_names is None and not self.trails:
            self._field_names = tuple(arrays.keys())

        for trail in self.trails.values():
            trail.alive = False
            trail.updated = False

        n = points.shape[0]
        if ids is not None and self.selection is not None:
            for i in range(n):
                if int(ids[i]) in self.selection:
                    self._increment(self._trail(int(ids[i])), points, arrays, i)
        elif ids is None:
            for i in range(0, n, self.mask_points):
                self._increment(self._trail(i), points, arrays, i)
        else:
            for i in range(n):
                if int(ids[i]) % self.mask_points == 0:
                    self._increment(self._trail(int(ids[i])), points, arrays, i)

        if not self.keep_dead_trails:
            for key in [k for k, t in self.trails.items() if not t.alive]:
                del self.trails[key]

        return self._build_output(points, arrays, time)

    # ---------- Output ----------

    def _build_output(self, points: np.ndarray, arrays: Dict[str, np.ndarray],
                      time: float) -> Tuple[ParticleOutput, ParticleOutput]:
        line_points: List[np.ndarray] = []
        columns: Dict[str, List[np.ndarray]] = {name: [] for name in (self._field_names or ())}
        trail_ids: List[float] = []
        track_length: List[int] = []
        lines: List[np.ndarray] = []
        front_rows: List[int] = []
        front_points: List[np.ndarray] = []

        for key in sorted(self.trails):
            trail = self.trails[key]
            if trail.length == 0:
                continue
            start = len(line_points)
            for p, (pt, vals) in enumerate(zip(trail.points, trail.values)):
                line_points.append(pt)
                for name in columns:
                    columns[name].append(vals.get(name))
                trail_ids.append(float(trail.trail_id))
                track_length.append(trail.length - p)
            front_points.append(trail.points[-1])
            front_rows.append(trail.front_point_id)
            if trail.length > 1:
                lines.append(np.arange(start, start + trail.length, dtype=np.int64))

        line_arrays = {name: np.asarray(vals) for name, vals in columns.items() if all(v is not None for v in vals)}
        line_arrays["TrailId"] = np.asarray(trail_ids, dtype=np.float32)
        line_arrays["TrackLength"] = np.asarray(track_length, dtype=np.uint32)
        line_output = ParticleOutput(
            points=np.asarray(line_points, dtype=float).reshape(-1, 3),
            arrays=line_arrays,
            lines=lines,
        )

        rows = np.asarray(front_rows, dtype=np.int64)
        valid = rows[(rows >= 0) & (rows < points.shape[0])] if rows.size else rows
        front_output = ParticleOutput(
            points=np.asarray(front_points, dtype=float).reshape(-1, 3),
            times=np.full(len(front_points), time),
            arrays={name: np.asarray(arr)[valid] for name, arr in arrays.items()} if valid.size == rows.size else {},
            vertices=np.arange(len(front_points), dtype=np.int64),
        )
        return line_output, front_output
