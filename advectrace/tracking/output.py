# advectrace/tracking/output.py
"""
Output assembly.

Particles are compacted into parallel attribute arrays (the upstream
point data interpolated at each particle plus the engine-generated
arrays) and handed to an assembler that builds the geometry:

- ParticleFrontAssembler : one vertex per particle
- PathlineAssembler      : one polyline per particle over all steps
- StreaklineAssembler    : one polyline per seed point through the
                           particles it released
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple
import numpy as np

from ..fields.schema import ArraySpec, AttributeSchema
from .particles import ParticleRecord

# Engine-generated array names
PARTICLE_AGE = "ParticleAge"
PARTICLE_ID = "ParticleId"
PARTICLE_SOURCE_ID = "ParticleSourceId"
INJECTED_POINT_ID = "InjectedPointId"
INJECTED_STEP_ID = "InjectedStepId"
ERROR_CODE = "ErrorCode"
VORTICITY = "Vorticity"
ROTATION = "Rotation"
ANGULAR_VELOCITY = "AngularVelocity"


def engine_array_specs(compute_vorticity: bool = True) -> List[ArraySpec]:
    """Specs of the arrays the engine appends to the upstream point data."""
    specs = [
        ArraySpec(PARTICLE_AGE, np.dtype(np.float64).str, 1),
        ArraySpec(PARTICLE_ID, np.dtype(np.int64).str, 1),
        ArraySpec(PARTICLE_SOURCE_ID, np.dtype(np.int64).str, 1),
        ArraySpec(INJECTED_POINT_ID, np.dtype(np.int64).str, 1),
        ArraySpec(INJECTED_STEP_ID, np.dtype(np.int64).str, 1),
        ArraySpec(ERROR_CODE, np.dtype(np.int32).str, 1),
    ]
    if compute_vorticity:
        specs += [
            ArraySpec(VORTICITY, np.dtype(np.float64).str, 3),
            ArraySpec(ROTATION, np.dtype(np.float64).str, 1),
            ArraySpec(ANGULAR_VELOCITY, np.dtype(np.float64).str, 1),
        ]
    return specs


def particle_values(particle: ParticleRecord, compute_vorticity: bool = True) -> Dict[str, object]:
    """Engine-generated and upstream values of one particle, by array name."""
    values: Dict[str, object] = dict(particle.data)
    values[PARTICLE_AGE] = particle.age
    values[PARTICLE_ID] = particle.unique_id
    values[PARTICLE_SOURCE_ID] = particle.source_id
    values[INJECTED_POINT_ID] = particle.injected_point_id
    values[INJECTED_STEP_ID] = particle.injected_step_id
    values[ERROR_CODE] = int(particle.error_code)
    if compute_vorticity:
        values[VORTICITY] = particle.vorticity
        values[ROTATION] = particle.rotation
        values[ANGULAR_VELOCITY] = particle.angular_velocity
    return values


class AttributeBuffer:
    """
    Growable column store laid out from an AttributeSchema.

    Rows are appended one particle at a time; values missing from a row
    are left at zero.
    """

    def __init__(self, schema: AttributeSchema, capacity: int = 64):
        self.schema = schema
        self._size = 0
        self._capacity = max(1, int(capacity))
        self._points = np.zeros((self._capacity, 3))
        self._times = np.zeros(self._capacity)
        self._columns: Dict[str, np.ndarray] = {s.name: s.empty(self._capacity) for s in schema}

    def __len__(self) -> int:
        return self._size

    def _grow(self) -> None:
        cap = self._capacity * 2
        self._points = np.concatenate([self._points, np.zeros((self._capacity, 3))])
        self._times = np.concatenate([self._times, np.zeros(self._capacity)])
        for spec in self.schema:
            self._columns[spec.name] = np.concatenate([self._columns[spec.name], spec.empty(self._capacity)])
        self._capacity = cap

    def append(self, point: np.ndarray, time: float, values: Dict[str, object]) -> int:
        """Add one row; returns its index."""
        if self._size == self._capacity:
            self._grow()
        row = self._size
        self._points[row] = np.asarray(point, dtype=float)[:3]
        self._times[row] = time
        for name, col in self._columns.items():
            if name in values:
                col[row] = values[name]
        self._size += 1
        return row

    def extend_from(self, other: "AttributeBuffer", rows: Sequence[int]) -> List[int]:
        """Copy `rows` of another buffer with the same layout; returns the new indices."""
        out = []
        for r in rows:
            values = {name: col[r] for name, col in other._columns.items()}
            out.append(self.append(other._points[r], other._times[r], values))
        return out

    def row(self, index: int) -> Dict[str, np.ndarray]:
        return {name: col[index] for name, col in self._columns.items()}

    @property
    def points(self) -> np.ndarray:
        return self._points[: self._size].copy()

    @property
    def times(self) -> np.ndarray:
        return self._times[: self._size].copy()

    def arrays(self) -> Dict[str, np.ndarray]:
        return {name: col[: self._size].copy() for name, col in self._columns.items()}

    def clear(self) -> None:
        self._size = 0


@dataclass
class ParticleOutput:
    """
    Assembled particle geometry.

    Attributes
    ----------
    points : (N, 3) float64
    times : (N,) float64, optional
        Simulation time of each point
    arrays : dict
        name -> (N,) or (N, C) point arrays
    lines : list of int arrays
        Polylines as indices into `points`
    vertices : (V,) int
        Points emitted as single vertices
    """
    points: np.ndarray
    times: Optional[np.ndarray] = None
    arrays: Dict[str, np.ndarray] = field(default_factory=dict)
    lines: List[np.ndarray] = field(default_factory=list)
    vertices: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))

    @property
    def num_points(self) -> int:
        return int(self.points.shape[0])

    @property
    def num_lines(self) -> int:
        return len(self.lines)

    @classmethod
    def empty(cls, schema: Optional[AttributeSchema] = None) -> "ParticleOutput":
        arrays = {s.name: s.empty(0) for s in schema} if schema is not None else {}
        return cls(points=np.zeros((0, 3)), times=np.zeros(0), arrays=arrays)


class ParticleWriter(Protocol):
    """Sink for per-step particle output."""

    def write(self, step: int, time: float, output: ParticleOutput) -> None:
        ...


class OutputAssembler:
    """
    Base assembler: compacts particles into an AttributeBuffer.

    Subclasses override `_geometry` to build lines and vertices.
    """

    def __init__(self, compute_vorticity: bool = True):
        self.compute_vorticity = compute_vorticity
        self.schema: Optional[AttributeSchema] = None
        self.buffer: Optional[AttributeBuffer] = None

    def layout(self, upstream: AttributeSchema) -> AttributeSchema:
        """Fix the output layout: upstream arrays then engine arrays."""
        self.schema = upstream.extended(engine_array_specs(self.compute_vorticity))
        self.buffer = AttributeBuffer(self.schema)
        return self.schema

    def reset(self) -> None:
        if self.buffer is not None:
            self.buffer.clear()

    def compact(self, particles: Sequence[ParticleRecord]) -> AttributeBuffer:
        """Write every particle into a fresh buffer; sets `point_id`."""
        if self.schema is None:
            self.layout(AttributeSchema())
        self.buffer = AttributeBuffer(self.schema, capacity=max(len(particles), 1))
        for p in particles:
            p.point_id = self.buffer.append(p.xyz, p.time, particle_values(p, self.compute_vorticity))
            p.tail_point_id = None
        return self.buffer

    def assemble(self, particles: Sequence[ParticleRecord], time: float) -> ParticleOutput:
        particles = list(particles)
        buffer = self.compact(particles)
        output = ParticleOutput(points=buffer.points, times=buffer.times, arrays=buffer.arrays())
        return self._geometry(particles, output, time)

    def _geometry(self, particles: List[ParticleRecord], output: ParticleOutput, time: float) -> ParticleOutput:
        return output


class ParticleFrontAssembler(OutputAssembler):
    """Current particle positions as vertices."""

    def _geometry(self, particles, output, time):
        output.vertices = np.arange(output.num_points, dtype=np.int64)
        return output


class PathlineAssembler(OutputAssembler):
    """
    Accumulates the positions of each particle over steps.

    Parameters
    ----------
    keep_dead : bool
        Keep the lines of particles that are no longer alive
    """

    def __init__(self, compute_vorticity: bool = True, keep_dead: bool = False):
        super().__init__(compute_vorticity)
        self.keep_dead = keep_dead
        self.history: AttributeBuffer = None  # type: ignore[assignment]
        self._rows: Dict[int, List[int]] = {}

    def layout(self, upstream):
        schema = super().layout(upstream)
        self.history = AttributeBuffer(schema)
        self._rows = {}
        return schema

    def reset(self) -> None:
        super().reset()
        if self.history is not None:
            self.history.clear()
        self._rows = {}

    def assemble(self, particles, time):
        particles = list(particles)
        buffer = self.compact(particles)
        if self.history is None:
            self.history = AttributeBuffer(self.schema)

        alive = set()
        for p in particles:
            rows = self._rows.setdefault(p.unique_id, [])
            rows.extend(self.history.extend_from(buffer, [p.point_id]))
            alive.add(p.unique_id)

        if not self.keep_dead:
            for uid in [u for u in self._rows if u not in alive]:
                del self._rows[uid]
            self._compact_history()

        points, times, arrays, lines = [], [], [], []
        offset = 0
        keep = []
        for uid in sorted(self._rows):
            rows = self._rows[uid]
            keep.extend(rows)
            if len(rows) > 1:
                lines.append(np.arange(offset, offset + len(rows), dtype=np.int64))
            offset += len(rows)

        idx = np.asarray(keep, dtype=np.int64)
        all_arrays = self.history.arrays()
        output = ParticleOutput(
            points=self.history.points[idx] if idx.size else np.zeros((0, 3)),
            times=self.history.times[idx] if idx.size else np.zeros(0),
            arrays={k: v[idx] for k, v in all_arrays.items()},
            lines=lines,
        )
        return output

    def _compact_history(self) -> None:
        """Drop history rows no longer referenced."""
        used = sorted(r for rows in self._rows.values() for r in rows)
        if len(used) == len(self.history):
            return
        fresh = AttributeBuffer(self.schema, capacity=max(len(used), 1))
        remap = dict(zip(used, fresh.extend_from(self.history, used)))
        self._rows = {uid: [remap[r] for r in rows] for uid, rows in self._rows.items()}
        self.history = fresh


class StreaklineAssembler(OutputAssembler):
    """
    Connects particles released by the same seed point.

    Particles sharing (source id, injected point id) are joined in
    injection-step order, oldest first.
    """

    def _geometry(self, particles, output, time):
        groups: Dict[Tuple[int, int], List[ParticleRecord]] = {}
        for p in particles:
            groups.setdefault((p.source_id, p.injected_point_id), []).append(p)
        lines = []
        for key in sorted(groups):
            members = sorted(groups[key], key=lambda p: (p.injected_step_id, p.unique_id))
            if len(members) > 1:
                lines.append(np.asarray([p.point_id for p in members], dtype=np.int64))
        output.lines = lines
        return output


ASSEMBLERS = {
    "front": ParticleFrontAssembler,
    "pathline": PathlineAssembler,
    "streakline": StreaklineAssembler,
}


def get_assembler(name: str, **kwargs) -> OutputAssembler:
    key = name.lower()
    if key not in ASSEMBLERS:
        raise ValueError(f"Unknown assembler '{name}'. Available: {sorted(ASSEMBLERS)}")
    return ASSEMBLERS[key](**kwargs)
