# advectrace/tracking/particles.py
"""
Particle records and the live particle population.

A ParticleRecord is the unit of integration state: position and time,
cache hints for both temporal slots, identity, lifecycle counters and
diagnostic scalars. The ParticlePopulation owns the live records of one
process; removal is serialized by a single lock so worker threads can
drop their own particle while others are still integrating.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterator, List, Optional
import threading
import numpy as np


class LocationState(IntEnum):
    """Result of the last spatial lookup of a particle."""
    NOT_LOCATED = 0
    LOCATED_VIA_HINT = 1
    LOCATED_VIA_SEARCH = 2
    OUT_OF_DOMAIN = 3


class ErrorCode(IntEnum):
    """Per-particle error recorded in the ErrorCode output array."""
    NONE = 0
    OUT_OF_SPATIAL_DOMAIN = 1
    OUT_OF_TEMPORAL_WINDOW = 2
    SOLVER_DIVERGENCE = 3
    LOST_AT_BOUNDARY = 4


class TerminationReason(IntEnum):
    """Why a particle stopped being advanced."""
    SPEED_BELOW_TERMINAL = 1
    TIME_LIMIT_REACHED = 2
    OUT_OF_SPATIAL_DOMAIN = 3
    OUT_OF_TEMPORAL_WINDOW = 4
    SOLVER_DIVERGENCE = 5
    LOST_AT_BOUNDARY = 6

    @property
    def error_code(self) -> ErrorCode:
        """Error code implied by this reason (NONE for normal end of life)."""
        return _REASON_ERRORS.get(self, ErrorCode.NONE)


_REASON_ERRORS = {
    TerminationReason.OUT_OF_SPATIAL_DOMAIN: ErrorCode.OUT_OF_SPATIAL_DOMAIN,
    TerminationReason.OUT_OF_TEMPORAL_WINDOW: ErrorCode.OUT_OF_TEMPORAL_WINDOW,
    TerminationReason.SOLVER_DIVERGENCE: ErrorCode.SOLVER_DIVERGENCE,
    TerminationReason.LOST_AT_BOUNDARY: ErrorCode.LOST_AT_BOUNDARY,
}


@dataclass(frozen=True)
class CacheHint:
    """Last known (block, cell) of a particle in one cache slot."""
    block_id: int
    cell_id: int


@dataclass
class ParticleRecord:
    """
    Per-particle integration state.

    Attributes
    ----------
    position : (4,) float64
        x, y, z and simulation time
    hints : list of two Optional[CacheHint]
        Cache coherency hints for slot 0 (previous) and slot 1 (current)
    location_state : LocationState
        Outcome of the last lookup; hints are trusted only after a success
    unique_id : int
        Global id, assigned once (-1 until assigned)
    source_id, injected_point_id, injected_step_id : int
        Which seed source, seed point and step produced the particle
    injection_time : float
        Simulation time at injection (age is measured from it)
    time_step_age : int
        Steps survived
    simulation_time : float
        Time of the last successful integration
    age, rotation, angular_velocity, speed : float
        Diagnostic scalars
    vorticity : (3,) float64
    error_code : ErrorCode
    data : dict
        Upstream point data interpolated at the particle
    point_id : int
        Row in the current attribute buffer (-1 if none)
    tail_point_id : int or None
        Position in the received list of the exchange round that delivered
        the particle; cleared once it has a row in the attribute buffer
    """
    position: np.ndarray
    hints: List[Optional[CacheHint]] = field(default_factory=lambda: [None, None])
    location_state: LocationState = LocationState.NOT_LOCATED

    unique_id: int = -1
    source_id: int = 0
    injected_point_id: int = 0
    injected_step_id: int = 0
    injection_time: float = 0.0

    time_step_age: int = 0
    simulation_time: float = 0.0

    age: float = 0.0
    rotation: float = 0.0
    angular_velocity: float = 0.0
    speed: float = 0.0
    vorticity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation_time: Optional[float] = None
    error_code: ErrorCode = ErrorCode.NONE

    data: Dict[str, np.ndarray] = field(default_factory=dict)

    point_id: int = -1
    tail_point_id: Optional[int] = None

    def __post_init__(self):
        pos = np.asarray(self.position, dtype=np.float64).ravel()
        if pos.shape[0] == 3:
            pos = np.concatenate([pos, [self.simulation_time]])
        if pos.shape[0] != 4:
            raise ValueError(f"position must have 3 or 4 entries, got {pos.shape[0]}")
        self.position = pos
        self.simulation_time = float(pos[3])
        self.hints = list(self.hints)

    @property
    def xyz(self) -> np.ndarray:
        return self.position[:3]

    @property
    def time(self) -> float:
        return float(self.position[3])

    def assign_unique_id(self, uid: int) -> None:
        """Set the global id; ids are immutable once assigned."""
        if self.unique_id >= 0:
            raise ValueError(f"Particle already has id {self.unique_id}")
        self.unique_id = int(uid)

    def move_to(self, xyz: np.ndarray, t: float) -> None:
        self.position = np.concatenate([np.asarray(xyz, dtype=np.float64)[:3], [float(t)]])

    def trusted_hints(self) -> List[Optional[CacheHint]]:
        """Hints usable for the next lookup (none unless a lookup succeeded)."""
        if self.location_state in (LocationState.LOCATED_VIA_HINT, LocationState.LOCATED_VIA_SEARCH):
            return list(self.hints)
        return [None, None]

    def invalidate_hints(self) -> None:
        self.hints = [None, None]
        self.location_state = LocationState.NOT_LOCATED


class AliveCounter:
    """Lock-protected count of live particles shared by worker threads."""

    def __init__(self, value: int = 0):
        self._value = int(value)
        self._lock = threading.Lock()

    def increment(self, n: int = 1) -> int:
        with self._lock:
            self._value += n
            return self._value

    def decrement(self, n: int = 1) -> int:
        with self._lock:
            self._value -= n
            return self._value

    def reset(self, value: int = 0) -> None:
        with self._lock:
            self._value = int(value)

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class ParticlePopulation:
    """
    Live particles of one process, keyed by unique id.

    Iteration walks a snapshot of the current records, so removing
    particles while iterating (from any thread) is safe.
    """

    def __init__(self):
        self._particles: Dict[int, ParticleRecord] = {}
        self._lock = threading.Lock()
        self.alive = AliveCounter()

    def add(self, particle: ParticleRecord) -> None:
        if particle.unique_id < 0:
            raise ValueError("Particle must have a unique id before joining the population")
        with self._lock:
            if particle.unique_id in self._particles:
                raise ValueError(f"Duplicate particle id {particle.unique_id}")
            self._particles[particle.unique_id] = particle
        self.alive.increment()

    def extend(self, particles) -> None:
        for p in particles:
            self.add(p)

    def remove(self, unique_id: int) -> Optional[ParticleRecord]:
        """Remove and return a particle (None if already gone)."""
        with self._lock:
            particle = self._particles.pop(unique_id, None)
        if particle is not None:
            self.alive.decrement()
        return particle

    def get(self, unique_id: int) -> Optional[ParticleRecord]:
        with self._lock:
            return self._particles.get(unique_id)

    def snapshot(self) -> List[ParticleRecord]:
        with self._lock:
            return list(self._particles.values())

    def clear(self) -> None:
        with self._lock:
            self._particles.clear()
        self.alive.reset()

    def __iter__(self) -> Iterator[ParticleRecord]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._particles)

    def __contains__(self, unique_id: int) -> bool:
        with self._lock:
            return unique_id in self._particles

    def ids(self) -> List[int]:
        with self._lock:
            return list(self._particles.keys())

    def positions(self) -> np.ndarray:
        """(N, 4) positions of the live particles, in population order."""
        parts = self.snapshot()
        if not parts:
            return np.zeros((0, 4))
        return np.stack([p.position for p in parts], axis=0)
