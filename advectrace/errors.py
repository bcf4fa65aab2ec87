# advectrace/errors.py
"""
Run-aborting errors.

Per-particle problems never raise; they are recorded in the particle's
error code (see `advectrace.tracking.particles.ErrorCode`). The exceptions
below are surfaced to the caller before any particle is advanced.
"""

from __future__ import annotations


class AdvectionError(RuntimeError):
    """Base class for fatal advection errors."""


class MissingTimeInformationError(AdvectionError):
    """The dataset provider could not report the simulation time of a snapshot."""


class SchemaMismatchError(AdvectionError):
    """Point-data arrays differ across blocks or processes."""


class PointNotLocated(Exception):
    """
    Raised by field evaluation when a point is outside the local partition.

    Control-flow signal between the interpolator, the solvers and the
    integration engine; never escapes the engine.
    """

    def __init__(self, point, time=None):
        super().__init__(f"point {tuple(float(v) for v in point[:3])} not located at t={time}")
        self.point = point
        self.time = time
