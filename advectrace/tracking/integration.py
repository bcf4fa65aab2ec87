# advectrace/tracking/integration.py
"""
Single-particle integration engine.

Advances one particle from `from_time` to `to_time` through the cached
field with a pluggable solver and classifies how the attempt ended:

- Advanced       : reached `to_time`
- Terminated     : end of life (slow, time limit) or a per-particle error
- ExitedDomain   : a solver stage or the new position left the local partition

The engine never raises for per-particle problems; it records them in the
particle's error code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union
import numpy as np

from ..errors import PointNotLocated
from ..fields.base import velocity_curl
from ..integrators.base import Solver
from .interpolator import FieldSample, TemporalInterpolator
from .particles import ErrorCode, LocationState, ParticleRecord, TerminationReason

# Relative slack when comparing simulation times
TIME_EPSILON = 1e-12


@dataclass
class Advanced:
    """Particle reached the requested time."""
    particle: ParticleRecord


@dataclass
class Terminated:
    """Particle stopped; `error_code` is NONE for normal end of life."""
    particle: ParticleRecord
    reason: TerminationReason

    @property
    def error_code(self) -> ErrorCode:
        return self.reason.error_code


@dataclass
class ExitedDomain:
    """
    Particle left the local partition.

    Attributes
    ----------
    particle : the record (still at `last_valid_point`)
    last_valid_point : (4,) last located position and time
    velocity : (3,) velocity at `last_valid_point`
    step : signed time step that was being attempted
    """
    particle: ParticleRecord
    last_valid_point: np.ndarray
    velocity: np.ndarray
    step: float


Outcome = Union[Advanced, Terminated, ExitedDomain]


@dataclass
class IntegrationSettings:
    """Step control and termination criteria of the engine."""
    max_step: float = 0.5
    min_step: float = 1e-3
    max_error: float = 1e-6
    terminal_speed: float = 1e-12
    termination_time: Optional[float] = None
    compute_vorticity: bool = True
    rotation_scale: float = 1.0


def _close(a: float, b: float) -> bool:
    return abs(a - b) <= TIME_EPSILON * max(1.0, abs(a), abs(b))


class IntegrationEngine:
    """
    Integrates single particles through a TemporalInterpolator.

    Parameters
    ----------
    interpolator : TemporalInterpolator
        Field evaluation over the temporal cache
    settings : IntegrationSettings
        Step sizes, error bound and termination criteria
    """

    def __init__(self, interpolator: TemporalInterpolator, settings: Optional[IntegrationSettings] = None):
        self.interpolator = interpolator
        self.settings = settings or IntegrationSettings()

    # ---------- Helpers ----------

    def _within_window(self, from_time: float, to_time: float) -> bool:
        cache = self.interpolator.cache
        if cache.steady:
            return True
        t0, t1 = cache.window()
        lo, hi = min(from_time, to_time), max(from_time, to_time)
        return (lo > t0 or _close(lo, t0)) and (hi < t1 or _close(hi, t1))

    def apply_sample(self, particle: ParticleRecord, sample: FieldSample, t: float) -> None:
        particle.hints = list(sample.hints)
        particle.location_state = sample.state
        particle.speed = sample.speed
        particle.data = sample.data
        particle.simulation_time = t
        particle.age = t - particle.injection_time

    def _update_vorticity(self, particle: ParticleRecord, sample: FieldSample, t: float) -> None:
        """Angular velocity from the vorticity, rotation by the trapezoidal rule."""
        if sample.gradient is None:
            return
        vort = velocity_curl(sample.gradient)
        speed = sample.speed
        omega = 0.0
        if speed > 0.0:
            omega = float(np.dot(vort, sample.velocity) / speed) * self.settings.rotation_scale
        if particle.rotation_time is not None:
            dt = t - particle.rotation_time
            particle.rotation += 0.5 * (omega + particle.angular_velocity) * dt
        particle.vorticity = vort
        particle.angular_velocity = omega
        particle.rotation_time = t

    def _terminate(self, particle: ParticleRecord, reason: TerminationReason) -> Terminated:
        if reason.error_code != ErrorCode.NONE:
            particle.error_code = reason.error_code
        return Terminated(particle, reason)

    def initialize(self, particle: ParticleRecord) -> bool:
        """
        Locate a freshly injected or received particle at its own time.

        Fills hints, speed, data and the initial angular velocity. Returns
        False if the particle is not inside the local partition.
        """
        try:
            sample = self.interpolator.evaluate(
                particle.xyz, particle.time, particle.trusted_hints(),
                want_gradient=self.settings.compute_vorticity,
            )
        except PointNotLocated:
            particle.location_state = LocationState.OUT_OF_DOMAIN
            return False
        self.apply_sample(particle, sample, particle.time)
        if self.settings.compute_vorticity:
            self._update_vorticity(particle, sample, particle.time)
        return True

    # ---------- Main entry ----------

    def integrate(self, particle: ParticleRecord, from_time: float, to_time: float, solver: Solver) -> Outcome:
        """
        Advance `particle` from `from_time` to `to_time`.

        Parameters
        ----------
        particle : ParticleRecord
            Modified in place; its position time should equal `from_time`
        from_time, to_time : float
            Interval to integrate (must lie inside the cached window)
        solver : Solver
            Step method

        Returns
        -------
        Advanced | Terminated | ExitedDomain
        """
        s = self.settings

        if not self._within_window(from_time, to_time):
            return self._terminate(particle, TerminationReason.OUT_OF_TEMPORAL_WINDOW)

        direction = 1.0 if to_time >= from_time else -1.0
        limit = to_time
        if s.termination_time is not None:
            if (s.termination_time - from_time) * direction <= 0.0 or _close(from_time, s.termination_time):
                return self._terminate(particle, TerminationReason.TIME_LIMIT_REACHED)
            if (s.termination_time - to_time) * direction < 0.0:
                limit = s.termination_time

        x = particle.xyz.copy()
        t = float(from_time)
        hints = particle.trusted_hints()

        try:
            sample = self.interpolator.evaluate(x, t, hints)
        except PointNotLocated:
            particle.location_state = LocationState.OUT_OF_DOMAIN
            return ExitedDomain(particle, particle.position.copy(), np.zeros(3), direction * s.max_step)
        velocity = sample.velocity
        hints = list(sample.hints)

        h = direction * s.max_step
        min_step = min(s.min_step, s.max_step)

        while (limit - t) * direction > 0.0 and not _close(t, limit):
            remaining = limit - t
            if abs(h) > abs(remaining):
                h = remaining

            stage_hints = list(hints)
            fn = self.interpolator.velocity_function(stage_hints)
            try:
                result = solver.step(x, t, h, fn, min_step=min_step, max_step=s.max_step, max_error=s.max_error)
            except PointNotLocated:
                particle.location_state = LocationState.OUT_OF_DOMAIN
                return ExitedDomain(particle, np.concatenate([x, [t]]), velocity, h)

            if not result.converged:
                return self._terminate(particle, TerminationReason.SOLVER_DIVERGENCE)

            t_new = result.t
            if _close(t_new, limit):
                t_new = limit
            try:
                sample = self.interpolator.evaluate(
                    result.x, t_new, stage_hints, want_gradient=s.compute_vorticity
                )
            except PointNotLocated:
                particle.location_state = LocationState.OUT_OF_DOMAIN
                return ExitedDomain(particle, np.concatenate([x, [t]]), velocity, result.h_used)

            x = np.asarray(result.x, dtype=float)
            t = t_new
            velocity = sample.velocity
            hints = list(sample.hints)
            particle.move_to(x, t)
            self.apply_sample(particle, sample, t)
            if s.compute_vorticity:
                self._update_vorticity(particle, sample, t)

            if sample.speed <= s.terminal_speed:
                return self._terminate(particle, TerminationReason.SPEED_BELOW_TERMINAL)
            if s.termination_time is not None and (_close(t, s.termination_time)
                                                   or (t - s.termination_time) * direction > 0.0):
                return self._terminate(particle, TerminationReason.TIME_LIMIT_REACHED)

            h = result.h_next if result.h_next != 0.0 else direction * s.max_step
            if abs(h) > s.max_step:
                h = direction * s.max_step

        return Advanced(particle)
