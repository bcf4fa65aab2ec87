# advectrace/integrators/rk4.py

from __future__ import annotations
from dataclasses import dataclass

import numpy as np

from .base import FieldFn, StepResult, _as_float64


def _rk4_combine(x, dt, k1, k2, k3, k4):
    return x + dt / 6.0 * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


def rk4_step(x: np.ndarray, t: float, dt: float, field_fn: FieldFn) -> np.ndarray:
    """
    Runge-Kutta 4 integrator.

    Parameters
    ----------
    x : (3,) or (N, 3) positions
    t : scalar time
    dt : scalar step
    field_fn : callable(position, time) -> velocity

    Returns
    -------
    x_next : positions after one step
    """
    x = _as_float64(x)
    dt_half = 0.5 * dt

    k1 = _as_float64(field_fn(x, t))
    k2 = _as_float64(field_fn(x + dt_half * k1, t + dt_half))
    k3 = _as_float64(field_fn(x + dt_half * k2, t + dt_half))
    k4 = _as_float64(field_fn(x + dt * k3, t + dt))

    return _rk4_combine(x, dt, k1, k2, k3, k4)


@dataclass
class RK4Solver:
    """Fixed-step classical Runge-Kutta solver."""
    name: str = "rk4"
    order: int = 4
    adaptive: bool = False

    def step(self, x, t, h, field_fn, min_step=0.0, max_step=np.inf, max_error=0.0) -> StepResult:
        x_next = rk4_step(x, t, h, field_fn)
        return StepResult(x=x_next, t=t + h, h_used=h, h_next=h)
