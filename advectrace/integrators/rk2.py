# advectrace/integrators/rk2.py
"""
Second-order Runge-Kutta (midpoint) integration.

Works on a single position (3,) or a batch (N, 3) in float64.
"""

from __future__ import annotations
from dataclasses import dataclass

import numpy as np

from .base import FieldFn, StepResult, _as_float64


def rk2_step(x: np.ndarray, t: float, dt: float, field_fn: FieldFn) -> np.ndarray:
    """
    Second-order Runge-Kutta (midpoint method) integration step.

    Performs: x_{n+1} = x_n + dt * v(x_n + dt/2 * v(x_n, t_n), t_n + dt/2)

    Parameters
    ----------
    x : np.ndarray
        Current position, shape (3,) or (N, 3)
    t : float
        Current time
    dt : float
        Time step size
    field_fn : FieldFn
        Velocity field function

    Returns
    -------
    np.ndarray
        Updated position, same shape as `x`
    """
    x = _as_float64(x)
    v1 = _as_float64(field_fn(x, t))
    x_mid = x + 0.5 * dt * v1
    v2 = _as_float64(field_fn(x_mid, t + 0.5 * dt))
    return x + dt * v2


@dataclass
class RK2Solver:
    """Fixed-step midpoint solver."""
    name: str = "rk2"
    order: int = 2
    adaptive: bool = False

    def step(self, x, t, h, field_fn, min_step=0.0, max_step=np.inf, max_error=0.0) -> StepResult:
        x_next = rk2_step(x, t, h, field_fn)
        return StepResult(x=x_next, t=t + h, h_used=h, h_next=h)
