# advectrace/integrators/rk45.py
"""
Adaptive Runge-Kutta-Fehlberg 4(5) integration with Cash-Karp coefficients.

The embedded fourth-order solution gives the local error estimate. A step
whose error exceeds `max_error` is retried with a smaller step until it is
accepted or the step reaches `min_step`; in the latter case the result is
reported as not converged and the caller decides what to do.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .base import FieldFn, StepResult, _as_float64

# Cash-Karp tableau
_C = np.array([0.0, 1.0 / 5.0, 3.0 / 10.0, 3.0 / 5.0, 1.0, 7.0 / 8.0])
_A = [
    [],
    [1.0 / 5.0],
    [3.0 / 40.0, 9.0 / 40.0],
    [3.0 / 10.0, -9.0 / 10.0, 6.0 / 5.0],
    [-11.0 / 54.0, 5.0 / 2.0, -70.0 / 27.0, 35.0 / 27.0],
    [1631.0 / 55296.0, 175.0 / 512.0, 575.0 / 13824.0, 44275.0 / 110592.0, 253.0 / 4096.0],
]
_B5 = np.array([37.0 / 378.0, 0.0, 250.0 / 621.0, 125.0 / 594.0, 0.0, 512.0 / 1771.0])
_B4 = np.array([2825.0 / 27648.0, 0.0, 18575.0 / 48384.0, 13525.0 / 55296.0, 277.0 / 14336.0, 1.0 / 4.0])

# Step control
SAFETY = 0.9
MAX_GROWTH = 5.0
MAX_SHRINK = 0.1


def cash_karp_step(x: np.ndarray, t: float, dt: float, field_fn: FieldFn) -> Tuple[np.ndarray, float]:
    """
    One embedded Cash-Karp step.

    Returns
    -------
    x5 : fifth-order solution
    error : Euclidean norm of the difference to the fourth-order solution
    """
    x = _as_float64(x)
    k = []
    for i in range(6):
        xi = x.copy()
        for j, a in enumerate(_A[i]):
            xi = xi + dt * a * k[j]
        k.append(_as_float64(field_fn(xi, t + _C[i] * dt)))
    K = np.stack(k, axis=0)
    x5 = x + dt * np.tensordot(_B5, K, axes=1)
    x4 = x + dt * np.tensordot(_B4, K, axes=1)
    return x5, float(np.linalg.norm(x5 - x4))


def rk45_step(x: np.ndarray, t: float, dt: float, field_fn: FieldFn) -> np.ndarray:
    """Fixed-size fifth-order step (no error control)."""
    return cash_karp_step(x, t, dt, field_fn)[0]


@dataclass
class RK45Solver:
    """Adaptive Cash-Karp solver."""
    name: str = "rk45"
    order: int = 5
    adaptive: bool = True

    def step(self, x, t, h, field_fn, min_step=0.0, max_step=np.inf, max_error=0.0) -> StepResult:
        direction = 1.0 if h >= 0 else -1.0
        size = abs(h)
        min_step = min(abs(min_step), size)
        max_step = abs(max_step)

        while True:
            x_new, err = cash_karp_step(x, t, direction * size, field_fn)

            if max_error <= 0.0 or err <= max_error:
                if err > 0.0 and max_error > 0.0:
                    grow = min(MAX_GROWTH, SAFETY * (max_error / err) ** 0.2)
                else:
                    grow = MAX_GROWTH
                next_size = min(max_step, max(min_step, size * max(grow, 1.0)))
                return StepResult(
                    x=x_new,
                    t=t + direction * size,
                    h_used=direction * size,
                    h_next=direction * next_size,
                    error=err,
                )

            if size <= min_step:
                return StepResult(
                    x=x_new,
                    t=t + direction * size,
                    h_used=direction * size,
                    h_next=direction * size,
                    error=err,
                    converged=False,
                )

            shrink = max(MAX_SHRINK, SAFETY * (max_error / err) ** 0.25)
            size = max(min_step, size * shrink)
