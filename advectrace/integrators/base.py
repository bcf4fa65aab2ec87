# advectrace/integrators/base.py

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Protocol
import numpy as np

# Derivative signature: takes a position and time, returns the velocity there
FieldFn = Callable[[np.ndarray, float], np.ndarray]
"""
Field function protocol.

Parameters
----------
position : np.ndarray
    Particle position, shape (3,) (or (N, 3) for batched use)
time : float
    Current simulation time

Returns
-------
np.ndarray
    Velocity, same shape as `position`

Raises
------
PointNotLocated
    If the position is outside the local partition. Solvers let this
    propagate to the caller unchanged.
"""

StepFn = Callable[[np.ndarray, float, float, FieldFn], np.ndarray]
"""Fixed-step stepper: new_x = step(x, t, dt, field_fn)."""


@dataclass
class StepResult:
    """
    Outcome of one solver step.

    Attributes
    ----------
    x : (3,) new position (meaningless when converged is False)
    t : time at `x`
    h_used : step actually taken (signed)
    h_next : suggested next step (signed)
    error : estimated local error (0 for fixed-step methods)
    converged : False when the error stays above the maximum at the minimum step
    """
    x: np.ndarray
    t: float
    h_used: float
    h_next: float
    error: float = 0.0
    converged: bool = True


class Solver(Protocol):
    """
    Capability interface: advance a state given a derivative evaluator.

    Concrete variants are chosen by name (see `get_solver`), never by
    subclassing the engine.
    """

    name: str
    order: int
    adaptive: bool

    def step(
        self,
        x: np.ndarray,
        t: float,
        h: float,
        field_fn: FieldFn,
        min_step: float = 0.0,
        max_step: float = np.inf,
        max_error: float = 0.0,
    ) -> StepResult:
        """
        Advance `x` from `t` by (at most) `h`.

        Adaptive solvers may take a smaller step than `h` and report it in
        `h_used`; fixed-step solvers always take `h`.
        """
        ...


def _as_float64(x) -> np.ndarray:
    return np.asarray(x, dtype=np.float64)
