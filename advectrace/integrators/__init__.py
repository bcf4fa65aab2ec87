"""
advectrace Integrators

Explicit time-stepping methods for particle advection. Each stepper follows the
signature:

    new_x = step(x, t, dt, field_fn)

where:
- x: (3,) particle position (or (N,3) batch)
- t: scalar physical time
- dt: scalar time step
- field_fn: callable (x, t) -> velocity

Solver objects wrap the steppers behind the `Solver` capability interface
and are selected by name with `get_solver`.
"""

from typing import Dict, Type

from .base import FieldFn, Solver, StepResult
from .rk2 import rk2_step, RK2Solver
from .rk4 import rk4_step, RK4Solver
from .rk45 import rk45_step, cash_karp_step, RK45Solver

SOLVERS: Dict[str, Type] = {
    "rk2": RK2Solver,
    "rk4": RK4Solver,
    "rk45": RK45Solver,
}


def get_solver(name: str) -> Solver:
    """Instantiate a solver by name ('rk2' | 'rk4' | 'rk45')."""
    key = str(name).lower()
    if key not in SOLVERS:
        raise ValueError(f"Unknown integrator '{name}'. Choose from {sorted(SOLVERS)}")
    return SOLVERS[key]()


__all__ = [
    "FieldFn",
    "Solver",
    "StepResult",
    "rk2_step",
    "rk4_step",
    "rk45_step",
    "cash_karp_step",
    "RK2Solver",
    "RK4Solver",
    "RK45Solver",
    "SOLVERS",
    "get_solver",
]
