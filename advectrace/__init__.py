"""
advectrace: particle advection through time-varying, partitioned vector fields.

A package for Lagrangian tracer particles with:
- Two-slot temporal caching of bracketing field snapshots
- Adaptive RK45 and fixed-step RK2/RK4 integration per particle
- Serial or thread-pool batch integration with identical results
- Cross-process migration with push recovery for distributed runs
- Particle fronts, path lines, streak lines and temporal trails
- HDF5 and VTK output

Core workflow:
1. Provide snapshots → TemporalDatasetProvider
2. Define seeds → SeedSource
3. Configure and run → ParticleTracer.execute(t)
4. Store results → H5ParticleWriter / write_particle_output
"""

from __future__ import annotations

# Version info
__version__ = "0.1.0"
__author__ = "advectrace Contributors"

from .utils.jax_utils import JAX_AVAILABLE
from .utils.config import PackageConfig, configure, get_config, reset_config
from .utils.diagnostics import check_system_requirements

from .errors import (
    AdvectionError,
    MissingTimeInformationError,
    SchemaMismatchError,
)

from .fields import (
    LocatorStrategy,
    StructuredBlock,
    TetrahedralBlock,
    FieldSnapshot,
    InMemoryTemporalDataset,
    FunctionTemporalDataset,
    create_uniform_block,
    create_tetrahedral_block,
)

from .integrators import get_solver, RK2Solver, RK4Solver, RK45Solver

from .tracking import (
    MeshOverTime,
    ErrorCode,
    TerminationReason,
    ParticleRecord,
    SeedSource,
    ParticleOutput,
    ParticleFrontAssembler,
    PathlineAssembler,
    StreaklineAssembler,
    TemporalPathLineFilter,
    TracerOptions,
    ParticleTracer,
    create_tracer,
    random_seeds,
    uniform_grid_seeds,
    line_seeds,
    circle_seeds,
)

from .parallel import get_communicator, ThreadCommunicatorGroup

__all__ = [
    # Version
    "__version__",
    # Configuration
    "JAX_AVAILABLE",
    "PackageConfig",
    "configure",
    "get_config",
    "reset_config",
    "check_system_requirements",
    # Errors
    "AdvectionError",
    "MissingTimeInformationError",
    "SchemaMismatchError",
    # Fields
    "LocatorStrategy",
    "StructuredBlock",
    "TetrahedralBlock",
    "FieldSnapshot",
    "InMemoryTemporalDataset",
    "FunctionTemporalDataset",
    "create_uniform_block",
    "create_tetrahedral_block",
    # Integrators
    "get_solver",
    "RK2Solver",
    "RK4Solver",
    "RK45Solver",
    # Tracking
    "MeshOverTime",
    "ErrorCode",
    "TerminationReason",
    "ParticleRecord",
    "SeedSource",
    "ParticleOutput",
    "ParticleFrontAssembler",
    "PathlineAssembler",
    "StreaklineAssembler",
    "TemporalPathLineFilter",
    "TracerOptions",
    "ParticleTracer",
    "create_tracer",
    "random_seeds",
    "uniform_grid_seeds",
    "line_seeds",
    "circle_seeds",
    # Parallel
    "get_communicator",
    "ThreadCommunicatorGroup",
]
