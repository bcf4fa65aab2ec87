# advectrace/tracking/__init__.py
"""
Particle tracing engine.

Main Components:
- ParticleRecord / ParticlePopulation: per-particle state and the live set
- TemporalCache / TemporalInterpolator: bracketing snapshots and field evaluation
- IntegrationEngine: single-particle integration with termination rules
- DomainMigrationManager: seed ownership, ids, push recovery, exchange
- BatchScheduler: serial or threaded batch execution
- Output assemblers and the temporal path-line trail filter
- ParticleTracer: per-request orchestration
"""

from .particles import (
    LocationState,
    ErrorCode,
    TerminationReason,
    CacheHint,
    ParticleRecord,
    ParticlePopulation,
    AliveCounter,
)

from .cache import (
    MeshOverTime,
    TemporalCache,
    CacheUpdate,
)

from .interpolator import (
    FieldSample,
    TemporalInterpolator,
)

from .integration import (
    Advanced,
    Terminated,
    ExitedDomain,
    IntegrationSettings,
    IntegrationEngine,
)

from .migration import (
    RECOVERY_SUBSTEPS,
    RECOVERY_BOUND_FACTOR,
    ExchangeResult,
    DomainMigrationManager,
)

from .scheduler import (
    SchedulerContext,
    BatchScheduler,
)

from .seeding import (
    SeedSource,
    random_seeds,
    uniform_grid_seeds,
    line_seeds,
    circle_seeds,
    make_sources,
)

from .output import (
    AttributeBuffer,
    ParticleOutput,
    ParticleWriter,
    OutputAssembler,
    ParticleFrontAssembler,
    PathlineAssembler,
    StreaklineAssembler,
    engine_array_specs,
    get_assembler,
)

from .trails import TemporalPathLineFilter

from .tracer import (
    TracerOptions,
    ParticleTracer,
    create_tracer,
)

__all__ = [
    # Particles
    "LocationState",
    "ErrorCode",
    "TerminationReason",
    "CacheHint",
    "ParticleRecord",
    "ParticlePopulation",
    "AliveCounter",
    # Cache and interpolation
    "MeshOverTime",
    "TemporalCache",
    "CacheUpdate",
    "FieldSample",
    "TemporalInterpolator",
    # Integration
    "Advanced",
    "Terminated",
    "ExitedDomain",
    "IntegrationSettings",
    "IntegrationEngine",
    # Migration
    "RECOVERY_SUBSTEPS",
    "RECOVERY_BOUND_FACTOR",
    "ExchangeResult",
    "DomainMigrationManager",
    # Scheduling
    "SchedulerContext",
    "BatchScheduler",
    # Seeding
    "SeedSource",
    "random_seeds",
    "uniform_grid_seeds",
    "line_seeds",
    "circle_seeds",
    "make_sources",
    # Output
    "AttributeBuffer",
    "ParticleOutput",
    "ParticleWriter",
    "OutputAssembler",
    "ParticleFrontAssembler",
    "PathlineAssembler",
    "StreaklineAssembler",
    "engine_array_specs",
    "get_assembler",
    "TemporalPathLineFilter",
    # Tracer
    "TracerOptions",
    "ParticleTracer",
    "create_tracer",
]
