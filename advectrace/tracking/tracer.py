# advectrace/tracking/tracer.py
"""
Particle tracer: the per-request orchestration of the advection engine.

Each `execute(target_time)` call advances the particle population from the
current time to `target_time`, one input-time bracket at a time:

1. refresh the temporal cache and adjust particle cache hints
2. validate the point-data schema of every bracket up front (collective)
3. inject seeds on the first bracket of a reinjection step
4. integrate every particle (serially or on a thread pool)
5. push-recover or hand off particles that left the local partition
6. exchange hand-offs with the other processes until nothing moves
7. optionally write the particles, then assemble the output geometry
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union
import warnings
import numpy as np

from ..errors import SchemaMismatchError
from ..fields.base import LocatorStrategy
from ..fields.schema import AttributeSchema, validate_point_data
from ..fields.time_series import TemporalDatasetProvider
from ..integrators import get_solver
from ..integrators.base import Solver
from ..parallel import Communicator, SerialCommunicator
from ..utils.config import get_config
from ..utils.logging import Timer, memory_info
from .cache import MeshOverTime, TemporalCache
from .integration import (
    TIME_EPSILON,
    Advanced,
    ExitedDomain,
    IntegrationEngine,
    IntegrationSettings,
    Terminated,
)
from .interpolator import TemporalInterpolator
from .migration import DomainMigrationManager
from .output import (
    OutputAssembler,
    ParticleFrontAssembler,
    ParticleOutput,
    ParticleWriter,
)
from .particles import ErrorCode, ParticlePopulation, ParticleRecord, TerminationReason
from .scheduler import BatchScheduler, SchedulerContext
from .seeding import SeedSource

_PROGRESS_STYLES = ("auto", "tqdm", "simple", "none")


@dataclass
class TracerOptions:
    """
    Configuration options for particle tracing.

    Step control, termination criteria, mesh and seed behaviour, threading
    and reporting.
    """
    # Integration
    integrator: str = "rk4"               # "rk2" | "rk4" | "rk45"
    integration_step: float = 0.5         # maximum step (time units)
    minimum_step: float = 1e-3
    maximum_error: float = 1e-6
    terminal_speed: float = 1e-12
    termination_time: Optional[float] = None
    start_time: Optional[float] = None    # None -> first provider time

    # Diagnostics
    compute_vorticity: bool = True
    rotation_scale: float = 1.0

    # Mesh and seeds
    mesh_over_time: MeshOverTime = MeshOverTime.DIFFERENT
    static_seeds: bool = False
    reinjection_every_n_steps: int = 0    # 0 -> inject once at start
    locator: LocatorStrategy = LocatorStrategy.cell

    # Threading
    force_serial: bool = False
    num_threads: Optional[int] = None     # None -> package config
    serial_threshold: Optional[int] = None

    # Distribution and output
    max_exchange_rounds: int = 10
    enable_particle_writing: bool = False

    # Progress monitoring
    progress_style: str = "none"          # "auto" | "tqdm" | "simple" | "none"
    verbose: bool = False

    def __post_init__(self):
        self.mesh_over_time = MeshOverTime(self.mesh_over_time)
        self.locator = LocatorStrategy(self.locator)

        if self.integration_step <= 0:
            warnings.warn(f"integration_step={self.integration_step} is not positive, using 0.5")
            self.integration_step = 0.5
        if self.minimum_step <= 0:
            warnings.warn(f"minimum_step={self.minimum_step} is not positive, using 1e-3")
            self.minimum_step = 1e-3
        if self.minimum_step > self.integration_step:
            warnings.warn("minimum_step is larger than integration_step, using integration_step")
            self.minimum_step = self.integration_step
        if self.maximum_error <= 0:
            warnings.warn(f"maximum_error={self.maximum_error} is not positive, using 1e-6")
            self.maximum_error = 1e-6
        if self.terminal_speed < 0:
            warnings.warn(f"terminal_speed={self.terminal_speed} is negative, using 0")
            self.terminal_speed = 0.0
        if self.reinjection_every_n_steps < 0:
            warnings.warn("reinjection_every_n_steps is negative, injecting once")
            self.reinjection_every_n_steps = 0
        if self.max_exchange_rounds < 1:
            warnings.warn(f"max_exchange_rounds={self.max_exchange_rounds} is not positive, using 1")
            self.max_exchange_rounds = 1
        if self.progress_style not in _PROGRESS_STYLES:
            raise ValueError(f"progress_style must be one of {_PROGRESS_STYLES}, got '{self.progress_style}'")

        config = get_config()
        if self.serial_threshold is None:
            self.serial_threshold = config.serial_threshold
        if self.num_threads is None:
            self.num_threads = config.num_threads

    def integration_settings(self) -> IntegrationSettings:
        return IntegrationSettings(
            max_step=self.integration_step,
            min_step=self.minimum_step,
            max_error=self.maximum_error,
            terminal_speed=self.terminal_speed,
            termination_time=self.termination_time,
            compute_vorticity=self.compute_vorticity,
            rotation_scale=self.rotation_scale,
        )


def _split_intervals(times: np.ndarray, start: float, stop: float) -> List[Tuple[float, float]]:
    """Break [start, stop] at the input times strictly inside it."""
    if abs(stop - start) <= TIME_EPSILON * max(1.0, abs(start), abs(stop)):
        return [(start, start)]
    inner = [float(t) for t in times if start < t < stop]
    edges = [start] + inner + [stop]
    return list(zip(edges[:-1], edges[1:]))


class ParticleTracer:
    """
    Advects seeded particles through a temporal dataset.

    Parameters
    ----------
    provider : TemporalDatasetProvider
        Time-stamped field snapshots (local partition)
    sources : SeedSource or list of SeedSource
        Seed geometry
    options : TracerOptions
    solver : Solver, optional
        Overrides `options.integrator`
    communicator : Communicator, optional
        Collective operations for distributed runs (serial by default)
    writer : ParticleWriter, optional
        Sink called every step when `options.enable_particle_writing`
    assembler : OutputAssembler, optional
        Output geometry (particle fronts by default)
    """

    def __init__(
        self,
        provider: TemporalDatasetProvider,
        sources: Union[SeedSource, Sequence[SeedSource]],
        options: Optional[TracerOptions] = None,
        solver: Optional[Solver] = None,
        communicator: Optional[Communicator] = None,
        writer: Optional[ParticleWriter] = None,
        assembler: Optional[OutputAssembler] = None,
    ):
        self.options = options or TracerOptions()
        self.provider = provider
        self.sources: List[SeedSource] = [sources] if isinstance(sources, SeedSource) else list(sources)
        self.comm = communicator or SerialCommunicator()
        self.solver = solver or get_solver(self.options.integrator)
        self.writer = writer

        self.cache = TemporalCache(provider, self.options.mesh_over_time)
        self.interpolator = TemporalInterpolator(self.cache, self.options.locator)
        self.engine = IntegrationEngine(self.interpolator, self.options.integration_settings())
        self.migration = DomainMigrationManager(
            self.engine, self.comm,
            static_seeds=self.options.static_seeds,
            use_jit=get_config().use_jax_jit,
        )
        self.context = SchedulerContext(
            num_threads=self.options.num_threads,
            serial_threshold=self.options.serial_threshold,
            force_serial=self.options.force_serial,
        )
        self.scheduler = BatchScheduler(self.context, progress_style=self.options.progress_style)
        self.assembler = assembler or ParticleFrontAssembler(self.options.compute_vorticity)
        self._frame_assembler = ParticleFrontAssembler(self.options.compute_vorticity)

        self.population = ParticlePopulation()
        self.schema: Optional[AttributeSchema] = None
        self.current_time: Optional[float] = None
        self.step = 0
        self.last_terminations: Dict[int, TerminationReason] = {}
        self.output: Optional[ParticleOutput] = None

        if self.options.enable_particle_writing and writer is None:
            warnings.warn("enable_particle_writing is set but no writer was given; nothing will be written")

    # ---------- Lifecycle ----------

    def _start_time(self) -> float:
        if self.options.start_time is not None:
            return float(self.options.start_time)
        return float(self.cache.input_times()[0])

    def _reset_state(self) -> None:
        """Drop particles and per-run caches; the id counter keeps going."""
        self.population.clear()
        self.migration.reset()
        self.assembler.reset()
        self._frame_assembler.reset()
        self.last_terminations.clear()

    def reset(self) -> None:
        """Restart from the start time on the next execute."""
        self._reset_state()
        self.cache.reset()
        self.schema = None
        self.current_time = None
        self.step = 0

    def set_provider(self, provider: TemporalDatasetProvider) -> None:
        """
        Replace the upstream dataset.

        The cache is emptied; particles survive unless the new point-data
        schema differs, in which case the next execute resets them.
        """
        self.provider = provider
        self.cache.provider = provider
        self.cache.reset()
        for p in self.population:
            p.invalidate_hints()

    def close(self) -> None:
        self.context.close()

    def __enter__(self) -> "ParticleTracer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def particles(self) -> List[ParticleRecord]:
        return self.population.snapshot()

    def _log(self, msg: str) -> None:
        if self.options.verbose:
            prefix = f"[rank {self.comm.rank}] " if self.comm.size > 1 else ""
            print(f"{prefix}{msg}")

    # ---------- Per-bracket phases ----------

    def _adjust_hints(self, fetched: bool, shifted: bool) -> None:
        if not fetched:
            return
        different = self.cache.mesh_over_time == MeshOverTime.DIFFERENT
        for p in self.population:
            if shifted:
                h1 = p.hints[1]
                p.hints = [h1, None] if different else [h1, h1]
            elif different:
                p.hints = [None, None]

    def _validate_request(self, intervals: Sequence[Tuple[float, float]]) -> List[AttributeSchema]:
        """
        Validity gate over every bracket of a request (collective).

        Runs before any bracket is integrated; on a mismatch no particle has
        moved.
        """
        brackets = self.cache.prefetch([t_b for _, t_b in intervals])
        try:
            return [validate_point_data(snapshots, self.comm) for snapshots in brackets]
        except SchemaMismatchError:
            self.cache.drop_prefetched()
            raise

    def _apply_schema(self, schema: AttributeSchema) -> bool:
        """Returns True when a changed schema reset the state."""
        if self.schema is None:
            self.schema = schema
            self._layout(schema)
            return False
        if schema != self.schema:
            self._log(f"Point data changed to {schema.names}; resetting particles")
            self._reset_state()
            self.schema = schema
            self._layout(schema)
            return True
        return False

    def _layout(self, schema: AttributeSchema) -> None:
        self.assembler.layout(schema)
        self._frame_assembler.layout(schema)

    def _injection_due(self) -> bool:
        n = self.options.reinjection_every_n_steps
        return self.step == 0 or (n > 0 and self.step % n == 0)

    def _inject(self, time: float) -> int:
        seeds: List[ParticleRecord] = []
        for source in self.sources:
            seeds.extend(self.migration.assign_seeds_to_processors(time, source, self.step))
        self.migration.assign_unique_ids(seeds)
        added = 0
        for p in seeds:
            if self.engine.initialize(p):
                self.population.add(p)
                added += 1
        self._log(f"Injected {added} particles at t={time:g}")
        return added

    def _advance_one(self, particle: ParticleRecord, to_time: float):
        """Integrate one particle; recovery and hand-off included."""
        outcome = self.engine.integrate(particle, particle.time, to_time, self.solver)
        if isinstance(outcome, ExitedDomain):
            if self.migration.recover(particle, outcome):
                outcome = self.engine.integrate(particle, particle.time, to_time, self.solver)
            if isinstance(outcome, ExitedDomain):
                outcome = self.migration.hand_off(particle, outcome)
        if isinstance(outcome, Terminated):
            self.population.remove(particle.unique_id)
        return outcome

    def _advance_batch(self, particles: Sequence[ParticleRecord], to_time: float,
                       terminated: List[ParticleRecord]) -> List[ParticleRecord]:
        """Advance `particles`; returns those queued for exchange."""
        outcomes = self.scheduler.run(particles, lambda p: self._advance_one(p, to_time))
        queued = []
        for outcome in outcomes:
            if isinstance(outcome, Terminated):
                terminated.append(outcome.particle)
                self.last_terminations[outcome.particle.unique_id] = outcome.reason
            elif isinstance(outcome, ExitedDomain):
                queued.append(outcome.particle)
        return queued

    def _exchange(self, queued: List[ParticleRecord], to_time: float, terminated: List[ParticleRecord]) -> None:
        """Exchange rounds until no process has anything left to hand off."""
        if self.comm.size == 1:
            return
        rounds = 0
        while True:
            result = self.migration.exchange_with_peers(queued)
            rounds += 1
            for p in result.sent:
                self.population.remove(p.unique_id)
            for p in result.lost:
                self.population.remove(p.unique_id)
                terminated.append(p)
                self.last_terminations[p.unique_id] = TerminationReason.LOST_AT_BOUNDARY

            arrived = []
            for p in result.received:
                if self.engine.initialize(p):
                    self.population.add(p)
                    arrived.append(p)
                else:
                    p.error_code = ErrorCode.LOST_AT_BOUNDARY
                    terminated.append(p)
                    self.last_terminations[p.unique_id] = TerminationReason.LOST_AT_BOUNDARY
            if arrived:
                self._log(f"Received {len(arrived)} particles")
            queued = self._advance_batch(arrived, to_time, terminated)

            if not self.migration.any_rank(bool(queued)):
                break
            if rounds >= self.options.max_exchange_rounds:
                for p in queued:
                    p.error_code = ErrorCode.LOST_AT_BOUNDARY
                    self.population.remove(p.unique_id)
                    terminated.append(p)
                    self.last_terminations[p.unique_id] = TerminationReason.LOST_AT_BOUNDARY
                break

    # ---------- Main entry ----------

    def execute(self, target_time: float) -> ParticleOutput:
        """
        Advance the particles to `target_time` and assemble the output.

        A target earlier than the current time restarts the run from the
        start time (particle ids are never reused).

        Raises
        ------
        MissingTimeInformationError
            The provider cannot report snapshot times
        SchemaMismatchError
            Point data differs across blocks or processes
        ValueError
            `target_time` is before the start time
        """
        target = float(target_time)
        times = self.cache.input_times()
        if self.current_time is None:
            self.current_time = self._start_time()
        if target < self.current_time - TIME_EPSILON * max(1.0, abs(self.current_time)):
            start = self._start_time()
            if target < start:
                raise ValueError(f"target_time {target} is before the start time {start}")
            self._log(f"Time went backward to {target:g}; restarting from {start:g}")
            self.reset()
            self.current_time = start

        timer = Timer(f"Step {self.step}", track_memory=self.options.verbose, verbose=False)
        timer.start()

        intervals = _split_intervals(times, self.current_time, target)
        schemas = self._validate_request(intervals)

        terminated: List[ParticleRecord] = []
        self.last_terminations.clear()

        for k, ((t_a, t_b), schema) in enumerate(zip(intervals, schemas)):
            update = self.cache.refresh(t_b)
            self._adjust_hints(update.fetched, update.shifted)
            schema_reset = self._apply_schema(schema)
            self.migration.update_global_bounds()

            if (k == 0 and self._injection_due()) or schema_reset:
                self._inject(t_a)

            queued = self._advance_batch(self.population.snapshot(), t_b, terminated)
            self._exchange(queued, t_b, terminated)

        survivors = self.population.snapshot()
        for p in survivors:
            p.time_step_age += 1

        emitted = survivors + terminated
        if self.options.enable_particle_writing and self.writer is not None:
            frame = self._frame_assembler.assemble(emitted, target)
            self.writer.write(self.step, target, frame)

        self.output = self.assembler.assemble(emitted, target)
        timer.stop()
        self._log(
            f"Step {self.step} -> t={target:g}: {len(survivors)} alive, "
            f"{len(terminated)} terminated, {timer.elapsed:.3f}s, mode={self.scheduler.last_mode}"
        )
        if self.options.verbose:
            self._log(f"Memory: {memory_info().get('rss_mb', 0.0):.0f} MB")

        self.current_time = target
        self.step += 1
        return self.output


def create_tracer(provider: TemporalDatasetProvider, sources, integrator_name: str = "rk4",
                  communicator: Optional[Communicator] = None, **options) -> ParticleTracer:
    """
    Factory for ParticleTracer with a named integrator.

    integrator_name: 'rk2', 'rk4' or 'rk45'
    options: TracerOptions fields
    """
    tracer_options = TracerOptions(integrator=integrator_name, **options)
    return ParticleTracer(provider, sources, tracer_options, communicator=communicator)
