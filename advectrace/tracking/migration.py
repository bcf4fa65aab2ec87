# advectrace/tracking/migration.py
"""
Domain migration: seed ownership, global ids, push recovery and the
collective particle exchange between processes.

Every method that talks to the communicator is collective: all ranks must
call it in the same order, even with nothing to contribute.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import warnings
import numpy as np

from ..errors import PointNotLocated
from ..parallel import Communicator, SerialCommunicator, rank_offsets
from ..utils.spatial import points_in_boxes
from .cache import MeshOverTime
from .integration import ExitedDomain, IntegrationEngine, Terminated
from .particles import ErrorCode, LocationState, ParticleRecord, TerminationReason
from .seeding import SeedSource

# Push recovery: sub-steps along the last good velocity, and the bound on
# total displacement as a multiple of the last step length.
RECOVERY_SUBSTEPS = 4
RECOVERY_BOUND_FACTOR = 2.0


@dataclass
class ExchangeResult:
    """Outcome of one exchange round on this rank."""
    received: List[ParticleRecord] = field(default_factory=list)
    sent: List[ParticleRecord] = field(default_factory=list)
    lost: List[ParticleRecord] = field(default_factory=list)

    @property
    def moved(self) -> bool:
        return bool(self.received or self.sent)


@dataclass
class _SeedClassification:
    points: np.ndarray
    local_indices: np.ndarray


class DomainMigrationManager:
    """
    Coordinates particles across processes.

    Parameters
    ----------
    engine : IntegrationEngine
        Used to locate points in the local partition
    communicator : Communicator
        Collective operations (serial by default)
    static_seeds : bool
        Cache seed ownership per source. Moving sources are not followed.
    """

    def __init__(self, engine: IntegrationEngine, communicator: Optional[Communicator] = None,
                 static_seeds: bool = False, use_jit: bool = True):
        self.engine = engine
        self.comm = communicator or SerialCommunicator()
        self.static_seeds = bool(static_seeds)
        self.use_jit = use_jit
        self.next_unique_id = 0
        self._seed_cache: Dict[int, _SeedClassification] = {}
        self._global_tables: List[np.ndarray] = []
        self._warned_static_mesh = False
        self._warned_moving_seeds = False

    @property
    def interpolator(self):
        return self.engine.interpolator

    @property
    def distributed(self) -> bool:
        return self.comm.size > 1

    def reset(self) -> None:
        """Forget cached seed ownership (ids keep increasing)."""
        self._seed_cache.clear()
        self._global_tables = []

    # ---------- Bounds ----------

    def update_global_bounds(self) -> None:
        """All-gather every rank's block bounds from the current cache slot (collective)."""
        local = self.interpolator.cache.bounds(1)
        if self.distributed:
            self._global_tables = [np.asarray(t) for t in self.comm.allgather(local)]
        else:
            self._global_tables = [local]

    def inside_global_domain(self, point: np.ndarray) -> bool:
        """Is `point` inside the box of any block on any rank?"""
        p = np.asarray(point, dtype=float)[:3].reshape(1, 3)
        for table in self._global_tables:
            if table.shape[0] and bool(points_in_boxes(p, table, use_jit=False).any()):
                return True
        return False

    # ---------- Seeds ----------

    def _locatable(self, point: np.ndarray, time: float) -> bool:
        try:
            self.interpolator.evaluate(point, time)
        except PointNotLocated:
            return False
        return True

    def _classify(self, points: np.ndarray, time: float) -> np.ndarray:
        """Indices of `points` this rank owns (collective when distributed)."""
        table = self.interpolator.cache.bounds(1)
        if points.shape[0] == 0 or table.shape[0] == 0:
            in_box = np.zeros(points.shape[0], dtype=bool)
        else:
            in_box = points_in_boxes(points, table, use_jit=self.use_jit).any(axis=1)
        claimed = [int(i) for i in np.nonzero(in_box)[0] if self._locatable(points[i], time)]

        if self.distributed:
            all_claims = self.comm.allgather(claimed)
            owner: Dict[int, int] = {}
            for rank, idx_list in enumerate(all_claims):
                for i in idx_list:
                    owner.setdefault(int(i), rank)
            claimed = [i for i in claimed if owner[i] == self.comm.rank]
        return np.asarray(claimed, dtype=np.int64)

    def assign_seeds_to_processors(self, time: float, source: SeedSource, step: int = 0) -> List[ParticleRecord]:
        """
        Build the particles of `source` that this rank owns at `time`.

        A seed lying in several partitions (shared faces) is owned by the
        lowest claiming rank. With `static_seeds` the classification made on
        the first call is reused; a source that has since moved triggers a
        warning and its old positions are used.
        """
        mesh = self.interpolator.cache.mesh_over_time
        if self.static_seeds and mesh != MeshOverTime.STATIC and not self._warned_static_mesh:
            warnings.warn(
                "static_seeds is enabled but the mesh is not declared STATIC; "
                "seed ownership will not follow mesh changes"
            )
            self._warned_static_mesh = True

        cached = self._seed_cache.get(source.source_id) if self.static_seeds else None
        if cached is not None:
            if not (cached.points.shape == source.points.shape and np.array_equal(cached.points, source.points)):
                if not self._warned_moving_seeds:
                    warnings.warn(
                        f"Seed source {source.source_id} moved while static_seeds is enabled; "
                        "the motion is ignored"
                    )
                    self._warned_moving_seeds = True
            points = cached.points
            local = cached.local_indices
        else:
            points = source.points
            local = self._classify(points, time)
            if self.static_seeds:
                self._seed_cache[source.source_id] = _SeedClassification(points.copy(), local.copy())

        seeds = []
        for i in local:
            seeds.append(ParticleRecord(
                position=np.concatenate([points[i], [time]]),
                source_id=source.source_id,
                injected_point_id=int(source.ids[i]),
                injected_step_id=int(step),
                injection_time=float(time),
            ))
        return seeds

    def assign_unique_ids(self, seeds: Sequence[ParticleRecord]) -> None:
        """
        Give every new particle a globally unique, increasing id (collective).

        Ranks take consecutive ranges in rank order; every rank advances the
        shared counter by the global total.
        """
        counts = self.comm.allgather(len(seeds)) if self.distributed else [len(seeds)]
        start = self.next_unique_id + rank_offsets(counts)[self.comm.rank]
        for k, particle in enumerate(seeds):
            particle.assign_unique_id(start + k)
        self.next_unique_id += int(sum(counts))

    # ---------- Recovery ----------

    def recover(self, particle: ParticleRecord, exited: ExitedDomain) -> bool:
        """
        Push the particle along its last good velocity.

        Tries RECOVERY_SUBSTEPS first-order sub-steps of `step / RECOVERY_SUBSTEPS`;
        the first one landing inside the local partition wins and the particle
        is moved there.
        """
        p0 = np.asarray(exited.last_valid_point[:3], dtype=float)
        t0 = float(exited.last_valid_point[3])
        v = np.asarray(exited.velocity, dtype=float)
        if not np.any(v) or exited.step == 0.0:
            return False

        sub = exited.step / RECOVERY_SUBSTEPS
        limit = RECOVERY_BOUND_FACTOR * float(np.linalg.norm(v)) * abs(exited.step)
        for k in range(1, RECOVERY_SUBSTEPS + 1):
            q = p0 + v * sub * k
            if np.linalg.norm(q - p0) > limit:
                break
            tq = t0 + sub * k
            try:
                sample = self.interpolator.evaluate(q, tq, particle.trusted_hints())
            except PointNotLocated:
                continue
            particle.move_to(q, tq)
            self.engine.apply_sample(particle, sample, tq)
            return True
        return False

    def hand_off(self, particle: ParticleRecord, exited: ExitedDomain):
        """
        Decide the fate of an unrecovered exit.

        The particle is moved to its hand-off point (first-order step along
        the last velocity). Outside every rank's partition it terminates with
        OUT_OF_SPATIAL_DOMAIN; otherwise the ExitedDomain is returned and the
        particle is queued for exchange.
        """
        p0 = np.asarray(exited.last_valid_point[:3], dtype=float)
        t0 = float(exited.last_valid_point[3])
        q = p0 + np.asarray(exited.velocity, dtype=float) * exited.step
        particle.move_to(q, t0 + exited.step)
        particle.invalidate_hints()
        particle.location_state = LocationState.OUT_OF_DOMAIN

        if not self.distributed or not self.inside_global_domain(q):
            particle.error_code = ErrorCode.OUT_OF_SPATIAL_DOMAIN
            return Terminated(particle, TerminationReason.OUT_OF_SPATIAL_DOMAIN)
        return exited

    # ---------- Exchange ----------

    def exchange_with_peers(self, queued: Sequence[ParticleRecord]) -> ExchangeResult:
        """
        One collective exchange round.

        Phase 1 all-gathers the offered particles; each rank claims offers
        from other ranks whose position it can locate. Phase 2 all-gathers
        the claims and the lowest claiming rank receives each particle.
        Offers nobody claims are lost (LOST_AT_BOUNDARY on the sender).
        """
        queued = list(queued)
        if not self.distributed:
            for p in queued:
                p.error_code = ErrorCode.LOST_AT_BOUNDARY
            return ExchangeResult(lost=queued)

        me = self.comm.rank
        self.comm.barrier()
        offers: List[List[ParticleRecord]] = self.comm.allgather(queued)

        claims: List[Tuple[int, int]] = []
        for src, plist in enumerate(offers):
            if src == me:
                continue
            for idx, p in enumerate(plist):
                if self._locatable(p.xyz, p.time):
                    claims.append((src, idx))

        all_claims = self.comm.allgather(claims)
        winner: Dict[Tuple[int, int], int] = {}
        for rank, clist in enumerate(all_claims):
            for key in clist:
                winner.setdefault(tuple(key), rank)

        result = ExchangeResult()
        for src, plist in enumerate(offers):
            if src == me:
                continue
            for idx, p in enumerate(plist):
                if winner.get((src, idx)) == me:
                    p.invalidate_hints()
                    p.tail_point_id = len(result.received)
                    result.received.append(p)
        for idx, p in enumerate(queued):
            if (me, idx) in winner:
                result.sent.append(p)
            else:
                p.error_code = ErrorCode.LOST_AT_BOUNDARY
                result.lost.append(p)
        self.comm.barrier()
        return result

    def any_rank(self, flag: bool) -> bool:
        """True if `flag` is set on any rank (collective)."""
        if not self.distributed:
            return bool(flag)
        return any(self.comm.allgather(bool(flag)))
