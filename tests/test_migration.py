import numpy as np
import pytest

from advectrace.parallel import ThreadCommunicatorGroup
from advectrace.tracking import (
    DomainMigrationManager,
    ErrorCode,
    ExitedDomain,
    IntegrationEngine,
    ParticleRecord,
    RECOVERY_BOUND_FACTOR,
    SeedSource,
    TemporalCache,
    TemporalInterpolator,
    Terminated,
    TerminationReason,
)

from conftest import constant_provider

YZ = ((-1.0, 1.0), (-1.0, 1.0))


def box(x0, x1):
    return ((x0, x1),) + YZ


def make_manager(boxes, comm=None, at=0.0, **kwargs):
    cache = TemporalCache(constant_provider(boxes=boxes))
    cache.refresh(at)
    engine = IntegrationEngine(TemporalInterpolator(cache))
    return DomainMigrationManager(engine, comm, use_jit=False, **kwargs)


def exited_at(x, step=0.5, velocity=(1.0, 0.0, 0.0)):
    particle = ParticleRecord(position=[x, 0.0, 0.0])
    return particle, ExitedDomain(particle, np.array([x, 0.0, 0.0, 0.0]), np.asarray(velocity, dtype=float), step)


def test_recovery_crosses_small_gap():
    manager = make_manager([box(-1.0, 1.0), box(1.1, 3.0)])
    particle, exited = exited_at(0.95)
    assert manager.recover(particle, exited)
    np.testing.assert_allclose(particle.position, [1.2, 0.0, 0.0, 0.25])
    limit = RECOVERY_BOUND_FACTOR * 1.0 * 0.5
    assert np.linalg.norm(particle.xyz - [0.95, 0.0, 0.0]) <= limit
    assert particle.hints[1] is not None and particle.hints[1].block_id == 1


def test_recovery_fails_across_wide_gap():
    manager = make_manager([box(-1.0, 1.0), box(2.0, 3.0)])
    particle, exited = exited_at(0.95)
    assert not manager.recover(particle, exited)
    np.testing.assert_allclose(particle.xyz, [0.95, 0.0, 0.0])


def test_recovery_needs_velocity():
    manager = make_manager([box(-1.0, 1.0), box(1.1, 3.0)])
    particle, exited = exited_at(0.95, velocity=(0.0, 0.0, 0.0))
    assert not manager.recover(particle, exited)


def test_serial_hand_off_terminates():
    manager = make_manager([box(-1.0, 3.0)])
    manager.update_global_bounds()
    particle, exited = exited_at(2.9)
    outcome = manager.hand_off(particle, exited)
    assert isinstance(outcome, Terminated)
    assert outcome.reason == TerminationReason.OUT_OF_SPATIAL_DOMAIN
    assert particle.error_code == ErrorCode.OUT_OF_SPATIAL_DOMAIN
    np.testing.assert_allclose(particle.position, [3.4, 0.0, 0.0, 0.5])


def test_serial_exchange_loses_everything():
    manager = make_manager([box(-1.0, 3.0)])
    particle, _ = exited_at(5.0)
    result = manager.exchange_with_peers([particle])
    assert len(result.lost) == 1 and result.lost[0] is particle
    assert particle.error_code == ErrorCode.LOST_AT_BOUNDARY
    assert not result.moved


def test_serial_ids_keep_increasing():
    manager = make_manager([box(-1.0, 3.0)])
    source = SeedSource(np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [9.0, 0.0, 0.0]]))
    seeds = manager.assign_seeds_to_processors(0.0, source)
    assert [s.injected_point_id for s in seeds] == [0, 1]
    manager.assign_unique_ids(seeds)
    more = manager.assign_seeds_to_processors(0.0, source, step=1)
    manager.assign_unique_ids(more)
    assert [p.unique_id for p in seeds + more] == [0, 1, 2, 3]
    assert [p.injected_step_id for p in more] == [1, 1]


def test_static_seeds_warn_when_source_moves():
    manager = make_manager([box(-1.0, 3.0)], static_seeds=True)
    source = SeedSource(np.array([[0.0, 0.0, 0.0]]))
    with pytest.warns(UserWarning):
        manager.assign_seeds_to_processors(0.0, source)
    with pytest.warns(UserWarning):
        seeds = manager.assign_seeds_to_processors(0.0, source.moved_to(np.array([[1.0, 0.0, 0.0]])))
    np.testing.assert_allclose(seeds[0].xyz, [0.0, 0.0, 0.0])


RANK_BOXES = [box(0.0, 5.0), box(5.0, 10.0)]


def test_shared_face_seed_goes_to_lowest_rank():
    points = np.array([[x, 0.0, 0.0] for x in (1.0, 2.0, 5.0, 6.0, 7.0)])

    def rank_fn(comm):
        manager = make_manager([RANK_BOXES[comm.rank]], comm)
        seeds = manager.assign_seeds_to_processors(0.0, SeedSource(points))
        manager.assign_unique_ids(seeds)
        return [(p.unique_id, float(p.xyz[0])) for p in seeds], manager.next_unique_id

    (r0, n0), (r1, n1) = ThreadCommunicatorGroup(2).run(rank_fn)
    assert r0 == [(0, 1.0), (1, 2.0), (2, 5.0)]
    assert r1 == [(3, 6.0), (4, 7.0)]
    assert n0 == n1 == 5


def test_exchange_hands_particle_to_neighbour():
    def rank_fn(comm):
        manager = make_manager([RANK_BOXES[comm.rank]], comm)
        manager.update_global_bounds()
        queued = []
        if comm.rank == 0:
            inside = ParticleRecord(position=[6.0, 0.0, 0.0], unique_id=7)
            outside = ParticleRecord(position=[20.0, 0.0, 0.0], unique_id=8)
            queued = [inside, outside]
            assert manager.inside_global_domain(inside.xyz)
            assert not manager.inside_global_domain(outside.xyz)
        result = manager.exchange_with_peers(queued)
        return (
            [p.unique_id for p in result.received],
            [p.unique_id for p in result.sent],
            [(p.unique_id, int(p.error_code)) for p in result.lost],
            manager.any_rank(bool(result.received)),
            [p.tail_point_id for p in result.received],
        )

    r0, r1 = ThreadCommunicatorGroup(2).run(rank_fn)
    assert r0 == ([], [7], [(8, int(ErrorCode.LOST_AT_BOUNDARY))], True, [])
    assert r1 == ([7], [], [], True, [0])
