import numpy as np
import pytest

from advectrace.errors import SchemaMismatchError
from advectrace.fields import FieldSnapshot, InMemoryTemporalDataset, create_uniform_block
from advectrace.parallel import ThreadCommunicatorGroup
from advectrace.tracking import (
    ErrorCode,
    ParticleTracer,
    PathlineAssembler,
    SeedSource,
    StreaklineAssembler,
    TerminationReason,
    TracerOptions,
    create_tracer,
    uniform_grid_seeds,
)

from conftest import constant_provider, rotation_provider, serial_options

ORIGIN = SeedSource(np.array([[0.0, 0.0, 0.0]]))


class RecordingWriter:
    def __init__(self):
        self.calls = []

    def write(self, step, time, output):
        self.calls.append((step, time, output.num_points))


def test_constant_field_reaches_target():
    tracer = ParticleTracer(constant_provider(), ORIGIN, serial_options())
    first = tracer.execute(0.0)
    assert first.num_points == 1
    out = tracer.execute(1.0)
    np.testing.assert_allclose(out.points, [[1.0, 0.0, 0.0]])
    np.testing.assert_allclose(out.times, [1.0])
    assert out.arrays["ParticleId"].tolist() == [0]
    assert out.arrays["ErrorCode"].tolist() == [0]
    np.testing.assert_allclose(out.arrays["ParticleAge"], [1.0])
    assert out.vertices.tolist() == [0]
    assert tracer.step == 2
    assert tracer.particles[0].time_step_age == 2


def test_zero_velocity_particle_reported_once():
    tracer = ParticleTracer(constant_provider(velocity=(0.0, 0.0, 0.0)), ORIGIN, serial_options(terminal_speed=0.0))
    tracer.execute(0.0)
    out = tracer.execute(1.0)
    assert out.num_points == 1
    assert len(tracer.population) == 0
    assert tracer.last_terminations == {0: TerminationReason.SPEED_BELOW_TERMINAL}
    assert tracer.execute(2.0).num_points == 0
    assert tracer.last_terminations == {}


def test_leaving_the_domain_terminates_in_serial_runs():
    tracer = ParticleTracer(constant_provider(), SeedSource(np.array([[2.5, 0.0, 0.0]])), serial_options())
    tracer.execute(0.0)
    out = tracer.execute(1.0)
    assert out.arrays["ErrorCode"].tolist() == [int(ErrorCode.OUT_OF_SPATIAL_DOMAIN)]
    assert len(tracer.population) == 0


def test_target_past_last_input_time():
    tracer = ParticleTracer(constant_provider(times=(0.0, 1.0)), ORIGIN, serial_options())
    tracer.execute(0.0)
    out = tracer.execute(2.0)
    np.testing.assert_allclose(out.points, [[1.0, 0.0, 0.0]])
    assert out.arrays["ErrorCode"].tolist() == [int(ErrorCode.OUT_OF_TEMPORAL_WINDOW)]


def test_intervals_split_at_input_times():
    provider = constant_provider(times=(0.0, 0.5, 1.0, 1.5))
    tracer = ParticleTracer(provider, ORIGIN, serial_options())
    tracer.execute(0.0)
    out = tracer.execute(1.5)
    np.testing.assert_allclose(out.points, [[1.5, 0.0, 0.0]])
    assert provider.fetch_count == 4


def labelled_snapshot(t, name, vx=0.0):
    block = create_uniform_block(
        ((-1, 1), (-1, 1), (-1, 1)), 3, lambda p: np.tile([vx, 0.0, 0.0], (p.shape[0], 1)),
        extra_arrays={name: lambda p: np.zeros(p.shape[0])},
    )
    return FieldSnapshot(t, [block])


def test_schema_mismatch_between_snapshots():
    provider = InMemoryTemporalDataset([labelled_snapshot(0.0, "p"), labelled_snapshot(1.0, "q")])
    tracer = ParticleTracer(provider, ORIGIN, serial_options())
    with pytest.raises(SchemaMismatchError):
        tracer.execute(0.0)
    assert len(tracer.population) == 0


def test_schema_mismatch_in_later_bracket_moves_nothing():
    provider = InMemoryTemporalDataset([
        labelled_snapshot(0.0, "p", vx=1.0),
        labelled_snapshot(0.5, "p", vx=1.0),
        labelled_snapshot(1.0, "q", vx=1.0),
    ])
    tracer = ParticleTracer(provider, ORIGIN, serial_options())
    tracer.execute(0.0)
    with pytest.raises(SchemaMismatchError):
        tracer.execute(1.0)
    assert tracer.current_time == 0.0
    np.testing.assert_allclose(tracer.particles[0].position, [0.0, 0.0, 0.0, 0.0])

    out = tracer.execute(0.5)
    np.testing.assert_allclose(out.points, [[0.5, 0.0, 0.0]])


def test_schema_change_resets_particles():
    tracer = ParticleTracer(constant_provider(), ORIGIN, serial_options())
    tracer.execute(0.0)
    tracer.execute(0.5)
    tracer.set_provider(constant_provider(extra_arrays={"pressure": lambda pts, t: np.ones(pts.shape[0])}))
    out = tracer.execute(1.0)
    assert out.arrays["ParticleId"].tolist() == [1]
    np.testing.assert_allclose(out.points, [[0.5, 0.0, 0.0]])
    np.testing.assert_allclose(out.arrays["pressure"], [1.0])


def test_backward_target_restarts_with_fresh_ids():
    tracer = ParticleTracer(constant_provider(), ORIGIN, serial_options())
    tracer.execute(0.0)
    tracer.execute(0.5)
    out = tracer.execute(0.25)
    assert out.arrays["ParticleId"].tolist() == [1]
    np.testing.assert_allclose(out.points, [[0.25, 0.0, 0.0]])
    with pytest.raises(ValueError):
        tracer.execute(-1.0)


def test_reinjection_every_n_steps():
    tracer = ParticleTracer(constant_provider(), ORIGIN, serial_options(reinjection_every_n_steps=2))
    for t in (0.0, 0.25, 0.5):
        out = tracer.execute(t)
    assert sorted(out.arrays["InjectedStepId"].tolist()) == [0, 2]
    assert sorted(out.arrays["ParticleId"].tolist()) == [0, 1]


def test_writer_receives_every_step():
    writer = RecordingWriter()
    tracer = ParticleTracer(constant_provider(), ORIGIN, serial_options(enable_particle_writing=True), writer=writer)
    tracer.execute(0.0)
    tracer.execute(0.5)
    assert writer.calls == [(0, 0.0, 1), (1, 0.5, 1)]


def test_pathlines_and_streaklines():
    seeds = SeedSource(np.array([[0.0, 0.0, 0.0], [0.0, 0.5, 0.0]]))
    paths = ParticleTracer(constant_provider(), seeds, serial_options(reinjection_every_n_steps=1),
                           assembler=PathlineAssembler())
    streaks = ParticleTracer(constant_provider(), seeds, serial_options(reinjection_every_n_steps=1),
                             assembler=StreaklineAssembler())
    for t in (0.0, 0.25, 0.5):
        p_out = paths.execute(t)
        s_out = streaks.execute(t)

    assert p_out.num_points == 12
    assert p_out.num_lines == 4
    assert [len(line) for line in p_out.lines] == [3, 3, 2, 2]

    assert s_out.num_points == 6
    assert s_out.num_lines == 2
    first = s_out.lines[0]
    # step 1 injects at the start of its interval (t=0), step 2 at t=0.25
    np.testing.assert_allclose(s_out.points[first][:, 0], [0.5, 0.5, 0.25])
    assert s_out.arrays["InjectedStepId"][first].tolist() == [0, 1, 2]


def test_serial_and_threaded_runs_match():
    seeds = SeedSource(uniform_grid_seeds((15, 10, 1), ((-1, 1), (-1, 1), (0, 0))))
    assert seeds.num_points == 150

    def run(**options):
        with ParticleTracer(rotation_provider(), seeds, TracerOptions(**options)) as tracer:
            for t in (0.0, 0.5, 1.0):
                out = tracer.execute(t)
            return out, tracer.scheduler.last_mode

    serial, serial_mode = run(force_serial=True)
    threaded, threaded_mode = run(num_threads=4, serial_threshold=100)
    assert serial_mode == "serial"
    assert threaded_mode == "threaded"
    assert sorted(serial.arrays) == sorted(threaded.arrays)
    for name, values in serial.arrays.items():
        np.testing.assert_array_equal(values, threaded.arrays[name], err_msg=name)
    np.testing.assert_allclose(serial.points, threaded.points, rtol=0, atol=0)


def test_rotation_quarter_turn_rk45():
    tracer = create_tracer(rotation_provider(), SeedSource(np.array([[1.0, 0.0, 0.0]])), "rk45",
                           force_serial=True, integration_step=0.1, minimum_step=1e-6, maximum_error=1e-10)
    tracer.execute(0.0)
    out = tracer.execute(np.pi / 2)
    np.testing.assert_allclose(out.points, [[0.0, 1.0, 0.0]], atol=1e-6)
    np.testing.assert_allclose(out.arrays["Vorticity"], [[0.0, 0.0, 2.0]], atol=1e-9)


def test_options_validation():
    with pytest.warns(UserWarning):
        opts = TracerOptions(integration_step=-1.0)
    assert opts.integration_step == 0.5
    with pytest.warns(UserWarning):
        opts = TracerOptions(integration_step=0.1, minimum_step=0.2)
    assert opts.minimum_step == 0.1
    with pytest.raises(ValueError):
        TracerOptions(progress_style="fancy")


def test_particle_handed_to_neighbouring_rank():
    boxes = [((0.0, 5.0), (-1.0, 1.0), (-1.0, 1.0)), ((5.0, 10.0), (-1.0, 1.0), (-1.0, 1.0))]
    seeds = SeedSource(np.array([[4.9, 0.0, 0.0]]))

    def rank_fn(comm):
        provider = constant_provider(boxes=[boxes[comm.rank]])
        tracer = ParticleTracer(provider, seeds, serial_options(), communicator=comm)
        first = tracer.execute(0.0)
        out = tracer.execute(0.2)
        return first.num_points, out.arrays["ParticleId"].tolist(), out.points.copy()

    (n0, ids0, pts0), (n1, ids1, pts1) = ThreadCommunicatorGroup(2).run(rank_fn)
    assert (n0, n1) == (1, 0)
    assert ids0 == []
    assert ids1 == [0]
    np.testing.assert_allclose(pts1, [[5.1, 0.0, 0.0]], atol=1e-12)
