import numpy as np
import pytest

from advectrace.errors import MissingTimeInformationError
from advectrace.fields.schema import ArraySpec, AttributeSchema
from advectrace.tracking import (
    AttributeBuffer,
    ParticleFrontAssembler,
    ParticleOutput,
    ParticleRecord,
    PathlineAssembler,
    TemporalPathLineFilter,
    engine_array_specs,
    get_assembler,
)


def particle(uid, x, t=0.0, **kwargs):
    p = ParticleRecord(position=[x, 0.0, 0.0, t], **kwargs)
    p.assign_unique_id(uid)
    return p


def frame(xs, t, ids=None):
    pts = np.array([[x, 0.0, 0.0] for x in xs], dtype=float).reshape(-1, 3)
    arrays = {} if ids is None else {"ParticleId": np.asarray(ids, dtype=np.int64)}
    return ParticleOutput(points=pts, times=np.full(len(xs), t), arrays=arrays)


# ---------- Buffers and assemblers ----------

def test_attribute_buffer_grows_and_keeps_rows():
    schema = AttributeSchema((ArraySpec("s", np.dtype(np.float64).str, 1), ArraySpec("v", np.dtype(np.float64).str, 3)))
    buf = AttributeBuffer(schema, capacity=1)
    for i in range(5):
        assert buf.append([i, 0, 0], float(i), {"s": i * 10.0, "v": [i, i, i]}) == i
    assert len(buf) == 5
    np.testing.assert_allclose(buf.arrays()["s"], [0, 10, 20, 30, 40])
    assert buf.arrays()["v"].shape == (5, 3)
    np.testing.assert_allclose(buf.times, np.arange(5.0))
    buf.clear()
    assert len(buf) == 0 and buf.points.shape == (0, 3)


def test_engine_arrays_follow_upstream():
    upstream = AttributeSchema((ArraySpec("velocity", np.dtype(np.float64).str, 3),))
    schema = upstream.extended(engine_array_specs(compute_vorticity=False))
    assert schema.names[0] == "velocity"
    assert "ParticleId" in schema.names and "Vorticity" not in schema.names


def test_front_assembler_compacts_particles():
    assembler = ParticleFrontAssembler(compute_vorticity=False)
    assembler.layout(AttributeSchema())
    particles = [particle(4, 1.0, source_id=2), particle(9, 2.0, injected_point_id=3)]
    particles[1].tail_point_id = 0
    out = assembler.assemble(particles, 0.0)
    assert [p.point_id for p in particles] == [0, 1]
    assert [p.tail_point_id for p in particles] == [None, None]
    assert out.arrays["ParticleId"].tolist() == [4, 9]
    assert out.arrays["ParticleSourceId"].tolist() == [2, 0]
    assert out.arrays["InjectedPointId"].tolist() == [0, 3]
    assert out.vertices.tolist() == [0, 1]
    assert out.num_lines == 0


def test_pathline_assembler_drops_dead_particles_unless_kept():
    for keep_dead, expected in ((False, 1), (True, 2)):
        assembler = PathlineAssembler(compute_vorticity=False, keep_dead=keep_dead)
        assembler.layout(AttributeSchema())
        a, b = particle(0, 0.0), particle(1, 5.0)
        assembler.assemble([a, b], 0.0)
        a.move_to([1.0, 0.0, 0.0], 1.0)
        b.move_to([6.0, 0.0, 0.0], 1.0)
        assembler.assemble([a, b], 1.0)
        a.move_to([2.0, 0.0, 0.0], 2.0)
        out = assembler.assemble([a], 2.0)
        assert out.num_lines == expected
        np.testing.assert_allclose(out.points[out.lines[0]][:, 0], [0.0, 1.0, 2.0])
        np.testing.assert_allclose(out.times[out.lines[0]], [0.0, 1.0, 2.0])


def test_get_assembler():
    assert isinstance(get_assembler("Pathline", keep_dead=True), PathlineAssembler)
    with pytest.raises(ValueError):
        get_assembler("ribbon")


# ---------- Trails ----------

def test_trail_ring_buffer():
    trails = TemporalPathLineFilter(max_track_length=3, mask_points=1)
    for t in range(5):
        lines, fronts = trails.update(frame([float(t)], float(t), ids=[0]))
    assert lines.num_lines == 1
    np.testing.assert_allclose(lines.points[:, 0], [2.0, 3.0, 4.0])
    assert lines.arrays["TrackLength"].tolist() == [3, 2, 1]
    assert lines.arrays["TrailId"].dtype == np.float32
    np.testing.assert_allclose(fronts.points, [[4.0, 0.0, 0.0]])
    assert fronts.arrays["ParticleId"].tolist() == [0]


def test_trail_ignores_zero_step():
    trails = TemporalPathLineFilter(mask_points=1)
    trails.update(frame([0.5], 0.0, ids=[0]))
    lines, _ = trails.update(frame([0.5], 1.0, ids=[0]))
    assert lines.num_points == 1
    assert lines.num_lines == 0


def test_long_step_ends_trail():
    trails = TemporalPathLineFilter(mask_points=1, max_step_distance=(1.0, 1.0, 1.0))
    trails.update(frame([0.0], 0.0, ids=[0]))
    lines, fronts = trails.update(frame([2.0], 1.0, ids=[0]))
    assert lines.num_points == 0 and fronts.num_points == 0
    lines, _ = trails.update(frame([2.5], 2.0, ids=[0]))
    np.testing.assert_allclose(lines.points[:, 0], [2.5])


def test_dead_trails_kept_on_request():
    trails = TemporalPathLineFilter(mask_points=1, keep_dead_trails=True)
    trails.update(frame([0.0, 1.0], 0.0, ids=[0, 1]))
    trails.update(frame([0.5, 1.5], 1.0, ids=[0, 1]))
    lines, fronts = trails.update(frame([1.0], 2.0, ids=[0]))
    assert lines.num_lines == 2
    assert fronts.num_points == 2


def test_time_reversal_flushes():
    trails = TemporalPathLineFilter(mask_points=1)
    trails.update(frame([0.0], 0.0, ids=[0]))
    trails.update(frame([0.5], 1.0, ids=[0]))
    lines, _ = trails.update(frame([0.2], 0.5, ids=[0]))
    np.testing.assert_allclose(lines.points[:, 0], [0.2])


def test_backward_time_mode():
    trails = TemporalPathLineFilter(mask_points=1, backward_time=True)
    trails.update(frame([1.0], 1.0, ids=[0]))
    lines, _ = trails.update(frame([0.5], 0.5, ids=[0]))
    assert lines.num_lines == 1


def test_track_length_change_flushes():
    trails = TemporalPathLineFilter(mask_points=1)
    trails.update(frame([0.0], 0.0, ids=[0]))
    trails.update(frame([0.5], 1.0, ids=[0]))
    trails.max_track_length = 4
    lines, _ = trails.update(frame([1.0], 2.0, ids=[0]))
    assert lines.num_points == 1


def test_mask_by_id_and_by_index():
    trails = TemporalPathLineFilter(mask_points=200)
    ids = np.arange(400)
    lines, fronts = trails.update(frame(np.linspace(0, 1, 400), 0.0, ids=ids))
    assert sorted(trails.trails) == [0, 200]
    assert fronts.num_points == 2

    no_ids = TemporalPathLineFilter(mask_points=2)
    no_ids.update(frame([0.0, 0.1, 0.2, 0.3, 0.4], 0.0))
    assert sorted(no_ids.trails) == [0, 2, 4]


def test_selection_overrides_mask():
    trails = TemporalPathLineFilter(mask_points=200)
    trails.set_selection([3])
    trails.update(frame([0.0, 0.1, 0.2, 0.3], 0.0, ids=[0, 1, 2, 3]))
    assert list(trails.trails) == [3]


def test_duplicate_id_keeps_closest_point():
    trails = TemporalPathLineFilter(mask_points=1)
    trails.update(frame([0.0], 0.0, ids=[0]))
    lines, _ = trails.update(frame([0.5, 0.1], 1.0, ids=[0, 0]))
    np.testing.assert_allclose(lines.points[:, 0], [0.0, 0.1])


def test_time_taken_from_frame_or_required():
    trails = TemporalPathLineFilter(mask_points=1)
    trails.update(frame([0.0], 3.0, ids=[0]))
    assert trails._latest_time == 3.0
    untimed = ParticleOutput(points=np.zeros((1, 3)))
    with pytest.raises(MissingTimeInformationError):
        trails.update(untimed)
    trails.update(untimed, time=4.0)


def test_non_positive_settings_warn():
    with pytest.warns(UserWarning):
        trails = TemporalPathLineFilter(mask_points=0)
    assert trails.mask_points == 1
    with pytest.warns(UserWarning):
        trails.max_track_length = 0
    assert trails.max_track_length == 1
