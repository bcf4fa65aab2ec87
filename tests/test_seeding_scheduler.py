import threading

import numpy as np
import pytest

from advectrace.tracking import (
    BatchScheduler,
    SchedulerContext,
    SeedSource,
    circle_seeds,
    line_seeds,
    make_sources,
    random_seeds,
    uniform_grid_seeds,
)

BOUNDS = ((0.0, 0.0, 0.0), (1.0, 2.0, 3.0))


def test_random_seeds_inside_bounds_and_reproducible():
    a = random_seeds(50, BOUNDS, rng_seed=4)
    b = random_seeds(50, [0, 1, 0, 2, 0, 3], rng_seed=4)
    assert a.shape == (50, 3) and a.dtype == np.float64
    assert np.all(a >= 0.0) and np.all(a <= [1.0, 2.0, 3.0])
    np.testing.assert_array_equal(a, b)
    assert random_seeds(0, BOUNDS).shape == (0, 3)


def test_uniform_grid_seeds():
    pts = uniform_grid_seeds((2, 3, 1), BOUNDS)
    assert pts.shape == (6, 3)
    np.testing.assert_allclose(pts[0], [0.0, 0.0, 0.0])
    inner = uniform_grid_seeds(1, BOUNDS, include_boundaries=False)
    np.testing.assert_allclose(inner, [[0.5, 1.0, 1.5]])


def test_line_and_circle_seeds():
    line = line_seeds((0, 0, 0), (1, 0, 0), 5)
    np.testing.assert_allclose(line[:, 0], [0.0, 0.25, 0.5, 0.75, 1.0])
    circle = circle_seeds((0, 0, 1), 2.0, 4, plane="xy")
    np.testing.assert_allclose(np.linalg.norm(circle[:, :2], axis=1), 2.0)
    np.testing.assert_allclose(circle[:, 2], 1.0)
    with pytest.raises(ValueError):
        circle_seeds((0, 0, 0), 1.0, 4, plane="ab")


def test_bad_bounds_rejected():
    with pytest.raises(ValueError):
        random_seeds(3, ((1.0, 0.0, 0.0), (0.0, 1.0, 1.0)))


def test_seed_source_ids():
    src = SeedSource(np.zeros((3, 2)))
    assert src.points.shape == (3, 3)
    np.testing.assert_array_equal(src.ids, [0, 1, 2])
    with pytest.raises(ValueError):
        SeedSource(np.zeros((3, 3)), ids=[1, 2])
    sources = make_sources(np.zeros((1, 3)), np.ones((2, 3)))
    assert [s.source_id for s in sources] == [0, 1]
    moved = sources[1].moved_to(np.full((2, 3), 5.0))
    assert moved.source_id == 1
    np.testing.assert_array_equal(moved.ids, sources[1].ids)


def test_scheduler_serial_below_threshold():
    scheduler = BatchScheduler(SchedulerContext(num_threads=4, serial_threshold=10))
    assert scheduler.run(range(5), lambda i: i * i) == [0, 1, 4, 9, 16]
    assert scheduler.last_mode == "serial"


def test_scheduler_threaded_preserves_order_and_runs_once():
    seen = []
    lock = threading.Lock()

    def task(i):
        with lock:
            seen.append(i)
        return -i

    with SchedulerContext(num_threads=4, serial_threshold=10) as ctx:
        scheduler = BatchScheduler(ctx)
        out = scheduler.run(range(200), task)
    assert scheduler.last_mode == "threaded"
    assert out == [-i for i in range(200)]
    assert sorted(seen) == list(range(200))


def test_force_serial_overrides_pool():
    ctx = SchedulerContext(num_threads=8, serial_threshold=0, force_serial=True)
    scheduler = BatchScheduler(ctx)
    scheduler.run(range(500), lambda i: i)
    assert scheduler.last_mode == "serial"
    assert ctx._executor is None


def test_simple_progress_writes_to_stdout(capsys):
    scheduler = BatchScheduler(SchedulerContext(force_serial=True), progress_style="simple", progress_desc="Test")
    scheduler.run(range(4), lambda i: i)
    assert "Test: 4/4 (100.0%)" in capsys.readouterr().out


def test_task_errors_propagate():
    def boom(i):
        raise RuntimeError("bad item")

    with SchedulerContext(num_threads=2, serial_threshold=1) as ctx:
        with pytest.raises(RuntimeError):
            BatchScheduler(ctx).run(range(3), boom)
