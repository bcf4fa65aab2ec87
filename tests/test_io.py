import numpy as np
import pytest

from advectrace.errors import MissingTimeInformationError
from advectrace.tracking import ParticleOutput, ParticleTracer, SeedSource

from conftest import serial_options

h5py = pytest.importorskip("h5py")


def sample_output():
    return ParticleOutput(
        points=np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]]),
        times=np.array([0.0, 0.5, 1.0]),
        arrays={
            "ParticleId": np.array([0, 0, 1], dtype=np.int64),
            "Vorticity": np.zeros((3, 3)),
        },
        lines=[np.array([0, 1], dtype=np.int64)],
        vertices=np.array([2], dtype=np.int64),
    )


def uniform_series(path, times=(0.0, 1.0)):
    from advectrace.io import write_snapshot_series

    velocities = np.zeros((len(times), 5, 3, 3, 3))
    velocities[..., 0] = 1.0
    return write_snapshot_series(path, velocities, times, origin=(0.0, -1.0, -1.0), spacing=(1.0, 1.0, 1.0))


def test_h5_particle_writer_round_trip(tmp_path):
    from advectrace.io import H5ParticleWriter, read_particle_step

    path = tmp_path / "particles.h5"
    writer = H5ParticleWriter(path)
    writer.write(0, 0.0, ParticleOutput.empty())
    writer.write(1, 1.0, sample_output())
    assert writer.steps_written == [0, 1]

    time, out = read_particle_step(path, 1)
    assert time == 1.0
    np.testing.assert_allclose(out.points, sample_output().points)
    assert out.arrays["ParticleId"].tolist() == [0, 0, 1]
    assert [line.tolist() for line in out.lines] == [[0, 1]]
    assert out.vertices.tolist() == [2]

    _, empty = read_particle_step(path, 0)
    assert empty.num_points == 0 and empty.num_lines == 0
    with pytest.raises(KeyError):
        read_particle_step(path, 7)


def test_snapshot_series_drives_tracer(tmp_path):
    from advectrace.io import H5ParticleWriter, H5SnapshotSeries

    provider = H5SnapshotSeries(uniform_series(tmp_path / "series.h5"))
    assert len(provider) == 2
    assert provider.snapshot(0).bounds_table().shape == (1, 2, 3)

    writer = H5ParticleWriter(tmp_path / "out.h5")
    tracer = ParticleTracer(provider, SeedSource(np.array([[0.5, 0.0, 0.0]])),
                            serial_options(enable_particle_writing=True), writer=writer)
    tracer.execute(0.0)
    out = tracer.execute(1.0)
    np.testing.assert_allclose(out.points, [[1.5, 0.0, 0.0]])
    assert writer.steps_written == [0, 1]
    with h5py.File(tmp_path / "out.h5", "r") as f:
        assert f["particles/step_000001"].attrs["num_points"] == 1


def test_snapshot_group_layout_sorted_by_time(tmp_path):
    from advectrace.io import H5SnapshotSeries

    path = tmp_path / "group.h5"
    with h5py.File(path, "w") as f:
        grp = f.create_group("velocity")
        for key, t in (("a", 2.0), ("b", 1.0)):
            ds = grp.create_dataset(key, data=np.full((2, 2, 2, 3), t))
            ds.attrs["time"] = t
    series = H5SnapshotSeries(path)
    np.testing.assert_allclose(series.times, [1.0, 2.0])
    np.testing.assert_allclose(series.load_slice(0)[0, 0, 0], [1.0, 1.0, 1.0])


def test_snapshot_group_without_time(tmp_path):
    from advectrace.io import H5SnapshotSeries

    path = tmp_path / "untimed.h5"
    with h5py.File(path, "w") as f:
        f.create_group("velocity").create_dataset("t0000", data=np.zeros((2, 2, 2, 3)))
    with pytest.raises(MissingTimeInformationError):
        H5SnapshotSeries(path)


def test_snapshot_dataset_without_times(tmp_path):
    from advectrace.io import H5SnapshotSeries

    path = tmp_path / "notimes.h5"
    with h5py.File(path, "w") as f:
        f.create_dataset("velocity", data=np.zeros((2, 2, 2, 2, 3)))
    with pytest.raises(MissingTimeInformationError):
        H5SnapshotSeries(path)


def test_vtp_round_trip(tmp_path):
    pytest.importorskip("vtk")
    from advectrace.io import read_particle_output, write_particle_output

    path = write_particle_output(sample_output(), tmp_path / "sub" / "particles.vtp")
    back = read_particle_output(path)
    np.testing.assert_allclose(back.points, sample_output().points)
    np.testing.assert_allclose(back.times, [0.0, 0.5, 1.0])
    assert back.arrays["Vorticity"].shape == (3, 3)
    assert [line.tolist() for line in back.lines] == [[0, 1]]
    assert back.vertices.tolist() == [2]
