import numpy as np
import pytest

from advectrace.errors import MissingTimeInformationError, SchemaMismatchError
from advectrace.fields import (
    FieldSnapshot,
    InMemoryTemporalDataset,
    LocatorStrategy,
    StructuredBlock,
    create_tetrahedral_block,
    create_uniform_block,
    validate_point_data,
    velocity_curl,
)
from advectrace.parallel import ThreadCommunicatorGroup


def linear_velocity(points):
    p = np.asarray(points, dtype=float)
    return np.stack([1.0 + 2.0 * p[:, 0], -p[:, 1] + 0.5 * p[:, 2], 3.0 * p[:, 0]], axis=1)


GRAD = np.array([[2.0, 0.0, 0.0], [0.0, -1.0, 0.5], [3.0, 0.0, 0.0]])


def test_structured_block_interpolates_linear_field_exactly():
    block = create_uniform_block(((0, 2), (0, 1), (0, 1)), (5, 3, 3), linear_velocity)
    p = np.array([1.3, 0.7, 0.2])
    cell = block.find_cell(p)
    assert cell is not None
    sample = block.interpolate(p, cell, want_gradient=True)
    np.testing.assert_allclose(sample.velocity, linear_velocity(p[None])[0], atol=1e-12)
    np.testing.assert_allclose(sample.gradient, GRAD, atol=1e-12)


def test_structured_block_locates_points_on_upper_face():
    block = create_uniform_block(((0, 2), (0, 1), (0, 1)), 3, linear_velocity)
    cell = block.find_cell(np.array([2.0, 1.0, 1.0]))
    assert cell is not None
    assert block.cell_contains(cell, np.array([2.0, 1.0, 1.0]))
    assert block.find_cell(np.array([2.1, 0.5, 0.5])) is None


def test_structured_block_rejects_bad_vector_array():
    with pytest.raises(ValueError):
        StructuredBlock(origin=(0, 0, 0), spacing=(1, 1, 1), shape=(2, 2, 2),
                        point_data={"velocity": np.zeros((8, 2))})


@pytest.mark.parametrize("strategy", [LocatorStrategy.point, LocatorStrategy.cell])
def test_tetrahedral_block_interpolation(strategy):
    pytest.importorskip("scipy")
    rng = np.random.default_rng(3)
    corners = np.array([[i, j, k] for i in (0, 1) for j in (0, 1) for k in (0, 1)], dtype=float)
    corners = corners * 1.1 - 0.05 + rng.uniform(-0.01, 0.01, size=(8, 3))
    interior = rng.uniform(0.05, 0.95, size=(40, 3))
    nodes = np.concatenate([corners, interior])
    block = create_tetrahedral_block(nodes, linear_velocity(nodes), extra_arrays={"T": nodes[:, 0]})

    p = np.array([0.41, 0.52, 0.33])
    cell = block.find_cell(p, strategy)
    if strategy == LocatorStrategy.point and cell is None:
        pytest.skip("nearest-node search missed the containing cell")
    assert block.cell_contains(cell, p)
    sample = block.interpolate(p, cell, want_gradient=True)
    np.testing.assert_allclose(sample.velocity, linear_velocity(p[None])[0], atol=1e-10)
    np.testing.assert_allclose(sample.data["T"], 0.41, atol=1e-10)
    np.testing.assert_allclose(sample.gradient, GRAD, atol=1e-9)
    assert block.find_cell(np.array([1.5, 0.5, 0.5]), LocatorStrategy.cell) is None


def test_velocity_curl_of_rotation():
    grad = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 0.0]])
    np.testing.assert_allclose(velocity_curl(grad), [0.0, 0.0, 2.0])


def _block(extra=None, dtype=float):
    arrays = {name: (lambda pts, d=dtype: np.zeros(pts.shape[0], dtype=d)) for name in (extra or [])}
    return create_uniform_block(((0, 1), (0, 1), (0, 1)), 2, lambda p: np.zeros((p.shape[0], 3)), extra_arrays=arrays)


def test_validate_point_data_accepts_matching_blocks():
    snap = FieldSnapshot(0.0, [_block(["p"]), _block(["p"])])
    schema = validate_point_data([snap])
    assert schema.names == ("p", "velocity")


def test_validate_point_data_rejects_block_mismatch():
    snap = FieldSnapshot(0.0, [_block(["p"]), _block(["q"])])
    with pytest.raises(SchemaMismatchError):
        validate_point_data([snap])


def test_validate_point_data_rejects_dtype_mismatch():
    snap = FieldSnapshot(0.0, [_block(["p"], dtype=float), _block(["p"], dtype=np.int32)])
    with pytest.raises(SchemaMismatchError):
        validate_point_data([snap])


def test_validate_point_data_across_ranks():
    group = ThreadCommunicatorGroup(2)

    def rank_fn(comm):
        extra = ["p"] if comm.rank == 0 else ["q"]
        snap = FieldSnapshot(0.0, [_block(extra)])
        try:
            validate_point_data([snap], comm)
        except SchemaMismatchError:
            return "mismatch"
        return "ok"

    assert group.run(rank_fn) == ["mismatch", "mismatch"]


def test_snapshot_numbers_blocks_and_bounds():
    snap = FieldSnapshot(1.0, [_block(), _block()])
    assert [b.block_id for b in snap.blocks] == [0, 1]
    assert snap.bounds_table().shape == (2, 2, 3)


def test_in_memory_dataset_requires_times():
    with pytest.raises(MissingTimeInformationError):
        InMemoryTemporalDataset([FieldSnapshot(None, [_block()])])


def test_in_memory_dataset_requires_increasing_times():
    with pytest.raises(ValueError):
        InMemoryTemporalDataset([FieldSnapshot(1.0, [_block()]), FieldSnapshot(0.0, [_block()])])
