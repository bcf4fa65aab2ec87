import numpy as np
import pytest

from advectrace.errors import MissingTimeInformationError
from advectrace.fields import FieldSnapshot, create_uniform_block
from advectrace.tracking import TemporalCache

from conftest import UNIT_BOX, constant_provider


def test_refresh_is_idempotent_within_bracket():
    provider = constant_provider(times=(0.0, 1.0, 2.0))
    cache = TemporalCache(provider)
    first = cache.refresh(0.3)
    assert first.fetched and provider.fetch_count == 2
    again = cache.refresh(0.9)
    assert not again.fetched
    assert provider.fetch_count == 2
    assert cache.window() == (0.0, 1.0)


def test_refresh_shifts_to_next_bracket():
    provider = constant_provider(times=(0.0, 1.0, 2.0))
    cache = TemporalCache(provider)
    cache.refresh(0.5)
    end = cache.snapshot(1)
    update = cache.refresh(1.5)
    assert update.shifted
    assert provider.fetch_count == 3
    assert cache.snapshot(0) is end
    assert cache.window() == (1.0, 2.0)


def test_refresh_jump_refetches_both():
    provider = constant_provider(times=(0.0, 1.0, 2.0, 3.0))
    cache = TemporalCache(provider)
    cache.refresh(0.5)
    update = cache.refresh(2.5)
    assert update.fetched and not update.shifted
    assert provider.fetch_count == 4


def test_prefetch_loads_each_snapshot_once():
    provider = constant_provider(times=(0.0, 1.0, 2.0, 3.0))
    cache = TemporalCache(provider)
    cache.refresh(0.5)
    brackets = cache.prefetch([1.0, 2.0, 3.0])
    assert [len(b) for b in brackets] == [2, 2, 2]
    assert [b[0].time for b in brackets] == [0.0, 1.0, 2.0]
    assert provider.fetch_count == 4
    cache.refresh(1.5)
    update = cache.refresh(2.5)
    assert update.shifted
    assert cache.snapshot(1) is brackets[2][1]
    assert provider.fetch_count == 4


def test_dropped_prefetch_is_loaded_again():
    provider = constant_provider(times=(0.0, 1.0, 2.0))
    cache = TemporalCache(provider)
    cache.refresh(0.5)
    cache.prefetch([2.0])
    cache.drop_prefetched()
    cache.refresh(1.5)
    assert provider.fetch_count == 4


def test_bracket_clamps_outside_input_range():
    cache = TemporalCache(constant_provider(times=(0.0, 1.0, 2.0)))
    assert cache.bracket(-5.0) == (0, 1)
    assert cache.bracket(1.0) == (0, 1)
    assert cache.bracket(9.0) == (1, 2)


def test_single_time_provider_is_steady():
    provider = constant_provider(times=(0.0,))
    cache = TemporalCache(provider)
    cache.refresh(10.0)
    assert cache.steady
    assert provider.fetch_count == 1


def test_contains_uses_block_bounds():
    cache = TemporalCache(constant_provider())
    cache.refresh(0.0)
    assert cache.contains(np.array([0.0, 0.0, 0.0]))
    assert not cache.contains(np.array([5.0, 0.0, 0.0]))
    assert cache.bounds().shape == (1, 2, 3)


class _UntimedProvider:
    times = [0.0, None]

    def snapshot(self, index):
        block = create_uniform_block(UNIT_BOX, 2, lambda p: np.zeros((p.shape[0], 3)))
        return FieldSnapshot(self.times[index], [block])


def test_missing_time_raises():
    cache = TemporalCache(_UntimedProvider())
    with pytest.raises(MissingTimeInformationError):
        cache.refresh(0.0)


def test_queries_before_refresh_fail():
    cache = TemporalCache(constant_provider())
    assert not cache.ready
    with pytest.raises(RuntimeError):
        cache.window()
