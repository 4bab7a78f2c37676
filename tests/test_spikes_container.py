"""Tests for the Spikes container."""

import copy

import numpy as np
import pytest

from simreport.domain.spikes import Spike, Spikes, end_after
from simreport.domain.types import UNDEFINED_TIME


def make_spikes(start=2.0, end=5.0):
    times = np.array([2.0, 3.5, 4.9])
    gids = np.array([7, 8, 12], dtype=np.uint32)
    return Spikes(times, gids, start, end)


class TestSpikes:
    """Test window bounds and sequence behaviour."""

    def test_window_bounds_are_nominal(self):
        spikes = make_spikes()

        assert spikes.get_start_time() == 2.0
        assert spikes.get_end_time() == 5.0
        assert spikes.size == 3
        assert spikes[2] == (4.9, 12)

    def test_negative_index(self):
        spikes = make_spikes()

        assert spikes[-1] == Spike(4.9, 12)
        with pytest.raises(IndexError):
            spikes[3]

    def test_iteration(self):
        assert list(make_spikes()) == [Spike(2.0, 7), Spike(3.5, 8), Spike(4.9, 12)]

    def test_arrays_are_read_only(self):
        spikes = make_spikes()

        with pytest.raises(ValueError):
            spikes.times[0] = 1.0
        with pytest.raises(ValueError):
            spikes.gids[0] = 1

    def test_copy_shares_storage(self):
        spikes = make_spikes()
        duplicate = copy.copy(spikes)

        assert duplicate == spikes
        assert duplicate.shares_storage(spikes)

    def test_slice_is_a_sub_window(self):
        spikes = make_spikes()
        tail = spikes[1:]

        assert len(tail) == 2
        assert tail.start_time == 3.5
        assert tail.end_time == 5.0
        assert tail.shares_storage(spikes)

        head = spikes[:1]
        assert head.start_time == 2.0
        assert head.end_time == 3.5

    def test_slice_between_simultaneous_spikes(self):
        times = np.array([1.0, 2.0, 2.0, 3.0])
        spikes = Spikes(times, np.arange(4, dtype=np.uint32), 0.0, 4.0)

        tail = spikes[2:]
        assert tail.start_time == 0.0
        assert all(tail.start_time <= t < tail.end_time for t in tail.times)

        head = spikes[:2]
        assert head.end_time == 4.0
        assert all(head.start_time <= t < head.end_time for t in head.times)

    def test_empty(self):
        spikes = Spikes.empty()

        assert len(spikes) == 0
        assert not spikes
        assert spikes.start_time == UNDEFINED_TIME
        assert spikes.end_time == UNDEFINED_TIME

    def test_from_arrays_sorts_and_derives_bounds(self):
        spikes = Spikes.from_arrays([3.0, 1.0, 2.0], [3, 1, 2])

        assert list(spikes.times) == [1.0, 2.0, 3.0]
        assert list(spikes.gids) == [1, 2, 3]
        assert spikes.start_time == 1.0
        assert spikes.end_time == end_after(3.0)
        assert spikes.end_time > 3.0

    def test_equality_includes_window(self):
        assert make_spikes() != make_spikes(end=6.0)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            Spikes(np.zeros(2), np.zeros(3, dtype=np.uint32))
