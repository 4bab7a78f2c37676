"""Tests for core value types."""

import numpy as np
import pytest

from simreport.domain.types import (
    NO_COMPARTMENTS,
    UNDEFINED_TIME,
    AccessMode,
    EntitySet,
    ReportMetadata,
    TimeWindow,
    compute_offsets,
    frame_size_of,
    is_undefined,
)


class TestTimeWindow:
    def test_half_open(self):
        window = TimeWindow(2.0, 5.0)

        assert window.contains(2.0)
        assert window.contains(4.999)
        assert not window.contains(5.0)
        assert not window.contains(1.0)

    def test_open_bounds(self):
        window = TimeWindow()

        assert window.open_start and window.open_end
        assert window.contains(-1e9)
        assert is_undefined(window.end)

    def test_reversed_window_rejected(self):
        with pytest.raises(ValueError):
            TimeWindow(5.0, 2.0)

    def test_reported_start(self):
        assert TimeWindow(2.0, 5.0).reported_start(0.5) == 2.0
        assert TimeWindow().reported_start(0.5) == 0.5
        assert TimeWindow(end=3.0).reported_start(5.0) == 3.0
        assert is_undefined(TimeWindow(end=3.0).reported_start(None))


class TestEntitySet:
    def test_sorted_and_unique(self):
        gids = EntitySet([5, 1, 3, 3])

        assert list(gids) == [1, 3, 5]
        assert len(gids) == 3
        assert 3 in gids
        assert 4 not in gids
        assert gids.index(5) == 2

    def test_set_operations(self):
        gids = EntitySet([1, 3, 5])

        assert gids.intersection([3, 4, 5]) == EntitySet([3, 5])
        assert gids.union([2]) == [1, 2, 3, 5]

    def test_negative_gid_rejected(self):
        with pytest.raises(ValueError):
            EntitySet([-1, 2])

    def test_array_is_read_only(self):
        with pytest.raises(ValueError):
            EntitySet([1, 2]).as_array()[0] = 7


class TestLayout:
    def test_compute_offsets(self):
        offsets = compute_offsets([[2, 1], [3], [1, 0, 2]])

        assert list(offsets[0]) == [0, 2]
        assert list(offsets[1]) == [3]
        assert list(offsets[2]) == [6, NO_COMPARTMENTS, 7]
        assert frame_size_of([[2, 1], [3], [1, 0, 2]]) == 9

    def test_offsets_dtype(self):
        offsets = compute_offsets([[1]])
        assert offsets[0].dtype == np.uint64


class TestMetadata:
    def test_frame_count(self):
        metadata = ReportMetadata(start_time=0.0, end_time=10.0, timestep=0.1)
        assert metadata.frame_count == 100

    def test_frame_count_undefined(self):
        assert ReportMetadata().frame_count == 0
        assert ReportMetadata(start_time=0.0, end_time=UNDEFINED_TIME, timestep=1.0).frame_count == 0

    def test_with_updates(self):
        metadata = ReportMetadata(start_time=1.0).with_updates(end_time=2.0)
        assert (metadata.start_time, metadata.end_time) == (1.0, 2.0)


class TestAccessMode:
    def test_parse(self):
        assert AccessMode.parse("overwrite") is AccessMode.OVERWRITE
        assert AccessMode.parse(AccessMode.READ) is AccessMode.READ
        assert AccessMode.WRITE.is_write
        assert not AccessMode.READ.is_write

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            AccessMode.parse("append")
