"""Tests for file-backed compartment reports."""

import logging
import threading

import h5py
import numpy as np
import pytest

from simreport import CompartmentReport, ReportMetadata, ReportSettings
from simreport.domain.types import NO_COMPARTMENTS, UNDEFINED_TIME
from simreport.shared.exceptions import CannotOpenError, InvalidModeError

from conftest import CELL_COUNTS, CELL_GIDS, FRAME_SIZE, write_compartment_file


HEADER = ReportMetadata(start_time=0.0, end_time=3.0, timestep=1.0, data_unit="mV", time_unit="ms")


def _cell_values(gid, index):
    position = CELL_GIDS.index(gid)
    size = sum(CELL_COUNTS[position])
    return np.full(size, gid * 10 + index, dtype=np.float32)


def _write_report(path, register_order, writes):
    """Write a 3-frame report; ``writes`` is a list of (gid, frame index)."""
    with CompartmentReport(path, "write") as report:
        report.write_header(HEADER)
        for gid in register_order:
            report.register_entity(gid, CELL_COUNTS[CELL_GIDS.index(gid)])
        for gid, index in writes:
            report.write_frame(gid, _cell_values(gid, index), float(index))


class TestCompartmentRead:
    """Windowed reads over the fixture grid t = 0..10, timestep 1."""

    def test_window(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            frames = report.read(0.0, 3.0)

        assert len(frames) == 3
        assert list(frames.timestamps) == [0.0, 1.0, 2.0]
        assert (frames.start_time, frames.end_time) == (0.0, 3.0)
        assert frames.complete
        assert frames[2].values[0] == 200.0

    def test_open_end(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            frames = report.read(3.0)

        assert len(frames) == 7
        assert frames[0].timestamp == 3.0
        assert frames.end_time == 10.0

    def test_adjacent_windows_cover_full_read(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            head = report.read(0.0, 3.0)
            tail = report.read(3.0)
            full = report.read()

        joined = np.concatenate([head.to_array(), tail.to_array()])
        assert np.array_equal(joined, full.to_array())
        assert full.start_time == 0.0

    def test_window_between_grid_points(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            frames = report.read(2.5, 4.5)

        assert list(frames.timestamps) == [3.0, 4.0]

    def test_open_start_ending_before_first_frame(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            frames = report.read(end=-1.0)
            head = report.read(end=2.0)

        assert len(frames) == 0
        assert (frames.start_time, frames.end_time) == (-1.0, -1.0)
        assert list(head.timestamps) == [0.0, 1.0]
        assert (head.start_time, head.end_time) == (0.0, 2.0)

    def test_window_outside_range(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            frames = report.read(20.0, 30.0)

        assert len(frames) == 0
        assert (frames.start_time, frames.end_time) == (20.0, 30.0)

    def test_load_frame(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            frame = report.load_frame(3.7)
            assert report.load_frame(10.0) is None
            assert report.load_frame(-0.5) is None

        assert frame.timestamp == 3.0
        assert np.array_equal(frame.values, 300 + np.arange(FRAME_SIZE, dtype=np.float32))

    def test_frames_are_read_only(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            frame = report.load_frame(0.0)

        with pytest.raises(ValueError):
            frame.values[0] = 1.0

    def test_layout(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            assert list(report.entities) == CELL_GIDS
            assert [list(o) for o in report.offsets] == [[0, 2], [3], [6, NO_COMPARTMENTS, 7]]
            assert [list(c) for c in report.compartment_counts] == CELL_COUNTS
            assert report.frame_size == FRAME_SIZE
            assert report.num_compartments(2) == 3

    def test_metadata(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            assert (report.start_time, report.end_time, report.timestep) == (0.0, 10.0, 1.0)
            assert report.data_unit == "mV"
            assert report.time_unit == "ms"
            assert report.metadata.frame_count == 10

    def test_gid_filter(self, compartment_file):
        with CompartmentReport(compartment_file, gids=[2, 5]) as report:
            frame = report.load_frame(1.0)
            assert list(report.entities) == [2, 5]
            assert [list(o) for o in report.offsets] == [[0], [3, NO_COMPARTMENTS, 4]]
            assert report.frame_size == 6

        assert list(frame.values) == [103.0, 104.0, 105.0, 106.0, 107.0, 108.0]

    def test_repeated_reads_hit_cache(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            report.read(0.0, 5.0)
            report.read(0.0, 5.0)
            stats = report._cache.get_stats()

        assert stats["hits"] >= 5

    def test_clear_cache_keeps_results(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            frames = report.read(0.0, 2.0)
            report.clear_cache()
            again = report.read(0.0, 2.0)

        assert np.array_equal(frames.to_array(), again.to_array())

    def test_concurrent_readers(self, compartment_file):
        results, errors = {}, []

        with CompartmentReport(compartment_file, settings=ReportSettings(frame_cache_mb=0.0001)) as report:

            def read_window(k):
                try:
                    for _ in range(10):
                        results[k] = report.read(k * 2.0, k * 2.0 + 3.0)
                        assert report.load_frame(k * 2.0 + 0.5).timestamp == k * 2.0
                except Exception as e:
                    errors.append(e)

            threads = [threading.Thread(target=read_window, args=(k,)) for k in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=10.0)

        assert not errors
        for k, frames in results.items():
            stamps = [k * 2.0 + i for i in range(3)]
            assert list(frames.timestamps) == stamps
            expected = np.array(stamps)[:, None] * 100 + np.arange(FRAME_SIZE)
            assert np.array_equal(frames.to_array(), expected)

    def test_short_data_is_truncated(self, temp_dir):
        path = write_compartment_file(temp_dir / "short.h5", n_rows=4)

        with CompartmentReport(path) as report:
            assert len(report.read()) == 4
            assert report.load_frame(5.0) is None

    def test_corrupted_mapping(self, temp_dir):
        path = write_compartment_file(temp_dir / "bad.h5")
        with h5py.File(path, "a") as f:
            del f["mapping/section_counts"]
            f["mapping"].create_dataset("section_counts", data=np.array([1], dtype=np.uint16))

        with pytest.raises(CannotOpenError):
            CompartmentReport(path)

    def test_spike_file_rejected(self, spike_file):
        with pytest.raises(CannotOpenError):
            CompartmentReport(spike_file)


class TestCompartmentWrite:
    """Frame assembly and write order."""

    def test_round_trip(self, temp_dir):
        path = temp_dir / "out.h5"
        writes = [(gid, i) for i in range(3) for gid in CELL_GIDS]
        _write_report(path, CELL_GIDS, writes)

        with CompartmentReport(path) as report:
            assert list(report.entities) == CELL_GIDS
            assert report.frame_size == FRAME_SIZE
            frame = report.load_frame(2.0)

        assert list(frame.values[:3]) == [12.0, 12.0, 12.0]
        assert list(frame.values[3:6]) == [22.0, 22.0, 22.0]
        assert list(frame.values[6:]) == [52.0, 52.0, 52.0]

    def test_write_order_does_not_matter(self, temp_dir):
        forward = [(gid, i) for i in range(3) for gid in CELL_GIDS]
        backward = [(gid, i) for gid in reversed(CELL_GIDS) for i in (2, 0, 1)]
        _write_report(temp_dir / "a.h5", CELL_GIDS, forward)
        _write_report(temp_dir / "b.h5", [5, 1, 2], backward)

        with h5py.File(temp_dir / "a.h5", "r") as a, h5py.File(temp_dir / "b.h5", "r") as b:
            assert np.array_equal(a["data"][...], b["data"][...])
            assert np.array_equal(a["mapping/gids"][...], b["mapping/gids"][...])
            assert np.array_equal(
                a["mapping/section_counts"][...], b["mapping/section_counts"][...]
            )

    def test_whole_frame_write(self, temp_dir):
        path = temp_dir / "out.h5"
        with CompartmentReport(path, "write") as report:
            report.write_header(HEADER)
            for gid, counts in zip(CELL_GIDS, CELL_COUNTS):
                report.register_entity(gid, counts)
            for i in range(3):
                report.write_frame_values(float(i), np.full(FRAME_SIZE, i, dtype=np.float32))

        with h5py.File(path, "r") as f:
            assert list(f["data"][:, 0]) == [0.0, 1.0, 2.0]
            assert f.attrs["data_unit"] == "mV"

    def test_incomplete_frame_zero_filled(self, temp_dir, caplog):
        path = temp_dir / "out.h5"
        with caplog.at_level(logging.WARNING):
            _write_report(path, CELL_GIDS, [(1, 0), (2, 0), (5, 0), (1, 1)])

        with h5py.File(path, "r") as f:
            row = f["data"][1]

        assert list(row[:3]) == [11.0, 11.0, 11.0]
        assert not np.any(row[3:])
        assert "incomplete" in caplog.text

    def test_layout_before_first_frame(self, temp_dir):
        with CompartmentReport(temp_dir / "out.h5", "write") as report:
            report.write_header(HEADER)
            report.register_entity(5, [1, 0, 2])
            report.register_entity(1, [2, 1])

            assert list(report.entities) == [1, 5]
            assert [list(o) for o in report.offsets] == [[0, 2], [3, NO_COMPARTMENTS, 4]]

    def test_frame_before_header(self, temp_dir):
        with CompartmentReport(temp_dir / "out.h5", "write") as report:
            report.register_entity(1, [2])
            with pytest.raises(InvalidModeError):
                report.write_frame(1, [0.0, 0.0], 0.0)

    def test_register_after_first_frame(self, temp_dir):
        with CompartmentReport(temp_dir / "out.h5", "write") as report:
            report.write_header(HEADER)
            report.register_entity(1, [1])
            report.write_frame(1, [0.0], 0.0)

            with pytest.raises(InvalidModeError):
                report.register_entity(2, [1])
            with pytest.raises(InvalidModeError):
                report.write_header(HEADER)

    def test_unregistered_gid(self, temp_dir):
        with CompartmentReport(temp_dir / "out.h5", "write") as report:
            report.write_header(HEADER)
            report.register_entity(1, [1])
            with pytest.raises(ValueError):
                report.write_frame(2, [0.0], 0.0)

    def test_wrong_value_count(self, temp_dir):
        with CompartmentReport(temp_dir / "out.h5", "write") as report:
            report.write_header(HEADER)
            report.register_entity(1, [2, 1])
            with pytest.raises(ValueError):
                report.write_frame(1, [0.0], 0.0)

    def test_header_needs_time_grid(self, temp_dir):
        with CompartmentReport(temp_dir / "out.h5", "write") as report:
            with pytest.raises(ValueError):
                report.write_header(ReportMetadata(start_time=UNDEFINED_TIME, timestep=1.0))
            with pytest.raises(ValueError):
                report.write_header(ReportMetadata(start_time=0.0, end_time=1.0, timestep=0.0))

    def test_read_on_writer(self, temp_dir):
        with CompartmentReport(temp_dir / "out.h5", "write") as report:
            with pytest.raises(InvalidModeError):
                report.read()
            with pytest.raises(InvalidModeError):
                report.load_frame(0.0)

    def test_write_on_reader(self, compartment_file):
        with CompartmentReport(compartment_file) as report:
            with pytest.raises(InvalidModeError):
                report.write_header(HEADER)
            with pytest.raises(InvalidModeError):
                report.write_frame(1, [0.0, 0.0, 0.0], 0.0)
