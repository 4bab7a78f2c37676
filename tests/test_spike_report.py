"""Tests for file-backed spike reports (HDF5 and ASCII)."""

import threading

import h5py
import numpy as np
import pytest

from simreport import SpikeReport, open_spike_report
from simreport.domain.spikes import end_after
from simreport.domain.types import UNDEFINED_TIME
from simreport.shared.exceptions import (
    CannotOpenError,
    InvalidModeError,
    OutOfOrderError,
    ReportError,
)

from conftest import write_spike_file


class TestSpikeRead:
    """Windowed reads over a fully materialized file."""

    def test_window(self, spike_file):
        with SpikeReport(spike_file) as report:
            spikes = report.read(2.0, 5.0)

        assert list(spikes.times) == [2.0, 3.5, 4.9]
        assert spikes.start_time == 2.0
        assert spikes.end_time == 5.0
        assert spikes[2] == (4.9, 2)
        assert spikes.complete

    def test_full_read(self, spike_file):
        with SpikeReport(spike_file) as report:
            spikes = report.read()

        assert len(spikes) == 6
        assert spikes.start_time == 0.5
        assert spikes.end_time == end_after(7.0)

    def test_open_end(self, spike_file):
        with SpikeReport(spike_file) as report:
            spikes = report.read(5.0)

        assert list(spikes) == [(7.0, 1)]
        assert spikes.start_time == 5.0
        assert spikes.end_time > 7.0

    def test_empty_windows(self, spike_file):
        with SpikeReport(spike_file) as report:
            between = report.read(5.0, 6.0)
            after = report.read(8.0)

        assert len(between) == 0
        assert (between.start_time, between.end_time) == (5.0, 6.0)
        assert len(after) == 0
        assert after.end_time == after.start_time == 8.0

    def test_open_start_ending_before_first_spike(self, spike_file):
        with SpikeReport(spike_file) as report:
            before = report.read(end=0.25)
            head = report.read(end=1.0)

        assert len(before) == 0
        assert (before.start_time, before.end_time) == (0.25, 0.25)
        assert list(head.times) == [0.5]
        assert (head.start_time, head.end_time) == (0.5, 1.0)

    def test_concurrent_readers(self, spike_file):
        windows = [(0.0, 2.0), (2.0, 5.0), (5.0, 8.0), (UNDEFINED_TIME, UNDEFINED_TIME)]
        results, errors = {}, []

        with SpikeReport(spike_file) as report:

            def read_window(k):
                try:
                    for _ in range(10):
                        results[k] = report.read(*windows[k])
                        if k == 0:
                            report.clear_cache()
                except Exception as e:
                    errors.append(e)

            threads = [threading.Thread(target=read_window, args=(k,)) for k in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=10.0)

        assert not errors
        assert list(results[0].times) == [0.5, 1.0]
        assert list(results[1].times) == [2.0, 3.5, 4.9]
        assert list(results[2].times) == [7.0]
        assert len(results[3]) == 6

    def test_reads_are_idempotent_and_share_storage(self, spike_file):
        with SpikeReport(spike_file) as report:
            first = report.read(1.0, 4.0)
            second = report.read(1.0, 4.0)
            other = report.read(4.0, 8.0)

        assert first == second
        assert first.shares_storage(other)

    def test_results_outlive_the_report(self, spike_file):
        report = SpikeReport(spike_file)
        spikes = report.read()
        report.close()

        assert len(spikes) == 6
        with pytest.raises(ReportError):
            report.read()

    def test_metadata(self, spike_file):
        with open_spike_report(spike_file) as report:
            assert report.start_time == 0.5
            assert report.end_time == end_after(7.0)
            assert report.time_unit == "ms"
            assert list(report.entities) == [1, 2, 3]
            assert report.plugin_name == "hdf5-spikes"
            assert not report.is_stream

    def test_gid_filter(self, spike_file):
        with SpikeReport(spike_file, gids=[1, 9]) as report:
            spikes = report.read()
            assert list(report.entities) == [1]

        assert list(spikes.gids) == [1, 1, 1]
        assert list(spikes.times) == [0.5, 2.0, 7.0]

    def test_empty_file(self, temp_dir):
        path = write_spike_file(temp_dir / "empty.h5", [], [])

        with SpikeReport(path) as report:
            spikes = report.read()
            assert report.start_time == UNDEFINED_TIME

        assert len(spikes) == 0
        assert spikes.start_time == UNDEFINED_TIME

    def test_not_a_spike_file(self, compartment_file):
        with pytest.raises(CannotOpenError):
            SpikeReport(compartment_file)

    def test_read_on_writer(self, temp_dir):
        with SpikeReport(temp_dir / "out.h5", "write") as report:
            with pytest.raises(InvalidModeError):
                report.read()


class TestSpikeWrite:
    """Write path and the monotonicity rule."""

    def test_round_trip(self, temp_dir):
        path = temp_dir / "out.h5"
        with SpikeReport(path, "write") as report:
            report.write([(0.5, 3), (1.5, 1)])
            report.write_spike(2.5, 2)

        with h5py.File(path, "r") as f:
            assert list(f["spikes/timestamps"][...]) == [0.5, 1.5, 2.5]
            assert list(f["spikes/gids"][...]) == [3, 1, 2]

        with SpikeReport(path) as report:
            assert list(report.read(1.0, 3.0)) == [(1.5, 1), (2.5, 2)]

    def test_decreasing_timestamp_fails(self, temp_dir):
        with SpikeReport(temp_dir / "out.h5", "write") as report:
            report.write([(5.0, 1)])
            with pytest.raises(OutOfOrderError):
                report.write([(3.0, 1)])

    def test_repeated_timestamp_fails(self, temp_dir):
        with SpikeReport(temp_dir / "out.h5", "write") as report:
            report.write([(5.0, 1)])
            with pytest.raises(OutOfOrderError):
                report.write_spike(5.0, 2)

    def test_unsorted_batch_fails(self, temp_dir):
        with SpikeReport(temp_dir / "out.h5", "write") as report:
            with pytest.raises(OutOfOrderError):
                report.write([(2.0, 1), (1.0, 2)])

    def test_negative_gid(self, temp_dir):
        with SpikeReport(temp_dir / "out.h5", "write") as report:
            with pytest.raises(ValueError):
                report.write([(1.0, -1)])

    def test_write_on_reader(self, spike_file):
        with SpikeReport(spike_file) as report:
            with pytest.raises(InvalidModeError):
                report.write([(9.0, 1)])

    def test_gid_filter_on_writer(self, temp_dir):
        with pytest.raises(InvalidModeError):
            SpikeReport(temp_dir / "out.h5", "write", gids=[1])

    def test_write_refuses_existing_file(self, spike_file):
        with pytest.raises(CannotOpenError):
            SpikeReport(spike_file, "write")

    def test_overwrite_replaces_file(self, spike_file):
        with SpikeReport(spike_file, "overwrite") as report:
            report.write([(1.0, 4)])

        with SpikeReport(spike_file) as report:
            assert list(report.read()) == [(1.0, 4)]

    def test_write_accepts_empty_destination(self, temp_dir):
        path = temp_dir / "out.h5"
        path.touch()

        with SpikeReport(path, "write") as report:
            report.write([(1.0, 1)])


class TestAsciiSpikes:
    """Plain text spike files."""

    def test_dat_round_trip(self, temp_dir):
        path = temp_dir / "out.dat"
        with SpikeReport(path, "write") as report:
            assert report.plugin_name == "ascii-spikes"
            report.write([(0.25, 1), (1.5, 20)])

        lines = path.read_text().splitlines()
        assert lines[0] == "/scatter"
        assert lines[1].split() == ["0.25", "1"]

        with SpikeReport(path) as report:
            spikes = report.read()

        assert list(spikes) == [(0.25, 1), (1.5, 20)]

    def test_gdf_is_gid_first(self, temp_dir):
        path = temp_dir / "out.gdf"
        with SpikeReport(path, "write") as report:
            report.write([(0.5, 7)])

        assert path.read_text().split() == ["7", "0.5"]
        with SpikeReport(path) as report:
            assert list(report.read()) == [(0.5, 7)]

    def test_comments_and_unsorted_lines(self, temp_dir):
        path = temp_dir / "in.txt"
        path.write_text("# produced by hand\n/scatter\n3.0 2\n1.0 1\n\n2.0 1\n")

        with SpikeReport(path, gids=[1]) as report:
            spikes = report.read()

        assert list(spikes) == [(1.0, 1), (2.0, 1)]

    def test_malformed_file(self, temp_dir):
        path = temp_dir / "bad.dat"
        path.write_text("1.0 one\n")

        with pytest.raises(CannotOpenError):
            SpikeReport(path)

    def test_no_header_option(self, temp_dir):
        path = temp_dir / "out.dat"
        with SpikeReport(path, "write", header=False) as report:
            report.write([(1.0, 1)])

        assert not path.read_text().startswith("/scatter")
        assert np.isclose(float(path.read_text().split()[0]), 1.0)
