"""Tests for in-process stream reports."""

import threading
import time

import numpy as np
import pytest

from simreport import CompartmentReport, ReportMetadata, ReportSettings, SpikeReport
from simreport.domain.lifecycle import BackendState
from simreport.domain.spikes import end_after
from simreport.domain.types import NO_COMPARTMENTS, UNDEFINED_TIME
from simreport.plugins.stream import hub
from simreport.plugins.stream.codec import SPIKES, StreamMessage
from simreport.shared.exceptions import BackendFailureError, CannotOpenError, InvalidModeError

from conftest import CELL_COUNTS, CELL_GIDS, FRAME_SIZE


STREAM_HEADER = ReportMetadata(
    start_time=0.0, end_time=4.0, timestep=1.0, data_unit="mV", time_unit="ms"
)


def _frame(index):
    return np.full(FRAME_SIZE, index, dtype=np.float32) + np.arange(FRAME_SIZE, dtype=np.float32)


def _publish_layout(uri):
    """Open a compartment writer and publish its header."""
    writer = CompartmentReport(uri, "write")
    writer.write_header(STREAM_HEADER)
    for gid, counts in zip(CELL_GIDS, CELL_COUNTS):
        writer.register_entity(gid, counts)
    writer.write_mapping()
    return writer


class TestSpikeStream:
    """Horizon confirmation of spike streams."""

    def test_spikes_at_horizon_wait_for_confirmation(self, channel_uri):
        writer = SpikeReport(channel_uri, "write")
        reader = SpikeReport(channel_uri)
        try:
            writer.write([(1.0, 1), (2.0, 2)])

            head = reader.read(0.0, 1.5)
            assert list(head) == [(1.0, 1)]
            assert head.complete
            assert head.end_time == 1.5

            # 2.0 is the horizon: siblings may still follow
            partial = reader.read(0.0, 3.0, timeout=0.1)
            assert list(partial) == [(1.0, 1)]
            assert not partial.complete
            assert partial.end_time == 2.0

            writer.close()
            full = reader.read(0.0, 3.0)
            assert list(full) == [(1.0, 1), (2.0, 2)]
            assert full.complete
            assert full.end_time == 3.0
        finally:
            writer.close()
            reader.close()

    def test_later_batch_confirms_horizon(self, channel_uri):
        with SpikeReport(channel_uri, "write") as writer, SpikeReport(channel_uri) as reader:
            writer.write([(1.0, 1), (2.0, 2)])
            writer.write([(2.5, 3)])

            spikes = reader.read(0.0, 2.5)

        assert list(spikes.times) == [1.0, 2.0]
        assert spikes.complete

    def test_open_start_ending_before_first_spike(self, channel_uri):
        with SpikeReport(channel_uri, "write") as writer, SpikeReport(channel_uri) as reader:
            writer.write([(5.0, 1), (6.0, 2)])

            spikes = reader.read(end=3.0, timeout=2.0)

        assert len(spikes) == 0
        assert spikes.complete
        assert (spikes.start_time, spikes.end_time) == (3.0, 3.0)

    def test_empty_stream_read_does_not_block(self, channel_uri):
        with SpikeReport(channel_uri) as reader:
            started = time.monotonic()
            spikes = reader.read()

        assert time.monotonic() - started < 1.0
        assert len(spikes) == 0
        assert spikes.start_time == UNDEFINED_TIME
        assert spikes.end_time == UNDEFINED_TIME

    def test_close_unblocks_reader(self, channel_uri):
        writer = SpikeReport(channel_uri, "write")
        reader = SpikeReport(channel_uri)
        writer.write([(1.0, 1)])
        assert len(reader.read(0.0, 1.0)) == 0

        results = []
        blocked = threading.Thread(target=lambda: results.append(reader.read(5.0)))
        blocked.start()
        time.sleep(0.1)

        reader.close()
        blocked.join(timeout=2.0)
        writer.close()

        assert not blocked.is_alive()
        spikes = results[0]
        assert len(spikes) == 0
        assert spikes.start_time == spikes.end_time == 5.0
        assert not spikes.complete
        assert reader.end_time == end_after(1.0)
        assert reader.start_time == 1.0

    def test_concurrent_readers_of_one_stream(self, channel_uri):
        writer = SpikeReport(channel_uri, "write")
        reader = SpikeReport(channel_uri)
        results, errors = {}, []

        def publish():
            for i in range(200):
                writer.write([(float(i), 1), (i + 0.5, 2)])
            writer.close()

        def read_slice(k):
            try:
                results[k] = reader.read(k * 50.0, (k + 1) * 50.0, timeout=10.0)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=read_slice, args=(k,)) for k in range(4)]
        threads.append(threading.Thread(target=publish))
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=15.0)
        finally:
            writer.close()
            reader.close()

        assert not errors
        assert sorted(results) == [0, 1, 2, 3]
        for k, spikes in results.items():
            assert spikes.complete
            assert len(spikes) == 100
            assert all(k * 50.0 <= t < (k + 1) * 50.0 for t in spikes.times)
        assert sum(len(s) for s in results.values()) == 400

    def test_gid_filter(self, channel_uri):
        writer = SpikeReport(channel_uri, "write")
        reader = SpikeReport(channel_uri, gids=[2])
        try:
            writer.write([(1.0, 1), (2.0, 2), (3.0, 1)])
            writer.close()

            spikes = reader.read(0.0, 10.0)
            assert list(spikes) == [(2.0, 2)]
            assert list(reader.entities) == [2]
        finally:
            reader.close()

    def test_entities_grow_without_filter(self, channel_uri):
        with SpikeReport(channel_uri, "write") as writer, SpikeReport(channel_uri) as reader:
            writer.write([(1.0, 4), (2.0, 9)])
            writer.write([(3.0, 4)])
            reader.read(0.0, 2.5)

            assert list(reader.entities) == [4, 9]

    def test_single_publisher(self, channel_uri):
        with SpikeReport(channel_uri, "write"):
            with pytest.raises(CannotOpenError):
                SpikeReport(channel_uri, "write")

        # The channel is free again once the first writer closed
        with SpikeReport(channel_uri, "write") as writer:
            assert writer.is_stream

    def test_writer_cannot_read(self, channel_uri):
        with SpikeReport(channel_uri, "write") as writer:
            with pytest.raises(InvalidModeError):
                writer.read()
            with pytest.raises(InvalidModeError):
                writer.buffer_size

    def test_buffer_size(self, channel_uri):
        with SpikeReport(f"{channel_uri}?buffer_size=3") as reader:
            assert reader.buffer_size == 3
            reader.buffer_size = 5
            assert reader.buffer_size == 5

    def test_malformed_message_closes_report(self, channel_uri):
        reader = SpikeReport(channel_uri)
        hub.get(channel_uri.split("://", 1)[1]).publish(
            lambda subscription: StreamMessage(SPIKES, b"\x01\x02\x03")
        )

        deadline = time.monotonic() + 2.0
        while reader._backend.state is BackendState.OPEN and time.monotonic() < deadline:
            time.sleep(0.01)
        assert reader._backend.state is BackendState.FAILED

        with pytest.raises(BackendFailureError) as excinfo:
            reader.read(0.0, 10.0, timeout=2.0)
        assert not excinfo.value.recoverable
        assert reader.closed
        assert reader._backend.state is BackendState.CLOSED


class TestCompartmentStream:
    """Frame streams with a published header."""

    def test_reader_receives_layout(self, channel_uri):
        writer = _publish_layout(channel_uri)
        try:
            with CompartmentReport(channel_uri) as reader:
                assert reader.is_stream
                assert list(reader.entities) == CELL_GIDS
                assert reader.frame_size == FRAME_SIZE
                assert (reader.start_time, reader.end_time, reader.timestep) == (0.0, 4.0, 1.0)
                assert reader.data_unit == "mV"
        finally:
            writer.close()

    def test_out_of_order_frames(self, channel_uri):
        writer = _publish_layout(channel_uri)
        reader = CompartmentReport(channel_uri)
        try:
            writer.write_frame_values(2.0, _frame(2))
            writer.write_frame_values(0.0, _frame(0))

            partial = reader.read(0.0, 2.0, timeout=0.2)
            assert list(partial.timestamps) == [0.0]
            assert not partial.complete
            assert partial.end_time == 1.0

            writer.write_frame_values(1.0, _frame(1))
            frames = reader.read(0.0, 2.0)
            assert list(frames.timestamps) == [0.0, 1.0]
            assert frames.complete
            assert np.array_equal(frames[1].values, _frame(1))
        finally:
            writer.close()
            reader.close()

    def test_open_start_ending_before_first_frame(self, channel_uri):
        writer = _publish_layout(channel_uri)
        reader = CompartmentReport(channel_uri)
        try:
            writer.write_frame_values(0.0, _frame(0))
            writer.write_frame_values(1.0, _frame(1))
            assert len(reader.read(0.0, 2.0)) == 2

            frames = reader.read(end=-0.5)
            assert len(frames) == 0
            assert frames.complete
            assert (frames.start_time, frames.end_time) == (-0.5, -0.5)
        finally:
            writer.close()
            reader.close()

    def test_load_frame(self, channel_uri):
        writer = _publish_layout(channel_uri)
        reader = CompartmentReport(channel_uri)
        try:
            writer.write_frame_values(0.0, _frame(0))
            writer.write_frame_values(1.0, _frame(1))

            frame = reader.load_frame(1.4)
            assert frame.timestamp == 1.0
            assert np.array_equal(frame.values, _frame(1))
            assert reader.load_frame(4.0) is None
        finally:
            writer.close()
            reader.close()

    def test_per_cell_writes_publish_complete_frames(self, channel_uri):
        writer = _publish_layout(channel_uri)
        reader = CompartmentReport(channel_uri)
        try:
            for gid in reversed(CELL_GIDS):
                writer.write_frame(gid, np.full(3, gid, dtype=np.float32), 0.0)
            writer.close()

            frames = reader.read(0.0, 1.0)
            assert list(frames[0].values) == [1, 1, 1, 2, 2, 2, 5, 5, 5]
        finally:
            writer.close()
            reader.close()

    def test_end_of_stream_fixes_end_time(self, channel_uri):
        writer = _publish_layout(channel_uri)
        reader = CompartmentReport(channel_uri)
        writer.write_frame_values(0.0, _frame(0))
        writer.write_frame_values(1.0, _frame(1))
        writer.close()

        frames = reader.read(0.0, 10.0)
        reader.close()

        assert list(frames.timestamps) == [0.0, 1.0]
        assert frames.complete
        assert reader.end_time == 2.0

    def test_gid_filter(self, channel_uri):
        writer = _publish_layout(channel_uri)
        reader = CompartmentReport(channel_uri, gids=[2, 5])
        try:
            assert list(reader.entities) == [2, 5]
            assert [list(o) for o in reader.offsets] == [[0], [3, NO_COMPARTMENTS, 4]]

            writer.write_frame_values(0.0, _frame(0))
            frame = reader.load_frame(0.0)
            assert list(frame.values) == list(_frame(0)[3:])
        finally:
            writer.close()
            reader.close()

    def test_open_timeout_without_header(self, channel_uri):
        settings = ReportSettings(open_timeout=0.1)

        started = time.monotonic()
        with pytest.raises(CannotOpenError):
            CompartmentReport(channel_uri, settings=settings)
        assert time.monotonic() - started < 2.0

    def test_stream_ended_before_header(self, channel_uri):
        SpikeReport(channel_uri, "write").close()

        with pytest.raises(CannotOpenError):
            CompartmentReport(channel_uri, settings=ReportSettings(open_timeout=1.0))
