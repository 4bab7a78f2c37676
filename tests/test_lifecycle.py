"""Tests for backend lifecycle states."""

import threading

import pytest

from simreport.domain.lifecycle import BackendState, LifecycleMixin
from simreport.shared.exceptions import ReportError


class CountingBackend(LifecycleMixin):
    def __init__(self):
        super().__init__()
        self.released = 0
        self._mark_open()

    def _release(self):
        self.released += 1


class TestLifecycle:
    def test_open_then_close(self):
        backend = CountingBackend()
        assert backend.is_open

        backend.close()
        backend.close()

        assert backend.state is BackendState.CLOSED
        assert backend.released == 1

    def test_mark_failed(self):
        backend = CountingBackend()
        backend.mark_failed()

        assert backend.state is BackendState.FAILED
        assert not backend.is_open

        backend.close()
        assert backend.state is BackendState.CLOSED

    def test_mark_failed_after_close_is_ignored(self):
        backend = CountingBackend()
        backend.close()
        backend.mark_failed()

        assert backend.state is BackendState.CLOSED

    def test_illegal_transition(self):
        backend = CountingBackend()
        with pytest.raises(ReportError):
            backend._mark_open()

    def test_concurrent_close_releases_once(self):
        backend = CountingBackend()
        threads = [threading.Thread(target=backend.close) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5.0)

        assert backend.state is BackendState.CLOSED
        assert backend.released == 1
