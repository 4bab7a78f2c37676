"""Tests for the retry decorator and decode retries in the stream producer."""

import time

import pytest

from simreport.core.stream_reader import StreamReader
from simreport.domain.interfaces import END_OF_STREAM
from simreport.infrastructure.resilience import Backoff, retry
from simreport.shared.exceptions import BackendFailureError


NO_WAIT = Backoff(initial=0.0)


def _failing(failures, *, recoverable=True, error=BackendFailureError):
    """Callable failing ``failures`` times before returning "ok"."""
    calls = []

    def call():
        calls.append(1)
        if len(calls) <= failures:
            if error is BackendFailureError:
                raise BackendFailureError("hiccup", recoverable=recoverable)
            raise error("boom")
        return "ok"

    return call, calls


class TestRetry:
    def test_recovers_after_transient_failure(self):
        call, calls = _failing(1)

        assert retry(2, backoff=NO_WAIT)(call)() == "ok"
        assert len(calls) == 2

    def test_gives_up_after_max_attempts(self):
        call, calls = _failing(5)

        with pytest.raises(BackendFailureError):
            retry(3, backoff=NO_WAIT)(call)()
        assert len(calls) == 3

    def test_non_recoverable_error_is_not_retried(self):
        call, calls = _failing(1, recoverable=False)

        with pytest.raises(BackendFailureError):
            retry(3, backoff=NO_WAIT)(call)()
        assert len(calls) == 1

    def test_other_exceptions_propagate(self):
        call, calls = _failing(1, error=KeyError)

        with pytest.raises(KeyError):
            retry(3, backoff=NO_WAIT)(call)()
        assert len(calls) == 1

    def test_at_least_one_attempt(self):
        call, calls = _failing(0)

        assert retry(0)(call)() == "ok"
        assert len(calls) == 1

    def test_backoff_schedule(self):
        backoff = Backoff(initial=0.01, factor=2.0, ceiling=0.03)

        assert backoff.delay(0) == pytest.approx(0.01)
        assert backoff.delay(1) == pytest.approx(0.02)
        assert backoff.delay(5) == pytest.approx(0.03)


class ScriptedBackend:
    """Stream backend double: fixed messages, decode fails on demand."""

    def __init__(self, messages, failures=0, recoverable=True):
        self.messages = list(messages)
        self.failures = failures
        self.recoverable = recoverable
        self.decode_calls = 0
        self.failed = False

    def fetch(self, timeout):
        if self.messages:
            return self.messages.pop(0)
        time.sleep(timeout)
        return None

    def decode(self, message):
        self.decode_calls += 1
        if self.failures:
            self.failures -= 1
            raise BackendFailureError("header not applied yet", recoverable=self.recoverable)
        return message

    def mark_failed(self):
        self.failed = True


def _drain(backend, decode_retries=1):
    applied = []
    reader = StreamReader(
        backend, applied.append, poll_interval=0.01, decode_retries=decode_retries
    )
    try:
        reader.wait_until(lambda: False, timeout=5.0)
        return reader, applied
    finally:
        reader.close()


class TestStreamDecodeRetry:
    """The producer retries recoverable decode failures once by default."""

    def test_recoverable_failure_is_retried(self):
        backend = ScriptedBackend(["a", "b", END_OF_STREAM], failures=1)

        reader, applied = _drain(backend)

        assert applied == ["a", "b"]
        assert reader.end_of_stream
        assert reader.get_stats()["applied"] == 2
        assert backend.decode_calls == 4
        assert not backend.failed

    def test_repeated_failure_fails_the_backend(self):
        backend = ScriptedBackend(["a", END_OF_STREAM], failures=2)

        reader, applied = _drain(backend)

        assert applied == []
        assert isinstance(reader.error, BackendFailureError)
        assert backend.decode_calls == 2
        assert backend.failed

    def test_non_recoverable_failure_is_not_retried(self):
        backend = ScriptedBackend(["a", END_OF_STREAM], failures=1, recoverable=False)

        reader, _ = _drain(backend, decode_retries=3)

        assert backend.decode_calls == 1
        assert not reader.error.recoverable
        assert backend.failed
