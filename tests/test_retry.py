"""
test_retry.py - Tests for the bounded backoff helper.
"""

import asyncio

import pytest

from fakes import RecordingSleep

from station_sync.errors import DuplicateKeyError, RemoteUnavailable
from station_sync.retry import backoff_delay, with_retry


class FlakyCall:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures: int, error: Exception | None = None):
        self.failures = failures
        self.error = error or RemoteUnavailable("down")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestBackoffSchedule:

    def test_delays(self):
        assert backoff_delay(1) == 0
        assert backoff_delay(2) == 1
        assert backoff_delay(3) == 2
        assert backoff_delay(4) == 4


class TestWithRetry:

    def test_first_attempt_succeeds_without_sleeping(self):
        sleep = RecordingSleep()
        call = FlakyCall(0)

        assert asyncio.run(with_retry(call, sleep=sleep)) == "ok"
        assert call.calls == 1
        assert sleep.delays == []

    def test_succeeds_on_third_attempt(self):
        sleep = RecordingSleep()
        call = FlakyCall(2)

        assert asyncio.run(with_retry(call, sleep=sleep)) == "ok"
        assert call.calls == 3
        assert sleep.delays == [1, 2]

    def test_final_error_propagates(self):
        sleep = RecordingSleep()
        errors = [RemoteUnavailable(f"failure {i}") for i in range(3)]
        calls = []

        async def attempt():
            calls.append(1)
            raise errors[len(calls) - 1]

        with pytest.raises(RemoteUnavailable) as exc_info:
            asyncio.run(with_retry(attempt, sleep=sleep))

        assert exc_info.value is errors[2]
        assert len(calls) == 3

    def test_duplicate_key_not_retried(self):
        sleep = RecordingSleep()
        call = FlakyCall(5, DuplicateKeyError("dup"))

        with pytest.raises(DuplicateKeyError):
            asyncio.run(with_retry(call, sleep=sleep))

        assert call.calls == 1
        assert sleep.delays == []

    def test_custom_schedule_and_attempts(self):
        sleep = RecordingSleep()
        call = FlakyCall(4)

        result = asyncio.run(
            with_retry(call, max_attempts=5, delays=lambda k: 0.5, sleep=sleep)
        )

        assert result == "ok"
        assert sleep.delays == [0.5, 0.5, 0.5, 0.5]

    @pytest.mark.parametrize("attempts", [0, -1])
    def test_non_positive_attempts_rejected(self, attempts):
        call = FlakyCall(0)

        with pytest.raises(ValueError, match="max_attempts"):
            asyncio.run(with_retry(call, max_attempts=attempts, sleep=RecordingSleep()))

        assert call.calls == 0
