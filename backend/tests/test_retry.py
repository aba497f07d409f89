"""Tests for capped exponential backoff."""

import pytest

from app.utils.retry import BackoffPolicy, retry_with_backoff
from tests.fakes import RecordingSleep


class TestBackoffPolicy:

    def test_delays_double_and_cap(self):
        policy = BackoffPolicy(max_attempts=6, base_delay=1.0, factor=2.0, max_delay=8.0)

        assert policy.delays() == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_default_policy(self):
        assert BackoffPolicy().delays() == [1.0, 2.0, 4.0, 8.0]


class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_returns_first_success_without_sleeping(self):
        sleep = RecordingSleep()

        async def ok():
            return "done"

        assert await retry_with_backoff(ok, sleep=sleep) == "done"
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        sleep = RecordingSleep()
        attempts = {"count": 0}

        async def flaky():
            attempts["count"] += 1
            if attempts["count"] < 3:
                raise ConnectionError("replica not ready")
            return attempts["count"]

        assert await retry_with_backoff(flaky, sleep=sleep) == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_reraises_after_max_attempts(self):
        sleep = RecordingSleep()
        attempts = {"count": 0}

        async def broken():
            attempts["count"] += 1
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await retry_with_backoff(broken, BackoffPolicy(max_attempts=3), sleep=sleep)

        assert attempts["count"] == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_does_not_retry_unlisted_errors(self):
        sleep = RecordingSleep()

        async def bad_input():
            raise KeyError("organization_id")

        with pytest.raises(KeyError):
            await retry_with_backoff(bad_input, sleep=sleep, retry_on=(ConnectionError,))

        assert sleep.delays == []
