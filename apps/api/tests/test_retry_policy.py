import asyncio

import pytest

from services.brain_errors import PermanentServiceError, TransientServiceError, UpstreamServiceError
from services.retry_policy import RetryPolicy, is_transient


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff():
    sleep = RecordingSleep()
    policy = RetryPolicy(max_retries=3, base_delay=0.5, timeout=None, sleep=sleep)
    attempts = {"count": 0}

    async def flaky():
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise TransientServiceError("throttled")
        return "ok"

    assert await policy.call(flaky, operation="embed") == "ok"
    assert attempts["count"] == 3
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried():
    sleep = RecordingSleep()
    policy = RetryPolicy(max_retries=3, timeout=None, sleep=sleep)

    async def rejected():
        raise PermanentServiceError("bad api key", status_code=401)

    with pytest.raises(UpstreamServiceError) as exc_info:
        await policy.call(rejected, operation="embed")

    assert exc_info.value.retryable is False
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_exhausted_retries_surface_retryable_error():
    sleep = RecordingSleep()
    policy = RetryPolicy(max_retries=2, base_delay=1.0, max_delay=1.5, timeout=None, sleep=sleep, service="vector_store")

    async def down():
        raise TransientServiceError("503")

    with pytest.raises(UpstreamServiceError) as exc_info:
        await policy.call(down, operation="fetch")

    assert exc_info.value.retryable is True
    assert exc_info.value.service == "vector_store"
    assert sleep.delays == [1.0, 1.5]


@pytest.mark.asyncio
async def test_timeout_counts_as_transient():
    sleep = RecordingSleep()
    policy = RetryPolicy(max_retries=1, timeout=0.01, sleep=sleep)

    async def hangs():
        await asyncio.sleep(1)

    with pytest.raises(UpstreamServiceError):
        await policy.call(hangs)
    assert len(sleep.delays) == 1


def test_is_transient_classification():
    assert is_transient(TransientServiceError("x"))
    assert is_transient(asyncio.TimeoutError())
    assert not is_transient(PermanentServiceError("x"))
    assert not is_transient(ValueError("x"))
