import asyncio

import pytest

from winnode.models.retry import RetryPolicy
from winnode.utils.async_retry import (
    RetryCancelled,
    RetryDeadlineExceeded,
    async_retry,
)


class Flaky(Exception):
    pass


def test_succeeds_after_transient_failures():
    calls = []

    @async_retry(retries=3, delay=0)
    async def op():
        calls.append(1)
        if len(calls) < 3:
            raise Flaky()
        return "ok"

    assert asyncio.run(op()) == "ok"
    assert len(calls) == 3


def test_reraises_last_error_when_attempts_exhausted():
    calls = []

    @async_retry(policy=RetryPolicy(attempts=2, interval_seconds=0))
    async def op():
        calls.append(1)
        raise Flaky(f"attempt {len(calls)}")

    with pytest.raises(Flaky, match="attempt 2"):
        asyncio.run(op())
    assert len(calls) == 2


def test_unlisted_exception_is_not_retried():
    calls = []

    @async_retry(retries=5, delay=0, retry_on=(Flaky,))
    async def op():
        calls.append(1)
        raise KeyError("boom")

    with pytest.raises(KeyError):
        asyncio.run(op())
    assert len(calls) == 1


def test_cancel_event_stops_the_loop():
    async def scenario():
        cancel = asyncio.Event()

        @async_retry(
            policy=RetryPolicy(attempts=100, interval_seconds=10), cancel=cancel
        )
        async def op():
            raise Flaky()

        task = asyncio.create_task(op())
        await asyncio.sleep(0.01)
        cancel.set()
        return await task

    with pytest.raises(RetryCancelled):
        asyncio.run(scenario())


def test_already_cancelled_never_runs():
    calls = []

    async def scenario():
        cancel = asyncio.Event()
        cancel.set()

        @async_retry(retries=3, delay=0, cancel=cancel)
        async def op():
            calls.append(1)

        await op()

    with pytest.raises(RetryCancelled):
        asyncio.run(scenario())
    assert calls == []


def test_deadline_cuts_the_loop_short():
    calls = []

    @async_retry(
        policy=RetryPolicy(attempts=50, interval_seconds=0.05, deadline_seconds=0.01)
    )
    async def op():
        calls.append(1)
        raise Flaky()

    with pytest.raises(RetryDeadlineExceeded):
        asyncio.run(op())
    assert len(calls) == 1
