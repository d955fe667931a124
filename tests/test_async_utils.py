import asyncio

import pytest

from lead_enricher.core import async_utils
from lead_enricher.core.errors import TransportError


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def test_attempt_wraps_success_and_failure():
    async def ok():
        return 42

    async def boom():
        raise ValueError("nope")

    good = asyncio.run(async_utils.attempt(ok))
    bad = asyncio.run(async_utils.attempt(boom))

    assert good.ok and good.data == 42
    assert not bad.ok and isinstance(bad.error, ValueError)


def test_retry_with_backoff_retries_then_succeeds():
    calls = []
    sleep = RecordingSleep()

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("flaky")
        return "done"

    result = asyncio.run(async_utils.retry_with_backoff(flaky, retries=3, base_delay=1.0, jitter=0, sleep=sleep))

    assert result == "done"
    assert len(calls) == 3
    assert sleep.calls == [1.0, 2.0]


def test_retry_with_backoff_gives_up():
    sleep = RecordingSleep()

    async def always_fails():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        asyncio.run(async_utils.retry_with_backoff(always_fails, retries=2, jitter=0, sleep=sleep))
    assert len(sleep.calls) == 2


def test_retry_with_backoff_only_retries_listed_errors():
    sleep = RecordingSleep()

    async def wrong_kind():
        raise KeyError("x")

    with pytest.raises(KeyError):
        asyncio.run(async_utils.retry_with_backoff(wrong_kind, retry_on=(ConnectionError,), sleep=sleep))
    assert sleep.calls == []


def test_with_timeout_raises_transport_error():
    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(TransportError, match="slow call timed out"):
        asyncio.run(async_utils.with_timeout(slow(), 0.01, "slow call"))


def test_with_timeout_returns_value():
    async def fast():
        return "quick"

    assert asyncio.run(async_utils.with_timeout(fast(), 1, "fast call")) == "quick"


def test_chunked():
    assert async_utils.chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        async_utils.chunked([1], 0)


def test_run_in_batches_sleeps_between_batches_only():
    sleep = RecordingSleep()
    seen = []
    done = []

    async def handler(batch, offset):
        seen.append((list(batch), offset))
        return [item * 10 for item in batch]

    results = asyncio.run(
        async_utils.run_in_batches(
            list(range(7)),
            3,
            handler,
            delay=0.5,
            sleep=sleep,
            on_batch_done=lambda number, count: done.append((number, count)),
        )
    )

    assert results == [0, 10, 20, 30, 40, 50, 60]
    assert seen == [([0, 1, 2], 0), ([3, 4, 5], 3), ([6], 6)]
    assert sleep.calls == [0.5, 0.5]
    assert done == [(1, 3), (2, 3), (3, 3)]
