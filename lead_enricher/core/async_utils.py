"""Small async combinators used around every remote call."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from lead_enricher.core.errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class Attempt(Generic[T]):
    """Outcome of a call that must not raise: either ``data`` or ``error`` is set."""

    data: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def attempt(fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> Attempt[T]:
    try:
        return Attempt(data=await fn(*args, **kwargs))
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001
        return Attempt(error=exc)


async def retry_with_backoff(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    retries: int = 2,
    base_delay: float = 1.0,
    factor: float = 2.0,
    jitter: float = 0.5,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: SleepFn = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """Call ``fn`` up to ``retries + 1`` times, sleeping exponentially longer between failures."""
    attempt_no = 0
    while True:
        attempt_no += 1
        try:
            return await fn(*args, **kwargs)
        except retry_on as exc:
            if attempt_no > retries:
                logger.error("Giving up after %s attempts: %s", attempt_no, exc)
                raise
            delay = base_delay * (factor ** (attempt_no - 1)) + random.uniform(0, jitter)
            logger.warning("Attempt %s/%s failed (%s); retrying in %.2fs", attempt_no, retries + 1, exc, delay)
            await sleep(delay)


async def with_timeout(awaitable: Awaitable[T], seconds: float, what: str = "operation") -> T:
    """Race ``awaitable`` against a deadline; losing the race raises TransportError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise TransportError(f"{what} timed out after {seconds:g}s") from exc


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [items[start : start + size] for start in range(0, len(items), size)]


async def run_in_batches(
    items: Sequence[T],
    batch_size: int,
    handler: Callable[[Sequence[T], int], Awaitable[List[R]]],
    *,
    delay: float = 0.0,
    sleep: SleepFn = asyncio.sleep,
    on_batch_done: Optional[Callable[[int, int], Any]] = None,
) -> List[R]:
    """Feed ``items`` to ``handler`` in fixed-size chunks, pausing ``delay`` seconds between chunks.

    ``handler`` receives the chunk and the offset of its first item. ``on_batch_done`` gets
    the 1-based batch number and the batch count after each chunk.
    """
    batches = chunked(items, batch_size)
    results: List[R] = []
    for index, batch in enumerate(batches):
        results.extend(await handler(batch, index * batch_size))
        if on_batch_done is not None:
            on_batch_done(index + 1, len(batches))
        if delay > 0 and index < len(batches) - 1:
            await sleep(delay)
    return results
