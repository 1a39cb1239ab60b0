"""Token-bucket admission control shared across function instances."""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional

from shipdesk.services.ratelimit.bucket import (
    BucketPolicy,
    RateBucket,
    RateLimitExhausted,
    RateLimitWait,
    TransactionContention,
    backoff_seconds,
    take_token,
)
from shipdesk.services.ratelimit.store import BucketStore, MemoryBucketStore

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class TokenBucketLimiter:
    """Rate limiter bounding outbound calls per named bucket.

    With a shared store the refill-and-decrement step runs in a transaction;
    a bucket without tokens aborts that transaction, the caller sleeps for
    the computed wait and then retries the whole acquire. With the memory
    store the caller sleeps once and proceeds without re-checking.
    """

    def __init__(
        self,
        store: Optional[BucketStore] = None,
        policy: Optional[BucketPolicy] = None,
        default_bucket: str = "chitchats-global",
        max_retries: int = 5,
        jitter_ms: int = 50,
        clock: Callable[[], float] = time.time,
        sleep: Sleep = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.store = store or MemoryBucketStore()
        self.policy = policy or BucketPolicy()
        self.default_bucket = default_bucket
        self.max_retries = max_retries
        self.jitter_ms = jitter_ms
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

    def jitter(self) -> float:
        """Random jitter in seconds, below jitter_ms."""
        return int(self._rng() * self.jitter_ms) / 1000

    async def acquire(self, bucket: Optional[str] = None) -> None:
        """Wait until a token is available in ``bucket`` and consume it.

        Args:
            bucket: Bucket name (defaults to the limiter's default bucket)

        Raises:
            RateLimitExhausted: If store contention persists past max_retries
        """
        name = bucket or self.default_bucket
        contention = 0

        while True:
            now = self._clock()
            jitter = self.jitter()

            def _take(current: RateBucket) -> RateBucket:
                return take_token(current, now, self.policy, jitter)

            try:
                await self.store.update(name, _take, self.policy, now)
                return
            except RateLimitWait as wait:
                logger.debug(f"Bucket '{name}' empty, waiting {wait.wait_seconds:.3f}s")
                await self._sleep(wait.wait_seconds)
                if not self.store.shared:
                    return
            except TransactionContention as e:
                contention += 1
                if contention >= self.max_retries:
                    logger.error(f"Bucket '{name}' contention not resolved: {e}")
                    raise RateLimitExhausted(name, contention) from e
                delay = backoff_seconds(contention, self.jitter())
                logger.warning(
                    f"Bucket '{name}' contention, retrying in {delay:.3f}s "
                    f"(attempt {contention}/{self.max_retries})"
                )
                await self._sleep(delay)
