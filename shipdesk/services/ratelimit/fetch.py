"""Rate-limited HTTP fetch with 429 retry/backoff."""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from shipdesk.services.ratelimit.bucket import backoff_seconds, parse_retry_after
from shipdesk.services.ratelimit.limiter import TokenBucketLimiter

logger = logging.getLogger(__name__)


class RetryPhase(str, Enum):
    """Where a request stands in the 429 retry cycle."""

    ATTEMPTING = "attempting"
    WAITING = "waiting"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryDecision:
    phase: RetryPhase
    delay: float = 0.0


def next_retry(
    status_code: int,
    attempt: int,
    max_retries: int,
    retry_after: Optional[str],
    now: float,
    jitter: float = 0.0,
) -> RetryDecision:
    """Decide what follows a response.

    Only 429 triggers a retry. The server's Retry-After wins over the
    exponential backoff when it parses.

    Args:
        status_code: Status of the response just received
        attempt: 1-based number of the attempt that produced it
        max_retries: Total attempts allowed
        retry_after: Retry-After header value, if any
        now: Current epoch seconds
        jitter: Seconds of jitter to add to the delay

    Returns:
        RetryDecision; ATTEMPTING means the response is final and can be returned
    """
    if status_code != 429:
        return RetryDecision(RetryPhase.ATTEMPTING)
    if attempt >= max_retries:
        return RetryDecision(RetryPhase.EXHAUSTED)

    server_delay = parse_retry_after(retry_after, now)
    if server_delay is not None:
        return RetryDecision(RetryPhase.WAITING, server_delay + jitter)
    return RetryDecision(RetryPhase.WAITING, backoff_seconds(attempt, jitter))


class ResilientFetcher:
    """HTTP caller that takes a rate-limit token before every attempt.

    A 429 response is retried after the server-supplied delay (or backoff);
    after max_retries attempts the last 429 response is returned unchanged.
    Every other response is returned as-is on the first attempt.
    """

    def __init__(
        self,
        limiter: TokenBucketLimiter,
        max_retries: int = 5,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.limiter = limiter
        self.max_retries = max_retries
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._sleep = sleep

    async def request(
        self,
        method: str,
        url: str,
        bucket: Optional[str] = None,
        max_retries: Optional[int] = None,
        **kwargs,
    ) -> httpx.Response:
        """Issue a request under admission control.

        Args:
            method: HTTP method
            url: Absolute URL
            bucket: Rate-limit bucket name (limiter default if omitted)
            max_retries: Attempt ceiling for 429 responses
            **kwargs: Passed to httpx (headers, params, json, content)

        Returns:
            The final httpx.Response
        """
        retries = max(1, max_retries if max_retries is not None else self.max_retries)
        attempt = 0

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            while True:
                attempt += 1
                await self.limiter.acquire(bucket)
                response = await client.request(method, url, **kwargs)

                decision = next_retry(
                    response.status_code,
                    attempt,
                    retries,
                    response.headers.get("retry-after"),
                    self._clock(),
                    self.limiter.jitter(),
                )

                if decision.phase is RetryPhase.ATTEMPTING:
                    return response
                if decision.phase is RetryPhase.EXHAUSTED:
                    logger.warning(
                        f"{method} {url} still rate limited after {attempt} attempts"
                    )
                    return response

                logger.warning(
                    f"{method} {url} got 429, retrying in {decision.delay:.3f}s "
                    f"(attempt {attempt}/{retries})"
                )
                await self._sleep(decision.delay)
