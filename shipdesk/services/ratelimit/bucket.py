"""Token bucket arithmetic and backoff helpers.

Everything here is pure: callers pass in the current time and jitter so the
math can be exercised without real clocks or sleeps.
"""

import math
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Optional

# 200ms per token at 5 rps, doubled per attempt
BACKOFF_BASE_SECONDS = 0.2
BACKOFF_CAP_SECONDS = 2.0


class RateLimitWait(Exception):
    """Raised inside a bucket update when no token is available yet."""

    def __init__(self, wait_seconds: float):
        self.wait_seconds = wait_seconds
        super().__init__(f"rate-limit-wait {wait_seconds:.3f}s")


class TransactionContention(Exception):
    """Concurrent writers raced on the same bucket document."""


class RateLimitExhausted(Exception):
    """Bucket contention did not resolve within the retry ceiling."""

    def __init__(self, bucket: str, attempts: int):
        self.bucket = bucket
        self.attempts = attempts
        self.message = f"Rate limiter contention on '{bucket}' after {attempts} attempts"
        super().__init__(self.message)


@dataclass(frozen=True)
class BucketPolicy:
    """Refill rate and burst capacity for one quota pool."""

    rate_per_second: float = 5.0
    capacity: float = 5.0


@dataclass
class RateBucket:
    """Admission state for one named quota pool."""

    tokens: float
    last_refill_at: float

    @classmethod
    def full(cls, policy: BucketPolicy, now: float) -> "RateBucket":
        return cls(tokens=policy.capacity, last_refill_at=now)

    @classmethod
    def from_document(
        cls,
        data: Optional[dict],
        policy: BucketPolicy,
        now: float,
    ) -> "RateBucket":
        """Rebuild a bucket from its stored form, tolerating missing fields."""
        if not data:
            return cls.full(policy, now)

        tokens = data.get("tokens")
        last = data.get("last_refill_at")
        if not isinstance(tokens, (int, float)) or math.isnan(tokens):
            tokens = policy.capacity
        if not isinstance(last, (int, float)):
            last = now
        return cls(tokens=float(tokens), last_refill_at=float(last))

    def to_document(self) -> dict:
        return {"tokens": self.tokens, "last_refill_at": self.last_refill_at}


def refill_tokens(
    tokens: float,
    last_refill_at: float,
    now: float,
    policy: BucketPolicy,
) -> float:
    """Return the token count after refilling for the time elapsed since last_refill_at.

    Clock skew (now earlier than last_refill_at) refills nothing.
    """
    elapsed = max(0.0, now - last_refill_at)
    return min(policy.capacity, tokens + elapsed * policy.rate_per_second)


def take_token(
    bucket: RateBucket,
    now: float,
    policy: BucketPolicy,
    jitter_seconds: float = 0.0,
) -> RateBucket:
    """Refill the bucket and consume one token.

    Args:
        bucket: Current stored state
        now: Current time (epoch seconds)
        policy: Rate and capacity
        jitter_seconds: Added to the wait when no token is available

    Returns:
        The new bucket state with one token consumed

    Raises:
        RateLimitWait: If fewer than one token is available after refill
    """
    tokens = refill_tokens(bucket.tokens, bucket.last_refill_at, now, policy)

    if tokens < 1:
        need = 1 - tokens
        wait_ms = math.ceil(need / policy.rate_per_second * 1000)
        raise RateLimitWait(wait_ms / 1000 + jitter_seconds)

    return RateBucket(tokens=tokens - 1, last_refill_at=now)


def backoff_seconds(attempt: int, jitter_seconds: float = 0.0) -> float:
    """Exponential backoff capped at two seconds."""
    delay = min(BACKOFF_CAP_SECONDS, BACKOFF_BASE_SECONDS * (2 ** attempt))
    return delay + jitter_seconds


def parse_retry_after(value: Optional[str], now: float) -> Optional[float]:
    """Parse a Retry-After header into seconds to wait.

    Args:
        value: Header value, either delta-seconds or an HTTP date
        now: Current time (epoch seconds) for the HTTP-date form

    Returns:
        Seconds to wait, or None if the header is absent or unparseable
    """
    if not value:
        return None

    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        seconds = None

    if seconds is not None:
        if math.isfinite(seconds):
            return math.ceil(max(0.0, seconds) * 1000) / 1000
        return None

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        # "-0000" zone
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, when.timestamp() - now)
