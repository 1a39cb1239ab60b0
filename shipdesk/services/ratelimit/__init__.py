"""Distributed rate limiting and rate-limited HTTP fetch.

This package provides:
- Token bucket math and backoff helpers
- Memory and Firestore bucket stores
- TokenBucketLimiter admission control
- ResilientFetcher with 429 retry
"""

from shipdesk.services.ratelimit.bucket import (
    BucketPolicy,
    RateBucket,
    RateLimitExhausted,
    RateLimitWait,
    TransactionContention,
    backoff_seconds,
    parse_retry_after,
    refill_tokens,
    take_token,
)
from shipdesk.services.ratelimit.fetch import (
    ResilientFetcher,
    RetryDecision,
    RetryPhase,
    next_retry,
)
from shipdesk.services.ratelimit.limiter import TokenBucketLimiter
from shipdesk.services.ratelimit.store import (
    BucketStore,
    FirestoreBucketStore,
    MemoryBucketStore,
    build_bucket_store,
)

__all__ = [
    # Bucket math
    "BucketPolicy",
    "RateBucket",
    "RateLimitExhausted",
    "RateLimitWait",
    "TransactionContention",
    "backoff_seconds",
    "parse_retry_after",
    "refill_tokens",
    "take_token",
    # Stores
    "BucketStore",
    "FirestoreBucketStore",
    "MemoryBucketStore",
    "build_bucket_store",
    # Limiter
    "TokenBucketLimiter",
    # Fetch
    "ResilientFetcher",
    "RetryDecision",
    "RetryPhase",
    "next_retry",
]
