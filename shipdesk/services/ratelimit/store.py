"""Bucket stores: process-local and Firestore-backed."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore
from google.oauth2 import service_account

from shipdesk.services.ratelimit.bucket import (
    BucketPolicy,
    RateBucket,
    TransactionContention,
)

logger = logging.getLogger(__name__)

BucketUpdate = Callable[[RateBucket], RateBucket]


class BucketStore(ABC):
    """Atomic read-modify-write access to named rate buckets.

    ``update`` loads the bucket (creating a full one on first use), applies
    ``mutate`` and persists the result. If ``mutate`` raises, nothing is
    written and the exception propagates.
    """

    shared = False
    name = "base"

    @abstractmethod
    async def update(
        self,
        bucket: str,
        mutate: BucketUpdate,
        policy: BucketPolicy,
        now: float,
    ) -> RateBucket:
        ...


class MemoryBucketStore(BucketStore):
    """Per-process buckets serialized by an asyncio lock.

    Each process enforces the limit on its own, so N processes may together
    run at up to N times the configured rate.
    """

    name = "memory"

    def __init__(self) -> None:
        self._buckets: dict[str, RateBucket] = {}
        self._lock = asyncio.Lock()

    async def update(
        self,
        bucket: str,
        mutate: BucketUpdate,
        policy: BucketPolicy,
        now: float,
    ) -> RateBucket:
        async with self._lock:
            current = self._buckets.get(bucket) or RateBucket.full(policy, now)
            updated = mutate(current)
            self._buckets[bucket] = updated
            return updated

    def peek(self, bucket: str) -> Optional[RateBucket]:
        return self._buckets.get(bucket)


class FirestoreBucketStore(BucketStore):
    """Buckets stored as documents, mutated inside Firestore transactions.

    Transactions are created with a single attempt so contention surfaces as
    TransactionContention and the limiter owns the retry policy.

    Args:
        client: Firestore async client
        collection: Collection holding one document per bucket
        transactional: Decorator that runs a callable inside a transaction
    """

    shared = True
    name = "firestore"

    def __init__(
        self,
        client: firestore.AsyncClient,
        collection: str = "rate_limits",
        transactional: Callable = firestore.async_transactional,
    ):
        self._client = client
        self._collection = collection
        self._transactional = transactional

    async def update(
        self,
        bucket: str,
        mutate: BucketUpdate,
        policy: BucketPolicy,
        now: float,
    ) -> RateBucket:
        ref = self._client.collection(self._collection).document(bucket)
        transaction = self._client.transaction(max_attempts=1)

        async def _apply(tx) -> RateBucket:
            snap = await ref.get(transaction=tx)
            data = snap.to_dict() if snap.exists else None
            updated = mutate(RateBucket.from_document(data, policy, now))
            tx.set(ref, updated.to_document(), merge=True)
            return updated

        try:
            return await self._transactional(_apply)(transaction)
        except (gcp_exceptions.Aborted, gcp_exceptions.Conflict) as e:
            raise TransactionContention(str(e)) from e
        except ValueError as e:
            # Raised by the transactional wrapper once its attempts are spent
            if isinstance(e.__cause__, gcp_exceptions.GoogleAPICallError):
                raise TransactionContention(str(e)) from e
            raise


def build_bucket_store(settings) -> BucketStore:
    """Pick the Firestore store when credentials are configured, else memory.

    Args:
        settings: Application settings

    Returns:
        A ready BucketStore
    """
    try:
        info = settings.firebase_service_account()
    except ValueError as e:
        logger.error(f"FIREBASE_SERVICE_ACCOUNT is not valid JSON: {e}")
        info = None

    if not info:
        logger.info("No Firestore credentials; using in-memory rate limiter")
        return MemoryBucketStore()

    try:
        credentials = service_account.Credentials.from_service_account_info(info)
        client = firestore.AsyncClient(
            project=info.get("project_id"),
            credentials=credentials,
        )
    except (ValueError, KeyError, gcp_exceptions.GoogleAPIError) as e:
        logger.error(f"Firestore init failed, using in-memory rate limiter: {e}")
        return MemoryBucketStore()

    logger.info(f"Using Firestore rate limiter (collection: {settings.RATE_LIMIT_COLLECTION})")
    return FirestoreBucketStore(client, collection=settings.RATE_LIMIT_COLLECTION)
