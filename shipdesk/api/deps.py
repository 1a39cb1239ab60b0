"""Shared API dependencies.

Process-scoped objects (rate limiter, fetcher, open-batch cache) are built
once and reused by every request; per-request objects wrap them.
"""

from functools import lru_cache

from fastapi import Depends

from shipdesk.config import get_settings
from shipdesk.services.address import (
    AddressVerifier,
    SmartyClient,
    build_address_verifier,
)
from shipdesk.services.chitchats import (
    AdapterPolicy,
    ChitChatsClient,
    OpenBatchCache,
    ShipmentSearch,
    ShipmentService,
)
from shipdesk.services.ratelimit import (
    BucketPolicy,
    ResilientFetcher,
    TokenBucketLimiter,
    build_bucket_store,
)


@lru_cache
def get_rate_limiter() -> TokenBucketLimiter:
    """Get the process-wide rate limiter."""
    settings = get_settings()
    return TokenBucketLimiter(
        store=build_bucket_store(settings),
        policy=BucketPolicy(
            rate_per_second=settings.RATE_LIMIT_PER_SECOND,
            capacity=settings.RATE_LIMIT_BURST,
        ),
        default_bucket=settings.RATE_LIMIT_BUCKET,
        max_retries=settings.RATE_LIMIT_MAX_RETRIES,
        jitter_ms=settings.RATE_LIMIT_JITTER_MS,
    )


@lru_cache
def get_fetcher() -> ResilientFetcher:
    settings = get_settings()
    return ResilientFetcher(
        get_rate_limiter(),
        max_retries=settings.RATE_LIMIT_MAX_RETRIES,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )


@lru_cache
def get_open_batch_cache() -> OpenBatchCache:
    return OpenBatchCache(ttl_seconds=get_settings().OPEN_BATCH_CACHE_TTL_SECONDS)


def get_adapter_policy() -> AdapterPolicy:
    return AdapterPolicy.from_settings(get_settings())


def get_chitchats_client(
    fetcher: ResilientFetcher = Depends(get_fetcher),
) -> ChitChatsClient:
    """Get a Chit Chats client; fails with a 500 when credentials are missing."""
    settings = get_settings()
    return ChitChatsClient(
        fetcher,
        base_url=settings.CHIT_CHATS_BASE_URL,
        client_id=settings.CHIT_CHATS_CLIENT_ID,
        access_token=settings.CHIT_CHATS_ACCESS_TOKEN,
        bucket=settings.RATE_LIMIT_BUCKET,
    )


def get_shipment_service(
    client: ChitChatsClient = Depends(get_chitchats_client),
    policy: AdapterPolicy = Depends(get_adapter_policy),
) -> ShipmentService:
    settings = get_settings()
    return ShipmentService(
        client,
        policy,
        confirm_attempts=settings.REPLACE_CONFIRM_ATTEMPTS,
        confirm_delay=settings.REPLACE_CONFIRM_DELAY_MS / 1000,
    )


def get_shipment_search(
    client: ChitChatsClient = Depends(get_chitchats_client),
    batch_cache: OpenBatchCache = Depends(get_open_batch_cache),
) -> ShipmentSearch:
    return ShipmentSearch(
        client,
        batch_cache,
        max_pages=get_settings().SEARCH_MAX_PAGES,
    )


def get_smarty_client() -> SmartyClient:
    settings = get_settings()
    return SmartyClient(
        auth_id=settings.SMARTY_AUTH_ID,
        auth_token=settings.SMARTY_AUTH_TOKEN,
        embedded_key=settings.SMARTY_EMBEDDED_KEY,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )


def get_address_verifier(
    client: ChitChatsClient = Depends(get_chitchats_client),
    smarty: SmartyClient = Depends(get_smarty_client),
) -> AddressVerifier:
    return build_address_verifier(client, smarty)
