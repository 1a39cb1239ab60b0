"""Shared fixtures: a scripted Chit Chats upstream and fake time."""

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import httpx
import pytest

from shipdesk.services.chitchats import (
    AdapterPolicy,
    ChitChatsClient,
    OpenBatchCache,
    ShipmentSearch,
    ShipmentService,
)
from shipdesk.services.ratelimit import (
    BucketPolicy,
    MemoryBucketStore,
    ResilientFetcher,
    TokenBucketLimiter,
)

BASE_URL = "https://chitchats.test/api/v1"
CLIENT_ID = "123"
CLIENT_PREFIX = f"/api/v1/clients/{CLIENT_ID}"

Handler = Union[httpx.Response, list, Callable[[httpx.Request], httpx.Response]]


@dataclass
class Call:
    method: str
    path: str
    params: dict
    body: Any


class FakeUpstream:
    """Routes requests by (method, path) and records every call in order.

    A route is a fixed response, a list of responses served in turn (the
    last one repeats), or a callable taking the request. Paths under the
    client prefix are recorded relative to it.
    """

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self._routes: dict[tuple[str, str], Handler] = {}

    def on(self, method: str, path: str, handler: Handler) -> None:
        self._routes[(method.upper(), path)] = handler

    def json(
        self,
        method: str,
        path: str,
        data: Any,
        status_code: int = 200,
        headers: Optional[dict] = None,
    ) -> None:
        self.on(method, path, httpx.Response(status_code, json=data, headers=headers))

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith(CLIENT_PREFIX):
            path = path[len(CLIENT_PREFIX):]
        body = json.loads(request.content) if request.content else None
        self.calls.append(Call(request.method, path, dict(request.url.params), body))

        handler = self._routes.get((request.method, path))
        if handler is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {path}"})
        if isinstance(handler, list):
            response = handler.pop(0) if len(handler) > 1 else handler[0]
        elif callable(handler):
            response = handler(request)
        else:
            response = handler
        # fresh copy so a canned response can be served more than once
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            content=response.content,
        )

    def calls_to(self, method: str, path: str) -> list[Call]:
        return [c for c in self.calls if c.method == method and c.path == path]

    def sequence(self) -> list[tuple[str, str]]:
        return [(c.method, c.path) for c in self.calls]


class FakeSleep:
    """Records requested delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def sleeper() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> AdapterPolicy:
    return AdapterPolicy(
        fallback_email="fallback@example.com",
        fallback_phone="555-555-0100",
        default_origin_country="CA",
        allow_vat_reference=True,
    )


@pytest.fixture
def limiter(sleeper, clock) -> TokenBucketLimiter:
    # Generous bucket so admission never delays unless a test asks for it
    return TokenBucketLimiter(
        store=MemoryBucketStore(),
        policy=BucketPolicy(rate_per_second=1000, capacity=1000),
        clock=clock,
        sleep=sleeper,
        rng=lambda: 0.0,
    )


@pytest.fixture
def fetcher(limiter, upstream, sleeper, clock) -> ResilientFetcher:
    return ResilientFetcher(
        limiter,
        max_retries=5,
        transport=httpx.MockTransport(upstream.handle),
        clock=clock,
        sleep=sleeper,
    )


@pytest.fixture
def client(fetcher) -> ChitChatsClient:
    return ChitChatsClient(fetcher, BASE_URL, CLIENT_ID, "secret-token")


@pytest.fixture
def batch_cache(clock) -> OpenBatchCache:
    return OpenBatchCache(ttl_seconds=30, clock=clock)


@pytest.fixture
def search(client, batch_cache, clock) -> ShipmentSearch:
    return ShipmentSearch(client, batch_cache, clock=clock)


@pytest.fixture
def service(client, policy, sleeper) -> ShipmentService:
    return ShipmentService(client, policy, confirm_attempts=3, confirm_delay=0.25, sleep=sleeper)
