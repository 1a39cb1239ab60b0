"""Time-boxed shipment search across paginated Chit Chats listings."""

import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx

from shipdesk.services.chitchats.client import (
    ChitChatsAPIError,
    ChitChatsClient,
    as_list,
    unwrap_shipment,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = 500
MIN_TIMEOUT_MS = 1000
FALLBACK_STATUSES = ("ready", "processing", "archived")

ORDER_FIELDS = (
    "order_id",
    "order_number",
    "reference",
    "reference_number",
    "reference_value",
    "external_order_id",
    "external_id",
)
TRACKING_FIELDS = (
    "carrier_tracking_code",
    "tracking_code",
    "tracking_number",
    "tracking",
)

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_SHIPMENT_ID = re.compile(r"^[0-9]{6,}$")


def normalize_term(value: Any) -> str:
    """Lower-case and strip everything that is not a letter or digit."""
    return _NON_ALNUM.sub("", str(value if value is not None else "").lower())


def looks_like_shipment_id(term: str) -> bool:
    return bool(_SHIPMENT_ID.match(str(term or "").strip()))


def _first_present(shipment: dict, fields: Iterable[str]) -> str:
    for field in fields:
        value = shipment.get(field)
        if value:
            return normalize_term(value)
    return ""


def _overlaps(query: str, candidate: str) -> bool:
    return bool(query and candidate) and (query in candidate or candidate in query)


@dataclass
class SearchQuery:
    """Search parameters; the first non-empty of order_id, tracking, q is the term."""

    order_id: str = ""
    tracking: str = ""
    q: str = ""
    status: str = ""
    batch_id: str = ""
    pending_only: bool = True
    fast: bool = False
    page_size: int = DEFAULT_PAGE_SIZE
    timeout_ms: int = 9000

    @property
    def term(self) -> str:
        return (self.order_id or self.tracking or self.q).strip()

    def matches(self, shipment: dict) -> bool:
        """Tolerant match on the first populated order-like and tracking-like field."""
        order_query = normalize_term(self.order_id or self.q)
        tracking_query = normalize_term(self.tracking or self.q)
        return _overlaps(order_query, _first_present(shipment, ORDER_FIELDS)) or _overlaps(
            tracking_query, _first_present(shipment, TRACKING_FIELDS)
        )


class Deadline:
    """Wall-clock budget for one search."""

    def __init__(self, timeout_ms: int, clock: Callable[[], float]):
        self._clock = clock
        self._expires_at = clock() + max(MIN_TIMEOUT_MS, timeout_ms) / 1000

    @property
    def expired(self) -> bool:
        return self._clock() > self._expires_at


class OpenBatchCache:
    """Ids of currently open batches, cached for ``ttl_seconds``.

    Constructed once per process and injected into the search engine. A
    failed load yields an empty set and is not cached.
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._ids: Optional[frozenset[str]] = None
        self._loaded_at = 0.0

    async def get(self, loader: Callable[[], Awaitable[list]]) -> frozenset[str]:
        if self._ids is not None and self._clock() - self._loaded_at < self.ttl_seconds:
            return self._ids

        try:
            batches = await loader()
        except (ChitChatsAPIError, httpx.HTTPError) as e:
            logger.warning(f"Could not load open batches: {e}")
            return frozenset()

        self._ids = frozenset(str(b.get("id")) for b in batches if isinstance(b, dict))
        self._loaded_at = self._clock()
        return self._ids

    def invalidate(self) -> None:
        self._ids = None


class ShipmentSearch:
    """Search engine over the shipments collection.

    Steps, each returning on the first non-empty result:
    1. direct fetch when the term looks like a shipment id
    2. paginated search inside the pending universe (open batches, then unbatched)
    3. unless fast, the broader ready/processing/archived pools
    Every result set passes the pending filter before it is returned.
    """

    def __init__(
        self,
        client: ChitChatsClient,
        batch_cache: OpenBatchCache,
        max_pages: int = 200,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.batch_cache = batch_cache
        self.max_pages = max_pages
        self._clock = clock

    async def open_batch_ids(self) -> frozenset[str]:
        return await self.batch_cache.get(lambda: self.client.list_batches(status="open"))

    async def keep_pending(self, shipments: list[dict], query: SearchQuery) -> list[dict]:
        """Keep unbatched shipments and those in an open batch.

        A caller-supplied batch_id is taken to be open without re-checking.
        """
        if not query.pending_only:
            return list(shipments)

        allowed: Optional[frozenset[str]] = None
        kept = []
        for shipment in shipments:
            batch_id = shipment.get("batch_id")
            if batch_id is None or batch_id == "":
                kept.append(shipment)
                continue
            if allowed is None:
                if query.batch_id:
                    allowed = frozenset({str(query.batch_id)})
                else:
                    allowed = await self.open_batch_ids()
            if str(batch_id) in allowed:
                kept.append(shipment)
        return kept

    async def paginate(
        self,
        deadline: Deadline,
        status: Optional[str] = None,
        q: Optional[str] = None,
        batch_id: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        stop_early_if: Optional[Callable[[dict], bool]] = None,
    ) -> list[dict]:
        """Walk /shipments page by page until exhausted, stopped, or out of time.

        Args:
            deadline: Search budget, checked before every page
            status: Status filter
            q: Full-text filter
            batch_id: Batch filter
            page_size: Requested page size (clamped to 1..1000)
            stop_early_if: Predicate; returning True ends the walk after that item

        Returns:
            Every shipment seen, in order
        """
        size = min(max(int(page_size or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)

        max_pages = self.max_pages
        try:
            count = await self.client.count_shipments(status=status, q=q, batch_id=batch_id)
        except httpx.HTTPError as e:
            logger.debug(f"Shipment count unavailable: {e}")
            count = None
        if count is not None and count >= 0:
            max_pages = max(1, math.ceil(count / size))

        results: list[dict] = []
        for page in range(1, max_pages + 1):
            if deadline.expired:
                logger.warning(f"Search deadline reached at page {page}")
                break

            try:
                out = await self.client.send(
                    "GET",
                    "/shipments",
                    params={
                        "status": status,
                        "q": q,
                        "batch_id": batch_id,
                        "limit": size,
                        "page": page,
                    },
                )
            except httpx.HTTPError as e:
                logger.warning(f"Shipment page {page} failed: {e}")
                break
            if not out.ok:
                break

            shipments = as_list(out.data, "shipments", "data")
            if not shipments:
                break

            for shipment in shipments:
                results.append(shipment)
                if stop_early_if and stop_early_if(shipment):
                    return results

            if len(shipments) < size:
                break

        return results

    async def _direct_lookup(self, term: str) -> Optional[dict]:
        try:
            shipment = unwrap_shipment(await self.client.get_shipment_raw(term))
        except (ChitChatsAPIError, httpx.HTTPError) as e:
            logger.debug(f"Direct lookup of {term} failed: {e}")
            return None
        return shipment if shipment.get("id") else None

    async def _search_matches(
        self,
        query: SearchQuery,
        deadline: Deadline,
        **filters: Any,
    ) -> list[dict]:
        def stop(shipment: dict) -> bool:
            return deadline.expired or query.matches(shipment)

        seen = await self.paginate(
            deadline,
            page_size=query.page_size,
            stop_early_if=stop,
            **filters,
        )
        return [s for s in seen if query.matches(s)]

    async def _search_pending_universe(
        self,
        query: SearchQuery,
        deadline: Deadline,
    ) -> list[dict]:
        term = query.term
        status = query.status or None

        if query.batch_id:
            batch_ids = [str(query.batch_id)]
        else:
            batch_ids = sorted(await self.open_batch_ids())

        for batch_id in batch_ids:
            if deadline.expired:
                return []
            hits = await self._search_matches(
                query, deadline, q=term, batch_id=batch_id, status=status
            )
            if hits:
                return hits

        # unbatched shipments are pending as well
        if deadline.expired:
            return []
        return await self._search_matches(query, deadline, q=term, status=status)

    async def search(self, query: SearchQuery) -> list[dict]:
        """Find shipments matching an order id, tracking code or free text.

        Args:
            query: Search parameters

        Returns:
            Matching shipments (possibly empty when the budget ran out)
        """
        term = query.term
        if not term:
            return []

        deadline = Deadline(query.timeout_ms, self._clock)

        if looks_like_shipment_id(term):
            shipment = await self._direct_lookup(term)
            if shipment:
                kept = await self.keep_pending([shipment], query)
                if kept:
                    return kept

        if query.pending_only:
            hits = await self._search_pending_universe(query, deadline)
        else:
            hits = await self._search_matches(
                query, deadline, q=term, status=query.status or None
            )

        kept = await self.keep_pending(hits, query)
        if kept or query.fast:
            return kept

        for status in FALLBACK_STATUSES:
            if deadline.expired:
                logger.warning(f"Search for '{term}' ran out of time")
                break
            hits = await self._search_matches(query, deadline, status=status)
            kept = await self.keep_pending(hits, query)
            if kept:
                return kept

        return []
