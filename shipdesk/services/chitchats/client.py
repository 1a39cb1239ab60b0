"""Async HTTP client for the Chit Chats API v1."""

from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote
import logging

import httpx

from shipdesk.services.ratelimit import ResilientFetcher

logger = logging.getLogger(__name__)


class ChitChatsAPIError(Exception):
    """Non-2xx response from Chit Chats, carried back to the caller verbatim."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: Any = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Chit Chats API Error {status_code}: {message}")


class ChitChatsConfigError(Exception):
    """Client id or access token is not configured."""

    def __init__(self, message: str = "Missing CHIT_CHATS_CLIENT_ID or CHIT_CHATS_ACCESS_TOKEN"):
        self.message = message
        self.status_code = 500
        super().__init__(message)


@dataclass
class UpstreamResponse:
    """Decoded upstream response: JSON when it parses, text otherwise."""

    status_code: int
    data: Any
    headers: httpx.Headers

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def location_id(self) -> Optional[str]:
        """Last path segment of the Location header (id of a created resource)."""
        location = self.headers.get("location") or ""
        parts = [p for p in location.split("/") if p]
        return parts[-1] if parts else None


def as_list(data: Any, *keys: str) -> list:
    """Normalize a list response: bare array, or wrapped under one of ``keys``."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys or ("data",):
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


def unwrap_shipment(data: Any) -> dict:
    """Shipment object from a response that may wrap it under ``shipment``."""
    if isinstance(data, dict):
        inner = data.get("shipment")
        if isinstance(inner, dict):
            return inner
        return data
    return {}


def _decode(response: httpx.Response) -> UpstreamResponse:
    text = response.text
    try:
        data: Any = response.json() if text else ""
    except ValueError:
        data = text
    return UpstreamResponse(response.status_code, data, response.headers)


class ChitChatsClient:
    """Async HTTP client for Chit Chats API v1.

    Features:
    - Raw token auth (Chit Chats does not use the Bearer scheme)
    - Rate limiting and 429 retry through ResilientFetcher
    - Error handling with ChitChatsAPIError carrying the upstream body
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        base_url: str,
        client_id: str,
        access_token: str,
        bucket: Optional[str] = None,
    ):
        """Initialize the client.

        Args:
            fetcher: Rate-limited HTTP caller
            base_url: API base, e.g. https://chitchats.com/api/v1
            client_id: Chit Chats client id
            access_token: Raw access token
            bucket: Rate-limit bucket for all calls made by this client
        """
        if not client_id or not access_token:
            raise ChitChatsConfigError()

        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self._access_token = access_token
        self.bucket = bucket

    def url(self, path: str) -> str:
        return f"{self.base_url}/clients/{quote(str(self.client_id), safe='')}{path}"

    @property
    def _headers(self) -> dict:
        return {
            "Authorization": self._access_token,
            "Content-Type": "application/json; charset=utf-8",
        }

    async def send(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> UpstreamResponse:
        """Make an authenticated request without raising on error status.

        Args:
            method: HTTP method
            path: Path below /clients/{client_id}
            params: Query parameters (None values dropped)
            json_body: JSON body

        Returns:
            Decoded UpstreamResponse
        """
        if params:
            params = {k: v for k, v in params.items() if v is not None and v != ""}

        response = await self.fetcher.request(
            method,
            self.url(path),
            bucket=self.bucket,
            headers=self._headers,
            params=params or None,
            json=json_body,
        )
        return _decode(response)

    async def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> UpstreamResponse:
        """Make an authenticated request, raising on any non-2xx status.

        Raises:
            ChitChatsAPIError: With the upstream status and decoded body
        """
        out = await self.send(method, path, params=params, json_body=json_body)
        if not out.ok:
            logger.error(f"Chit Chats API error: {method} {path} -> {out.status_code}")
            message = out.data if isinstance(out.data, str) else str(out.data)
            raise ChitChatsAPIError(out.status_code, message, response_body=out.data)
        return out

    # Shipments

    async def get_shipment(self, shipment_id: str) -> dict:
        """Fetch one shipment (unwrapped)."""
        out = await self._make_request("GET", f"/shipments/{quote(str(shipment_id), safe='')}")
        return unwrap_shipment(out.data)

    async def get_shipment_raw(self, shipment_id: str) -> Any:
        """Fetch one shipment exactly as the API returns it."""
        out = await self._make_request("GET", f"/shipments/{quote(str(shipment_id), safe='')}")
        return out.data

    async def list_shipments(
        self,
        status: Optional[str] = None,
        q: Optional[str] = None,
        batch_id: Optional[str] = None,
        limit: int = 25,
        page: int = 1,
    ) -> Any:
        """List shipments, returning the raw payload."""
        out = await self._make_request(
            "GET",
            "/shipments",
            params={
                "status": status,
                "q": q,
                "batch_id": batch_id,
                "limit": limit,
                "page": page,
            },
        )
        return out.data

    async def count_shipments(
        self,
        status: Optional[str] = None,
        q: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> Optional[int]:
        """Shipment count for the given filters, or None if unavailable."""
        out = await self.send(
            "GET",
            "/shipments/count",
            params={"status": status, "q": q, "batch_id": batch_id},
        )
        if not out.ok or not isinstance(out.data, dict):
            return None
        count = out.data.get("count")
        if isinstance(count, bool) or not isinstance(count, int):
            return None
        return count

    async def create_shipment(self, shipment: dict) -> Optional[str]:
        """Create a shipment.

        Returns:
            New shipment id parsed from the Location header (may be None)
        """
        out = await self._make_request("POST", "/shipments", json_body=shipment)
        return out.location_id

    async def delete_shipment(self, shipment_id: str) -> None:
        await self._make_request("DELETE", f"/shipments/{quote(str(shipment_id), safe='')}")

    async def refresh_shipment(self, shipment_id: str, payload: dict) -> Any:
        """Refresh rates / update package details of an unpurchased shipment."""
        out = await self._make_request(
            "PATCH",
            f"/shipments/{quote(str(shipment_id), safe='')}/refresh",
            json_body=payload,
        )
        return out.data

    async def buy_shipment(self, shipment_id: str, postage_type: str) -> Any:
        out = await self._make_request(
            "PATCH",
            f"/shipments/{quote(str(shipment_id), safe='')}/buy",
            json_body={"postage_type": postage_type},
        )
        return out.data

    # Batches

    async def list_batches(self, status: Optional[str] = None) -> list:
        out = await self._make_request("GET", "/batches", params={"status": status})
        return as_list(out.data, "batches", "data")

    async def create_batch(self, description: str = "") -> UpstreamResponse:
        return await self._make_request(
            "POST", "/batches", json_body={"description": description}
        )

    async def add_to_batch(self, batch_id: int, shipment_ids: list[str]) -> None:
        await self._make_request(
            "PATCH",
            "/shipments/add_to_batch",
            json_body={"batch_id": batch_id, "shipment_ids": shipment_ids},
        )

    async def remove_from_batch(self, batch_id: int, shipment_ids: list[str]) -> None:
        await self._make_request(
            "PATCH",
            "/shipments/remove_from_batch",
            json_body={"batch_id": batch_id, "shipment_ids": shipment_ids},
        )

    # Labels

    async def fetch_label(self, label_url: str) -> httpx.Response:
        """Download label bytes from an absolute label URL (no client auth)."""
        return await self.fetcher.request("GET", label_url, bucket=self.bucket)
