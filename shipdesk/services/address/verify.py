"""Best-effort recipient address verification.

Strategies run in order; each returns a result or None. The first result
wins and ``{"suggested": None}`` is the documented default when none
produces one. A strategy that raises is logged and skipped.
"""

import logging
from typing import Awaitable, Callable, Optional

import httpx

from shipdesk.services.address.smarty import SmartyClient, SmartyError
from shipdesk.services.chitchats.client import ChitChatsAPIError, ChitChatsClient
from shipdesk.services.ratelimit import RateLimitExhausted

logger = logging.getLogger(__name__)

Strategy = Callable[[dict], Awaitable[Optional[dict]]]

DEFAULT_RESULT = {"suggested": None}


def chitchats_address_verify(client: ChitChatsClient) -> Strategy:
    """Dedicated /addresses/verify endpoint."""

    async def _verify(address: dict) -> Optional[dict]:
        out = await client.send("POST", "/addresses/verify", json_body={"address": address})
        return out.data if out.ok else None

    return _verify


def chitchats_shipment_verify(client: ChitChatsClient) -> Strategy:
    """/shipments/verify variant some accounts expose."""

    async def _verify(address: dict) -> Optional[dict]:
        out = await client.send("POST", "/shipments/verify", json_body={"to": address})
        return out.data if out.ok else None

    return _verify


def smarty_verify(smarty: SmartyClient) -> Strategy:
    async def _verify(address: dict) -> Optional[dict]:
        if not smarty.configured:
            return None
        result = await smarty.verify(address)
        return result if result.get("suggested") else None

    return _verify


class AddressVerifier:
    """Runs verification strategies in order, never raising."""

    def __init__(self, strategies: list[tuple[str, Strategy]]):
        self.strategies = strategies

    async def verify(self, address: Optional[dict]) -> dict:
        address = address or {}
        for name, strategy in self.strategies:
            try:
                result = await strategy(address)
            except (
                ChitChatsAPIError,
                SmartyError,
                RateLimitExhausted,
                httpx.HTTPError,
                ValueError,
            ) as e:
                logger.warning(f"Address verification via {name} failed: {e}")
                continue
            if result is not None:
                return result
        return dict(DEFAULT_RESULT)


def build_address_verifier(
    client: ChitChatsClient,
    smarty: Optional[SmartyClient] = None,
) -> AddressVerifier:
    strategies: list[tuple[str, Strategy]] = [
        ("chitchats:addresses", chitchats_address_verify(client)),
        ("chitchats:shipments", chitchats_shipment_verify(client)),
    ]
    if smarty is not None:
        strategies.append(("smarty", smarty_verify(smarty)))
    return AddressVerifier(strategies)
