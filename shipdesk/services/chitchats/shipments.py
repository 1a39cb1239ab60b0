"""Shipment lifecycle: create, refresh, replace, buy, label download."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from shipdesk.services.chitchats.adapter import (
    AdapterPolicy,
    adapt_create,
    adapt_refresh,
    needs_email,
    needs_phone,
    shipment_country_code,
)
from shipdesk.services.chitchats.client import (
    ChitChatsAPIError,
    ChitChatsClient,
    unwrap_shipment,
)

logger = logging.getLogger(__name__)

LABEL_URL_FIELDS = {
    "zpl": ("postage_label_zpl_url", "postageLabelZplUrl"),
    "pdf": ("postage_label_pdf_url", "postageLabelPdfUrl", "label_pdf_url", "labelPdfUrl"),
    "png": ("postage_label_png_url", "postageLabelPngUrl", "label_png_url", "labelPngUrl"),
}
LABEL_CONTENT_TYPES = {
    "zpl": "text/plain; charset=utf-8",
    "pdf": "application/pdf",
    "png": "image/png",
}
PURCHASE_MARKERS = (
    "postage_label_pdf_url",
    "postage_label_png_url",
    "postage_label_zpl_url",
    "tracking",
    "tracking_code",
    "tracking_number",
)


class ShipmentError(Exception):
    """Base exception for shipment operations rejected locally."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ShipmentValidationError(ShipmentError):
    """Required input is missing; raised before any upstream call."""

    status_code = 400


class ShipmentNotFoundError(ShipmentError):
    status_code = 404


class ShipmentConflictError(ShipmentError):
    """The shipment already carries purchased postage."""

    status_code = 409


@dataclass
class Label:
    """Downloaded postage label."""

    content: bytes
    media_type: str
    format: str


def is_postage_purchased(shipment: Any) -> bool:
    """True if the shipment shows any sign of bought postage.

    Label URLs, tracking identifiers, or a "ready" status all count.
    """
    s = unwrap_shipment(shipment)
    if any(s.get(field) for field in PURCHASE_MARKERS):
        return True
    return str(s.get("status") or "").lower() == "ready"


def _has_contact(shipment: dict, field: str) -> bool:
    to = shipment.get("to") if isinstance(shipment.get("to"), dict) else {}
    return bool(shipment.get(field) or to.get(field))


class ShipmentService:
    """Shipment operations on top of ChitChatsClient.

    Features:
    - Adapter-driven create and refresh payloads
    - Create-first replacement of unpurchased shipments
    - Contact-field preflight before buying postage
    """

    def __init__(
        self,
        client: ChitChatsClient,
        policy: AdapterPolicy,
        confirm_attempts: int = 4,
        confirm_delay: float = 0.25,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.policy = policy
        self.confirm_attempts = confirm_attempts
        self.confirm_delay = confirm_delay
        self._sleep = sleep

    async def _read_back(self, shipment_id: Optional[str]) -> Any:
        """Best-effort single read of a just-created shipment."""
        if not shipment_id:
            return None
        try:
            return await self.client.get_shipment_raw(shipment_id)
        except (ChitChatsAPIError, httpx.HTTPError) as e:
            logger.warning(f"Created shipment {shipment_id} not readable yet: {e}")
            return None

    async def create(self, client_payload: Optional[dict]) -> dict:
        """Adapt and create a shipment.

        Args:
            client_payload: Nested client shipment description

        Returns:
            {"success": True, "id": new id, "shipment": created resource or None}

        Raises:
            ShipmentValidationError: If no destination country is given
            ChitChatsAPIError: If the upstream rejects the shipment
        """
        shipment = adapt_create(client_payload, self.policy)
        if not shipment.get("country_code"):
            raise ShipmentValidationError("country_code required")

        new_id = await self.client.create_shipment(shipment)
        logger.info(f"Created shipment {new_id} to {shipment['country_code']}")

        created = await self._read_back(new_id)
        return {"success": True, "id": new_id, "shipment": created}

    async def _existing_country(self, shipment_id: str) -> str:
        try:
            return shipment_country_code(await self.client.get_shipment(shipment_id))
        except (ChitChatsAPIError, httpx.HTTPError) as e:
            logger.warning(f"Could not read country of shipment {shipment_id}: {e}")
            return ""

    async def refresh(self, shipment_id: str, client_payload: Optional[dict]) -> dict:
        """Refresh rates / package details of an unpurchased shipment.

        The refresh endpoint requires country_code; when the payload lacks it
        the existing shipment's destination is used.

        Returns:
            {"used_id": shipment_id, "shipment": refreshed shipment}
        """
        if not shipment_id:
            raise ShipmentValidationError("shipment_id required for refresh")

        payload = adapt_refresh(client_payload, self.policy)
        if not payload.get("country_code"):
            country = await self._existing_country(shipment_id)
            if country:
                payload = adapt_refresh(client_payload, self.policy, country_code=country)

        data = await self.client.refresh_shipment(shipment_id, payload)
        return {"used_id": shipment_id, "shipment": unwrap_shipment(data)}

    async def _confirm_readable(self, shipment_id: Optional[str]) -> Any:
        """Poll until a new shipment can be read, None if it never shows up."""
        if not shipment_id:
            return None
        for attempt in range(self.confirm_attempts):
            try:
                return await self.client.get_shipment_raw(shipment_id)
            except (ChitChatsAPIError, httpx.HTTPError) as e:
                logger.debug(
                    f"Shipment {shipment_id} not readable "
                    f"(attempt {attempt + 1}/{self.confirm_attempts}): {e}"
                )
            await self._sleep(self.confirm_delay)
        return None

    async def replace(self, shipment_id: str, desired: Optional[dict]) -> dict:
        """Swap an unpurchased shipment for a freshly adapted one.

        The new shipment is created and confirmed readable before the old one
        is deleted, so a failure at any step leaves at least one valid
        shipment behind. Deleting the old one is best-effort.

        Args:
            shipment_id: Shipment to replace
            desired: Client changes merged over the current shipment

        Returns:
            {"success": True, "id": new id, "deleted_old": bool, "shipment": new resource}

        Raises:
            ShipmentValidationError: No id, or no destination country
            ShipmentNotFoundError: The shipment does not exist
            ShipmentConflictError: Postage was already purchased
            ChitChatsAPIError: Upstream rejected the fetch or create
        """
        if not shipment_id:
            raise ShipmentValidationError("shipment_id required for replace_shipment")

        try:
            current = await self.client.get_shipment(shipment_id)
        except ChitChatsAPIError as e:
            if e.status_code == 404:
                raise ShipmentNotFoundError(f"Shipment {shipment_id} not found") from e
            raise

        if is_postage_purchased(current):
            raise ShipmentConflictError(
                "Shipment already has postage; refund/void before replacing"
            )

        new_shipment = adapt_create(
            {**current, **(desired or {})},
            self.policy,
            country_code=shipment_country_code(current),
        )
        if not new_shipment.get("country_code"):
            raise ShipmentValidationError("country_code required")

        new_id = await self.client.create_shipment(new_shipment)
        created = await self._confirm_readable(new_id)

        if created is None:
            logger.warning(
                f"Replacement {new_id} for shipment {shipment_id} not confirmed; "
                f"keeping the old shipment"
            )
            return {"success": True, "id": new_id, "deleted_old": False, "shipment": None}

        deleted_old = False
        try:
            await self.client.delete_shipment(shipment_id)
            deleted_old = True
        except (ChitChatsAPIError, httpx.HTTPError) as e:
            logger.warning(f"Could not delete replaced shipment {shipment_id}: {e}")

        logger.info(f"Replaced shipment {shipment_id} with {new_id}")
        return {
            "success": True,
            "id": new_id,
            "deleted_old": deleted_old,
            "shipment": created,
        }

    async def preflight_buy(self, shipment_id: str) -> Optional[dict]:
        """Backfill destination-required phone/email before a purchase.

        Returns:
            The refresh payload that was sent, or None if nothing was missing
        """
        shipment = await self.client.get_shipment(shipment_id)
        country = shipment_country_code(shipment)

        payload: dict[str, Any] = {"country_code": country or None}
        if needs_phone(country) and not _has_contact(shipment, "phone"):
            payload["phone"] = self.policy.fallback_phone
        if needs_email(country) and not _has_contact(shipment, "email"):
            payload["email"] = self.policy.fallback_email

        if "phone" not in payload and "email" not in payload:
            return None

        payload = {k: v for k, v in payload.items() if v is not None}
        logger.info(f"Backfilling {sorted(payload)} on shipment {shipment_id} before buy")
        await self.client.refresh_shipment(shipment_id, payload)
        return payload

    async def buy(self, shipment_id: str, postage_type: Optional[str] = None) -> Any:
        """Run the contact preflight, then buy postage."""
        if not shipment_id:
            raise ShipmentValidationError("shipment_id required for buy")

        await self.preflight_buy(shipment_id)
        return await self.client.buy_shipment(shipment_id, postage_type or "unknown")

    async def fetch_label(self, shipment_id: str, fmt: str = "zpl") -> Label:
        """Download a label in zpl, pdf or png form.

        Raises:
            ShipmentValidationError: No id
            ShipmentNotFoundError: Label URL not present yet
            ChitChatsAPIError: Upstream rejected the shipment or label fetch
        """
        if not shipment_id:
            raise ShipmentValidationError("id required")

        fmt = (fmt or "zpl").lower()
        if fmt not in LABEL_URL_FIELDS:
            fmt = "png"

        shipment = await self.client.get_shipment(shipment_id)
        label_url = next(
            (shipment[f] for f in LABEL_URL_FIELDS[fmt] if shipment.get(f)), None
        )
        if not label_url:
            raise ShipmentNotFoundError("Label not ready")

        response = await self.client.fetch_label(label_url)
        if not response.is_success:
            raise ChitChatsAPIError(
                response.status_code, response.text, response_body=response.text
            )

        media_type = response.headers.get("content-type") or LABEL_CONTENT_TYPES[fmt]
        return Label(content=response.content, media_type=media_type, format=fmt)
