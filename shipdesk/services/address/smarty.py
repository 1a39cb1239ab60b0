"""Smarty address verification (US Street and International Street APIs)."""

from typing import Any, Optional
import logging

import httpx

logger = logging.getLogger(__name__)

US_STREET_URL = "https://us-street.api.smarty.com/street-address"
INTERNATIONAL_STREET_URL = "https://international-street.api.smarty.com/verify"

ADDRESS_FIELDS = (
    "name",
    "address_1",
    "address_2",
    "city",
    "province_code",
    "postal_code",
    "country_code",
)


class SmartyError(Exception):
    """Smarty is unconfigured or rejected the lookup."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def normalize_address(address: Optional[dict]) -> dict:
    """Read an address given with or without the ``to_`` prefix."""
    address = address or {}
    out = {}
    for field in ADDRESS_FIELDS:
        value = address.get(f"to_{field}")
        if value is None:
            value = address.get(field)
        out[field] = str(value).strip() if value is not None else ""
    out["country_code"] = out["country_code"].upper()
    return out


def _join(*parts: Any, sep: str = " ") -> str:
    return sep.join(str(p) for p in parts if p)


class SmartyClient:
    """Async client for Smarty street verification.

    Uses auth-id/auth-token when both are configured, otherwise the
    embedded website key.
    """

    def __init__(
        self,
        auth_id: str = "",
        auth_token: str = "",
        embedded_key: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.auth_id = auth_id
        self.auth_token = auth_token
        self.embedded_key = embedded_key
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool((self.auth_id and self.auth_token) or self.embedded_key)

    def _auth_params(self) -> dict:
        if self.auth_id and self.auth_token:
            return {"auth-id": self.auth_id, "auth-token": self.auth_token}
        return {"key": self.embedded_key}

    async def _get(self, url: str, params: dict) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(url, params={**self._auth_params(), **params})

        if not response.is_success:
            raise SmartyError(
                f"Smarty lookup failed: {response.status_code} - {response.text}",
                response.status_code,
            )
        return response.json()

    async def verify(self, address: Optional[dict]) -> dict:
        """Verify and normalize a recipient address.

        Args:
            address: Address with name/address_1/.../country_code keys
                (``to_`` prefixed keys are accepted too)

        Returns:
            {"suggested": dict or None, "raw": best candidate or None}; an
            empty country short-circuits with a note

        Raises:
            SmartyError: If no keys are configured or Smarty rejects the call
        """
        to = normalize_address(address)
        if not to["country_code"]:
            return {"suggested": None, "note": "Empty country"}
        if not self.configured:
            raise SmartyError("Smarty keys not configured", 500)

        if to["country_code"] == "US":
            return await self._verify_us(to)
        return await self._verify_international(to)

    async def _verify_us(self, to: dict) -> dict:
        params = {
            "street": _join(to["address_1"], to["address_2"]),
            "city": to["city"],
            "state": to["province_code"],
            "zipcode": to["postal_code"],
            "candidates": "5",
            "match": "enhanced",
        }
        data = await self._get(US_STREET_URL, {k: v for k, v in params.items() if v})
        if not isinstance(data, list) or not data:
            return {"suggested": None, "raw": None}

        pick = next(
            (d for d in data if (d.get("analysis") or {}).get("dpv_match_code") == "Y"),
            data[0],
        )
        c = pick.get("components") or {}
        zip_code = c.get("zipcode", "") + (f"-{c['plus4_code']}" if c.get("plus4_code") else "")

        suggested = {
            "to_name": to["name"],
            "to_address_1": pick.get("delivery_line_1") or _join(
                c.get("primary_number"),
                c.get("street_predirection"),
                c.get("street_name"),
                c.get("street_suffix"),
                c.get("street_postdirection"),
            ),
            "to_address_2": _join(c.get("secondary_designator"), c.get("secondary_number")),
            "to_city": c.get("city_name", ""),
            "to_province_code": c.get("state_abbreviation", ""),
            "to_postal_code": zip_code.strip(),
            "to_country_code": "US",
        }
        return {"suggested": suggested, "raw": pick}

    async def _verify_international(self, to: dict) -> dict:
        params = {"country": to["country_code"], "geocode": "false", "max_results": "5"}
        if to["address_1"] or to["address_2"] or to["city"] or to["postal_code"]:
            params.update({
                "address1": to["address_1"],
                "address2": to["address_2"],
                "locality": to["city"],
                "administrative_area": to["province_code"],
                "postal_code": to["postal_code"],
            })
        else:
            freeform = _join(
                to["address_1"],
                to["address_2"],
                to["city"],
                to["province_code"],
                to["postal_code"],
                sep=", ",
            )
            if freeform:
                params["freeform"] = freeform

        data = await self._get(INTERNATIONAL_STREET_URL, {k: v for k, v in params.items() if v})
        if not isinstance(data, list) or not data:
            return {"suggested": None, "raw": None}

        pick = data[0]
        c = pick.get("components") or {}
        suggested = {
            "to_name": to["name"],
            "to_address_1": pick.get("address1") or _join(
                c.get("primary_number"),
                c.get("street_predirection"),
                c.get("thoroughfare_name"),
                c.get("thoroughfare_trailing_type"),
                c.get("thoroughfare_postdirection"),
            ),
            "to_address_2": pick.get("address2") or _join(
                c.get("premise_type"),
                c.get("premise"),
                c.get("sub_premise_type"),
                c.get("sub_premise"),
            ),
            "to_city": c.get("locality", ""),
            "to_province_code": c.get("administrative_area", ""),
            "to_postal_code": c.get("postal_code", ""),
            "to_country_code": (c.get("country_iso_2") or to["country_code"]).upper(),
        }
        return {"suggested": suggested, "raw": pick}
