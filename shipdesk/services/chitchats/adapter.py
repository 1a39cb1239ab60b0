"""Payload adapter: client shipment descriptions -> Chit Chats flat schema.

Pure functions, no I/O. Client payloads nest recipient data under ``to``,
package data under ``package`` and customs data under ``customs``; each
output field is read through an ordered list of accessor paths, first
non-None value wins.
"""

import math
import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

EU_COUNTRY_CODES = frozenset({
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU",
    "IE", "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE",
})

PHONE_EXEMPT_COUNTRIES = frozenset({"CA", "US"})

Path = tuple[str, ...]


@dataclass(frozen=True)
class AdapterPolicy:
    """Configured defaults the adapter injects."""

    fallback_email: str = "shipping@example.com"
    fallback_phone: str = "555-555-0100"
    default_origin_country: str = "CA"
    allow_vat_reference: bool = False

    @classmethod
    def from_settings(cls, settings) -> "AdapterPolicy":
        return cls(
            fallback_email=settings.CC_FALLBACK_EMAIL,
            fallback_phone=settings.CC_FALLBACK_PHONE,
            default_origin_country=settings.CC_DEFAULT_ORIGIN_COUNTRY.upper() or "CA",
            allow_vat_reference=settings.ALLOW_CC_VAT_REFERENCE,
        )


# Ordered accessor rules: output field -> candidate paths in precedence order

RECIPIENT_RULES: list[tuple[str, tuple[Path, ...]]] = [
    ("name", (("to", "name"), ("name",))),
    ("address_1", (("to", "address_1"), ("address_1",))),
    ("address_2", (("to", "address_2"), ("address_2",))),
    ("city", (("to", "city"), ("city",))),
    ("province_code", (("to", "province_code"), ("province_code",))),
    ("postal_code", (("to", "postal_code"), ("postal_code",))),
    ("phone", (("to", "phone"), ("phone",))),
    ("email", (("to", "email"), ("email",))),
]

PACKAGE_RULES: list[tuple[str, tuple[Path, ...]]] = [
    ("package_type", (("package", "package_type"), ("package_type",))),
    ("size_unit", (("package", "size_unit"), ("size_unit",))),
    ("weight_unit", (("package", "weight_unit"), ("weight_unit",))),
    ("postage_type", (("package", "postage_type"), ("postage_type",))),
]

PACKAGE_NUMBER_FIELDS = ("size_x", "size_y", "size_z", "weight")
DIMENSION_FIELDS = ("size_x", "size_y", "size_z")

COUNTRY_PATHS: tuple[Path, ...] = (("to", "country_code"), ("country_code",))
SHIP_DATE_PATHS: tuple[Path, ...] = (("package", "ship_date"), ("ship_date",))
ORDER_ID_PATHS: tuple[Path, ...] = (("order_id",), ("reference",), ("order",))

VAT_REFERENCE_PATHS: tuple[Path, ...] = (
    ("vat_reference",),
    ("customs_tax_reference_number",),
    ("tax_reference_number",),
    ("ioss",),
    ("ioss_number",),
    ("vat",),
    ("vat_number",),
    ("eori",),
    ("eori_number",),
    ("customs", "vat_reference"),
    ("customs", "tax_reference_number"),
    ("customs", "ioss_number"),
    ("customs", "vat_number"),
    ("customs", "eori_number"),
)

SHIPMENT_COUNTRY_PATHS: tuple[Path, ...] = (
    ("country_code",),
    ("to", "country_code"),
    ("destination", "country_code"),
    ("to_country_code",),
)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
)


def dig(payload: Any, path: Path) -> Any:
    """Follow ``path`` through nested dicts, None if any hop is missing."""
    value = payload
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def first_of(payload: Any, paths: Iterable[Path]) -> Any:
    for path in paths:
        value = dig(payload, path)
        if value is not None:
            return value
    return None


def numberish(value: Any) -> float:
    """Coerce to a finite number; anything else becomes 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(number) if number.is_integer() else number


def decimal_string(value: Any) -> str:
    return str(numberish(value))


def asciiify(text: Any) -> str:
    """Strip diacritics, then drop anything outside printable ASCII."""
    decomposed = unicodedata.normalize("NFKD", str(text or ""))
    without_marks = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"[^\x20-\x7E]", "", without_marks)


def clean_hs_code(code: Any) -> Optional[str]:
    """Digits only, at most 12; None when nothing remains."""
    digits = re.sub(r"\D", "", str(code or ""))
    return digits[:12] or None


def sanitize_vat_reference(raw: Any) -> Optional[str]:
    """Uppercase alphanumeric, at most 20 characters; None when empty."""
    cleaned = re.sub(r"[^A-Z0-9]", "", str(raw or "").upper())[:20]
    return cleaned or None


def _parse_loose_date(text: str) -> Optional[date]:
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def normalize_ship_date(value: Any, today: Optional[date] = None) -> str:
    """Normalize a ship date to YYYY-MM-DD in local calendar terms.

    Accepts empty, "today", "tomorrow", an ISO date, or another parseable
    date string. Anything unparseable becomes today.
    """
    today = today or date.today()
    text = str(value or "").strip()
    keyword = text.lower()

    if not text or keyword == "today":
        return today.isoformat()
    if keyword == "tomorrow":
        return (today + timedelta(days=1)).isoformat()
    if _ISO_DATE.match(text):
        return text

    parsed = _parse_loose_date(text)
    return (parsed or today).isoformat()


def needs_phone(country_code: str) -> bool:
    return bool(country_code) and country_code not in PHONE_EXEMPT_COUNTRIES


def needs_email(country_code: str) -> bool:
    return country_code in EU_COUNTRY_CODES or country_code == "GB"


def shipment_country_code(shipment: Any) -> str:
    """Destination country of an upstream shipment, uppercase ('' if unknown)."""
    for path in SHIPMENT_COUNTRY_PATHS:
        value = dig(shipment, path)
        if value:
            return str(value).upper()
    return ""


def apply_jurisdiction_defaults(out: dict, policy: AdapterPolicy) -> dict:
    """Inject fallback phone/email the destination requires when missing."""
    country = out.get("country_code") or ""
    if needs_phone(country) and not out.get("phone"):
        out["phone"] = policy.fallback_phone
    if needs_email(country) and not out.get("email"):
        out["email"] = policy.fallback_email
    return out


def prune(out: dict) -> dict:
    """Drop None values and non-positive package dimensions."""
    for key in DIMENSION_FIELDS:
        if key in out and not numberish(out[key]) > 0:
            del out[key]
    return {k: v for k, v in out.items() if v is not None}


def _customs_source(client: dict) -> dict:
    customs = client.get("customs")
    return customs if isinstance(customs, dict) else {}


def _customs_block(client: dict) -> dict:
    customs = _customs_source(client)

    def pick(key: str, default: Any = None) -> Any:
        value = customs.get(key)
        if value is None:
            value = client.get(key)
        return default if value is None else value

    line_items = customs.get("line_items")
    if not isinstance(line_items, list):
        line_items = client.get("line_items")

    return {
        "package_contents": pick("package_contents", "merchandise"),
        "description": pick("description"),
        "value": decimal_string(pick("value", 0)),
        "value_currency": str(pick("value_currency", "cad")).lower(),
        "line_items": line_items if isinstance(line_items, list) else None,
    }


def _vat_reference(client: dict, policy: AdapterPolicy) -> Optional[str]:
    if not policy.allow_vat_reference:
        return None
    return sanitize_vat_reference(first_of(client, VAT_REFERENCE_PATHS))


def _flatten(
    client: dict,
    policy: AdapterPolicy,
    country_code: Optional[str],
) -> dict:
    out: dict[str, Any] = {}

    for field, paths in RECIPIENT_RULES:
        out[field] = first_of(client, paths)

    country = first_of(client, COUNTRY_PATHS) or country_code or ""
    out["country_code"] = str(country).strip().upper()

    for field, paths in PACKAGE_RULES:
        out[field] = first_of(client, paths)
    for field in PACKAGE_NUMBER_FIELDS:
        out[field] = numberish(first_of(client, (("package", field), (field,))))
    out["ship_date"] = normalize_ship_date(first_of(client, SHIP_DATE_PATHS))

    out["order_id"] = first_of(client, ORDER_ID_PATHS)
    out["vat_reference"] = _vat_reference(client, policy)
    return out


def adapt_create(
    client: Optional[dict],
    policy: AdapterPolicy,
    country_code: Optional[str] = None,
) -> dict:
    """Adapt a client payload for shipment creation.

    Recipient and package fields move to the root; customs stays nested
    under ``customs``. Applying it to its own output changes nothing.

    Args:
        client: Client shipment description
        policy: Injected defaults
        country_code: Used when the payload carries no destination

    Returns:
        Flat shipment dict ready for POST /shipments
    """
    client = client or {}
    out = _flatten(client, policy, country_code)

    customs = {k: v for k, v in _customs_block(client).items() if v is not None}
    out["customs"] = customs

    apply_jurisdiction_defaults(out, policy)
    return prune(out)


def sanitize_line_item(
    item: dict,
    destination: str,
    origin_fallback: str,
) -> dict:
    """Clean one customs line item for international filing."""
    out = dict(item)
    if out.get("description"):
        out["description"] = asciiify(out["description"])[:95]
    if out.get("currency_code"):
        out["currency_code"] = str(out["currency_code"]).upper()
    if out.get("value_amount") is not None:
        out["value_amount"] = str(out["value_amount"])

    hs = clean_hs_code(
        out.get("hs_tariff_code") or out.get("hts_code") or out.get("harmonized_code")
    )
    if hs:
        out["hs_tariff_code"] = hs

    if destination and destination != "CA":
        origin = str(
            out.get("origin_country") or out.get("manufacture_country") or origin_fallback
        ).upper()
        out["origin_country"] = "GB" if origin == "UK" else origin
    return out


def adapt_refresh(
    client: Optional[dict],
    policy: AdapterPolicy,
    country_code: Optional[str] = None,
) -> dict:
    """Adapt a client payload for the refresh endpoint.

    Same flattening as creation, but customs fields are merged onto the root
    (the refresh endpoint rejects a nested ``customs``) and line items are
    sanitized.

    Args:
        client: Client shipment description
        policy: Injected defaults
        country_code: Used when the payload carries no destination

    Returns:
        Flat payload ready for PATCH /shipments/{id}/refresh
    """
    client = client or {}
    out = _flatten(client, policy, country_code)
    customs = _customs_block(client)

    origin_fallback = str(
        client.get("origin_country")
        or client.get("manufacture_country")
        or policy.default_origin_country
    )
    customs["line_items"] = [
        sanitize_line_item(item, out["country_code"], origin_fallback)
        for item in (customs["line_items"] or [])
        if isinstance(item, dict)
    ]
    out.update(customs)

    apply_jurisdiction_defaults(out, policy)
    return prune(out)
