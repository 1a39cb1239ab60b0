"""Chit Chats proxy endpoint.

One path, dispatched by HTTP method and a ``resource`` (query) or
``action`` (body) discriminator:

- GET  ?resource=batches[&status=]             list batches
- GET  ?resource=shipment&id=                  fetch one shipment
- GET  ?resource=search&orderId=|tracking=|q=  search shipments
- GET  ?resource=label&id=&format=zpl|pdf|png  proxy label bytes
- GET  (no resource)                           shipments ping (status=ready)
- POST {action: create|create_shipment|verify_to}
- PATCH {action: refresh|replace_shipment|buy|add|remove}
- DELETE ?resource=shipment&id=                delete a shipment
"""

from typing import Any, Awaitable
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError

from shipdesk.api.deps import (
    get_address_verifier,
    get_chitchats_client,
    get_open_batch_cache,
    get_shipment_search,
    get_shipment_service,
)
from shipdesk.api.errors import CORS_HEADERS, HANDLED_ERRORS, error_response
from shipdesk.config import get_settings
from shipdesk.schemas.chitchats import ChitChatsAction, ChitChatsQuery
from shipdesk.services.address import AddressVerifier
from shipdesk.services.chitchats import (
    ChitChatsClient,
    OpenBatchCache,
    ShipmentSearch,
    ShipmentService,
    ShipmentValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

REPLACE_ACTIONS = ("replace_shipment", "replace", "delete_recreate")


async def _guarded(operation: Awaitable[Any]) -> Any:
    """Await a handler, turning unexpected exceptions into a 500 envelope."""
    try:
        return await operation
    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.exception("Unhandled error in Chit Chats proxy")
        return error_response(500, str(e))


def _parse_query(request: Request) -> ChitChatsQuery:
    try:
        return ChitChatsQuery.model_validate(dict(request.query_params))
    except ValidationError as e:
        raise ShipmentValidationError(f"Invalid query parameters: {e.errors()[0]['msg']}")


async def _read_json(request: Request) -> dict:
    raw = await request.body()
    try:
        data = json.loads(raw) if raw else {}
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _verify_target(data: dict) -> dict:
    for key in ("to", "address"):
        if isinstance(data.get(key), dict):
            return data[key]
    return {}


async def _parse_body(request: Request) -> ChitChatsAction:
    return _validate_body(await _read_json(request))


def _validate_body(data: dict) -> ChitChatsAction:
    try:
        return ChitChatsAction.model_validate(data)
    except ValidationError as e:
        raise ShipmentValidationError(f"Invalid request body: {e.errors()[0]['msg']}")


@router.options("")
async def preflight() -> PlainTextResponse:
    """CORS preflight, always 200."""
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.get("")
async def handle_get(
    request: Request,
    client: ChitChatsClient = Depends(get_chitchats_client),
    search: ShipmentSearch = Depends(get_shipment_search),
    shipments: ShipmentService = Depends(get_shipment_service),
) -> Any:
    """Read operations selected by ``resource``."""
    return await _guarded(_dispatch_get(request, client, search, shipments))


async def _dispatch_get(
    request: Request,
    client: ChitChatsClient,
    search: ShipmentSearch,
    shipments: ShipmentService,
) -> Any:
    query = _parse_query(request)

    if query.resource == "label":
        label = await shipments.fetch_label(query.id or "", query.format)
        return Response(
            content=label.content,
            media_type=label.media_type,
            headers=CORS_HEADERS,
        )

    if query.resource == "batches":
        batches = await client.list_batches(status=query.status or None)
        return {"success": True, "batches": batches}

    if query.resource == "search":
        settings = get_settings()
        results = await search.search(
            query.to_search_query(
                default_page_size=settings.SEARCH_PAGE_SIZE,
                default_timeout_ms=settings.SEARCH_TIMEOUT_MS,
            )
        )
        return {"shipments": results}

    if query.resource == "shipment" and query.id:
        return await client.get_shipment_raw(query.id)

    data = await client.list_shipments(
        status=query.status or "ready",
        limit=query.limit,
        page=query.page,
    )
    return {"success": True, "data": data}


@router.post("")
async def handle_post(
    request: Request,
    client: ChitChatsClient = Depends(get_chitchats_client),
    shipments: ShipmentService = Depends(get_shipment_service),
    verifier: AddressVerifier = Depends(get_address_verifier),
    batch_cache: OpenBatchCache = Depends(get_open_batch_cache),
) -> Any:
    """Create a batch, create a shipment, or verify a recipient address."""
    return await _guarded(_dispatch_post(request, client, shipments, verifier, batch_cache))


async def _dispatch_post(
    request: Request,
    client: ChitChatsClient,
    shipments: ShipmentService,
    verifier: AddressVerifier,
    batch_cache: OpenBatchCache,
) -> Any:
    data = await _read_json(request)

    # verify_to accepts any body shape
    if str(data.get("action") or "").strip().lower() == "verify_to":
        return await verifier.verify(_verify_target(data))

    body = _validate_body(data)

    if body.action == "create":
        out = await client.create_batch(body.description or "")
        batch_cache.invalidate()
        location = out.headers.get("location") or None
        logger.info(f"Created batch {out.location_id}")
        return {"success": True, "id": out.location_id, "location": location}

    if body.action == "create_shipment":
        return await shipments.create(body.client_shipment)

    raise ShipmentValidationError("action must be create or create_shipment or verify_to")


@router.patch("")
async def handle_patch(
    request: Request,
    client: ChitChatsClient = Depends(get_chitchats_client),
    shipments: ShipmentService = Depends(get_shipment_service),
) -> Any:
    """Refresh, replace or buy a shipment, or change batch membership."""
    return await _guarded(_dispatch_patch(request, client, shipments))


async def _dispatch_patch(
    request: Request,
    client: ChitChatsClient,
    shipments: ShipmentService,
) -> Any:
    query = _parse_query(request)
    body = await _parse_body(request)
    shipment_id = body.target_id(query.id)

    if body.action == "refresh":
        return await shipments.refresh(shipment_id, body.payload or body.shipment or {})

    if body.action in REPLACE_ACTIONS:
        return await shipments.replace(shipment_id, body.client_shipment)

    if body.action == "buy":
        return await shipments.buy(shipment_id, body.postage_type)

    if body.action not in ("add", "remove"):
        raise ShipmentValidationError("action must be refresh|replace_shipment|buy|add|remove")

    batch_id = body.batch_id or query.batch_id
    shipment_ids = body.batch_shipment_ids(query.id)
    if not batch_id or not batch_id.isdigit() or int(batch_id) == 0 or not shipment_ids:
        raise ShipmentValidationError("batch_id + at least one shipment id required")

    if body.action == "add":
        await client.add_to_batch(int(batch_id), shipment_ids)
    else:
        await client.remove_from_batch(int(batch_id), shipment_ids)
    return {"success": True}


@router.delete("")
async def handle_delete(
    request: Request,
    client: ChitChatsClient = Depends(get_chitchats_client),
) -> Any:
    """Delete one shipment."""
    return await _guarded(_dispatch_delete(request, client))


async def _dispatch_delete(request: Request, client: ChitChatsClient) -> Any:
    query = _parse_query(request)
    if query.resource != "shipment" or not query.id:
        raise ShipmentValidationError("resource=shipment & id required")

    await client.delete_shipment(query.id)
    logger.info(f"Deleted shipment {query.id}")
    return {"success": True}
