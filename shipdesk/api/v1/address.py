"""Standalone recipient address verification (Smarty)."""

from typing import Any
import logging

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from shipdesk.api.deps import get_smarty_client
from shipdesk.api.errors import CORS_HEADERS, error_response
from shipdesk.schemas.chitchats import AddressVerifyRequest
from shipdesk.services.address import SmartyClient

logger = logging.getLogger(__name__)

router = APIRouter()


@router.options("/verify")
async def preflight() -> PlainTextResponse:
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.post("/verify")
async def verify_address(
    body: AddressVerifyRequest,
    smarty: SmartyClient = Depends(get_smarty_client),
) -> Any:
    """Verify and normalize a recipient address.

    Returns ``{suggested, raw}``; ``suggested`` is null when Smarty has no
    candidate. Unconfigured keys or a Smarty failure return an error.
    """
    try:
        return await smarty.verify(body.to)
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Smarty verification failed: {e}")
        return error_response(500, str(e))
