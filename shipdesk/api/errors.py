"""Error envelope: every failure renders as {"error": ...} with CORS headers."""

from typing import Any
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shipdesk.services.address import SmartyError
from shipdesk.services.chitchats import (
    ChitChatsAPIError,
    ChitChatsConfigError,
    ShipmentError,
)
from shipdesk.services.ratelimit import RateLimitExhausted

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS,PATCH,DELETE",
}

HANDLED_ERRORS = (
    ChitChatsAPIError,
    ChitChatsConfigError,
    ShipmentError,
    SmartyError,
    RateLimitExhausted,
)


def error_response(status_code: int, error: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error},
        headers=CORS_HEADERS,
    )


async def _chitchats_api_error(request: Request, exc: ChitChatsAPIError) -> JSONResponse:
    body = exc.response_body if exc.response_body not in (None, "") else exc.message
    return error_response(exc.status_code, body)


async def _message_error(request: Request, exc: Exception) -> JSONResponse:
    status_code = getattr(exc, "status_code", None) or 500
    return error_response(status_code, getattr(exc, "message", str(exc)))


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for the domain exceptions."""
    app.add_exception_handler(ChitChatsAPIError, _chitchats_api_error)
    app.add_exception_handler(ChitChatsConfigError, _message_error)
    app.add_exception_handler(ShipmentError, _message_error)
    app.add_exception_handler(SmartyError, _message_error)
    app.add_exception_handler(RateLimitExhausted, _message_error)
