"""CORS handling for the browser client."""

from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.datastructures import Headers
from starlette.responses import Response

from shipdesk.api.errors import CORS_HEADERS


class PreflightCORSMiddleware(CORSMiddleware):
    """CORSMiddleware whose preflight answer is always 200 ``ok`` with the
    fixed permissive header set, whatever method or headers are requested.
    """

    def preflight_response(self, request_headers: Headers) -> Response:
        return PlainTextResponse("ok", headers=CORS_HEADERS)
