"""Request context middleware."""

import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from convocrm.core.request_context import clear_request_id, set_request_id

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags every log line of a request with one request id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Set the request id for the duration of the request.

        An incoming ``X-Request-ID`` header is reused, otherwise one is
        generated. The id is echoed back on the response.
        """
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_id()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
