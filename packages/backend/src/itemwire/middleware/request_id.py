"""Request ID middleware — one correlation id per request or broadcast cycle.

Learn: An event producer's POST /events and the change listener's
pushes to /@connections carry X-Request-ID; the listener mints one per
cycle and ConnectionsApiTransport forwards it on every push. Whatever
arrives (or a fresh UUID) is bound to structlog's contextvars, so the
API server's broadcast and push logs line up with the caller's, and is
echoed back in the response header.
"""

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from itemwire.fanout.transport import REQUEST_ID_HEADER


def new_request_id() -> str:
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Adopt or mint a request id and bind it for the request's logs."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or new_request_id()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, path=request.url.path
        )

        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
