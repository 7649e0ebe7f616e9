"""Request ID middleware: one traceable id per provider call.

Learn: The rest backend's calls arrive here one HTTP request per store
operation, so a trace id per request is what ties a client-side
"store.http_status" warning to the server-side log lines. The id is
taken from X-Request-ID when the caller sends a sane one, otherwise
generated, bound to structlog's contextvars together with the method
and path, and echoed back in the response header. Each request ends
with one "http.request" log line carrying status and duration.
"""

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"
_VALID_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def request_id_from(request: Request) -> str:
    """The caller's id if it looks like one, else a fresh UUID."""
    incoming = request.headers.get(REQUEST_ID_HEADER, "")
    return incoming if _VALID_ID.match(incoming) else str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the log context and return it to the caller."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request_id_from(request)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.debug(
            "http.request",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response
