import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Scrape and liveness traffic logged at debug only
_QUIET_PATHS = ("/metrics", "/health")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id and bind it into the structlog context.

    An incoming ``X-Request-ID`` is reused so a browser or proxy can correlate
    its own logs; otherwise a fresh uuid4 is issued. The id is echoed back on
    the response. For SSE responses the completion line is written when the
    headers go out, not when the stream ends.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        path = request.url.path
        log = logger.debug if path.startswith(_QUIET_PATHS) else logger.info
        log("request.started", method=request.method, path=path)

        start = time.monotonic()
        response = await call_next(request)

        log(
            "request.completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - start) * 1000),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
