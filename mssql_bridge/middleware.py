"""Request logging middleware."""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its outcome.

    Bodies of non-GET requests are logged at debug level.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        logger = structlog.stdlib.get_logger("mssql_bridge.http")
        method = request.method
        url = str(request.url.path)
        if request.url.query:
            url = f"{url}?{request.url.query}"

        if method != "GET":
            body = await request.body()
            if body:
                logger.debug("request_body", method=method, url=url, body=body.decode("utf-8", errors="replace"))

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        logger.info(
            "request_completed",
            method=method,
            url=url,
            status=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        return response
