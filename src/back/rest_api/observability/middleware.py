"""HTTP middleware for request correlation, metrics and access logging.

- ``RequestIdMiddleware``: accepts a well-formed ``X-Request-ID`` or
  mints one, exposes it through ``request_id_ctx`` and echoes it back.
- ``MetricsMiddleware``: Prometheus request counters, latency and
  in-flight gauge.
- ``RequestLoggingMiddleware``: one ``request_completed`` event per request.

Metric labels and log lines use the route the dispatch pipeline resolved
(``request.state.route``: an endpoint pattern or ``/api/{path}`` for file
operations) so label cardinality stays bounded by the configuration.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import clear_request_fields, get_logger, request_id_ctx
from .metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_FLIGHT,
    HTTP_REQUESTS_TOTAL,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = 'X-Request-ID'

_VALID_REQUEST_ID = re.compile(r'^[a-zA-Z0-9\-]{8,128}$')

# Fallback when the pipeline did not resolve a route (auth failures,
# non-API paths).
_API_PATH = re.compile(r'^/api/.+$')


def _normalize_path(path: str) -> str:
    """Collapse workspace paths into one label value."""
    return _API_PATH.sub('/api/{path}', path)


def route_label(request: Request) -> str:
    route = getattr(request.state, 'route', None)
    return route or _normalize_path(request.url.path)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Correlate every request with an ID; malformed incoming IDs are replaced."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER, '')
        rid = incoming if _VALID_REQUEST_ID.match(incoming) else str(uuid.uuid4())

        clear_request_fields()
        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response


class MetricsMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        method = request.method
        status = '500'
        HTTP_REQUESTS_IN_FLIGHT.inc()
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            HTTP_REQUESTS_IN_FLIGHT.dec()
            path = route_label(request)
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(
                time.perf_counter() - start,
            )
            HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status=status).inc()


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            'request_completed',
            method=request.method,
            path=request.url.path,
            route=route_label(request),
            user=getattr(request.state, 'user', None),
            client=request.client.host if request.client else None,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response
