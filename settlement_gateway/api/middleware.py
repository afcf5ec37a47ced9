"""Request middleware: tracing id, access log and duration metrics in one pass"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from settlement_gateway.infrastructure.observability.metrics import request_duration_histogram

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Propagate the caller's request id (or mint one), then record how the
    request went.

    Durations are labelled with the route template, so settlement and
    business ids never become metric labels.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        duration = time.perf_counter() - started
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        request_duration_histogram.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).observe(duration)

        if response.status_code >= 500:
            logger.warning(
                "Request failed",
                extra={"request_id": request_id, "endpoint": endpoint, "status": response.status_code},
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
