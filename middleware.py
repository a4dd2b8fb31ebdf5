# middleware.py
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.metrics import increment_http_requests
from services.observability import set_request_id

logger = logging.getLogger("mredeo.http")

REQUEST_ID_HEADER = "X-Request-Id"


def _route_label(request: Request) -> str:
    # template path keeps the label set bounded (no payment ids)
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:128] or str(uuid.uuid4())
        request.state.request_id = req_id
        set_request_id(req_id)
        start = time.time()

        response = None
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = req_id
            return response
        finally:
            duration_ms = int((time.time() - start) * 1000)
            status = getattr(response, "status_code", 500)
            increment_http_requests(_route_label(request), status)
            logger.info(
                "http_request method=%s path=%s status=%s duration_ms=%s user_id=%s",
                request.method,
                request.url.path,
                status,
                duration_ms,
                getattr(request.state, "user_id", None),
            )
            set_request_id(None)
