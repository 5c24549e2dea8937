import logging
import re
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from business_service.core.logging import request_id_ctx_var, latency_bucket_ms

logger = logging.getLogger("business_service.http")

# Incoming ids are echoed into headers and logs; anything else gets a fresh uuid.
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _accept_incoming(value: Optional[str]) -> Optional[str]:
    if value and _VALID_REQUEST_ID.match(value):
        return value
    return None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request_id for the duration of each request and log its outcome."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = _accept_incoming(request.headers.get(self.header_name)) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)

        response.headers[self.header_name] = rid
        logger.info(
            "request.complete",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_bucket": latency_bucket_ms((time.perf_counter() - started) * 1000),
            },
        )
        return response
