import logging
import re
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from creditsuite.core.logging import request_id_ctx_var, latency_bucket_ms

_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,100}$")


def _sanitize(value):
    if value and _SAFE_ID.match(value):
        return value
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach request_id and guest_id to each request and log completion.

    Anonymous callers are tracked by an opaque guest id. One is minted when the
    client does not send one, and it is echoed back so the client can persist it.
    """

    def __init__(self, app, header_name: str = "x-request-id", guest_header: str = "x-guest-id"):
        super().__init__(app)
        self.header_name = header_name
        self.guest_header = guest_header

    async def dispatch(self, request, call_next):
        rid = _sanitize(request.headers.get(self.header_name)) or str(uuid4())
        guest_id = _sanitize(request.headers.get(self.guest_header)) or f"guest-{uuid4().hex}"
        request.state.request_id = rid
        request.state.guest_id = guest_id
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers[self.header_name] = rid
        response.headers[self.guest_header] = guest_id

        logger = logging.getLogger("creditsuite")
        logger.info(
            "request.complete",
            extra={
                "request_id": rid,
                "path": request.url.path,
                "method": request.method,
                "status": getattr(response, "status_code", None),
                "latency_bucket": latency_bucket_ms(duration_ms),
            },
        )
        return response
