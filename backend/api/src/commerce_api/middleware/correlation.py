"""Request correlation for the commerce API.

Every request runs under a correlation ID taken from X-Correlation-ID (or
generated), so log lines written by the core while handling it can be
joined. The ID is echoed on the response and one access line is logged per
request with the calling actor's role.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from commerce_core.utils.logging import clear_correlation_id, get_logger, set_correlation_id

CORRELATION_ID_HEADER = "X-Correlation-ID"
ACTOR_ROLE_HEADER = "X-Actor-Role"

logger = get_logger(__name__)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds a correlation ID to each request and logs its outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            clear_correlation_id()

        response.headers[CORRELATION_ID_HEADER] = correlation_id
        logger.info(
            "%s %s -> %d in %.1fms (actor %s, correlation %s)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request.headers.get(ACTOR_ROLE_HEADER, "anonymous"),
            correlation_id,
        )
        return response
