"""HTTP middleware for request correlation and structured logging.

Bind a Request ID to the structlog context for every scrape and health
request, so log lines from concurrent scrapes can be told apart.
"""

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.webmon.core.logging_config import bind_contextvars, clear_contextvars, get_logger

logger = get_logger(__name__)


class RequestCorrelationMiddleware(BaseHTTPMiddleware):
    """Attach an `X-Request-ID` to every request and response.

    Scrapers that send their own ID keep it; otherwise a UUID4 is generated.
    """

    async def dispatch(self, request: Request, call_next):
        """Bind the request ID, serve the request and echo the ID back.

        Args:
            request: The incoming HTTP request.
            call_next: The next middleware or route handler in the chain.

        Returns:
            The HTTP response with the `X-Request-ID` header attached.
        """
        # Request handlers must not see keys left by a previous request.
        clear_contextvars()

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        bind_contextvars(request_id=request_id)

        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.debug(
            "Request served",
            path=request.url.path,
            status=response.status_code,
        )

        return response
