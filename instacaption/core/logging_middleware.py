import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("instacaption.timer")


class TimeLoggingMiddleware(BaseHTTPMiddleware):
    """Logs path, method, status and handling time of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        # Streamed bodies are still being sent; this is time to first byte
        process_time = time.perf_counter() - start_time
        logger.info(
            f"Path: {request.url.path} | "
            f"Method: {request.method} | "
            f"Status: {response.status_code} | "
            f"Time: {process_time:.4f}s"
        )

        return response
