"""
Request middleware for tracking and logging.

Assigns every request an id (honoring an incoming X-Request-ID), logs the
request line and outcome, and flags slow requests.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.logging_config import get_logger

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request id propagation plus timing.

    Adds X-Request-ID and X-Response-Time headers to every response.
    """

    def __init__(self, app: ASGIApp, slow_request_seconds: float = 1.0):
        super().__init__(app)
        self.slow_request_seconds = slow_request_seconds

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {request.url.path}: {e}",
                exc_info=True,
                extra={"request_id": request_id},
            )
            raise

        duration = time.time() - start_time
        log_extra = {
            "request_id": request_id,
            "status_code": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        logger.info(f"{request.method} {request.url.path} - {response.status_code} - {duration:.3f}s", extra=log_extra)

        if duration > self.slow_request_seconds:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} took {duration:.3f}s",
                extra={**log_extra, "slow_request": True},
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}"
        return response
