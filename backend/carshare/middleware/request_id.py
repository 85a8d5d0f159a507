# backend/carshare/middleware/request_id.py
"""
Request id middleware.

Takes ``X-Request-ID`` from the caller or generates one, stores it in the
request context for log records and problem responses, and echoes it back.
"""

import logging
import time
from typing import Callable
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.request_context import reset_request_id, set_request_id

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = set_request_id(request_id)
        start_time = time.time()
        try:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000
            if duration_ms > SLOW_REQUEST_MS:
                logger.warning(
                    "Slow request %s %s took %.0fms",
                    request.method,
                    request.url.path,
                    duration_ms,
                )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            reset_request_id(token)
