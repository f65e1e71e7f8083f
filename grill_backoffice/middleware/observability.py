from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from grill_backoffice.core.metrics import request_metrics
from grill_backoffice.core.request_context import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

_QUIET_PATHS = {"/healthz"}


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        status_code = 500
        endpoint = request.url.path
        method = request.method
        response = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            request_metrics.observe(endpoint=endpoint, method=method, status_code=status_code, duration_ms=duration_ms)

            if endpoint not in _QUIET_PATHS:
                level = logging.INFO
                if status_code >= 500:
                    level = logging.ERROR
                elif status_code >= 400:
                    level = logging.WARNING
                logger.log(
                    level,
                    "request completed",
                    extra={
                        "request_id": request_id,
                        "endpoint": endpoint,
                        "method": method,
                        "status_code": status_code,
                        "duration_ms": duration_ms,
                    },
                )

            if response is not None:
                response.headers["X-Request-ID"] = request_id

            clear_request_context()
