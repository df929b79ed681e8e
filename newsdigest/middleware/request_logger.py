"""
Request Logger Middleware

Gives every request a short id (or keeps the caller's X-Request-Id) and logs
it with timing. Health and readiness probes log at debug level.
"""

import time
import uuid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from newsdigest.services.logger import create_request_logger

PROBE_PATHS = ('/api/health', '/api/ready')


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """Tags requests with an id and logs start and finish"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get('x-request-id') or uuid.uuid4().hex[:8]
        request.state.request_id = request_id

        log = create_request_logger(request_id)
        log_at = log.debug if request.url.path in PROBE_PATHS else log.info
        start_time = time.perf_counter()

        log_at(
            f"→ {request.method} {request.url.path}",
            queryParams=dict(request.query_params),
            clientIp=request.client.host if request.client else None
        )

        try:
            response = await call_next(request)
        except Exception as error:
            log.error(
                f"✗ {request.method} {request.url.path} ERROR",
                error=str(error),
                durationMs=round((time.perf_counter() - start_time) * 1000, 1)
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 1)
        if response.headers.get('content-type', '').startswith('text/event-stream'):
            # Body is still streaming; this is time to first byte
            log_at(f"⇢ {request.method} {request.url.path} stream opened ({duration_ms}ms)", durationMs=duration_ms)
        else:
            log_at(
                f"← {request.method} {request.url.path} {response.status_code} ({duration_ms}ms)",
                statusCode=response.status_code,
                durationMs=duration_ms
            )

        response.headers['X-Request-Id'] = request_id
        return response
