"""
Rate Limiter Middleware

Per-client limits (slowapi) on the aggregation endpoints. One aggregation
fans out dozens of backend queries, so the stream gets the tightest limit.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse
from newsdigest.config import settings
from newsdigest.services.logger import logger


def client_key(request: Request) -> str:
    """Client address; the first X-Forwarded-For hop when proxy headers are trusted"""
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get('x-forwarded-for', '')
        if forwarded:
            return forwarded.split(',')[0].strip()
    return get_remote_address(request)


limiter = Limiter(key_func=client_key)

stream_limiter = limiter.limit(settings.STREAM_RATE_LIMIT)
api_limiter = limiter.limit(settings.API_RATE_LIMIT)


def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """429 with the client-facing message and a Retry-After hint"""
    logger.warning(
        f'Rate limit exceeded on {request.url.path}',
        requestId=getattr(request.state, 'request_id', None),
        client=client_key(request),
        limit=str(exc.detail)
    )
    return JSONResponse(
        status_code=429,
        content={
            'error': 'Too many requests, please try again later',
            'message': f'Limit: {exc.detail}'
        },
        headers={'Retry-After': str(exc.limit.limit.get_expiry())}
    )
