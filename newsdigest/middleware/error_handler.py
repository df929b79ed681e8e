"""
Error Handler Middleware

Handles errors and returns consistent error responses
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from newsdigest.services.errors import CircuitBreakerOpenError
from newsdigest.services.logger import logger


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle validation errors
    """
    logger.warning(
        f"Validation error: {exc.errors()}",
        requestId=getattr(request.state, 'request_id', None),
        path=request.url.path
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            'error': 'Validation error',
            'details': jsonable_errors(exc)
        }
    )


def jsonable_errors(exc: RequestValidationError):
    """Validation errors without the non-serializable `ctx`/`input` payloads"""
    return [
        {'loc': list(err.get('loc', [])), 'msg': err.get('msg'), 'type': err.get('type')}
        for err in exc.errors()
    ]


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Handle HTTP exceptions
    """
    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        requestId=getattr(request.state, 'request_id', None),
        path=request.url.path,
        statusCode=exc.status_code
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            'error': exc.detail or 'An error occurred'
        }
    )


async def circuit_open_handler(request: Request, exc: CircuitBreakerOpenError):
    """
    The query service is being shielded after repeated failures
    """
    logger.warning(
        'Rejected request: circuit breaker open',
        requestId=getattr(request.state, 'request_id', None),
        path=request.url.path
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            'error': 'Service temporarily unavailable',
            'message': str(exc)
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle general exceptions
    """
    logger.error(
        f"Unhandled exception: {str(exc)}",
        requestId=getattr(request.state, 'request_id', None),
        path=request.url.path,
        error=str(exc),
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            'error': 'Internal server error',
            'message': 'An unexpected error occurred'
        }
    )
