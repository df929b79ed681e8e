"""
FastAPI Main Application

Entry point for the news digest service
"""

import os
import time
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi.errors import RateLimitExceeded
from newsdigest.config import Settings, settings as default_settings, validate_env
from newsdigest.middleware.request_logger import RequestLoggerMiddleware
from newsdigest.middleware.error_handler import (
    validation_exception_handler,
    http_exception_handler,
    circuit_open_handler,
    general_exception_handler
)
from newsdigest.middleware.rate_limiter import limiter, rate_limit_handler
from newsdigest.routes import health, news
from newsdigest.services.errors import CircuitBreakerOpenError
from newsdigest.services.logger import logger
from newsdigest.services.query_service import HttpQueryService, QueryService
from newsdigest.services.retry import CircuitBreaker, create_circuit_breaker


def create_app(
    query_service: Optional[QueryService] = None,
    circuit_breaker: Optional[CircuitBreaker] = None,
    app_settings: Optional[Settings] = None
) -> FastAPI:
    """
    Build the application
    Args:
        query_service: Agent backend (defaults to the HTTP gateway from settings)
        circuit_breaker: Breaker shared by all requests
        app_settings: Settings override
    """
    app_settings = app_settings or default_settings

    app = FastAPI(
        title="News Digest API",
        description="Aggregates newsletter emails into deduplicated, summarized news",
        version=app_settings.APP_VERSION
    )

    app.state.settings = app_settings
    app.state.started_at = time.time()
    # Not started here; the client connects on first use
    app.state.query_service = query_service or HttpQueryService(
        app_settings.QUERY_SERVICE_URL,
        app_settings.QUERY_SERVICE_API_KEY
    )
    app.state.circuit_breaker = circuit_breaker or create_circuit_breaker(app_settings)

    # CORS configuration
    cors_origins = os.getenv('ALLOWED_ORIGINS', '').split(',') if os.getenv('ALLOWED_ORIGINS') else ['*']
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    # Add request logging middleware
    app.add_middleware(RequestLoggerMiddleware)

    # Add rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

    # Add error handlers
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(CircuitBreakerOpenError, circuit_open_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.on_event('startup')
    async def startup_event():
        """Log configuration problems without refusing to boot"""
        logger.info('Starting News Digest...')
        if not validate_env():
            logger.warning('QUERY_SERVICE_URL is not set - aggregation requests will fail')
        logger.info('News Digest started successfully', newsFolder=app_settings.NEWS_FOLDER)

    @app.on_event('shutdown')
    async def shutdown_event():
        """Cleanup on shutdown"""
        logger.info('Shutting down News Digest...')
        await app.state.query_service.stop()

    app.include_router(health.router, prefix='/api', tags=['health'])
    app.include_router(news.router, prefix='/api', tags=['news'])

    return app


app = create_app()


if __name__ == '__main__':
    import uvicorn
    port = int(os.getenv('PORT', str(default_settings.PORT)))
    uvicorn.run(app, host='0.0.0.0', port=port)
