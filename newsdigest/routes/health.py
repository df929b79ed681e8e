"""
Health Routes

Liveness and readiness probes
"""

import time
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from newsdigest.dependencies import get_circuit_breaker, get_query_service
from newsdigest.services.query_service import QueryService
from newsdigest.services.retry import CircuitBreaker

router = APIRouter()


@router.get('/health')
async def health_check(request: Request):
    """Basic liveness probe"""
    return {
        'status': 'healthy',
        'version': request.app.state.settings.APP_VERSION,
        'uptime': int(time.time() - request.app.state.started_at),
        'timestamp': datetime.now(timezone.utc).isoformat()
    }


@router.get('/ready')
async def ready_check(
    query_service: QueryService = Depends(get_query_service),
    circuit_breaker: CircuitBreaker = Depends(get_circuit_breaker)
):
    """Readiness probe: degraded while the circuit breaker is open"""
    connection = 'connected' if query_service.is_started else 'disconnected'
    state = circuit_breaker.get_state()

    if state.is_open:
        return JSONResponse(
            status_code=503,
            content={
                'status': 'degraded',
                'message': 'Query service circuit breaker is open',
                'queryService': connection,
                'circuitBreaker': 'open',
                'failures': state.failures
            }
        )

    return {
        'status': 'ready',
        'queryService': connection,
        'circuitBreaker': 'closed',
        'failures': state.failures
    }
