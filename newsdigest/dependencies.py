"""
Route Dependencies

Shared services live on app.state; routes reach them through these helpers
"""

from fastapi import Request
from newsdigest.config import Settings
from newsdigest.services.query_service import QueryService
from newsdigest.services.retry import CircuitBreaker


def get_query_service(request: Request) -> QueryService:
    return request.app.state.query_service


def get_circuit_breaker(request: Request) -> CircuitBreaker:
    return request.app.state.circuit_breaker


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
