"""
Query Service Errors

Exception types raised by the query service adapter and the resilience helpers
"""


class QueryServiceError(Exception):
    """Base error for anything that goes wrong talking to the query service"""


class QueryConnectionError(QueryServiceError):
    """The query service client could not be started or reached at all"""


class QueryTimeoutError(QueryServiceError):
    """A query did not finish within its time budget"""

    def __init__(self, timeout_ms: int):
        super().__init__(f'Query timed out after {timeout_ms}ms')
        self.timeout_ms = timeout_ms


class CircuitBreakerOpenError(QueryServiceError):
    """The circuit breaker is open and is rejecting calls"""

    def __init__(self):
        super().__init__('Circuit breaker is open - service unavailable')
