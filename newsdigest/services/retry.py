"""
Retry Service

Provides retry logic with exponential backoff and a circuit breaker for
calls to the query service
"""

import asyncio
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar
from newsdigest.config import Settings
from newsdigest.services.errors import CircuitBreakerOpenError
from newsdigest.services.logger import logger

T = TypeVar('T')

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000
DEFAULT_BACKOFF_MULTIPLIER = 2

# Jitter is drawn from [0, JITTER_RATIO * exponential delay)
JITTER_RATIO = 0.3


def calculate_delay(
    attempt: int,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
) -> float:
    """
    Calculate delay for a given attempt with exponential backoff + jitter
    Args:
        attempt: Zero-based attempt index that just failed
        base_delay_ms: Delay before the first retry
        max_delay_ms: Upper bound for any delay
        backoff_multiplier: Growth factor between attempts
    Returns:
        Delay in milliseconds
    """
    exponential_delay = base_delay_ms * (backoff_multiplier ** attempt)
    jitter = random.random() * JITTER_RATIO * exponential_delay
    return min(exponential_delay + jitter, max_delay_ms)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    on_retry: Optional[Callable[[int, Exception, float], Any]] = None
) -> T:
    """
    Execute an async operation with retry logic and exponential backoff
    Args:
        operation: Zero-argument callable returning an awaitable
        max_retries: Retries after the initial attempt
        base_delay_ms: Base backoff delay
        max_delay_ms: Maximum backoff delay
        backoff_multiplier: Exponential growth factor
        on_retry: Called with (attempt_number, error, delay_ms) before each backoff sleep
    Returns:
        Result of the first successful attempt
    """
    last_error: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except Exception as error:
            last_error = error

            if attempt < max_retries:
                delay_ms = calculate_delay(attempt, base_delay_ms, max_delay_ms, backoff_multiplier)

                if on_retry:
                    on_retry(attempt + 1, error, delay_ms)

                await asyncio.sleep(delay_ms / 1000)

    raise last_error


@dataclass
class CircuitBreakerState:
    """Snapshot of circuit breaker counters"""
    failures: int = 0
    last_failure: float = 0.0
    is_open: bool = False


class CircuitBreaker:
    """
    Circuit breaker to prevent cascading failures

    Opens after `failure_threshold` consecutive failures and rejects calls
    until `reset_timeout_ms` has passed since the last failure. State changes
    never await between the check and the mutation, so a single event loop
    can share one breaker across tasks without a lock.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_ms: float = 60000,
        on_open: Optional[Callable[[], Any]] = None,
        on_close: Optional[Callable[[], Any]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.on_open = on_open
        self.on_close = on_close
        self._clock = clock
        self._state = CircuitBreakerState()

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run the operation unless the breaker is open
        Raises:
            CircuitBreakerOpenError: breaker open and cooldown not yet elapsed
        """
        if self._check_open():
            raise CircuitBreakerOpenError()

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    @property
    def is_open(self) -> bool:
        return self._state.is_open

    def get_state(self) -> CircuitBreakerState:
        return replace(self._state)

    def _check_open(self) -> bool:
        if not self._state.is_open:
            return False

        # Half-open: let the next call through once the cooldown has passed
        elapsed_ms = (self._clock() - self._state.last_failure) * 1000
        if elapsed_ms >= self.reset_timeout_ms:
            self._reset()
            return False

        return True

    def _on_success(self):
        if self._state.failures > 0:
            self._reset()

    def _on_failure(self):
        self._state.failures += 1
        self._state.last_failure = self._clock()

        if self._state.failures >= self.failure_threshold and not self._state.is_open:
            self._state.is_open = True
            logger.warning(
                f'Circuit breaker opened after {self._state.failures} failures',
                failures=self._state.failures
            )
            if self.on_open:
                self.on_open()

    def _reset(self):
        was_open = self._state.is_open
        self._state = CircuitBreakerState()
        if was_open and self.on_close:
            self.on_close()


def create_circuit_breaker(app_settings: Settings) -> CircuitBreaker:
    """Process-wide breaker guarding the query service"""
    return CircuitBreaker(
        failure_threshold=app_settings.CIRCUIT_FAILURE_THRESHOLD,
        reset_timeout_ms=app_settings.CIRCUIT_RESET_TIMEOUT_MS,
        on_open=lambda: logger.warning('Circuit breaker opened - query service temporarily unavailable'),
        on_close=lambda: logger.info('Circuit breaker closed - query service available again')
    )
