"""
Pytest configuration and fixtures

The query service is replaced by an in-memory fake whose replies are
scripted per test
"""

import asyncio
import contextlib
import pytest
from typing import Callable, List, Tuple, Union
from fastapi.testclient import TestClient
from newsdigest.config import Settings
from newsdigest.main import create_app
from newsdigest.middleware.rate_limiter import limiter
from newsdigest.services.news_types import NewsItem, RawEmail
from newsdigest.services.query_service import (
    MESSAGE, MESSAGE_DELTA, QueryService, QuerySession, SessionConfig, SessionEvent
)
from newsdigest.services.retry import CircuitBreaker

Reply = Union[str, Exception]
Responder = Callable[[SessionConfig, str], Reply]


class FakeSession(QuerySession):
    """Replays the responder's text as a few message deltas"""

    def __init__(self, service: 'FakeQueryService', config: SessionConfig):
        super().__init__(config)
        self.service = service

    async def stream(self, prompt: str):
        self.service.prompts.append((self.config, prompt))
        reply = self.service.responder(self.config, prompt)
        if isinstance(reply, Exception):
            raise reply
        for start in range(0, len(reply), 40):
            yield SessionEvent(MESSAGE_DELTA, {'delta_content': reply[start:start + 40]})
        yield SessionEvent(MESSAGE)

    async def destroy(self):
        self.service.destroyed += 1
        await super().destroy()


class FakeQueryService(QueryService):
    """Query service double recording every prompt"""

    def __init__(self, responder: Responder = None, start_error: Exception = None):
        super().__init__()
        self.responder = responder or (lambda config, prompt: '[]')
        self.start_error = start_error
        self.prompts: List[Tuple[SessionConfig, str]] = []
        self.created = 0
        self.destroyed = 0
        self.stopped = False

    async def start(self):
        if self.start_error:
            raise self.start_error

    async def stop(self):
        self.stopped = True
        await super().stop()

    async def create_session(self, config: SessionConfig) -> QuerySession:
        await self.ensure_started()
        self.created += 1
        return FakeSession(self, config)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limit counters are process-wide; start every test fresh"""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def settings():
    """Settings with fast, predictable values"""
    return Settings(
        QUERY_SERVICE_URL='http://query.test/v1',
        NEWS_FOLDER='Inbox/news',
        MAILBOX_TOOLS='ask_work_iq',
        EXTRACTION_BATCH_SIZE=5,
    )


@pytest.fixture
def fake_query_service():
    return FakeQueryService()


@pytest.fixture
def circuit_breaker():
    return CircuitBreaker(failure_threshold=5, reset_timeout_ms=60000)


@pytest.fixture
def app(fake_query_service, circuit_breaker, settings):
    """App wired to the fake query service"""
    return create_app(
        query_service=fake_query_service,
        circuit_breaker=circuit_breaker,
        app_settings=settings
    )


@pytest.fixture
def client(app):
    """FastAPI test client"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_news_item():
    """Factory for stories with sensible defaults"""
    def _make(id: str, subject: str, source: str = 'WSJ', summary: str = None,
              date: str = '2026-01-30', email_url: str = '') -> NewsItem:
        return NewsItem(
            id=id,
            subject=subject,
            sender=f'{source} Newsletter',
            date=date,
            summary=summary or f'Summary of {subject}.',
            source=source,
            email_url=email_url,
            original_email_id=f'{date}-0'
        )
    return _make


@pytest.fixture
def sample_emails():
    return [
        RawEmail(id='2026-01-30-0', subject='Morning Briefing', sender='WSJ Markets',
                 date='2026-01-30', email_url='https://mail.example.com/1', source='WSJ'),
        RawEmail(id='2026-01-30-1', subject='Tech Roundup', sender='The New York Times',
                 date='2026-01-30', email_url='', source='NYT'),
    ]


@pytest.fixture
def trip_breaker(circuit_breaker):
    """Open the shared circuit breaker by failing it up to its threshold"""
    async def fail():
        raise ConnectionError('query service down')

    async def trip():
        for _ in range(circuit_breaker.failure_threshold):
            with contextlib.suppress(ConnectionError):
                await circuit_breaker.execute(fail)

    def _trip():
        asyncio.run(trip())
        assert circuit_breaker.is_open
    return _trip
