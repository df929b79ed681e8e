"""
Query Service

Client interface for the agent backend that answers natural-language
queries (with mailbox tools attached when asked). A service hands out
lightweight sessions; each session streams text deltas for one prompt and
is always destroyed after use.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import httpx
from newsdigest.services.errors import QueryConnectionError, QueryServiceError, QueryTimeoutError
from newsdigest.services.logger import logger

MESSAGE_DELTA = 'assistant.message_delta'
MESSAGE = 'assistant.message'
TOOL_START = 'tool.execution_start'
TOOL_COMPLETE = 'tool.execution_complete'


@dataclass
class SessionConfig:
    """Per-session model and instructions"""
    model: str
    system_message: str
    tools: List[str] = field(default_factory=list)


@dataclass
class SessionEvent:
    """One streamed notification from a session"""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)


SessionEventHandler = Callable[[SessionEvent], Any]


class QuerySession(ABC):
    """A single conversation with the agent backend"""

    def __init__(self, config: SessionConfig):
        self.config = config
        self._handlers: List[SessionEventHandler] = []

    def on(self, handler: SessionEventHandler) -> Callable[[], None]:
        """Register an event handler; returns a callable that unregisters it"""
        self._handlers.append(handler)
        return lambda: self._handlers.remove(handler)

    @abstractmethod
    def stream(self, prompt: str) -> AsyncIterator[SessionEvent]:
        """Send a prompt and yield events until the response is finished"""

    async def send_and_wait(self, prompt: str, timeout_ms: int) -> str:
        """
        Send a prompt and wait for the full response text
        Args:
            prompt: User prompt
            timeout_ms: Upper bound for the whole exchange
        Returns:
            Concatenated message deltas
        Raises:
            QueryTimeoutError: response did not finish in time
        """
        async def collect() -> str:
            chunks: List[str] = []
            async for event in self.stream(prompt):
                for handler in list(self._handlers):
                    handler(event)
                if event.type == MESSAGE_DELTA:
                    chunks.append(event.data.get('delta_content') or '')
            return ''.join(chunks)

        try:
            return await asyncio.wait_for(collect(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise QueryTimeoutError(timeout_ms)

    async def destroy(self):
        """Release the session"""
        self._handlers.clear()


class QueryService(ABC):
    """Session factory for the agent backend"""

    def __init__(self):
        self.is_started = False
        self._start_lock: Optional[asyncio.Lock] = None

    async def ensure_started(self):
        """Start the client on first use; concurrent callers share one start"""
        if self.is_started:
            return
        if self._start_lock is None:
            # Created here so it binds to the running loop
            self._start_lock = asyncio.Lock()
        async with self._start_lock:
            if not self.is_started:
                await self.start()
                self.is_started = True

    async def start(self):
        """Connect to the backend"""

    async def stop(self):
        """Disconnect from the backend"""
        self.is_started = False

    @abstractmethod
    async def create_session(self, config: SessionConfig) -> QuerySession:
        """Create a new session"""

    @asynccontextmanager
    async def open_session(self, config: SessionConfig):
        """Create a session and destroy it on exit, success or failure"""
        session = await self.create_session(config)
        try:
            yield session
        finally:
            await session.destroy()

    async def ask(self, config: SessionConfig, prompt: str, timeout_ms: int) -> str:
        """One-shot query in a fresh session"""
        async with self.open_session(config) as session:
            return await session.send_and_wait(prompt, timeout_ms)


class HttpQuerySession(QuerySession):
    """Session backed by an OpenAI-compatible streaming chat completions endpoint"""

    def __init__(self, client: httpx.AsyncClient, config: SessionConfig):
        super().__init__(config)
        self._client = client
        self._messages: List[Dict[str, str]] = [
            {'role': 'system', 'content': config.system_message}
        ]

    def _request_body(self, prompt: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'model': self.config.model,
            'stream': True,
            'messages': self._messages + [{'role': 'user', 'content': prompt}]
        }
        if self.config.tools:
            # Tools run on the gateway; we only name the ones this session may use
            body['server_tools'] = list(self.config.tools)
        return body

    async def stream(self, prompt: str) -> AsyncIterator[SessionEvent]:
        body = self._request_body(prompt)
        reply: List[str] = []

        async with self._client.stream('POST', 'chat/completions', json=body) as response:
            if not response.is_success:
                error_body = (await response.aread()).decode('utf-8', errors='replace')
                logger.error(
                    f'Query service error: HTTP {response.status_code}',
                    statusCode=response.status_code,
                    responseText=error_body[:200]
                )
                raise QueryServiceError(f'Query service error: {response.status_code} - {error_body[:200]}')

            async for line in response.aiter_lines():
                event = parse_stream_line(line)
                if event is None:
                    continue
                if event.type == MESSAGE_DELTA:
                    reply.append(event.data.get('delta_content') or '')
                yield event
                if event.type == MESSAGE:
                    break

        self._messages.append({'role': 'user', 'content': prompt})
        self._messages.append({'role': 'assistant', 'content': ''.join(reply)})


def parse_stream_line(line: str) -> Optional[SessionEvent]:
    """
    Parse one line of the gateway's SSE stream
    Content chunks become message deltas, tool notices pass through, and the
    [DONE] sentinel marks the end of the message.
    """
    line = line.strip()
    if not line.startswith('data:'):
        return None

    payload = line[len('data:'):].strip()
    if payload == '[DONE]':
        return SessionEvent(MESSAGE)

    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug(f'Ignoring malformed stream chunk: {payload[:100]}')
        return None

    if not isinstance(chunk, dict):
        return None

    if chunk.get('type') == TOOL_START:
        return SessionEvent(TOOL_START, {'tool_name': chunk.get('tool_name', '')})
    if chunk.get('type') == TOOL_COMPLETE:
        return SessionEvent(TOOL_COMPLETE, {'tool_name': chunk.get('tool_name', '')})

    choices = chunk.get('choices') or []
    if not choices:
        return None
    content = (choices[0].get('delta') or {}).get('content')
    if not content:
        return None
    return SessionEvent(MESSAGE_DELTA, {'delta_content': content})


class HttpQueryService(QueryService):
    """Query service that talks to the agent gateway over HTTP"""

    def __init__(self, base_url: str, api_key: str = '', transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__()
        self.base_url = base_url.rstrip('/') + '/'
        self.api_key = api_key
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self):
        if not self.base_url.strip('/'):
            raise QueryConnectionError('QUERY_SERVICE_URL is not configured')

        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'

        # Per-call timeouts are enforced by send_and_wait
        client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(None, connect=10.0),
            transport=self._transport
        )
        try:
            response = await client.get('models')
        except httpx.HTTPError as error:
            await client.aclose()
            raise QueryConnectionError(f'Cannot reach query service at {self.base_url}: {str(error)}') from error

        if not response.is_success:
            await client.aclose()
            raise QueryConnectionError(f'Query service health probe failed: HTTP {response.status_code}')

        self._client = client
        logger.info('Connected to query service', baseUrl=self.base_url)

    async def stop(self):
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info('Disconnected from query service')
        await super().stop()

    async def create_session(self, config: SessionConfig) -> QuerySession:
        await self.ensure_started()
        return HttpQuerySession(self._client, config)
