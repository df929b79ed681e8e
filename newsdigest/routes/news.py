"""
News Routes

Aggregated news as a live event stream or a single JSON response, plus
topic summaries
"""

import asyncio
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from newsdigest.config import Settings, settings as default_settings
from newsdigest.dependencies import get_circuit_breaker, get_query_service, get_settings
from newsdigest.middleware.rate_limiter import api_limiter, stream_limiter
from newsdigest.services.aggregation_pipeline import AggregationPipeline
from newsdigest.services.errors import CircuitBreakerOpenError
from newsdigest.services.logger import logger
from newsdigest.services.news_types import EventType
from newsdigest.services.query_service import QueryService
from newsdigest.services.retry import CircuitBreaker
from newsdigest.services.topic_summary import summarize_topic

router = APIRouter()

HEARTBEAT_INTERVAL_S = 5.0

SSE_HEADERS = {
    'Cache-Control': 'no-cache',
    'Connection': 'keep-alive',
    'X-Accel-Buffering': 'no',  # Disable nginx buffering if proxied
    'Access-Control-Allow-Origin': '*',
}


class TopicRequest(BaseModel):
    topic: str


async def _event_stream(request: Request, pipeline: AggregationPipeline, days: int, max_results: int):
    """Forward pipeline events as SSE frames, with heartbeats while stages run"""
    request_id = getattr(request.state, 'request_id', 'unknown')
    events = pipeline.run(days, max_results)
    next_event = asyncio.ensure_future(events.__anext__())

    try:
        while True:
            done, _ = await asyncio.wait({next_event}, timeout=HEARTBEAT_INTERVAL_S)

            if await request.is_disconnected():
                logger.info('SSE client disconnected', requestId=request_id)
                break

            if not done:
                yield ': heartbeat\n\n'
                continue

            event = next_event.result()
            yield event.to_sse()
            if event.is_terminal:
                break
            next_event = asyncio.ensure_future(events.__anext__())
    finally:
        if not next_event.done():
            next_event.cancel()
            await asyncio.gather(next_event, return_exceptions=True)
        await events.aclose()


@router.get('/news-stream')
@stream_limiter
async def news_stream(
    request: Request,
    days: int = Query(default_settings.DEFAULT_DAYS, ge=1, description='Number of days to look back'),
    max_results: int = Query(default_settings.DEFAULT_MAX_RESULTS, ge=1, alias='max', description='Maximum stories returned'),
    query_service: QueryService = Depends(get_query_service),
    circuit_breaker: CircuitBreaker = Depends(get_circuit_breaker),
    app_settings: Settings = Depends(get_settings)
):
    """
    Stream aggregation progress as server-sent events
    Each frame is `data: {"type": ...}`; the last one is `complete` or `error`.
    """
    pipeline = AggregationPipeline(query_service, circuit_breaker, app_settings)
    return StreamingResponse(
        _event_stream(request, pipeline, days, max_results),
        media_type='text/event-stream',
        headers=SSE_HEADERS
    )


@router.get('/news')
@api_limiter
async def get_news(
    request: Request,
    days: int = Query(default_settings.DEFAULT_DAYS, ge=1),
    max_results: int = Query(default_settings.DEFAULT_MAX_RESULTS, ge=1, alias='max'),
    query_service: QueryService = Depends(get_query_service),
    circuit_breaker: CircuitBreaker = Depends(get_circuit_breaker),
    app_settings: Settings = Depends(get_settings)
):
    """
    Run the aggregation and return the result in one response
    Returns: { news: [...], stats: {...} }
    """
    pipeline = AggregationPipeline(query_service, circuit_breaker, app_settings)
    event = await pipeline.aggregate(days, max_results)

    if event.type == EventType.ERROR:
        logger.error('Error fetching news', requestId=getattr(request.state, 'request_id', None), error=event.message)
        return JSONResponse(
            status_code=500,
            content={'error': 'Failed to fetch news', 'details': event.message}
        )

    return event.data


@router.post('/summarize-topic')
@api_limiter
async def summarize_topic_route(
    request: Request,
    body: TopicRequest,
    query_service: QueryService = Depends(get_query_service),
    circuit_breaker: CircuitBreaker = Depends(get_circuit_breaker),
    app_settings: Settings = Depends(get_settings)
):
    """
    Summarize coverage of one topic across the news folder
    Accepts: { topic }
    Returns: { summary }
    """
    if not body.topic.strip():
        raise HTTPException(status_code=400, detail='Topic is required')

    try:
        summary = await summarize_topic(query_service, circuit_breaker, body.topic, app_settings)
    except CircuitBreakerOpenError:
        raise
    except Exception as error:
        logger.error(
            f'Error summarizing topic: {str(error)}',
            requestId=getattr(request.state, 'request_id', None),
            topic=body.topic
        )
        return JSONResponse(status_code=500, content={'error': 'Failed to summarize topic'})

    return {'summary': summary}
