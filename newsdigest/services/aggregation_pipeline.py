"""
Aggregation Pipeline

Runs the three aggregation stages end to end and streams progress:

  1. Fetch    - list newsletter emails for each day in the window (parallel per day)
  2. Extract  - split emails into summarized stories (parallel per batch)
  3. Merge    - cluster duplicate stories and synthesize each cluster (parallel per cluster)

then sorts by date (newest first) and keeps the first `max_results`.

Failures inside a stage only shrink the output; the stats in the final
event show how many items survived each stage. Anything that escapes the
stages (e.g. the query service cannot be reached at all) ends the run with
a single error event.
"""

import asyncio
from datetime import date, datetime, timezone
from enum import Enum
from typing import AsyncIterator, List, Optional, Set
from newsdigest.config import Settings
from newsdigest.services.duplicate_merger import DuplicateMergeStage
from newsdigest.services.email_fetcher import EmailFetchStage
from newsdigest.services.logger import logger
from newsdigest.services.news_types import AggregationStats, MergedNewsItem, ProgressEvent
from newsdigest.services.query_service import QueryService
from newsdigest.services.retry import CircuitBreaker
from newsdigest.services.story_extractor import StoryExtractionStage

# Runs abandoned by their consumer keep going until their in-flight queries finish
_background_runs: Set[asyncio.Task] = set()


class PipelineState(str, Enum):
    IDLE = 'idle'
    FETCHING = 'fetching'
    EXTRACTING = 'extracting'
    MERGING = 'merging'
    SORTING = 'sorting'
    COMPLETE = 'complete'
    FAILED = 'failed'


def _sort_key(item: MergedNewsItem) -> datetime:
    """Parsed item date; missing or unparseable dates sort as earliest"""
    try:
        parsed = datetime.fromisoformat(item.date.strip())
    except (ValueError, AttributeError):
        return datetime.min
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def sort_and_limit(items: List[MergedNewsItem], max_results: int) -> List[MergedNewsItem]:
    """Newest first, truncated to max_results"""
    return sorted(items, key=_sort_key, reverse=True)[:max_results]


class AggregationPipeline:
    """One aggregation run over the news folder"""

    def __init__(
        self,
        query_service: QueryService,
        circuit_breaker: CircuitBreaker,
        settings: Settings,
        today: Optional[date] = None
    ):
        self.query_service = query_service
        self.settings = settings
        self.today = today
        self.fetch_stage = EmailFetchStage(query_service, circuit_breaker, settings)
        self.extract_stage = StoryExtractionStage(query_service, settings)
        self.merge_stage = DuplicateMergeStage(query_service, settings)
        self.state = PipelineState.IDLE
        self.stats = AggregationStats()

    async def run(self, days: int = 3, max_results: int = 50) -> AsyncIterator[ProgressEvent]:
        """
        Run the pipeline, yielding progress events
        The last event is either `complete` or `error`. Closing the iterator
        early stops delivery but lets in-flight work finish in the background.
        """
        if days < 1:
            raise ValueError('days must be at least 1')
        if max_results < 1:
            raise ValueError('max_results must be at least 1')

        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._execute(days, max_results, queue))
        _background_runs.add(task)
        task.add_done_callback(_background_runs.discard)

        while True:
            event = await queue.get()
            yield event
            if event.is_terminal:
                break

    async def aggregate(self, days: int = 3, max_results: int = 50) -> ProgressEvent:
        """Run to completion and return the terminal event"""
        last_event = None
        async for event in self.run(days, max_results):
            last_event = event
        return last_event

    async def _execute(self, days: int, max_results: int, queue: asyncio.Queue):
        def emit(message: str):
            queue.put_nowait(ProgressEvent.status(message))

        try:
            news = await self._run_stages(days, max_results, emit)
        except Exception as error:
            self.state = PipelineState.FAILED
            logger.error(f'Aggregation failed: {str(error)}', error=str(error), exc_info=True)
            queue.put_nowait(ProgressEvent.error(str(error)))
            return

        self.state = PipelineState.COMPLETE
        logger.info(
            f'Aggregation complete: {self.stats.displayed} stories',
            emailsFetched=self.stats.emails_fetched,
            storiesExtracted=self.stats.stories_extracted,
            afterMerge=self.stats.after_merge,
            displayed=self.stats.displayed
        )
        queue.put_nowait(ProgressEvent.complete(news, self.stats))

    async def _run_stages(self, days: int, max_results: int, emit) -> List[MergedNewsItem]:
        emit('🔄 Connecting to query service...')
        await self.query_service.ensure_started()

        # STEP 1: Fetch email metadata
        self.state = PipelineState.FETCHING
        emit(f'📬 STEP 1: Fetching emails from {self.settings.NEWS_FOLDER} (parallel)...')
        raw_emails = await self.fetch_stage.run(days, emit, self.today)
        self.stats.emails_fetched = len(raw_emails)
        emit(f'📊 STEP 1 Complete: {len(raw_emails)} emails fetched')

        # STEP 2: Split into stories and summarize
        self.state = PipelineState.EXTRACTING
        emit('📝 STEP 2: Extracting stories (parallel)...')
        stories = await self.extract_stage.run(raw_emails, emit)
        self.stats.stories_extracted = len(stories)
        emit(f'📊 STEP 2 Complete: {len(stories)} news stories extracted')

        # STEP 3: Merge duplicates
        self.state = PipelineState.MERGING
        emit('🔗 STEP 3: Merging duplicate stories...')
        merged = await self.merge_stage.run(stories, emit)
        self.stats.after_merge = len(merged)
        emit(f'📊 STEP 3 Complete: {len(merged)} unique stories')

        self.state = PipelineState.SORTING
        news = sort_and_limit(merged, max_results)
        self.stats.displayed = len(news)
        emit(f'✨ Done! {len(news)} stories ready')
        return news
