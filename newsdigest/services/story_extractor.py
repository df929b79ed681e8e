"""
Story Extraction Stage

Splits newsletter emails into individual stories and summarizes each one.
Emails are sent to the model in parallel batches; a batch that fails or
returns unparseable output contributes no stories.
"""

import asyncio
import json
from typing import Callable, Dict, List
from newsdigest.config import Settings
from newsdigest.services.logger import logger
from newsdigest.services.news_types import NewsItem, RawEmail
from newsdigest.services.query_service import QueryService, SessionConfig
from newsdigest.services.response_extractor import parse_records

StatusCallback = Callable[[str], None]

SYSTEM_PROMPT = """You are a news story extractor and summarizer. You analyze newsletter emails and extract individual news stories.

## YOUR TASK
Analyze each email and determine:
- Is this a DIGEST (multiple stories)? -> Extract EACH story as separate entry
- Is this a SINGLE story? -> Create one entry

## SUMMARY GUIDELINES
Write summaries that are:
- 3-5 sentences covering WHO, WHAT, WHEN, WHERE, WHY
- Include specific numbers, names, and facts
- Explain significance and potential impact
- Use active voice and clear language

## OUTPUT FORMAT (strict JSON array, no markdown)
[
  {
    "id": "originalEmailId-storyIndex (e.g., '2026-01-30-0-1' for second story)",
    "subject": "Compelling headline capturing the story essence",
    "sender": "Keep original sender from input",
    "date": "YYYY-MM-DD from input",
    "summary": "Detailed 3-5 sentence summary with key facts, context, and implications",
    "source": "Publication abbreviation from input",
    "emailUrl": "Keep original URL from input",
    "originalEmailId": "Original email ID from input"
  }
]

## RULES
1. Output ONLY the JSON array - no explanations, no markdown fences
2. Preserve ALL metadata from input (sender, date, emailUrl, source)
3. Generate unique IDs by appending story index to original ID
4. If email subject is vague, create a descriptive headline from content"""


def make_batches(emails: List[RawEmail], batch_size: int) -> List[List[RawEmail]]:
    """Split emails into consecutive batches; the last one may be smaller"""
    if batch_size < 1:
        raise ValueError('batch_size must be at least 1')
    return [emails[i:i + batch_size] for i in range(0, len(emails), batch_size)]


def assign_story_ids(items: List[NewsItem], batch: List[RawEmail], batch_index: int) -> List[NewsItem]:
    """
    Rewrite story ids to {emailId}-{storyIndex}
    Email ids are already unique within a run, so these are too. Stories
    that do not name an email from this batch are numbered under
    b{batchIndex} instead.
    """
    email_ids = {email.id for email in batch}
    counters: Dict[str, int] = {}
    renamed: List[NewsItem] = []
    for item in items:
        prefix = item.original_email_id if item.original_email_id in email_ids else f'b{batch_index}'
        story_index = counters.get(prefix, 0)
        counters[prefix] = story_index + 1
        renamed.append(item.model_copy(update={'id': f'{prefix}-{story_index}'}))
    return renamed


def build_extraction_prompt(batch: List[RawEmail], batch_index: int) -> str:
    emails_json = json.dumps([email.model_dump(by_alias=True) for email in batch], indent=2, ensure_ascii=False)
    return f"""ANALYZE AND EXTRACT NEWS STORIES

Input emails (batch {batch_index + 1}):
{emails_json}

INSTRUCTIONS:
1. For each email, analyze if it's a digest (multiple stories) or single story
2. Extract each distinct news story as a separate entry
3. Write a compelling 3-5 sentence summary for each story including:
   - The main event or development
   - Key people, companies, or organizations involved
   - Relevant numbers, dates, or statistics
   - Why this matters (impact/significance)
4. Create descriptive headlines that capture the story essence

RETURN: JSON array only, no markdown, no explanations."""


class StoryExtractionStage:
    """Turns raw emails into summarized stories"""

    def __init__(self, query_service: QueryService, settings: Settings):
        self.query_service = query_service
        self.settings = settings

    async def run(self, emails: List[RawEmail], emit: StatusCallback) -> List[NewsItem]:
        """
        Process all batches in parallel
        Returns:
            Stories from every batch that succeeded, in batch order
        """
        batches = make_batches(emails, self.settings.EXTRACTION_BATCH_SIZE)
        emit(f'📝 Processing {len(batches)} batches in parallel...')

        batch_results = await asyncio.gather(*[
            self._process_batch_safely(batch, i, emit)
            for i, batch in enumerate(batches)
        ])
        return [item for batch in batch_results for item in batch]

    async def _process_batch_safely(self, batch: List[RawEmail], batch_index: int, emit: StatusCallback) -> List[NewsItem]:
        try:
            return await self.process_batch(batch, batch_index, emit)
        except Exception as error:
            logger.error(f'Failed to process batch: {str(error)}', batch=batch_index, error=str(error))
            emit(f'⚠️ Batch {batch_index + 1} failed, continuing...')
            return []

    async def process_batch(self, batch: List[RawEmail], batch_index: int, emit: StatusCallback) -> List[NewsItem]:
        config = SessionConfig(model=self.settings.EXTRACT_MODEL, system_message=SYSTEM_PROMPT)
        response = await self.query_service.ask(
            config,
            build_extraction_prompt(batch, batch_index),
            self.settings.EXTRACT_TIMEOUT_MS
        )

        items = parse_records(response, NewsItem)
        if items is None:
            logger.warning('Could not parse stories from batch response', batch=batch_index)
            emit(f'⚠️ Parse error for batch {batch_index + 1}')
            return []

        emit(f'✅ Batch {batch_index + 1}: {len(items)} stories')
        return assign_story_ids(items, batch, batch_index)
