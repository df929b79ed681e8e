"""
Email Fetch Stage

Lists newsletter emails from the news folder for each day in a window.
Every day is fetched in parallel through the circuit breaker and retry
helpers; a day that still fails contributes no emails instead of failing
the run.
"""

import asyncio
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional
from newsdigest.config import Settings
from newsdigest.services.logger import logger
from newsdigest.services.news_types import RawEmail
from newsdigest.services.query_service import QueryService, SessionConfig
from newsdigest.services.response_extractor import parse_records
from newsdigest.services.retry import CircuitBreaker, with_retry

StatusCallback = Callable[[str], None]

FETCH_MAX_RETRIES = 2
FETCH_BASE_DELAY_MS = 1000

SYSTEM_PROMPT = """You are a precise email metadata extractor. Your ONLY job is to call the mailbox tool and return email metadata as a clean JSON array.

## CRITICAL RULES
1. Output MUST be a raw JSON array - NO markdown, NO code fences, NO explanatory text
2. If no emails found, return: []
3. Extract source abbreviation from sender name ("The Wall Street Journal" -> "WSJ", "The New York Times" -> "NYT", "Bloomberg" -> "Bloomberg")

## OUTPUT SCHEMA (strict)
[
  {
    "id": "string - use email ID or generate unique",
    "subject": "string - exact email subject line",
    "sender": "string - sender display name or email",
    "date": "YYYY-MM-DD format only",
    "emailUrl": "string - web URL if available, or empty string",
    "source": "string - abbreviated publication name (WSJ, NYT, BBC, etc.)"
  }
]

## EXAMPLE OUTPUT
[{"id":"AAMk123","subject":"Markets Rally on Fed News","sender":"WSJ Markets","date":"2026-01-30","emailUrl":"https://outlook.office365.com/mail/id/AAMk123","source":"WSJ"}]"""


def format_local_date(value: date) -> str:
    """Format a date as YYYY-MM-DD"""
    return value.strftime('%Y-%m-%d')


def get_date_range(days: int, today: Optional[date] = None) -> List[str]:
    """
    Get the last N calendar days including today, newest first
    Uses the local wall clock, not UTC, so day boundaries match where the
    service runs.
    Args:
        days: Window size
        today: Override for the current local date
    Returns:
        List of YYYY-MM-DD strings
    """
    if today is None:
        today = datetime.now().date()
    return [format_local_date(today - timedelta(days=offset)) for offset in range(days)]


def build_fetch_prompt(date_str: str, folder: str) -> str:
    parent, _, name = folder.rpartition('/')
    location = f'a subfolder of {parent} called "{name}"' if parent else f'the folder called "{name}"'
    return f"""TASK: Retrieve all emails from the "{folder}" folder for date: {date_str}

STEPS:
1. Call the mailbox tool with query: "List all emails in the '{folder}' folder ({location}) received on {date_str}. Include email ID, subject, sender, and web URL for each email."
2. Parse the response and extract metadata for each email
3. Return ONLY a JSON array (no other text)

IMPORTANT: Search ONLY in "{folder}" - this is {location}, NOT any other folder!

If the folder is empty or no emails match, return: []
Do NOT include any explanation - just the JSON array."""


class EmailFetchStage:
    """Fetches email metadata for a window of days"""

    def __init__(self, query_service: QueryService, circuit_breaker: CircuitBreaker, settings: Settings):
        self.query_service = query_service
        self.circuit_breaker = circuit_breaker
        self.settings = settings
        self.max_retries = FETCH_MAX_RETRIES
        self.base_delay_ms = FETCH_BASE_DELAY_MS

    async def run(self, days: int, emit: StatusCallback, today: Optional[date] = None) -> List[RawEmail]:
        """
        Fetch all days in parallel
        Args:
            days: Window size
            emit: Receives human-readable progress messages
            today: Override for the current local date
        Returns:
            Flattened emails from every day that succeeded
        """
        dates = get_date_range(days, today)
        emit(f'📬 Fetching {len(dates)} days in parallel...')

        day_results = await asyncio.gather(*[self._fetch_day_safely(d, emit) for d in dates])
        return [email for day in day_results for email in day]

    async def _fetch_day_safely(self, date_str: str, emit: StatusCallback) -> List[RawEmail]:
        try:
            return await self.fetch_day(date_str, emit)
        except Exception as error:
            logger.error(f'Failed to fetch day: {str(error)}', date=date_str, error=str(error))
            emit(f'⚠️ Failed to fetch {date_str}, continuing...')
            return []

    async def fetch_day(self, date_str: str, emit: StatusCallback) -> List[RawEmail]:
        """Fetch one day through the circuit breaker, retrying transient failures"""

        def on_retry(attempt: int, error: Exception, delay_ms: float):
            logger.warning(
                f'Retrying fetch for {date_str}: {str(error)}',
                date=date_str,
                attempt=attempt,
                delayMs=round(delay_ms)
            )
            emit(f'⏳ Retry {attempt} for {date_str} (waiting {round(delay_ms / 1000)}s)...')

        return await self.circuit_breaker.execute(
            lambda: with_retry(
                lambda: self._fetch_once(date_str, emit),
                max_retries=self.max_retries,
                base_delay_ms=self.base_delay_ms,
                on_retry=on_retry
            )
        )

    async def _fetch_once(self, date_str: str, emit: StatusCallback) -> List[RawEmail]:
        config = SessionConfig(
            model=self.settings.FETCH_MODEL,
            system_message=SYSTEM_PROMPT,
            tools=self.settings.mailbox_tools
        )
        response = await self.query_service.ask(
            config,
            build_fetch_prompt(date_str, self.settings.NEWS_FOLDER),
            self.settings.FETCH_TIMEOUT_MS
        )

        emails = parse_records(response, RawEmail)
        if emails is None:
            logger.warning(f'No email list found in response for {date_str}', date=date_str)
            return []

        emit(f'✅ Found {len(emails)} emails for {date_str}')
        # Ids from the model are not reliable; make them unique within the run
        return [
            email.model_copy(update={'id': f'{date_str}-{index}'})
            for index, email in enumerate(emails)
        ]
