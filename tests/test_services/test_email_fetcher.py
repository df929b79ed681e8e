"""
Email fetch stage tests
"""

import json
import pytest
from datetime import date
from newsdigest.services.email_fetcher import EmailFetchStage, build_fetch_prompt, get_date_range
from newsdigest.services.retry import CircuitBreaker


def emails_for(day, count, source='WSJ'):
    return json.dumps([
        {
            'id': 'AAMk-duplicate',
            'subject': f'{source} story {i} on {day}',
            'sender': f'{source} Newsletter',
            'date': day,
            'emailUrl': f'https://mail.example.com/{day}/{i}',
            'source': source
        }
        for i in range(count)
    ])


def day_of(prompt):
    return prompt.split('for date: ')[1].split('\n')[0]


@pytest.fixture
def fetch_stage(fake_query_service, circuit_breaker, settings):
    stage = EmailFetchStage(fake_query_service, circuit_breaker, settings)
    stage.base_delay_ms = 1
    return stage


def test_get_date_range_newest_first():
    """Window includes today and counts back one calendar day at a time"""
    assert get_date_range(3, date(2026, 1, 30)) == ['2026-01-30', '2026-01-29', '2026-01-28']


def test_get_date_range_crosses_month_and_year():
    assert get_date_range(2, date(2026, 3, 1)) == ['2026-03-01', '2026-02-28']
    assert get_date_range(2, date(2026, 1, 1)) == ['2026-01-01', '2025-12-31']


def test_get_date_range_single_day():
    assert get_date_range(1, date(2026, 1, 30)) == ['2026-01-30']


def test_build_fetch_prompt_names_folder():
    prompt = build_fetch_prompt('2026-01-30', 'Inbox/news')
    assert 'for date: 2026-01-30' in prompt
    assert 'a subfolder of Inbox called "news"' in prompt


@pytest.mark.asyncio
async def test_fetch_all_days_and_rewrite_ids(fetch_stage, fake_query_service):
    """Emails from every day are combined and ids become {date}-{index}"""
    counts = {'2026-01-30': 2, '2026-01-29': 1, '2026-01-28': 0}
    fake_query_service.responder = lambda config, prompt: emails_for(day_of(prompt), counts[day_of(prompt)])
    messages = []

    emails = await fetch_stage.run(3, messages.append, today=date(2026, 1, 30))

    assert [e.id for e in emails] == ['2026-01-30-0', '2026-01-30-1', '2026-01-29-0']
    assert emails[0].email_url == 'https://mail.example.com/2026-01-30/0'
    assert messages[0] == '📬 Fetching 3 days in parallel...'
    assert '✅ Found 2 emails for 2026-01-30' in messages
    assert '✅ Found 0 emails for 2026-01-28' in messages


@pytest.mark.asyncio
async def test_fetch_passes_mailbox_tools(fetch_stage, fake_query_service, settings):
    fake_query_service.responder = lambda config, prompt: '[]'

    await fetch_stage.run(1, lambda message: None, today=date(2026, 1, 30))

    config, prompt = fake_query_service.prompts[0]
    assert config.tools == ['ask_work_iq']
    assert config.model == settings.FETCH_MODEL
    assert 'Inbox/news' in prompt


@pytest.mark.asyncio
async def test_failed_day_contributes_nothing(fetch_stage, fake_query_service):
    """One day failing after its retries does not affect the other days"""
    def responder(config, prompt):
        if day_of(prompt) == '2026-01-29':
            return ConnectionError('mailbox unavailable')
        return emails_for(day_of(prompt), 1)

    fake_query_service.responder = responder
    messages = []

    emails = await fetch_stage.run(3, messages.append, today=date(2026, 1, 30))

    assert [e.id for e in emails] == ['2026-01-30-0', '2026-01-28-0']
    assert '⚠️ Failed to fetch 2026-01-29, continuing...' in messages
    retries = [m for m in messages if m.startswith('⏳ Retry') and '2026-01-29' in m]
    assert len(retries) == 2
    failing_calls = [p for _, p in fake_query_service.prompts if day_of(p) == '2026-01-29']
    assert len(failing_calls) == 3


@pytest.mark.asyncio
async def test_transient_failure_is_retried(fetch_stage, fake_query_service):
    attempts = []

    def responder(config, prompt):
        attempts.append(1)
        if len(attempts) == 1:
            return TimeoutError('slow mailbox')
        return emails_for(day_of(prompt), 2)

    fake_query_service.responder = responder
    messages = []

    emails = await fetch_stage.run(1, messages.append, today=date(2026, 1, 30))

    assert len(emails) == 2
    assert len(attempts) == 2
    assert messages[1].startswith('⏳ Retry 1 for 2026-01-30')


@pytest.mark.asyncio
async def test_unparseable_response_yields_no_emails(fetch_stage, fake_query_service):
    fake_query_service.responder = lambda config, prompt: 'There are no emails in that folder today.'

    emails = await fetch_stage.run(2, lambda message: None, today=date(2026, 1, 30))

    assert emails == []
    assert len(fake_query_service.prompts) == 2


@pytest.mark.asyncio
async def test_open_breaker_skips_the_query(fake_query_service, settings):
    """An open breaker fails the day fast without calling the backend"""
    breaker = CircuitBreaker(failure_threshold=1)

    async def fail():
        raise RuntimeError('down')

    with pytest.raises(RuntimeError):
        await breaker.execute(fail)
    assert breaker.is_open

    stage = EmailFetchStage(fake_query_service, breaker, settings)
    messages = []
    emails = await stage.run(1, messages.append, today=date(2026, 1, 30))

    assert emails == []
    assert fake_query_service.prompts == []
    assert '⚠️ Failed to fetch 2026-01-30, continuing...' in messages
