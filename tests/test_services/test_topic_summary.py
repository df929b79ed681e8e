"""
Topic summary tests
"""

import pytest
from newsdigest.services.errors import CircuitBreakerOpenError
from newsdigest.services.retry import CircuitBreaker
from newsdigest.services.topic_summary import summarize_topic


@pytest.mark.asyncio
async def test_summarize_topic_uses_topic_model(fake_query_service, circuit_breaker, settings):
    """Test the topic query runs with mailbox tools and the topic model"""
    fake_query_service.responder = lambda config, prompt: 'Overview: rates held steady.'

    summary = await summarize_topic(fake_query_service, circuit_breaker, '  Fed rates ', settings)

    assert summary == 'Overview: rates held steady.'
    config, prompt = fake_query_service.prompts[0]
    assert config.model == settings.TOPIC_MODEL
    assert config.tools == ['ask_work_iq']
    assert '"Fed rates"' in prompt
    assert settings.NEWS_FOLDER in prompt


@pytest.mark.asyncio
async def test_summarize_topic_rejects_blank(fake_query_service, circuit_breaker, settings):
    with pytest.raises(ValueError):
        await summarize_topic(fake_query_service, circuit_breaker, '   ', settings)
    assert fake_query_service.prompts == []


@pytest.mark.asyncio
async def test_summarize_topic_failures_count_against_breaker(fake_query_service, settings):
    """Test repeated failures open the breaker and later calls fail fast"""
    breaker = CircuitBreaker(failure_threshold=2)
    fake_query_service.responder = lambda config, prompt: ConnectionError('gateway reset')

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await summarize_topic(fake_query_service, breaker, 'Tesla', settings)

    with pytest.raises(CircuitBreakerOpenError):
        await summarize_topic(fake_query_service, breaker, 'Tesla', settings)
    assert len(fake_query_service.prompts) == 2
