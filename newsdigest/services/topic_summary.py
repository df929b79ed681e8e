"""
Topic Summary Service

Researches how the news folder covers a single topic
"""

from newsdigest.config import Settings
from newsdigest.services.query_service import QueryService, SessionConfig
from newsdigest.services.retry import CircuitBreaker

SYSTEM_PROMPT = """You are a research analyst synthesizing news coverage on specific topics. You have access to the user's email via mailbox tools.

## OUTPUT FORMAT
Provide a well-structured analysis with:
1. **Overview**: 2-3 sentence summary of the topic
2. **Key Developments**: Bullet points of major facts/events
3. **Multiple Perspectives**: How different sources frame the story
4. **Implications**: What this means going forward

Use clear, professional language. Cite sources when attributing specific claims."""


def build_topic_prompt(topic: str, folder: str) -> str:
    return f"""RESEARCH TASK: Analyze coverage of "{topic}"

STEPS:
1. Search my "{folder}" folder using the mailbox tool for any emails mentioning "{topic}"
2. Identify all relevant sources and their perspectives
3. Synthesize a comprehensive summary that:
   - Captures the main facts and developments
   - Notes how different publications cover the topic
   - Highlights any conflicting information or viewpoints
   - Provides context on why this topic matters

IMPORTANT: Only search the "{folder}" folder - NOT any other folder!

Provide a thorough, well-organized analysis."""


async def summarize_topic(
    query_service: QueryService,
    circuit_breaker: CircuitBreaker,
    topic: str,
    settings: Settings
) -> str:
    """
    Summarize coverage of a topic across the news folder
    Args:
        query_service: Agent backend
        circuit_breaker: Shared breaker guarding the backend
        topic: Free-text topic
        settings: Application settings
    Returns:
        The analyst's response text
    """
    topic = topic.strip()
    if not topic:
        raise ValueError('Topic is required')

    config = SessionConfig(
        model=settings.TOPIC_MODEL,
        system_message=SYSTEM_PROMPT,
        tools=settings.mailbox_tools
    )
    return await circuit_breaker.execute(
        lambda: query_service.ask(config, build_topic_prompt(topic, settings.NEWS_FOLDER), settings.TOPIC_TIMEOUT_MS)
    )
