"""
Duplicate Merge Stage

Groups stories that cover the same event and merges each group into one
item. Grouping is a greedy single pass over subject words: the first
unassigned story anchors a cluster and every later unassigned story that
shares at least two distinct long words with the anchor joins it. Matching is
against the anchor only, so clusters are not transitive.

Clusters with more than one story are synthesized by the model in
parallel; if synthesis fails the anchor's own headline and summary are
used, so no cluster is ever lost.
"""

import asyncio
import json
from typing import Callable, List
from newsdigest.config import Settings
from newsdigest.services.logger import logger
from newsdigest.services.news_types import MergedNewsItem, NewsItem
from newsdigest.services.query_service import QueryService, SessionConfig
from newsdigest.services.response_extractor import extract_json_object

StatusCallback = Callable[[str], None]

MIN_WORD_LENGTH = 5
MIN_COMMON_WORDS = 2

SYSTEM_PROMPT = """You are a news synthesis expert. You merge multiple articles covering the SAME story into one comprehensive entry.

## YOUR TASK
Combine multiple source perspectives into a single, authoritative summary that:
- Synthesizes facts from ALL sources
- Notes any differences in reporting or emphasis
- Provides fuller context than any single source
- Creates a headline that captures the unified story

## OUTPUT FORMAT (strict JSON object, no markdown)
{
  "subject": "Unified headline that captures the complete story",
  "summary": "Comprehensive 4-6 sentence synthesis combining all perspectives. Include: main facts agreed upon by all sources, any additional details from specific sources (attributed), notable differences in coverage or interpretation, and overall significance."
}

## RULES
1. Output ONLY the JSON object - no markdown fences, no explanations
2. The summary should be BETTER than any individual source
3. If sources disagree, note it: "While [Source A] emphasizes X, [Source B] focuses on Y"
4. Attribute unique facts: "According to WSJ, ..." or "NYT reports that..." """


def significant_words(subject: str) -> List[str]:
    """Lowercased whitespace tokens longer than four characters"""
    return [w for w in (subject or '').lower().split() if len(w) >= MIN_WORD_LENGTH]


def cluster_stories(items: List[NewsItem]) -> List[List[NewsItem]]:
    """
    Greedy single-pass clustering by subject word overlap
    Returns:
        Clusters in anchor order; each cluster starts with its anchor
    """
    clusters: List[List[NewsItem]] = []
    used = set()

    for i, anchor in enumerate(items):
        if i in used:
            continue

        cluster = [anchor]
        anchor_words = set(significant_words(anchor.subject))

        for j in range(i + 1, len(items)):
            if j in used:
                continue
            common = anchor_words & set(significant_words(items[j].subject))
            if len(common) >= MIN_COMMON_WORDS:
                cluster.append(items[j])
                used.add(j)

        used.add(i)
        clusters.append(cluster)

    return clusters


def distinct_sources(cluster: List[NewsItem]) -> List[str]:
    """Source names in order of first appearance, without repeats"""
    sources: List[str] = []
    for item in cluster:
        if item.source not in sources:
            sources.append(item.source)
    return sources


def cluster_urls(cluster: List[NewsItem]) -> List[str]:
    return [item.email_url for item in cluster if item.email_url]


def single_item(item: NewsItem) -> MergedNewsItem:
    """Pass a lone story through unchanged"""
    return MergedNewsItem(
        id=item.id,
        subject=item.subject,
        date=item.date,
        summary=item.summary,
        sources=[item.source],
        email_urls=cluster_urls([item]),
        original_items=[item]
    )


def anchor_fallback(cluster: List[NewsItem], cluster_index: int) -> MergedNewsItem:
    """Use the anchor's headline and summary but keep every source and link"""
    anchor = cluster[0]
    return MergedNewsItem(
        id=f'merged-{cluster_index}',
        subject=anchor.subject,
        date=anchor.date,
        summary=anchor.summary,
        sources=distinct_sources(cluster),
        email_urls=cluster_urls(cluster),
        original_items=list(cluster)
    )


def build_merge_prompt(cluster: List[NewsItem]) -> str:
    sources_info = [
        {'source': item.source, 'subject': item.subject, 'summary': item.summary}
        for item in cluster
    ]
    return f"""MERGE {len(cluster)} ARTICLES ABOUT THE SAME STORY

Sources to synthesize:
{json.dumps(sources_info, indent=2, ensure_ascii=False)}

TASK:
1. Identify the core story these articles share
2. Create a unified headline that's more informative than any individual headline
3. Write a 4-6 sentence synthesis that:
   - States the main facts all sources agree on
   - Adds unique details from specific sources (with attribution)
   - Notes any differences in framing or emphasis
   - Explains why this story matters

Sources represented: {", ".join(distinct_sources(cluster))}

RETURN: JSON object only {{"subject": "...", "summary": "..."}}"""


class DuplicateMergeStage:
    """Clusters duplicate stories and merges each cluster"""

    def __init__(self, query_service: QueryService, settings: Settings):
        self.query_service = query_service
        self.settings = settings

    async def run(self, items: List[NewsItem], emit: StatusCallback) -> List[MergedNewsItem]:
        """
        Cluster and merge
        Returns:
            One merged item per cluster, in cluster order
        """
        if not items:
            return []

        clusters = cluster_stories(items)
        duplicate_count = sum(1 for c in clusters if len(c) > 1)
        emit(f'🔗 Found {duplicate_count} duplicate groups to merge (parallel)...')
        logger.info(
            f'Clustered {len(items)} stories into {len(clusters)} groups',
            stories=len(items),
            groups=len(clusters),
            duplicateGroups=duplicate_count
        )

        return list(await asyncio.gather(*[
            self._merge_cluster_safely(cluster, i, emit)
            for i, cluster in enumerate(clusters)
        ]))

    async def _merge_cluster_safely(self, cluster: List[NewsItem], cluster_index: int, emit: StatusCallback) -> MergedNewsItem:
        if len(cluster) == 1:
            return single_item(cluster[0])

        try:
            return await self.merge_cluster(cluster, cluster_index, emit)
        except Exception as error:
            logger.error(f'Failed to merge group: {str(error)}', cluster=cluster_index, error=str(error))
            emit(f'⚠️ Merge group {cluster_index + 1} failed, using first item')
            return anchor_fallback(cluster, cluster_index)

    async def merge_cluster(self, cluster: List[NewsItem], cluster_index: int, emit: StatusCallback) -> MergedNewsItem:
        """Ask the model to synthesize one headline and summary for the cluster"""
        config = SessionConfig(model=self.settings.MERGE_MODEL, system_message=SYSTEM_PROMPT)
        response = await self.query_service.ask(config, build_merge_prompt(cluster), self.settings.MERGE_TIMEOUT_MS)

        merged = extract_json_object(response)
        if merged is None:
            logger.warning('Could not parse merge response, using anchor story', cluster=cluster_index)
            return anchor_fallback(cluster, cluster_index)

        subject = merged.get('subject') or cluster[0].subject
        summary = merged.get('summary') or ' '.join(item.summary for item in cluster)
        emit(f'✅ Merged: {str(subject)[:40]}...')

        return MergedNewsItem(
            id=f'merged-{cluster_index}',
            subject=str(subject),
            date=cluster[0].date,
            summary=str(summary),
            sources=distinct_sources(cluster),
            email_urls=cluster_urls(cluster),
            original_items=list(cluster)
        )
