"""
Duplicate merge stage tests
"""

import json
import pytest
from newsdigest.services.duplicate_merger import (
    DuplicateMergeStage, cluster_stories, distinct_sources, significant_words
)


@pytest.fixture
def merge_stage(fake_query_service, settings):
    return DuplicateMergeStage(fake_query_service, settings)


def test_significant_words_keeps_long_tokens():
    assert significant_words('Tesla Reports Record Q4 Deliveries') == ['tesla', 'reports', 'record', 'deliveries']
    assert significant_words('') == []


def test_cluster_same_story_from_two_sources(make_news_item):
    """Two subjects sharing 'tesla' and 'record' land in one cluster"""
    items = [
        make_news_item('a', 'Tesla Reports Record Q4 Deliveries', source='WSJ'),
        make_news_item('b', 'Tesla Q4 deliveries hit record high', source='NYT'),
        make_news_item('c', 'Senate passes budget bill', source='BBC'),
    ]
    clusters = cluster_stories(items)
    assert [[i.id for i in c] for c in clusters] == [['a', 'b'], ['c']]


def test_single_shared_word_does_not_cluster(make_news_item):
    """Only 'markets' is shared, so the stories stay apart"""
    items = [
        make_news_item('a', 'Markets rally after Fed decision'),
        make_news_item('b', 'Asian markets slide overnight'),
    ]
    assert len(cluster_stories(items)) == 2


def test_clustering_is_not_transitive(make_news_item):
    """B matches the anchor A, C matches B but not A, so C starts its own cluster"""
    items = [
        make_news_item('a', 'Apple earnings beat expectations'),
        make_news_item('b', 'Apple earnings lift chipmaker stocks'),
        make_news_item('c', 'Chipmaker stocks climb higher'),
    ]
    clusters = cluster_stories(items)
    assert [[i.id for i in c] for c in clusters] == [['a', 'b'], ['c']]


def test_clusters_partition_the_input(make_news_item):
    items = [make_news_item(str(i), f'Story number {i} about weather patterns') for i in range(4)]
    items.append(make_news_item('x', 'Completely unrelated headline'))
    clusters = cluster_stories(items)
    flattened = [item.id for cluster in clusters for item in cluster]
    assert sorted(flattened) == sorted(item.id for item in items)
    assert len(clusters) == 2


def test_repeated_anchor_word_counts_once(make_news_item):
    """'tesla' twice in the anchor is still one shared word"""
    items = [
        make_news_item('a', 'Tesla Tesla shares climb'),
        make_news_item('b', 'Tesla recalls vehicles'),
    ]
    assert len(cluster_stories(items)) == 2


def test_one_common_word_gives_two_clusters(make_news_item):
    items = [
        make_news_item('a', 'Tesla announces earnings'),
        make_news_item('b', 'Tesla reveals new model'),
    ]
    assert len(cluster_stories(items)) == 2


def test_two_common_words_give_one_cluster(make_news_item):
    """'financial' and 'market' are shared"""
    items = [
        make_news_item('a', 'Breaking financial market analysis today'),
        make_news_item('b', 'Latest financial market updates report'),
    ]
    clusters = cluster_stories(items)
    assert [[i.id for i in c] for c in clusters] == [['a', 'b']]


def test_distinct_sources_keeps_first_appearance(make_news_item):
    items = [
        make_news_item('a', 'x', source='WSJ'),
        make_news_item('b', 'x', source='NYT'),
        make_news_item('c', 'x', source='WSJ'),
    ]
    assert distinct_sources(items) == ['WSJ', 'NYT']


@pytest.mark.asyncio
async def test_singletons_pass_through_without_queries(merge_stage, fake_query_service, make_news_item):
    """A lone story keeps its id and is never sent to the model"""
    items = [
        make_news_item('a', 'Senate passes budget bill', source='BBC', email_url='https://mail.example.com/a'),
        make_news_item('b', 'Storm closes airports', source='NYT'),
    ]
    messages = []

    merged = await merge_stage.run(items, messages.append)

    assert fake_query_service.prompts == []
    assert [m.id for m in merged] == ['a', 'b']
    assert merged[0].sources == ['BBC']
    assert merged[0].email_urls == ['https://mail.example.com/a']
    assert merged[1].email_urls == []
    assert merged[0].original_items == [items[0]]
    assert messages == ['🔗 Found 0 duplicate groups to merge (parallel)...']


@pytest.mark.asyncio
async def test_duplicate_cluster_is_synthesized(merge_stage, fake_query_service, make_news_item):
    items = [
        make_news_item('a', 'Financial markets tumble amid uncertainty', source='WSJ', date='2026-01-29',
                       email_url='https://mail.example.com/a'),
        make_news_item('b', 'Stocks: financial markets slide', source='NYT', date='2026-01-30'),
        make_news_item('c', 'Financial markets sink as sector slides', source='WSJ', date='2026-01-30',
                       email_url='https://mail.example.com/c'),
    ]
    fake_query_service.responder = lambda config, prompt: (
        'Here you go: ' + json.dumps({'subject': 'Markets fall on uncertainty', 'summary': 'Combined view.'})
    )
    messages = []

    merged = await merge_stage.run(items, messages.append)

    assert len(merged) == 1
    result = merged[0]
    assert result.id == 'merged-0'
    assert result.subject == 'Markets fall on uncertainty'
    assert result.summary == 'Combined view.'
    assert result.date == '2026-01-29'
    assert result.sources == ['WSJ', 'NYT']
    assert result.email_urls == ['https://mail.example.com/a', 'https://mail.example.com/c']
    assert [i.id for i in result.original_items] == ['a', 'b', 'c']
    assert '✅ Merged: Markets fall on uncertainty...' in messages
    _, prompt = fake_query_service.prompts[0]
    assert 'MERGE 3 ARTICLES' in prompt


@pytest.mark.asyncio
async def test_failed_merge_falls_back_to_anchor(merge_stage, fake_query_service, make_news_item):
    """A failed synthesis keeps the anchor's text and every source"""
    items = [
        make_news_item('a', 'Tesla Reports Record Q4 Deliveries', source='WSJ', summary='WSJ summary.'),
        make_news_item('b', 'Tesla Q4 deliveries hit record high', source='NYT', summary='NYT summary.'),
    ]
    fake_query_service.responder = lambda config, prompt: RuntimeError('timeout')
    messages = []

    merged = await merge_stage.run(items, messages.append)

    assert len(merged) == 1
    assert merged[0].id == 'merged-0'
    assert merged[0].subject == 'Tesla Reports Record Q4 Deliveries'
    assert merged[0].summary == 'WSJ summary.'
    assert merged[0].sources == ['WSJ', 'NYT']
    assert '⚠️ Merge group 1 failed, using first item' in messages


@pytest.mark.asyncio
async def test_unparseable_merge_falls_back_to_anchor(merge_stage, fake_query_service, make_news_item):
    items = [
        make_news_item('a', 'Tesla Reports Record Q4 Deliveries', source='WSJ'),
        make_news_item('b', 'Tesla Q4 deliveries hit record high', source='NYT'),
    ]
    fake_query_service.responder = lambda config, prompt: 'These are the same story.'

    merged = await merge_stage.run(items, lambda message: None)

    assert merged[0].subject == 'Tesla Reports Record Q4 Deliveries'
    assert merged[0].sources == ['WSJ', 'NYT']


@pytest.mark.asyncio
async def test_missing_merge_fields_use_defaults(merge_stage, fake_query_service, make_news_item):
    """No subject falls back to the anchor's; no summary joins the members' summaries"""
    items = [
        make_news_item('a', 'Tesla Reports Record Q4 Deliveries', summary='First.'),
        make_news_item('b', 'Tesla Q4 deliveries hit record high', summary='Second.'),
    ]
    fake_query_service.responder = lambda config, prompt: '{"subject": ""}'

    merged = await merge_stage.run(items, lambda message: None)

    assert merged[0].subject == 'Tesla Reports Record Q4 Deliveries'
    assert merged[0].summary == 'First. Second.'


@pytest.mark.asyncio
async def test_merge_empty_input(merge_stage, fake_query_service):
    messages = []
    assert await merge_stage.run([], messages.append) == []
    assert messages == []
