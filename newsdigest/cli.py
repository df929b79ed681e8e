"""
Command-line runner

Runs one aggregation against the configured query service and prints the
progress messages followed by the stories.

    newsdigest-run --days 3 --max 20
    newsdigest-run --json > digest.json
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional
from newsdigest.config import settings
from newsdigest.services.retry import create_circuit_breaker
from newsdigest.services.aggregation_pipeline import AggregationPipeline
from newsdigest.services.news_types import EventType, ProgressEvent
from newsdigest.services.query_service import HttpQueryService, QueryService


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Aggregate newsletter emails into a news digest')
    parser.add_argument('--days', type=int, default=settings.DEFAULT_DAYS, help='Days to look back (including today)')
    parser.add_argument('--max', dest='max_results', type=int, default=settings.DEFAULT_MAX_RESULTS, help='Maximum stories to print')
    parser.add_argument('--json', action='store_true', help='Print the final result as JSON instead of text')
    args = parser.parse_args(argv)
    if args.days < 1:
        parser.error('--days must be at least 1')
    if args.max_results < 1:
        parser.error('--max must be at least 1')
    return args


def render_text(event: ProgressEvent) -> str:
    lines = []
    stats = event.data['stats']
    lines.append(
        f"{stats['emailsFetched']} emails -> {stats['storiesExtracted']} stories -> "
        f"{stats['afterMerge']} unique ({stats['displayed']} shown)"
    )
    for item in event.data['news']:
        lines.append('')
        lines.append(f"[{item['date']}] {item['subject']}  ({', '.join(item['sources'])})")
        lines.append(item['summary'])
        for url in item['emailUrls']:
            lines.append(f'  {url}')
    return '\n'.join(lines)


async def run(args: argparse.Namespace, query_service: QueryService) -> int:
    pipeline = AggregationPipeline(query_service, create_circuit_breaker(settings), settings)
    try:
        async for event in pipeline.run(args.days, args.max_results):
            if event.type == EventType.STATUS:
                print(event.message, file=sys.stderr)
            elif event.type == EventType.ERROR:
                print(f'Error: {event.message}', file=sys.stderr)
                return 1
            elif args.json:
                print(json.dumps(event.data, indent=2, ensure_ascii=False))
            else:
                print(render_text(event))
    finally:
        await query_service.stop()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    query_service = HttpQueryService(settings.QUERY_SERVICE_URL, settings.QUERY_SERVICE_API_KEY)
    return asyncio.run(run(args, query_service))


if __name__ == '__main__':
    sys.exit(main())
