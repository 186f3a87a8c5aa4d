#!/usr/bin/env python3
"""
FanPulse CLI Tool

Run attribution, sentiment resolution and trend analytics without the web server.
"""

import argparse
import asyncio
import json
import sys
from typing import List
from pydantic import ValidationError
from fanpulse.config import get_settings
from fanpulse.errors import FanPulseError
from fanpulse.orchestration.tasks import FanPulseServices, build_services
from fanpulse.services.types import SourceItem
from fanpulse.logging_config import setup_logging, get_logger

logger = get_logger(__name__)


def attribute_text(services: FanPulseServices, text: str) -> None:
    """Show which entity a text is attributed to."""
    entity_id = services.attributor.attribute(text)
    print(f"Text:   {text}")
    print(f"Entity: {entity_id} ({services.attributor.name_for(entity_id)})")


async def analyze_text(services: FanPulseServices, text: str) -> None:
    """Resolve the sentiment of a single piece of text."""
    verdict = await services.resolver.resolve(text)

    print(f"\n{'='*60}")
    print("SENTIMENT ANALYSIS")
    print(f"{'='*60}")
    print(f"Text:       {text}")
    print(f"Entity:     {services.attributor.attribute(text)}")
    print(f"Label:      {verdict.label.value}")
    print(f"Score:      {verdict.score:.3f} (signed {verdict.signed_score:+.3f})")
    print(f"Confidence: {verdict.confidence:.3f} ({verdict.confidence_level})")
    print(f"Model:      {verdict.model_used}")
    print(f"{'='*60}\n")


async def ingest_file(services: FanPulseServices, file_path: str) -> None:
    """Ingest items from a JSON-lines file, one SourceItem object per line."""
    items: List[SourceItem] = []
    with open(file_path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                items.append(SourceItem(**json.loads(line)))
            except (ValueError, ValidationError) as e:
                logger.warning(f"Skipping line {line_no}: {e}")

    report = await services.pipeline.process_batch(items)
    print(json.dumps(report.model_dump(mode="json", exclude={"records"}), indent=2))


async def show_trends(services: FanPulseServices, period: str) -> None:
    analysis = await services.bucketer.analyze(period)

    print(f"\n{'='*60}")
    print(f"TRENDS {analysis.period} ({analysis.start_date} to {analysis.end_date})")
    print(f"{'='*60}")
    for trend in analysis.entities:
        stats = trend.overall
        direction = "insufficient data" if stats.insufficient_data else stats.trend_direction
        print(f"{trend.entity_name:<15} {stats.total_comments:>6} comments  "
              f"+{stats.positive_percent:5.1f}%  -{stats.negative_percent:5.1f}%  "
              f"{direction} ({stats.weekly_change:+.1f})")

    summary = analysis.summary
    print(f"{'='*60}")
    print(f"Total comments:     {summary.total_comments}")
    print(f"Average per day:    {summary.average_daily:.1f}")
    print(f"Most positive:      {summary.most_positive_entity or '-'}")
    print(f"Most negative:      {summary.most_negative_entity or '-'}")
    print(f"Biggest improvement: {summary.biggest_improvement or '-'}")
    print(f"Biggest decline:    {summary.biggest_decline or '-'}")
    print(f"{'='*60}\n")


async def show_insights(services: FanPulseServices, period: str) -> None:
    insights = await services.ranker.insights(period)
    if not insights:
        print("No insights for this period.")
        return
    for insight in insights:
        print(f"[{insight.severity.upper():<6}] {insight.type:<11} {insight.value:>14}  {insight.description}")


def cleanup(services: FanPulseServices) -> None:
    result = services.gate.cleanup_duplicates()
    print(json.dumps(result.model_dump(mode="json"), indent=2))


def show_stats(services: FanPulseServices, entity_id=None) -> None:
    stats = services.store.stats(entity_id)
    print(json.dumps(stats.model_dump(), indent=2, ensure_ascii=False))


async def run(args) -> int:
    services = build_services(get_settings())
    try:
        if args.command == 'attribute':
            attribute_text(services, args.text)
        elif args.command == 'analyze':
            await analyze_text(services, args.text)
        elif args.command == 'ingest':
            await ingest_file(services, args.file)
        elif args.command == 'trends':
            await show_trends(services, args.period)
        elif args.command == 'insights':
            await show_insights(services, args.period)
        elif args.command == 'cleanup':
            cleanup(services)
        elif args.command == 'stats':
            show_stats(services, args.entity)
        return 0
    except FanPulseError as e:
        logger.error(f"{e.kind}: {e.message}")
        return 1
    except FileNotFoundError as e:
        logger.error(f"File not found: {e.filename}")
        return 1
    finally:
        await services.aclose()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="FanPulse CLI - fan sentiment analytics locally",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Which team is a comment about?
  fanpulse attribute "Fener bu sezon şampiyon olur"

  # Classify a comment with both backends
  fanpulse analyze "Galatasaray harika oynadı!"

  # Ingest collected items (JSON lines)
  fanpulse ingest items.jsonl

  # Weekly trends and insights
  fanpulse trends --period 30d
  fanpulse insights --period 7d
        """
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO)'
    )

    subparsers = parser.add_subparsers(dest='command')

    p = subparsers.add_parser('attribute', help='Attribute text to an entity')
    p.add_argument('text')

    p = subparsers.add_parser('analyze', help='Resolve sentiment of a text')
    p.add_argument('text')

    p = subparsers.add_parser('ingest', help='Ingest items from a JSON-lines file')
    p.add_argument('file')

    for name, help_text in (('trends', 'Show trend analysis'), ('insights', 'Show ranked insights')):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument('--period', default='7d', choices=['7d', '30d', '90d'])

    subparsers.add_parser('cleanup', help='Remove duplicate verdicts')

    p = subparsers.add_parser('stats', help='Show label, platform and language breakdown')
    p.add_argument('--entity', default=None, help='Limit to one entity id')

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(run(args)))


if __name__ == '__main__':
    main()
