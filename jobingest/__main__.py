"""
Command-line entry point.

    python -m jobingest scrape <source-id> [--all]
    python -m jobingest run
    python -m jobingest parse <family> <file> [--url URL]
    python -m jobingest cron <minutes>

Sources come from the database (SUPABASE_DB_URL / DATABASE_URL), or from a
JSON file of source descriptors passed with --sources.
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import asdict
from pathlib import Path

from dotenv import load_dotenv

from jobingest.config import get_settings
from jobingest.core.errors import ParseError, ScrapeTriggerError
from jobingest.crawler.plugins import get_parser_registry
from jobingest.models import SourceDescriptor, SourceKind
from jobingest.orchestrator import ScrapeScheduler, interval_to_cron
from jobingest.storage import InMemoryStore, get_store

logger = logging.getLogger("jobingest")


def load_store(sources_file, settings):
    if sources_file:
        data = json.loads(Path(sources_file).read_text(encoding='utf-8'))
        return InMemoryStore([SourceDescriptor.model_validate(item) for item in data])
    if not settings.database_url:
        raise SystemExit("Set SUPABASE_DB_URL or DATABASE_URL, or pass --sources FILE")
    return get_store(settings.database_url)


async def cmd_scrape(args, settings) -> int:
    scheduler = ScrapeScheduler(load_store(args.sources, settings), settings)
    if args.all:
        results = await scheduler.run_active_once()
        print(json.dumps([r.to_dict() for r in results], indent=2, default=str))
        return 0 if all(r.success for r in results) else 1

    if not args.source_id:
        raise SystemExit("scrape needs a source id or --all")
    try:
        result = await scheduler.trigger_scrape(args.source_id)
    except ScrapeTriggerError as e:
        print(json.dumps(e.to_dict(), indent=2))
        return 1
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0


async def cmd_run(args, settings) -> int:
    scheduler = ScrapeScheduler(load_store(args.sources, settings), settings)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    await scheduler.start()
    if not scheduler.running:
        return 0
    try:
        await stop_event.wait()
    finally:
        await scheduler.stop()
    return 0


def cmd_parse(args, settings) -> int:
    content = Path(args.file).read_text(encoding='utf-8', errors='replace')
    registry = get_parser_registry()
    kind = SourceKind.XML_FEED if args.family in ('rss', 'partner-xml') else SourceKind.HTML_SCRAPE
    source = SourceDescriptor(id='cli', name=Path(args.file).name, url=args.url, kind=kind, family=args.family)
    try:
        result = registry.parse(content, source)
    except ParseError as e:
        print(f"{e.kind}: {e.message}", file=sys.stderr)
        return 1

    print(json.dumps([asdict(job) for job in result.jobs], indent=2, default=str, ensure_ascii=False))
    logger.info(f"[cli] {len(result.jobs)} jobs via {result.selector}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='jobingest', description='Job posting ingestion pipeline')
    parser.add_argument('--log-level', help='Logging level (default: JOBINGEST_LOG_LEVEL or INFO)')
    sub = parser.add_subparsers(dest='command', required=True)

    scrape = sub.add_parser('scrape', help='Run one pass for a source now')
    scrape.add_argument('source_id', nargs='?')
    scrape.add_argument('--all', action='store_true', help='Run every active source once')
    scrape.add_argument('--sources', help='JSON file of source descriptors')

    run = sub.add_parser('run', help='Run the scheduler until interrupted')
    run.add_argument('--sources', help='JSON file of source descriptors')

    parse = sub.add_parser('parse', help='Parse a saved document offline')
    parse.add_argument('family', choices=get_parser_registry().families)
    parse.add_argument('file')
    parse.add_argument('--url', default='https://example.com/', help='URL the document was fetched from')

    cron = sub.add_parser('cron', help='Show the cron expression for an interval')
    cron.add_argument('minutes', type=int)
    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    if args.command == 'cron':
        print(interval_to_cron(args.minutes))
        return 0
    if args.command == 'parse':
        return cmd_parse(args, settings)
    if args.command == 'scrape':
        return asyncio.run(cmd_scrape(args, settings))
    return asyncio.run(cmd_run(args, settings))


if __name__ == '__main__':
    sys.exit(main())
