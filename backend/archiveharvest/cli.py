"""Command line entry points: ``harvest``, ``ingest`` and ``transcribe``.

Exit codes: 0 success, 1 run failure (malformed batch, store error, every
seed failed), 2 configuration error, 3 blocked by robots.txt.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sqlite3
import sys
from pathlib import Path

from archiveharvest.pipeline.classify import GENERIC_DEFAULT, REMOTE_DETAIL_DEFAULT
from archiveharvest.pipeline.fetcher import CachedFetcher
from archiveharvest.pipeline.harvest import harvest
from archiveharvest.pipeline.ingest import IngestSource, ingest, load_batch
from archiveharvest.pipeline.ratelimit import RateLimiter
from archiveharvest.pipeline.robots import RobotsDisallowedError
from archiveharvest.pipeline.seeds import SeedFileError, load_seeds
from archiveharvest.pipeline.status import StatusMap
from archiveharvest.pipeline.tools import ExternalToolRunner, resolve_tools
from archiveharvest.pipeline.transcribe import Transcriber, transcribe_batch
from archiveharvest.pipeline.types import MEDIA_TYPES
from archiveharvest.schemas import BatchValidationError
from archiveharvest.settings import ConfigurationError, Settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_ROBOTS = 3

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from e
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def _non_negative_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected a number, got {value!r}") from e
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be zero or greater, got {value!r}")
    return number


def _header(value: str) -> tuple[str, str]:
    name, sep, content = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected 'Name: value', got {value!r}")
    return name.strip(), content.strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="archiveharvest", description="Harvest, ingest and transcribe archival items")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: settings, INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("harvest", help="Harvest detail pages listed in a seed file into a JSONL batch")
    p.add_argument("--seeds", type=Path, required=True, help="Seed list (.txt URLs or .yaml seed objects)")
    p.add_argument("--out", type=Path, default=None, help="Output JSONL (default: data/harvest/items.jsonl)")
    p.add_argument("--concurrency", type=_positive_int, default=None, help="Pages processed concurrently")
    p.add_argument("--delay-ms", type=_non_negative_float, default=None, help="Minimum delay between requests")
    p.add_argument("--max", type=_positive_int, default=None, help="Process at most this many seeds")
    p.add_argument(
        "--default-media",
        choices=MEDIA_TYPES,
        default=GENERIC_DEFAULT,
        help=f"Media type when a page carries no type hint (default: {GENERIC_DEFAULT})",
    )
    p.add_argument(
        "--remote-detail",
        dest="default_media",
        action="store_const",
        const=REMOTE_DETAIL_DEFAULT,
        help=f"Seeds are audio-visual detail pages; unhinted pages become {REMOTE_DETAIL_DEFAULT}",
    )

    p = sub.add_parser("ingest", help="Build the searchable store from local files and harvested batches")
    p.add_argument(
        "--root",
        dest="sources",
        action="append",
        type=lambda v: IngestSource("root", Path(v)),
        help="Directory of local collection files (repeatable)",
    )
    p.add_argument(
        "--from-jsonl",
        dest="sources",
        action="append",
        type=lambda v: IngestSource("batch", Path(v)),
        help="Harvested JSONL batch (repeatable); later sources win on id collisions",
    )
    p.add_argument("--mode", choices=("rebuild", "incremental"), default="rebuild")
    p.add_argument("--db", type=Path, default=None, help="Store location (default: data/collections.db)")

    p = sub.add_parser("transcribe", help="Transcribe audio/video records and merge the results")
    p.add_argument("--source", type=Path, default=None, help="Input batch (default: data/harvest/items.jsonl)")
    p.add_argument("--out", type=Path, default=None, help="Merged output batch")
    p.add_argument("--media", choices=("audio", "video", "all"), default="all")
    p.add_argument("--concurrency", type=_positive_int, default=None)
    p.add_argument("--whisper-bin", type=Path, default=None)
    p.add_argument("--whisper-model", type=Path, default=None)
    p.add_argument("--ffmpeg-bin", type=Path, default=None)
    p.add_argument("--ffprobe-bin", type=Path, default=None)
    p.add_argument("--header", dest="headers", action="append", type=_header, default=[], help="'Name: value' (repeatable)")
    p.add_argument("--status-file", type=Path, default=None)
    p.add_argument("--job-timeout", type=_positive_int, default=None, help="Per-item wall clock limit in seconds")
    return parser


def _make_fetcher(settings: Settings, *, interval_s: float | None = None) -> CachedFetcher:
    limiter = RateLimiter(settings.request_interval_s if interval_s is None else interval_s)
    return CachedFetcher(
        cache_dir=settings.cache_dir,
        limiter=limiter,
        user_agent=settings.user_agent,
        timeout_s=settings.fetch_timeout_s,
        max_retries=settings.fetch_max_retries,
    )


async def _cmd_harvest(args: argparse.Namespace, settings: Settings) -> int:
    seeds = load_seeds(args.seeds, max_items=args.max)
    if not seeds:
        raise SeedFileError(f"No seeds found in {args.seeds}")
    interval_s = args.delay_ms / 1000.0 if args.delay_ms is not None else None
    async with _make_fetcher(settings, interval_s=interval_s) as fetcher:
        summary = await harvest(
            seeds,
            fetcher=fetcher,
            out_path=args.out or settings.harvest_path,
            concurrency=args.concurrency or settings.harvest_concurrency,
            default_media=args.default_media,
        )
    if summary.failed:
        logger.warning("%d seed(s) failed: %s", summary.failed, ", ".join(summary.failures))
    return EXIT_FAILURE if summary.ok == 0 else EXIT_OK


def _cmd_ingest(args: argparse.Namespace, settings: Settings) -> int:
    sources: list[IngestSource] = args.sources or []
    if not sources:
        raise ConfigurationError("Pass at least one --root or --from-jsonl source")
    for source in sources:
        if source.kind == "batch" and not source.path.is_file():
            raise ConfigurationError(f"JSONL source not found: {source.path}")
    store_path = args.db or settings.resolved_store_path
    ingest(
        sources,
        store_path=store_path,
        jsonl_path=store_path.parent / "items.jsonl",
        thumbnails_dir=settings.thumbnails_dir,
        mode=args.mode,
        repo_root=settings.repo_root,
    )
    return EXIT_OK


async def _cmd_transcribe(args: argparse.Namespace, settings: Settings) -> int:
    source = args.source or settings.harvest_path
    if not source.is_file():
        raise ConfigurationError(f"Source batch not found: {source}")
    tools = resolve_tools(
        settings,
        whisper_bin=args.whisper_bin,
        whisper_model=args.whisper_model,
        ffmpeg_bin=args.ffmpeg_bin,
        ffprobe_bin=args.ffprobe_bin,
    )
    status_path = args.status_file or settings.status_path
    try:
        status = StatusMap.load(status_path)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    items = load_batch(source)

    async with _make_fetcher(settings) as fetcher:
        transcriber = Transcriber(
            runner=ExternalToolRunner(tools),
            status=status,
            transcripts_dir=settings.transcripts_dir,
            captions_dir=settings.captions_dir,
            fetcher=fetcher,
            headers=dict(args.headers),
            concurrency=args.concurrency or settings.transcribe_concurrency,
            job_timeout_s=float(args.job_timeout or settings.job_timeout_s),
        )
        await transcribe_batch(
            items,
            transcriber=transcriber,
            out_path=args.out or settings.transcribed_path,
            media=args.media,
        )
    return EXIT_OK


def main(argv: list[str] | None = None, *, settings: Settings | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = settings or Settings()
    level = args.log_level or settings.log_level.upper()
    if level not in LOG_LEVELS:
        parser.print_usage(sys.stderr)
        print(f"error: unknown log level {level!r}; expected one of {', '.join(LOG_LEVELS)}", file=sys.stderr)
        return EXIT_CONFIG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "harvest":
            return asyncio.run(_cmd_harvest(args, settings))
        if args.command == "ingest":
            return _cmd_ingest(args, settings)
        return asyncio.run(_cmd_transcribe(args, settings))
    except (ConfigurationError, SeedFileError) as e:
        parser.print_usage(sys.stderr)
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except RobotsDisallowedError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ROBOTS
    except BatchValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except sqlite3.Error as e:
        print(f"error: store write failed: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
