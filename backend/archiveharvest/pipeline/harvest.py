"""Harvest run: robots gate, throttled cached fetches, extraction, batch file."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from archiveharvest.pipeline.classify import GENERIC_DEFAULT
from archiveharvest.pipeline.extract import extract_record
from archiveharvest.pipeline.fetcher import CachedFetcher, FetchError
from archiveharvest.pipeline.io import utc_now_iso, write_jsonl
from archiveharvest.pipeline.robots import ensure_seeds_allowed
from archiveharvest.pipeline.types import ItemRecord, MediaType, RunSummary, SeedRecord

logger = logging.getLogger(__name__)


@dataclass
class HarvestSummary(RunSummary):
    written: int = 0
    out_path: Path | None = None


async def _harvest_one(
    seed: SeedRecord,
    *,
    fetcher: CachedFetcher,
    semaphore: asyncio.Semaphore,
    default_media: MediaType,
) -> ItemRecord:
    async with semaphore:
        body = await fetcher.fetch(seed.url)
    record = extract_record(body, seed.url, seed, default_media=default_media)
    return ItemRecord.from_normalized(record, added_at=utc_now_iso())


async def harvest(
    seeds: list[SeedRecord],
    *,
    fetcher: CachedFetcher,
    out_path: Path,
    concurrency: int = 2,
    default_media: MediaType = GENERIC_DEFAULT,
) -> HarvestSummary:
    """Harvest every seed into a newline-delimited batch at ``out_path``.

    Each seed origin's robots policy is checked before any page is fetched
    and a disallowed seed aborts the whole run with ``RobotsDisallowedError``. Past
    that point failures are per seed: they are logged, counted and left out
    of the batch. Records are written in seed order with duplicate ids
    (several seeds resolving to one canonical page) collapsed to the first.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be a positive number")
    summary = HarvestSummary(out_path=out_path)
    if not seeds:
        write_jsonl(out_path, [])
        return summary

    await ensure_seeds_allowed(fetcher, [seed.url for seed in seeds])

    semaphore = asyncio.Semaphore(concurrency)
    results = await asyncio.gather(
        *(
            _harvest_one(seed, fetcher=fetcher, semaphore=semaphore, default_media=default_media)
            for seed in seeds
        ),
        return_exceptions=True,
    )

    records: list[ItemRecord] = []
    seen_ids: set[str] = set()
    for seed, result in zip(seeds, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            if isinstance(result, FetchError):
                logger.error("Harvest failed for %s (status=%s): %s", seed.url, result.status_code, result)
            else:
                logger.error("Harvest failed for %s: %s: %s", seed.url, type(result).__name__, result)
            summary.record_failure(seed.url)
            continue
        if result.id in seen_ids:
            logger.info("Skipping duplicate of %s from %s", result.id, seed.url)
            summary.skipped += 1
            continue
        seen_ids.add(result.id)
        records.append(result)
        summary.ok += 1
        logger.info("Harvested %r from %s", result.title, result.source_url)

    summary.written = write_jsonl(out_path, (r.to_batch_dict() for r in records))
    logger.info(
        "Wrote %d records to %s (ok=%d failed=%d skipped=%d)",
        summary.written,
        out_path,
        summary.ok,
        summary.failed,
        summary.skipped,
    )
    return summary
