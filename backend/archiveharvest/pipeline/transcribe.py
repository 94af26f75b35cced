"""Resumable transcription of audio and video records.

Each candidate item moves through: resolve media URL, extract a mono 16 kHz
track, run speech recognition, collect transcript and caption files. The
outcome is written to the status map as soon as the job ends. Completed jobs
whose outputs are still on disk are not run again; their outputs are merged
without invoking any tool.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import tempfile
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol

import anyio

from archiveharvest.pipeline.fetcher import CachedFetcher
from archiveharvest.pipeline.io import write_jsonl
from archiveharvest.pipeline.media_urls import media_kind_for_url, resolve_media_url
from archiveharvest.pipeline.status import StatusMap
from archiveharvest.pipeline.tools import ToolExecutionError
from archiveharvest.pipeline.types import ItemRecord, RunSummary

logger = logging.getLogger(__name__)

MediaFilter = Literal["audio", "video", "all"]

OUTPUT_SUFFIXES = (".txt", ".vtt", ".srt")


class MissingOutputError(Exception):
    def __init__(self, item_id: str, missing: list[Path]) -> None:
        names = ", ".join(p.name for p in missing)
        super().__init__(f"Expected outputs missing for {item_id}: {names}")
        self.item_id = item_id
        self.missing = missing


class MediaNotFoundError(Exception):
    """No playable media URL is known or discoverable for an item."""


class TranscriptionRunner(Protocol):
    async def extract_audio(
        self, media_url: str, wav_path: Path, headers: Mapping[str, str] | None = None
    ) -> None: ...

    async def transcribe(self, wav_path: Path, out_prefix: Path) -> None: ...

    async def probe_duration(self, media_path: Path) -> float | None: ...


@dataclass
class TranscribeSummary(RunSummary):
    written: int = 0
    out_path: Path | None = None


@contextlib.contextmanager
def job_workdir(item_id: str, parent: Path | None = None) -> Iterator[Path]:
    """Per-job scratch directory, removed on every exit path.

    A failed removal is logged and never replaces the job's own exception.
    """
    if parent is not None:
        parent.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=f"transcribe-{item_id}-", dir=parent))
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("Could not remove work directory %s: %s", path, e)


def output_paths(transcripts_dir: Path, item_id: str) -> dict[str, Path]:
    return {suffix: transcripts_dir / f"{item_id}{suffix}" for suffix in OUTPUT_SUFFIXES}


def outputs_present(transcripts_dir: Path, item_id: str) -> bool:
    return all(p.is_file() for p in output_paths(transcripts_dir, item_id).values())


def select_candidates(items: list[ItemRecord], media: MediaFilter, status: StatusMap) -> list[ItemRecord]:
    """Audio/video items matching ``media`` that lack a transcript or already have a job entry."""
    kinds = ("audio", "video") if media == "all" else (media,)
    return [
        item
        for item in items
        if item.media_type in kinds and (not item.transcript_text or item.id in status)
    ]


def is_already_complete(item: ItemRecord, status: StatusMap, transcripts_dir: Path) -> bool:
    entry = status.get(item.id)
    return entry is not None and entry.status == "complete" and outputs_present(transcripts_dir, item.id)


def collect_outputs(item_id: str, *, transcripts_dir: Path, captions_dir: Path) -> dict[str, Any]:
    """Read the transcript and publish caption files; returns record field updates."""
    paths = output_paths(transcripts_dir, item_id)
    missing = [p for p in paths.values() if not p.is_file()]
    if missing:
        raise MissingOutputError(item_id, missing)
    captions_dir.mkdir(parents=True, exist_ok=True)
    updates: dict[str, Any] = {
        "transcript_text": paths[".txt"].read_text(encoding="utf-8", errors="replace").strip() or None,
    }
    for suffix, field_name in ((".vtt", "captions_vtt_path"), (".srt", "captions_srt_path")):
        target = captions_dir / f"{item_id}{suffix}"
        shutil.copyfile(paths[suffix], target)
        updates[field_name] = f"{captions_dir.name}/{target.name}"
    return updates


class Transcriber:
    """Drives transcription jobs for a record set with a bounded worker pool."""

    def __init__(
        self,
        *,
        runner: TranscriptionRunner,
        status: StatusMap,
        transcripts_dir: Path,
        captions_dir: Path,
        fetcher: CachedFetcher | None = None,
        headers: Mapping[str, str] | None = None,
        concurrency: int = 1,
        job_timeout_s: float = 3600.0,
        workdir_parent: Path | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be a positive number")
        self._runner = runner
        self._status = status
        self._transcripts_dir = transcripts_dir
        self._captions_dir = captions_dir
        self._fetcher = fetcher
        self._headers = dict(headers or {})
        self._concurrency = concurrency
        self._job_timeout_s = job_timeout_s
        self._workdir_parent = workdir_parent

    async def _media_url_for(self, item: ItemRecord) -> str:
        if item.media_url:
            return item.media_url
        if self._fetcher is None or not item.source_url:
            raise MediaNotFoundError(f"No media URL known for {item.id}")
        url = await resolve_media_url(item, self._fetcher)
        if not url:
            raise MediaNotFoundError(f"No playable media found on {item.source_url}")
        return url

    async def _run_steps(self, item: ItemRecord) -> dict[str, Any]:
        media_url = await self._media_url_for(item)
        self._transcripts_dir.mkdir(parents=True, exist_ok=True)
        with job_workdir(item.id, self._workdir_parent) as workdir:
            wav_path = workdir / f"{item.id}.wav"
            await self._runner.extract_audio(media_url, wav_path, self._headers or None)
            await self._runner.transcribe(wav_path, self._transcripts_dir / item.id)
            updates = collect_outputs(item.id, transcripts_dir=self._transcripts_dir, captions_dir=self._captions_dir)
            duration = await self._runner.probe_duration(wav_path)
        updates["media_url"] = media_url
        updates["media_type"] = media_kind_for_url(media_url) or item.media_type
        if duration is not None:
            updates["duration_sec"] = round(duration, 3)
        return updates

    async def _run_job(self, item: ItemRecord, semaphore: asyncio.Semaphore) -> dict[str, Any] | None:
        async with semaphore:
            try:
                with anyio.fail_after(self._job_timeout_s):
                    updates = await self._run_steps(item)
            except TimeoutError:
                message = f"timed out after {self._job_timeout_s:g}s"
                logger.error("Transcription failed for %s: %s", item.id, message)
                await self._status.record(item.id, "failed", message)
                return None
            except ToolExecutionError as e:
                logger.error("Transcription failed for %s: %s (exit code %d)", item.id, e.tool, e.returncode)
                await self._status.record(item.id, "failed", str(e))
                return None
            except Exception as e:  # noqa: BLE001
                logger.error("Transcription failed for %s: %s: %s", item.id, type(e).__name__, e)
                await self._status.record(item.id, "failed", str(e) or type(e).__name__)
                return None
            await self._status.record(item.id, "complete")
            logger.info("Transcribed %s", item.id)
            return updates

    async def run(self, items: list[ItemRecord], *, media: MediaFilter = "all") -> tuple[list[ItemRecord], TranscribeSummary]:
        """Process candidates and return the full record set with results merged in."""
        summary = TranscribeSummary()
        updates: dict[str, dict[str, Any]] = {}
        pending: list[ItemRecord] = []

        for item in select_candidates(items, media, self._status):
            if is_already_complete(item, self._status, self._transcripts_dir):
                updates[item.id] = collect_outputs(
                    item.id, transcripts_dir=self._transcripts_dir, captions_dir=self._captions_dir
                )
                summary.skipped += 1
                continue
            pending.append(item)

        logger.info("Transcribing %d items (%d already complete)", len(pending), summary.skipped)
        semaphore = asyncio.Semaphore(self._concurrency)
        results = await asyncio.gather(*(self._run_job(item, semaphore) for item in pending))
        for item, result in zip(pending, results):
            if result is None:
                summary.record_failure(item.id)
            else:
                updates[item.id] = result
                summary.ok += 1

        merged = [item.with_updates(**updates[item.id]) if item.id in updates else item for item in items]
        return merged, summary


async def transcribe_batch(
    items: list[ItemRecord],
    *,
    transcriber: Transcriber,
    out_path: Path,
    media: MediaFilter = "all",
) -> TranscribeSummary:
    merged, summary = await transcriber.run(items, media=media)
    summary.written = write_jsonl(out_path, (item.to_batch_dict() for item in merged))
    summary.out_path = out_path
    logger.info(
        "Wrote %d records to %s (ok=%d failed=%d skipped=%d)",
        summary.written,
        out_path,
        summary.ok,
        summary.failed,
        summary.skipped,
    )
    return summary
