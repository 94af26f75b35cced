"""Content-addressed ingestion of local files and harvested batches.

Local files are identified by the SHA-256 of their bytes and described from
their path under the collection root. Harvested batches are validated line by
line. Sources are merged in the order given, later sources replacing earlier
ones with the same id, and the result is written to the store in one
transaction.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import yaml
from PIL import Image
from pydantic import ValidationError

from archiveharvest.db import list_items, rebuild_store, upsert_items
from archiveharvest.pipeline.classify import media_type_for_extension
from archiveharvest.pipeline.hashing import item_id_from_digest, sha256_file
from archiveharvest.pipeline.io import iter_jsonl_lines, utc_now_iso, write_jsonl
from archiveharvest.pipeline.normalize import (
    dedupe_strings,
    extract_pdf_pages,
    normalize_date,
    normalize_pdf_pages,
)
from archiveharvest.pipeline.types import ItemRecord, MediaType, RunSummary
from archiveharvest.schemas import BatchRecord, BatchValidationError

logger = logging.getLogger(__name__)

IngestMode = Literal["rebuild", "incremental"]

THUMBNAIL_SIZE = (800, 800)
THUMBNAIL_QUALITY = 80
DEFAULT_COLLECTION_LABEL = "Local collections"
SENSITIVE_RIGHTS_NOTE = "Contains potentially harmful content."

_date_segment_re = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_sensitive_segment_re = re.compile(r"harmful|sensitive", re.IGNORECASE)
_front_matter_re = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_list_split_re = re.compile(r"[;,\n]+")


@dataclass(frozen=True)
class IngestSource:
    kind: Literal["root", "batch"]
    path: Path


@dataclass
class IngestSummary(RunSummary):
    items: int = 0
    collections: int = 0
    mode: IngestMode = "rebuild"


@dataclass(frozen=True)
class PathMetadata:
    title: str
    date: str | None
    collection: str | None
    series: str | None
    source_url: str | None
    rights: str | None
    citation: str
    advisory: bool


def path_metadata(relative: Path, display_path: str) -> PathMetadata:
    """Describe a file from its path segments below the collection root."""
    segments = relative.parts
    title = re.sub(r"[_-]+", " ", relative.stem).strip() or relative.stem
    date = next((s for s in segments if _date_segment_re.match(s)), None)
    collection = segments[0] if len(segments) > 1 else None
    series = " / ".join(segments[1:-1]) if len(segments) > 2 else None

    source_url = None
    for i, segment in enumerate(segments[:-1]):
        if segment.startswith("https:"):
            source_url = "https://" + "/".join(segments[i + 1 :])
            break

    sensitive = any(_sensitive_segment_re.search(s) for s in segments)
    rights = SENSITIVE_RIGHTS_NOTE if sensitive else None
    citation = (
        f"{title}. {collection or DEFAULT_COLLECTION_LABEL}. {date or 'Date unknown'}. Repo path: {display_path}."
    )
    return PathMetadata(
        title=title,
        date=date,
        collection=collection,
        series=series or None,
        source_url=source_url,
        rights=rights,
        citation=citation,
        advisory=sensitive,
    )


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    m = _front_matter_re.match(text)
    if not m:
        return {}, text
    try:
        loaded = yaml.safe_load(m.group(1))
    except yaml.YAMLError as e:
        logger.warning("Ignoring unparseable front matter: %s", e)
        return {}, text[m.end() :]
    return (loaded if isinstance(loaded, dict) else {}), text[m.end() :]


def _front_matter_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(dedupe_strings(_list_split_re.split(value)))
    if isinstance(value, list):
        return tuple(dedupe_strings(str(v) for v in value if v is not None))
    return ()


def _first_lines(text: str, start: int, stop: int) -> str | None:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    joined = " ".join(lines[start:stop])
    return joined or None


def iter_local_files(root: Path) -> Iterator[Path]:
    """Yield supported files under ``root`` in a stable order."""
    for path in sorted(root.rglob("*")):
        if path.is_file() and media_type_for_extension(path.suffix) is not None:
            yield path


def find_adjacent_transcript(media_path: Path) -> str | None:
    """Text of the sidecar transcript next to a media file.

    ``<stem>.txt`` and ``<stem>.md`` win; otherwise any ``<stem>*`` text file,
    in name order.
    """
    stem = media_path.stem
    exact = {f"{stem}.txt", f"{stem}.md"}
    candidates = sorted(
        (
            p
            for p in media_path.parent.iterdir()
            if p.is_file() and p.name.startswith(stem) and p.suffix.lower() in (".txt", ".md")
        ),
        key=lambda p: (p.name not in exact, p.name),
    )
    for candidate in candidates:
        try:
            return candidate.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read transcript %s: %s", candidate, e)
    return None


def make_thumbnail(image_path: Path, thumbnails_dir: Path, digest: str) -> str:
    """Write a bounded JPEG thumbnail and return its public-relative path."""
    name = f"{digest[:16]}.jpg"
    thumbnails_dir.mkdir(parents=True, exist_ok=True)
    with Image.open(image_path) as img:
        rgb = img.convert("RGB")
        rgb.thumbnail(THUMBNAIL_SIZE)
        rgb.save(thumbnails_dir / name, "JPEG", quality=THUMBNAIL_QUALITY)
    return f"{thumbnails_dir.name}/{name}"


def build_local_item(
    path: Path,
    *,
    root: Path,
    thumbnails_dir: Path,
    repo_root: Path | None = None,
    added_at: str | None = None,
) -> ItemRecord | None:
    media_type: MediaType | None = media_type_for_extension(path.suffix)
    if media_type is None:
        return None
    digest = sha256_file(path)
    relative = path.relative_to(root)
    display_path = _display_path(path, root, repo_root)
    meta = path_metadata(relative, display_path)

    item = ItemRecord(
        id=item_id_from_digest(digest),
        title=meta.title,
        media_type=media_type,
        checksum_sha256=digest,
        added_at=added_at or utc_now_iso(),
        date=meta.date,
        collection=meta.collection,
        series=meta.series,
        source_url=meta.source_url,
        local_path=display_path,
        rights=meta.rights,
        citation=meta.citation,
        advisory=meta.advisory,
    )

    if media_type == "text":
        front, body = split_front_matter(path.read_text(encoding="utf-8", errors="replace"))
        lines = [line.strip() for line in body.splitlines() if line.strip()]
        title = str(front.get("title") or "").strip() or (lines[0] if lines else path.stem)
        front_date = front.get("date")
        return item.with_updates(
            title=title,
            description=_first_lines(body, 1, 5),
            transcript_text=body,
            date=normalize_date(str(front_date)) if front_date else meta.date,
            creators=_front_matter_list(front.get("creators")),
            subjects=_front_matter_list(front.get("subjects")),
        )

    if media_type == "pdf":
        try:
            text = normalize_pdf_pages(extract_pdf_pages(path))
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not read PDF text layer for %s: %s", path, e)
            return item
        return item.with_updates(ocr_text=text or None, description=_first_lines(text, 0, 5))

    if media_type == "image":
        return item.with_updates(thumbnail=make_thumbnail(path, thumbnails_dir, digest))

    transcript = find_adjacent_transcript(path)
    description = _first_lines(transcript, 0, 5) if transcript else None
    return item.with_updates(transcript_text=transcript, description=description or meta.title)


def _display_path(path: Path, root: Path, repo_root: Path | None) -> str:
    if repo_root is not None:
        try:
            return path.resolve().relative_to(repo_root.resolve()).as_posix()
        except ValueError:
            pass
    return path.relative_to(root.parent).as_posix()


def load_local_tree(
    root: Path,
    *,
    thumbnails_dir: Path,
    repo_root: Path | None = None,
    summary: RunSummary | None = None,
) -> list[ItemRecord]:
    """Build items for every supported file under ``root``.

    A file that cannot be read is logged and counted as failed; the walk
    continues.
    """
    if not root.is_dir():
        logger.warning("Source directory %s not found; skipping local file ingest", root)
        return []
    added_at = utc_now_iso()
    items: list[ItemRecord] = []
    for path in iter_local_files(root):
        try:
            item = build_local_item(
                path, root=root, thumbnails_dir=thumbnails_dir, repo_root=repo_root, added_at=added_at
            )
        except Exception as e:  # noqa: BLE001
            logger.error("Failed to ingest file %s: %s: %s", path, type(e).__name__, e)
            if summary is not None:
                summary.record_failure(str(path))
            continue
        if item is not None:
            items.append(item)
    logger.info("Loaded %d local files from %s", len(items), root)
    return items


def _first_error(err: ValidationError) -> str:
    issue = err.errors()[0]
    location = ".".join(str(part) for part in issue.get("loc", ())) or "record"
    return f"invalid record ({location}): {issue.get('msg')}"


def load_batch(path: Path) -> list[ItemRecord]:
    """Parse a harvested batch file; the first malformed line raises ``BatchValidationError``."""
    added_at = utc_now_iso()
    items: list[ItemRecord] = []
    for line_no, line in iter_jsonl_lines(path):
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as e:
            raise BatchValidationError(path, line_no, f"invalid JSON: {e.msg}") from e
        if not isinstance(raw, dict):
            raise BatchValidationError(path, line_no, "expected a JSON object")
        try:
            record = BatchRecord.model_validate(raw)
        except ValidationError as e:
            raise BatchValidationError(path, line_no, _first_error(e)) from e
        items.append(record.to_item(added_at=added_at))
    logger.info("Loaded %d records from %s", len(items), path)
    return items


def merge_items(*groups: Iterable[ItemRecord]) -> list[ItemRecord]:
    """Last write wins per id; an id keeps the position of its first occurrence."""
    merged: dict[str, ItemRecord] = {}
    for group in groups:
        for item in group:
            merged[item.id] = item
    return list(merged.values())


def ingest(
    sources: list[IngestSource],
    *,
    store_path: Path,
    jsonl_path: Path,
    thumbnails_dir: Path,
    mode: IngestMode = "rebuild",
    repo_root: Path | None = None,
) -> IngestSummary:
    """Gather every source, merge them and write the store.

    Batches are parsed before anything is written, so a malformed batch
    leaves the store as it was.
    """
    summary = IngestSummary(mode=mode)
    groups: list[list[ItemRecord]] = []
    for source in sources:
        if source.kind == "batch":
            groups.append(load_batch(source.path))
        else:
            groups.append(
                load_local_tree(source.path, thumbnails_dir=thumbnails_dir, repo_root=repo_root, summary=summary)
            )
    items = merge_items(*groups)

    if mode == "rebuild":
        rebuild_store(store_path, items)
        exported = items
    else:
        upsert_items(store_path, items)
        exported = list_items(store_path)

    write_jsonl(jsonl_path, (item.to_batch_dict() for item in exported))
    summary.ok = len(items)
    summary.items = len(exported)
    summary.collections = len({item.collection for item in exported if item.collection})
    logger.info(
        "Ingested %d items (%s); store now holds %d items, %d failed files",
        summary.ok,
        mode,
        summary.items,
        summary.failed,
    )
    return summary
