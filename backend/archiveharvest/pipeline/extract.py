"""Metadata extraction from archival detail pages.

Three passes run over one parsed document:

1. linked data (``application/ld+json`` blocks), first non-empty value per field
2. ``<dt>``/``<dd>`` label-value pairs, looked up through ``FIELD_SYNONYMS``
3. ``<meta>``/open-graph tags as a last resort

Scalar fields take the first pass that yields a value. Creators and subjects
are the union over all passes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from archiveharvest.pipeline import linked_data as ld
from archiveharvest.pipeline.classify import GENERIC_DEFAULT, classify_media
from archiveharvest.pipeline.hashing import item_id_for_url, sha256_text
from archiveharvest.pipeline.normalize import (
    dedupe_strings,
    detect_advisory,
    normalize_date,
    normalize_space,
    parse_duration_seconds,
    split_list_values,
)
from archiveharvest.pipeline.types import MediaType, NormalizedRecord, SeedRecord

logger = logging.getLogger(__name__)

FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "description": ("description", "abstract", "summary", "notes", "note"),
    "date": ("date", "date created", "date published", "temporal coverage", "coverage dates"),
    "creators": (
        "creator",
        "creators",
        "contributor",
        "contributors",
        "author",
        "authors",
        "photographer",
        "director",
        "producer",
    ),
    "subjects": ("subject", "subjects", "topic", "topics", "keywords", "coverage", "tags"),
    "collection": ("collection", "collection name", "collection title", "fonds", "record group", "source"),
    "series": ("series", "series title", "series name", "sub-series", "subseries"),
    "rights": ("rights", "rights statement", "usage", "terms of use", "copyright", "license"),
    "format": ("format", "type", "type of resource", "resource type", "genre", "medium"),
    "duration": ("duration", "runtime", "running time", "time duration", "extent", "digital duration"),
}

_META_TYPE_SELECTORS = (
    ("property", "og:type"),
    ("name", "twitter:card"),
    ("name", "medium"),
    ("property", "og:video:type"),
    ("property", "og:audio:type"),
)


@dataclass
class StructuredHints:
    """What the linked-data pass found. Lists are unions across all blocks."""

    title: str | None = None
    description: str | None = None
    date: str | None = None
    creators: list[str] = field(default_factory=list)
    subjects: list[str] = field(default_factory=list)
    thumbnail: str | None = None
    duration_sec: int | None = None
    type_hints: list[str] = field(default_factory=list)


def extract_structured(soup: BeautifulSoup, base_url: str) -> StructuredHints:
    hints = StructuredHints()
    creators: list[str] = []
    subjects: list[str] = []
    type_hints: list[str] = []

    for block in ld.iter_blocks(soup):
        type_hints.extend(ld.strings_of(block.get("@type")))

        if hints.title is None:
            hints.title = ld.text_of(block.get("name")) or ld.text_of(block.get("headline"))
        if hints.description is None:
            hints.description = ld.text_of(block.get("description"))
        if hints.date is None:
            hints.date = _first_text(block, "datePublished", "dateCreated", "temporalCoverage")

        for key in ("creator", "author", "contributor"):
            creators.extend(ld.names_of(block.get(key)))
        for key in ("keywords", "about", "genre"):
            subjects.extend(ld.keywords_of(block.get(key)))

        if hints.thumbnail is None:
            raw = ld.url_of(block.get("thumbnailUrl")) or ld.url_of(block.get("image"))
            if raw:
                hints.thumbnail = urljoin(base_url, raw)

        if hints.duration_sec is None:
            hints.duration_sec = parse_duration_seconds(
                _first_text(block, "duration", "timeRequired", "temporalDuration")
            )

        for key in ("encodingFormat", "fileFormat", "additionalType"):
            type_hints.extend(ld.strings_of(block.get(key)))

    hints.creators = dedupe_strings(creators)
    hints.subjects = dedupe_strings(subjects)
    hints.type_hints = dedupe_strings(type_hints)
    return hints


def _first_text(block: ld.LdEntity, *keys: str) -> str | None:
    for key in keys:
        text = ld.text_of(block.get(key))
        if text:
            return text
    return None


def extract_label_values(soup: BeautifulSoup) -> dict[str, list[str]]:
    """Map lowercased ``<dt>`` labels (trailing colons stripped) to their ``<dd>`` texts."""
    fields: dict[str, list[str]] = {}
    for dt in soup.find_all("dt"):
        key = normalize_space(dt.get_text(" ")).lower().rstrip(":").strip()
        if not key:
            continue
        values: list[str] = []
        sibling = dt.find_next_sibling()
        while sibling is not None and sibling.name == "dd":
            text = _multiline_text(sibling.get_text())
            if text:
                values.append(text)
            sibling = sibling.find_next_sibling()
        if values:
            fields[key] = values
    return fields


def _multiline_text(raw: str) -> str:
    lines = (normalize_space(line) for line in raw.splitlines())
    return "\n".join(line for line in lines if line)


def pick_field(fields: dict[str, list[str]], synonyms: tuple[str, ...]) -> str | None:
    for key in synonyms:
        values = fields.get(key.lower())
        if values:
            return normalize_space(values[0])
    return None


def pick_all(fields: dict[str, list[str]], synonyms: tuple[str, ...]) -> list[str]:
    collected: list[str] = []
    for key in synonyms:
        collected.extend(fields.get(key.lower(), ()))
    return collected


def _meta(soup: BeautifulSoup, attr: str, value: str) -> str | None:
    tag = soup.find("meta", attrs={attr: value})
    if tag is None:
        return None
    content = tag.get("content")
    if not isinstance(content, str):
        return None
    return normalize_space(content) or None


def _link_href(soup: BeautifulSoup, rel: str) -> str | None:
    for tag in soup.find_all("link", href=True):
        rels = tag.get("rel") or []
        if isinstance(rels, str):
            rels = rels.split()
        if rel in (r.lower() for r in rels):
            href = tag.get("href")
            if isinstance(href, str) and href.strip():
                return href.strip()
    return None


def canonical_url(soup: BeautifulSoup, fetched_url: str) -> str:
    """Self-declared page URL, resolved against the URL it was fetched from."""
    candidate = _link_href(soup, "canonical") or _meta(soup, "property", "og:url")
    if not candidate:
        return fetched_url
    return urljoin(fetched_url, candidate)


def _pick_title(soup: BeautifulSoup, fields: dict[str, list[str]]) -> str:
    from_label = pick_field(fields, ("title",))
    if from_label:
        return from_label
    og_title = _meta(soup, "property", "og:title")
    if og_title:
        return og_title
    h1 = soup.find("h1")
    if h1 is not None:
        text = normalize_space(h1.get_text(" "))
        if text:
            return text
    title_tag = soup.find("title")
    if title_tag is not None:
        text = normalize_space(title_tag.get_text(" "))
        if text:
            return text
    return "Untitled"


def _pick_thumbnail(soup: BeautifulSoup, base_url: str, structured: str | None) -> str | None:
    candidates = (
        structured,
        _meta(soup, "property", "og:image"),
        _meta(soup, "property", "og:image:url"),
        _meta(soup, "name", "twitter:image"),
        _link_href(soup, "image_src"),
    )
    for candidate in candidates:
        if candidate:
            return urljoin(base_url, candidate)
    return None


def extract_record(
    html: str | bytes,
    url: str,
    seed: SeedRecord | None = None,
    *,
    default_media: MediaType = GENERIC_DEFAULT,
) -> NormalizedRecord:
    """Build a normalized record from one fetched page.

    ``default_media`` is the media kind used when no hint on the page matches.
    Seed overrides are applied last, but never change the identity, which is
    always derived from the canonical URL.
    """
    soup = BeautifulSoup(html, "html.parser")
    canonical = canonical_url(soup, url)
    fields = extract_label_values(soup)
    structured = extract_structured(soup, canonical)

    title = structured.title or _pick_title(soup, fields)
    description = (
        structured.description
        or pick_field(fields, FIELD_SYNONYMS["description"])
        or _meta(soup, "name", "description")
        or _meta(soup, "property", "og:description")
    )
    date = structured.date or pick_field(fields, FIELD_SYNONYMS["date"])
    creators = dedupe_strings(structured.creators, split_list_values(pick_all(fields, FIELD_SYNONYMS["creators"])))
    subjects = dedupe_strings(structured.subjects, split_list_values(pick_all(fields, FIELD_SYNONYMS["subjects"])))
    rights = pick_field(fields, FIELD_SYNONYMS["rights"])

    hints = [*pick_all(fields, FIELD_SYNONYMS["format"]), *structured.type_hints]
    hints.extend(_meta(soup, attr, value) for attr, value in _META_TYPE_SELECTORS)
    media_type = classify_media(
        hints,
        has_video_tag=soup.find("video") is not None,
        has_audio_tag=soup.find("audio") is not None,
        default=default_media,
    )

    duration_sec = structured.duration_sec
    if duration_sec is None:
        duration_sec = parse_duration_seconds(pick_field(fields, FIELD_SYNONYMS["duration"]))
    if duration_sec is None:
        duration_sec = parse_duration_seconds(
            _meta(soup, "property", "video:duration") or _meta(soup, "itemprop", "duration")
        )

    record = NormalizedRecord(
        id=item_id_for_url(canonical),
        title=title,
        date=normalize_date(date),
        creators=tuple(creators),
        subjects=tuple(subjects),
        collection=pick_field(fields, FIELD_SYNONYMS["collection"]),
        series=pick_field(fields, FIELD_SYNONYMS["series"]),
        source_url=canonical,
        media_type=media_type,
        duration_sec=duration_sec,
        thumbnail=_pick_thumbnail(soup, canonical, structured.thumbnail),
        rights=rights,
        citation=None,
        advisory=detect_advisory(description, rights),
        description=description,
        checksum_sha256=sha256_text(canonical),
    )
    if seed is not None:
        record = apply_seed_overrides(record, seed)
    logger.debug("Extracted %s (%s) from %s", record.id, record.media_type, url)
    return record


def apply_seed_overrides(record: NormalizedRecord, seed: SeedRecord) -> NormalizedRecord:
    changes: dict[str, object] = {}
    for name in ("title", "collection", "series", "media_type", "rights", "citation", "description"):
        value = getattr(seed, name)
        if value:
            changes[name] = value
    if seed.date:
        changes["date"] = normalize_date(seed.date)
    if seed.creators is not None:
        changes["creators"] = tuple(dedupe_strings(seed.creators))
    if seed.subjects is not None:
        changes["subjects"] = tuple(dedupe_strings(seed.subjects))
    if seed.advisory is not None:
        changes["advisory"] = seed.advisory
    elif "description" in changes or "rights" in changes:
        changes["advisory"] = detect_advisory(
            changes.get("description", record.description),  # type: ignore[arg-type]
            changes.get("rights", record.rights),  # type: ignore[arg-type]
        )
    return replace(record, **changes) if changes else record
