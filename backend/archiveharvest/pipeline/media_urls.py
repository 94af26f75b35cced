from __future__ import annotations

import logging
import re
from typing import Literal
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from archiveharvest.pipeline.fetcher import CachedFetcher
from archiveharvest.pipeline.types import ItemRecord

logger = logging.getLogger(__name__)

MediaKind = Literal["audio", "video"]

_VIDEO_EXTENSIONS = {".mp4", ".m4v", ".mov", ".webm", ".ogv", ".m3u8", ".mkv"}
_AUDIO_EXTENSIONS = {".mp3", ".m4a", ".wav", ".ogg", ".oga", ".opus", ".aac", ".flac"}

_META_MEDIA_KEYS = (
    ("property", "og:video:secure_url"),
    ("property", "og:video:url"),
    ("property", "og:video"),
    ("property", "og:audio:secure_url"),
    ("property", "og:audio:url"),
    ("property", "og:audio"),
    ("name", "twitter:player:stream"),
    ("itemprop", "contentUrl"),
)

_media_url_re = re.compile(
    r"""(?:https?:)?//[^\s"'<>()]+?\.(?:mp4|m4v|mov|webm|ogv|m3u8|mkv|mp3|m4a|wav|ogg|oga|opus|aac|flac)(?:\?[^\s"'<>()]*)?""",
    re.IGNORECASE,
)


def media_kind_for_url(url: str) -> MediaKind | None:
    path = urlsplit(url).path.lower()
    dot = path.rfind(".")
    if dot < 0:
        return None
    suffix = path[dot:]
    if suffix in _VIDEO_EXTENSIONS:
        return "video"
    if suffix in _AUDIO_EXTENSIONS:
        return "audio"
    return None


def collect_media_candidates(html: str | bytes, page_url: str) -> list[str]:
    """Every playable reference on a page, in discovery order, without duplicates.

    Meta tags come first, then ``<video>``/``<audio>`` elements and their
    ``<source>`` children, then any media-file URL found in the raw text.
    """
    soup = BeautifulSoup(html, "html.parser")
    found: list[str] = []

    for attr, key in _META_MEDIA_KEYS:
        for tag in soup.find_all("meta", attrs={attr: key}):
            content = tag.get("content")
            if isinstance(content, str) and content.strip():
                found.append(content.strip())

    for player in soup.find_all(["video", "audio"]):
        src = player.get("src")
        if isinstance(src, str) and src.strip():
            found.append(src.strip())
        for source in player.find_all("source"):
            src = source.get("src")
            if isinstance(src, str) and src.strip():
                found.append(src.strip())

    raw = html.decode("utf-8", errors="replace") if isinstance(html, bytes) else html
    found.extend(m.group(0) for m in _media_url_re.finditer(raw))

    resolved: dict[str, None] = {}
    for candidate in found:
        url = urljoin(page_url, candidate)
        if urlsplit(url).scheme in ("http", "https"):
            resolved.setdefault(url, None)
    return list(resolved)


def choose_media_url(candidates: list[str], preferred: MediaKind | None = None) -> str | None:
    if not candidates:
        return None
    kinds = [(url, media_kind_for_url(url)) for url in candidates]
    for wanted in (preferred, "video", "audio"):
        if wanted is None:
            continue
        for url, kind in kinds:
            if kind == wanted:
                return url
    return candidates[0]


def discover_media_url(html: str | bytes, page_url: str, preferred: MediaKind | None = None) -> str | None:
    return choose_media_url(collect_media_candidates(html, page_url), preferred)


async def resolve_media_url(item: ItemRecord, fetcher: CachedFetcher) -> str | None:
    """Known ``mediaUrl`` if the record has one, else the best URL on its source page."""
    if item.media_url:
        return item.media_url
    if not item.source_url:
        return None
    html = await fetcher.fetch(item.source_url)
    preferred: MediaKind | None = item.media_type if item.media_type in ("audio", "video") else None  # type: ignore[assignment]
    url = discover_media_url(html, item.source_url, preferred)
    if url:
        logger.debug("Discovered media URL for %s: %s", item.id, url)
    return url
