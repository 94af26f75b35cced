from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from archiveharvest.pipeline.types import MEDIA_TYPES, SeedRecord

logger = logging.getLogger(__name__)

_list_split_re = re.compile(r"[;,\n]+")

_TEXT_FIELDS = ("title", "date", "collection", "series", "rights", "citation", "description")


class SeedFileError(ValueError):
    """Raised when a seed file is missing, unparseable, or names an invalid URL."""


def load_seeds(path: Path, *, max_items: int | None = None) -> list[SeedRecord]:
    """Read seeds from a plain URL list or a YAML file of seed objects."""
    if not path.exists():
        raise SeedFileError(f"Seeds file not found: {path}")
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yml", ".yaml"):
        seeds = _parse_yaml_seeds(text, path)
    else:
        seeds = [SeedRecord(url=_validated_url(line, path)) for line in _iter_url_lines(text)]
    if max_items is not None:
        seeds = seeds[:max_items]
    return seeds


def _iter_url_lines(text: str) -> list[str]:
    lines = (line.strip() for line in text.splitlines())
    return [line for line in lines if line and not line.startswith("#")]


def _validated_url(raw: str, path: Path) -> str:
    url = raw.strip()
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise SeedFileError(f"{path}: not an absolute http(s) URL: {raw!r}")
    return url


def _parse_yaml_seeds(text: str, path: Path) -> list[SeedRecord]:
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SeedFileError(f"{path}: invalid YAML: {e}") from e
    if isinstance(loaded, dict):
        loaded = loaded.get("items")
    if loaded is None:
        return []
    if not isinstance(loaded, list):
        raise SeedFileError(f"{path}: expected a list of seeds or a mapping with an 'items' list")
    return [_seed_from_mapping(entry, path, index) for index, entry in enumerate(loaded, start=1)]


def _seed_from_mapping(entry: Any, path: Path, index: int) -> SeedRecord:
    if isinstance(entry, str):
        return SeedRecord(url=_validated_url(entry, path))
    if not isinstance(entry, dict):
        raise SeedFileError(f"{path}: seed #{index} must be a URL or a mapping")
    url = entry.get("url")
    if not isinstance(url, str):
        raise SeedFileError(f"{path}: seed #{index} has no 'url'")
    if entry.get("id"):
        logger.debug("Ignoring id override for %s; ids derive from the canonical URL", url)

    overrides: dict[str, Any] = {}
    for name in _TEXT_FIELDS:
        value = entry.get(name)
        if value is not None and str(value).strip():
            overrides[name] = str(value).strip()

    media_type = entry.get("mediaType")
    if media_type is not None:
        if media_type not in MEDIA_TYPES:
            raise SeedFileError(f"{path}: seed #{index} has unknown mediaType {media_type!r}")
        overrides["media_type"] = media_type

    advisory = entry.get("advisory")
    if advisory is not None:
        if advisory not in (True, False, 0, 1):
            raise SeedFileError(f"{path}: seed #{index} advisory must be a boolean")
        overrides["advisory"] = bool(advisory)

    for name in ("creators", "subjects"):
        value = entry.get(name)
        if value is not None:
            overrides[name] = _seed_list(value, path, index, name)

    return SeedRecord(url=_validated_url(url, path), **overrides)


def _seed_list(value: Any, path: Path, index: int, name: str) -> tuple[str, ...]:
    if isinstance(value, str):
        parts = _list_split_re.split(value)
    elif isinstance(value, list):
        parts = [str(v) for v in value if v is not None]
    else:
        raise SeedFileError(f"{path}: seed #{index} {name} must be a string or a list")
    return tuple(p.strip() for p in parts if p.strip())
