"""Typed view over JSON-LD values.

Linked-data properties arrive as a bare string, an array, or a nested object
depending on the publisher. Values are wrapped once into ``LdString``,
``LdList`` or ``LdEntity`` and every field has one flattening function, so
callers never inspect raw JSON shapes.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Union

from bs4 import BeautifulSoup

from archiveharvest.pipeline.normalize import normalize_space

logger = logging.getLogger(__name__)

_keyword_split_re = re.compile(r"[;,]+")


@dataclass(frozen=True)
class LdString:
    value: str


@dataclass(frozen=True)
class LdList:
    items: tuple[LdValue, ...]


@dataclass(frozen=True)
class LdEntity:
    fields: Mapping[str, Any]

    def get(self, key: str) -> LdValue | None:
        return to_ld(self.fields.get(key))


LdValue = Union[LdString, LdList, LdEntity]


def to_ld(raw: Any) -> LdValue | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        return LdString(raw)
    if isinstance(raw, (int, float)):
        return LdString(str(raw))
    if isinstance(raw, list):
        items = tuple(v for v in (to_ld(entry) for entry in raw) if v is not None)
        return LdList(items)
    if isinstance(raw, dict):
        return LdEntity(raw)
    return None


def iter_blocks(soup: BeautifulSoup) -> Iterator[LdEntity]:
    """Yield every linked-data object in document order, arrays and ``@graph`` flattened."""
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        text = script.string or script.get_text()
        if not text or not text.strip():
            continue
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.debug("Skipping unparseable JSON-LD block: %s", e)
            continue
        yield from _flatten_block(parsed)


def _flatten_block(parsed: Any) -> Iterator[LdEntity]:
    if isinstance(parsed, list):
        for entry in parsed:
            yield from _flatten_block(entry)
    elif isinstance(parsed, dict):
        yield LdEntity(parsed)
        graph = parsed.get("@graph")
        if isinstance(graph, list):
            for entry in graph:
                yield from _flatten_block(entry)


def text_of(value: LdValue | None) -> str | None:
    """First non-empty scalar text carried by a value."""
    if isinstance(value, LdString):
        text = normalize_space(value.value)
        return text or None
    if isinstance(value, LdList):
        for item in value.items:
            text = text_of(item)
            if text:
                return text
        return None
    if isinstance(value, LdEntity):
        for key in ("@value", "value"):
            inner = value.get(key)
            if isinstance(inner, LdString):
                return text_of(inner)
    return None


def names_of(value: LdValue | None) -> list[str]:
    """Flatten creator-like values: strings, ``{name}``, or ``{givenName, familyName}``."""
    if isinstance(value, LdString):
        text = normalize_space(value.value)
        return [text] if text else []
    if isinstance(value, LdList):
        return [name for item in value.items for name in names_of(item)]
    if isinstance(value, LdEntity):
        name = value.get("name")
        if isinstance(name, LdString):
            return names_of(name)
        given = value.fields.get("givenName")
        family = value.fields.get("familyName")
        parts = [p.strip() for p in (given, family) if isinstance(p, str) and p.strip()]
        if parts:
            return [normalize_space(" ".join(parts))]
        raw = value.get("@value")
        if isinstance(raw, LdString):
            return names_of(raw)
    return []


def keywords_of(value: LdValue | None) -> list[str]:
    """Flatten subject-like values; strings split on commas and semicolons."""
    if isinstance(value, LdString):
        text = normalize_space(value.value)
        return [part.strip() for part in _keyword_split_re.split(text) if part.strip()]
    if isinstance(value, LdList):
        return [kw for item in value.items for kw in keywords_of(item)]
    if isinstance(value, LdEntity):
        for key in ("name", "@value"):
            inner = value.get(key)
            if isinstance(inner, LdString):
                return keywords_of(inner)
    return []


def url_of(value: LdValue | None) -> str | None:
    if isinstance(value, LdString):
        return value.value.strip() or None
    if isinstance(value, LdList):
        for item in value.items:
            url = url_of(item)
            if url:
                return url
        return None
    if isinstance(value, LdEntity):
        for key in ("url", "contentUrl"):
            inner = value.get(key)
            if isinstance(inner, LdString) and inner.value.strip():
                return inner.value.strip()
    return None


def strings_of(value: LdValue | None) -> list[str]:
    """Every plain string in a value; used for ``@type`` and format hints."""
    if isinstance(value, LdString):
        return [value.value] if value.value.strip() else []
    if isinstance(value, LdList):
        return [s for item in value.items if isinstance(item, LdString) for s in strings_of(item)]
    return []
