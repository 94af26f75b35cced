from __future__ import annotations

import math
import re
from collections.abc import Iterable
from pathlib import Path

from pypdf import PdfReader

_whitespace_re = re.compile(r"[ \t]+")
_many_newlines_re = re.compile(r"\n{3,}")
_any_space_re = re.compile(r"\s+")

_date_re = re.compile(r"(\d{4})(?:-(\d{2}))?(?:-(\d{2}))?")
_paren_re = re.compile(r"\(([^)]+)\)")
_iso_duration_re = re.compile(r"^PT(?:(\d+(?:\.\d+)?)H)?(?:(\d+(?:\.\d+)?)M)?(?:(\d+(?:\.\d+)?)S)?$", re.IGNORECASE)
_bare_number_re = re.compile(r"^\d+(?:\.\d+)?$")
_clock_re = re.compile(r"^(\d{1,3}):(\d{2})(?::(\d{2}))?$")
_unit_re = re.compile(
    r"(\d+(?:\.\d+)?)\s*(hours?|hrs?|h|minutes?|mins?|min|m|seconds?|secs?|sec|s)",
    re.IGNORECASE,
)
_advisory_re = re.compile(r"sensitive|harmful|offensive|explicit|warning", re.IGNORECASE)
_list_split_re = re.compile(r"[;,\n]+")


def _clean_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _whitespace_re.sub(" ", text)
    text = _many_newlines_re.sub("\n\n", text)
    return text.strip()


def normalize_space(value: str) -> str:
    """Collapse all whitespace (including non-breaking spaces) to single spaces."""
    return _any_space_re.sub(" ", value.replace("\u00a0", " ")).strip()


def extract_pdf_pages(pdf_path: Path) -> list[str]:
    reader = PdfReader(str(pdf_path))
    pages: list[str] = []
    for page in reader.pages:
        t = page.extract_text() or ""
        pages.append(_clean_text(t))
    return pages


def normalize_pdf_pages(pages: list[str]) -> str:
    return _clean_text("\n\n".join(p for p in pages if p))


def normalize_date(value: str | None) -> str | None:
    """Truncate to the leading ``YYYY``, ``YYYY-MM`` or ``YYYY-MM-DD`` found.

    Strings without a four-digit year are returned trimmed but otherwise
    unchanged.
    """
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    m = _date_re.search(trimmed)
    if not m:
        return trimmed
    year, month, day = m.groups()
    if not month:
        return year
    if not day:
        return f"{year}-{month}"
    return f"{year}-{month}-{day}"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_duration_seconds(raw: str | None) -> int | None:
    """Parse a human or machine duration into whole seconds.

    Forms are tried in order and the first that parses wins: a parenthesized
    inner value, ISO-8601 ``PT#H#M#S``, a bare number of seconds, a clock
    string (``H:MM:SS`` or ``MM:SS``), then a free-text sum of
    ``<number><unit>`` tokens such as ``"1 hr 3 min"``.
    """
    if raw is None:
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None

    paren = _paren_re.search(trimmed)
    if paren:
        parsed = parse_duration_seconds(paren.group(1))
        if parsed is not None:
            return parsed

    iso = _iso_duration_re.match(trimmed)
    if iso and any(iso.groups()):
        hours, minutes, seconds = (float(g) if g else 0.0 for g in iso.groups())
        return _round_half_up(hours * 3600 + minutes * 60 + seconds)

    if _bare_number_re.match(trimmed):
        return _round_half_up(float(trimmed))

    clock = _clock_re.match(trimmed)
    if clock:
        first, second, third = clock.groups()
        if third is not None:
            return int(first) * 3600 + int(second) * 60 + int(third)
        return int(first) * 60 + int(second)

    total = 0.0
    matched = False
    for m in _unit_re.finditer(trimmed):
        matched = True
        amount = float(m.group(1))
        unit = m.group(2).lower()
        if unit.startswith("h"):
            total += amount * 3600
        elif unit.startswith("m"):
            total += amount * 60
        else:
            total += amount
    if matched:
        return _round_half_up(total)
    return None


def detect_advisory(*fields: str | None) -> bool:
    combined = " ".join(f for f in fields if f)
    return bool(_advisory_re.search(combined))


def humanize_collection(value: str) -> str:
    """``"mayors_office-press"`` -> ``"Mayors Office Press"``."""
    words = re.sub(r"[_-]+", " ", value).split()
    return " ".join(w[:1].upper() + w[1:] for w in words)


def split_list_values(values: Iterable[str]) -> list[str]:
    """Split label-sourced values on commas, semicolons and newlines."""
    parts: list[str] = []
    for value in values:
        parts.extend(p.strip() for p in _list_split_re.split(value))
    return dedupe_strings(parts)


def dedupe_strings(*lists: Iterable[str] | None) -> list[str]:
    """Union of every list, first occurrence wins, compared after trimming."""
    seen: dict[str, None] = {}
    for values in lists:
        if not values:
            continue
        for value in values:
            trimmed = value.strip()
            if trimmed and trimmed not in seen:
                seen[trimmed] = None
    return list(seen)
