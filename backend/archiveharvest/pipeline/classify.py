from __future__ import annotations

from collections.abc import Iterable

from archiveharvest.pipeline.types import MediaType

# Tested in this order; the first kind with any matching keyword wins.
_KEYWORDS: tuple[tuple[MediaType, tuple[str, ...]], ...] = (
    ("video", ("video", "moving image", "videoobject")),
    ("audio", ("audio", "sound", "podcast", "audioobject")),
    ("pdf", ("pdf", "application/pdf")),
    ("image", ("image", "photograph", "still image")),
    ("text", ("text", "document", "manuscript")),
)

# Fallbacks when no hint matches. The two call sites intentionally differ.
REMOTE_DETAIL_DEFAULT: MediaType = "video"
GENERIC_DEFAULT: MediaType = "text"


def classify_hints(hints: Iterable[str | None]) -> MediaType | None:
    normalized = [h.strip().lower() for h in hints if h and h.strip()]
    for media_type, keywords in _KEYWORDS:
        if any(keyword in hint for hint in normalized for keyword in keywords):
            return media_type
    return None


def classify_media(
    hints: Iterable[str | None],
    *,
    has_video_tag: bool = False,
    has_audio_tag: bool = False,
    default: MediaType = GENERIC_DEFAULT,
) -> MediaType:
    """Infer an item's media kind.

    Keyword hints are consulted first, then native ``<video>``/``<audio>``
    markup, then ``default``. Callers pass their own default because the
    remote-detail and generic paths disagree on it.
    """
    matched = classify_hints(hints)
    if matched is not None:
        return matched
    if has_video_tag:
        return "video"
    if has_audio_tag:
        return "audio"
    return default


def media_type_for_extension(suffix: str) -> MediaType | None:
    return _EXTENSION_TYPES.get(suffix.lower())


_EXTENSION_TYPES: dict[str, MediaType] = {
    ".md": "text",
    ".txt": "text",
    ".pdf": "pdf",
    ".jpg": "image",
    ".jpeg": "image",
    ".png": "image",
    ".gif": "image",
    ".mp3": "audio",
    ".wav": "audio",
    ".mp4": "video",
}
