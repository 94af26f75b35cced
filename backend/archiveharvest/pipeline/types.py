from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Literal

MediaType = Literal["audio", "video", "text", "pdf", "image"]
MEDIA_TYPES: tuple[str, ...] = ("audio", "video", "text", "pdf", "image")

JobStatus = Literal["complete", "failed"]


@dataclass(frozen=True)
class SeedRecord:
    """Operator-supplied starting point for one remote item.

    Every field except ``url`` is an optional override applied on top of what
    the extractor finds on the page.
    """

    url: str
    title: str | None = None
    date: str | None = None
    collection: str | None = None
    series: str | None = None
    media_type: MediaType | None = None
    rights: str | None = None
    citation: str | None = None
    advisory: bool | None = None
    creators: tuple[str, ...] | None = None
    subjects: tuple[str, ...] | None = None
    description: str | None = None


@dataclass(frozen=True)
class NormalizedRecord:
    id: str
    title: str
    date: str | None
    creators: tuple[str, ...]
    subjects: tuple[str, ...]
    collection: str | None
    series: str | None
    source_url: str
    media_type: MediaType
    duration_sec: float | None
    thumbnail: str | None
    rights: str | None
    citation: str | None
    advisory: bool
    description: str | None
    checksum_sha256: str


@dataclass(frozen=True)
class ItemRecord:
    id: str
    title: str
    media_type: MediaType
    checksum_sha256: str
    added_at: str
    description: str | None = None
    date: str | None = None
    creators: tuple[str, ...] = ()
    subjects: tuple[str, ...] = ()
    collection: str | None = None
    series: str | None = None
    source_url: str | None = None
    local_path: str | None = None
    duration_sec: float | None = None
    thumbnail: str | None = None
    transcript_text: str | None = None
    ocr_text: str | None = None
    captions_vtt_path: str | None = None
    captions_srt_path: str | None = None
    rights: str | None = None
    citation: str | None = None
    advisory: bool = False
    media_url: str | None = None

    @classmethod
    def from_normalized(cls, record: NormalizedRecord, *, added_at: str) -> ItemRecord:
        return cls(
            id=record.id,
            title=record.title,
            media_type=record.media_type,
            checksum_sha256=record.checksum_sha256,
            added_at=added_at,
            description=record.description,
            date=record.date,
            creators=record.creators,
            subjects=record.subjects,
            collection=record.collection,
            series=record.series,
            source_url=record.source_url,
            duration_sec=record.duration_sec,
            thumbnail=record.thumbnail,
            rights=record.rights,
            citation=record.citation,
            advisory=record.advisory,
        )

    def with_updates(self, **changes: Any) -> ItemRecord:
        return replace(self, **changes)

    def to_batch_dict(self) -> dict[str, Any]:
        """Serialize to one harvested-batch line (camelCase keys)."""
        data = asdict(self)
        out: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, tuple):
                value = list(value) if value else None
            out[_camel(key)] = value
        if out.get("mediaUrl") is None:
            out.pop("mediaUrl", None)
        return out


@dataclass(frozen=True)
class StatusEntry:
    status: JobStatus
    updated_at: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.status, "updatedAt": self.updated_at}
        if self.error:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusEntry:
        status = data.get("status")
        if status not in ("complete", "failed"):
            raise ValueError(f"Unknown job status: {status!r}")
        return cls(
            status=status,
            updated_at=str(data.get("updatedAt") or ""),
            error=data.get("error") or None,
        )


@dataclass
class RunSummary:
    """Counts reported after a harvest, ingest or transcription run."""

    ok: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[str] = field(default_factory=list)

    def record_failure(self, key: str) -> None:
        self.failed += 1
        self.failures.append(key)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)
