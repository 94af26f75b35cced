from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from archiveharvest.pipeline.hashing import sha256_text
from archiveharvest.pipeline.normalize import dedupe_strings
from archiveharvest.pipeline.types import ItemRecord


class BatchValidationError(ValueError):
    """A harvested batch line failed to parse or validate.

    Ingestion stops at the first bad line; nothing from the batch is written.
    """

    def __init__(self, path: Path, line_no: int, message: str) -> None:
        super().__init__(f"{path}:{line_no}: {message}")
        self.path = path
        self.line_no = line_no


class BatchRecord(BaseModel):
    """One line of a harvested batch, validated strictly and normalized."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    media_type: Literal["text", "pdf", "image", "audio", "video"] = Field(alias="mediaType")
    description: str | None = None
    date: str | None = None
    creators: list[str] | None = None
    subjects: list[str] | None = None
    collection: str | None = None
    series: str | None = None
    source_url: str | None = Field(default=None, alias="sourceUrl")
    local_path: str | None = Field(default=None, alias="localPath")
    duration_sec: float | None = Field(default=None, ge=0, alias="durationSec")
    thumbnail: str | None = None
    transcript_text: str | None = Field(default=None, alias="transcriptText")
    ocr_text: str | None = Field(default=None, alias="ocrText")
    rights: str | None = None
    citation: str | None = None
    captions_vtt_path: str | None = Field(default=None, alias="captionsVttPath")
    captions_srt_path: str | None = Field(default=None, alias="captionsSrtPath")
    media_url: str | None = Field(default=None, alias="mediaUrl")
    checksum_sha256: str | None = Field(default=None, pattern=r"^[A-Fa-f0-9]{64}$", alias="checksumSha256")
    added_at: str | None = Field(default=None, alias="addedAt")
    advisory: bool = False

    @field_validator(
        "description",
        "date",
        "collection",
        "series",
        "source_url",
        "local_path",
        "thumbnail",
        "transcript_text",
        "ocr_text",
        "rights",
        "citation",
        "captions_vtt_path",
        "captions_srt_path",
        "media_url",
        "added_at",
    )
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v

    @field_validator("id")
    @classmethod
    def _id_is_file_safe(cls, v: str) -> str:
        # Ids name transcript, caption and scratch files.
        if "/" in v or "\\" in v or "\x00" in v or v in (".", ".."):
            raise ValueError("id must not contain path separators")
        return v

    @field_validator("creators", "subjects")
    @classmethod
    def _dedupe_list(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        cleaned = dedupe_strings(v)
        return cleaned or None

    @field_validator("duration_sec", mode="before")
    @classmethod
    def _coerce_duration(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, bool):
            raise ValueError("durationSec must be a number")
        if isinstance(v, str):
            try:
                return float(v.strip())
            except ValueError as e:
                raise ValueError("durationSec must be a number") from e
        return v

    @field_validator("advisory", mode="before")
    @classmethod
    def _coerce_advisory(cls, v: Any) -> Any:
        if v is None:
            return False
        if isinstance(v, bool):
            return v
        if isinstance(v, int) and v in (0, 1):
            return bool(v)
        raise ValueError("advisory must be a boolean or 0/1")

    def to_item(self, *, added_at: str) -> ItemRecord:
        """Convert to an ``ItemRecord``, filling the checksum and timestamp when absent."""
        checksum = self.checksum_sha256 or sha256_text(self.source_url or self.id)
        return ItemRecord(
            id=self.id,
            title=self.title,
            media_type=self.media_type,
            checksum_sha256=checksum.lower(),
            added_at=self.added_at or added_at,
            description=self.description,
            date=self.date,
            creators=tuple(self.creators or ()),
            subjects=tuple(self.subjects or ()),
            collection=self.collection,
            series=self.series,
            source_url=self.source_url,
            local_path=self.local_path,
            duration_sec=self.duration_sec,
            thumbnail=self.thumbnail,
            transcript_text=self.transcript_text,
            ocr_text=self.ocr_text,
            captions_vtt_path=self.captions_vtt_path,
            captions_srt_path=self.captions_srt_path,
            rights=self.rights,
            citation=self.citation,
            advisory=self.advisory,
            media_url=self.media_url,
        )
