from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_repo_root(module_path: Path | None = None) -> Path:
    """Checkout root when running from source, else the working directory."""
    checkout = (module_path or Path(__file__)).resolve().parents[2]
    if (checkout / "pyproject.toml").is_file():
        return checkout
    return Path.cwd()


# Identifies the harvester to archive operators; sent on every outbound request.
DEFAULT_USER_AGENT = "archiveharvest/0.3 (+mailto:archives-tech@example.org)"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ARCHIVEHARVEST_", extra="ignore")

    repo_root: Path = Field(default_factory=_default_repo_root)
    data_dir: Path | None = None
    public_dir: Path | None = None
    store_path: Path | None = None

    log_level: str = "INFO"

    # Harvesting
    user_agent: str = DEFAULT_USER_AGENT
    request_interval_s: float = 0.75
    fetch_timeout_s: float = 30.0
    fetch_max_retries: int = 2
    harvest_concurrency: int = 2

    # Transcription
    transcribe_concurrency: int = 1
    job_timeout_s: float = 3600.0
    whisper_bin: Path | None = None
    whisper_model: Path | None = None
    ffmpeg_bin: Path | None = None
    ffprobe_bin: Path | None = None

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir or (self.repo_root / "data")

    @property
    def resolved_public_dir(self) -> Path:
        return self.public_dir or (self.repo_root / "public")

    @property
    def resolved_store_path(self) -> Path:
        return self.store_path or (self.resolved_data_dir / "collections.db")

    @property
    def items_jsonl_path(self) -> Path:
        return self.resolved_store_path.parent / "items.jsonl"

    @property
    def cache_dir(self) -> Path:
        return self.resolved_data_dir / "cache" / "pages"

    @property
    def harvest_path(self) -> Path:
        return self.resolved_data_dir / "harvest" / "items.jsonl"

    @property
    def transcribed_path(self) -> Path:
        return self.resolved_data_dir / "harvest" / "items.transcribed.jsonl"

    @property
    def thumbnails_dir(self) -> Path:
        return self.resolved_public_dir / "thumbnails"

    @property
    def captions_dir(self) -> Path:
        return self.resolved_public_dir / "captions"

    @property
    def status_path(self) -> Path:
        return self.resolved_data_dir / "transcribe" / "status.json"

    @property
    def transcripts_dir(self) -> Path:
        return self.resolved_data_dir / "transcribe" / "outputs"

    @property
    def tools_dir(self) -> Path:
        return self.repo_root / "tools"


class ConfigurationError(ValueError):
    """Missing or invalid configuration; reported before any work starts."""
