"""
Pytest configuration for backend tests.

Shared fixtures: paths, HTML pages, and item factories.
"""
import sys
from pathlib import Path
from typing import Any

import pytest

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from archiveharvest.pipeline.types import ItemRecord
from archiveharvest.settings import Settings

FIXTURES_DIR = Path(__file__).parent / "fixtures"

SAMPLE_CANONICAL_URL = "https://archives.example.org/items/sample-video-object"
SAMPLE_FETCHED_URL = "https://archives.example.org/detail?id=sample-video-object&ref=seed"
FIXED_ADDED_AT = "2024-05-01T12:00:00+00:00"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def sample_video_html() -> str:
    return (FIXTURES_DIR / "pages" / "sample_video_object.html").read_text(encoding="utf-8")


@pytest.fixture
def label_only_audio_html() -> str:
    return (FIXTURES_DIR / "pages" / "label_only_audio.html").read_text(encoding="utf-8")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary directory so nothing touches the checkout."""
    return Settings(repo_root=tmp_path, data_dir=tmp_path / "data", public_dir=tmp_path / "public")


@pytest.fixture
def item_factory():
    """Build ``ItemRecord`` instances with sensible defaults.

    Usage:
        def test_something(item_factory):
            item = item_factory(id="abc", media_type="audio")
    """
    def _create_item(**overrides: Any) -> ItemRecord:
        fields: dict[str, Any] = {
            "id": "item0001",
            "title": "Test item",
            "media_type": "audio",
            "checksum_sha256": "0" * 64,
            "added_at": FIXED_ADDED_AT,
        }
        fields.update(overrides)
        return ItemRecord(**fields)

    return _create_item
