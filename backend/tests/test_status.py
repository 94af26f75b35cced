import asyncio
import json

import pytest

from archiveharvest.pipeline.status import StatusMap


def test_missing_file_loads_empty(tmp_path):
    status = StatusMap.load(tmp_path / "status.json")

    assert len(status) == 0
    assert status.get("anything") is None


@pytest.mark.asyncio
async def test_record_persists_and_reloads(tmp_path):
    path = tmp_path / "transcribe" / "status.json"
    status = StatusMap.load(path)

    await status.record("a", "complete")
    await status.record("b", "failed", "ffmpeg exited with code 1")

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["a"]["status"] == "complete"
    assert "error" not in on_disk["a"]
    assert on_disk["b"] == {
        "status": "failed",
        "updatedAt": on_disk["b"]["updatedAt"],
        "error": "ffmpeg exited with code 1",
    }

    reloaded = StatusMap.load(path)
    assert "a" in reloaded
    assert reloaded.get("b").error == "ffmpeg exited with code 1"


@pytest.mark.asyncio
async def test_concurrent_records_all_land(tmp_path):
    path = tmp_path / "status.json"
    status = StatusMap.load(path)

    await asyncio.gather(*(status.record(f"item{n}", "complete") for n in range(20)))

    assert len(json.loads(path.read_text(encoding="utf-8"))) == 20
    assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]


@pytest.mark.asyncio
async def test_later_record_replaces_earlier(tmp_path):
    status = StatusMap.load(tmp_path / "status.json")

    await status.record("a", "failed", "boom")
    await status.record("a", "complete")

    assert status.get("a").status == "complete"
    assert status.get("a").error is None


def test_malformed_entries_are_skipped(tmp_path):
    path = tmp_path / "status.json"
    path.write_text(
        json.dumps({"good": {"status": "complete", "updatedAt": "t"}, "bad": {"status": "running"}, "worse": 3}),
        encoding="utf-8",
    )

    status = StatusMap.load(path)

    assert "good" in status
    assert "bad" not in status
    assert "worse" not in status


@pytest.mark.parametrize("content", ["not json", "[1, 2]"])
def test_unreadable_file_raises(tmp_path, content):
    path = tmp_path / "status.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError):
        StatusMap.load(path)
