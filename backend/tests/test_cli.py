import json

import httpx
import pytest
import respx

from archiveharvest.cli import EXIT_CONFIG, EXIT_FAILURE, EXIT_OK, EXIT_ROBOTS, build_parser, main
from archiveharvest.db import count_items
from archiveharvest.settings import Settings

ORIGIN = "https://archives.example.org"


@pytest.fixture
def cli_settings(tmp_path) -> Settings:
    return Settings(
        repo_root=tmp_path,
        data_dir=tmp_path / "data",
        public_dir=tmp_path / "public",
        request_interval_s=0.0,
        fetch_max_retries=0,
    )


def _write_batch(path, rows):
    path.write_text("".join(json.dumps(r) + "\n" for r in rows), encoding="utf-8")
    return path


def test_parser_collects_sources_in_order():
    args = build_parser().parse_args(["ingest", "--from-jsonl", "a.jsonl", "--root", "collections", "--from-jsonl", "b.jsonl"])

    assert [(s.kind, s.path.name) for s in args.sources] == [("batch", "a.jsonl"), ("root", "collections"), ("batch", "b.jsonl")]


def test_parser_headers_and_validation():
    args = build_parser().parse_args(["transcribe", "--header", "Referer: https://x.example.org/", "--media", "audio"])
    assert args.headers == [("Referer", "https://x.example.org/")]

    with pytest.raises(SystemExit):
        build_parser().parse_args(["transcribe", "--header", "no-colon"])
    with pytest.raises(SystemExit):
        build_parser().parse_args(["harvest", "--seeds", "s.txt", "--concurrency", "0"])


def test_harvest_default_media_and_remote_detail_switch():
    assert build_parser().parse_args(["harvest", "--seeds", "s.txt"]).default_media == "text"
    assert build_parser().parse_args(["harvest", "--seeds", "s.txt", "--remote-detail"]).default_media == "video"
    assert build_parser().parse_args(["harvest", "--seeds", "s.txt", "--default-media", "image"]).default_media == "image"


def test_log_level_is_validated(cli_settings, capsys):
    assert build_parser().parse_args(["--log-level", "debug", "ingest"]).log_level == "DEBUG"
    with pytest.raises(SystemExit) as excinfo:
        build_parser().parse_args(["--log-level", "chatty", "ingest"])
    assert excinfo.value.code == 2

    cli_settings.log_level = "verbose"
    assert main(["ingest"], settings=cli_settings) == EXIT_CONFIG
    assert "unknown log level" in capsys.readouterr().err


def test_ingest_requires_a_source(cli_settings):
    assert main(["ingest"], settings=cli_settings) == EXIT_CONFIG


def test_ingest_missing_batch_is_config_error(cli_settings, tmp_path):
    assert main(["ingest", "--from-jsonl", str(tmp_path / "absent.jsonl")], settings=cli_settings) == EXIT_CONFIG


def test_ingest_batch_into_default_store(cli_settings, tmp_path):
    batch = _write_batch(tmp_path / "batch.jsonl", [{"id": "a", "title": "One", "mediaType": "audio"}])

    assert main(["ingest", "--from-jsonl", str(batch)], settings=cli_settings) == EXIT_OK
    assert count_items(cli_settings.resolved_store_path) == 1
    assert cli_settings.items_jsonl_path.is_file()


def test_ingest_malformed_batch_exits_with_failure(cli_settings, tmp_path, capsys):
    batch = _write_batch(tmp_path / "batch.jsonl", [{"id": "a", "mediaType": "audio"}])

    assert main(["ingest", "--from-jsonl", str(batch), "--db", str(tmp_path / "x.db")], settings=cli_settings) == EXIT_FAILURE
    assert "batch.jsonl:1:" in capsys.readouterr().err


def test_harvest_missing_seeds_is_config_error(cli_settings, tmp_path):
    assert main(["harvest", "--seeds", str(tmp_path / "none.txt")], settings=cli_settings) == EXIT_CONFIG


@respx.mock
def test_harvest_blocked_by_robots(cli_settings, tmp_path):
    respx.get(f"{ORIGIN}/robots.txt").mock(return_value=httpx.Response(200, text="User-agent: *\nDisallow: /\n"))
    seeds = tmp_path / "seeds.txt"
    seeds.write_text(f"{ORIGIN}/items/1\n", encoding="utf-8")

    assert main(["harvest", "--seeds", str(seeds)], settings=cli_settings) == EXIT_ROBOTS


@respx.mock
def test_harvest_writes_default_batch(cli_settings, tmp_path, label_only_audio_html):
    respx.get(f"{ORIGIN}/robots.txt").mock(return_value=httpx.Response(200, text=""))
    respx.get(f"{ORIGIN}/detail/oral").mock(return_value=httpx.Response(200, text=label_only_audio_html))
    seeds = tmp_path / "seeds.txt"
    seeds.write_text(f"{ORIGIN}/detail/oral\n", encoding="utf-8")

    assert main(["harvest", "--seeds", str(seeds), "--delay-ms", "0"], settings=cli_settings) == EXIT_OK
    rows = cli_settings.harvest_path.read_text(encoding="utf-8").splitlines()
    assert len(rows) == 1
    assert json.loads(rows[0])["mediaType"] == "audio"


@respx.mock
def test_harvest_where_every_seed_fails(cli_settings, tmp_path):
    respx.get(f"{ORIGIN}/robots.txt").mock(return_value=httpx.Response(404))
    respx.get(f"{ORIGIN}/detail/gone").mock(return_value=httpx.Response(410))
    seeds = tmp_path / "seeds.txt"
    seeds.write_text(f"{ORIGIN}/detail/gone\n", encoding="utf-8")

    assert main(["harvest", "--seeds", str(seeds)], settings=cli_settings) == EXIT_FAILURE


def test_transcribe_missing_source(cli_settings, tmp_path):
    assert main(["transcribe", "--source", str(tmp_path / "none.jsonl")], settings=cli_settings) == EXIT_CONFIG


def test_transcribe_missing_tools(cli_settings, tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path / "empty-bin"))
    source = _write_batch(tmp_path / "items.jsonl", [{"id": "a", "title": "One", "mediaType": "audio"}])

    assert main(["transcribe", "--source", str(source)], settings=cli_settings) == EXIT_CONFIG


def test_transcribe_corrupt_status_file(cli_settings, tmp_path):
    for name in ("ffmpeg", "ffprobe", "whisper", "model"):
        (tmp_path / name).write_text("", encoding="utf-8")
    source = _write_batch(tmp_path / "items.jsonl", [{"id": "a", "title": "One", "mediaType": "audio"}])
    status = tmp_path / "status.json"
    status.write_text("{broken", encoding="utf-8")

    code = main(
        [
            "transcribe",
            "--source",
            str(source),
            "--status-file",
            str(status),
            "--ffmpeg-bin",
            str(tmp_path / "ffmpeg"),
            "--ffprobe-bin",
            str(tmp_path / "ffprobe"),
            "--whisper-bin",
            str(tmp_path / "whisper"),
            "--whisper-model",
            str(tmp_path / "model"),
        ],
        settings=cli_settings,
    )

    assert code == EXIT_CONFIG
