from pathlib import Path

import pytest

from archiveharvest.pipeline.tools import (
    ExternalToolRunner,
    ToolExecutionError,
    ToolNotFoundError,
    ToolPaths,
    ffmpeg_command,
    ffprobe_command,
    format_headers,
    parse_probe_duration,
    resolve_tools,
    whisper_command,
)
from archiveharvest.settings import ConfigurationError


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("", encoding="utf-8")
    return path


def test_ffmpeg_command_extracts_mono_16k_wav():
    cmd = ffmpeg_command(Path("/bin/ffmpeg"), "https://cdn.example.org/a.mp4", Path("/tmp/a.wav"))

    assert cmd[0] == "/bin/ffmpeg"
    assert cmd[cmd.index("-i") + 1] == "https://cdn.example.org/a.mp4"
    assert cmd[cmd.index("-ac") + 1] == "1"
    assert cmd[cmd.index("-ar") + 1] == "16000"
    assert cmd[-1] == "/tmp/a.wav"
    assert "-headers" not in cmd


def test_ffmpeg_command_passes_headers_before_input():
    cmd = ffmpeg_command(
        Path("ffmpeg"), "https://cdn.example.org/a.mp4", Path("a.wav"), {"Referer": "https://archives.example.org/"}
    )

    assert cmd.index("-headers") < cmd.index("-i")
    assert cmd[cmd.index("-headers") + 1] == "Referer: https://archives.example.org/\r\n"


def test_format_headers_joins_with_crlf():
    assert format_headers({"A": "1", "B": "2"}) == "A: 1\r\nB: 2\r\n"


def test_whisper_command_requests_all_outputs():
    cmd = whisper_command(Path("whisper-cli"), Path("model.bin"), Path("a.wav"), Path("out/item"))

    assert cmd[:3] == ["whisper-cli", "-m", "model.bin"]
    assert {"-otxt", "-ovtt", "-osrt"} <= set(cmd)
    assert cmd[cmd.index("-of") + 1] == str(Path("out/item"))


def test_ffprobe_command_reads_container_duration():
    cmd = ffprobe_command(Path("ffprobe"), Path("a.wav"))

    assert "format=duration" in cmd
    assert cmd[-1] == "a.wav"


@pytest.mark.parametrize(
    ("output", "expected"),
    [("205.432000\n", 205.432), ("\n12\n", 12.0), ("N/A\n", None), ("", None), ("-3", None)],
)
def test_parse_probe_duration(output, expected):
    assert parse_probe_duration(output) == expected


def test_explicit_paths_win(settings, tmp_path):
    explicit = {name: _touch(tmp_path / "explicit" / name) for name in ("ffmpeg", "ffprobe", "whisper", "model.bin")}
    _touch(settings.tools_dir / "ffmpeg" / "ffmpeg")

    tools = resolve_tools(
        settings,
        ffmpeg_bin=explicit["ffmpeg"],
        ffprobe_bin=explicit["ffprobe"],
        whisper_bin=explicit["whisper"],
        whisper_model=explicit["model.bin"],
    )

    assert tools == ToolPaths(
        ffmpeg=explicit["ffmpeg"],
        ffprobe=explicit["ffprobe"],
        whisper=explicit["whisper"],
        whisper_model=explicit["model.bin"],
    )


def test_default_locations_under_tools_dir(settings):
    tools_dir = settings.tools_dir
    for rel in ("ffmpeg/ffmpeg", "ffmpeg/ffprobe", "whisper.cpp/main", "whisper.cpp/models/ggml-base.en.bin"):
        _touch(tools_dir / rel)

    tools = resolve_tools(settings)

    assert tools.ffmpeg == tools_dir / "ffmpeg" / "ffmpeg"
    assert tools.whisper == tools_dir / "whisper.cpp" / "main"
    assert tools.whisper_model == tools_dir / "whisper.cpp" / "models" / "ggml-base.en.bin"


def test_settings_override_used_before_defaults(tmp_path):
    from archiveharvest.settings import Settings

    configured = _touch(tmp_path / "custom" / "whisper-cli")
    settings = Settings(repo_root=tmp_path, whisper_bin=configured)
    for rel in ("ffmpeg/ffmpeg", "ffmpeg/ffprobe", "whisper.cpp/main", "whisper.cpp/models/ggml-base.en.bin"):
        _touch(settings.tools_dir / rel)

    assert resolve_tools(settings).whisper == configured


def test_missing_whisper_is_a_configuration_error(settings, tmp_path):
    _touch(settings.tools_dir / "ffmpeg" / "ffmpeg")
    _touch(settings.tools_dir / "ffmpeg" / "ffprobe")

    with pytest.raises(ToolNotFoundError) as excinfo:
        resolve_tools(settings, whisper_bin=tmp_path / "nope")

    assert isinstance(excinfo.value, ConfigurationError)
    assert excinfo.value.tool == "whisper"
    assert tmp_path / "nope" in excinfo.value.tried


def test_tool_execution_error_keeps_stderr_tail():
    err = ToolExecutionError("ffmpeg", 1, "line1\nline2\nInvalid data found\n")

    assert err.returncode == 1
    assert "Invalid data found" in str(err)


@pytest.mark.asyncio
async def test_runner_raises_on_nonzero_exit(tmp_path):
    script = tmp_path / "fail.sh"
    script.write_text("#!/bin/sh\necho broken >&2\nexit 3\n", encoding="utf-8")
    script.chmod(0o755)
    runner = ExternalToolRunner(ToolPaths(ffmpeg=script, ffprobe=script, whisper=script, whisper_model=script))

    with pytest.raises(ToolExecutionError) as excinfo:
        await runner.extract_audio("https://cdn.example.org/a.mp4", tmp_path / "a.wav")

    assert excinfo.value.returncode == 3
    assert "broken" in excinfo.value.stderr


@pytest.mark.asyncio
async def test_runner_probe_parses_stdout(tmp_path):
    script = tmp_path / "probe.sh"
    script.write_text("#!/bin/sh\necho 42.5\n", encoding="utf-8")
    script.chmod(0o755)
    runner = ExternalToolRunner(ToolPaths(ffmpeg=script, ffprobe=script, whisper=script, whisper_model=script))

    assert await runner.probe_duration(tmp_path / "a.wav") == 42.5
