"""External transcoding, speech-recognition and probing tools.

Binaries are resolved once per run: an explicit flag wins, then settings
(``ARCHIVEHARVEST_*`` environment), then fixed locations under ``<repo>/tools``,
then ``PATH`` for ffmpeg/ffprobe. Nothing is invoked until every tool resolves.
"""
from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import anyio

from archiveharvest.settings import ConfigurationError, Settings

logger = logging.getLogger(__name__)

# Candidate locations relative to the tools directory, in lookup order.
_DEFAULT_LOCATIONS: dict[str, tuple[str, ...]] = {
    "whisper": ("whisper.cpp/build/bin/whisper-cli", "whisper.cpp/main", "whisper/whisper-cli"),
    "whisper_model": ("whisper.cpp/models/ggml-base.en.bin", "whisper/ggml-base.en.bin"),
    "ffmpeg": ("ffmpeg/ffmpeg", "ffmpeg"),
    "ffprobe": ("ffmpeg/ffprobe", "ffprobe"),
}


class ToolNotFoundError(ConfigurationError):
    def __init__(self, tool: str, tried: Sequence[Path | str]) -> None:
        listed = ", ".join(str(p) for p in tried) or "nothing"
        super().__init__(f"Could not find {tool} (tried: {listed}). Pass a flag or set the environment override.")
        self.tool = tool
        self.tried = list(tried)


class ToolExecutionError(Exception):
    """An external tool exited non-zero."""

    def __init__(self, tool: str, returncode: int, stderr: str) -> None:
        tail = stderr.strip().splitlines()[-5:]
        detail = " | ".join(tail) if tail else "no error output"
        super().__init__(f"{tool} exited with code {returncode}: {detail}")
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr


@dataclass(frozen=True)
class ToolPaths:
    ffmpeg: Path
    ffprobe: Path
    whisper: Path
    whisper_model: Path


def _resolve_one(
    name: str,
    *,
    explicit: Path | None,
    configured: Path | None,
    tools_dir: Path,
    search_path: bool,
) -> Path:
    tried: list[Path | str] = []
    for candidate in (explicit, configured):
        if candidate is None:
            continue
        tried.append(candidate)
        if candidate.exists():
            return candidate
    for rel in _DEFAULT_LOCATIONS[name]:
        candidate = tools_dir / rel
        tried.append(candidate)
        if candidate.is_file():
            return candidate
    if search_path:
        tried.append(f"PATH:{name}")
        found = shutil.which(name)
        if found:
            return Path(found)
    raise ToolNotFoundError(name, tried)


def resolve_tools(
    settings: Settings,
    *,
    whisper_bin: Path | None = None,
    whisper_model: Path | None = None,
    ffmpeg_bin: Path | None = None,
    ffprobe_bin: Path | None = None,
) -> ToolPaths:
    tools_dir = settings.tools_dir
    return ToolPaths(
        ffmpeg=_resolve_one(
            "ffmpeg", explicit=ffmpeg_bin, configured=settings.ffmpeg_bin, tools_dir=tools_dir, search_path=True
        ),
        ffprobe=_resolve_one(
            "ffprobe", explicit=ffprobe_bin, configured=settings.ffprobe_bin, tools_dir=tools_dir, search_path=True
        ),
        whisper=_resolve_one(
            "whisper", explicit=whisper_bin, configured=settings.whisper_bin, tools_dir=tools_dir, search_path=False
        ),
        whisper_model=_resolve_one(
            "whisper_model",
            explicit=whisper_model,
            configured=settings.whisper_model,
            tools_dir=tools_dir,
            search_path=False,
        ),
    )


def format_headers(headers: Mapping[str, str]) -> str:
    return "".join(f"{key}: {value}\r\n" for key, value in headers.items())


def ffmpeg_command(ffmpeg: Path, media_url: str, wav_path: Path, headers: Mapping[str, str] | None = None) -> list[str]:
    cmd = [str(ffmpeg), "-hide_banner", "-loglevel", "error", "-y"]
    if headers:
        cmd += ["-headers", format_headers(headers)]
    cmd += ["-i", media_url, "-vn", "-ac", "1", "-ar", "16000", "-c:a", "pcm_s16le", str(wav_path)]
    return cmd


def whisper_command(whisper: Path, model: Path, wav_path: Path, out_prefix: Path) -> list[str]:
    return [str(whisper), "-m", str(model), "-f", str(wav_path), "-otxt", "-ovtt", "-osrt", "-of", str(out_prefix)]


def ffprobe_command(ffprobe: Path, media_path: Path) -> list[str]:
    return [
        str(ffprobe),
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(media_path),
    ]


def parse_probe_duration(output: str) -> float | None:
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            value = float(line)
        except ValueError:
            return None
        return value if value >= 0 else None
    return None


async def _run(tool: str, cmd: list[str]) -> str:
    logger.debug("Running %s", " ".join(cmd))
    result = await anyio.run_process(cmd, check=False)
    stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""
    if result.returncode != 0:
        raise ToolExecutionError(tool, result.returncode, stderr)
    return result.stdout.decode("utf-8", errors="replace") if result.stdout else ""


class ExternalToolRunner:
    """Runs the real binaries. Tests substitute an object with the same three coroutines."""

    def __init__(self, tools: ToolPaths) -> None:
        self._tools = tools

    async def extract_audio(self, media_url: str, wav_path: Path, headers: Mapping[str, str] | None = None) -> None:
        await _run("ffmpeg", ffmpeg_command(self._tools.ffmpeg, media_url, wav_path, headers))

    async def transcribe(self, wav_path: Path, out_prefix: Path) -> None:
        await _run("whisper", whisper_command(self._tools.whisper, self._tools.whisper_model, wav_path, out_prefix))

    async def probe_duration(self, media_path: Path) -> float | None:
        output = await _run("ffprobe", ffprobe_command(self._tools.ffprobe, media_path))
        return parse_probe_duration(output)
