"""Artifact inspection via ffprobe."""

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import structlog
from cachetools import TTLCache

from mediajobs.services.exceptions import ProbeError, stderr_tail

logger = structlog.get_logger(__name__)

PROBED_TAGS = ("title", "artist", "album", "date", "genre", "track", "comment", "encoder")


@dataclass
class ArtifactInfo:
    """Container, stream and tag details of a media file."""

    duration: float = 0.0
    bitrate: int = 0
    size: int = 0
    container: str = "unknown"
    audio_codec: str = "unknown"
    sample_rate: int = 0
    channels: int = 0
    has_cover: bool = False
    tags: Dict[str, str] = field(default_factory=dict)


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_probe_output(data: Dict[str, Any]) -> ArtifactInfo:
    """Build an ArtifactInfo from ffprobe's JSON document.

    Tag names are matched case-insensitively, missing tags become "".
    """
    fmt = data.get("format") or {}
    streams = data.get("streams") or []
    audio = next((s for s in streams if s.get("codec_type") == "audio"), {})
    has_cover = any(
        s.get("codec_type") == "video" and (s.get("disposition") or {}).get("attached_pic") == 1
        for s in streams
    )

    raw_tags = {str(k).lower(): str(v) for k, v in (fmt.get("tags") or {}).items()}

    return ArtifactInfo(
        duration=_to_float(fmt.get("duration")),
        bitrate=_to_int(fmt.get("bit_rate")),
        size=_to_int(fmt.get("size")),
        container=fmt.get("format_name") or "unknown",
        audio_codec=audio.get("codec_name") or "unknown",
        sample_rate=_to_int(audio.get("sample_rate")),
        channels=_to_int(audio.get("channels")),
        has_cover=has_cover,
        tags={name: raw_tags.get(name, "") for name in PROBED_TAGS},
    )


class ArtifactProbe:
    """Runs ffprobe on artifacts.

    Results are cached per file identity (path, size, mtime), so a file that
    is rewritten in place is probed again.
    """

    CACHE_TTL = 300
    CACHE_SIZE = 256

    def __init__(self, binary: str = "ffprobe", timeout: float = 10.0) -> None:
        self.binary = binary
        self.timeout = timeout
        self.cache: TTLCache = TTLCache(maxsize=self.CACHE_SIZE, ttl=self.CACHE_TTL)

    @staticmethod
    def _cache_key(path: Path) -> Optional[Tuple[str, int, int]]:
        try:
            stat_result = path.stat()
        except OSError:
            return None
        return str(path), stat_result.st_size, stat_result.st_mtime_ns

    async def probe(self, path: Path) -> ArtifactInfo:
        """Inspect ``path``.

        Raises:
            ProbeError: If ffprobe is missing, fails, times out or prints invalid JSON.
        """
        key = self._cache_key(path)
        if key is not None and key in self.cache:
            cached: ArtifactInfo = self.cache[key]
            return cached

        cmd = [
            self.binary,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

        process: Optional[asyncio.subprocess.Process] = None
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except (FileNotFoundError, PermissionError):
            raise ProbeError(f"{self.binary} is not installed or not in PATH")
        except asyncio.TimeoutError:
            if process is not None and process.returncode is None:
                process.kill()
                await process.wait()
            raise ProbeError(f"{self.binary} timed out after {self.timeout:g}s")

        if process.returncode != 0:
            detail = stderr_tail(stderr.decode(errors="replace")) if stderr else ""
            raise ProbeError(f"{self.binary} exited with code {process.returncode}: {detail}")

        try:
            data = json.loads(stdout.decode(errors="replace") or "{}")
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse {self.binary} output: {e}")

        info = parse_probe_output(data)
        if key is not None:
            self.cache[key] = info
        logger.debug("artifact_probed", path=str(path), codec=info.audio_codec)
        return info
