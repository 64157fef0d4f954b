"""Extraction runner wrapping the yt-dlp command line tool.

The tool downloads the best audio stream, transcodes it to the requested
format and optionally writes the video thumbnail next to it. Its progress
lines are parsed while it runs and reported through a callback.
"""

import asyncio
import contextlib
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import structlog

from mediajobs.services.exceptions import ExtractionError, stderr_tail
from mediajobs.services.filenames import FilenameResolver, find_thumbnail

logger = structlog.get_logger(__name__)

PROGRESS_PATTERN = re.compile(r"\[download\]\s+(\d+(?:\.\d+)?)%")

# Download percentage is scaled into 0-85, the remainder covers transcoding and tagging
DOWNLOAD_PROGRESS_CEILING = 85
PROGRESS_EXTRACT_AUDIO = 90

# Per-line buffer limit for the subprocess pipes
STREAM_LIMIT = 1024 * 1024

ProgressCallback = Callable[[int], None]


def parse_progress(line: str) -> Optional[int]:
    """Map one line of tool output to a job progress percentage."""
    match = PROGRESS_PATTERN.search(line)
    if match:
        return min(DOWNLOAD_PROGRESS_CEILING, int(float(match.group(1))))
    if "[ExtractAudio]" in line:
        return PROGRESS_EXTRACT_AUDIO
    return None


@dataclass
class ExtractionResult:
    """Outcome of a successful extraction run."""

    exit_code: int
    output_path: Path
    thumbnail_path: Optional[Path]
    stdout: str
    stderr: str
    duration: float


class ExtractionRunner:
    """Runs yt-dlp for a single source reference."""

    def __init__(
        self,
        resolver: FilenameResolver,
        binary: str = "yt-dlp",
        audio_quality: str = "192K",
        user_agent: str = "",
        sleep_interval: int = 1,
        max_sleep_interval: int = 5,
        source_url_template: str = "https://www.youtube.com/watch?v={id}",
        timeout: float = 600.0,
    ) -> None:
        self.resolver = resolver
        self.binary = binary
        self.audio_quality = audio_quality
        self.user_agent = user_agent
        self.sleep_interval = sleep_interval
        self.max_sleep_interval = max(max_sleep_interval, sleep_interval)
        self.source_url_template = source_url_template
        self.timeout = timeout

    def source_url(self, source_reference: str) -> str:
        return self.source_url_template.format(id=source_reference)

    def build_command(
        self,
        source_reference: str,
        target_base_path: Path,
        audio_format: str = "mp3",
        write_thumbnail: bool = False,
    ) -> List[str]:
        """Build the yt-dlp argument list.

        ``%`` in the base path is doubled because yt-dlp treats the output
        path as a template.
        """
        output_template = str(target_base_path).replace("%", "%%") + ".%(ext)s"

        cmd = [
            self.binary,
            "-f",
            "bestaudio/best",
            "--no-playlist",
            "--extract-audio",
            "--audio-format",
            audio_format,
            "--audio-quality",
            self.audio_quality,
            "--output",
            output_template,
            "--no-mtime",
        ]

        if write_thumbnail:
            cmd.extend(["--write-thumbnail", "--convert-thumbnails", "jpg"])

        cmd.extend(
            [
                "--no-warnings",
                "--no-check-certificate",
                "--sleep-interval",
                str(self.sleep_interval),
                "--max-sleep-interval",
                str(self.max_sleep_interval),
            ]
        )
        if self.user_agent:
            cmd.extend(["--user-agent", self.user_agent])

        cmd.extend(
            [
                "--newline",
                "--progress",
                "--print",
                "after_move:filepath",
                self.source_url(source_reference),
            ]
        )
        return cmd

    async def run(  # noqa: C901
        self,
        source_reference: str,
        target_base_path: Path,
        audio_format: str = "mp3",
        write_thumbnail: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExtractionResult:
        """Run the extraction tool and locate the file it produced.

        Raises:
            ExtractionError: On a non-zero exit, a timeout or a missing binary.
            ArtifactNotFoundError: If the tool succeeded but no file was found.
        """
        cmd = self.build_command(source_reference, target_base_path, audio_format, write_thumbnail)
        logger.debug("extraction_command", command=cmd)

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []
        start_time = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError:
            logger.error("extraction_tool_not_found", binary=self.binary)
            raise ExtractionError(f"{self.binary} is not installed or not in PATH")
        except PermissionError as e:
            raise ExtractionError(f"Cannot execute {self.binary}: {e}")

        logger.info("extraction_started", source_reference=source_reference, pid=process.pid)

        pumping = asyncio.ensure_future(
            asyncio.gather(
                self._read_stream(process.stdout, stdout_lines, on_progress),
                self._read_stream(process.stderr, stderr_lines, on_progress),
                process.wait(),
            )
        )
        try:
            await asyncio.wait_for(asyncio.shield(pumping), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            await self._discard(pumping)
            stderr = "\n".join(stderr_lines)
            logger.warning(
                "extraction_timed_out",
                source_reference=source_reference,
                timeout=self.timeout,
            )
            raise ExtractionError(
                f"{self.binary} timed out after {self.timeout:g}s",
                stderr=stderr,
            )
        except asyncio.CancelledError:
            await self._kill(process)
            await self._discard(pumping)
            raise

        stdout = "\n".join(stdout_lines)
        stderr = "\n".join(stderr_lines)
        exit_code = process.returncode
        duration = time.monotonic() - start_time

        logger.debug(
            "extraction_process_exited",
            exit_code=exit_code,
            stdout_lines=len(stdout_lines),
            stderr_preview=stderr[:500] if stderr else None,
        )

        if exit_code != 0:
            detail = stderr_tail(stderr) or "no diagnostic output"
            raise ExtractionError(
                f"{self.binary} exited with code {exit_code}: {detail}",
                exit_code=exit_code,
                stderr=stderr,
            )

        extension = f".{audio_format}"
        output_path = self._reported_path(stdout, extension)
        if output_path is None:
            output_path = self.resolver.locate(
                target_base_path.parent,
                target_base_path.name,
                extension,
            )

        thumbnail_path = None
        if write_thumbnail:
            thumbnail_path = find_thumbnail(
                output_path.parent,
                [output_path.stem, target_base_path.name],
            )
            if thumbnail_path is None:
                logger.warning("thumbnail_not_found", base_name=target_base_path.name)

        logger.info(
            "extraction_completed",
            source_reference=source_reference,
            output_path=str(output_path),
            thumbnail=str(thumbnail_path) if thumbnail_path else None,
            duration=round(duration, 3),
        )

        return ExtractionResult(
            exit_code=exit_code,
            output_path=output_path,
            thumbnail_path=thumbnail_path,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
        )

    @staticmethod
    async def _read_stream(
        stream: Optional[asyncio.StreamReader],
        sink: List[str],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        if stream is None:
            return
        while True:
            raw = await stream.readline()
            if not raw:
                break
            line = raw.decode(errors="replace").rstrip("\r\n")
            sink.append(line)
            if on_progress is None:
                continue
            progress = parse_progress(line)
            if progress is not None:
                on_progress(progress)

    @staticmethod
    def _reported_path(stdout: str, extension: str) -> Optional[Path]:
        """Final path printed by ``--print after_move:filepath``, if it exists.

        The path is the last output line that is not a ``[tag]`` status line.
        """
        for line in reversed(stdout.splitlines()):
            line = line.strip()
            if not line or line.startswith("["):
                continue
            path = Path(line)
            if path.suffix.lower() == extension and path.is_file():
                return path
            return None
        return None

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

    @staticmethod
    async def _discard(pumping: "asyncio.Future[list]") -> None:
        """Cancel the stream readers and collect their outcome."""
        pumping.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pumping
