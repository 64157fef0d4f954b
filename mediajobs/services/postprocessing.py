"""Post-processing runner wrapping ffmpeg.

Rewrites the container tags of an extracted file and optionally embeds a
cover image. The tool writes to a hidden sibling file which replaces the
original only after a successful run, so the canonical path never holds
a half-written file.
"""

import asyncio
import os
from pathlib import Path
from typing import Iterable, List, Optional

import structlog

from mediajobs.models.job import TrackMetadata
from mediajobs.services.exceptions import PostProcessingError, stderr_tail
from mediajobs.services.filenames import SIDECAR_EXTENSIONS, temp_sibling

logger = structlog.get_logger(__name__)

# Override names that differ from the ffmpeg/ID3 tag key
TAG_KEYS = {"year": "date"}


class PostProcessingRunner:
    """Runs ffmpeg to tag an artifact in place."""

    def __init__(
        self,
        binary: str = "ffmpeg",
        timeout: float = 120.0,
        enabled: bool = True,
    ) -> None:
        self.binary = binary
        self.timeout = timeout
        self.enabled = enabled

    @staticmethod
    def is_required(metadata: TrackMetadata, thumbnail_path: Optional[Path] = None) -> bool:
        """Tagging runs only when there is something to write."""
        return thumbnail_path is not None or not metadata.is_empty()

    def build_command(
        self,
        source_path: Path,
        output_path: Path,
        metadata: TrackMetadata,
        thumbnail_path: Optional[Path] = None,
    ) -> List[str]:
        cmd = [
            self.binary,
            "-hide_banner",
            "-loglevel",
            "error",
            "-nostdin",
            "-y",
            "-i",
            str(source_path),
        ]
        if thumbnail_path is not None:
            cmd.extend(["-i", str(thumbnail_path)])

        cmd.extend(["-map", "0:a"])
        if thumbnail_path is not None:
            cmd.extend(
                [
                    "-map",
                    "1:0",
                    "-c:v",
                    "copy",
                    "-disposition:v",
                    "attached_pic",
                    "-metadata:s:v",
                    "title=Album cover",
                    "-metadata:s:v",
                    "comment=Cover (front)",
                ]
            )

        cmd.extend(["-map_metadata", "-1", "-c:a", "copy", "-id3v2_version", "3"])

        for key, value in metadata.tags().items():
            cmd.extend(["-metadata", f"{TAG_KEYS.get(key, key)}={value}"])

        cmd.append(str(output_path))
        return cmd

    async def run(
        self,
        source_path: Path,
        metadata: TrackMetadata,
        thumbnail_path: Optional[Path] = None,
        source_reference: Optional[str] = None,
    ) -> Path:
        """Tag ``source_path`` in place and return its path.

        Sidecar images named after the artifact or the source reference are
        removed afterwards whatever the outcome.

        Raises:
            PostProcessingError: If the tool fails. The original file is left
                untouched and no temporary file remains.
        """
        try:
            if not self.enabled:
                raise PostProcessingError("Tagging is disabled: ffmpeg is unavailable")
            await self._tag(source_path, metadata, thumbnail_path)
            return source_path
        finally:
            stems = [source_path.stem]
            if source_reference:
                stems.append(source_reference)
            if thumbnail_path is not None:
                stems.append(thumbnail_path.stem)
            self.cleanup_sidecars(source_path.parent, stems)

    async def _tag(  # noqa: C901
        self,
        source_path: Path,
        metadata: TrackMetadata,
        thumbnail_path: Optional[Path],
    ) -> None:
        if thumbnail_path is not None and not thumbnail_path.is_file():
            logger.warning("thumbnail_missing", path=str(thumbnail_path))
            thumbnail_path = None

        temp_path = temp_sibling(source_path)
        cmd = self.build_command(source_path, temp_path, metadata, thumbnail_path)
        logger.debug("postprocessing_command", command=cmd)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.error("postprocessing_tool_not_found", binary=self.binary)
            raise PostProcessingError(f"{self.binary} is not installed or not in PATH")
        except PermissionError as e:
            raise PostProcessingError(f"Cannot execute {self.binary}: {e}")

        try:
            _, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            self._discard(temp_path)
            raise PostProcessingError(f"{self.binary} timed out after {self.timeout:g}s")
        except asyncio.CancelledError:
            await self._kill(process)
            self._discard(temp_path)
            raise

        stderr = stderr_bytes.decode(errors="replace") if stderr_bytes else ""

        if process.returncode != 0:
            self._discard(temp_path)
            detail = stderr_tail(stderr) or "no diagnostic output"
            raise PostProcessingError(
                f"{self.binary} exited with code {process.returncode}: {detail}",
                exit_code=process.returncode,
                stderr=stderr,
            )

        if not temp_path.is_file() or temp_path.stat().st_size == 0:
            self._discard(temp_path)
            raise PostProcessingError(f"{self.binary} produced no output", stderr=stderr)

        try:
            os.replace(temp_path, source_path)
        except OSError as e:
            self._discard(temp_path)
            raise PostProcessingError(f"Could not replace {source_path.name}: {e}")

        logger.info(
            "postprocessing_completed",
            path=str(source_path),
            tags=sorted(metadata.tags()),
            cover=thumbnail_path is not None,
        )

    @staticmethod
    def cleanup_sidecars(directory: Path, stems: Iterable[str]) -> int:
        """Delete sidecar images whose stem exactly matches one of ``stems``.

        Failures are logged and skipped.

        Returns:
            Number of files removed.
        """
        removed = 0
        for stem in dict.fromkeys(s for s in stems if s):
            for extension in SIDECAR_EXTENSIONS:
                path = directory / f"{stem}{extension}"
                if not path.exists():
                    continue
                try:
                    path.unlink()
                    removed += 1
                    logger.debug("sidecar_removed", path=str(path))
                except OSError as e:
                    logger.warning("sidecar_cleanup_failed", path=str(path), error=str(e))
        return removed

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("temp_file_cleanup_failed", path=str(path), error=str(e))

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
