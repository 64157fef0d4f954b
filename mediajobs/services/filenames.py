"""Output filename derivation and artifact discovery.

Base names are built from the requested channel and title as
``"{channel} - {title}"``. Each component is sanitized so the result is
safe on every common filesystem.
"""

import re
import threading
import time
from pathlib import Path
from typing import Iterable, List, Optional, Set

import structlog

from mediajobs.services.exceptions import ArtifactNotFoundError

logger = structlog.get_logger(__name__)

MAX_COMPONENT_LENGTH = 50

# Characters rejected by at least one common filesystem, plus control characters
ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
WHITESPACE = re.compile(r"\s+")

SIDECAR_EXTENSIONS = (".jpg", ".jpeg", ".webp", ".png")

TEMP_MARKER = ".tagging"

NUMBERED_SUFFIX = re.compile(r" \(\d+\)$")


def sanitize_component(value: Optional[str], max_length: int = MAX_COMPONENT_LENGTH) -> str:
    """Make a single name component filesystem-safe.

    Illegal characters are removed, runs of whitespace collapse to one
    space, and leading dots are dropped so the result is never a hidden
    file. The result is at most ``max_length`` characters and applying the
    function to its own output returns it unchanged.
    """
    if not value:
        return ""
    text = ILLEGAL_CHARS.sub("", WHITESPACE.sub(" ", value))
    text = WHITESPACE.sub(" ", text).lstrip(". ").rstrip()
    return text[:max_length].rstrip()


def build_base_name(
    channel: Optional[str],
    title: Optional[str],
    fallback: str,
) -> str:
    """Build ``"{channel} - {title}"`` from sanitized components.

    Falls back to whichever component is present, then to ``fallback``
    (normally the job id) when both are empty after sanitizing.
    """
    channel_part = sanitize_component(channel)
    title_part = sanitize_component(title)

    if channel_part and title_part:
        return f"{channel_part} - {title_part}"
    if title_part or channel_part:
        return title_part or channel_part
    return sanitize_component(fallback) or "artifact"


def temp_sibling(path: Path) -> Path:
    """Hidden sibling used as the tagging tool's output before the swap."""
    return path.with_name(f".{path.stem}{TEMP_MARKER}{path.suffix}")


def is_temp_file(path: Path) -> bool:
    return path.name.startswith(".") and TEMP_MARKER in path.name


def is_numbered_sibling(stem: str, base_name: str) -> bool:
    """True if ``stem`` is another disambiguated variant of the same requested name."""
    root = NUMBERED_SUFFIX.sub("", base_name)
    return stem != base_name and NUMBERED_SUFFIX.sub("", stem) == root


def find_thumbnail(directory: Path, stems: Iterable[str]) -> Optional[Path]:
    """Return the first sidecar image whose stem exactly matches one of ``stems``."""
    for stem in stems:
        for extension in SIDECAR_EXTENSIONS:
            candidate = directory / f"{stem}{extension}"
            if candidate.is_file():
                return candidate
    return None


class FilenameResolver:
    """Collision-avoiding base names and output file discovery.

    In-flight jobs reserve their base name so two jobs with the same
    channel and title never target the same file. A reserved or existing
    name gets a `` (1)``, `` (2)``, ... suffix.
    """

    def __init__(self, recency_window: float = 60.0) -> None:
        self.recency_window = recency_window
        self._reserved: Set[str] = set()
        self._lock = threading.Lock()

    def reserve(self, directory: Path, base_name: str, extension: str) -> str:
        """Reserve a base name not used on disk or by another in-flight job."""
        with self._lock:
            candidate = base_name
            counter = 0
            while self._is_taken(directory, candidate, extension):
                counter += 1
                candidate = f"{base_name} ({counter})"
            self._reserved.add(self._key(directory, candidate))

        if candidate != base_name:
            logger.info(
                "filename_disambiguated",
                requested=base_name,
                reserved=candidate,
            )
        return candidate

    def release(self, directory: Path, base_name: str) -> None:
        with self._lock:
            self._reserved.discard(self._key(directory, base_name))

    def is_reserved(self, directory: Path, base_name: str) -> bool:
        with self._lock:
            return self._key(directory, base_name) in self._reserved

    def locate(self, directory: Path, base_name: str, extension: str) -> Path:
        """Find the file the extraction tool produced for ``base_name``.

        1. ``{base_name}{extension}``
        2. the most recent visible file with the extension whose name
           contains ``base_name``
        3. otherwise the most recently modified file with the extension

        Steps 2 and 3 only consider files modified within the recency window.
        Files reserved by other in-flight jobs and numbered siblings of
        ``base_name`` (``"A - B (1)"`` next to ``"A - B"``) are never returned.

        Raises:
            ArtifactNotFoundError: If no step yields a file.
        """
        extension = extension.lower()
        exact = directory / f"{base_name}{extension}"
        if exact.is_file():
            return exact

        cutoff = time.time() - self.recency_window
        candidates = [
            p
            for p in self._candidates(directory, base_name, extension)
            if p.stat().st_mtime >= cutoff and not is_numbered_sibling(p.stem, base_name)
        ]

        matching = [p for p in candidates if base_name in p.stem]
        if matching:
            found = max(matching, key=lambda p: p.stat().st_mtime)
            logger.info("artifact_located_by_name", base_name=base_name, path=str(found))
            return found

        if candidates:
            found = max(candidates, key=lambda p: p.stat().st_mtime)
            logger.warning(
                "artifact_located_by_recency",
                base_name=base_name,
                path=str(found),
                recency_window=self.recency_window,
            )
            return found

        raise ArtifactNotFoundError(
            f"No {extension} file for '{base_name}' found in {directory}"
        )

    def _candidates(self, directory: Path, base_name: str, extension: str) -> List[Path]:
        if not directory.is_dir():
            return []
        own_key = self._key(directory, base_name)
        with self._lock:
            others = {k for k in self._reserved if k != own_key}

        candidates = []
        for path in directory.iterdir():
            if not path.is_file() or path.name.startswith("."):
                continue
            if path.suffix.lower() != extension:
                continue
            if self._key(directory, path.stem) in others:
                continue
            candidates.append(path)
        return candidates

    def _is_taken(self, directory: Path, candidate: str, extension: str) -> bool:
        if self._key(directory, candidate) in self._reserved:
            return True
        return (directory / f"{candidate}{extension}").exists()

    @staticmethod
    def _key(directory: Path, base_name: str) -> str:
        return str(directory / base_name)
