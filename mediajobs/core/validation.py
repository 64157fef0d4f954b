"""Input validation utilities for job submissions.

This module normalizes source references, output formats and metadata
overrides before a job is created.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional
from urllib.parse import parse_qs, urlparse

import structlog

logger = structlog.get_logger(__name__)


class AudioFormat(str, Enum):
    """Supported output formats."""

    MP3 = "mp3"


METADATA_FIELDS = ("title", "artist", "album", "track", "year", "genre", "comment")

MAX_METADATA_LENGTH = 255


@dataclass(frozen=True)
class ValidationResult:
    """Result of a validation operation."""

    is_valid: bool
    error_message: Optional[str] = None
    sanitized_value: Optional[str] = None


class SourceValidator:
    """Accepts a bare video id or a YouTube URL and returns the video id."""

    VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

    # Path prefixes that carry the id as the next path segment
    PATH_PREFIXES = ("shorts", "embed", "live", "v")

    ALLOWED_DOMAINS: FrozenSet[str] = frozenset(
        {
            "youtube.com",
            "www.youtube.com",
            "m.youtube.com",
            "music.youtube.com",
            "youtu.be",
        }
    )

    def validate(self, reference: Optional[str]) -> ValidationResult:  # noqa: C901
        if not reference or not isinstance(reference, str):
            return ValidationResult(is_valid=False, error_message="sourceReference is required")

        reference = reference.strip()
        if not reference:
            return ValidationResult(is_valid=False, error_message="sourceReference cannot be empty")

        if self.VIDEO_ID_PATTERN.match(reference):
            return ValidationResult(is_valid=True, sanitized_value=reference)

        candidate = reference if "://" in reference else f"https://{reference}"
        try:
            parsed = urlparse(candidate)
        except ValueError:
            return ValidationResult(is_valid=False, error_message="Invalid source URL")

        if parsed.scheme not in ("http", "https"):
            return ValidationResult(
                is_valid=False, error_message="Source URL must use http or https scheme"
            )

        domain = parsed.netloc.lower().split(":")[0]
        if domain not in self.ALLOWED_DOMAINS:
            logger.debug("source_domain_rejected", domain=domain)
            return ValidationResult(
                is_valid=False,
                error_message=f"Domain '{domain}' is not a supported source",
            )

        video_id = self._extract_id(domain, parsed.path, parsed.query)
        if not video_id or not self.VIDEO_ID_PATTERN.match(video_id):
            return ValidationResult(
                is_valid=False, error_message="Could not find a video id in the source URL"
            )

        return ValidationResult(is_valid=True, sanitized_value=video_id)

    def _extract_id(self, domain: str, path: str, query: str) -> Optional[str]:
        segments = [s for s in path.split("/") if s]
        if domain == "youtu.be":
            return segments[0] if segments else None

        values = parse_qs(query).get("v")
        if values:
            return values[0]

        if len(segments) >= 2 and segments[0] in self.PATH_PREFIXES:
            return segments[1]
        return None


class FormatValidator:
    def validate(self, requested: Optional[str]) -> ValidationResult:
        if requested is None:
            return ValidationResult(is_valid=True, sanitized_value=AudioFormat.MP3.value)

        value = requested.strip().lower()
        try:
            AudioFormat(value)
        except ValueError:
            valid_formats = [f.value for f in AudioFormat]
            return ValidationResult(
                is_valid=False,
                error_message=f"Unsupported format '{requested}'. Valid options: {', '.join(valid_formats)}",
            )
        return ValidationResult(is_valid=True, sanitized_value=value)


class MetadataValidator:
    """Validates metadata overrides.

    Values are trimmed and have line breaks flattened, since each one is
    passed to the tagging tool as a single ``key=value`` argument. Empty
    values are dropped.
    """

    def validate(self, metadata: Optional[Mapping[str, object]]) -> Dict[str, str]:
        """Return the cleaned overrides.

        Raises:
            ValueError: On unknown keys, non-string values or overlong values.
        """
        if not metadata:
            return {}

        cleaned: Dict[str, str] = {}
        for key, value in metadata.items():
            if key not in METADATA_FIELDS:
                raise ValueError(f"Unknown metadata field '{key}'")
            if value is None:
                continue
            if isinstance(value, int) and not isinstance(value, bool):
                value = str(value)
            if not isinstance(value, str):
                raise ValueError(f"Metadata field '{key}' must be a string")

            text = " ".join(value.replace("\x00", "").splitlines()).strip()
            if len(text) > MAX_METADATA_LENGTH:
                raise ValueError(
                    f"Metadata field '{key}' exceeds {MAX_METADATA_LENGTH} characters"
                )
            if text:
                cleaned[key] = text
        return cleaned


# Singleton instances for convenience
source_validator = SourceValidator()
format_validator = FormatValidator()
metadata_validator = MetadataValidator()
