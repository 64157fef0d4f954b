"""Tests for submission input validation."""

import pytest

from mediajobs.core.validation import (
    MAX_METADATA_LENGTH,
    AudioFormat,
    FormatValidator,
    MetadataValidator,
    SourceValidator,
    ValidationResult,
    format_validator,
    metadata_validator,
    source_validator,
)


class TestSourceValidator:
    """Tests for SourceValidator class."""

    @pytest.fixture
    def validator(self) -> SourceValidator:
        return SourceValidator()

    @pytest.mark.parametrize(
        "reference",
        [
            "dQw4w9WgXcQ",
            "  dQw4w9WgXcQ  ",
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtube.com/watch?v=dQw4w9WgXcQ&t=42",
            "http://m.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://music.youtube.com/watch?v=dQw4w9WgXcQ&list=RD",
            "https://youtu.be/dQw4w9WgXcQ",
            "https://youtu.be/dQw4w9WgXcQ?si=share",
            "https://youtube.com/shorts/dQw4w9WgXcQ",
            "https://www.youtube.com/embed/dQw4w9WgXcQ",
            "www.youtube.com/watch?v=dQw4w9WgXcQ",
        ],
    )
    def test_accepted_references_normalize_to_id(
        self, validator: SourceValidator, reference: str
    ) -> None:
        result = validator.validate(reference)

        assert result.is_valid is True
        assert result.error_message is None
        assert result.sanitized_value == "dQw4w9WgXcQ"

    @pytest.mark.parametrize("reference", [None, "", "   "])
    def test_missing_reference(self, validator: SourceValidator, reference) -> None:
        result = validator.validate(reference)

        assert result.is_valid is False
        assert "sourceReference" in result.error_message

    @pytest.mark.parametrize(
        "reference,expected_domain",
        [
            ("https://vimeo.com/123456", "vimeo.com"),
            ("https://evil-youtube.com/watch?v=abc", "evil-youtube.com"),
            ("https://youtube.com.evil.com/watch?v=abc", "youtube.com.evil.com"),
        ],
    )
    def test_foreign_domains_rejected(
        self, validator: SourceValidator, reference: str, expected_domain: str
    ) -> None:
        result = validator.validate(reference)

        assert result.is_valid is False
        assert expected_domain in result.error_message

    @pytest.mark.parametrize(
        "reference",
        ["ftp://youtube.com/watch?v=abc", "javascript://youtube.com/watch?v=abc"],
    )
    def test_bad_scheme_rejected(self, validator: SourceValidator, reference: str) -> None:
        result = validator.validate(reference)

        assert result.is_valid is False
        assert "scheme" in result.error_message

    @pytest.mark.parametrize(
        "reference",
        [
            "https://www.youtube.com/",
            "https://www.youtube.com/watch",
            "https://youtu.be/",
            "https://www.youtube.com/watch?v=bad%20id!",
            "https://www.youtube.com/channel/UC123",
        ],
    )
    def test_url_without_video_id(self, validator: SourceValidator, reference: str) -> None:
        result = validator.validate(reference)

        assert result.is_valid is False
        assert "video id" in result.error_message


class TestFormatValidator:
    def test_default_is_mp3(self) -> None:
        result = FormatValidator().validate(None)

        assert result == ValidationResult(is_valid=True, sanitized_value=AudioFormat.MP3.value)

    @pytest.mark.parametrize("value", ["mp3", "MP3", " mp3 "])
    def test_mp3_accepted(self, value: str) -> None:
        assert FormatValidator().validate(value).sanitized_value == "mp3"

    @pytest.mark.parametrize("value", ["flac", "wav", ""])
    def test_other_formats_rejected(self, value: str) -> None:
        result = FormatValidator().validate(value)

        assert result.is_valid is False
        assert "Valid options: mp3" in result.error_message


class TestMetadataValidator:
    def test_empty(self) -> None:
        assert MetadataValidator().validate(None) == {}
        assert MetadataValidator().validate({}) == {}

    def test_cleans_values(self) -> None:
        cleaned = MetadataValidator().validate(
            {
                "title": "  Song\nTitle ",
                "artist": "Chan\x00nel",
                "year": 2024,
                "album": "   ",
                "genre": None,
            }
        )

        assert cleaned == {"title": "Song Title", "artist": "Channel", "year": "2024"}

    def test_unknown_field(self) -> None:
        with pytest.raises(ValueError, match="Unknown metadata field 'bogus'"):
            MetadataValidator().validate({"bogus": "x"})

    @pytest.mark.parametrize("value", [True, 1.5, ["a"], {"a": "b"}])
    def test_non_string_value(self, value: object) -> None:
        with pytest.raises(ValueError, match="must be a string"):
            MetadataValidator().validate({"title": value})

    def test_overlong_value(self) -> None:
        with pytest.raises(ValueError, match="exceeds"):
            MetadataValidator().validate({"comment": "x" * (MAX_METADATA_LENGTH + 1)})

        assert MetadataValidator().validate({"comment": "x" * MAX_METADATA_LENGTH})


class TestSingletons:
    def test_singleton_instances(self) -> None:
        assert isinstance(source_validator, SourceValidator)
        assert isinstance(format_validator, FormatValidator)
        assert isinstance(metadata_validator, MetadataValidator)
