"""Tests for ffprobe output parsing and the artifact probe."""

from pathlib import Path

import pytest

from mediajobs.services.exceptions import ProbeError
from mediajobs.services.probe import ArtifactProbe, parse_probe_output


class TestParseProbeOutput:
    def test_full_document(self) -> None:
        info = parse_probe_output(
            {
                "format": {
                    "format_name": "mp3",
                    "duration": "212.4",
                    "bit_rate": "192000",
                    "size": "5242880",
                    "tags": {"TITLE": "Song", "Artist": "Channel", "date": "2024"},
                },
                "streams": [
                    {"codec_type": "audio", "codec_name": "mp3", "sample_rate": "48000", "channels": 2},
                    {"codec_type": "video", "codec_name": "mjpeg", "disposition": {"attached_pic": 1}},
                ],
            }
        )

        assert info.duration == pytest.approx(212.4)
        assert info.bitrate == 192000
        assert info.size == 5242880
        assert info.audio_codec == "mp3"
        assert info.sample_rate == 48000
        assert info.channels == 2
        assert info.has_cover is True
        assert info.tags["title"] == "Song"
        assert info.tags["artist"] == "Channel"
        assert info.tags["date"] == "2024"
        assert info.tags["album"] == ""

    def test_empty_document(self) -> None:
        info = parse_probe_output({})

        assert info.container == "unknown"
        assert info.duration == 0.0
        assert info.has_cover is False

    def test_video_stream_without_attached_pic_is_not_cover(self) -> None:
        info = parse_probe_output(
            {"streams": [{"codec_type": "video", "disposition": {"attached_pic": 0}}]}
        )

        assert info.has_cover is False


class TestArtifactProbe:
    @pytest.mark.asyncio
    async def test_probe_file(self, fake_ffprobe: Path, tmp_path: Path) -> None:
        path = tmp_path / "a.mp3"
        path.write_bytes(b'ID3\nFAKETAGS:{"tags": {"title": "Song"}, "cover": true}')

        info = await ArtifactProbe(binary=str(fake_ffprobe)).probe(path)

        assert info.container == "mp3"
        assert info.tags["title"] == "Song"
        assert info.has_cover is True

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path: Path) -> None:
        with pytest.raises(ProbeError, match="not installed"):
            await ArtifactProbe(binary=str(tmp_path / "nope")).probe(tmp_path / "a.mp3")

    @pytest.mark.asyncio
    async def test_invalid_json(self, make_tool, tmp_path: Path) -> None:
        tool = make_tool("ffprobe-garbage", "print('not json')\n")

        with pytest.raises(ProbeError, match="parse"):
            await ArtifactProbe(binary=str(tool)).probe(tmp_path / "a.mp3")

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, make_tool, tmp_path: Path) -> None:
        tool = make_tool(
            "ffprobe-fail",
            "import sys\nprint('a.mp3: No such file or directory', file=sys.stderr)\nsys.exit(1)\n",
        )

        with pytest.raises(ProbeError, match="No such file"):
            await ArtifactProbe(binary=str(tool)).probe(tmp_path / "a.mp3")

    @pytest.mark.asyncio
    async def test_results_are_cached_per_file_version(self, fake_ffprobe: Path, tmp_path: Path) -> None:
        path = tmp_path / "a.mp3"
        path.write_bytes(b'ID3\nFAKETAGS:{"tags": {"title": "One"}, "cover": false}')
        probe = ArtifactProbe(binary=str(fake_ffprobe))

        first = await probe.probe(path)
        fake_ffprobe.unlink()
        second = await probe.probe(path)

        assert second is first
        assert len(probe.cache) == 1

        path.write_bytes(b'ID3\nFAKETAGS:{"tags": {"title": "Two!"}, "cover": false}')
        with pytest.raises(ProbeError, match="not installed"):
            await probe.probe(path)
