"""Pytest configuration and shared fixtures"""

import os
import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

# Stand-in for yt-dlp: the source id selects the behavior.
#   fail*  -> error on stderr, exit 1
#   quiet* -> does not print the final path
#   slow*  -> sleeps before doing anything
#   partial* -> writes a truncated file, pauses, then finishes normally
FAKE_YTDLP = """
import pathlib
import sys
import time

args = sys.argv[1:]
if "--version" in args:
    print("2026.01.01")
    sys.exit(0)

source = args[-1].rsplit("=", 1)[-1]
template = args[args.index("--output") + 1]
audio_format = args[args.index("--audio-format") + 1]
base = template[: -len(".%(ext)s")].replace("%%", "%")
output = pathlib.Path(base + "." + audio_format)

if source.startswith("slow"):
    time.sleep(30)

if source.startswith("partial"):
    output.write_bytes(b"ID3partial")
    time.sleep(3)

if source.startswith("fail"):
    print("ERROR: [youtube] " + source + ": Video unavailable", file=sys.stderr)
    sys.exit(1)

for pct in ("10.0", "55.5", "100.0"):
    print("[download]  " + pct + "% of 3.00MiB at 1.00MiB/s ETA 00:01", flush=True)

print("[ExtractAudio] Destination: " + str(output), flush=True)
output.write_bytes(b"ID3" + b"\\x00" * 1024)

if "--write-thumbnail" in args:
    pathlib.Path(base + ".jpg").write_bytes(b"\\xff\\xd8\\xff" + b"\\x00" * 64)

if not source.startswith("quiet"):
    print(output)
"""

# Stand-in for ffmpeg: copies the first input to the output and appends
# the requested tags as JSON so ffprobe's stand-in can report them.
FAKE_FFMPEG = """
import json
import pathlib
import sys

args = sys.argv[1:]
if "-version" in args:
    print("ffmpeg version 6.1-fake Copyright (c) 2000-2026 the FFmpeg developers")
    sys.exit(0)

inputs = [args[i + 1] for i, arg in enumerate(args) if arg == "-i"]
tags = {}
for i, arg in enumerate(args):
    if arg == "-metadata":
        key, _, value = args[i + 1].partition("=")
        tags[key] = value

payload = {"tags": tags, "cover": len(inputs) > 1}
data = pathlib.Path(inputs[0]).read_bytes().split(b"\\nFAKETAGS:")[0]
pathlib.Path(args[-1]).write_bytes(data + b"\\nFAKETAGS:" + json.dumps(payload).encode())
"""

# ffmpeg that leaves a partial output behind and then fails
FAKE_FFMPEG_FAILING = """
import pathlib
import sys

args = sys.argv[1:]
if "-version" in args:
    print("ffmpeg version 6.1-fake")
    sys.exit(0)

pathlib.Path(args[-1]).write_bytes(b"partial")
print("Error while writing header: Invalid argument", file=sys.stderr)
sys.exit(1)
"""

FAKE_FFPROBE = """
import json
import pathlib
import sys

args = sys.argv[1:]
if "-version" in args:
    print("ffprobe version 6.1-fake")
    sys.exit(0)

path = pathlib.Path(args[-1])
data = path.read_bytes()
payload = {"tags": {}, "cover": False}
if b"\\nFAKETAGS:" in data:
    payload = json.loads(data.split(b"\\nFAKETAGS:", 1)[1])

streams = [{"codec_type": "audio", "codec_name": "mp3", "sample_rate": "48000", "channels": 2}]
if payload["cover"]:
    streams.append({"codec_type": "video", "codec_name": "mjpeg", "disposition": {"attached_pic": 1}})

print(json.dumps({
    "format": {
        "format_name": "mp3",
        "duration": "212.400000",
        "bit_rate": "192000",
        "size": str(len(data)),
        "tags": {key.upper(): value for key, value in payload["tags"].items()},
    },
    "streams": streams,
}))
"""


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables before each test"""
    # Clear any APP_ prefixed environment variables
    for key in list(os.environ.keys()):
        if key.startswith("APP_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def make_tool(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable Python script into a bin directory."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(name: str, source: str) -> Path:
        path = bin_dir / name
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(source))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def fake_ytdlp(make_tool: Callable[[str, str], Path]) -> Path:
    return make_tool("yt-dlp", FAKE_YTDLP)


@pytest.fixture
def fake_ffmpeg(make_tool: Callable[[str, str], Path]) -> Path:
    return make_tool("ffmpeg", FAKE_FFMPEG)


@pytest.fixture
def failing_ffmpeg(make_tool: Callable[[str, str], Path]) -> Path:
    return make_tool("ffmpeg-failing", FAKE_FFMPEG_FAILING)


@pytest.fixture
def fake_ffprobe(make_tool: Callable[[str, str], Path]) -> Path:
    return make_tool("ffprobe", FAKE_FFPROBE)


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    path = tmp_path / "downloads"
    path.mkdir()
    return path
