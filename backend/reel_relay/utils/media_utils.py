"""
Media utilities for video file handling.

Provides common functions for media file operations:
- Stream probing via ffprobe (geometry, duration, stream presence)
- Size helpers
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from reel_relay.utils.process_utils import run_process

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 30.0


@dataclass
class MediaProbe:
    """
    Stream summary returned by probe_media().

    Attributes:
        has_video: At least one video stream present
        has_audio: At least one audio stream present
        width, height: Geometry of the first video stream (0 if unknown)
        duration: Container duration in seconds (0.0 if unknown)
    """

    has_video: bool = False
    has_audio: bool = False
    width: int = 0
    height: int = 0
    duration: float = 0.0


def file_size_mb(file_path: Path) -> float:
    """Size of a file in megabytes."""
    return file_path.stat().st_size / 1024 / 1024


def parse_probe_output(raw: str) -> MediaProbe:
    """
    Parse `ffprobe -print_format json -show_streams -show_format` output.

    Args:
        raw: ffprobe JSON stdout

    Returns:
        MediaProbe summary

    Raises:
        ValueError: If the output is not valid JSON
    """
    data = json.loads(raw)
    streams = data.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    duration = data.get("format", {}).get("duration")
    if duration is None and video is not None:
        duration = video.get("duration")

    return MediaProbe(
        has_video=video is not None,
        has_audio=audio is not None,
        width=int(video.get("width", 0)) if video else 0,
        height=int(video.get("height", 0)) if video else 0,
        duration=float(duration) if duration else 0.0,
    )


async def probe_media(
    media_path: Path,
    ffprobe_binary: str = "ffprobe",
    timeout: float = PROBE_TIMEOUT,
) -> MediaProbe | None:
    """
    Probe a media file with ffprobe.

    Args:
        media_path: Path to media file
        ffprobe_binary: ffprobe executable
        timeout: Probe ceiling in seconds

    Returns:
        MediaProbe, or None if ffprobe fails, times out or returns garbage
    """
    cmd = [
        ffprobe_binary,
        "-v", "quiet",
        "-print_format", "json",
        "-show_streams",
        "-show_format",
        str(media_path),
    ]
    result = await run_process(cmd, timeout)
    if not result.ok:
        logger.warning(f"ffprobe failed for {media_path.name}: {result.describe()}")
        return None

    try:
        return parse_probe_output(result.stdout)
    except (ValueError, TypeError) as e:
        logger.warning(f"ffprobe output unreadable for {media_path.name}: {e}")
        return None
