"""
Shared utilities.

Modules:
    timeouts: with_timeout combinator and TimedResult
    process_utils: external process execution with kill-on-timeout
    media_utils: ffprobe stream probing and media helpers
    text_utils: caption truncation, hashtag extraction, sanitation
    json_utils: JSON extraction from model responses
"""

from reel_relay.utils.json_utils import extract_json_object, parse_json_object
from reel_relay.utils.media_utils import MediaProbe, file_size_mb, probe_media
from reel_relay.utils.process_utils import ProcessResult, run_process
from reel_relay.utils.text_utils import (
    extract_hashtags,
    strip_control_chars,
    truncate,
    truncate_at_word,
)
from reel_relay.utils.timeouts import Outcome, TimedResult, with_timeout

__all__ = [
    # timeouts
    "Outcome",
    "TimedResult",
    "with_timeout",
    # process_utils
    "ProcessResult",
    "run_process",
    # media_utils
    "MediaProbe",
    "file_size_mb",
    "probe_media",
    # text_utils
    "extract_hashtags",
    "strip_control_chars",
    "truncate",
    "truncate_at_word",
    # json_utils
    "extract_json_object",
    "parse_json_object",
]
