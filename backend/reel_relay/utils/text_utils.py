"""
Text helpers for captions and platform metadata.

Example:
    from reel_relay.utils.text_utils import truncate, truncate_at_word

    truncate("a" * 3000, 2200)          # exactly 2200 chars, ends with "..."
    truncate_at_word(title, 100, 80)    # cut at a space past char 80 when possible
"""

import re

ELLIPSIS = "..."

HASHTAG_PATTERN = re.compile(r"#[\w\u0590-\u05ff]+")

# C0/C1 control characters except newline and tab
CONTROL_CHARS_PATTERN = re.compile(r"[\u0000-\u0008\u000b-\u001f\u007f-\u009f]")


def truncate(text: str, limit: int, marker: str = ELLIPSIS) -> str:
    """
    Hard-truncate text to at most `limit` characters, ending with `marker`.

    Operates on code points, so a multi-byte character is never split.

    Args:
        text: Text to truncate
        limit: Maximum length in characters
        marker: Suffix marking the cut

    Returns:
        Original text if it fits, otherwise exactly `limit` characters
    """
    if len(text) <= limit:
        return text
    return text[: limit - len(marker)] + marker


def truncate_at_word(text: str, limit: int, min_break: int, marker: str = ELLIPSIS) -> str:
    """
    Truncate to `limit` characters, preferring to cut at a word boundary.

    The cut moves back to the last space only when that space lies past
    `min_break`; otherwise the hard cut is kept.

    Args:
        text: Text to truncate
        limit: Maximum length in characters (marker included)
        min_break: Lowest index at which a word-boundary cut is accepted
        marker: Suffix marking the cut

    Returns:
        Text of at most `limit` characters
    """
    if len(text) <= limit:
        return text
    cut = text[: limit - len(marker)]
    last_space = cut.rfind(" ")
    if last_space > min_break:
        cut = cut[:last_space]
    return cut + marker


def strip_control_chars(text: str) -> str:
    """Remove control characters (newlines and tabs are kept) and trim."""
    return CONTROL_CHARS_PATTERN.sub("", text).strip()


def extract_hashtags(text: str) -> list[str]:
    """Find hashtags in order of appearance, without duplicates."""
    seen: dict[str, None] = {}
    for tag in HASHTAG_PATTERN.findall(text or ""):
        seen.setdefault(tag, None)
    return list(seen)


def strip_wrapping(text: str) -> str:
    """
    Remove markdown code fences and surrounding quotes from model output.

    Example:
        >>> strip_wrapping('```\\n"Hello"\\n```')
        'Hello'
    """
    cleaned = re.sub(r"^```[a-zA-Z]*\s*", "", text.strip())
    cleaned = re.sub(r"\s*```$", "", cleaned).strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    return cleaned
