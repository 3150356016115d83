"""
Inbound message parser.

Recognised message shapes:

    https://instagram.com/reel/xyz
    https://instagram.com/reels/xyz author: username_123
    https://instagram.com/reel/xyz author: username_123 caption: Amazing dance! #kpop
    https://instagram.com/reel/xyz caption: Multi-line caption
    #kdrama #emotional
    https://instagram.com/reel/xyz repost author: username_123

`/reels/` links are normalised to `/reel/`. The `caption:` directive is
ignored in repost mode, where the source's own caption is reused.
"""

import logging
import re

from reel_relay.models.schemas import InboundRequest, SessionMode

logger = logging.getLogger(__name__)


class MessageParseError(Exception):
    """Raised when a message doesn't carry a recognised source URL."""

    def __init__(self, content: str, message: str | None = None):
        self.content = content
        if message is None:
            preview = content[:80] + ("..." if len(content) > 80 else "")
            message = (
                f"Message '{preview}' doesn't contain a supported link. "
                f"Expected format: 'https://instagram.com/reel/<code> [repost] [author: <name>] [caption: <text>]'"
            )
        super().__init__(message)


# Groups: (1) optional profile segment, (2) reel|reels|p
SOURCE_URL_PATTERN = re.compile(
    r"https?://(?:www\.)?instagram\.com/"
    r"(?:([^/\s]+)/)?"           # Optional profile: /username/
    r"(reels?|p)/[\w-]+"         # Kind and shortcode: /reel/ABC123
    r"[^\s]*",                   # Trailing path or query
    re.IGNORECASE,
)

ANY_URL_PATTERN = re.compile(r"https?://[^\s]+", re.IGNORECASE)
AUTHOR_PATTERN = re.compile(r"\bauthor:?\s*([^\s,]+)", re.IGNORECASE)
CAPTION_PATTERN = re.compile(r"\bcaption:?\s*([\s\S]+)", re.IGNORECASE)
REPOST_PATTERN = re.compile(r"repost", re.IGNORECASE)


def normalize_source_url(url: str) -> str:
    """Rewrite /reels/ links to the canonical /reel/ form."""
    if "/reels/" in url:
        normalized = url.replace("/reels/", "/reel/")
        logger.debug(f"Normalized URL from /reels/ to /reel/: {normalized}")
        return normalized
    return url


def is_candidate(content: str) -> bool:
    """Cheap pre-filter: could this message be a request at all?"""
    return "instagram.com" in content.lower()


def parse_message(content: str) -> InboundRequest:
    """
    Parse an inbound chat message into a request.

    Args:
        content: Raw message text

    Returns:
        InboundRequest with normalised URL, mode, author and caption

    Raises:
        MessageParseError: If no supported link is present
    """
    url_match = SOURCE_URL_PATTERN.search(content)
    if not url_match:
        raise MessageParseError(content)

    source_url = normalize_source_url(url_match.group(0))
    text = ANY_URL_PATTERN.sub("", content).strip()

    mode = SessionMode.REPOST if REPOST_PATTERN.search(text) else SessionMode.STANDARD

    author = None
    author_match = AUTHOR_PATTERN.search(text)
    if author_match:
        author = author_match.group(1).strip()
        text = (text[: author_match.start()] + text[author_match.end():]).strip()

    manual_caption = None
    if mode == SessionMode.STANDARD:
        caption_match = CAPTION_PATTERN.search(text)
        if caption_match:
            manual_caption = caption_match.group(1).strip() or None

    logger.info(
        f"Parsed request: {source_url} "
        f"(mode={mode.value}, author={author or '-'}, "
        f"manual_caption={len(manual_caption) if manual_caption else 0} chars)"
    )

    return InboundRequest(
        source_url=source_url,
        mode=mode,
        author=author,
        manual_caption=manual_caption,
    )
