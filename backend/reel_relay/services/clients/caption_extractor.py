"""
Best-effort extraction of the source post's caption and hashtags.

Methods are tried strictly in order, first success wins:
    1. oEmbed endpoint (title field)
    2. Media-info endpoint by shortcode (caption field)
    3. Page scraping: ld+json structured data, then hashtags in meta tags

Each method has its own short timeout and the whole chain runs under an
outer ceiling. Extraction never raises: total failure yields an empty
result so caption absence can't block the pipeline.
"""

import json
import logging
import re
from dataclasses import dataclass, field

import httpx

from reel_relay.services.clients.base import ClientError, raise_for_response
from reel_relay.utils.text_utils import HASHTAG_PATTERN, extract_hashtags
from reel_relay.utils.timeouts import with_timeout

logger = logging.getLogger(__name__)

OEMBED_URL = "https://www.instagram.com/api/v1/oembed/"
MEDIA_INFO_URL = "https://www.instagram.com/api/v1/media/info/"

OEMBED_TIMEOUT = 8.0
MEDIA_INFO_TIMEOUT = 8.0
SCRAPE_TIMEOUT = 10.0
EXTRACTION_TIMEOUT = 20.0

SCRAPED_HASHTAG_LIMIT = 10

DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
MOBILE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15"

LD_JSON_PATTERN = re.compile(
    r'<script type="application/ld\+json"[^>]*>(.*?)</script>', re.DOTALL
)
META_WITH_HASHTAG_PATTERN = re.compile(r'<meta[^>]+content="([^"]*#[^"]*)"')
SHORTCODE_PATTERN = re.compile(r"/(?:reels?|p)/([\w-]+)")


@dataclass
class ExtractedCaption:
    """Caption text and hashtags found on the source post."""

    caption: str = ""
    hashtags: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.caption and not self.hashtags


class CaptionExtractor:
    """
    Multi-method caption extraction for a source post.

    Example:
        async with CaptionExtractor() as extractor:
            extracted = await extractor.extract(post_url)
            author = await extractor.lookup_author(post_url)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        outer_timeout: float = EXTRACTION_TIMEOUT,
    ):
        self.http_client = http_client or httpx.AsyncClient(timeout=None, follow_redirects=True)
        self.outer_timeout = outer_timeout

    async def close(self) -> None:
        await self.http_client.aclose()

    async def __aenter__(self) -> "CaptionExtractor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def extract(self, post_url: str) -> ExtractedCaption:
        """
        Run the extraction chain under the outer timeout.

        Args:
            post_url: Source post URL

        Returns:
            ExtractedCaption (empty when every method fails)
        """
        result = await with_timeout(self._run_chain(post_url), self.outer_timeout)
        if result.ok:
            return result.value
        if result.timed_out:
            logger.warning(f"Caption extraction timed out after {self.outer_timeout:.0f}s")
        else:
            logger.warning(f"Caption extraction failed: {result.describe()}")
        return ExtractedCaption()

    async def lookup_author(self, post_url: str) -> str | None:
        """Author name from the oEmbed endpoint, or None."""
        try:
            data = await self._get_oembed(post_url)
        except (httpx.HTTPError, ClientError, ValueError) as e:
            logger.info(f"Could not fetch author: {e}")
            return None
        author = data.get("author_name") if isinstance(data, dict) else None
        return str(author) if author else None

    async def _run_chain(self, post_url: str) -> ExtractedCaption:
        methods = (
            ("oEmbed", self._from_oembed),
            ("media info", self._from_media_info),
            ("page scraping", self._from_page),
        )
        for name, method in methods:
            try:
                extracted = await method(post_url)
            except Exception as e:
                logger.info(f"Caption method '{name}' failed: {e}")
                continue
            if extracted is not None and not extracted.empty:
                logger.info(
                    f"Caption method '{name}' succeeded: "
                    f"{len(extracted.caption)} chars, {len(extracted.hashtags)} hashtags"
                )
                return extracted

        logger.info("All caption extraction methods failed")
        return ExtractedCaption()

    async def _get_oembed(self, post_url: str) -> dict:
        response = await self.http_client.get(
            OEMBED_URL,
            params={"url": post_url},
            headers={"User-Agent": DESKTOP_UA},
            timeout=OEMBED_TIMEOUT,
        )
        raise_for_response(response, "instagram", "oEmbed lookup")
        return response.json()

    async def _from_oembed(self, post_url: str) -> ExtractedCaption | None:
        data = await self._get_oembed(post_url)
        title = data.get("title") if isinstance(data, dict) else None
        if not title:
            return None
        caption = str(title)
        return ExtractedCaption(caption=caption, hashtags=HASHTAG_PATTERN.findall(caption))

    async def _from_media_info(self, post_url: str) -> ExtractedCaption | None:
        match = SHORTCODE_PATTERN.search(post_url)
        if not match:
            raise ValueError("Could not extract shortcode")

        response = await self.http_client.get(
            MEDIA_INFO_URL,
            params={"shortcode": match.group(1)},
            headers={
                "User-Agent": MOBILE_UA,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
            timeout=MEDIA_INFO_TIMEOUT,
        )
        raise_for_response(response, "instagram", "Media info lookup")
        data = response.json()
        caption = data.get("caption") if isinstance(data, dict) else None
        if isinstance(caption, dict):
            caption = caption.get("text")
        if not caption:
            return None
        caption = str(caption)
        return ExtractedCaption(caption=caption, hashtags=HASHTAG_PATTERN.findall(caption))

    async def _from_page(self, post_url: str) -> ExtractedCaption | None:
        response = await self.http_client.get(
            post_url,
            headers={
                "User-Agent": DESKTOP_UA,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
            },
            timeout=SCRAPE_TIMEOUT,
        )
        raise_for_response(response, "instagram", "Page scraping")
        html = response.text
        if not html:
            raise ValueError("Empty HTML response")

        from_ld_json = parse_ld_json(html)
        if from_ld_json is not None:
            return from_ld_json
        return parse_meta_hashtags(html)


def parse_ld_json(html: str) -> ExtractedCaption | None:
    """Caption from the first ld+json block carrying caption/description/name."""
    for block in LD_JSON_PATTERN.findall(html):
        if not block.strip():
            continue
        try:
            data = json.loads(block)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue
        text = data.get("caption") or data.get("description") or data.get("name")
        if text:
            caption = str(text)
            return ExtractedCaption(
                caption=caption,
                hashtags=HASHTAG_PATTERN.findall(caption)[:SCRAPED_HASHTAG_LIMIT],
            )
    return None


def parse_meta_hashtags(html: str) -> ExtractedCaption | None:
    """Unique hashtags found in meta tag content attributes (no caption)."""
    combined = " ".join(META_WITH_HASHTAG_PATTERN.findall(html))
    hashtags = extract_hashtags(combined)
    if not hashtags:
        return None
    return ExtractedCaption(caption="", hashtags=hashtags)
