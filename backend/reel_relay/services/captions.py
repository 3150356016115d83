"""
Caption resolution and platform text limits.

Instagram caption priority:
    1. Repost mode with a non-empty original caption: the original, verbatim
    2. AI-generated (or operator-supplied) caption
    3. Templated promotional caption plus the static hashtag set

Every caption is hard-truncated to the platform limit with a trailing "...".
"""

import logging
import random
from dataclasses import dataclass, field

from reel_relay.config import Settings, load_captions_config
from reel_relay.models.schemas import DerivedContext, GeneratedCaptions, SessionMode, YouTubeMetadata
from reel_relay.utils.text_utils import truncate, truncate_at_word

logger = logging.getLogger(__name__)

INSTAGRAM_CAPTION_MAX = 2200
AI_CAPTION_MAX = 500

ORIGINAL_CAPTION_MAX = 600
ORIGINAL_CAPTION_BREAK = 500

YOUTUBE_TITLE_MAX = 100
YOUTUBE_TITLE_BREAK = 80
YOUTUBE_DESCRIPTION_MAX = 5000
YOUTUBE_DESCRIPTION_BREAK = 4900
YOUTUBE_TAG_MAX = 30
YOUTUBE_TAGS_TOTAL_MAX = 500


def render(template: str, author: str, original_caption: str = "") -> str:
    """Fill {author} and {original_caption} placeholders."""
    # replace() because templates may contain other braces
    return template.replace("{author}", author).replace("{original_caption}", original_caption)


@dataclass
class CaptionTemplates:
    """
    Static caption text loaded from config/captions.yaml.

    Example:
        templates = CaptionTemplates.from_settings(settings)
        caption = resolve_instagram_caption(session.mode, context, generated, templates)
    """

    base_caption: str = "🎬 Yoinked from: @{author} (DM for removal)\n💭 Original Caption:\n\n{original_caption}"
    empty_caption_placeholder: str = "No caption available"
    hashtags: list[str] = field(default_factory=lambda: ["#kpop", "#kdrama", "#viral", "#idolchat"])
    keywords: list[str] = field(default_factory=list)
    comment_lines: list[str] = field(default_factory=lambda: ["Follow @idolchat.app for more! ✨"])
    ai_fallback_captions: list[str] = field(
        default_factory=lambda: ["✨ Check out idolchat.app 💫\n\n🎬 via @{author}\n\n#kpop #kdrama #idolchat #viral"]
    )
    youtube_fallback_title: str = "{author} | K-drama/K-pop Content | idolchat.app"
    youtube_fallback_description: str = "Check out idolchat.app!\n\nCredit: @{author}"
    youtube_tags: list[str] = field(default_factory=lambda: ["kpop", "kdrama", "idolchat", "viral", "trending"])

    @classmethod
    def from_config(cls, config: dict) -> "CaptionTemplates":
        defaults = cls()
        youtube = config.get("youtube", {})
        return cls(
            base_caption=config.get("base_caption", defaults.base_caption),
            empty_caption_placeholder=config.get(
                "empty_caption_placeholder", defaults.empty_caption_placeholder
            ),
            hashtags=list(config.get("hashtags", defaults.hashtags)),
            keywords=list(config.get("keywords", defaults.keywords)),
            comment_lines=list(config.get("comment_lines", defaults.comment_lines)),
            ai_fallback_captions=list(config.get("ai_fallback_captions", defaults.ai_fallback_captions)),
            youtube_fallback_title=youtube.get("fallback_title", defaults.youtube_fallback_title),
            youtube_fallback_description=youtube.get(
                "fallback_description", defaults.youtube_fallback_description
            ),
            youtube_tags=list(youtube.get("tags", defaults.youtube_tags)),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "CaptionTemplates":
        try:
            return cls.from_config(load_captions_config(settings))
        except FileNotFoundError:
            logger.warning("captions.yaml not found, using built-in caption defaults")
            return cls()

    @property
    def static_tags(self) -> str:
        """Hashtag block appended to fallback captions and comments."""
        return " ".join([*self.hashtags, *self.keywords])


def sanitize_original_caption(caption: str) -> str:
    """Cap an extracted caption, cutting at a word boundary when one is close."""
    return truncate_at_word(caption, ORIGINAL_CAPTION_MAX, ORIGINAL_CAPTION_BREAK)


def fallback_caption(context: DerivedContext, templates: CaptionTemplates) -> str:
    """Promotional template with author and original caption, plus static hashtags."""
    body = render(
        templates.base_caption,
        context.author_handle,
        context.original_caption or templates.empty_caption_placeholder,
    )
    return f"{body}\n\n{templates.static_tags}"


def resolve_instagram_caption(
    mode: SessionMode,
    context: DerivedContext,
    generated: str | None,
    templates: CaptionTemplates,
    limit: int = INSTAGRAM_CAPTION_MAX,
) -> str:
    """
    Pick the caption to publish and enforce the platform limit.

    Args:
        mode: Session mode
        context: Extracted source context
        generated: AI-generated or operator-supplied caption, if any
        templates: Static caption text
        limit: Platform character limit

    Returns:
        Caption of at most `limit` characters
    """
    if mode == SessionMode.REPOST and context.original_caption:
        caption = context.original_caption
        source = "original"
    elif generated:
        caption = generated
        source = "generated"
    else:
        caption = fallback_caption(context, templates)
        source = "fallback"

    if len(caption) > limit:
        logger.info(f"Caption truncated to {limit} chars")
    logger.debug(f"Using {source} caption ({len(caption)} chars)")
    return truncate(caption, limit)


def comment_text(templates: CaptionTemplates, rng: random.Random | None = None) -> str:
    """First comment: random promotional line, dotted spacer, static hashtags."""
    rng = rng or random.Random()
    line = rng.choice(templates.comment_lines)
    return f"{line}\n.\n.\n.\n{templates.static_tags}"


def ai_fallback_caption(author: str, templates: CaptionTemplates, rng: random.Random | None = None) -> str:
    """Random short caption used when AI generation keeps failing."""
    rng = rng or random.Random()
    return render(rng.choice(templates.ai_fallback_captions), author)


def ai_fallback_youtube(author: str, templates: CaptionTemplates) -> tuple[str, str]:
    """Title and description used when AI metadata generation keeps failing."""
    return (
        render(templates.youtube_fallback_title, author),
        render(templates.youtube_fallback_description, author),
    )


def limit_tags(tags: list[str]) -> list[str]:
    """Cap each tag at 30 chars, then drop from the end until the joined list fits 500."""
    limited = [tag[:YOUTUBE_TAG_MAX] for tag in tags]
    limited = [tag for tag in limited if tag]
    while limited and len(",".join(limited)) > YOUTUBE_TAGS_TOTAL_MAX:
        limited.pop()
    return limited


def enforce_youtube_limits(metadata: YouTubeMetadata) -> YouTubeMetadata:
    """Truncate title, description and tags to the video platform's limits."""
    return YouTubeMetadata(
        title=truncate_at_word(metadata.title, YOUTUBE_TITLE_MAX, YOUTUBE_TITLE_BREAK),
        description=truncate_at_word(
            metadata.description, YOUTUBE_DESCRIPTION_MAX, YOUTUBE_DESCRIPTION_BREAK
        ),
        tags=limit_tags(metadata.tags),
    )


def resolve_youtube_metadata(
    mode: SessionMode,
    context: DerivedContext,
    generated: GeneratedCaptions,
    templates: CaptionTemplates,
) -> YouTubeMetadata:
    """
    Build upload metadata: generated title/description when present,
    otherwise the fallback title and either the original caption (repost)
    or the promotional template.
    """
    author = context.author_handle
    if generated.youtube_title and generated.youtube_description:
        title, description = generated.youtube_title, generated.youtube_description
    else:
        title = render(templates.youtube_fallback_title, author)
        if mode == SessionMode.REPOST and context.original_caption:
            description = context.original_caption
        else:
            description = render(
                templates.base_caption,
                author,
                context.original_caption or templates.empty_caption_placeholder,
            )

    return enforce_youtube_limits(
        YouTubeMetadata(title=title, description=description, tags=[*templates.youtube_tags, author])
    )
