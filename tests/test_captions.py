import random

from reel_relay.models.schemas import DerivedContext, GeneratedCaptions, SessionMode, YouTubeMetadata
from reel_relay.services.captions import (
    CaptionTemplates,
    ai_fallback_caption,
    comment_text,
    enforce_youtube_limits,
    fallback_caption,
    limit_tags,
    render,
    resolve_instagram_caption,
    resolve_youtube_metadata,
    sanitize_original_caption,
)

TEMPLATES = CaptionTemplates()


def context(caption="", author="creator"):
    return DerivedContext(original_caption=caption, author_handle=author)


def test_repost_uses_original_even_with_generated():
    caption = resolve_instagram_caption(SessionMode.REPOST, context("원본 캡션 ✨"), "AI caption", TEMPLATES)

    assert caption == "원본 캡션 ✨"


def test_repost_without_original_uses_fallback():
    caption = resolve_instagram_caption(SessionMode.REPOST, context(""), None, TEMPLATES)

    assert caption == fallback_caption(context(""), TEMPLATES)
    assert "No caption available" in caption
    assert caption.endswith(TEMPLATES.static_tags)


def test_standard_prefers_generated():
    caption = resolve_instagram_caption(SessionMode.STANDARD, context("original"), "AI caption", TEMPLATES)

    assert caption == "AI caption"


def test_caption_truncated_to_limit():
    long_original = "가" * 5000

    caption = resolve_instagram_caption(SessionMode.REPOST, context(long_original), None, TEMPLATES)

    assert len(caption) == 2200
    assert caption.endswith("...")
    assert caption[:-3] == long_original[:2197]


def test_render_leaves_other_braces():
    assert render("{author} says {hi}", "bob") == "bob says {hi}"


def test_sanitize_original_caption_cuts_at_word():
    caption = "word " * 200

    result = sanitize_original_caption(caption)

    assert len(result) <= 600
    assert result.endswith("...")


def test_comment_text_layout():
    text = comment_text(TEMPLATES, random.Random(1))

    first, *rest = text.split("\n")
    assert first in TEMPLATES.comment_lines
    assert rest == [".", ".", ".", TEMPLATES.static_tags]


def test_ai_fallback_caption_mentions_author():
    assert "@creator" in ai_fallback_caption("creator", TEMPLATES, random.Random(0))


def test_youtube_metadata_fallback_in_repost():
    metadata = resolve_youtube_metadata(
        SessionMode.REPOST, context("the original"), GeneratedCaptions(), TEMPLATES
    )

    assert metadata.title == "creator | K-drama/K-pop Content | idolchat.app"
    assert metadata.description == "the original"
    assert metadata.tags == ["kpop", "kdrama", "idolchat", "viral", "trending", "creator"]


def test_youtube_metadata_uses_generated_pair():
    generated = GeneratedCaptions(youtube_title="Title", youtube_description="Description")

    metadata = resolve_youtube_metadata(SessionMode.STANDARD, context(), generated, TEMPLATES)

    assert (metadata.title, metadata.description) == ("Title", "Description")


def test_youtube_limits():
    metadata = enforce_youtube_limits(
        YouTubeMetadata(title="t" * 150, description="d" * 6000, tags=["x" * 40])
    )

    assert len(metadata.title) == 100
    assert len(metadata.description) == 5000
    assert metadata.tags == ["x" * 30]


def test_limit_tags_drops_from_end():
    tags = [f"tag{i:02d}-" + "y" * 20 for i in range(40)]

    limited = limit_tags(tags)

    assert len(",".join(limited)) <= 500
    assert limited == tags[: len(limited)]


def test_templates_from_config_overrides():
    templates = CaptionTemplates.from_config({"hashtags": ["#a"], "keywords": ["b"], "youtube": {"tags": ["t"]}})

    assert templates.static_tags == "#a b"
    assert templates.youtube_tags == ["t"]
    assert templates.comment_lines == CaptionTemplates().comment_lines
