import asyncio

import httpx

from reel_relay.services.clients.caption_extractor import (
    CaptionExtractor,
    parse_ld_json,
    parse_meta_hashtags,
)

POST_URL = "https://www.instagram.com/reel/ABC_123/"


def extractor_with(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CaptionExtractor(http_client=client, **kwargs)


def test_oembed_title_wins():
    def handler(request):
        if request.url.path == "/api/v1/oembed/":
            return httpx.Response(200, json={"title": "Dance time #kpop #fyp", "author_name": "dancer"})
        raise AssertionError(f"unexpected request {request.url}")

    extracted = asyncio.run(extractor_with(handler).extract(POST_URL))

    assert extracted.caption == "Dance time #kpop #fyp"
    assert extracted.hashtags == ["#kpop", "#fyp"]


def test_falls_through_to_media_info():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        if request.url.path == "/api/v1/oembed/":
            return httpx.Response(404, json={"message": "not found"})
        if request.url.path == "/api/v1/media/info/":
            assert request.url.params["shortcode"] == "ABC_123"
            return httpx.Response(200, json={"caption": {"text": "From media info #kdrama"}})
        raise AssertionError("page should not be scraped")

    extracted = asyncio.run(extractor_with(handler).extract(POST_URL))

    assert seen == ["/api/v1/oembed/", "/api/v1/media/info/"]
    assert extracted.caption == "From media info #kdrama"


def test_page_scrape_reads_ld_json():
    html = (
        '<html><script type="application/ld+json">'
        '{"caption": "Scraped caption #a #b"}</script></html>'
    )

    def handler(request):
        if request.url.path.startswith("/api/"):
            return httpx.Response(500)
        return httpx.Response(200, text=html)

    extracted = asyncio.run(extractor_with(handler).extract(POST_URL))

    assert extracted.caption == "Scraped caption #a #b"
    assert extracted.hashtags == ["#a", "#b"]


def test_everything_failing_returns_empty():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    extracted = asyncio.run(extractor_with(handler).extract(POST_URL))

    assert extracted.empty


def test_outer_timeout_returns_empty():
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json={"title": "late"})

    extracted = asyncio.run(extractor_with(handler, outer_timeout=0.05).extract(POST_URL))

    assert extracted.empty


def test_lookup_author():
    def handler(request):
        return httpx.Response(200, json={"title": "x", "author_name": "dancer"})

    assert asyncio.run(extractor_with(handler).lookup_author(POST_URL)) == "dancer"


def test_lookup_author_failure_is_none():
    def handler(request):
        return httpx.Response(403, json={"error": {"message": "login required"}})

    assert asyncio.run(extractor_with(handler).lookup_author(POST_URL)) is None


def test_ld_json_caps_hashtags():
    tags = " ".join(f"#t{i}" for i in range(15))
    html = f'<script type="application/ld+json">{{"description": "{tags}"}}</script>'

    extracted = parse_ld_json(html)

    assert len(extracted.hashtags) == 10


def test_meta_hashtags_are_unique():
    html = (
        '<meta property="og:description" content="Nice #kpop #kpop">'
        '<meta name="description" content="#kpop #viral">'
    )

    extracted = parse_meta_hashtags(html)

    assert extracted.caption == ""
    assert extracted.hashtags == ["#kpop", "#viral"]
