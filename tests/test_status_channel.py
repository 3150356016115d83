import asyncio
import json

import httpx

from conftest import RecordingChannel
from reel_relay.models.schemas import (
    OutcomeBucket,
    Platform,
    PlatformSummary,
    SessionOutcome,
    SessionPhase,
)
from reel_relay.services.pipeline import ProgressReporter
from reel_relay.services.status_channel import EmbedField, StatusEmbed, WebhookStatusChannel

WEBHOOK = "https://chat.example.com/api/webhooks/1/token"


def webhook_with(handler):
    return WebhookStatusChannel(WEBHOOK, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_send_embed_returns_message_id():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"id": "987"})

    embed = StatusEmbed(title="T", description="D", fields=[EmbedField("URL", "x")])
    message_id = asyncio.run(webhook_with(handler).send_embed(embed))

    assert message_id == "987"
    assert requests[0].url.params["wait"] == "true"
    body = json.loads(requests[0].content)
    assert body["embeds"][0]["fields"] == [{"name": "URL", "value": "x", "inline": True}]


def test_edit_embed_patches_message():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    asyncio.run(webhook_with(handler).edit_embed("987", StatusEmbed(title="T", description="D")))

    assert requests[0].method == "PATCH"
    assert requests[0].url.path.endswith("/messages/987")


def test_delivery_failures_do_not_raise():
    def handler(request):
        return httpx.Response(500)

    channel = webhook_with(handler)

    async def scenario():
        assert await channel.send_embed(StatusEmbed(title="T", description="D")) is None
        await channel.edit_embed("1", StatusEmbed(title="T", description="D"))
        await channel.send_text("hello")

    asyncio.run(scenario())


def test_reporter_posts_once_then_edits():
    channel = RecordingChannel()
    reporter = ProgressReporter(channel, "https://instagram.com/reel/x")

    async def scenario():
        await reporter.update(SessionPhase.INITIALIZING, "Starting process...")
        await reporter.update(SessionPhase.DOWNLOADING, "Downloading video...")
        await reporter.update(SessionPhase.PROCESSING, "Processing video...")

    asyncio.run(scenario())

    assert len(channel.embeds) == 1
    assert [embed.description for _, embed in channel.edits] == ["Downloading video...", "Processing video..."]


def test_reporter_notices_are_append_only():
    channel = RecordingChannel()
    reporter = ProgressReporter(channel, "u")

    async def scenario():
        await reporter.notice("first", "info")
        await reporter.retry_notice("alice")(1, 15.0, RuntimeError("x"))

    asyncio.run(scenario())

    assert channel.texts == [
        "ℹ️ first",
        "⚠️ Upload attempt 1 failed for alice. Retrying in 15s...",
    ]
    assert reporter.notices_sent == 2


def test_reporter_survives_channel_errors():
    class BrokenChannel(RecordingChannel):
        async def send_embed(self, embed):
            raise RuntimeError("down")

        async def send_text(self, text):
            raise RuntimeError("down")

    reporter = ProgressReporter(BrokenChannel(), "u")

    async def scenario():
        await reporter.update(SessionPhase.INITIALIZING, "Starting process...")
        await reporter.notice("hello")

    asyncio.run(scenario())


def test_final_partial_outcome():
    channel = RecordingChannel()
    reporter = ProgressReporter(channel, "u")
    outcome = SessionOutcome(
        session_id="s",
        instagram=PlatformSummary(platform=Platform.INSTAGRAM, attempted=3, succeeded=2),
        youtube=PlatformSummary(platform=Platform.YOUTUBE, attempted=0, succeeded=0),
        author="creator",
        elapsed_seconds=42.4,
    )

    asyncio.run(reporter.final(outcome))

    embed = channel.last_embed
    assert outcome.bucket == OutcomeBucket.PARTIAL
    assert embed.title == "⚠️ Partial Success"
    values = {f.name: f.value for f in embed.fields}
    assert values == {
        "Instagram Uploads": "2/3",
        "YouTube Uploads": "0/0",
        "Author": "creator",
        "Time Taken": "42s",
    }


def test_outcome_buckets_combine_active_platforms():
    def outcome(ig, yt):
        return SessionOutcome(
            session_id="s",
            instagram=PlatformSummary(platform=Platform.INSTAGRAM, attempted=ig[0], succeeded=ig[1]),
            youtube=PlatformSummary(platform=Platform.YOUTUBE, attempted=yt[0], succeeded=yt[1]),
            author="a",
            elapsed_seconds=0,
        )

    assert outcome((2, 2), (0, 0)).bucket == OutcomeBucket.SUCCESS
    assert outcome((2, 0), (1, 0)).bucket == OutcomeBucket.FAILURE
    assert outcome((2, 0), (1, 1)).bucket == OutcomeBucket.PARTIAL
    assert outcome((0, 0), (0, 0)).bucket == OutcomeBucket.SUCCESS
