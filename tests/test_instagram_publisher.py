import asyncio
import itertools
import random
import time
from urllib.parse import parse_qs

import httpx
import pytest

from reel_relay.models.schemas import InstagramAccount
from reel_relay.services.captions import CaptionTemplates
from reel_relay.services.clients import ClientError, ClientResponseError, InstagramPublisher, upload_tag
from reel_relay.services.retry import RetryPolicy, with_retry

ACCOUNT = InstagramAccount(name="alice", id="1784", token="long-lived")
MEDIA_URL = "https://raw.example.com/videos/video-1.mp4"


class GraphApi:
    """Minimal Graph API stand-in for one publish flow."""

    def __init__(
        self,
        statuses=("IN_PROGRESS", "FINISHED"),
        comment_status=200,
        poll_errors=(),
        create_errors=(),
        publish_errors=(),
        permalink_status=200,
    ):
        self.statuses = list(statuses)
        self.poll_errors = list(poll_errors)
        self.create_errors = list(create_errors)
        self.publish_errors = list(publish_errors)
        self.comment_status = comment_status
        self.permalink_status = permalink_status
        self.forms = {}
        self.posts = {"container": 0, "publish": 0}

    def __call__(self, request):
        path = request.url.path
        if request.url.host == "raw.example.com":
            return httpx.Response(200, content=b"\x00" * 4096)
        if request.method == "POST":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            if path.endswith("/comments"):
                self.forms["comment"] = form
                if self.comment_status != 200:
                    return httpx.Response(self.comment_status, json={"error": {"message": "Comments disabled"}})
                return httpx.Response(200, json={"id": "comment-1"})
            if path.endswith("/media_publish"):
                self.posts["publish"] += 1
                if self.publish_errors:
                    return httpx.Response(self.publish_errors.pop(0), json={"error": {"message": "try later"}})
                self.forms["publish"] = form
                return httpx.Response(200, json={"id": "media-1"})
            if path.endswith("/media"):
                self.posts["container"] += 1
                if self.create_errors:
                    return httpx.Response(self.create_errors.pop(0), json={"error": {"message": "try later"}})
                self.forms["container"] = form
                return httpx.Response(200, json={"id": "container-1"})
        if path.endswith("/container-1"):
            if self.poll_errors:
                return httpx.Response(self.poll_errors.pop(0), json={"error": {"message": "slow down"}})
            return httpx.Response(200, json={"status_code": self.statuses.pop(0)})
        if path.endswith("/media-1"):
            if self.permalink_status != 200:
                return httpx.Response(self.permalink_status, json={"error": {"message": "unavailable"}})
            return httpx.Response(200, json={"permalink": "https://www.instagram.com/reel/XYZ/"})
        if path.endswith("/refresh_access_token"):
            assert request.url.params["grant_type"] == "ig_refresh_token"
            return httpx.Response(200, json={"access_token": "fresh", "expires_in": 5184000})
        return httpx.Response(404)


class Notices:
    def __init__(self):
        self.items = []

    async def __call__(self, message, level):
        self.items.append((level, message))


def publisher_for(api, sleeps, clock=time.monotonic):
    async def sleep(delay):
        sleeps.append(delay)

    return InstagramPublisher(
        templates=CaptionTemplates(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
        sleep=sleep,
        rng=random.Random(7),
        clock=clock,
    )


def test_publish_walks_container_flow(tmp_path):
    api = GraphApi()
    sleeps = []
    local = tmp_path / "instagram_upload_alice_1_s1.mp4"
    notices = Notices()

    permalink = asyncio.run(
        publisher_for(api, sleeps).publish(ACCOUNT, MEDIA_URL, "Caption #kpop", local, notify=notices)
    )

    assert permalink == "https://www.instagram.com/reel/XYZ/"
    assert api.forms["container"]["media_type"] == "REELS"
    assert api.forms["container"]["video_url"] == MEDIA_URL
    assert api.forms["container"]["caption"] == "Caption #kpop"
    assert api.forms["container"]["share_to_feed"] == "true"
    assert api.forms["publish"]["creation_id"] == "container-1"
    assert len(api.forms["publish"]["device_id"]) == 16
    assert api.forms["comment"]["message"].endswith(CaptionTemplates().static_tags)
    assert not local.exists()
    assert ("success", "Posted first comment on alice's reel.") in notices.items


def test_comment_failure_does_not_fail_publish(tmp_path):
    api = GraphApi(comment_status=400)
    notices = Notices()

    permalink = asyncio.run(
        publisher_for(api, []).publish(ACCOUNT, MEDIA_URL, "c", tmp_path / "tmp.mp4", notify=notices)
    )

    assert permalink
    assert any(level == "warning" and "Comments disabled" in text for level, text in notices.items)


def test_container_error_status_raises_and_cleans_up(tmp_path):
    api = GraphApi(statuses=("IN_PROGRESS", "ERROR"))
    local = tmp_path / "tmp.mp4"

    with pytest.raises(ClientError, match="error status"):
        asyncio.run(publisher_for(api, []).publish(ACCOUNT, MEDIA_URL, "c", local))

    assert "publish" not in api.forms
    assert not local.exists()


def test_rate_limited_poll_waits_and_continues(tmp_path):
    api = GraphApi(statuses=("FINISHED",), poll_errors=(429,))
    sleeps = []

    asyncio.run(publisher_for(api, sleeps).publish(ACCOUNT, MEDIA_URL, "c", tmp_path / "tmp.mp4"))

    assert 45.0 in sleeps


def test_permalink_failure_after_publish_keeps_success(tmp_path):
    api = GraphApi(permalink_status=503)
    notices = Notices()
    publisher = publisher_for(api, [])

    async def publish_once():
        return await publisher.publish(ACCOUNT, MEDIA_URL, "c", tmp_path / "tmp.mp4", notify=notices)

    url = asyncio.run(with_retry(publish_once, RetryPolicy(max_attempts=3), sleep=publisher.sleep))

    assert api.posts["publish"] == 1
    assert url == "instagram://media?id=media-1"
    assert any(level == "warning" and "link could not be fetched" in text for level, text in notices.items)


def test_polling_gives_up_after_attempt_limit(tmp_path):
    api = GraphApi(statuses=("IN_PROGRESS",) * 30)
    sleeps = []

    with pytest.raises(ClientError, match="Media processing timeout after 30 attempts"):
        asyncio.run(publisher_for(api, sleeps).publish(ACCOUNT, MEDIA_URL, "c", tmp_path / "tmp.mp4"))

    assert api.statuses == []
    assert "publish" not in api.forms
    assert sum(1 for delay in sleeps if 5.0 <= delay <= 13.0) >= 30


def test_polling_gives_up_at_wall_clock_ceiling(tmp_path):
    api = GraphApi(statuses=("IN_PROGRESS",) * 30)
    ticks = itertools.count(0, 200)

    with pytest.raises(ClientError, match="timeout after 5 minutes"):
        asyncio.run(
            publisher_for(api, [], clock=lambda: next(ticks)).publish(ACCOUNT, MEDIA_URL, "c", tmp_path / "tmp.mp4")
        )

    assert len(api.statuses) == 29


def test_server_error_while_polling_waits_15s(tmp_path):
    api = GraphApi(statuses=("FINISHED",), poll_errors=(503,))
    sleeps = []
    notices = Notices()

    asyncio.run(publisher_for(api, sleeps).publish(ACCOUNT, MEDIA_URL, "c", tmp_path / "tmp.mp4", notify=notices))

    assert 15.0 in sleeps
    assert ("warning", "Instagram server error for alice, waiting before retry...") in notices.items


def test_container_creation_retry_waits(tmp_path):
    api = GraphApi(create_errors=(429, 500))
    sleeps = []

    asyncio.run(publisher_for(api, sleeps).publish(ACCOUNT, MEDIA_URL, "c", tmp_path / "tmp.mp4"))

    assert api.posts["container"] == 3
    assert sleeps.count(60.0) == 1
    assert sleeps.count(10.0) == 1


def test_container_creation_gives_up_after_three_attempts(tmp_path):
    api = GraphApi(create_errors=(500, 500, 500))
    sleeps = []

    with pytest.raises(ClientResponseError) as excinfo:
        asyncio.run(publisher_for(api, sleeps).publish(ACCOUNT, MEDIA_URL, "c", tmp_path / "tmp.mp4"))

    assert excinfo.value.status_code == 500
    assert api.posts["container"] == 3
    assert sleeps.count(10.0) == 2
    assert api.posts["publish"] == 0


def test_media_publish_rate_limit_waits_a_minute(tmp_path):
    api = GraphApi(publish_errors=(429,))
    sleeps = []

    permalink = asyncio.run(publisher_for(api, sleeps).publish(ACCOUNT, MEDIA_URL, "c", tmp_path / "tmp.mp4"))

    assert permalink == "https://www.instagram.com/reel/XYZ/"
    assert api.posts["publish"] == 2
    assert 60.0 in sleeps


def test_refresh_token():
    token, expires_in = asyncio.run(publisher_for(GraphApi(), []).refresh_token(ACCOUNT))

    assert token == "fresh"
    assert expires_in == 5184000


def test_upload_tag_is_filename_safe():
    assert upload_tag("my account/1", 2) == "instagram_upload_my_account_1_2"
