import asyncio

import pytest
from googleapiclient.errors import HttpError

from reel_relay.models.schemas import YouTubeAccount, YouTubeMetadata
from reel_relay.services.clients import ClientError, ClientResponseError, YouTubePublisher
from reel_relay.services.clients.youtube_publisher import describe_http_error

ACCOUNT = YouTubeAccount(name="channel", access_token="access", refresh_token="refresh")


class FakeResp:
    def __init__(self, status, reason="Error"):
        self.status = status
        self.reason = reason


class FakeYouTubeService:
    """Mimics the discovery client's videos().insert(...).execute() chain."""

    def __init__(self, response=None, error=None, on_execute=None):
        self.response = response or {"id": "vid123"}
        self.error = error
        self.on_execute = on_execute
        self.inserted = []

    def videos(self):
        return self

    def insert(self, part, body, media_body):
        self.inserted.append(body)
        return self

    def execute(self):
        if self.on_execute is not None:
            self.on_execute()
        if self.error is not None:
            raise self.error
        return self.response


def publisher_with(service, hook=None, credentials_seen=None):
    def build_service(name, version, credentials, cache_discovery):
        if credentials_seen is not None:
            credentials_seen.append(credentials)
        return service

    return YouTubePublisher(
        client_id="client",
        client_secret="secret",
        on_credentials_refreshed=hook,
        build_service=build_service,
    )


def video(tmp_path):
    path = tmp_path / "final.mp4"
    path.write_bytes(b"\x00" * 2048)
    return path


def test_upload_returns_watch_url_with_enforced_metadata(tmp_path):
    service = FakeYouTubeService()
    metadata = YouTubeMetadata(title="T" * 150, description="desc", tags=["kpop"])

    url = asyncio.run(publisher_with(service).upload(ACCOUNT, video(tmp_path), metadata))

    assert url == "https://www.youtube.com/watch?v=vid123"
    body = service.inserted[0]
    assert len(body["snippet"]["title"]) <= 100
    assert body["snippet"]["categoryId"] == "24"
    assert body["status"]["privacyStatus"] == "public"
    assert body["status"]["selfDeclaredMadeForKids"] is False


def test_http_error_keeps_status_code(tmp_path):
    error = HttpError(FakeResp(403, "Forbidden"), b'{"error": {"message": "quotaExceeded"}}')
    service = FakeYouTubeService(error=error)

    with pytest.raises(ClientResponseError) as excinfo:
        asyncio.run(publisher_with(service).upload(ACCOUNT, video(tmp_path), YouTubeMetadata(title="t", description="d")))

    assert excinfo.value.status_code == 403
    assert excinfo.value.platform_message == "quotaExceeded"
    assert "Permission denied" in excinfo.value.message


def test_tokens_refreshed_mid_upload_reach_hook(tmp_path):
    persisted = []
    seen = []

    async def hook(account):
        persisted.append(account)

    service = FakeYouTubeService(on_execute=lambda: setattr(seen[0], "token", "renewed"))
    publisher = publisher_with(service, hook=hook, credentials_seen=seen)

    asyncio.run(publisher.upload(ACCOUNT, video(tmp_path), YouTubeMetadata(title="t", description="d")))

    assert [a.access_token for a in persisted] == ["renewed"]
    assert persisted[0].refresh_token == "refresh"


def test_hook_failure_does_not_fail_upload(tmp_path):
    seen = []

    async def hook(account):
        raise OSError("disk full")

    service = FakeYouTubeService(on_execute=lambda: setattr(seen[0], "token", "renewed"))
    publisher = publisher_with(service, hook=hook, credentials_seen=seen)

    url = asyncio.run(publisher.upload(ACCOUNT, video(tmp_path), YouTubeMetadata(title="t", description="d")))

    assert url.endswith("vid123")


def test_missing_tokens_are_a_configuration_error():
    publisher = YouTubePublisher(client_id="client", client_secret="secret")

    with pytest.raises(ClientError, match="credentials not configured"):
        publisher.credentials_for(YouTubeAccount(name="empty"))


def test_missing_client_secrets():
    with pytest.raises(ClientError, match="OAuth credentials not configured"):
        YouTubePublisher(client_id=None, client_secret=None).credentials_for(ACCOUNT)


def test_describe_http_error():
    assert "Authentication failed" in describe_http_error(401, "")
    assert "Bad request" in describe_http_error(400, "")
    assert describe_http_error(500, "Backend Error") == "Backend Error"
