import asyncio
import base64
import json

import httpx
import pytest

from reel_relay.services.clients import ClientConfig, ClientResponseError, StorageClient, StorageLimitError


def storage_with(handler, max_mb=70.0):
    return StorageClient(
        config=ClientConfig(base_url="https://api.github.test", timeout=120, api_key="secret"),
        owner="acme",
        repo="media",
        branch="main",
        max_mb=max_mb,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def test_upload_commits_file_and_returns_raw_url(tmp_path):
    video = tmp_path / "final.mp4"
    video.write_bytes(b"video-bytes")
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(201, json={"content": {"path": "videos/clip.mp4"}})

    url = asyncio.run(storage_with(handler).upload(video, "clip.mp4"))

    assert url == "https://raw.githubusercontent.com/acme/media/main/videos/clip.mp4"
    request = requests[0]
    assert request.method == "PUT"
    assert request.url.path == "/repos/acme/media/contents/videos/clip.mp4"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert base64.b64decode(body["content"]) == b"video-bytes"
    assert body["branch"] == "main"


def test_oversized_file_rejected_before_upload(tmp_path):
    video = tmp_path / "big.mp4"
    video.write_bytes(b"\x00" * (2 * 1024 * 1024))

    def handler(request):
        raise AssertionError("must not upload")

    with pytest.raises(StorageLimitError) as excinfo:
        asyncio.run(storage_with(handler, max_mb=1.0).upload(video))

    assert excinfo.value.limit_mb == 1.0


def test_server_error_gets_hint(tmp_path):
    video = tmp_path / "final.mp4"
    video.write_bytes(b"video")

    def handler(request):
        return httpx.Response(500, json={"message": "Server Error"})

    with pytest.raises(ClientResponseError) as excinfo:
        asyncio.run(storage_with(handler).upload(video))

    assert excinfo.value.status_code == 500
    assert "GitHub server error" in excinfo.value.message


def test_default_file_name(tmp_path):
    video = tmp_path / "final.mp4"
    video.write_bytes(b"video")

    def handler(request):
        return httpx.Response(201, json={})

    url = asyncio.run(storage_with(handler).upload(video))

    assert url.startswith("https://raw.githubusercontent.com/acme/media/main/videos/video-")
    assert url.endswith(".mp4")


def test_file_encoding_runs_off_the_event_loop(tmp_path, monkeypatch):
    video = tmp_path / "final.mp4"
    video.write_bytes(b"video")
    offloaded = []
    real_to_thread = asyncio.to_thread

    async def recording_to_thread(func, *args):
        offloaded.append(func.__name__)
        return await real_to_thread(func, *args)

    monkeypatch.setattr("reel_relay.services.clients.storage_client.asyncio.to_thread", recording_to_thread)

    asyncio.run(storage_with(lambda request: httpx.Response(201, json={})).upload(video))

    assert offloaded == ["encode_file"]
