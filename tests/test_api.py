import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from reel_relay.api import routes
from reel_relay.services.clients import CredentialStoreError
from reel_relay.services.pipeline.orchestrator import BUSY_MESSAGE

REEL = "https://www.instagram.com/reel/ABC123/"


class FailingCredentialStore:
    async def update_instagram_accounts(self, accounts):
        raise CredentialStoreError("lock held by another process")

    async def update_youtube_accounts(self, accounts):
        raise CredentialStoreError("lock held by another process")


@pytest.fixture
def build_client(make_orchestrator):
    def build(settings_update=None, **overrides):
        orchestrator = make_orchestrator(**overrides)
        if settings_update:
            orchestrator.settings = orchestrator.settings.model_copy(update=settings_update)
        app = FastAPI()
        app.include_router(routes.router)
        app.state.orchestrator = orchestrator
        app.state.settings = orchestrator.settings
        return TestClient(app), orchestrator

    return build


def post(client, content, channel_id="reels", author_is_bot=False):
    return client.post(
        "/api/messages",
        json={"channel_id": channel_id, "content": content, "author_is_bot": author_is_bot},
    )


def test_accepted_message_runs_session(build_client):
    client, orchestrator = build_client(instagram_accounts=["alice"])

    response = post(client, f"{REEL} author: creator")

    body = response.json()
    assert response.status_code == 200
    assert body["accepted"] is True
    assert body["session_id"]
    # TestClient runs background tasks before returning
    assert [call[0] for call in orchestrator.instagram.calls] == ["alice"]
    assert orchestrator.gate.active == []


def test_bot_messages_are_ignored(build_client):
    client, orchestrator = build_client()

    body = post(client, REEL, author_is_bot=True).json()

    assert body == {"accepted": False, "session_id": None, "reason": "bot message"}
    assert orchestrator.source.calls == []


def test_other_channels_are_ignored(build_client):
    client, _ = build_client(settings_update={"channel_id": "reels"})

    assert post(client, REEL, channel_id="general").json()["reason"] == "wrong channel"


def test_message_without_link_is_ignored(build_client):
    client, _ = build_client()

    assert post(client, "hello there").json()["reason"] == "no supported link"


def test_unsupported_instagram_link_reports_parse_error(build_client):
    client, _ = build_client()

    body = post(client, "https://www.instagram.com/explore/").json()

    assert body["accepted"] is False
    assert "doesn't contain a supported link" in body["reason"]


def test_busy_gate_returns_429(build_client, channel):
    client, orchestrator = build_client()
    for _ in range(3):
        orchestrator.gate.try_admit()

    response = post(client, REEL)

    assert response.status_code == 429
    assert response.json()["detail"] == BUSY_MESSAGE
    assert channel.texts == [BUSY_MESSAGE]
    assert orchestrator.source.calls == []


def test_list_sessions(build_client):
    client, orchestrator = build_client()
    session_id = orchestrator.gate.try_admit()

    assert client.get("/api/sessions").json() == [session_id]


def test_refresh_instagram_tokens(build_client):
    client, _ = build_client(instagram_accounts=["alice"])

    assert client.post("/api/accounts/instagram/refresh").json() == {"alice": 5184000}


def test_refresh_persist_failure_is_503(build_client):
    client, _ = build_client(
        instagram_accounts=["alice"],
        credential_store=FailingCredentialStore(),
    )

    assert client.post("/api/accounts/instagram/refresh").status_code == 503
