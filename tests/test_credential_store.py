import asyncio
import json
import os

import pytest

from reel_relay.models.schemas import InstagramAccount, YouTubeAccount
from reel_relay.services.clients.credential_store import (
    CredentialStore,
    CredentialStoreError,
    is_process_alive,
    sanitize_accounts,
)


def read_key(env_file, key):
    for line in env_file.read_text().splitlines():
        if line.startswith(f"{key}="):
            return json.loads(line.split("=", 1)[1])
    return None


def test_replaces_existing_key_and_keeps_others(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text('CHANNEL_ID=123\nYOUTUBE_ACCOUNTS=[]\nGITHUB_REPO=videos\n')
    store = CredentialStore(env_file)

    accounts = [YouTubeAccount(name="main", access_token="new-access", refresh_token="new-refresh")]
    asyncio.run(store.update_youtube_accounts(accounts))

    text = env_file.read_text()
    assert "CHANNEL_ID=123" in text
    assert "GITHUB_REPO=videos" in text
    assert read_key(env_file, "YOUTUBE_ACCOUNTS") == [
        {"name": "main", "accessToken": "new-access", "refreshToken": "new-refresh"}
    ]
    assert not store.lock_file.exists()
    assert not store.backup_file.exists()


def test_appends_missing_key(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("CHANNEL_ID=123")
    store = CredentialStore(env_file)

    asyncio.run(store.update_instagram_accounts([InstagramAccount(name="a", id="1", token="t")]))

    assert env_file.read_text().splitlines()[0] == "CHANNEL_ID=123"
    assert read_key(env_file, "INSTAGRAM_ACCOUNTS") == [{"name": "a", "id": "1", "token": "t"}]


def test_stale_lock_is_reclaimed(tmp_path):
    env_file = tmp_path / ".env"
    store = CredentialStore(env_file, lock_wait=1.0, lock_poll=0.01)
    store.lock_file.write_text("999999999")

    asyncio.run(store.update("YOUTUBE_ACCOUNTS", []))

    assert read_key(env_file, "YOUTUBE_ACCOUNTS") == []


def test_live_lock_times_out(tmp_path):
    store = CredentialStore(tmp_path / ".env", lock_wait=0.05, lock_poll=0.01)
    store.lock_file.write_text(str(os.getpid()))

    with pytest.raises(CredentialStoreError):
        asyncio.run(store.update("YOUTUBE_ACCOUNTS", []))


def test_invalid_key_rejected(tmp_path):
    store = CredentialStore(tmp_path / ".env")
    with pytest.raises(CredentialStoreError):
        asyncio.run(store.update("bad key=\n", []))


def test_sanitize_allowlists_and_caps_fields():
    sanitized = sanitize_accounts([{"name": "n" * 150, "token": "t", "evil": "x", "id": 42}])

    assert sanitized == [{"name": "n" * 100, "id": "42", "token": "t"}]


def test_is_process_alive():
    assert is_process_alive(os.getpid())
    assert not is_process_alive(0)
