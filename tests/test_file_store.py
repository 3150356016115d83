import os
import time

import pytest

from reel_relay.services.file_store import TransientFileStore


def touch(path, age_seconds=0):
    path.write_bytes(b"x")
    if age_seconds:
        stamp = time.time() - age_seconds
        os.utime(path, (stamp, stamp))
    return path


def test_path_for_embeds_stage_and_session(tmp_path):
    store = TransientFileStore(tmp_path)

    path = store.path_for("123_abc", "retime")

    assert path == tmp_path / "retime_123_abc.mp4"
    assert not path.exists()


def test_path_for_requires_both_parts(tmp_path):
    store = TransientFileStore(tmp_path)
    with pytest.raises(ValueError):
        store.path_for("", "retime")


def test_purge_session_removes_only_that_session(tmp_path):
    store = TransientFileStore(tmp_path)
    for tag in ("source", "retime", "instagram_upload_alice_1"):
        touch(store.path_for("s1", tag))
    other = touch(store.path_for("s2", "source"))

    removed = store.purge_session("s1")

    assert removed == 3
    assert sorted(p.name for p in tmp_path.iterdir()) == [other.name]


def test_purge_session_with_nothing_to_remove(tmp_path):
    store = TransientFileStore(tmp_path)
    assert store.purge_session("missing") == 0


def test_purge_orphans_respects_age_and_prefix(tmp_path):
    store = TransientFileStore(tmp_path)
    stale_upload = touch(tmp_path / "instagram_upload_alice_1_old.mp4", age_seconds=1200)
    stale_trim = touch(tmp_path / "trimmed_ai_old.mp4", age_seconds=1200)
    fresh_upload = touch(tmp_path / "instagram_upload_bob_1_new.mp4")
    stale_other = touch(tmp_path / "source_old.mp4", age_seconds=1200)

    removed = store.purge_orphans(600)

    assert removed == 2
    assert not stale_upload.exists()
    assert not stale_trim.exists()
    assert fresh_upload.exists()
    assert stale_other.exists()
