import shutil
from pathlib import Path

import pytest

from reel_relay.config import Settings
from reel_relay.models.schemas import GeneratedCaptions, InstagramAccount, YouTubeAccount
from reel_relay.models.transforms import BrandingSpec, RetimeSpec
from reel_relay.services.captions import CaptionTemplates
from reel_relay.services.clients import ExtractedCaption
from reel_relay.services.file_store import TransientFileStore
from reel_relay.services.gate import ConcurrencyGate
from reel_relay.services.pipeline import SessionOrchestrator

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 4096


class RecordingChannel:
    """StatusChannel double that keeps everything it is sent."""

    def __init__(self):
        self.embeds = []
        self.edits = []
        self.texts = []

    async def send_embed(self, embed):
        self.embeds.append(embed)
        return "status-1"

    async def edit_embed(self, message_id, embed):
        self.edits.append((message_id, embed))

    async def send_text(self, text):
        self.texts.append(text)

    @property
    def last_embed(self):
        if self.edits:
            return self.edits[-1][1]
        return self.embeds[-1] if self.embeds else None


class FakeSource:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def fetch(self, post_url, destination: Path):
        self.calls.append(post_url)
        destination.write_bytes(VIDEO_BYTES)
        if self.error is not None:
            raise self.error
        return destination

    async def close(self):
        pass


class FakeExtractor:
    def __init__(self, caption="", hashtags=(), author="creator"):
        self.caption = caption
        self.hashtags = list(hashtags)
        self.author = author

    async def extract(self, post_url):
        return ExtractedCaption(caption=self.caption, hashtags=list(self.hashtags))

    async def lookup_author(self, post_url):
        return self.author

    async def close(self):
        pass


class FakeTransformer:
    """Copies input to output, or returns the input for stages named in `failing`."""

    def __init__(self, failing=(), error: Exception | None = None):
        self.failing = set(failing)
        self.error = error
        self.applied = []

    async def apply(self, input_path, spec, output_path):
        if self.error is not None:
            raise self.error
        if spec.name in self.failing:
            return input_path
        shutil.copyfile(input_path, output_path)
        self.applied.append(spec.name)
        return output_path


class FakeStorage:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.uploaded = []

    async def upload(self, path):
        if self.error is not None:
            raise self.error
        self.uploaded.append(path)
        return f"https://raw.example.com/videos/{path.name}"

    async def close(self):
        pass


class FakeGenerator:
    def __init__(self, enabled=True, error: Exception | None = None):
        self.enabled = enabled
        self.error = error
        self.calls = []
        self.closed = False

    async def generate(self, context, media_path, trim_path, include_youtube=False):
        self.calls.append((media_path, trim_path, include_youtube))
        if self.error is not None:
            raise self.error
        return GeneratedCaptions(
            instagram_caption="AI caption",
            youtube_title="AI title" if include_youtube else None,
            youtube_description="AI description" if include_youtube else None,
        )

    async def aclose(self):
        self.closed = True


class FakeInstagram:
    """Records publish calls; accounts in `failures` raise their mapped error."""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []

    async def publish(self, account, media_url, caption, local_path, notify=None):
        self.calls.append((account.name, media_url, caption, local_path))
        local_path.write_bytes(VIDEO_BYTES)
        error = self.failures.get(account.name)
        if error is not None:
            raise error
        return f"https://www.instagram.com/reel/{account.name}/"

    async def refresh_token(self, account):
        return f"{account.token}-new", 5184000

    async def close(self):
        pass


class FakeYouTube:
    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []
        self.on_credentials_refreshed = None

    async def upload(self, account, path, metadata, notify=None):
        self.calls.append((account.name, path, metadata))
        error = self.failures.get(account.name)
        if error is not None:
            raise error
        return f"https://www.youtube.com/watch?v={account.name}"


class RecordingCredentialStore:
    def __init__(self):
        self.instagram_updates = []
        self.youtube_updates = []

    async def update_instagram_accounts(self, accounts):
        self.instagram_updates.append(list(accounts))

    async def update_youtube_accounts(self, accounts):
        self.youtube_updates.append(list(accounts))


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        temp_dir=tmp_path / "videos",
        config_dir=tmp_path / "config",
        credentials_env_file=tmp_path / ".env",
        gemini_api_key="test-key",
        instagram_accounts=[],
        youtube_accounts=[],
    )


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def make_orchestrator(settings, channel):
    """Factory building a SessionOrchestrator around fakes; overrides by keyword."""

    def build(instagram_accounts=(), youtube_accounts=(), **overrides):
        run_settings = settings.model_copy(
            update={
                "instagram_accounts": [InstagramAccount(name=n, id=f"id-{n}", token=f"tok-{n}") for n in instagram_accounts],
                "youtube_accounts": [YouTubeAccount(name=n, access_token="a", refresh_token="r") for n in youtube_accounts],
            }
        )
        parts = dict(
            settings=run_settings,
            gate=ConcurrencyGate(3),
            store=TransientFileStore(run_settings.temp_dir),
            channel=channel,
            source=FakeSource(),
            extractor=FakeExtractor(),
            transformer=FakeTransformer(),
            storage=FakeStorage(),
            generator=FakeGenerator(),
            instagram=FakeInstagram(),
            youtube=FakeYouTube(),
            templates=CaptionTemplates(),
            transforms=[RetimeSpec(), BrandingSpec()],
            sleep=SleepRecorder(),
            memory_probe=lambda: 100.0,
        )
        parts.update(overrides)
        return SessionOrchestrator(**parts)

    return build
