"""
Pydantic models for the reel republishing pipeline.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SessionMode(str, Enum):
    """How captions are sourced for a session.

    - standard: generate a new caption (AI, manual override or template)
    - repost: reuse the source's original caption verbatim, skip AI generation
    """
    STANDARD = "standard"
    REPOST = "repost"


class Platform(str, Enum):
    """Publishing platform."""
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"


class SessionPhase(str, Enum):
    """Coarse phase shown in the evolving status message."""
    INITIALIZING = "initializing"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    PUBLISHING_INSTAGRAM = "publishing_instagram"
    PUBLISHING_YOUTUBE = "publishing_youtube"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class PublishState(str, Enum):
    """States of one account's publish flow."""
    PREPARING = "preparing"
    DOWNLOADING = "downloading"
    CONTAINER_CREATED = "container_created"
    POLLING = "polling"
    READY = "ready"
    PUBLISHED = "published"
    COMMENT_POSTED = "comment_posted"
    DONE = "done"
    FAILED = "failed"


class OutcomeBucket(str, Enum):
    """Aggregate result for a platform or a whole session."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class InstagramAccount(BaseModel):
    """Instagram-like publishing target."""

    name: str
    id: str
    token: str

    @property
    def platform(self) -> Platform:
        return Platform.INSTAGRAM

    @property
    def account_id(self) -> str:
        return self.name


class YouTubeAccount(BaseModel):
    """YouTube-like publishing target with OAuth2 credentials.

    Field aliases match the persisted credential format
    (``{"name", "accessToken", "refreshToken"}``).
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    access_token: str = Field(default="", alias="accessToken")
    refresh_token: str = Field(default="", alias="refreshToken")

    @property
    def platform(self) -> Platform:
        return Platform.YOUTUBE

    @property
    def account_id(self) -> str:
        return self.name


class DerivedContext(BaseModel):
    """Context extracted once from the source post, immutable afterwards."""

    model_config = ConfigDict(frozen=True)

    original_caption: str = ""
    original_hashtags: tuple[str, ...] = ()
    author_handle: str = "Original Creator"


class GeneratedCaptions(BaseModel):
    """Captions produced once per session by the AI capability."""

    instagram_caption: str | None = None
    youtube_title: str | None = None
    youtube_description: str | None = None


class YouTubeMetadata(BaseModel):
    """Title, description and tags sent with a video upload."""

    title: str
    description: str
    tags: list[str] = Field(default_factory=list)


class StageArtifact(BaseModel):
    """Local file produced by one pipeline stage."""

    stage: str
    path: Path


class PublishResult(BaseModel):
    """Outcome of one account's publish attempt sequence."""

    account_id: str
    platform: Platform
    succeeded: bool
    result_url: str | None = None
    error: str | None = None


class InboundRequest(BaseModel):
    """Request parsed from an inbound chat message."""

    source_url: str
    mode: SessionMode = SessionMode.STANDARD
    author: str | None = None
    manual_caption: str | None = None


class MessageEvent(BaseModel):
    """Inbound chat message delivered to the host API."""

    channel_id: str
    content: str
    author_is_bot: bool = False


class MessageResponse(BaseModel):
    """Host API reply to an inbound message."""

    accepted: bool
    session_id: str | None = None
    reason: str | None = None


class Session(BaseModel):
    """One execution of the pipeline for one inbound request.

    Mutated only by the orchestrator task that owns it.
    """

    id: str
    source_reference: str
    mode: SessionMode = SessionMode.STANDARD
    manual_override_caption: str | None = None
    author_hint: str | None = None
    stage_artifacts: list[StageArtifact] = Field(default_factory=list)
    derived_context: DerivedContext = Field(default_factory=DerivedContext)
    captions: GeneratedCaptions = Field(default_factory=GeneratedCaptions)
    remote_url: str | None = None
    publish_results: list[PublishResult] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_repost(self) -> bool:
        return self.mode == SessionMode.REPOST

    @property
    def current_artifact(self) -> Path | None:
        """Last successful artifact; authoritative for the next stage."""
        if not self.stage_artifacts:
            return None
        return self.stage_artifacts[-1].path

    def add_artifact(self, stage: str, path: Path) -> None:
        """Record a stage output unless the stage fell back to its input."""
        if path == self.current_artifact:
            return
        self.stage_artifacts.append(StageArtifact(stage=stage, path=path))

    def results_for(self, platform: Platform) -> list[PublishResult]:
        return [r for r in self.publish_results if r.platform == platform]


class PlatformSummary(BaseModel):
    """Success ratio for one platform."""

    platform: Platform
    attempted: int = 0
    succeeded: int = 0

    @computed_field
    @property
    def bucket(self) -> OutcomeBucket:
        """Full success, partial success or total failure.

        A platform with no configured accounts counts as a success.
        """
        if self.attempted == 0 or self.succeeded == self.attempted:
            return OutcomeBucket.SUCCESS
        if self.succeeded == 0:
            return OutcomeBucket.FAILURE
        return OutcomeBucket.PARTIAL

    @computed_field
    @property
    def ratio(self) -> str:
        return f"{self.succeeded}/{self.attempted}"


class SessionOutcome(BaseModel):
    """Aggregated session result reported in the final status."""

    session_id: str
    instagram: PlatformSummary
    youtube: PlatformSummary
    author: str
    elapsed_seconds: float
    results: list[PublishResult] = Field(default_factory=list)

    @computed_field
    @property
    def bucket(self) -> OutcomeBucket:
        """Combine per-platform buckets over the platforms that had accounts."""
        active = [s.bucket for s in (self.instagram, self.youtube) if s.attempted > 0]
        if not active or all(b == OutcomeBucket.SUCCESS for b in active):
            return OutcomeBucket.SUCCESS
        if all(b == OutcomeBucket.FAILURE for b in active):
            return OutcomeBucket.FAILURE
        return OutcomeBucket.PARTIAL
