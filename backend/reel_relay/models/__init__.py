"""
Pydantic models and transform value types for the republishing pipeline.

Exports:
    - Session models (Session, DerivedContext, PublishResult, SessionOutcome, ...)
    - Transform specs (RetimeSpec, BrandingSpec)
"""

from reel_relay.models.schemas import (
    DerivedContext,
    GeneratedCaptions,
    InboundRequest,
    InstagramAccount,
    MessageEvent,
    MessageResponse,
    OutcomeBucket,
    Platform,
    PlatformSummary,
    PublishResult,
    PublishState,
    Session,
    SessionMode,
    SessionOutcome,
    SessionPhase,
    YouTubeAccount,
    YouTubeMetadata,
)
from reel_relay.models.transforms import BrandingSpec, RetimeSpec, TransformSpec

__all__ = [
    # Session
    "Session",
    "SessionMode",
    "SessionPhase",
    "SessionOutcome",
    "DerivedContext",
    "GeneratedCaptions",
    "InboundRequest",
    "MessageEvent",
    "MessageResponse",
    "OutcomeBucket",
    "Platform",
    "PlatformSummary",
    "PublishResult",
    "PublishState",
    # Accounts
    "InstagramAccount",
    "YouTubeAccount",
    "YouTubeMetadata",
    # Transforms
    "TransformSpec",
    "RetimeSpec",
    "BrandingSpec",
]
