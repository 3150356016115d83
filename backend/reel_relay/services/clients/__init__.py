"""
Remote capability clients.

Provides adapters for every external service a session touches:
- SourceClient: post URL -> validated local video
- CaptionExtractor: best-effort original caption and hashtags
- StorageClient: local file -> public raw URL
- CaptionGenerator: Gemini captions and YouTube metadata
- InstagramPublisher / YouTubePublisher: per-account publishing
- CredentialStore: locked, atomic persistence of account tokens

Example:
    from reel_relay.services.clients import SourceClient, StorageClient

    async with SourceClient.from_settings(settings) as source:
        await source.fetch(post_url, path)
"""

from .base import (
    ClientConfig,
    ClientConnectionError,
    ClientError,
    ClientResponseError,
    ClientTimeoutError,
    DownloadError,
    StorageLimitError,
)
from .caption_extractor import CaptionExtractor, ExtractedCaption
from .caption_generator import CaptionGenerator
from .credential_store import CredentialStore, CredentialStoreError
from .instagram_publisher import InstagramPublisher, upload_tag
from .source_client import SourceClient, download_with_retries
from .storage_client import StorageClient
from .youtube_publisher import YouTubePublisher

__all__ = [
    # Errors
    "ClientConfig",
    "ClientError",
    "ClientTimeoutError",
    "ClientConnectionError",
    "ClientResponseError",
    "DownloadError",
    "StorageLimitError",
    "CredentialStoreError",
    # Clients
    "SourceClient",
    "download_with_retries",
    "CaptionExtractor",
    "ExtractedCaption",
    "StorageClient",
    "CaptionGenerator",
    "InstagramPublisher",
    "upload_tag",
    "YouTubePublisher",
    "CredentialStore",
]
