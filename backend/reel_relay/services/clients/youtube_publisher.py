"""
YouTube Data API publisher.

Uploads the final artifact as a public Short with OAuth2 user
credentials. When google-auth refreshes an account's tokens (up front or
transparently on a 401 mid-upload) the new tokens are handed to a
post-refresh hook so they can be persisted; hook failures never fail the
upload.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from reel_relay.config import Settings
from reel_relay.models.schemas import YouTubeAccount, YouTubeMetadata
from reel_relay.services.captions import enforce_youtube_limits
from reel_relay.services.clients.base import ClientError, ClientResponseError

logger = logging.getLogger(__name__)

SERVICE = "youtube"

CATEGORY_ENTERTAINMENT = "24"
MAX_UPLOAD_GB = 128
SCOPES = ["https://www.googleapis.com/auth/youtube.upload"]

CredentialsRefreshed = Callable[[YouTubeAccount], Awaitable[None]]
Notify = Callable[[str, str], Awaitable[None]]


async def _log_notice(message: str, level: str) -> None:
    logger.info(message)


def http_error_detail(error: HttpError) -> str:
    """Readable message from a Google API error body."""
    try:
        payload = json.loads(error.content.decode("utf-8"))
        message = payload.get("error", {}).get("message")
        if message:
            return str(message)
    except (ValueError, AttributeError):
        pass
    return str(error)


def describe_http_error(status: int, detail: str) -> str:
    """Operator-facing explanation for common upload failures."""
    if status == 401 or "invalid authentication" in detail.lower():
        return (
            "Authentication failed. Access token expired or invalid. "
            "Regenerate the account's tokens."
        )
    if status == 403:
        return "Permission denied. Check YouTube API quota or channel permissions."
    if status == 400:
        return "Bad request. Video file may be invalid or too large."
    return detail


class YouTubePublisher:
    """
    Uploads videos to YouTube accounts.

    Example:
        publisher = YouTubePublisher.from_settings(settings, on_credentials_refreshed=persist)
        url = await publisher.upload(account, final_path, metadata)
    """

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        token_uri: str = "https://oauth2.googleapis.com/token",
        on_credentials_refreshed: CredentialsRefreshed | None = None,
        build_service=build,
        request_factory=Request,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri
        self.on_credentials_refreshed = on_credentials_refreshed
        self.build_service = build_service
        self.request_factory = request_factory

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        on_credentials_refreshed: CredentialsRefreshed | None = None,
    ) -> "YouTubePublisher":
        return cls(
            client_id=settings.youtube_client_id,
            client_secret=settings.youtube_client_secret,
            token_uri=settings.youtube_token_uri,
            on_credentials_refreshed=on_credentials_refreshed,
        )

    def credentials_for(self, account: YouTubeAccount) -> Credentials:
        """
        Build OAuth2 credentials for an account.

        Raises:
            ClientError: If client secrets or account tokens are missing
        """
        if not self.client_id or not self.client_secret:
            raise ClientError("YouTube OAuth credentials not configured", service=SERVICE)
        if not account.access_token or not account.refresh_token:
            raise ClientError(
                f"YouTube account {account.name} missing access or refresh token "
                f"(credentials not configured)",
                service=SERVICE,
            )
        return Credentials(
            token=account.access_token,
            refresh_token=account.refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=SCOPES,
        )

    async def _refresh_if_needed(self, account: YouTubeAccount, credentials: Credentials) -> None:
        if credentials.valid:
            return
        try:
            await asyncio.to_thread(credentials.refresh, self.request_factory())
        except RefreshError as e:
            raise ClientResponseError(
                f"YouTube authentication failed for {account.name}. Please regenerate tokens",
                status_code=401,
                platform_message=str(e),
                service=SERVICE,
                original_error=e,
            ) from e
        logger.info(f"Access token refreshed for {account.name}")

    async def _report_refresh(self, account: YouTubeAccount, credentials: Credentials) -> None:
        """Hand refreshed tokens to the post-refresh hook. Never raises."""
        token = credentials.token or account.access_token
        refresh_token = credentials.refresh_token or account.refresh_token
        if token == account.access_token and refresh_token == account.refresh_token:
            return

        updated = account.model_copy(update={"access_token": token, "refresh_token": refresh_token})
        if self.on_credentials_refreshed is None:
            logger.info(f"Tokens refreshed for {account.name} (not persisted)")
            return
        try:
            await self.on_credentials_refreshed(updated)
        except Exception as e:
            logger.warning(f"Failed to persist refreshed tokens for {account.name}: {e}")

    def _insert(self, credentials: Credentials, path: Path, metadata: YouTubeMetadata) -> dict:
        youtube = self.build_service("youtube", "v3", credentials=credentials, cache_discovery=False)
        request = youtube.videos().insert(
            part="snippet,status",
            body={
                "snippet": {
                    "title": metadata.title,
                    "description": metadata.description,
                    "tags": metadata.tags,
                    "categoryId": CATEGORY_ENTERTAINMENT,
                },
                "status": {
                    "privacyStatus": "public",
                    "selfDeclaredMadeForKids": False,
                },
            },
            media_body=MediaFileUpload(str(path), chunksize=-1, resumable=True),
        )
        return request.execute()

    async def upload(
        self,
        account: YouTubeAccount,
        path: Path,
        metadata: YouTubeMetadata,
        notify: Notify | None = None,
    ) -> str:
        """
        Upload one video to one account.

        Args:
            account: Target account
            path: Local video file
            metadata: Title, description and tags (limits enforced here)
            notify: Session notice callback (message, level)

        Returns:
            Watch URL of the uploaded video

        Raises:
            ClientResponseError: On API errors (status code preserved)
            ClientError: On configuration or size problems
        """
        notify = notify or _log_notice
        await notify(f"Starting YouTube upload for {account.name}...", "info")

        size = path.stat().st_size
        size_gb = size / (1024 ** 3)
        if size_gb > MAX_UPLOAD_GB:
            raise ClientError(
                f"Video file too large ({size_gb:.2f}GB). YouTube limit is {MAX_UPLOAD_GB}GB",
                service=SERVICE,
            )

        metadata = enforce_youtube_limits(metadata)
        credentials = self.credentials_for(account)

        try:
            await self._refresh_if_needed(account, credentials)
            await notify(f"Uploading {size / (1024 * 1024):.2f}MB to YouTube ({account.name})...", "info")
            response = await asyncio.to_thread(self._insert, credentials, path, metadata)
        except HttpError as e:
            status = int(getattr(e.resp, "status", 0) or 0)
            detail = http_error_detail(e)
            raise ClientResponseError(
                f"YouTube upload failed for {account.name}: {describe_http_error(status, detail)}",
                status_code=status or None,
                platform_message=detail,
                service=SERVICE,
                original_error=e,
            ) from e
        except RefreshError as e:
            raise ClientResponseError(
                f"Failed to refresh access token for {account.name}. Refresh token may be invalid.",
                status_code=401,
                platform_message=str(e),
                service=SERVICE,
                original_error=e,
            ) from e
        finally:
            await self._report_refresh(account, credentials)

        video_id = response.get("id")
        if not video_id:
            raise ClientError("YouTube upload returned no video id", service=SERVICE)

        url = f"https://www.youtube.com/watch?v={video_id}"
        await notify(f"Successfully uploaded to YouTube ({account.name}): {url}", "success")
        return url
