"""
Remote storage client.

Stages the final artifact at a public URL by committing it to a GitHub
repository through the contents API. The publishing platforms pull the
media from the returned raw URL.
"""

import asyncio
import base64
import logging
import time
from pathlib import Path

import httpx

from reel_relay.config import Settings
from reel_relay.services.clients.base import (
    ClientConfig,
    ClientResponseError,
    ClientTimeoutError,
    StorageLimitError,
    raise_for_response,
    translate_transport_error,
)
from reel_relay.utils.media_utils import file_size_mb

logger = logging.getLogger(__name__)

SERVICE = "github"
UPLOAD_TIMEOUT = 120.0
RAW_BASE_URL = "https://raw.githubusercontent.com"


class StorageClient:
    """
    Uploads artifacts to a repository and returns their raw URL.

    Example:
        async with StorageClient.from_settings(settings) as storage:
            url = await storage.upload(final_path)
    """

    def __init__(
        self,
        config: ClientConfig,
        owner: str,
        repo: str,
        branch: str = "main",
        max_mb: float = 70.0,
        folder: str = "videos",
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.max_mb = max_mb
        self.folder = folder
        self.http_client = http_client or httpx.AsyncClient(timeout=None)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageClient":
        if not settings.storage_configured:
            logger.warning("GitHub configuration incomplete - uploads will fail")
        return cls(
            config=ClientConfig(
                base_url=settings.github_api_url,
                timeout=UPLOAD_TIMEOUT,
                api_key=settings.github_token,
            ),
            owner=settings.github_owner or "",
            repo=settings.github_repo or "",
            branch=settings.github_branch,
            max_mb=settings.storage_max_mb,
        )

    async def close(self) -> None:
        await self.http_client.aclose()

    async def __aenter__(self) -> "StorageClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def raw_url(self, remote_path: str) -> str:
        return f"{RAW_BASE_URL}/{self.owner}/{self.repo}/{self.branch}/{remote_path}"

    def check_size(self, path: Path) -> float:
        """
        Enforce the size cap before reading the file.

        Base64 adds roughly a third, so the cap sits well under the
        API's 100MB request limit.

        Raises:
            StorageLimitError: If the file is over the cap
        """
        size_mb = file_size_mb(path)
        if size_mb > self.max_mb:
            raise StorageLimitError(size_mb, self.max_mb, service=SERVICE)
        return size_mb

    async def upload(self, path: Path, file_name: str | None = None) -> str:
        """
        Commit a file to the repository.

        Args:
            path: Local artifact
            file_name: Remote file name (defaults to video-<ms>.mp4)

        Returns:
            Public raw URL of the uploaded file

        Raises:
            StorageLimitError: If the file exceeds the size cap
            ClientError: On upload failure, with a hint for common causes
        """
        size_mb = self.check_size(path)
        file_name = file_name or f"video-{int(time.time() * 1000)}.mp4"
        remote_path = f"{self.folder}/{file_name}"

        logger.info(f"Uploading {size_mb:.2f}MB to {self.owner}/{self.repo}: {remote_path}")
        content = await asyncio.to_thread(encode_file, path)

        try:
            response = await self.http_client.put(
                f"{self.config.base_url}/repos/{self.owner}/{self.repo}/contents/{remote_path}",
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Accept": "application/vnd.github+json",
                },
                json={
                    "message": f"Upload video: {file_name}",
                    "content": content,
                    "branch": self.branch,
                },
                timeout=self.config.timeout,
            )
            raise_for_response(response, SERVICE, "GitHub upload")
        except httpx.HTTPError as e:
            error = translate_transport_error(e, SERVICE, "GitHub upload")
            if isinstance(error, ClientTimeoutError):
                error.message = "Upload timed out. File may be too large for GitHub API."
            raise error from e
        except ClientResponseError as e:
            hint = upload_hint(e.status_code)
            if hint:
                e.message = hint
            raise

        url = self.raw_url(remote_path)
        logger.info(f"Video uploaded successfully ({size_mb:.2f}MB): {url}")
        return url


def encode_file(path: Path) -> str:
    """Base64 body for the contents API. Blocking, run off the event loop."""
    return base64.b64encode(path.read_bytes()).decode("ascii")


def upload_hint(status_code: int | None) -> str | None:
    """Human-readable explanation for the upload failures seen in practice."""
    if status_code == 500:
        return (
            "GitHub server error (500). File may be too large or GitHub is "
            "experiencing issues. Try again later."
        )
    if status_code == 422:
        return "GitHub rejected the upload (422). File may exceed size limits or be invalid."
    return None
