"""
Source video client.

Resolves a post URL to a direct media URL through the resolver service,
streams the media to disk under size and time limits, and validates that
the result is a playable video. Any failure here is fatal to the session.
"""

import asyncio
import logging
from pathlib import Path

import httpx

from reel_relay.config import Settings
from reel_relay.services.clients.base import (
    ClientConfig,
    ClientError,
    DownloadError,
    raise_for_response,
    translate_transport_error,
)
from reel_relay.utils.media_utils import probe_media
from reel_relay.utils.process_utils import remove_partial
from reel_relay.utils.timeouts import with_timeout

logger = logging.getLogger(__name__)

SERVICE = "source"

MIN_VIDEO_BYTES = 1024
RESOLVE_TIMEOUT = 30.0
REQUEST_TIMEOUT = 60.0
DOWNLOAD_TOTAL_TIMEOUT = 120.0
CHUNK_SIZE = 64 * 1024


class SourceClient:
    """
    Fetches and validates the source video for a session.

    Example:
        async with SourceClient.from_settings(settings) as client:
            await client.fetch(post_url, store.path_for(session_id, "reel"))
    """

    def __init__(
        self,
        config: ClientConfig,
        max_bytes: int = 100 * 1024 * 1024,
        ffprobe_binary: str = "ffprobe",
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.max_bytes = max_bytes
        self.ffprobe_binary = ffprobe_binary
        # No global timeout - each request sets its own timeout explicitly
        self.http_client = http_client or httpx.AsyncClient(timeout=None, follow_redirects=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SourceClient":
        return cls(
            config=ClientConfig(base_url=settings.source_resolver_url, timeout=RESOLVE_TIMEOUT),
            max_bytes=int(settings.source_max_mb * 1024 * 1024),
            ffprobe_binary=settings.ffprobe_binary,
        )

    async def close(self) -> None:
        await self.http_client.aclose()

    async def __aenter__(self) -> "SourceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def resolve(self, post_url: str) -> str:
        """
        Ask the resolver service for the direct media URL.

        Raises:
            DownloadError: On transport errors or a malformed response
        """
        try:
            response = await self.http_client.get(
                self.config.base_url,
                params={"postUrl": post_url},
                timeout=self.config.timeout,
            )
            raise_for_response(response, SERVICE, "Video URL resolution")
            data = response.json()
        except httpx.HTTPError as e:
            translated = translate_transport_error(e, SERVICE, "Video URL resolution")
            raise DownloadError(str(translated), service=SERVICE, original_error=e) from e
        except ClientError as e:
            raise DownloadError(e.message, service=SERVICE, original_error=e) from e
        except ValueError as e:
            raise DownloadError("Resolver returned invalid JSON", service=SERVICE, original_error=e) from e

        video_url = (data.get("data") or {}).get("videoUrl") if isinstance(data, dict) else None
        if not video_url or not isinstance(video_url, str):
            raise DownloadError("Invalid or missing video URL in API response", service=SERVICE)
        return video_url

    async def _stream_to_file(self, media_url: str, destination: Path) -> int:
        written = 0
        async with self.http_client.stream("GET", media_url, timeout=REQUEST_TIMEOUT) as response:
            if response.status_code != 200:
                raise DownloadError(
                    f"Media download returned HTTP {response.status_code}", service=SERVICE
                )
            content_type = response.headers.get("content-type", "")
            if "video/" not in content_type:
                raise DownloadError(
                    f"Invalid content type received for video: {content_type or 'none'}",
                    service=SERVICE,
                )
            declared = int(response.headers.get("content-length") or 0)
            if declared > self.max_bytes:
                raise DownloadError(
                    f"Video exceeds {self.max_bytes // (1024 * 1024)}MB download limit",
                    service=SERVICE,
                )

            with open(destination, "wb") as f:
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise DownloadError(
                            f"Video exceeds {self.max_bytes // (1024 * 1024)}MB download limit",
                            service=SERVICE,
                        )
                    f.write(chunk)
        return written

    async def download(self, media_url: str, destination: Path) -> Path:
        """
        Stream media to disk with a total time budget.

        Raises:
            DownloadError: On HTTP errors, wrong content type, size overflow or timeout
        """
        result = await with_timeout(
            self._stream_to_file(media_url, destination),
            DOWNLOAD_TOTAL_TIMEOUT,
            on_timeout=lambda: remove_partial(destination),
            on_failure=lambda: remove_partial(destination),
        )
        if result.timed_out:
            raise DownloadError(
                f"Download timed out after {DOWNLOAD_TOTAL_TIMEOUT:.0f}s", service=SERVICE
            )
        if not result.ok:
            error = result.error
            if isinstance(error, DownloadError):
                raise error
            if isinstance(error, httpx.HTTPError):
                translated = translate_transport_error(error, SERVICE, "Media download")
                raise DownloadError(str(translated), service=SERVICE, original_error=error) from error
            raise DownloadError(f"Media download failed: {error}", service=SERVICE, original_error=error) from error

        logger.info(f"Downloaded {result.value / 1024 / 1024:.2f}MB to {destination.name}")
        return destination

    async def validate(self, path: Path) -> None:
        """
        Reject files that are too small or carry no video stream.

        Raises:
            DownloadError: If the file is not a playable video
        """
        try:
            size = path.stat().st_size
        except FileNotFoundError as e:
            raise DownloadError("Downloaded file is missing", service=SERVICE, original_error=e) from e

        if size < MIN_VIDEO_BYTES:
            remove_partial(path)
            raise DownloadError("Downloaded file is too small to be a valid video", service=SERVICE)

        probe = await probe_media(path, self.ffprobe_binary)
        if probe is None:
            remove_partial(path)
            raise DownloadError("Downloaded file is not a valid video", service=SERVICE)
        if not probe.has_video:
            remove_partial(path)
            raise DownloadError("Downloaded file has no video stream", service=SERVICE)

    async def fetch(self, post_url: str, destination: Path) -> Path:
        """Resolve, download and validate in one call."""
        media_url = await self.resolve(post_url)
        await self.download(media_url, destination)
        await self.validate(destination)
        return destination


async def download_with_retries(
    client: httpx.AsyncClient,
    url: str,
    destination: Path,
    attempts: int = 3,
    spacing: float = 5.0,
    timeout: float = REQUEST_TIMEOUT,
    sleep=asyncio.sleep,
) -> Path:
    """
    Download a staged file locally with a small fixed-spacing retry.

    Used by publishers before direct upload. Cheaper than escalating to the
    per-account retry policy for transient network drops.

    Raises:
        DownloadError: After the last attempt fails
    """
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            async with client.stream("GET", url, timeout=timeout) as response:
                if not response.is_success:
                    await response.aread()
                raise_for_response(response, SERVICE, "Staged media download")
                with open(destination, "wb") as f:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        f.write(chunk)
            if destination.stat().st_size < MIN_VIDEO_BYTES:
                raise DownloadError("Staged media is too small to be a valid video", service=SERVICE)
            return destination
        except (httpx.HTTPError, ClientError, OSError) as e:
            last_error = e
            remove_partial(destination)
            logger.warning(f"Download attempt {attempt}/{attempts} failed: {e}")
            if attempt < attempts:
                await sleep(spacing)

    raise DownloadError(
        f"Failed to download staged media after {attempts} attempts: {last_error}",
        service=SERVICE,
        original_error=last_error,
    )
