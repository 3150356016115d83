"""
Instagram Graph API publisher.

One publish attempt for one account walks a fixed state machine:

    PREPARING -> DOWNLOADING -> CONTAINER_CREATED -> POLLING -> READY
        -> PUBLISHED -> COMMENT_POSTED (optional) -> DONE

Any state can end in FAILED by raising. The outer per-account retry is
the caller's job (see services.retry); this module only owns the inner,
cheaper retries (staged download, container create/publish, status
polling).
"""

import asyncio
import logging
import random
import re
import secrets
import time
from pathlib import Path
from typing import Awaitable, Callable

import httpx

from reel_relay.config import Settings
from reel_relay.models.schemas import InstagramAccount, PublishState
from reel_relay.services.captions import CaptionTemplates, comment_text
from reel_relay.services.clients.base import (
    ClientError,
    ClientResponseError,
    raise_for_response,
    translate_transport_error,
)
from reel_relay.services.clients.source_client import download_with_retries
from reel_relay.utils.process_utils import remove_partial

logger = logging.getLogger(__name__)

SERVICE = "instagram"

APP_ID = "936619743392459"
API_VERSIONS = ("v22.0", "v21.0", "v20.0")
COMMENT_API_VERSION = "v22.0"
USER_AGENTS = (
    "Instagram 219.0.0.12.117 Android (30/11; 420dpi; 1080x2158; samsung; SM-G998B; p3s; exynos2100; en_US)",
    "Instagram 187.0.0.32.120 Android (28/9; 480dpi; 1080x2076; samsung; SM-G973F; beyond1; exynos9820; en_GB)",
    "Instagram 165.1.0.29.119 Android (29/10; 480dpi; 1080x2340; OnePlus; GM1913; OnePlus7Pro; qcom; en_US)",
    "Instagram 195.0.0.31.123 Android (26/8.0.0; 480dpi; 1080x1920; Xiaomi; MI 6; sagit; qcom; en_US)",
)

REQUEST_TIMEOUT = 30.0
STATUS_TIMEOUT = 15.0

STEP_ATTEMPTS = 3
STEP_RATE_LIMIT_WAIT = 60.0
STEP_ERROR_WAIT = 10.0

POLL_ATTEMPTS = 30
POLL_CEILING = 300.0
POLL_DELAY_RANGE = (5.0, 13.0)
POLL_RATE_LIMIT_WAIT = 45.0
POLL_SERVER_ERROR_WAIT = 15.0
POLL_LOG_EVERY = 5

COMMENT_DELAY_RANGE = (5.0, 13.0)
MEDIA_FALLBACK_URL = "instagram://media?id="

Notify = Callable[[str, str], Awaitable[None]]


async def _log_notice(message: str, level: str) -> None:
    logger.info(message)


class InstagramPublisher:
    """
    Publishes a staged video as a Reel and returns its permalink.

    Client identity (user agent, API version) is re-randomized for every
    attempt so consecutive accounts don't share a fingerprint.

    Example:
        async with InstagramPublisher.from_settings(settings, templates) as publisher:
            url = await publisher.publish(account, media_url, caption, local_path)
    """

    def __init__(
        self,
        templates: CaptionTemplates,
        graph_url: str = "https://graph.instagram.com",
        http_client: httpx.AsyncClient | None = None,
        notify: Notify | None = None,
        sleep=asyncio.sleep,
        rng: random.Random | None = None,
        clock=time.monotonic,
    ):
        self.templates = templates
        self.graph_url = graph_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(timeout=None, follow_redirects=True)
        self.notify = notify or _log_notice
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, templates: CaptionTemplates | None = None
    ) -> "InstagramPublisher":
        return cls(
            templates=templates or CaptionTemplates.from_settings(settings),
            graph_url=settings.instagram_graph_url,
        )

    async def close(self) -> None:
        await self.http_client.aclose()

    async def __aenter__(self) -> "InstagramPublisher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _enter(self, state: PublishState, account: InstagramAccount) -> None:
        logger.debug(f"[{account.name}] {state.value}")

    async def _pause(self, low: float, high: float) -> None:
        await self.sleep(self.rng.uniform(low, high))

    def _headers(self, user_agent: str, ajax: bool = False) -> dict[str, str]:
        headers = {"User-Agent": user_agent, "Accept": "application/json"}
        if ajax:
            headers["X-Instagram-AJAX"] = "1"
            headers["X-IG-App-ID"] = APP_ID
        return headers

    async def _request(self, method: str, url: str, action: str, **kwargs) -> dict:
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise translate_transport_error(e, SERVICE, action) from e
        raise_for_response(response, SERVICE, action)
        return response.json()

    # ═══════════════════════════════════════════════════════════════════
    # Publish flow
    # ═══════════════════════════════════════════════════════════════════

    async def publish(
        self,
        account: InstagramAccount,
        media_url: str,
        caption: str,
        local_path: Path,
        notify: Notify | None = None,
    ) -> str:
        """
        Run one full publish attempt for one account.

        Args:
            account: Target account
            media_url: Public URL of the staged video
            caption: Final caption, already within the platform limit
            local_path: Temp file for the direct-upload copy (always deleted)
            notify: Session notice callback (message, level)

        Returns:
            Permalink of the published Reel, or an app link to the media id
            when the permalink lookup fails after publishing

        Raises:
            ClientError: On any failure before the media is published
        """
        notify = notify or self.notify
        self._enter(PublishState.PREPARING, account)
        user_agent = self.rng.choice(USER_AGENTS)
        api_version = self.rng.choice(API_VERSIONS)
        base = f"{self.graph_url}/{api_version}"
        await notify(f"Preparing to upload to Instagram ({account.name})...", "info")
        await self._pause(3.0, 8.0)

        try:
            self._enter(PublishState.DOWNLOADING, account)
            await download_with_retries(self.http_client, media_url, local_path, sleep=self.sleep)
            await notify(f"Video downloaded for direct upload to {account.name}", "info")
            await self._pause(2.0, 5.0)

            container_id = await self.create_container(account, base, user_agent, media_url, caption)
            self._enter(PublishState.CONTAINER_CREATED, account)
            await self._pause(3.0, 8.0)

            self._enter(PublishState.POLLING, account)
            await self.wait_until_ready(account, base, user_agent, container_id, notify)
            self._enter(PublishState.READY, account)
            await self._pause(5.0, 10.0)

            media_id = await self.publish_container(account, base, user_agent, container_id)
            self._enter(PublishState.PUBLISHED, account)

            if await self.post_comment(account, media_id, notify):
                self._enter(PublishState.COMMENT_POSTED, account)
            await self._pause(2.0, 5.0)

            permalink = await self.permalink_or_fallback(account, base, user_agent, media_id, notify)
            self._enter(PublishState.DONE, account)
            return permalink
        except Exception:
            self._enter(PublishState.FAILED, account)
            raise
        finally:
            remove_partial(local_path)

    async def _with_step_retry(self, action: str, call: Callable[[], Awaitable[dict]]) -> dict:
        """Retry a create/publish call: 429 waits a minute, other errors 10s."""
        for attempt in range(1, STEP_ATTEMPTS + 1):
            try:
                return await call()
            except ClientError as e:
                if attempt == STEP_ATTEMPTS:
                    raise
                status = getattr(e, "status_code", None)
                wait = STEP_RATE_LIMIT_WAIT if status == 429 else STEP_ERROR_WAIT
                logger.warning(f"{action} attempt {attempt}/{STEP_ATTEMPTS} failed, waiting {wait:.0f}s: {e}")
                await self.sleep(wait)
        raise ClientError(f"{action} failed", service=SERVICE)

    async def create_container(
        self,
        account: InstagramAccount,
        base: str,
        user_agent: str,
        media_url: str,
        caption: str,
    ) -> str:
        data = await self._with_step_retry(
            "Container creation",
            lambda: self._request(
                "POST",
                f"{base}/{account.id}/media",
                "Container creation",
                data={
                    "media_type": "REELS",
                    "video_url": media_url,
                    "caption": caption,
                    "access_token": account.token,
                    "share_to_feed": "true",
                },
                headers=self._headers(user_agent, ajax=True),
                timeout=REQUEST_TIMEOUT,
            ),
        )
        container_id = data.get("id")
        if not container_id:
            raise ClientError("No container id returned from media endpoint", service=SERVICE)
        logger.info(f"[{account.name}] Container created: {container_id}")
        return str(container_id)

    async def wait_until_ready(
        self,
        account: InstagramAccount,
        base: str,
        user_agent: str,
        container_id: str,
        notify: Notify | None = None,
    ) -> None:
        """
        Poll the container until FINISHED.

        Raises:
            ClientError: On ERROR status, counter exhaustion, or the
                wall-clock ceiling
        """
        notify = notify or self.notify
        remaining = POLL_ATTEMPTS
        started = self.clock()

        while remaining > 0:
            if self.clock() - started > POLL_CEILING:
                raise ClientError("Instagram processing timeout after 5 minutes", service=SERVICE)

            await self._pause(*POLL_DELAY_RANGE)
            try:
                data = await self._request(
                    "GET",
                    f"{base}/{container_id}",
                    "Status check",
                    params={"fields": "status_code", "access_token": account.token},
                    headers=self._headers(user_agent),
                    timeout=STATUS_TIMEOUT,
                )
            except ClientResponseError as e:
                if e.status_code == 429:
                    await notify(f"Rate limited for {account.name}, waiting 45 seconds...", "warning")
                    await self.sleep(POLL_RATE_LIMIT_WAIT)
                    remaining -= 1
                    continue
                if e.status_code is not None and e.status_code >= 500:
                    await notify(
                        f"Instagram server error for {account.name}, waiting before retry...", "warning"
                    )
                    await self.sleep(POLL_SERVER_ERROR_WAIT)
                    remaining -= 1
                    continue
                raise

            status = data.get("status_code")
            if status == "FINISHED":
                return
            if status == "ERROR":
                raise ClientError("Instagram processing failed with error status", service=SERVICE)

            remaining -= 1
            if status == "IN_PROGRESS":
                if remaining % POLL_LOG_EVERY == 0:
                    await notify(
                        f"Still processing for {account.name}, {remaining} attempts remaining...", "info"
                    )
            else:
                await notify(f"Processing status: {status} for {account.name}, waiting...", "info")

        raise ClientError(
            f"Media processing timeout after {POLL_ATTEMPTS} attempts. "
            f"Instagram may be experiencing high load.",
            service=SERVICE,
        )

    async def publish_container(
        self,
        account: InstagramAccount,
        base: str,
        user_agent: str,
        container_id: str,
    ) -> str:
        data = await self._with_step_retry(
            "Media publish",
            lambda: self._request(
                "POST",
                f"{base}/{account.id}/media_publish",
                "Media publish",
                data={
                    "creation_id": container_id,
                    "access_token": account.token,
                    "device_id": secrets.token_hex(8),
                },
                headers=self._headers(user_agent, ajax=True),
                timeout=REQUEST_TIMEOUT,
            ),
        )
        media_id = data.get("id")
        if not media_id:
            raise ClientError("No media id returned from publish endpoint", service=SERVICE)
        logger.info(f"[{account.name}] Published media {media_id}")
        return str(media_id)

    async def post_comment(
        self, account: InstagramAccount, media_id: str, notify: Notify | None = None
    ) -> bool:
        """
        Post the promotional first comment. Best-effort: never raises.

        Returns:
            True if the comment was posted
        """
        notify = notify or self.notify
        try:
            await self._pause(*COMMENT_DELAY_RANGE)
            await self._request(
                "POST",
                f"{self.graph_url}/{COMMENT_API_VERSION}/{media_id}/comments",
                "Comment post",
                data={
                    "message": comment_text(self.templates, self.rng),
                    "access_token": account.token,
                },
                headers={"User-Agent": USER_AGENTS[0]},
                timeout=REQUEST_TIMEOUT,
            )
        except Exception as e:
            detail = getattr(e, "platform_message", None) or str(e)
            await notify(f"Failed to post first comment for {account.name}: {detail}", "warning")
            return False

        await notify(f"Posted first comment on {account.name}'s reel.", "success")
        return True

    async def permalink_or_fallback(
        self,
        account: InstagramAccount,
        base: str,
        user_agent: str,
        media_id: str,
        notify: Notify | None = None,
    ) -> str:
        """Permalink lookup after publishing. Never raises: the Reel is already live."""
        notify = notify or self.notify
        try:
            return await self.fetch_permalink(account, base, user_agent, media_id)
        except Exception as e:
            logger.warning(f"[{account.name}] Permalink lookup failed for published media {media_id}: {e}")
            await notify(
                f"Reel published for {account.name} but its link could not be fetched: {getattr(e, 'message', e)}",
                "warning",
            )
            return f"{MEDIA_FALLBACK_URL}{media_id}"

    async def fetch_permalink(
        self,
        account: InstagramAccount,
        base: str,
        user_agent: str,
        media_id: str,
    ) -> str:
        data = await self._request(
            "GET",
            f"{base}/{media_id}",
            "Permalink lookup",
            params={"fields": "permalink", "access_token": account.token},
            headers=self._headers(user_agent),
            timeout=STATUS_TIMEOUT,
        )
        permalink = data.get("permalink")
        if not permalink:
            raise ClientError("Published media has no permalink", service=SERVICE)
        return str(permalink)

    # ═══════════════════════════════════════════════════════════════════
    # Token maintenance
    # ═══════════════════════════════════════════════════════════════════

    async def refresh_token(self, account: InstagramAccount) -> tuple[str, int]:
        """
        Exchange a long-lived token for a fresh one.

        Returns:
            (new_token, expires_in_seconds)

        Raises:
            ClientError: If the refresh is rejected
        """
        data = await self._request(
            "GET",
            f"{self.graph_url}/refresh_access_token",
            "Token refresh",
            params={"grant_type": "ig_refresh_token", "access_token": account.token},
            timeout=REQUEST_TIMEOUT,
        )
        token = data.get("access_token")
        if not token:
            raise ClientError(f"Token refresh for {account.name} returned no token", service=SERVICE)
        expires_in = int(data.get("expires_in") or 0)
        logger.info(f"Refreshed token for {account.name}, valid for {expires_in // 86400} days")
        return str(token), expires_in


def upload_tag(account_name: str, attempt: int) -> str:
    """Stage tag for an account's direct-upload temp file."""
    safe = re.sub(r"[^\w-]", "_", account_name) or "account"
    return f"instagram_upload_{safe}_{attempt}"
