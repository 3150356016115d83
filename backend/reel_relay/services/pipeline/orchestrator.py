"""
Session orchestrator for reel republishing.

Runs one session end to end: fetch, transform, stage, caption, fan out
to every configured account, report, clean up. Only the initial fetch,
remote staging and the resource precheck can abort a session; every
other stage degrades to its fallback.
"""

import asyncio
import logging
import resource
import sys
from pathlib import Path
from typing import Awaitable, Callable

from reel_relay.config import Settings, get_settings, load_transforms_config
from reel_relay.models.schemas import (
    DerivedContext,
    GeneratedCaptions,
    InboundRequest,
    InstagramAccount,
    Platform,
    PlatformSummary,
    PublishResult,
    Session,
    SessionOutcome,
    SessionPhase,
    YouTubeAccount,
)
from reel_relay.models.transforms import BrandingSpec, RetimeSpec, TransformSpec, specs_from_config
from reel_relay.services.captions import (
    CaptionTemplates,
    resolve_instagram_caption,
    resolve_youtube_metadata,
    sanitize_original_caption,
)
from reel_relay.services.clients import (
    CaptionExtractor,
    CaptionGenerator,
    ClientError,
    CredentialStore,
    CredentialStoreError,
    InstagramPublisher,
    SourceClient,
    StorageClient,
    YouTubePublisher,
    upload_tag,
)
from reel_relay.services.file_store import TransientFileStore
from reel_relay.services.gate import ConcurrencyGate
from reel_relay.services.media_transformer import MediaTransformer
from reel_relay.services.retry import PUBLISH_RETRY_POLICY, RetryPolicy, with_retry
from reel_relay.services.status_channel import StatusChannel
from reel_relay.utils.text_utils import strip_control_chars

from .progress_reporter import ProgressReporter

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = "Original Creator"
BUSY_MESSAGE = "⏳ Bot is busy processing other videos. Please try again in a moment."


class SessionError(Exception):
    """
    Fatal session error with context.

    Attributes:
        stage: Stage where the session was aborted
        message: Error description
        cause: Original exception (if any)
    """

    def __init__(
        self,
        stage: str,
        message: str,
        cause: Exception | None = None,
    ):
        self.stage = stage
        self.message = message
        self.cause = cause
        super().__init__(f"[{stage}] {message}")


def process_memory_mb() -> float:
    """Resident memory of this process in MB (peak RSS where /proc is unavailable)."""
    try:
        with open("/proc/self/status", encoding="ascii") as f:
            for line in f:
                if line.startswith("VmRSS:"):
                    return int(line.split()[1]) / 1024
    except OSError:
        pass
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # bytes on macOS, kilobytes elsewhere
    if sys.platform == "darwin":
        return peak / (1024 * 1024)
    return peak / 1024


def describe_error(error: BaseException) -> str:
    """Message for status notices, without the service suffix."""
    return getattr(error, "message", None) or str(error)


def default_transforms(settings: Settings) -> list[TransformSpec]:
    """Transform chain from config/transforms.yaml, or the built-in pair."""
    try:
        return specs_from_config(load_transforms_config(settings))
    except FileNotFoundError:
        logger.warning("transforms.yaml not found, using default transform chain")
        return [RetimeSpec(), BrandingSpec()]


class SessionOrchestrator:
    """
    Runs republishing sessions.

    One instance is shared by every session in the process; per-session
    state lives in the Session model and its ProgressReporter.

    Example:
        orchestrator = SessionOrchestrator.from_settings(settings, gate, store, channel)
        session_id = orchestrator.gate.try_admit()
        outcome = await orchestrator.run(request, session_id)
    """

    def __init__(
        self,
        settings: Settings,
        gate: ConcurrencyGate,
        store: TransientFileStore,
        channel: StatusChannel,
        source: SourceClient,
        extractor: CaptionExtractor,
        transformer: MediaTransformer,
        storage: StorageClient,
        generator: CaptionGenerator,
        instagram: InstagramPublisher,
        youtube: YouTubePublisher,
        templates: CaptionTemplates,
        transforms: list[TransformSpec] | None = None,
        credential_store: CredentialStore | None = None,
        retry_policy: RetryPolicy = PUBLISH_RETRY_POLICY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        memory_probe: Callable[[], float] = process_memory_mb,
    ):
        self.settings = settings
        self.gate = gate
        self.store = store
        self.channel = channel
        self.source = source
        self.extractor = extractor
        self.transformer = transformer
        self.storage = storage
        self.generator = generator
        self.instagram = instagram
        self.youtube = youtube
        self.templates = templates
        self.transforms = transforms if transforms is not None else default_transforms(settings)
        self.credential_store = credential_store
        self.retry_policy = retry_policy
        self.sleep = sleep
        self.memory_probe = memory_probe

        self.instagram_accounts: list[InstagramAccount] = list(settings.instagram_accounts)
        self.youtube_accounts: list[YouTubeAccount] = list(settings.youtube_accounts)

        if self.youtube.on_credentials_refreshed is None:
            self.youtube.on_credentials_refreshed = self.persist_youtube_credentials

        logger.info(
            f"SessionOrchestrator ready: {len(self.instagram_accounts)} Instagram, "
            f"{len(self.youtube_accounts)} YouTube account(s), "
            f"transforms={[spec.name for spec in self.transforms]}"
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None,
        gate: ConcurrencyGate,
        store: TransientFileStore,
        channel: StatusChannel,
    ) -> "SessionOrchestrator":
        """Build the orchestrator and every remote client from settings."""
        settings = settings or get_settings()
        templates = CaptionTemplates.from_settings(settings)
        return cls(
            settings=settings,
            gate=gate,
            store=store,
            channel=channel,
            source=SourceClient.from_settings(settings),
            extractor=CaptionExtractor(),
            transformer=MediaTransformer.from_settings(settings),
            storage=StorageClient.from_settings(settings),
            generator=CaptionGenerator.from_settings(settings, templates),
            instagram=InstagramPublisher.from_settings(settings, templates),
            youtube=YouTubePublisher.from_settings(settings),
            templates=templates,
            credential_store=CredentialStore(settings.credentials_env_file),
        )

    async def aclose(self) -> None:
        """Close HTTP clients and delete still-tracked AI uploads."""
        await self.generator.aclose()
        for client in (self.source, self.extractor, self.storage, self.instagram):
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing {type(client).__name__}: {e}")

    async def report_busy(self) -> None:
        """Tell the channel a request was rejected because the gate is full."""
        logger.warning(f"Rejecting request, {len(self.gate.active)} sessions active")
        try:
            await self.channel.send_text(BUSY_MESSAGE)
        except Exception as e:
            logger.warning(f"Busy notice delivery error: {e}")

    # ═══════════════════════════════════════════════════════════════════
    # Session lifecycle
    # ═══════════════════════════════════════════════════════════════════

    async def run(
        self,
        request: InboundRequest,
        session_id: str | None = None,
    ) -> SessionOutcome | None:
        """
        Run one session and always clean up after it.

        Args:
            request: Parsed inbound request
            session_id: Id already admitted by the caller; admits here if None

        Returns:
            SessionOutcome, or None if the session was rejected or aborted
        """
        if session_id is None:
            session_id = self.gate.try_admit()
            if session_id is None:
                await self.report_busy()
                return None

        session = Session(
            id=session_id,
            source_reference=request.source_url,
            mode=request.mode,
            manual_override_caption=request.manual_caption,
            author_hint=request.author,
        )
        reporter = ProgressReporter(self.channel, request.source_url)
        logger.info(f"Session {session_id} started: {request.source_url} (mode={request.mode.value})")

        try:
            return await self._run_session(session, reporter)
        except SessionError as e:
            logger.error(f"Session {session_id} aborted: {e}")
            await reporter.failed(e.message)
            return None
        except Exception as e:
            logger.exception(f"Session {session_id} failed unexpectedly: {e}")
            await reporter.failed(f"Unexpected error: {e}")
            return None
        finally:
            self._cleanup(session_id)

    def _cleanup(self, session_id: str) -> None:
        try:
            removed = self.store.purge_session(session_id)
            orphans = self.store.purge_orphans(self.settings.orphan_max_age_seconds)
            logger.info(f"Session {session_id} cleanup: {removed} file(s), {orphans} orphan(s)")
        except OSError as e:
            logger.error(f"Session {session_id} cleanup error: {e}")
        finally:
            self.gate.release(session_id)

    async def _run_session(self, session: Session, reporter: ProgressReporter) -> SessionOutcome:
        await reporter.update(SessionPhase.INITIALIZING, "Starting process...")
        await self.check_resources(reporter)

        await self.fetch(session, reporter)
        await self.transform(session, reporter)
        await self.stage_remote(session, reporter)
        await self.generate_captions(session, reporter)

        await self.publish_instagram(session, reporter)
        await self.publish_youtube(session, reporter)

        outcome = self.aggregate(session, reporter)
        logger.info(
            f"Session {session.id} finished: {outcome.bucket.value} "
            f"(instagram {outcome.instagram.ratio}, youtube {outcome.youtube.ratio}, "
            f"{outcome.elapsed_seconds:.0f}s)"
        )
        await reporter.final(outcome)
        return outcome

    # ═══════════════════════════════════════════════════════════════════
    # Stages
    # ═══════════════════════════════════════════════════════════════════

    async def check_resources(self, reporter: ProgressReporter) -> None:
        """
        Reject the session when the process is already using too much memory.

        Raises:
            SessionError: Above the hard ceiling
        """
        used_mb = self.memory_probe()
        if used_mb > self.settings.memory_ceiling_mb:
            raise SessionError(
                "precheck",
                f"Server memory too high ({used_mb:.0f}MB). Please try again later.",
            )
        if used_mb > self.settings.memory_warning_mb:
            await reporter.notice(f"High memory usage: {used_mb:.0f}MB", "warning")

    async def fetch(self, session: Session, reporter: ProgressReporter) -> Path:
        """
        Download and validate the source video while extracting its caption.

        Raises:
            SessionError: If the video can't be fetched or isn't a real video
        """
        await reporter.update(SessionPhase.DOWNLOADING, "Downloading video...")
        source_path = self.store.path_for(session.id, "source")

        context_task = asyncio.create_task(self.derive_context(session, reporter))
        fetched = False
        try:
            await self.source.fetch(session.source_reference, source_path)
            fetched = True
        except ClientError as e:
            raise SessionError("download", f"Failed to download video: {e.message}", e) from e
        finally:
            if not fetched:
                context_task.cancel()

        session.derived_context = await context_task
        session.add_artifact("source", source_path)
        await reporter.notice("Video downloaded successfully", "success")
        return source_path

    async def derive_context(self, session: Session, reporter: ProgressReporter) -> DerivedContext:
        """Original caption, hashtags and author. Never raises."""
        extracted = await self.extractor.extract(session.source_reference)
        caption = sanitize_original_caption(strip_control_chars(extracted.caption))

        author = session.author_hint
        if not author:
            author = await self.extractor.lookup_author(session.source_reference) or DEFAULT_AUTHOR

        if caption or extracted.hashtags:
            await reporter.notice(
                f"Caption extracted: {len(caption)} chars, {len(extracted.hashtags)} hashtags",
                "success",
            )
        else:
            await reporter.notice("No caption found, using fallback captions", "warning")

        return DerivedContext(
            original_caption=caption,
            original_hashtags=tuple(extracted.hashtags),
            author_handle=author,
        )

    async def transform(self, session: Session, reporter: ProgressReporter) -> Path:
        """Apply the transform chain; a failed stage keeps the previous artifact."""
        await reporter.update(SessionPhase.PROCESSING, "Processing video...")

        for spec in self.transforms:
            if isinstance(spec, BrandingSpec) and not self.settings.add_branding:
                logger.info(f"Session {session.id}: branding disabled, skipping {spec.name}")
                continue

            current = session.current_artifact
            output = await self.transformer.apply(current, spec, self.store.path_for(session.id, spec.name))
            if output == current:
                await reporter.notice(f"{spec.name} stage failed, continuing with previous video", "warning")
            else:
                session.add_artifact(spec.name, output)

        return session.current_artifact

    async def stage_remote(self, session: Session, reporter: ProgressReporter) -> str:
        """
        Upload the final artifact to remote storage.

        Raises:
            SessionError: On size cap or upload failure
        """
        await reporter.update(SessionPhase.UPLOADING, "Uploading to storage...")
        try:
            session.remote_url = await self.storage.upload(session.current_artifact)
        except ClientError as e:
            raise SessionError("upload", f"Failed to upload video: {e.message}", e) from e
        await reporter.notice("Video staged for publishing", "success")
        return session.remote_url

    async def generate_captions(self, session: Session, reporter: ProgressReporter) -> GeneratedCaptions:
        """
        Fill session.captions at most once per session.

        Repost sessions keep the original caption; a manual caption fills
        the Instagram slot without calling the AI.
        """
        if session.is_repost:
            logger.info(f"Session {session.id}: repost mode, skipping AI captions")
            return session.captions

        if session.manual_override_caption:
            await reporter.notice("Using manual caption", "info")
            session.captions = GeneratedCaptions(instagram_caption=session.manual_override_caption)
            return session.captions

        if not self.generator.enabled:
            return session.captions

        await reporter.update(SessionPhase.PROCESSING, "Generating captions...")
        try:
            session.captions = await self.generator.generate(
                session.derived_context,
                session.current_artifact,
                self.store.path_for(session.id, "trimmed_ai"),
                include_youtube=bool(self.youtube_accounts),
            )
            await reporter.notice("AI captions generated", "success")
        except Exception as e:
            logger.error(f"Session {session.id}: caption generation failed: {e}")
            await reporter.notice("AI caption generation failed, using fallback caption", "warning")
        return session.captions

    # ═══════════════════════════════════════════════════════════════════
    # Fan-out
    # ═══════════════════════════════════════════════════════════════════

    async def publish_instagram(self, session: Session, reporter: ProgressReporter) -> list[PublishResult]:
        """Publish to each Instagram account in turn."""
        accounts = self.instagram_accounts
        if not accounts:
            return []

        caption = resolve_instagram_caption(
            session.mode,
            session.derived_context,
            session.captions.instagram_caption,
            self.templates,
        )

        results = []
        for index, account in enumerate(accounts):
            if index > 0:
                logger.info(f"Waiting {self.settings.instagram_cooldown_seconds:.0f}s before next account")
                await self.sleep(self.settings.instagram_cooldown_seconds)
            await reporter.publishing(
                SessionPhase.PUBLISHING_INSTAGRAM, "Instagram", account.name, index, len(accounts)
            )
            result = await self._publish_instagram_account(session, reporter, account, caption)
            session.publish_results.append(result)
            results.append(result)
        return results

    async def _publish_instagram_account(
        self,
        session: Session,
        reporter: ProgressReporter,
        account: InstagramAccount,
        caption: str,
    ) -> PublishResult:
        attempt = 0

        async def publish_once() -> str:
            nonlocal attempt
            attempt += 1
            return await self.instagram.publish(
                account,
                session.remote_url,
                caption,
                self.store.path_for(session.id, upload_tag(account.name, attempt)),
                notify=reporter.notice,
            )

        try:
            url = await with_retry(
                publish_once,
                self.retry_policy,
                on_retry=reporter.retry_notice(account.name),
                context=f"Instagram upload to {account.name}",
                sleep=self.sleep,
            )
        except Exception as e:
            await reporter.notice(f"Failed to post to Instagram ({account.name}): {describe_error(e)}", "error")
            return PublishResult(
                account_id=account.account_id, platform=Platform.INSTAGRAM, succeeded=False, error=str(e)
            )

        await reporter.notice(f"Successfully posted to Instagram: {account.name}\nReel URL: {url}", "success")
        return PublishResult(
            account_id=account.account_id, platform=Platform.INSTAGRAM, succeeded=True, result_url=url
        )

    async def publish_youtube(self, session: Session, reporter: ProgressReporter) -> list[PublishResult]:
        """Upload to each YouTube account in turn."""
        accounts = list(self.youtube_accounts)
        if not accounts:
            return []

        metadata = resolve_youtube_metadata(
            session.mode, session.derived_context, session.captions, self.templates
        )

        results = []
        for index, account in enumerate(accounts):
            if index > 0:
                logger.info(f"Waiting {self.settings.youtube_cooldown_seconds:.0f}s before next account")
                await self.sleep(self.settings.youtube_cooldown_seconds)
            # Tokens may have been refreshed by a previous upload
            account = self._current_youtube_account(account)
            await reporter.publishing(
                SessionPhase.PUBLISHING_YOUTUBE, "YouTube", account.name, index, len(accounts)
            )

            try:
                url = await with_retry(
                    lambda: self.youtube.upload(
                        self._current_youtube_account(account),
                        session.current_artifact,
                        metadata,
                        notify=reporter.notice,
                    ),
                    self.retry_policy,
                    on_retry=reporter.retry_notice(account.name),
                    context=f"YouTube upload to {account.name}",
                    sleep=self.sleep,
                )
                result = PublishResult(
                    account_id=account.account_id, platform=Platform.YOUTUBE, succeeded=True, result_url=url
                )
            except Exception as e:
                await reporter.notice(f"Failed to upload to YouTube ({account.name}): {describe_error(e)}", "error")
                result = PublishResult(
                    account_id=account.account_id, platform=Platform.YOUTUBE, succeeded=False, error=str(e)
                )

            session.publish_results.append(result)
            results.append(result)
        return results

    def aggregate(self, session: Session, reporter: ProgressReporter) -> SessionOutcome:
        def summary(platform: Platform) -> PlatformSummary:
            results = session.results_for(platform)
            return PlatformSummary(
                platform=platform,
                attempted=len(results),
                succeeded=sum(1 for r in results if r.succeeded),
            )

        return SessionOutcome(
            session_id=session.id,
            instagram=summary(Platform.INSTAGRAM),
            youtube=summary(Platform.YOUTUBE),
            author=session.derived_context.author_handle,
            elapsed_seconds=reporter.elapsed_seconds,
            results=list(session.publish_results),
        )

    # ═══════════════════════════════════════════════════════════════════
    # Credentials
    # ═══════════════════════════════════════════════════════════════════

    def _current_youtube_account(self, account: YouTubeAccount) -> YouTubeAccount:
        return next((a for a in self.youtube_accounts if a.name == account.name), account)

    async def persist_youtube_credentials(self, updated: YouTubeAccount) -> None:
        """Post-refresh hook: swap in the new tokens and persist all accounts."""
        self.youtube_accounts = [
            updated if account.name == updated.name else account for account in self.youtube_accounts
        ]
        if self.credential_store is None:
            return
        try:
            await self.credential_store.update_youtube_accounts(self.youtube_accounts)
            logger.info(f"Persisted refreshed YouTube tokens for {updated.name}")
        except CredentialStoreError as e:
            logger.error(f"Failed to persist YouTube tokens for {updated.name}: {e}")

    async def refresh_instagram_tokens(self) -> dict[str, int | None]:
        """
        Refresh every Instagram long-lived token and persist the results.

        Returns:
            Account name -> new expiry in seconds (None when refresh failed)
        """
        expiries: dict[str, int | None] = {}
        refreshed = []
        for account in self.instagram_accounts:
            try:
                token, expires_in = await self.instagram.refresh_token(account)
            except ClientError as e:
                logger.error(f"Token refresh failed for {account.name}: {e}")
                expiries[account.name] = None
                refreshed.append(account)
                continue
            expiries[account.name] = expires_in
            refreshed.append(account.model_copy(update={"token": token}))

        self.instagram_accounts = refreshed
        if self.credential_store is not None and any(v is not None for v in expiries.values()):
            await self.credential_store.update_instagram_accounts(self.instagram_accounts)
        return expiries
