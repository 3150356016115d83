"""
Progress reporting for pipeline sessions.

Collapses orchestrator state transitions into one evolving status embed
and a stream of append-only notices on the origin channel.
"""

import logging
import time
from typing import Callable

from reel_relay.models.schemas import OutcomeBucket, SessionOutcome, SessionPhase
from reel_relay.services.retry import OnRetry
from reel_relay.services.status_channel import EmbedField, StatusChannel, StatusEmbed

logger = logging.getLogger(__name__)

NOTICE_ICONS = {
    "info": "ℹ️",
    "success": "✅",
    "warning": "⚠️",
    "error": "❌",
    "process": "⚙️",
}

LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "process": logging.INFO,
}


class ProgressReporter:
    """
    Owns one session's status embed and notices.

    The first update() posts the embed; later calls edit it in place.
    Channel failures are logged and swallowed so reporting never breaks
    the pipeline.

    Example:
        reporter = ProgressReporter(channel, source_url)
        await reporter.update(SessionPhase.DOWNLOADING, "Downloading video...")
        await reporter.notice("Caption extracted", "success")
        await reporter.final(outcome)
    """

    PHASE_TITLES = {
        SessionPhase.INITIALIZING: "🎬 Reel Processing Status",
        SessionPhase.DOWNLOADING: "🎬 Reel Processing Status",
        SessionPhase.PROCESSING: "🎬 Reel Processing Status",
        SessionPhase.UPLOADING: "🎬 Reel Processing Status",
        SessionPhase.PUBLISHING_INSTAGRAM: "📤 Upload Progress",
        SessionPhase.PUBLISHING_YOUTUBE: "📺 YouTube Upload Progress",
        SessionPhase.COMPLETED: "✅ Process Completed",
        SessionPhase.PARTIAL: "⚠️ Partial Success",
        SessionPhase.FAILED: "❌ Process Failed",
    }

    PHASE_COLORS = {
        SessionPhase.PUBLISHING_INSTAGRAM: 0xF1C40F,
        SessionPhase.PUBLISHING_YOUTUBE: 0xFF0000,
        SessionPhase.COMPLETED: 0x2ECC71,
        SessionPhase.PARTIAL: 0xF39C12,
        SessionPhase.FAILED: 0xE74C3C,
    }
    DEFAULT_COLOR = 0x3498DB

    BUCKET_PHASES = {
        OutcomeBucket.SUCCESS: SessionPhase.COMPLETED,
        OutcomeBucket.PARTIAL: SessionPhase.PARTIAL,
        OutcomeBucket.FAILURE: SessionPhase.FAILED,
    }

    BUCKET_DESCRIPTIONS = {
        OutcomeBucket.SUCCESS: "All operations completed successfully!",
        OutcomeBucket.PARTIAL: "Some uploads completed, but some failed. Check logs for details.",
        OutcomeBucket.FAILURE: "All uploads failed. Please check the logs for details.",
    }

    def __init__(
        self,
        channel: StatusChannel,
        source_url: str,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.channel = channel
        self.source_url = source_url
        self.clock = clock
        self.message_id: str | None = None
        self.phase: SessionPhase | None = None
        self.notices_sent = 0
        self._started_at: float | None = None

    @property
    def elapsed_seconds(self) -> float:
        """Seconds since the first status message (0 before it)."""
        if self._started_at is None:
            return 0.0
        return self.clock() - self._started_at

    async def update(
        self,
        phase: SessionPhase,
        description: str,
        fields: list[EmbedField] | None = None,
    ) -> None:
        """
        Post or edit the session's status embed.

        Args:
            phase: Current coarse phase (selects title and colour)
            description: Embed body
            fields: Extra fields; the source URL is included until publishing starts
        """
        if self._started_at is None:
            self._started_at = self.clock()
        self.phase = phase

        if fields is None:
            fields = [EmbedField("URL", self.source_url)]

        embed = StatusEmbed(
            title=self.PHASE_TITLES[phase],
            description=description,
            fields=fields,
            color=self.PHASE_COLORS.get(phase, self.DEFAULT_COLOR),
        )

        try:
            if self.message_id is None:
                self.message_id = await self.channel.send_embed(embed)
            else:
                await self.channel.edit_embed(self.message_id, embed)
        except Exception as e:
            # Never fail due to reporting
            logger.warning(f"Status update error: {e}")

    async def notice(self, message: str, level: str = "info") -> None:
        """
        Append a notice to the channel and mirror it to the log.

        Args:
            message: Notice text
            level: info, success, warning, error or process
        """
        logger.log(LOG_LEVELS.get(level, logging.INFO), message)
        icon = NOTICE_ICONS.get(level, NOTICE_ICONS["info"])
        try:
            await self.channel.send_text(f"{icon} {message}")
            self.notices_sent += 1
        except Exception as e:
            logger.warning(f"Notice delivery error: {e}")

    def retry_notice(self, account_name: str) -> OnRetry:
        """Build a retry-engine callback announcing each backoff."""

        async def announce(attempt: int, delay: float, error: BaseException) -> None:
            await self.notice(
                f"Upload attempt {attempt} failed for {account_name}. "
                f"Retrying in {round(delay)}s...",
                "warning",
            )

        return announce

    async def publishing(
        self,
        phase: SessionPhase,
        platform_label: str,
        account_name: str,
        done: int,
        total: int,
    ) -> None:
        """Show which account is being published and the running tally."""
        await self.update(
            phase,
            f"Uploading to {platform_label} ({account_name})...",
            [
                EmbedField("Current Account", account_name),
                EmbedField("Platform", platform_label),
                EmbedField("Progress", f"{done}/{total}"),
                EmbedField("Status", "⏳ Publishing…", inline=False),
            ],
        )

    async def final(self, outcome: SessionOutcome) -> None:
        """Render the final outcome bucket with both platforms' ratios."""
        fields = [
            EmbedField("Instagram Uploads", outcome.instagram.ratio),
            EmbedField("YouTube Uploads", outcome.youtube.ratio),
            EmbedField("Author", outcome.author),
            EmbedField("Time Taken", f"{round(outcome.elapsed_seconds)}s"),
        ]
        bucket = outcome.bucket
        await self.update(self.BUCKET_PHASES[bucket], self.BUCKET_DESCRIPTIONS[bucket], fields)

    async def failed(self, message: str) -> None:
        """Render a fatal session failure."""
        await self.update(
            SessionPhase.FAILED,
            message,
            [
                EmbedField("URL", self.source_url),
                EmbedField("Time Taken", f"{round(self.elapsed_seconds)}s"),
            ],
        )
