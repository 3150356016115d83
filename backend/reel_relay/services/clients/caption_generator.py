"""
AI caption generation via Gemini.

One session uploads its media at most once; the same remote handle feeds
both the Instagram caption and the YouTube title/description, then is
deleted. Every failure degrades to a fallback text, never to an error.

Flow:
    1. Trim to the first few seconds when the file is over the upload cap
    2. Upload, poll until the file is ACTIVE
    3. Generate with the video attached, falling back to text-only
    4. Retry each generation with fixed spacing, then use a fallback template
    5. Delete the uploaded file
"""

import asyncio
import logging
import random
import re
import time
from pathlib import Path

from google import genai
from google.genai import types
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed

from reel_relay.config import Settings, load_prompt
from reel_relay.models.schemas import DerivedContext, GeneratedCaptions
from reel_relay.services.captions import (
    AI_CAPTION_MAX,
    CaptionTemplates,
    ai_fallback_caption,
    ai_fallback_youtube,
    render,
)
from reel_relay.services.clients.base import ClientError
from reel_relay.utils.json_utils import parse_json_object
from reel_relay.utils.media_utils import file_size_mb
from reel_relay.utils.process_utils import remove_partial, run_process
from reel_relay.utils.text_utils import strip_wrapping, truncate
from reel_relay.utils.timeouts import race

logger = logging.getLogger(__name__)

SERVICE = "gemini"

PROCESSING_POLL_INTERVAL = 2.0
RATE_LIMIT_WINDOW = 60.0
GENERATION_ATTEMPTS = 4  # first try plus 3 retries
GENERATION_RETRY_SPACING = 2.0
TRIM_TIMEOUT = 120.0
MIN_TRIMMED_BYTES = 1024

YOUTUBE_TITLE_CAP = 100
YOUTUBE_DESCRIPTION_CAP = 500

TITLE_PATTERN = re.compile(r"TITLE:\s*(.+?)(?=\n|$)", re.IGNORECASE)
DESCRIPTION_PATTERN = re.compile(r"DESCRIPTION:\s*([\s\S]+)$", re.IGNORECASE)

SAFETY_SETTINGS = [
    types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_NONE)
    for category in (
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )
]


class RateLimiter:
    """
    Fixed-window request limiter.

    Counts requests in the current window and sleeps out the rest of the
    window once the budget is spent.
    """

    def __init__(
        self,
        requests_per_window: int,
        window: float = RATE_LIMIT_WINDOW,
        clock=time.monotonic,
        sleep=asyncio.sleep,
    ):
        self.requests_per_window = requests_per_window
        self.window = window
        self.clock = clock
        self.sleep = sleep
        self.window_start = clock()
        self.count = 0

    async def acquire(self) -> None:
        now = self.clock()
        elapsed = now - self.window_start
        if elapsed >= self.window:
            self.window_start = now
            self.count = 0
        elif self.count >= self.requests_per_window:
            wait = self.window - elapsed
            logger.info(f"Gemini rate limit: waiting {wait:.0f}s")
            await self.sleep(wait)
            self.window_start = self.clock()
            self.count = 0
        self.count += 1


def state_name(file: types.File) -> str:
    state = file.state
    return getattr(state, "name", None) or str(state or "")


def parse_youtube_response(text: str) -> tuple[str | None, str | None]:
    """
    Extract title and description from a model response.

    Accepts a JSON object (possibly fenced) or the TITLE:/DESCRIPTION:
    line format.
    """
    data = parse_json_object(text)
    if data:
        title = str(data.get("title") or "").strip() or None
        description = str(data.get("description") or "").strip() or None
        return title, description

    title_match = TITLE_PATTERN.search(text)
    description_match = DESCRIPTION_PATTERN.search(text)
    return (
        title_match.group(1).strip() if title_match else None,
        description_match.group(1).strip() if description_match else None,
    )


class CaptionGenerator:
    """
    Gemini-backed caption and metadata generator.

    Example:
        generator = CaptionGenerator.from_settings(settings, templates)
        captions = await generator.generate(
            context, final_path, store.path_for(session.id, "trimmed_ai"),
            include_youtube=bool(settings.youtube_accounts),
        )
        ...
        await generator.aclose()  # on shutdown
    """

    def __init__(
        self,
        client: genai.Client | None,
        model: str,
        templates: CaptionTemplates,
        prompts: dict[str, dict[str, str]],
        max_video_mb: float = 20.0,
        trim_seconds: int = 10,
        requests_per_minute: int = 10,
        timeout: float = 30.0,
        processing_timeout: float = 60.0,
        ffmpeg_binary: str = "ffmpeg",
        runner=run_process,
        sleep=asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.client = client
        self.model = model
        self.templates = templates
        self.prompts = prompts
        self.max_video_mb = max_video_mb
        self.trim_seconds = trim_seconds
        self.timeout = timeout
        self.processing_timeout = processing_timeout
        self.ffmpeg_binary = ffmpeg_binary
        self.runner = runner
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.limiter = RateLimiter(requests_per_minute, sleep=sleep)
        self.uploaded_files: set[str] = set()

        if self.client is None:
            logger.warning("Gemini AI is disabled - API key not configured, using fallback captions")
        else:
            logger.info(f"CaptionGenerator initialized, model: {model}")

    @classmethod
    def from_settings(
        cls, settings: Settings, templates: CaptionTemplates | None = None
    ) -> "CaptionGenerator":
        client = genai.Client(api_key=settings.gemini_api_key) if settings.ai_enabled else None
        prompts = {
            platform: {
                component: load_prompt(platform, component, settings)
                for component in ("system", "user")
            }
            for platform in ("instagram", "youtube")
        }
        return cls(
            client=client,
            model=settings.gemini_model,
            templates=templates or CaptionTemplates.from_settings(settings),
            prompts=prompts,
            max_video_mb=settings.ai_max_video_mb,
            trim_seconds=settings.ai_trim_seconds,
            requests_per_minute=settings.ai_requests_per_minute,
            timeout=settings.ai_timeout,
            processing_timeout=settings.ai_processing_timeout,
            ffmpeg_binary=settings.ffmpeg_binary,
        )

    @property
    def enabled(self) -> bool:
        return self.client is not None

    # ═══════════════════════════════════════════════════════════════════
    # Session entry point
    # ═══════════════════════════════════════════════════════════════════

    async def generate(
        self,
        context: DerivedContext,
        media_path: Path,
        trim_path: Path,
        include_youtube: bool = False,
    ) -> GeneratedCaptions:
        """
        Produce all AI text for one session from a single media upload.

        Args:
            context: Extracted source context
            media_path: Final transformed artifact
            trim_path: Where to write the trimmed copy if trimming is needed
            include_youtube: Also generate YouTube title/description

        Returns:
            GeneratedCaptions (empty when AI is disabled)
        """
        if not self.enabled:
            return GeneratedCaptions()

        handle = None
        try:
            handle = await self.upload_media(media_path, trim_path)
        except Exception as e:
            logger.warning(f"Video upload for AI analysis failed, using text-only: {e}")

        try:
            caption = await self.generate_instagram_caption(context, handle)
            title = description = None
            if include_youtube:
                title, description = await self.generate_youtube_metadata(context, handle)
        finally:
            if handle is not None:
                await self.release(handle.name)

        return GeneratedCaptions(
            instagram_caption=caption,
            youtube_title=title,
            youtube_description=description,
        )

    # ═══════════════════════════════════════════════════════════════════
    # Media upload
    # ═══════════════════════════════════════════════════════════════════

    async def trim(self, media_path: Path, trim_path: Path) -> Path:
        """
        Cut the first seconds of a video at low quality for analysis.

        Raises:
            ClientError: If ffmpeg fails, times out or produces a broken file
        """
        cmd = [
            self.ffmpeg_binary, "-y",
            "-ss", "0",
            "-i", str(media_path),
            "-t", str(self.trim_seconds),
            "-c:v", "libx264", "-preset", "ultrafast", "-crf", "28",
            "-c:a", "aac", "-b:a", "128k",
            "-movflags", "+faststart",
            str(trim_path),
        ]
        logger.info(f"Trimming video to {self.trim_seconds}s for AI analysis")
        result = await self.runner(cmd, TRIM_TIMEOUT, trim_path)
        if not result.ok:
            raise ClientError(f"Failed to trim video: {result.describe()}", service=SERVICE)
        if not trim_path.exists() or trim_path.stat().st_size < MIN_TRIMMED_BYTES:
            remove_partial(trim_path)
            raise ClientError("Trimmed file is too small (corrupted)", service=SERVICE)
        return trim_path

    async def upload_media(self, media_path: Path, trim_path: Path) -> types.File:
        """
        Upload media for analysis and wait until it is usable.

        Returns:
            ACTIVE file handle, tracked until released

        Raises:
            ClientError: On trim/upload/processing failure
        """
        if not media_path.exists():
            raise ClientError(f"Video file not found: {media_path}", service=SERVICE)

        upload_path = media_path
        size_mb = file_size_mb(media_path)
        if size_mb > self.max_video_mb:
            logger.info(
                f"Video too large for AI upload ({size_mb:.2f}MB), "
                f"trimming to first {self.trim_seconds} seconds"
            )
            upload_path = await self.trim(media_path, trim_path)
            trimmed_mb = file_size_mb(upload_path)
            if trimmed_mb > self.max_video_mb:
                remove_partial(trim_path)
                raise ClientError(f"Trimmed video still too large ({trimmed_mb:.2f}MB)", service=SERVICE)

        try:
            logger.info(f"Uploading {file_size_mb(upload_path):.2f}MB video to Gemini")
            uploaded = await race(
                self.client.aio.files.upload(
                    file=str(upload_path),
                    config=types.UploadFileConfig(
                        mime_type="video/mp4",
                        display_name=f"video_{int(time.time() * 1000)}",
                    ),
                ),
                self.timeout * 4,
                "Gemini upload",
            )
            self.uploaded_files.add(uploaded.name)
            try:
                return await self.wait_until_active(uploaded.name)
            except Exception:
                await self.release(uploaded.name)
                raise
        finally:
            if upload_path != media_path:
                remove_partial(upload_path)

    async def wait_until_active(self, name: str) -> types.File:
        """
        Poll the uploaded file until processing finishes.

        Raises:
            ClientError: If processing fails, reports an unknown state, or
                exceeds the processing ceiling
        """
        max_iterations = max(1, int(self.processing_timeout / PROCESSING_POLL_INTERVAL))
        started = time.monotonic()

        for _ in range(max_iterations):
            file = await self.client.aio.files.get(name=name)
            state = state_name(file)
            if state == "ACTIVE":
                logger.info(f"Video processed in {time.monotonic() - started:.1f}s")
                return file
            if state == "FAILED":
                raise ClientError("Video processing failed", service=SERVICE)
            if state != "PROCESSING":
                raise ClientError(f"Unknown file state: {state}", service=SERVICE)
            await self.sleep(PROCESSING_POLL_INTERVAL)

        raise ClientError(
            f"Video processing timeout after {self.processing_timeout:.0f}s", service=SERVICE
        )

    async def release(self, name: str) -> None:
        """Delete an uploaded file. Failures are logged; tracking is always dropped."""
        try:
            await self.client.aio.files.delete(name=name)
            logger.debug(f"Deleted uploaded file {name}")
        except Exception as e:
            logger.warning(f"Failed to delete uploaded file {name}: {e}")
        finally:
            self.uploaded_files.discard(name)

    async def aclose(self) -> None:
        """Delete every upload still tracked (process shutdown)."""
        if not self.enabled or not self.uploaded_files:
            return
        logger.info(f"Cleaning up {len(self.uploaded_files)} uploaded files")
        for name in list(self.uploaded_files):
            await self.release(name)

    # ═══════════════════════════════════════════════════════════════════
    # Generation
    # ═══════════════════════════════════════════════════════════════════

    def _user_prompt(self, platform: str, context: DerivedContext) -> str:
        template = self.prompts[platform]["user"]
        prompt = render(template, context.author_handle, context.original_caption or "No caption provided")
        return prompt.replace("{hashtags}", ", ".join(context.original_hashtags) or "None")

    async def _generate_text(self, platform: str, prompt: str, handle: types.File | None) -> str:
        config = types.GenerateContentConfig(
            system_instruction=self.prompts[platform]["system"], safety_settings=SAFETY_SETTINGS
        )

        await self.limiter.acquire()

        if handle is not None:
            try:
                response = await race(
                    self.client.aio.models.generate_content(
                        model=self.model,
                        contents=[
                            types.Part.from_uri(file_uri=handle.uri, mime_type=handle.mime_type),
                            prompt,
                        ],
                        config=config,
                    ),
                    self.timeout,
                    "Gemini generation",
                )
                return (response.text or "").strip()
            except Exception as e:
                logger.warning(f"Video analysis failed, using text-only: {e}")

        response = await race(
            self.client.aio.models.generate_content(model=self.model, contents=prompt, config=config),
            self.timeout,
            "Gemini generation",
        )
        return (response.text or "").strip()

    async def _with_generation_retry(self, platform: str, prompt: str, handle: types.File | None) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(GENERATION_ATTEMPTS),
            wait=wait_fixed(GENERATION_RETRY_SPACING),
            sleep=self.sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                text = await self._generate_text(platform, prompt, handle)
                if not text:
                    raise ClientError("Empty response from model", service=SERVICE)
                return text
        raise ClientError("Generation did not run", service=SERVICE)

    async def generate_instagram_caption(
        self, context: DerivedContext, handle: types.File | None = None
    ) -> str:
        """
        Generate a short promotional caption.

        Returns:
            Caption of at most 500 chars, or a random fallback caption
        """
        prompt = self._user_prompt("instagram", context)
        try:
            text = await self._with_generation_retry("instagram", prompt, handle)
        except Exception as e:
            logger.error(f"Instagram caption generation failed, using fallback: {e}")
            return ai_fallback_caption(context.author_handle, self.templates, self.rng)

        caption = truncate(strip_wrapping(text), AI_CAPTION_MAX)
        logger.info(f"Generated Instagram caption ({len(caption)} chars)")
        return caption

    async def generate_youtube_metadata(
        self, context: DerivedContext, handle: types.File | None = None
    ) -> tuple[str, str]:
        """
        Generate a YouTube title and description.

        Missing fields in the response are filled from the fallback
        templates; total failure returns the fallback pair.
        """
        fallback_title, fallback_description = ai_fallback_youtube(context.author_handle, self.templates)
        prompt = self._user_prompt("youtube", context)
        try:
            text = await self._with_generation_retry("youtube", prompt, handle)
        except Exception as e:
            logger.error(f"YouTube metadata generation failed, using fallback: {e}")
            return fallback_title, fallback_description

        title, description = parse_youtube_response(text)
        title = truncate(title or fallback_title, YOUTUBE_TITLE_CAP)
        description = truncate(description or fallback_description, YOUTUBE_DESCRIPTION_CAP)
        logger.info(f"Generated YouTube metadata: {title} ({len(title)} chars), description {len(description)} chars")
        return title, description
