"""
Media transform adapter around ffmpeg.

Every stage is cosmetic, so apply() always resolves: on probe failure,
transcode crash, timeout or a missing output it logs the cause and
returns the input path unchanged.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable

from reel_relay.config import Settings
from reel_relay.models.transforms import BrandingSpec, RetimeSpec, TransformSpec
from reel_relay.utils.media_utils import MediaProbe, probe_media
from reel_relay.utils.process_utils import ProcessResult, remove_partial, run_process

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 30.0
TRANSCODE_TIMEOUT = 180.0

# Tried in order when no font_file is configured
FONT_CANDIDATES = (
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
    Path("/usr/share/fonts/TTF/DejaVuSans.ttf"),
    Path("/System/Library/Fonts/Helvetica.ttc"),
    Path("C:/Windows/Fonts/arial.ttf"),
)

KST = timezone(timedelta(hours=9))

Runner = Callable[[list[str], float, Path | None], Awaitable[ProcessResult]]
Prober = Callable[[Path], Awaitable[MediaProbe | None]]


def scale_pad_filters(probe: MediaProbe, spec: BrandingSpec) -> tuple[str, str]:
    """
    Fit the source into the target frame, letterboxing the short side.

    Returns:
        (scale filter, pad filter)
    """
    target_w, target_h = spec.target_width, spec.target_height
    aspect = probe.width / probe.height
    target_aspect = target_w / target_h

    if aspect > target_aspect:
        new_w = target_w
        new_h = int(target_w / aspect)
        pad = f"pad={target_w}:{target_h}:0:{(target_h - new_h) // 2}:{spec.pad_color}"
    else:
        new_h = target_h
        new_w = int(target_h * aspect)
        pad = f"pad={target_w}:{target_h}:{(target_w - new_w) // 2}:0:{spec.pad_color}"

    # libx264 needs even dimensions
    new_w -= new_w % 2
    new_h -= new_h % 2
    return f"scale={new_w}:{new_h}", pad


def fade_alpha_expression(spec: BrandingSpec) -> str:
    """drawtext alpha: fade in at appear_at, hold, fade out at appear_at + visible_for."""
    start = max(0.0, spec.appear_at)
    end = start + spec.visible_for
    fade_in_end = start + spec.fade_in
    fade_out_start = end - spec.fade_out
    return (
        f"if(lt(t\\,{start})\\,0\\,"
        f"if(lt(t\\,{fade_in_end})\\,(t-{start})/{spec.fade_in}\\,"
        f"if(lt(t\\,{fade_out_start})\\,1\\,"
        f"if(lt(t\\,{end})\\,({end}-t)/{spec.fade_out}\\,0))))"
    )


def escape_drawtext(text: str) -> str:
    return text.replace("\\", "\\\\").replace(":", "\\:").replace("'", "\\'")


def encoder_options(spec: TransformSpec) -> list[str]:
    return [
        "-c:v", "libx264",
        "-preset", spec.preset,
        "-crf", str(spec.crf),
        "-movflags", "+faststart",
    ]


def build_retime_command(
    ffmpeg: str,
    input_path: Path,
    output_path: Path,
    spec: RetimeSpec,
    probe: MediaProbe,
    music: Path | None = None,
) -> list[str]:
    """
    Speed up, lift brightness and optionally mix in a quiet music bed.

    The music bed is trimmed to the retimed duration.
    """
    new_duration = probe.duration / spec.speed if probe.duration else 0.0
    use_music = music is not None and new_duration > 0

    eq = f"eq=brightness={spec.brightness}:contrast={spec.contrast}:saturation={spec.saturation}"
    graph = [f"[0:v]setpts=PTS/{spec.speed},{eq}[vout]"]

    music_chain = f"[1:a]atrim=0:{new_duration:.3f},volume={spec.music_volume}"
    if probe.has_audio:
        graph.append(f"[0:a]atempo={spec.speed}[a1]")
        if use_music:
            graph.append(f"{music_chain}[bgm]")
            graph.append("[a1][bgm]amix=inputs=2:duration=first[aout]")
        else:
            graph.append("[a1]acopy[aout]")
    elif use_music:
        graph.append(f"{music_chain}[aout]")

    cmd = [ffmpeg, "-y", "-i", str(input_path)]
    if use_music:
        cmd += ["-i", str(music)]
    cmd += ["-filter_complex", ";".join(graph), "-map", "[vout]"]
    if spec.strip_metadata:
        cmd += ["-map_metadata", "-1"]
    cmd += encoder_options(spec)
    if probe.has_audio or use_music:
        cmd += ["-map", "[aout]", "-c:a", "aac", "-b:a", spec.audio_bitrate]
        if not probe.has_audio:
            cmd.append("-shortest")
    cmd.append(str(output_path))
    return cmd


def build_branding_command(
    ffmpeg: str,
    input_path: Path,
    output_path: Path,
    spec: BrandingSpec,
    probe: MediaProbe,
    font_file: Path | None = None,
    now: datetime | None = None,
) -> list[str]:
    """Scale/pad to the portrait frame and draw the fading bar, title and subtitle."""
    scale, pad = scale_pad_filters(probe, spec)
    alpha = fade_alpha_expression(spec)
    start = max(0.0, spec.appear_at)
    end = start + spec.visible_for
    font = f":fontfile={font_file}" if font_file else ""
    bar_height = spec.font_size + spec.subtitle_size + 20

    graph = [
        f"[0:v]{scale}[scaled]",
        f"[scaled]{pad}[padded]",
        f"[padded]drawbox=x={spec.x - spec.bar_width - 15}:y={spec.y}"
        f":w={spec.bar_width}:h={bar_height}:color={spec.bar_color}:t=fill"
        f":enable='between(t\\,{start}\\,{end})'[with_bar]",
        f"[with_bar]drawtext=text='{escape_drawtext(spec.text)}'{font}"
        f":fontsize={spec.font_size}:fontcolor={spec.text_color}"
        f":x={spec.x}:y={spec.y}:alpha='{alpha}'[with_text]",
        f"[with_text]drawtext=text='{escape_drawtext(spec.subtitle)}'{font}"
        f":fontsize={spec.subtitle_size}:fontcolor={spec.text_color}"
        f":x={spec.x}:y={spec.y + spec.font_size + 10}:alpha='{alpha}'[vout]",
    ]

    cmd = [ffmpeg, "-y", "-i", str(input_path), "-filter_complex", ";".join(graph), "-map", "[vout]"]
    if probe.has_audio:
        cmd += ["-map", "0:a?"]
    else:
        cmd.append("-an")
    cmd += encoder_options(spec)
    if probe.has_audio:
        cmd += ["-c:a", "aac", "-b:a", spec.audio_bitrate]

    metadata = dict(spec.metadata)
    metadata.setdefault("creation_time", (now or datetime.now(KST)).strftime("%Y-%m-%dT%H:%M:%S"))
    for key, value in metadata.items():
        cmd += ["-metadata", f"{key}={value}"]

    cmd.append(str(output_path))
    return cmd


class MediaTransformer:
    """
    Applies TransformSpec stages with ffmpeg, falling back to the input.

    Example:
        transformer = MediaTransformer.from_settings(settings)
        out = await transformer.apply(source, RetimeSpec(), store.path_for(sid, "retime"))
        # out is either the new file or `source` if anything went wrong
    """

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        font_file: Path | None = None,
        background_music: Path | None = None,
        probe_timeout: float = PROBE_TIMEOUT,
        transcode_timeout: float = TRANSCODE_TIMEOUT,
        runner: Runner = run_process,
        prober: Prober | None = None,
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.font_file = font_file or next((p for p in FONT_CANDIDATES if p.exists()), None)
        self.background_music = background_music
        self.probe_timeout = probe_timeout
        self.transcode_timeout = transcode_timeout
        self.runner = runner
        self.prober = prober or self._probe

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaTransformer":
        music = settings.background_music
        if music is not None and not music.exists():
            logger.warning(f"Background music not found, skipping: {music}")
            music = None
        return cls(
            ffmpeg_binary=settings.ffmpeg_binary,
            ffprobe_binary=settings.ffprobe_binary,
            font_file=settings.font_file,
            background_music=music,
        )

    async def _probe(self, path: Path) -> MediaProbe | None:
        return await probe_media(path, self.ffprobe_binary, self.probe_timeout)

    def build_command(
        self,
        input_path: Path,
        output_path: Path,
        spec: TransformSpec,
        probe: MediaProbe,
    ) -> list[str]:
        """
        Build the ffmpeg command for one stage.

        Raises:
            ValueError: For spec types without a command builder
        """
        if isinstance(spec, RetimeSpec):
            return build_retime_command(
                self.ffmpeg_binary, input_path, output_path,
                spec.randomized(), probe, self.background_music,
            )
        if isinstance(spec, BrandingSpec):
            return build_branding_command(
                self.ffmpeg_binary, input_path, output_path, spec, probe, self.font_file,
            )
        raise ValueError(f"No command builder for {type(spec).__name__}")

    async def apply(self, input_path: Path, spec: TransformSpec, output_path: Path) -> Path:
        """
        Run one transform stage.

        Args:
            input_path: Current artifact
            spec: Stage parameters
            output_path: Where the derived file is written

        Returns:
            output_path on success, input_path on any failure
        """
        if output_path == input_path:
            logger.error(f"[{spec.name}] Output path equals input path, skipping stage")
            return input_path

        try:
            probe = await self.prober(input_path)
        except Exception as e:
            logger.error(f"[{spec.name}] Probe failed: {e}")
            return input_path

        if probe is None:
            logger.error(f"[{spec.name}] Probe failed or timed out, keeping input")
            return input_path
        if not probe.has_video or probe.width <= 0 or probe.height <= 0:
            logger.error(f"[{spec.name}] No usable video stream, keeping input")
            return input_path

        try:
            cmd = self.build_command(input_path, output_path, spec, probe)
        except (ValueError, ZeroDivisionError) as e:
            logger.error(f"[{spec.name}] Cannot build command: {e}")
            return input_path

        logger.info(f"[{spec.name}] Transcoding {input_path.name} -> {output_path.name}")
        logger.debug(f"[{spec.name}] {' '.join(cmd)}")

        try:
            result = await self.runner(cmd, self.transcode_timeout, output_path)
        except Exception as e:
            logger.error(f"[{spec.name}] Transcode crashed: {e}")
            remove_partial(output_path)
            return input_path

        if not result.ok:
            logger.error(f"[{spec.name}] Transcode failed: {result.describe()}")
            remove_partial(output_path)
            return input_path

        if not output_path.exists() or output_path.stat().st_size == 0:
            logger.error(f"[{spec.name}] Transcode produced no output")
            remove_partial(output_path)
            return input_path

        logger.info(f"[{spec.name}] Stage complete: {output_path.name}")
        return output_path
