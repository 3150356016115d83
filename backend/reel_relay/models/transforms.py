"""
Transform specifications for media re-encoding stages.

Each spec is a pure value describing one stage of the transform chain.
The chain itself is policy, loaded from config/transforms.yaml:

    stages:
      - kind: retime
        speed: 1.1
        brightness: 0.02
      - kind: branding
        text: idolchat.app
        subtitle: Better than c.ai
"""

import random
from dataclasses import dataclass, field, fields, replace
from typing import Any


@dataclass(frozen=True)
class TransformSpec:
    """
    Common encoder knobs shared by every transform stage.

    Attributes:
        name: Stage tag, used in transient filenames and logs
        crf: x264 constant rate factor
        preset: x264 speed preset
        audio_bitrate: AAC bitrate for re-encoded audio
    """

    name: str = "transform"
    crf: int = 23
    preset: str = "ultrafast"
    audio_bitrate: str = "192k"


@dataclass(frozen=True)
class RetimeSpec(TransformSpec):
    """
    Speed/colour stage with optional background music bed.

    Attributes:
        speed: Playback speed factor (video setpts, audio atempo)
        brightness: eq brightness offset (-1.0..1.0)
        contrast: eq contrast multiplier
        saturation: eq saturation multiplier
        music_volume: Volume of the background music bed
        strip_metadata: Drop container metadata from the output
        jitter: Relative random jitter applied per run to speed/contrast/saturation
    """

    name: str = "retime"
    speed: float = 1.1
    brightness: float = 0.02
    contrast: float = 1.0
    saturation: float = 1.0
    music_volume: float = 0.05
    strip_metadata: bool = True
    jitter: float = 0.0

    def randomized(self, rng: random.Random | None = None) -> "RetimeSpec":
        """Return a copy with jitter applied, or self when jitter is zero."""
        if self.jitter <= 0:
            return self
        rng = rng or random.Random()

        def wobble(value: float) -> float:
            return round(value * (1 + rng.uniform(-self.jitter, self.jitter)), 4)

        return replace(
            self,
            speed=wobble(self.speed),
            contrast=wobble(self.contrast),
            saturation=wobble(self.saturation),
            jitter=0.0,
        )


@dataclass(frozen=True)
class BrandingSpec(TransformSpec):
    """
    Scale/pad to a fixed portrait frame and draw a fading text overlay.

    Attributes:
        text: Main overlay text
        subtitle: Smaller line under the main text
        x, y: Top-left of the text block in output pixels
        appear_at: Second at which the overlay starts fading in
        visible_for: Total overlay duration in seconds
        fade_in, fade_out: Fade durations in seconds
        font_size, subtitle_size: Font sizes in pixels
        bar_width, bar_color: Vertical accent bar left of the text
        text_color: Colour for both text lines
        target_width, target_height: Output frame geometry
        pad_color: Letterbox colour
        metadata: Container metadata tags written to the output
    """

    name: str = "branding"
    text: str = "idolchat.app"
    subtitle: str = "Better than c.ai"
    x: int = 70
    y: int = 150
    appear_at: float = 0.5
    visible_for: float = 5.0
    fade_in: float = 0.3
    fade_out: float = 0.3
    font_size: int = 64
    subtitle_size: int = 38
    bar_width: int = 8
    bar_color: str = "red"
    text_color: str = "white"
    target_width: int = 1080
    target_height: int = 1920
    pad_color: str = "black"
    metadata: dict[str, str] = field(default_factory=dict)


SPEC_KINDS: dict[str, type[TransformSpec]] = {
    "retime": RetimeSpec,
    "branding": BrandingSpec,
}


def spec_from_dict(data: dict[str, Any]) -> TransformSpec:
    """
    Build a TransformSpec from one YAML stage entry.

    Args:
        data: Mapping with a "kind" key plus spec fields

    Returns:
        Concrete TransformSpec instance

    Raises:
        ValueError: If kind is unknown or a field is not recognised
    """
    data = dict(data)
    kind = data.pop("kind", None)
    spec_cls = SPEC_KINDS.get(kind)
    if spec_cls is None:
        raise ValueError(f"Unknown transform kind: {kind!r}. Known: {sorted(SPEC_KINDS)}")

    known = {f.name for f in fields(spec_cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown fields for {kind} transform: {sorted(unknown)}")

    return spec_cls(**data)


def specs_from_config(config: dict[str, Any]) -> list[TransformSpec]:
    """Build the ordered transform chain from a loaded transforms.yaml."""
    return [spec_from_dict(entry) for entry in config.get("stages", [])]
