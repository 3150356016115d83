"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

from reel_relay.models.schemas import InstagramAccount, YouTubeAccount


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Inbound / outbound channel
    channel_id: str = ""
    status_webhook_url: str | None = None

    # Publishing targets (JSON arrays in the environment)
    instagram_accounts: list[InstagramAccount] = []
    youtube_accounts: list[YouTubeAccount] = []
    youtube_client_id: str | None = None
    youtube_client_secret: str | None = None
    youtube_token_uri: str = "https://oauth2.googleapis.com/token"
    instagram_graph_url: str = "https://graph.instagram.com"

    # Remote storage (GitHub contents API)
    github_token: str | None = None
    github_owner: str | None = None
    github_repo: str | None = None
    github_branch: str = "main"
    github_api_url: str = "https://api.github.com"
    storage_max_mb: float = 70.0  # base64 overhead keeps the encoded body under 100MB

    # Source resolution
    source_resolver_url: str = "https://igdl-five.vercel.app/api/video"
    source_max_mb: float = 100.0

    # AI captions
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.0-flash"
    ai_max_video_mb: float = 20.0
    ai_trim_seconds: int = 10
    ai_requests_per_minute: int = 10
    ai_timeout: float = 30.0
    ai_processing_timeout: float = 60.0

    # Pipeline
    max_concurrent_sessions: int = 3
    memory_ceiling_mb: int = 800
    memory_warning_mb: int = 500
    temp_dir: Path = Path("videos")
    orphan_max_age_seconds: float = 600.0
    instagram_cooldown_seconds: float = 30.0
    youtube_cooldown_seconds: float = 10.0
    add_branding: bool = True
    config_dir: Path = Path("config")
    prompts_dir: Path | None = None  # External prompts directory (overrides built-in)
    credentials_env_file: Path = Path(".env")

    # External binaries
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    font_file: Path | None = None
    background_music: Path | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-concern log levels (optional overrides, see logging_config.CONCERN_LOGGERS)
    log_level_session: str | None = None
    log_level_media: str | None = None
    log_level_instagram: str | None = None
    log_level_youtube: str | None = None
    log_level_ai: str | None = None
    log_level_storage: str | None = None
    log_level_status: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def ai_enabled(self) -> bool:
        """True when an AI caption backend is configured."""
        return bool(self.gemini_api_key)

    @property
    def storage_configured(self) -> bool:
        """True when all remote storage coordinates are present."""
        return bool(self.github_token and self.github_owner and self.github_repo)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_prompt(
    platform: str,
    component: str,
    settings: Settings | None = None,
) -> str:
    """
    Load a prompt template with external folder priority.

    Lookup order (first found wins):
    1. prompts_dir/{platform}/{component}.md (external)
    2. config_dir/prompts/{platform}/{component}.md (built-in)

    Args:
        platform: Caption target ("instagram", "youtube")
        component: Prompt component ("system", "user")
        settings: Optional settings instance

    Returns:
        Prompt template content

    Raises:
        FileNotFoundError: If no matching prompt file is found
    """
    if settings is None:
        settings = get_settings()

    paths_to_check: list[Path] = []

    if settings.prompts_dir and settings.prompts_dir.exists():
        paths_to_check.append(settings.prompts_dir / platform / f"{component}.md")

    paths_to_check.append(settings.config_dir / "prompts" / platform / f"{component}.md")

    for path in paths_to_check:
        if path.exists():
            return path.read_text(encoding="utf-8")

    raise FileNotFoundError(
        f"Prompt not found: platform={platform}, component={component}. "
        f"Checked paths: {[str(p) for p in paths_to_check]}"
    )


def _load_yaml(name: str, settings: Settings | None) -> dict:
    if settings is None:
        settings = get_settings()

    path = settings.config_dir / name
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_transforms_config(settings: Settings | None = None) -> dict:
    """
    Load the media transform chain from config/transforms.yaml.

    Args:
        settings: Optional settings instance

    Returns:
        Dictionary with a "stages" list, one entry per transform stage
    """
    return _load_yaml("transforms.yaml", settings)


def load_captions_config(settings: Settings | None = None) -> dict:
    """
    Load caption templates, hashtag sets and comment lines from config/captions.yaml.

    Args:
        settings: Optional settings instance

    Returns:
        Captions configuration dictionary
    """
    return _load_yaml("captions.yaml", settings)
