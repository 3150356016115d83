"""
Logging configuration for the application.

Levels can be tuned per pipeline concern via environment variables:
- LOG_LEVEL: Global log level (default: INFO)
- LOG_FORMAT: Log format - simple or structured (default: structured)
- LOG_LEVEL_<CONCERN>: Override for one concern (e.g., LOG_LEVEL_INSTAGRAM=DEBUG)

A concern groups our own loggers with the third-party loggers that do
its I/O, so LOG_LEVEL_YOUTUBE=DEBUG also shows googleapiclient traffic.
"""

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reel_relay.config import Settings

PACKAGE = "reel_relay"

# Concern (settings field suffix) -> loggers it controls
CONCERN_LOGGERS: dict[str, tuple[str, ...]] = {
    "session": (
        "reel_relay.services.pipeline",
        "reel_relay.services.gate",
        "reel_relay.services.file_store",
        "reel_relay.services.intake",
        "reel_relay.api",
    ),
    "media": (
        "reel_relay.services.media_transformer",
        "reel_relay.services.clients.source_client",
        "reel_relay.utils.process_utils",
        "reel_relay.utils.media_utils",
    ),
    "instagram": (
        "reel_relay.services.clients.instagram_publisher",
        "reel_relay.services.clients.caption_extractor",
    ),
    "youtube": (
        "reel_relay.services.clients.youtube_publisher",
        "googleapiclient",
    ),
    "ai": (
        "reel_relay.services.clients.caption_generator",
        "reel_relay.services.captions",
        "google_genai",
    ),
    "storage": (
        "reel_relay.services.clients.storage_client",
        "reel_relay.services.clients.credential_store",
    ),
    "status": (
        "reel_relay.services.status_channel",
        "reel_relay.services.pipeline.progress_reporter",
    ),
}

# Quieted to WARNING unless a concern override says otherwise
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "googleapiclient",
    "googleapiclient.discovery_cache",
    "google_genai",
    "uvicorn.access",
)

# Display labels for the structured format, longest prefix first
LOGGER_LABELS = (
    ("reel_relay.services.clients.instagram_publisher", "instagram"),
    ("reel_relay.services.clients.youtube_publisher", "youtube"),
    ("reel_relay.services.clients.caption_generator", "gemini"),
    ("reel_relay.services.clients.storage_client", "storage"),
    ("reel_relay.services.pipeline.orchestrator", "session"),
    ("reel_relay.services.pipeline.progress_reporter", "progress"),
)


def short_name(name: str) -> str:
    """Compact logger label: known components by role, the rest without the package path."""
    for prefix, label in LOGGER_LABELS:
        if name == prefix or name.startswith(prefix + "."):
            return label
    if name.startswith(f"{PACKAGE}.services.clients."):
        return name.rsplit(".", 1)[-1]
    if name.startswith(f"{PACKAGE}.services."):
        return name[len(f"{PACKAGE}.services."):]
    if name.startswith(f"{PACKAGE}."):
        return name[len(f"{PACKAGE}."):]
    return name


class StructuredFormatter(logging.Formatter):
    """
    Structured log formatter for easy parsing.

    Format: timestamp | level | component | message
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        message = (
            f"{timestamp} | "
            f"{record.levelname:8} | "
            f"{short_name(record.name):18} | "
            f"{record.getMessage()}"
        )
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def concern_levels(settings: "Settings") -> dict[str, int]:
    """Logger name -> level for every concern with an override set."""
    levels = {}
    for concern, names in CONCERN_LOGGERS.items():
        level_str = getattr(settings, f"log_level_{concern}", None)
        if not level_str:
            continue
        level = logging.getLevelName(level_str.upper())
        if not isinstance(level, int):
            logging.getLogger(__name__).warning(
                f"Ignoring invalid LOG_LEVEL_{concern.upper()}={level_str!r}"
            )
            continue
        for name in names:
            levels[name] = level
    return levels


def setup_logging(settings: "Settings") -> None:
    """
    Configure logging based on settings.

    Args:
        settings: Application settings with log configuration
    """
    root_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "structured":
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    root_logger.handlers.clear()

    # Handler passes everything; loggers decide
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name, level in concern_levels(settings).items():
        logging.getLogger(name).setLevel(level)
