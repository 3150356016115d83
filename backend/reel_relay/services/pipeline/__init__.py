"""
Session pipeline.

This package contains:
- orchestrator: stage sequencing, fan-out and cleanup for one session
- progress_reporter: evolving status embed and notices per session

Example:
    from reel_relay.services.pipeline import SessionOrchestrator, SessionError

    orchestrator = SessionOrchestrator.from_settings(settings, gate, store, channel)
    outcome = await orchestrator.run(request)
"""

from .orchestrator import (
    SessionError,
    SessionOrchestrator,
)
from .progress_reporter import ProgressReporter

__all__ = [
    "SessionOrchestrator",
    "SessionError",
    "ProgressReporter",
]
