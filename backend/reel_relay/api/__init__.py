"""API routes for the republishing pipeline."""

from reel_relay.api import routes

__all__ = ["routes"]
