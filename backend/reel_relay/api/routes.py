"""
HTTP API routes for the republishing pipeline.

Provides endpoints for:
- Accepting inbound chat messages and starting sessions
- Listing active sessions
- Refreshing Instagram long-lived tokens
"""

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from reel_relay.config import Settings
from reel_relay.models.schemas import InboundRequest, MessageEvent, MessageResponse
from reel_relay.services.clients import CredentialStoreError
from reel_relay.services.intake import MessageParseError, is_candidate, parse_message
from reel_relay.services.pipeline import SessionOrchestrator
from reel_relay.services.pipeline.orchestrator import BUSY_MESSAGE

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["pipeline"])


def get_orchestrator(request: Request) -> SessionOrchestrator:
    return request.app.state.orchestrator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def run_session(
    orchestrator: SessionOrchestrator,
    inbound: InboundRequest,
    session_id: str,
) -> None:
    """
    Background task running one admitted session.

    The orchestrator reports and cleans up on its own; this only makes
    sure nothing escapes into the server's task machinery.
    """
    try:
        await orchestrator.run(inbound, session_id)
    except Exception:
        logger.exception(f"Session {session_id} crashed")


@router.post("/messages", response_model=MessageResponse)
async def receive_message(
    event: MessageEvent,
    request: Request,
    background_tasks: BackgroundTasks,
) -> MessageResponse:
    """
    Accept an inbound chat message.

    Ignored messages return accepted=false with a reason. Accepted
    messages start a session in the background.

    Raises:
        429: All session slots are taken
    """
    settings = get_app_settings(request)
    orchestrator = get_orchestrator(request)

    if event.author_is_bot:
        return MessageResponse(accepted=False, reason="bot message")
    if settings.channel_id and event.channel_id != settings.channel_id:
        return MessageResponse(accepted=False, reason="wrong channel")
    if not is_candidate(event.content):
        return MessageResponse(accepted=False, reason="no supported link")

    try:
        inbound = parse_message(event.content)
    except MessageParseError as e:
        logger.info(f"Ignoring message: {e}")
        return MessageResponse(accepted=False, reason=str(e))

    session_id = orchestrator.gate.try_admit()
    if session_id is None:
        await orchestrator.report_busy()
        raise HTTPException(status_code=429, detail=BUSY_MESSAGE)

    background_tasks.add_task(run_session, orchestrator, inbound, session_id)

    logger.info(f"Started session {session_id}: {inbound.source_url}")
    return MessageResponse(accepted=True, session_id=session_id)


@router.get("/sessions", response_model=list[str])
async def list_sessions(request: Request) -> list[str]:
    """
    List active session ids.

    Returns:
        Ids currently holding a gate slot
    """
    return get_orchestrator(request).gate.active


@router.post("/accounts/instagram/refresh", response_model=dict[str, int | None])
async def refresh_instagram_tokens(request: Request) -> dict[str, int | None]:
    """
    Refresh every Instagram long-lived token.

    Returns:
        Account name -> new validity in seconds (null when refresh failed)

    Raises:
        503: Refreshed tokens could not be persisted
    """
    try:
        return await get_orchestrator(request).refresh_instagram_tokens()
    except CredentialStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
