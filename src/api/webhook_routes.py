"""Provider-facing endpoints.

This module provides:
- The single voice webhook every provider posts call events to.
- The media-stream websocket direct-media providers connect to.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, Response, WebSocket, status
from fastapi.responses import JSONResponse

from api.dependencies import get_orchestrator, get_webhook_handler

if TYPE_CHECKING:  # pragma: no cover
    from calls.orchestrator import CallOrchestrator
    from telephony.webhooks import WebhookHandler

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["telephony"])


@router.post("/webhooks/voice")
async def voice_webhook(
    request: Request,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> Response:
    # Provider signatures are not verified.
    return await handler.handle(request, orchestrator)


@router.websocket("/media-stream")
async def media_stream(
    websocket: WebSocket,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
) -> None:
    session = orchestrator.authorize_media(websocket.query_params.get("token"))
    if session is None:
        LOGGER.warning("Rejected media connection with unknown or stale token")
        await websocket.send_denial_response(
            JSONResponse({"detail": "Unauthorized"}, status_code=status.HTTP_401_UNAUTHORIZED)
        )
        return

    await websocket.accept()
    orchestrator.attach_media(session, websocket)
    try:
        await orchestrator.bridge.serve(session, websocket)
    finally:
        orchestrator.detach_media(session, websocket)
