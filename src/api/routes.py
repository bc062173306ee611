"""Agent-facing turn API: place a call, take turns, end it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Header, HTTPException

from api.dependencies import get_orchestrator
from api.schemas import EndCallResponse, HealthResponse, SpeakResponse, TurnRequest, TurnResponse
from config.settings import get_settings

if TYPE_CHECKING:  # pragma: no cover
    from calls.orchestrator import CallOrchestrator

LOGGER = logging.getLogger(__name__)


def require_api_key(x_api_key: Annotated[str | None, Header()] = None) -> None:
    settings = get_settings()
    if settings.agent_api_key and x_api_key != settings.agent_api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")


router = APIRouter()
calls_router = APIRouter(prefix="/calls", tags=["calls"], dependencies=[Depends(require_api_key)])


@calls_router.post("", response_model=TurnResponse)
async def initiate_call(
    payload: TurnRequest,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
) -> TurnResponse:
    result = await orchestrator.initiate_call(payload.message)
    return TurnResponse(call_id=result.call_id, response=result.response)


@calls_router.post("/{call_id}/continue", response_model=TurnResponse)
async def continue_call(
    call_id: str,
    payload: TurnRequest,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
) -> TurnResponse:
    response = await orchestrator.continue_call(call_id, payload.message)
    return TurnResponse(call_id=call_id, response=response)


@calls_router.post("/{call_id}/speak", response_model=SpeakResponse)
async def speak_only(
    call_id: str,
    payload: TurnRequest,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
) -> SpeakResponse:
    await orchestrator.speak_only(call_id, payload.message)
    return SpeakResponse(call_id=call_id)


@calls_router.post("/{call_id}/end", response_model=EndCallResponse)
async def end_call(
    call_id: str,
    payload: TurnRequest,
    orchestrator: CallOrchestrator = Depends(get_orchestrator),
) -> EndCallResponse:
    duration = await orchestrator.end_call(call_id, payload.message)
    return EndCallResponse(call_id=call_id, duration_seconds=round(duration, 1))


@router.get("/health", response_model=HealthResponse)
async def health(orchestrator: CallOrchestrator = Depends(get_orchestrator)) -> HealthResponse:
    return HealthResponse(provider=orchestrator.provider_name, active_calls=orchestrator.active_calls())


router.include_router(calls_router)
