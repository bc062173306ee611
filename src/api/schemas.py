"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class TurnRequest(BaseModel):
    message: str = Field(min_length=1, description="Text the agent says to the human.")


class TurnResponse(BaseModel):
    call_id: str
    response: str = Field(description="The human's reply; empty when the turn timed out.")


class SpeakResponse(BaseModel):
    call_id: str
    status: str = "spoken"


class EndCallResponse(BaseModel):
    call_id: str
    duration_seconds: float


class HealthResponse(BaseModel):
    status: str = "ok"
    provider: str
    active_calls: list[str]
