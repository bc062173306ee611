"""Call session state and the registry that indexes it."""

from __future__ import annotations

import asyncio
import enum
import secrets
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from calls.security import tokens_match

if TYPE_CHECKING:  # pragma: no cover
    from fastapi import WebSocket

    from calls.turns import TurnSource
    from speech.base import RecognitionSession


class TurnState(str, enum.Enum):
    AWAITING_AGENT = "awaiting_agent"
    AWAITING_HUMAN = "awaiting_human"


def new_call_id() -> str:
    return f"call-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def _slot() -> asyncio.Queue[str]:
    return asyncio.Queue(maxsize=1)


@dataclass(slots=True, eq=False)
class CallSession:
    """One logical phone conversation, from placement to cleanup."""

    call_id: str
    media_token: str
    turns: TurnSource
    provider_call_id: str | None = None
    media_channel: WebSocket | None = None
    speech_session: RecognitionSession | None = None
    stream_sid: str | None = None
    started_at: float = field(default_factory=time.monotonic)
    terminated: bool = False
    turn_state: TurnState = TurnState.AWAITING_AGENT

    # Relay providers: one pending utterance per direction.
    human_turns: asyncio.Queue[str] = field(default_factory=_slot)
    agent_turns: asyncio.Queue[str] = field(default_factory=_slot)

    connected: asyncio.Event = field(default_factory=asyncio.Event)
    closed: asyncio.Event = field(default_factory=asyncio.Event)
    webhook_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at


class SessionRegistry:
    """In-memory registry of live sessions with provider-id and token indices.

    All three indices are mutated together under one lock, so a secondary entry
    never outlives its session. Reads are lock-free.

    Note: This is a single-process registry. Media sockets and webhooks must be
    routed to the worker that placed the call.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, CallSession] = {}
        self._by_provider_call_id: dict[str, str] = {}
        self._by_media_token: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions

    async def add(self, session: CallSession) -> None:
        async with self._lock:
            if session.call_id in self._sessions:
                raise ValueError(f"Duplicate call id: {session.call_id}")
            if session.media_token in self._by_media_token:
                raise ValueError("Media token already issued to a live session")
            self._sessions[session.call_id] = session
            self._by_media_token[session.media_token] = session.call_id

    async def bind_provider_call_id(self, call_id: str, provider_call_id: str) -> CallSession | None:
        async with self._lock:
            session = self._sessions.get(call_id)
            if session is None:
                return None
            owner = self._by_provider_call_id.get(provider_call_id)
            if owner is not None and owner != call_id:
                raise ValueError(f"Provider call id {provider_call_id} already bound to {owner}")
            if session.provider_call_id and session.provider_call_id != provider_call_id:
                self._by_provider_call_id.pop(session.provider_call_id, None)
            session.provider_call_id = provider_call_id
            self._by_provider_call_id[provider_call_id] = call_id
            return session

    async def remove(self, call_id: str) -> CallSession | None:
        async with self._lock:
            session = self._sessions.pop(call_id, None)
            if session is None:
                return None
            self._by_media_token.pop(session.media_token, None)
            if session.provider_call_id:
                self._by_provider_call_id.pop(session.provider_call_id, None)
            return session

    def get(self, call_id: str) -> CallSession | None:
        return self._sessions.get(call_id)

    def find_by_provider_call_id(self, provider_call_id: str) -> CallSession | None:
        call_id = self._by_provider_call_id.get(provider_call_id)
        if call_id is None:
            return None
        return self._sessions.get(call_id)

    def find_by_media_token(self, token: str | None) -> CallSession | None:
        if not token:
            return None
        call_id = self._by_media_token.get(token)
        session = self._sessions.get(call_id) if call_id else None
        if session is None or not tokens_match(session.media_token, token):
            return None
        return session

    def sessions(self) -> list[CallSession]:
        return list(self._sessions.values())

    def index_sizes(self) -> tuple[int, int, int]:
        return len(self._sessions), len(self._by_provider_call_id), len(self._by_media_token)
