"""Call session orchestrator: placement, turn protocol, and teardown."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from urllib.parse import urlencode

from calls.errors import (
    CallInitiationError,
    CallNotFoundError,
    ProviderRequestError,
    TurnConflictError,
    UnsupportedOperationError,
)
from calls.security import generate_media_token
from calls.session import CallSession, SessionRegistry, TurnState, new_call_id
from calls.turns import END_CALL_SENTINEL, MediaTurnSource, RelayTurnSource, TurnSource
from config.settings import Settings, get_settings
from speech.base import BaseRecognizer, BaseSynthesizer
from telephony.media_bridge import FRAME_BYTES, FRAME_INTERVAL_SECONDS, MediaBridge
from telephony.providers.base import TelephonyProvider

LOGGER = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/webhooks/voice"
MEDIA_STREAM_PATH = "/api/media-stream"


@dataclass(frozen=True)
class InitiatedCall:
    call_id: str
    response: str


def to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


class CallOrchestrator:
    """Owns every live call session and the strict speak/listen protocol.

    Each session alternates AWAITING_AGENT -> AWAITING_HUMAN -> AWAITING_AGENT.
    Turn fulfilment is delegated to a turn source picked from the provider
    model; everything else (registry, lifecycle, cleanup) is shared.
    """

    def __init__(
        self,
        provider: TelephonyProvider,
        *,
        public_base_url: str,
        to_number: str,
        from_number: str,
        synthesizer: BaseSynthesizer | None = None,
        recognizer: BaseRecognizer | None = None,
        turn_timeout: float = 15.0,
        connection_timeout: float = 15.0,
        farewell_grace: float = 2.0,
        relay_hangup_delay: float = 5.0,
        frame_bytes: int = FRAME_BYTES,
        frame_interval: float = FRAME_INTERVAL_SECONDS,
    ) -> None:
        self._provider = provider
        self._public_base_url = public_base_url.rstrip("/")
        self._to_number = to_number
        self._from_number = from_number
        self._turn_timeout = turn_timeout
        self._farewell_grace = farewell_grace
        self._relay_hangup_delay = relay_hangup_delay
        self._registry = SessionRegistry()
        self._background: set[asyncio.Task] = set()
        # Relay sessions ended while their farewell still waits for a tool call.
        self._farewells: dict[str, CallSession] = {}

        self.bridge = MediaBridge(
            on_stop=self.cleanup,
            frame_bytes=frame_bytes,
            frame_interval=frame_interval,
        )
        self._turns: TurnSource
        if provider.relays_turns:
            self._turns = RelayTurnSource()
        else:
            if synthesizer is None or recognizer is None:
                raise ValueError(f"Provider {provider.name} streams media and needs a synthesizer and recognizer")
            self._turns = MediaTurnSource(
                self.bridge,
                synthesizer,
                recognizer,
                connection_timeout=connection_timeout,
            )

    @property
    def provider_name(self) -> str:
        return self._provider.name

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def webhook_url(self) -> str:
        return f"{self._public_base_url}{WEBHOOK_PATH}"

    def stream_url(self, session: CallSession) -> str:
        query = urlencode({"token": session.media_token})
        return f"{to_ws_url(self._public_base_url)}{MEDIA_STREAM_PATH}?{query}"

    def active_calls(self) -> list[str]:
        return [session.call_id for session in self._registry.sessions()]

    # Agent-facing turn API

    async def initiate_call(self, message: str) -> InitiatedCall:
        session = CallSession(
            call_id=new_call_id(),
            media_token=generate_media_token(),
            turns=self._turns,
        )
        await self._registry.add(session)
        LOGGER.info(
            "Initiating call %s via %s to %s from %s",
            session.call_id,
            self._provider.name,
            self._to_number,
            self._from_number,
        )

        try:
            await session.turns.start(session)
            try:
                provider_call_id = await self._provider.initiate_call(
                    self._to_number,
                    self._from_number,
                    self.webhook_url(),
                    opening_message=session.turns.opening_message(message),
                )
            except ProviderRequestError as exc:
                raise CallInitiationError(exc.detail) from exc

            if await self._registry.bind_provider_call_id(session.call_id, provider_call_id) is None:
                raise CallNotFoundError(f"Call {session.call_id} ended while it was being placed")

            async with self._turn(session):
                await session.turns.deliver_opening(session, message)
                session.turn_state = TurnState.AWAITING_HUMAN
                LOGGER.info("Listening for response call=%s", session.call_id)
                response = await session.turns.listen(session, self._turn_timeout)
                session.turn_state = TurnState.AWAITING_AGENT
        except (Exception, asyncio.CancelledError):
            LOGGER.exception("Error initiating call %s", session.call_id)
            if session.provider_call_id and not session.terminated:
                await self._hangup_quietly(session.provider_call_id)
            await self.cleanup(session.call_id)
            raise

        return InitiatedCall(call_id=session.call_id, response=response)

    async def continue_call(self, call_id: str, message: str) -> str:
        session = self._require_active(call_id)
        async with self._turn(session):
            await session.turns.say(session, message)
            session.turn_state = TurnState.AWAITING_HUMAN
            response = await session.turns.listen(session, self._turn_timeout)
            session.turn_state = TurnState.AWAITING_AGENT
        return response

    async def speak_only(self, call_id: str, message: str) -> None:
        session = self._require_active(call_id)
        if session.turns.relays_turns:
            raise UnsupportedOperationError(
                f"{self._provider.name} relays turns through its own agent; use continue_call"
            )
        async with self._turn(session):
            await session.turns.say(session, message)

    async def end_call(self, call_id: str, message: str) -> float:
        session = self._require_active(call_id)
        async with self._turn(session):
            if session.turns.defers_hangup:
                try:
                    await session.turns.say(session, message, final=True)
                finally:
                    duration = session.elapsed_seconds()
                    provider_call_id = session.provider_call_id
                    await self.cleanup(call_id)
                    if provider_call_id:
                        if not session.agent_turns.empty():
                            self._farewells[provider_call_id] = session
                        self._schedule_hangup(provider_call_id, self._relay_hangup_delay)
                LOGGER.info("Call %s ended after %.1fs", call_id, duration)
                return duration

            try:
                await session.turns.say(session, message, final=True)
                await asyncio.sleep(self._farewell_grace)
            finally:
                if session.provider_call_id and not session.terminated:
                    await self._hangup_quietly(session.provider_call_id)
                duration = session.elapsed_seconds()
                await self.cleanup(call_id)

        LOGGER.info("Call %s ended after %.1fs", call_id, duration)
        return duration

    # Provider-side events

    async def handle_call_answered(self, provider_call_id: str) -> None:
        session = self._registry.find_by_provider_call_id(provider_call_id)
        if session is None:
            return
        async with session.webhook_lock:
            if session.terminated:
                return
            LOGGER.info("Call answered call=%s; starting media stream", session.call_id)
            await self._provider.start_streaming(provider_call_id, self.stream_url(session))

    async def handle_call_ended(self, provider_call_id: str) -> None:
        session = self._registry.find_by_provider_call_id(provider_call_id)
        if session is None:
            return
        LOGGER.info("Provider reported hangup call=%s", session.call_id)
        await self.cleanup(session.call_id)

    def stream_url_for(self, provider_call_id: str) -> str | None:
        session = self._registry.find_by_provider_call_id(provider_call_id)
        if session is None or session.terminated:
            return None
        return self.stream_url(session)

    async def relay_human_turn(self, provider_call_id: str, utterance: str) -> str | None:
        """Deliver a relayed utterance and return the agent's reply.

        An ended call whose farewell is still undelivered answers with that
        farewell. Returns None when no live relay session owns the provider
        call id.
        """

        session = self._registry.find_by_provider_call_id(provider_call_id)
        if session is None:
            return self._take_farewell(provider_call_id)
        if not isinstance(session.turns, RelayTurnSource):
            return None
        async with session.webhook_lock:
            if session.terminated:
                return self._take_farewell(provider_call_id) or END_CALL_SENTINEL
            LOGGER.info("Relayed utterance call=%s: %s", session.call_id, utterance)
            return await session.turns.exchange(session, utterance)

    # Media socket

    def authorize_media(self, token: str | None) -> CallSession | None:
        session = self._registry.find_by_media_token(token)
        if session is None or session.terminated:
            return None
        return session

    def attach_media(self, session: CallSession, channel) -> None:
        session.media_channel = channel
        session.connected.set()
        LOGGER.info("Media connected call=%s", session.call_id)

    def detach_media(self, session: CallSession, channel) -> None:
        if session.media_channel is channel:
            session.media_channel = None
            session.connected.clear()
            LOGGER.info("Media disconnected call=%s", session.call_id)

    # Lifecycle

    async def cleanup(self, call_id: str) -> None:
        """Tear a session down. Idempotent and never raises."""

        session = await self._registry.remove(call_id)
        if session is None or session.terminated:
            return
        session.terminated = True
        session.closed.set()

        await session.turns.close(session)
        channel, session.media_channel = session.media_channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception:
                LOGGER.debug("Ignoring error while closing media socket", exc_info=True)
        LOGGER.info("Cleaned up call %s", call_id)

    async def shutdown(self) -> None:
        for session in self._registry.sessions():
            if session.provider_call_id:
                await self._hangup_quietly(session.provider_call_id)
            await self.cleanup(session.call_id)
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._farewells.clear()
        await self._provider.aclose()

    def _require_active(self, call_id: str) -> CallSession:
        session = self._registry.get(call_id)
        if session is None or session.terminated:
            raise CallNotFoundError(f"Call {call_id} is not active")
        return session

    @asynccontextmanager
    async def _turn(self, session: CallSession) -> AsyncIterator[None]:
        if session.turn_lock.locked():
            raise TurnConflictError(f"Call {session.call_id} is already waiting on a turn")
        async with session.turn_lock:
            yield

    async def _hangup_quietly(self, provider_call_id: str) -> None:
        try:
            await self._provider.hangup(provider_call_id)
        except Exception:
            LOGGER.exception("Hangup failed for provider call %s", provider_call_id)

    def _take_farewell(self, provider_call_id: str) -> str | None:
        session = self._farewells.pop(provider_call_id, None)
        if session is None:
            return None
        try:
            return session.agent_turns.get_nowait()
        except asyncio.QueueEmpty:
            return END_CALL_SENTINEL

    def _schedule_hangup(self, provider_call_id: str, delay: float) -> None:
        async def _deferred() -> None:
            await asyncio.sleep(delay)
            self._farewells.pop(provider_call_id, None)
            await self._hangup_quietly(provider_call_id)

        task = asyncio.create_task(_deferred())
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def build_orchestrator(settings: Settings | None = None) -> CallOrchestrator:
    """Wire the configured provider and speech engines into an orchestrator."""

    from speech.recognizer import build_recognizer
    from speech.tts import build_synthesizer
    from telephony.providers.factory import build_telephony_provider

    settings = settings or get_settings()
    if not settings.public_base_url:
        raise ValueError("PUBLIC_BASE_URL is required for provider callbacks")
    if not settings.user_phone_number:
        raise ValueError("USER_PHONE_NUMBER is not configured")

    provider = build_telephony_provider(settings)
    synthesizer = recognizer = None
    if not provider.relays_turns:
        synthesizer = build_synthesizer(settings)
        recognizer = build_recognizer(settings)

    return CallOrchestrator(
        provider,
        public_base_url=settings.public_base_url,
        to_number=settings.user_phone_number,
        from_number=settings.phone_number or "",
        synthesizer=synthesizer,
        recognizer=recognizer,
        turn_timeout=settings.turn_timeout_seconds,
        connection_timeout=settings.connection_timeout_seconds,
        farewell_grace=settings.farewell_grace_seconds,
        relay_hangup_delay=settings.relay_hangup_delay_seconds,
        frame_bytes=settings.media_frame_bytes,
        frame_interval=settings.media_frame_interval_ms / 1000,
    )
