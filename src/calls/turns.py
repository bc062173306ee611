"""Turn sources: how a session speaks to the human and hears back.

`MediaTurnSource` drives providers that stream raw audio (we synthesize and
recognize speech ourselves). `RelayTurnSource` drives providers that run their
own voice agent and relay each human utterance through a tool-call webhook.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any

from calls.errors import CallNotFoundError, ConnectionTimeoutError

if TYPE_CHECKING:  # pragma: no cover
    from calls.session import CallSession
    from speech.base import BaseRecognizer, BaseSynthesizer
    from telephony.media_bridge import MediaBridge

LOGGER = logging.getLogger(__name__)

END_CALL_SENTINEL = "[END_CALL]"


async def race_closed(
    session: CallSession,
    awaitable: Awaitable[Any],
    timeout: float | None,
) -> tuple[bool, Any]:
    """Await `awaitable` until it completes, the session closes, or `timeout` elapses.

    Returns `(True, result)` when the awaitable finished first, otherwise
    `(False, None)`. The loser is cancelled.
    """

    task = asyncio.ensure_future(awaitable)
    closed = asyncio.ensure_future(session.closed.wait())
    try:
        await asyncio.wait({task, closed}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (task, closed):
            if not pending.done():
                pending.cancel()

    if task.done() and not task.cancelled():
        return True, task.result()
    return False, None


class TurnSource(ABC):
    relays_turns: bool = False
    defers_hangup: bool = False

    def opening_message(self, message: str) -> str | None:
        """Text handed to the provider when the call is placed, if any."""

        return None

    async def start(self, session: CallSession) -> None:
        """Prepare per-session resources before the call is placed."""

    @abstractmethod
    async def deliver_opening(self, session: CallSession, message: str) -> None:
        """Get the opening message to the human."""

    @abstractmethod
    async def say(self, session: CallSession, message: str, *, final: bool = False) -> None:
        """Deliver the agent's next utterance."""

    @abstractmethod
    async def listen(self, session: CallSession, timeout: float) -> str:
        """Wait for the human's next utterance; "" on timeout."""

    async def close(self, session: CallSession) -> None:
        """Release per-session resources. Must not raise."""


class MediaTurnSource(TurnSource):
    """Speaks with TTS over the media socket and listens with streaming STT."""

    def __init__(
        self,
        bridge: MediaBridge,
        synthesizer: BaseSynthesizer,
        recognizer: BaseRecognizer,
        *,
        connection_timeout: float = 15.0,
    ) -> None:
        self._bridge = bridge
        self._synthesizer = synthesizer
        self._recognizer = recognizer
        self._connection_timeout = connection_timeout

    async def start(self, session: CallSession) -> None:
        speech_session = self._recognizer.create_session()
        await speech_session.start()
        session.speech_session = speech_session

    async def wait_for_connection(self, session: CallSession) -> None:
        if session.media_channel is not None:
            return
        connected, _ = await race_closed(session, session.connected.wait(), self._connection_timeout)
        if connected:
            return
        if session.terminated:
            raise CallNotFoundError(f"Call {session.call_id} ended before media connected")
        raise ConnectionTimeoutError(
            f"Timeout waiting for media connection after {self._connection_timeout:.0f}s"
        )

    async def deliver_opening(self, session: CallSession, message: str) -> None:
        audio = await self._synthesizer.synthesize(message)
        LOGGER.info("Waiting for media connection call=%s", session.call_id)
        await self.wait_for_connection(session)
        await self._bridge.send_audio(session, audio)

    async def say(self, session: CallSession, message: str, *, final: bool = False) -> None:
        audio = await self._synthesizer.synthesize(message)
        await self._bridge.send_audio(session, audio)

    async def listen(self, session: CallSession, timeout: float) -> str:
        speech_session = session.speech_session
        if speech_session is None:
            return ""
        finished, transcript = await race_closed(
            session, speech_session.wait_for_transcript(timeout), None
        )
        return transcript if finished else ""

    async def close(self, session: CallSession) -> None:
        speech_session, session.speech_session = session.speech_session, None
        if speech_session is None:
            return
        try:
            speech_session.close()
        except Exception:
            LOGGER.debug("Ignoring error while closing speech session", exc_info=True)


class RelayTurnSource(TurnSource):
    """Exchanges turns with the provider's voice agent through one-slot queues.

    `human_turns` is filled by the tool-call webhook, `agent_turns` by the
    orchestrator; the webhook response carries the agent's reply back.
    """

    relays_turns = True
    defers_hangup = True

    def opening_message(self, message: str) -> str | None:
        return message

    async def deliver_opening(self, session: CallSession, message: str) -> None:
        # The provider's agent speaks the opening line as its first message.
        return None

    async def say(self, session: CallSession, message: str, *, final: bool = False) -> None:
        text = f"{message} {END_CALL_SENTINEL}" if final else message
        # A reply no tool call picked up (the human stayed silent) is superseded.
        if session.agent_turns.full():
            stale = session.agent_turns.get_nowait()
            LOGGER.warning("Replacing undelivered reply on call=%s: %s", session.call_id, stale)
        session.agent_turns.put_nowait(text)

    async def listen(self, session: CallSession, timeout: float) -> str:
        finished, utterance = await race_closed(session, session.human_turns.get(), timeout)
        if finished:
            return utterance
        if not session.terminated:
            LOGGER.info("Timeout waiting for relayed utterance call=%s", session.call_id)
        return ""

    async def exchange(self, session: CallSession, utterance: str) -> str:
        """Hand one human utterance over and wait for the agent's reply.

        Callers serialize on `session.webhook_lock`, so duplicate deliveries
        queue up rather than overwrite each other.
        """

        queued, _ = await race_closed(session, session.human_turns.put(utterance), None)
        if not queued:
            return END_CALL_SENTINEL

        answered, reply = await race_closed(session, session.agent_turns.get(), None)
        if answered:
            return reply
        # The farewell may land in the slot just as the session closes.
        try:
            return session.agent_turns.get_nowait()
        except asyncio.QueueEmpty:
            return END_CALL_SENTINEL
