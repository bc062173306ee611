"""Test doubles for providers, speech engines, sockets, and the orchestrator."""

from __future__ import annotations

import asyncio

from calls.orchestrator import CallOrchestrator, InitiatedCall
from calls.session import CallSession
from speech.base import BaseRecognizer, BaseSynthesizer, RecognitionSession
from telephony.media_bridge import MediaBridge
from telephony.providers.base import TelephonyProvider

PUBLIC_BASE_URL = "https://voice.example.test"


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


class FakeProvider(TelephonyProvider):
    def __init__(self, name: str = "twilio", *, relays_turns: bool = False, call_id: str = "CA123") -> None:
        self.name = name
        self.relays_turns = relays_turns
        self.call_id = call_id
        self.fail_with: Exception | None = None
        self.placed: list[dict] = []
        self.hangups: list[str] = []
        self.streams: list[tuple[str, str]] = []
        self.closed = False

    async def initiate_call(self, to, from_, webhook_url, opening_message=None) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.placed.append(
            {"to": to, "from": from_, "webhook_url": webhook_url, "opening_message": opening_message}
        )
        return self.call_id

    async def hangup(self, provider_call_id: str) -> None:
        self.hangups.append(provider_call_id)

    async def start_streaming(self, provider_call_id: str, stream_url: str) -> None:
        self.streams.append((provider_call_id, stream_url))

    async def aclose(self) -> None:
        self.closed = True


class FakeSynthesizer(BaseSynthesizer):
    def __init__(self, audio_bytes: int = 3200) -> None:
        self.audio_bytes = audio_bytes
        self.texts: list[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.texts.append(text)
        return b"\xff" * self.audio_bytes


class FakeRecognitionSession(RecognitionSession):
    def __init__(self) -> None:
        super().__init__()
        self.started = False
        self.audio: list[bytes] = []

    async def start(self) -> None:
        self.started = True

    def send_audio(self, audio: bytes) -> None:
        self.audio.append(audio)

    @property
    def waiting(self) -> bool:
        return self._waiter is not None and not self._waiter.done()

    def hear(self, transcript: str) -> None:
        self._emit_final(transcript)


class FakeRecognizer(BaseRecognizer):
    def __init__(self) -> None:
        self.sessions: list[FakeRecognitionSession] = []

    def create_session(self) -> FakeRecognitionSession:
        session = FakeRecognitionSession()
        self.sessions.append(session)
        return session


class FakeWebSocket:
    def __init__(self, fail_after: int | None = None) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.fail_after = fail_after

    async def send_text(self, text: str) -> None:
        if self.closed or (self.fail_after is not None and len(self.sent) >= self.fail_after):
            raise RuntimeError("socket closed")
        self.sent.append(text)

    async def close(self, code: int = 1000) -> None:
        self.closed = True


def make_orchestrator(
    provider: FakeProvider | None = None,
    *,
    synthesizer: FakeSynthesizer | None = None,
    recognizer: FakeRecognizer | None = None,
    turn_timeout: float = 1.0,
    connection_timeout: float = 1.0,
    relay_hangup_delay: float = 0.0,
) -> CallOrchestrator:
    provider = provider or FakeProvider()
    if not provider.relays_turns:
        synthesizer = synthesizer or FakeSynthesizer()
        recognizer = recognizer or FakeRecognizer()
    return CallOrchestrator(
        provider,
        public_base_url=PUBLIC_BASE_URL,
        to_number="+15550001111",
        from_number="+15550002222",
        synthesizer=synthesizer,
        recognizer=recognizer,
        turn_timeout=turn_timeout,
        connection_timeout=connection_timeout,
        farewell_grace=0.0,
        relay_hangup_delay=relay_hangup_delay,
        frame_interval=0.0,
    )


class RecordingOrchestrator:
    """Stands in for CallOrchestrator behind the HTTP layer."""

    provider_name = "twilio"

    def __init__(self) -> None:
        self.answered: list[str] = []
        self.ended: list[str] = []
        self.relayed: list[tuple[str, str]] = []
        self.stream_urls: dict[str, str] = {}
        self.live_relay_calls: set[str] = set()
        self.errors: dict[str, Exception] = {}
        self.session: CallSession | None = None
        self.attached = None
        self.detached = False
        self.bridge = MediaBridge(on_stop=self._on_stop, frame_interval=0.0)

    def _raise_if_configured(self, operation: str) -> None:
        if operation in self.errors:
            raise self.errors[operation]

    async def initiate_call(self, message: str) -> InitiatedCall:
        self._raise_if_configured("initiate_call")
        return InitiatedCall(call_id="call-1", response=f"heard {message}")

    async def continue_call(self, call_id: str, message: str) -> str:
        self._raise_if_configured("continue_call")
        return "Fine thanks"

    async def speak_only(self, call_id: str, message: str) -> None:
        self._raise_if_configured("speak_only")

    async def end_call(self, call_id: str, message: str) -> float:
        self._raise_if_configured("end_call")
        return 12.34

    def active_calls(self) -> list[str]:
        return ["call-1"]

    async def handle_call_answered(self, provider_call_id: str) -> None:
        self.answered.append(provider_call_id)

    async def handle_call_ended(self, provider_call_id: str) -> None:
        self.ended.append(provider_call_id)

    def stream_url_for(self, provider_call_id: str) -> str | None:
        return self.stream_urls.get(provider_call_id)

    async def relay_human_turn(self, provider_call_id: str, utterance: str) -> str | None:
        self.relayed.append((provider_call_id, utterance))
        if provider_call_id not in self.live_relay_calls:
            return None
        return f"reply to {utterance}"

    def authorize_media(self, token: str | None) -> CallSession | None:
        if self.session is not None and token == self.session.media_token:
            return self.session
        return None

    def attach_media(self, session: CallSession, channel) -> None:
        session.media_channel = channel
        self.attached = channel

    def detach_media(self, session: CallSession, channel) -> None:
        session.media_channel = None
        self.detached = True

    async def _on_stop(self, call_id: str) -> None:
        assert self.session is not None
        self.session.terminated = True
        if self.session.media_channel is not None:
            await self.session.media_channel.close()
