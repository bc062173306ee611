"""Bidirectional media-stream bridge (Twilio / Telnyx websocket framing).

Inbound frames are JSON events: `start` carries the stream id, `media`
carries base64 mu-law audio, `stop` ends the stream. Outbound audio is sent
back as `media` events in 20ms frames, paced to real time.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from collections.abc import Awaitable, Callable, Iterator
from typing import TYPE_CHECKING, Any

from fastapi import WebSocketDisconnect

if TYPE_CHECKING:  # pragma: no cover
    from calls.session import CallSession

LOGGER = logging.getLogger(__name__)

FRAME_BYTES = 160  # 20ms of 8kHz single-byte samples
FRAME_INTERVAL_SECONDS = 0.02


def parse_media_message(text: str | bytes) -> dict[str, Any] | None:
    """Parse one socket frame; non-JSON frames yield None."""

    try:
        message = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError):
        LOGGER.debug("Ignoring non-JSON media frame (%d bytes)", len(text))
        return None
    return message if isinstance(message, dict) else None


def extract_stream_sid(message: dict[str, Any]) -> str | None:
    start = message.get("start") if isinstance(message.get("start"), dict) else {}
    stream_sid = message.get("streamSid") or start.get("streamSid") or message.get("stream_id")
    return str(stream_sid) if stream_sid else None


def frame_audio(audio: bytes, frame_bytes: int = FRAME_BYTES) -> Iterator[bytes]:
    """Split audio into fixed-size frames; the last one may be shorter."""

    for offset in range(0, len(audio), frame_bytes):
        yield audio[offset : offset + frame_bytes]


def build_media_message(frame: bytes, stream_sid: str | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {
        "event": "media",
        "media": {"payload": base64.b64encode(frame).decode("ascii")},
    }
    if stream_sid:
        message["streamSid"] = stream_sid
    return message


class MediaBridge:
    """Moves audio between a session's media socket and its speech pipeline."""

    def __init__(
        self,
        *,
        on_stop: Callable[[str], Awaitable[None]],
        frame_bytes: int = FRAME_BYTES,
        frame_interval: float = FRAME_INTERVAL_SECONDS,
    ) -> None:
        self._on_stop = on_stop
        self._frame_bytes = frame_bytes
        self._frame_interval = frame_interval

    async def handle_message(self, session: CallSession, text: str | bytes) -> None:
        message = parse_media_message(text)
        if message is None:
            return

        event = str(message.get("event") or "")
        if event == "start":
            stream_sid = extract_stream_sid(message)
            if stream_sid:
                session.stream_sid = stream_sid
                LOGGER.info("Media stream started call=%s stream=%s", session.call_id, stream_sid)
        elif event == "media":
            media = message.get("media")
            if not isinstance(media, dict):
                return
            if media.get("track") and media.get("track") != "inbound":
                return
            payload = media.get("payload")
            if not isinstance(payload, str) or not payload or session.speech_session is None:
                return
            try:
                audio = base64.b64decode(payload, validate=True)
            except binascii.Error:
                LOGGER.debug("Ignoring media frame with invalid base64 payload")
                return
            session.speech_session.send_audio(audio)
        elif event == "stop":
            LOGGER.info("Media stream stopped call=%s", session.call_id)
            await self._on_stop(session.call_id)

    async def serve(self, session: CallSession, websocket) -> None:
        """Receive loop for an accepted media socket; returns on disconnect or teardown."""

        try:
            while not session.terminated:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                data = message.get("text") or message.get("bytes")
                if data:
                    await self.handle_message(session, data)
        except WebSocketDisconnect:
            pass
        except RuntimeError:
            # Raised by receive() once cleanup has closed the socket.
            if not session.terminated:
                raise

    async def send_audio(self, session: CallSession, audio: bytes) -> int:
        """Send audio as paced media events; returns the number of frames sent.

        Stops early when the session is torn down or the socket goes away.
        """

        async with session.send_lock:
            if session.media_channel is None:
                LOGGER.warning("No media channel for call=%s; dropping %d bytes", session.call_id, len(audio))
                return 0

            sent = 0
            for frame in frame_audio(audio, self._frame_bytes):
                channel = session.media_channel
                if session.terminated or channel is None:
                    LOGGER.info("Playback interrupted call=%s after %d frames", session.call_id, sent)
                    break
                try:
                    await channel.send_text(json.dumps(build_media_message(frame, session.stream_sid)))
                except (RuntimeError, WebSocketDisconnect):
                    LOGGER.info("Media socket closed during playback call=%s", session.call_id)
                    break
                sent += 1
                await asyncio.sleep(self._frame_interval)

            return sent
