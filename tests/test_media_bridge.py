from __future__ import annotations

import asyncio
import base64
import json

from calls.session import CallSession
from calls.turns import RelayTurnSource
from fakes import FakeRecognitionSession, FakeWebSocket
from telephony.media_bridge import (
    MediaBridge,
    build_media_message,
    extract_stream_sid,
    frame_audio,
    parse_media_message,
)


def _session() -> CallSession:
    return CallSession(call_id="call-1", media_token="t" * 64, turns=RelayTurnSource())


def test_frame_audio_splits_into_fixed_frames_in_order() -> None:
    audio = bytes(range(256)) * 12 + bytes(128)  # 3200 bytes

    frames = list(frame_audio(audio))

    assert len(frames) == 20
    assert all(len(frame) == 160 for frame in frames)
    assert b"".join(frames) == audio


def test_frame_audio_keeps_short_tail() -> None:
    frames = list(frame_audio(b"\x01" * 170))

    assert [len(frame) for frame in frames] == [160, 10]


def test_build_media_message_includes_stream_sid_when_known() -> None:
    with_sid = build_media_message(b"\xff\x7f", "MZ1")
    without_sid = build_media_message(b"\xff\x7f", None)

    assert with_sid == {"event": "media", "media": {"payload": "/38="}, "streamSid": "MZ1"}
    assert "streamSid" not in without_sid


def test_parse_media_message_ignores_non_json() -> None:
    assert parse_media_message("keep-alive") is None
    assert parse_media_message(b"\x80\x81") is None
    assert parse_media_message("[1, 2]") is None
    assert parse_media_message('{"event": "start"}') == {"event": "start"}


def test_extract_stream_sid_variants() -> None:
    assert extract_stream_sid({"event": "start", "streamSid": "MZ1"}) == "MZ1"
    assert extract_stream_sid({"event": "start", "start": {"streamSid": "MZ2"}}) == "MZ2"
    assert extract_stream_sid({"event": "start", "stream_id": "telnyx-3"}) == "telnyx-3"
    assert extract_stream_sid({"event": "start"}) is None


def test_send_audio_paces_frames_with_stream_sid() -> None:
    async def scenario():
        bridge = MediaBridge(on_stop=_never, frame_interval=0.0)
        session = _session()
        session.stream_sid = "MZ42"
        session.media_channel = FakeWebSocket()
        sent = await bridge.send_audio(session, b"\xd5" * 3200)
        return sent, session.media_channel.sent

    sent, messages = asyncio.run(scenario())

    assert sent == 20
    assert len(messages) == 20
    for text in messages:
        message = json.loads(text)
        assert message["event"] == "media"
        assert message["streamSid"] == "MZ42"
        assert base64.b64decode(message["media"]["payload"]) == b"\xd5" * 160


def test_send_audio_stops_when_socket_fails() -> None:
    async def scenario():
        bridge = MediaBridge(on_stop=_never, frame_interval=0.0)
        session = _session()
        session.media_channel = FakeWebSocket(fail_after=3)
        return await bridge.send_audio(session, b"\xd5" * 3200)

    assert asyncio.run(scenario()) == 3


def test_send_audio_stops_when_session_is_torn_down() -> None:
    async def scenario():
        bridge = MediaBridge(on_stop=_never, frame_interval=0.001)
        session = _session()
        session.media_channel = FakeWebSocket()
        sending = asyncio.create_task(bridge.send_audio(session, b"\xd5" * 3200))
        while len(session.media_channel.sent) < 2:
            await asyncio.sleep(0)
        session.terminated = True
        return await sending

    assert asyncio.run(scenario()) < 20


def test_send_audio_without_channel_drops_audio() -> None:
    async def scenario():
        bridge = MediaBridge(on_stop=_never, frame_interval=0.0)
        return await bridge.send_audio(_session(), b"\xd5" * 320)

    assert asyncio.run(scenario()) == 0


def test_handle_message_routes_events() -> None:
    stopped: list[str] = []

    async def on_stop(call_id: str) -> None:
        stopped.append(call_id)

    async def scenario():
        bridge = MediaBridge(on_stop=on_stop)
        session = _session()
        speech = FakeRecognitionSession()
        session.speech_session = speech

        inbound = base64.b64encode(b"\x7f" * 160).decode("ascii")
        await bridge.handle_message(session, json.dumps({"event": "start", "streamSid": "MZ9"}))
        await bridge.handle_message(session, json.dumps({"event": "media", "media": {"payload": inbound}}))
        await bridge.handle_message(
            session,
            json.dumps({"event": "media", "media": {"payload": inbound, "track": "inbound"}}),
        )
        await bridge.handle_message(
            session,
            json.dumps({"event": "media", "media": {"payload": inbound, "track": "outbound"}}),
        )
        await bridge.handle_message(session, json.dumps({"event": "media", "media": {"payload": "%%%"}}))
        await bridge.handle_message(session, "not json at all")
        await bridge.handle_message(session, json.dumps({"event": "stop"}))
        return session, speech

    session, speech = asyncio.run(scenario())

    assert session.stream_sid == "MZ9"
    assert speech.audio == [b"\x7f" * 160, b"\x7f" * 160]
    assert stopped == ["call-1"]


async def _never(call_id: str) -> None:
    raise AssertionError("stop handler should not run")
