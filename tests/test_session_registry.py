from __future__ import annotations

import asyncio
import re

import pytest

from calls.security import generate_media_token, tokens_match
from calls.session import CallSession, SessionRegistry, TurnState, new_call_id
from calls.turns import RelayTurnSource


def _session(call_id: str, token: str) -> CallSession:
    return CallSession(call_id=call_id, media_token=token, turns=RelayTurnSource())


def test_media_tokens_are_unique_hex_secrets() -> None:
    tokens = {generate_media_token() for _ in range(50)}

    assert len(tokens) == 50
    assert all(re.fullmatch(r"[0-9a-f]{64}", token) for token in tokens)


def test_tokens_match_rejects_empty_and_mismatched_values() -> None:
    token = generate_media_token()

    assert tokens_match(token, token) is True
    assert tokens_match(token, token[:-1] + "x") is False
    assert tokens_match(token, "") is False
    assert tokens_match("", "") is False
    assert tokens_match(token, None) is False


def test_call_ids_have_timestamp_and_suffix() -> None:
    assert re.fullmatch(r"call-\d{13}-[0-9a-f]{6}", new_call_id())


def test_new_session_awaits_the_agent() -> None:
    async def scenario():
        return _session("call-1", "a" * 64)

    assert asyncio.run(scenario()).turn_state is TurnState.AWAITING_AGENT


def test_registry_indexes_sessions_three_ways() -> None:
    async def scenario():
        registry = SessionRegistry()
        session = _session("call-1", "a" * 64)
        await registry.add(session)
        await registry.bind_provider_call_id("call-1", "CA1")
        return registry, session

    registry, session = asyncio.run(scenario())

    assert registry.get("call-1") is session
    assert registry.find_by_provider_call_id("CA1") is session
    assert registry.find_by_media_token("a" * 64) is session
    assert registry.find_by_media_token("b" * 64) is None
    assert registry.find_by_media_token(None) is None
    assert "call-1" in registry
    assert len(registry) == 1
    assert registry.index_sizes() == (1, 1, 1)


def test_registry_rejects_duplicate_tokens_and_provider_ids() -> None:
    async def scenario():
        registry = SessionRegistry()
        await registry.add(_session("call-1", "a" * 64))
        await registry.add(_session("call-2", "b" * 64))
        await registry.bind_provider_call_id("call-1", "CA1")

        with pytest.raises(ValueError):
            await registry.add(_session("call-3", "a" * 64))
        with pytest.raises(ValueError):
            await registry.add(_session("call-1", "c" * 64))
        with pytest.raises(ValueError):
            await registry.bind_provider_call_id("call-2", "CA1")
        return registry

    registry = asyncio.run(scenario())

    assert registry.index_sizes() == (2, 1, 2)


def test_registry_remove_drops_every_index() -> None:
    async def scenario():
        registry = SessionRegistry()
        await registry.add(_session("call-1", "a" * 64))
        await registry.bind_provider_call_id("call-1", "CA1")
        first = await registry.remove("call-1")
        second = await registry.remove("call-1")
        late_bind = await registry.bind_provider_call_id("call-1", "CA2")
        return registry, first, second, late_bind

    registry, first, second, late_bind = asyncio.run(scenario())

    assert first is not None
    assert second is None
    assert late_bind is None
    assert registry.index_sizes() == (0, 0, 0)
    assert registry.find_by_provider_call_id("CA1") is None


def test_relay_reply_replaces_an_undelivered_one() -> None:
    async def scenario():
        turns = RelayTurnSource()
        session = _session("call-1", "a" * 64)
        await turns.say(session, "first")
        await turns.say(session, "second")
        latest = session.agent_turns.get_nowait()
        await turns.say(session, "third")
        await turns.say(session, "Bye", final=True)
        return latest, session.agent_turns.get_nowait(), session.agent_turns.empty()

    assert asyncio.run(scenario()) == ("second", "Bye [END_CALL]", True)
