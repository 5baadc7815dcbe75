"""
Tests for chat orchestration: ordering per user and stream persistence
"""
import asyncio
from typing import List

import pytest

from chatrelay.core.conversation_store import ASSISTANT, USER, ConversationStore, Turn
from chatrelay.core.errors import UpstreamError, ValidationError
from chatrelay.core.system_policy import SystemPolicy
from chatrelay.services.chat_service import ChatService, without_answered


class ScriptedClient:
    """Provider stand-in that records every context it receives"""

    def __init__(self, stream_chunks=None, fail_after=None):
        self.contexts: List[list] = []
        self.stream_chunks = stream_chunks or ["a", "b", "c"]
        self.fail_after = fail_after
        self.stream_closed = False

    async def complete(self, messages, max_tokens=None, temperature=None):
        self.contexts.append(messages)
        await asyncio.sleep(0.01)
        return f"reply {len(self.contexts)}"

    async def complete_stream(self, messages, max_tokens=None, temperature=None):
        self.contexts.append(messages)
        try:
            for i, chunk in enumerate(self.stream_chunks):
                if self.fail_after is not None and i == self.fail_after:
                    raise UpstreamError("Provider stream failed", upstream_status=502)
                await asyncio.sleep(0)
                yield chunk
        finally:
            self.stream_closed = True


@pytest.fixture
def scripted():
    return ScriptedClient()


@pytest.fixture
def service(scripted, store, settings):
    return ChatService(scripted, store, SystemPolicy("policy"), settings)


@pytest.mark.asyncio
async def test_turns_of_one_user_are_serialized(service, scripted, store):
    await asyncio.gather(service.chat("one", user_id="u1"), service.chat("two", user_id="u1"))

    first, second = scripted.contexts
    assert [m["content"] for m in first] == ["policy", "one"]
    assert [m["content"] for m in second] == ["policy", "one", "reply 1", "two"]
    assert [t.text for t in store.get("u1")] == ["one", "reply 1", "two", "reply 2"]


@pytest.mark.asyncio
async def test_different_users_do_not_share_history(service, scripted, store):
    await asyncio.gather(service.chat("one", user_id="u1"), service.chat("two", user_id="u2"))

    assert all(len(context) == 2 for context in scripted.contexts)
    assert len(store.get("u1")) == 2
    assert len(store.get("u2")) == 2


@pytest.mark.asyncio
async def test_failed_turn_stores_nothing(store, settings):
    class FailingClient(ScriptedClient):
        async def complete(self, messages, max_tokens=None, temperature=None):
            raise UpstreamError("Provider returned HTTP 500", upstream_status=500)

    service = ChatService(FailingClient(), store, SystemPolicy("policy"), settings)

    with pytest.raises(UpstreamError):
        await service.chat("hello", user_id="u1")
    assert store.get("u1") == []


@pytest.mark.asyncio
async def test_blank_message_rejected_before_provider_call(service, scripted):
    with pytest.raises(ValidationError, match="message is required"):
        await service.chat("   ", user_id="u1")
    assert scripted.contexts == []


@pytest.mark.asyncio
async def test_stop_touches_nothing(service, scripted, store):
    result = service.stop_result()

    assert result.reply == "Generation stopped."
    assert result.history == []
    assert scripted.contexts == []
    assert len(store) == 0


@pytest.mark.asyncio
async def test_completed_stream_is_stored(service, store):
    chunks = [chunk async for chunk in service.chat_stream("hi", user_id="u1")]

    assert chunks == ["a", "b", "c"]
    assert store.get("u1") == [Turn(USER, "hi"), Turn(ASSISTANT, "abc")]


@pytest.mark.asyncio
async def test_broken_stream_keeps_partial_reply(store, settings):
    service = ChatService(ScriptedClient(fail_after=2), store, SystemPolicy("policy"), settings)

    chunks = [chunk async for chunk in service.chat_stream("hi", user_id="u1")]

    assert chunks == ["a", "b"]
    assert store.get("u1")[-1] == Turn(ASSISTANT, "ab")


@pytest.mark.asyncio
async def test_stream_failing_before_output_raises_and_stores_nothing(store, settings):
    service = ChatService(ScriptedClient(fail_after=0), store, SystemPolicy("policy"), settings)

    with pytest.raises(UpstreamError):
        async for _ in service.chat_stream("hi", user_id="u1"):
            pass
    assert store.get("u1") == []


@pytest.mark.asyncio
async def test_closed_stream_keeps_partial_reply_and_releases_lock(service, scripted, store):
    stream = service.chat_stream("hi", user_id="u1")
    first = await stream.__anext__()
    await stream.aclose()

    assert first == "a"
    assert scripted.stream_closed
    assert store.get("u1") == [Turn(USER, "hi"), Turn(ASSISTANT, "a")]
    assert not store.lock("u1").locked()


@pytest.mark.asyncio
async def test_regenerate_appends_a_second_exchange(service, store):
    await service.chat("same question", user_id="u1")
    result = await service.regenerate("same question", user_id="u1")

    assert result.reply == "reply 2"
    assert [t.text for t in result.history] == ["same question", "reply 1", "same question", "reply 2"]


@pytest.mark.asyncio
async def test_regenerate_requires_last_message(service):
    with pytest.raises(ValidationError, match="lastMessage is required"):
        await service.regenerate(None, user_id="u1")


@pytest.mark.asyncio
async def test_regenerate_sees_the_conversation_before_the_first_answer(service, scripted):
    await service.chat("earlier", user_id="u1")
    await service.chat("joke", user_id="u1")
    await service.regenerate("joke", user_id="u1")

    original, regenerated = scripted.contexts[1], scripted.contexts[2]
    assert [m["content"] for m in regenerated] == [m["content"] for m in original]
    assert [m["content"] for m in regenerated[1:]] == ["earlier", "reply 1", "joke"]


@pytest.mark.asyncio
async def test_regenerate_stream_drops_answered_exchange(service, scripted, store):
    await service.chat("joke", user_id="u1")

    chunks = [chunk async for chunk in service.regenerate_stream("joke", user_id="u1")]

    assert chunks == ["a", "b", "c"]
    assert [m["content"] for m in scripted.contexts[-1]] == ["policy", "joke"]
    assert len(store.get("u1")) == 4


def test_without_answered_only_strips_a_matching_exchange():
    log = [Turn(USER, "q"), Turn(ASSISTANT, "a")]
    assert without_answered(log, "q") == []
    assert without_answered(log, "other") == log
    assert without_answered([Turn(USER, "q")], "q") == [Turn(USER, "q")]
