#!/usr/bin/env python3
"""
Tests for streaming chat turns.
"""

import asyncio
from contextlib import aclosing

import pytest

from imc_chat.chat_service import FALLBACK_REPLY, ChatService
from imc_chat.errors import ValidationError
from imc_chat.llm import NetworkError, RateLimitError, StubLLMClient

SYSTEM_PROMPT = "You are the IMC assistant."


def make_service(llm):
    return ChatService(
        ChatService.ChatServiceConfig(llm_client=llm, system_prompt=SYSTEM_PROMPT)
    )


async def collect(stream):
    async with aclosing(stream) as messages:
        return [message async for message in messages]


@pytest.mark.asyncio
async def test_chunks_forwarded_then_done():
    service = make_service(StubLLMClient([["Hel", "lo, ", "world"]]))

    messages = await collect(service.send_stream("s1", "Hi"))

    assert [(m.type, m.content) for m in messages] == [
        ("text", "Hel"),
        ("text", "lo, "),
        ("text", "world"),
        ("done", "[DONE]"),
    ]
    history = service.history("s1")
    assert [(m.role, m.content) for m in history] == [
        ("system", SYSTEM_PROMPT),
        ("user", "Hi"),
        ("assistant", "Hello, world"),
    ]


@pytest.mark.asyncio
async def test_validation_is_eager():
    service = make_service(StubLLMClient())

    with pytest.raises(ValidationError):
        service.send_stream("s1", "   ")
    assert service.session_count() == 0


@pytest.mark.asyncio
async def test_backend_error_yields_classified_message():
    service = make_service(
        StubLLMClient([RateLimitError("429 Too Many Requests", status_code=429)])
    )

    messages = await collect(service.send_stream("s1", "Hi"))

    assert len(messages) == 2
    error, done = messages
    assert error.type == "text"
    assert error.content == (
        "I'm currently experiencing high demand. Please wait a moment and try again."
    )
    assert error.metadata == {"error_category": "rate_limited"}
    assert (done.type, done.content) == ("done", "[DONE]")
    assert [m.role for m in service.history("s1")] == ["system", "user"]


@pytest.mark.asyncio
async def test_mid_stream_failure_appends_no_assistant():
    service = make_service(
        StubLLMClient([["partial ", NetworkError("connection reset")]])
    )

    messages = await collect(service.send_stream("s1", "Hi"))

    assert messages[0].content == "partial "
    assert messages[1].metadata == {"error_category": "network_failure"}
    assert messages[-1].type == "done"
    assert [m.role for m in service.history("s1")] == ["system", "user"]


@pytest.mark.asyncio
async def test_empty_stream_uses_fallback():
    service = make_service(StubLLMClient([[]]))

    messages = await collect(service.send_stream("s1", "Hi"))

    assert [(m.type, m.content) for m in messages] == [
        ("text", FALLBACK_REPLY),
        ("done", "[DONE]"),
    ]
    assert service.history("s1")[-1].content == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_cancel_event_stops_stream_without_done():
    service = make_service(StubLLMClient([["one", "two", "three"]]))
    cancel = asyncio.Event()

    received = []
    async with aclosing(service.send_stream("s1", "Hi", cancel=cancel)) as stream:
        async for message in stream:
            received.append(message)
            cancel.set()

    assert [m.content for m in received] == ["one"]
    assert [m.role for m in service.history("s1")] == ["system", "user"]
    assert not service._session_lock("s1").locked()


@pytest.mark.asyncio
async def test_cancel_before_start():
    llm = StubLLMClient([["never"]])
    service = make_service(llm)
    cancel = asyncio.Event()
    cancel.set()

    messages = await collect(service.send_stream("s1", "Hi", cancel=cancel))

    assert messages == []
    assert llm.calls == []
    assert [m.role for m in service.history("s1")] == ["system", "user"]


@pytest.mark.asyncio
async def test_closing_stream_releases_lock():
    service = make_service(StubLLMClient([["a", "b", "c"], "next reply"]))

    stream = service.send_stream("s1", "Hi")
    first = await anext(stream)
    await stream.aclose()

    assert first.content == "a"
    assert [m.role for m in service.history("s1")] == ["system", "user"]
    assert await service.send("s1", "again") == "next reply"


@pytest.mark.asyncio
async def test_concurrent_streams_on_one_session_are_serialized():
    llm = StubLLMClient([["a1", "a2"], ["b1", "b2"]], chunk_delay=0.01)
    service = make_service(llm)

    first, second = await asyncio.gather(
        collect(service.send_stream("s1", "first")),
        collect(service.send_stream("s1", "second")),
    )

    assert [m.content for m in first] == ["a1", "a2", "[DONE]"]
    assert [m.content for m in second] == ["b1", "b2", "[DONE]"]
    assert [(m.role, m.content) for m in service.history("s1")[1:]] == [
        ("user", "first"),
        ("assistant", "a1a2"),
        ("user", "second"),
        ("assistant", "b1b2"),
    ]
