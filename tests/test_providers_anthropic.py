"""Tests for the Anthropic Messages adapter."""

from __future__ import annotations

from dataclasses import replace

import httpx

from switchboard.errors import ErrorKind
from switchboard.llm.accumulator import ToolCallAccumulator
from switchboard.llm.providers.anthropic import ANTHROPIC_VERSION, AnthropicAdapter
from switchboard.llm.types import (
    ConversationTurn,
    Finish,
    FinishReason,
    Message,
    TextDelta,
    ToolCall,
    ToolCallDelta,
    ToolSpec,
    Usage,
)
from tests.mock_providers import (
    RecordingTransport,
    anthropic_text_sse,
    anthropic_tool_sse,
    collect,
    make_request,
    sse,
    stream_response,
)

CALC = ToolSpec("calculator", "Arithmetic", {"type": "object", "properties": {}})


def _adapter(*responses: httpx.Response) -> tuple[AnthropicAdapter, RecordingTransport]:
    transport = RecordingTransport(list(responses))
    return AnthropicAdapter("https://anthropic.test/v1", transport=transport), transport


async def test_text_stream_and_headers():
    adapter, transport = _adapter(stream_response(anthropic_text_sse("Hi there")))
    deltas = await collect(adapter, make_request())

    assert deltas == [TextDelta("Hi there"), Usage(3, 2), Finish(FinishReason.STOP)]
    req = transport.requests[0]
    assert str(req.url) == "https://anthropic.test/v1/messages"
    assert req.headers["x-api-key"] == "sk-test"
    assert req.headers["anthropic-version"] == ANTHROPIC_VERSION


async def test_tool_use_stream():
    args = {"operation": "mul", "a": 3, "b": 4}
    adapter, _ = _adapter(stream_response(anthropic_tool_sse("calculator", args)))
    deltas = await collect(adapter, make_request(tools=[CALC]))

    acc = ToolCallAccumulator()
    for d in deltas:
        if isinstance(d, ToolCallDelta):
            acc.feed(d)
    acc.finish()
    assert acc.complete_calls() == [ToolCall("toolu_1", "calculator", args)]
    assert deltas[-2:] == [Usage(20, 9), Finish(FinishReason.TOOL_CALLS)]


async def test_overloaded_event_is_retryable():
    body = sse(("error", {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}))
    adapter, _ = _adapter(stream_response(body))
    (err,) = await collect(adapter, make_request())
    assert err.kind is ErrorKind.TRANSPORT
    assert err.retryable


async def test_rate_limit_error_event():
    body = sse(("error", {"type": "error", "error": {"type": "rate_limit_error", "message": "slow"}}))
    adapter, _ = _adapter(stream_response(body))
    (err,) = await collect(adapter, make_request())
    assert err.kind is ErrorKind.RATE_LIMITED


async def test_thinking_deltas_dropped():
    body = sse(
        ("content_block_start", {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking"}}),
        ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "hmm"}}),
        ("content_block_delta", {"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "ok"}}),
        ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "max_tokens"}, "usage": {"output_tokens": 1}}),
        ("message_stop", {"type": "message_stop"}),
    )
    adapter, _ = _adapter(stream_response(body))
    deltas = await collect(adapter, make_request())
    assert deltas == [TextDelta("ok"), Usage(0, 1), Finish(FinishReason.LENGTH)]


def test_system_lifted_and_tool_results_merged():
    adapter = AnthropicAdapter()
    conv = ConversationTurn(
        (
            Message(role="system", content="Be brief."),
            Message(role="user", content="add and mul"),
            Message(
                role="assistant",
                tool_calls=(
                    ToolCall("t1", "calculator", {"a": 1}),
                    ToolCall("t2", "calculator", {"a": 2}),
                ),
            ),
            Message(role="tool", content="1", tool_call_id="t1", name="calculator"),
            Message(role="tool", content="2", tool_call_id="t2", name="calculator"),
        )
    )
    _, body = adapter.translate_request(replace(make_request(tools=[CALC]), messages=conv))

    assert body["system"] == "Be brief."
    assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
    assert [b["type"] for b in body["messages"][1]["content"]] == ["tool_use", "tool_use"]
    results = body["messages"][2]["content"]
    assert [b["tool_use_id"] for b in results] == ["t1", "t2"]
    assert body["max_tokens"] == 4096
    assert body["tool_choice"] == {"type": "auto"}


async def test_temperature_above_one_rejected():
    adapter, transport = _adapter()
    (err,) = await collect(adapter, make_request(temperature=1.5))
    assert err.kind is ErrorKind.UNSUPPORTED_CAPABILITY
    assert transport.requests == []
