"""
Mock provider adapters and wire fixtures for testing.

``ScriptedAdapter`` replays canned delta sequences, one script per provider
round-trip, so dispatcher tests never touch HTTP.  The ``*_sse`` helpers
build real wire bodies for adapter tests served through
``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict, dataclass
from typing import AsyncIterator

import httpx

from switchboard.errors import ErrorKind
from switchboard.llm.normalizer import StreamNormalizer
from switchboard.llm.providers.base import (
    Credentials,
    ProviderAdapter,
    ProviderKind,
    StreamState,
)
from switchboard.llm.providers.framing import RawEvent
from switchboard.llm.types import (
    ConversationTurn,
    ErrorDelta,
    Finish,
    FinishReason,
    GenerationParams,
    Message,
    ProviderRequest,
    StreamDelta,
    TextDelta,
    ToolCallDelta,
    Usage,
)


# ---------------------------------------------------------------------------
# Scripted adapter
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Stall:
    """Script step: wait *seconds* before the next chunk."""

    seconds: float


@dataclass(frozen=True)
class Raw:
    """Script step: send *data* verbatim (e.g. something unparseable)."""

    data: str


_DELTA_TYPES = {
    cls.tag: cls for cls in (TextDelta, ToolCallDelta, Usage, Finish, ErrorDelta)
}


def encode(delta: StreamDelta) -> str:
    body = asdict(delta)
    if isinstance(delta, ErrorDelta):
        body["kind"] = delta.kind.value
    return json.dumps({"tag": delta.tag, **body})


def decode(data: dict) -> StreamDelta:
    data = dict(data)
    cls = _DELTA_TYPES[data.pop("tag")]
    if cls is ErrorDelta:
        data["kind"] = ErrorKind(data["kind"])
    return cls(**data)


class ScriptedAdapter(ProviderAdapter):
    """
    Replays one script per ``open()`` call.

    Each script is a list of steps: a ``StreamDelta`` (sent as one chunk),
    a ``Raw`` payload, a ``Stall``, or an exception instance to raise from
    the transport.  The stream ends when the script runs out, so a script
    without a ``Finish`` exercises the incomplete path.

    Usage::

        adapter = ScriptedAdapter([
            tool_turn([("calculator", {"a": 2, "b": 2}, "call_1")]),
            text_turn("The answer is 4"),
        ])
    """

    default_kind = ProviderKind.OPENAI

    def __init__(self, scripts: list[list] | None = None, **kwargs) -> None:
        super().__init__("http://scripted.invalid", **kwargs)
        self.scripts = list(scripts or [])
        self.requests: list[ProviderRequest] = []
        self.closed = 0

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def translate_request(self, request: ProviderRequest) -> tuple[str, dict]:
        self.check_tools(request)
        return "/scripted", {"model": request.model}

    def auth_headers(self, credentials: Credentials) -> dict[str, str]:
        return {}

    async def open(
        self, request: ProviderRequest, credentials: Credentials
    ) -> AsyncIterator[RawEvent]:
        self.translate_request(request)
        self.requests.append(request)
        if not self.scripts:
            raise AssertionError("ScriptedAdapter ran out of scripts")
        script = self.scripts.pop(0)
        try:
            for step in script:
                if isinstance(step, BaseException):
                    raise step
                if isinstance(step, Stall):
                    await asyncio.sleep(step.seconds)
                elif isinstance(step, Raw):
                    yield RawEvent(data=step.data)
                else:
                    yield RawEvent(data=encode(step))
        finally:
            self.closed += 1

    def parse_chunk(self, raw: RawEvent, state: StreamState) -> list[StreamDelta]:
        data = self._load(raw)
        if isinstance(data, ErrorDelta):
            return [data]
        delta = decode(data)
        if isinstance(delta, ToolCallDelta):
            state.saw_tool_calls = True
        return [delta]


def text_turn(text: str, usage: Usage | None = Usage(10, 5)) -> list:
    """Stream *text* one word at a time, then usage and ``Finish(stop)``."""
    words = text.split(" ")
    steps: list = [
        TextDelta(word + (" " if i < len(words) - 1 else ""))
        for i, word in enumerate(words)
    ]
    if usage is not None:
        steps.append(usage)
    steps.append(Finish(FinishReason.STOP))
    return steps


def tool_turn(
    calls: list[tuple[str, dict, str]],
    content_prefix: str = "",
    usage: Usage | None = Usage(12, 7),
) -> list:
    """
    Stream tool calls as fragments, then ``Finish(tool_calls)``.

    *calls* is a list of ``(tool_name, tool_args, call_id)`` tuples.  Names
    are split in two and arguments in thirds; all names are sent before any
    arguments so fragments of different calls interleave.
    """
    steps: list = []
    if content_prefix:
        steps.append(TextDelta(content_prefix))
    for idx, (name, _, call_id) in enumerate(calls):
        half = len(name) // 2
        steps.append(ToolCallDelta(idx, id_fragment=call_id, name_fragment=name[:half]))
        steps.append(ToolCallDelta(idx, name_fragment=name[half:]))
    for idx, (_, args, _) in enumerate(calls):
        args_json = json.dumps(args)
        third = max(1, len(args_json) // 3)
        for part in (args_json[:third], args_json[third : 2 * third], args_json[2 * third :]):
            if part:
                steps.append(ToolCallDelta(idx, args_fragment=part))
    if usage is not None:
        steps.append(usage)
    steps.append(Finish(FinishReason.TOOL_CALLS))
    return steps


# ---------------------------------------------------------------------------
# Wire fixtures
# ---------------------------------------------------------------------------

def sse(*events: dict | str | tuple[str, dict]) -> bytes:
    """
    Build an SSE body.  Each event is a JSON-able dict (data-only), a raw
    data string, or an ``(event_name, dict)`` pair for named events.
    """
    out: list[str] = []
    for ev in events:
        if isinstance(ev, tuple):
            name, payload = ev
            out.append(f"event: {name}\ndata: {json.dumps(payload)}\n\n")
        elif isinstance(ev, str):
            out.append(f"data: {ev}\n\n")
        else:
            out.append(f"data: {json.dumps(ev)}\n\n")
    return "".join(out).encode("utf-8")


def ndjson(*objects: dict) -> bytes:
    return "".join(json.dumps(o) + "\n" for o in objects).encode("utf-8")


class RecordingTransport(httpx.MockTransport):
    """
    ``httpx.MockTransport`` that serves *responses* in order and records
    every request it receives.
    """

    def __init__(self, responses: list[httpx.Response]) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"unexpected request: {request.method} {request.url}")
        return self.responses.pop(0)

    def json_body(self, i: int = -1) -> dict:
        return json.loads(self.requests[i].content)


def stream_response(body: bytes, content_type: str = "text/event-stream") -> httpx.Response:
    return httpx.Response(200, content=body, headers={"content-type": content_type})


def openai_text_sse(text: str, prompt_tokens: int = 3, completion_tokens: int = 2) -> bytes:
    words = text.split(" ")
    chunks = [
        {"choices": [{"index": 0, "delta": {"role": "assistant", "content": ""}}]},
    ]
    for i, word in enumerate(words):
        piece = word + (" " if i < len(words) - 1 else "")
        chunks.append({"choices": [{"index": 0, "delta": {"content": piece}}]})
    chunks.append({"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]})
    chunks.append(
        {
            "choices": [],
            "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
        }
    )
    return sse(*chunks, "[DONE]")


def openai_tool_sse(name: str, args: dict, call_id: str = "call_1") -> bytes:
    args_json = json.dumps(args)
    half = len(args_json) // 2
    return sse(
        {
            "choices": [
                {
                    "index": 0,
                    "delta": {
                        "tool_calls": [
                            {
                                "index": 0,
                                "id": call_id,
                                "type": "function",
                                "function": {"name": name, "arguments": ""},
                            }
                        ]
                    },
                }
            ]
        },
        {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": 0, "function": {"arguments": args_json[:half]}}]}}]},
        {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": 0, "function": {"arguments": args_json[half:]}}]}}]},
        {"choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}]},
        {"choices": [], "usage": {"prompt_tokens": 20, "completion_tokens": 9}},
        "[DONE]",
    )


def anthropic_text_sse(text: str) -> bytes:
    return sse(
        ("message_start", {"type": "message_start", "message": {"usage": {"input_tokens": 3}}}),
        ("content_block_start", {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
        ("ping", {"type": "ping"}),
        ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}),
        ("content_block_stop", {"type": "content_block_stop", "index": 0}),
        ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}}),
        ("message_stop", {"type": "message_stop"}),
    )


def anthropic_tool_sse(name: str, args: dict, call_id: str = "toolu_1") -> bytes:
    args_json = json.dumps(args)
    half = len(args_json) // 2
    return sse(
        ("message_start", {"type": "message_start", "message": {"usage": {"input_tokens": 20}}}),
        ("content_block_start", {"type": "content_block_start", "index": 0, "content_block": {"type": "tool_use", "id": call_id, "name": name, "input": {}}}),
        ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": args_json[:half]}}),
        ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": args_json[half:]}}),
        ("content_block_stop", {"type": "content_block_stop", "index": 0}),
        ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 9}}),
        ("message_stop", {"type": "message_stop"}),
    )


def gemini_text_sse(text: str) -> bytes:
    return sse(
        {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]},
        {
            "candidates": [{"content": {"role": "model", "parts": []}, "finishReason": "STOP"}],
            "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 2},
        },
    )


def gemini_tool_sse(name: str, args: dict) -> bytes:
    return sse(
        {
            "candidates": [
                {
                    "content": {"role": "model", "parts": [{"functionCall": {"name": name, "args": args}}]},
                    "finishReason": "STOP",
                }
            ],
            "usageMetadata": {"promptTokenCount": 20, "candidatesTokenCount": 9},
        },
    )


def ollama_text_ndjson(text: str) -> bytes:
    return ndjson(
        {"message": {"role": "assistant", "content": text}, "done": False},
        {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop", "prompt_eval_count": 3, "eval_count": 2},
    )


def ollama_tool_ndjson(name: str, args: dict) -> bytes:
    return ndjson(
        {"message": {"role": "assistant", "content": "", "tool_calls": [{"function": {"name": name, "arguments": args}}]}, "done": False},
        {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop", "prompt_eval_count": 20, "eval_count": 9},
    )


# ---------------------------------------------------------------------------
# Driving adapters
# ---------------------------------------------------------------------------

def make_request(prompt: str = "hi", *, tools=(), model: str = "test-model", **params) -> ProviderRequest:
    return ProviderRequest(
        model=model,
        messages=ConversationTurn((Message(role="user", content=prompt),)),
        params=GenerationParams(**params),
        tools=tuple(tools),
    )


async def collect(adapter: ProviderAdapter, request: ProviderRequest, api_key: str = "sk-test") -> list[StreamDelta]:
    """Run one request through ``StreamNormalizer`` and return every delta."""
    normalizer = StreamNormalizer(adapter, adapter.open(request, Credentials(api_key=api_key)))
    return [d async for d in normalizer]


def tags(deltas: list[StreamDelta]) -> list[str]:
    """Tag sequence with consecutive duplicates collapsed."""
    out: list[str] = []
    for d in deltas:
        if not out or out[-1] != d.tag:
            out.append(d.tag)
    return out
