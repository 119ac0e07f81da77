"""
OpenAI-compatible chat-completion adapter.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- OpenAI itself, OpenRouter, DeepSeek, xAI, Groq, Mistral,
Together, vLLM, LM Studio, etc.

Streams are data-only SSE terminated by ``data: [DONE]``.
"""

from __future__ import annotations

import json
import logging

from switchboard.errors import UnsupportedCapability
from switchboard.llm.providers.base import (
    Credentials,
    ProviderAdapter,
    ProviderKind,
    StreamState,
)
from switchboard.llm.providers.framing import DOCUMENT_EVENT, RawEvent
from switchboard.llm.types import (
    ErrorDelta,
    Finish,
    FinishReason,
    Message,
    ProviderRequest,
    StreamDelta,
    TextDelta,
    ToolCallDelta,
    Usage,
)

logger = logging.getLogger(__name__)

_MAX_STOP_SEQUENCES = 4

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
}


class OpenAICompatAdapter(ProviderAdapter):
    """Adapter for any OpenAI-API-compatible endpoint."""

    default_kind = ProviderKind.OPENAI
    default_base_url = "https://api.openai.com/v1"
    framing = "sse"

    def auth_headers(self, credentials: Credentials) -> dict[str, str]:
        if credentials.api_key:
            return {"Authorization": f"Bearer {credentials.api_key}"}
        return {}

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def translate_request(self, request: ProviderRequest) -> tuple[str, dict]:
        params = request.params
        if params.top_k is not None:
            raise UnsupportedCapability(
                "top_k is not supported by OpenAI-compatible endpoints",
                provider=self.name,
            )
        if len(params.stop) > _MAX_STOP_SEQUENCES:
            raise UnsupportedCapability(
                f"at most {_MAX_STOP_SEQUENCES} stop sequences are supported",
                provider=self.name,
            )
        self.check_tools(request)

        body: dict = {
            "model": request.model,
            "messages": [self._wire_message(m) for m in request.messages],
            "stream": request.stream,
        }
        if request.stream:
            body["stream_options"] = {"include_usage": True}
        if params.temperature is not None:
            body["temperature"] = params.temperature
        if params.max_tokens is not None:
            body["max_tokens"] = params.max_tokens
        if params.top_p is not None:
            body["top_p"] = params.top_p
        if params.stop:
            body["stop"] = list(params.stop)
        if request.tools:
            body["tools"] = [t.to_openai_schema() for t in request.tools]
            body["tool_choice"] = _tool_choice(params.tool_choice)
        body.update(params.extra)
        return "/chat/completions", body

    def _wire_message(self, msg: Message) -> dict:
        m: dict = {"role": msg.role}
        if msg.parts:
            content: list[dict] = []
            for part in msg.parts:
                if part.type == "text":
                    content.append({"type": "text", "text": part.text})
                elif part.type == "image_url":
                    content.append({"type": "image_url", "image_url": {"url": part.url}})
                else:
                    raise UnsupportedCapability(
                        f"content part type {part.type!r} is not supported",
                        provider=self.name,
                    )
            m["content"] = content
        else:
            m["content"] = msg.content
        if msg.tool_calls:
            m["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": json.dumps(tc.arguments),
                    },
                }
                for tc in msg.tool_calls
            ]
        if msg.tool_call_id:
            m["tool_call_id"] = msg.tool_call_id
        return m

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def parse_chunk(self, raw: RawEvent, state: StreamState) -> list[StreamDelta]:
        if raw.data.strip() == "[DONE]":
            state.ended = True
            return []

        data = self._load(raw)
        if isinstance(data, ErrorDelta):
            return [data]
        if "error" in data:
            return [self._stream_error(data["error"])]

        if raw.event == DOCUMENT_EVENT:
            return self._parse_document(data, state)

        deltas: list[StreamDelta] = []
        choices = data.get("choices") or []
        finish: Finish | None = None
        if choices:
            choice = choices[0]
            delta = choice.get("delta") or {}

            text = delta.get("content")
            if text:
                deltas.append(TextDelta(text))

            for raw_tc in delta.get("tool_calls") or []:
                func = raw_tc.get("function") or {}
                state.saw_tool_calls = True
                deltas.append(
                    ToolCallDelta(
                        index=raw_tc.get("index", 0),
                        id_fragment=raw_tc.get("id"),
                        name_fragment=func.get("name"),
                        args_fragment=func.get("arguments") or "",
                    )
                )

            reason = choice.get("finish_reason")
            if reason is not None:
                finish = Finish(_FINISH_REASONS.get(reason, FinishReason.STOP))

        usage = data.get("usage")
        if usage:
            deltas.append(_usage(usage))
        if finish is not None:
            deltas.append(finish)
        return deltas

    def _parse_document(self, data: dict, state: StreamState) -> list[StreamDelta]:
        """Convert a non-streaming response into the same delta sequence."""
        deltas: list[StreamDelta] = []
        choices = data.get("choices") or []
        reason = FinishReason.STOP
        if choices:
            message = choices[0].get("message") or {}
            if message.get("content"):
                deltas.append(TextDelta(message["content"]))
            for raw_tc in message.get("tool_calls") or []:
                func = raw_tc.get("function") or {}
                deltas.append(
                    ToolCallDelta(
                        index=state.allocate_index(),
                        id_fragment=raw_tc.get("id"),
                        name_fragment=func.get("name"),
                        args_fragment=func.get("arguments") or "",
                    )
                )
            reason = _FINISH_REASONS.get(
                choices[0].get("finish_reason") or "stop", FinishReason.STOP
            )
        if data.get("usage"):
            deltas.append(_usage(data["usage"]))
        deltas.append(Finish(reason))
        state.ended = True
        return deltas


def _usage(usage: dict) -> Usage:
    return Usage(
        prompt_tokens=usage.get("prompt_tokens") or 0,
        completion_tokens=usage.get("completion_tokens") or 0,
    )


def _tool_choice(choice: str) -> str | dict:
    if choice in ("auto", "none", "required"):
        return choice
    return {"type": "function", "function": {"name": choice}}
