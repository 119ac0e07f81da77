"""
Anthropic Messages API adapter.

Talks to ``/v1/messages`` directly over HTTP.  The stream uses named SSE
events::

    message_start -> content_block_start -> content_block_delta* ->
    content_block_stop -> ... -> message_delta -> message_stop

Tool-call arguments arrive as ``input_json_delta`` fragments keyed by the
content block index.
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

ANTHROPIC_VERSION = "2023-06-01"
_DEFAULT_MAX_TOKENS = 4096

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
    "refusal": FinishReason.CONTENT_FILTER,
}


class AnthropicAdapter(ProviderAdapter):
    """Adapter for Anthropic's Messages API."""

    default_kind = ProviderKind.ANTHROPIC
    default_base_url = "https://api.anthropic.com/v1"
    framing = "sse"

    def auth_headers(self, credentials: Credentials) -> dict[str, str]:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if credentials.api_key:
            headers["x-api-key"] = credentials.api_key
        return headers

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def translate_request(self, request: ProviderRequest) -> tuple[str, dict]:
        params = request.params
        if params.temperature is not None and params.temperature > 1.0:
            raise UnsupportedCapability(
                "temperature above 1.0 is not supported",
                provider=self.name,
            )
        self.check_tools(request)

        system, messages = self._convert_messages(list(request.messages))
        body: dict = {
            "model": request.model,
            "messages": messages,
            "max_tokens": params.max_tokens or _DEFAULT_MAX_TOKENS,
            "stream": request.stream,
        }
        if system:
            body["system"] = system
        if params.temperature is not None:
            body["temperature"] = params.temperature
        if params.top_p is not None:
            body["top_p"] = params.top_p
        if params.top_k is not None:
            body["top_k"] = params.top_k
        if params.stop:
            body["stop_sequences"] = list(params.stop)
        if request.tools:
            body["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters or {"type": "object", "properties": {}},
                }
                for t in request.tools
            ]
            body["tool_choice"] = _tool_choice(params.tool_choice)
        body.update(params.extra)
        return "/messages", body

    def _convert_messages(self, messages: list[Message]) -> tuple[str, list[dict]]:
        """
        Convert canonical messages to Anthropic's format.

        System messages are lifted into the top-level ``system`` field and
        consecutive tool results are merged into a single user message.
        """
        system_parts: list[str] = []
        converted: list[dict] = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
                continue

            if msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id or "",
                    "content": msg.content,
                }
                prev = converted[-1] if converted else None
                if (
                    prev is not None
                    and prev["role"] == "user"
                    and isinstance(prev["content"], list)
                    and all(b.get("type") == "tool_result" for b in prev["content"])
                ):
                    prev["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
                continue

            blocks = self._content_blocks(msg)
            if msg.role == "assistant" and msg.tool_calls:
                for tc in msg.tool_calls:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": tc.id,
                            "name": tc.name,
                            "input": tc.arguments,
                        }
                    )
            if len(blocks) == 1 and blocks[0]["type"] == "text":
                converted.append({"role": msg.role, "content": blocks[0]["text"]})
            else:
                converted.append({"role": msg.role, "content": blocks})

        return "\n\n".join(p for p in system_parts if p), converted

    def _content_blocks(self, msg: Message) -> list[dict]:
        if not msg.parts:
            return [{"type": "text", "text": msg.content}] if msg.content or not msg.tool_calls else []
        blocks: list[dict] = []
        for part in msg.parts:
            if part.type == "text":
                blocks.append({"type": "text", "text": part.text})
            elif part.type == "image_url":
                blocks.append({"type": "image", "source": {"type": "url", "url": part.url}})
            else:
                raise UnsupportedCapability(
                    f"content part type {part.type!r} is not supported",
                    provider=self.name,
                )
        return blocks

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def parse_chunk(self, raw: RawEvent, state: StreamState) -> list[StreamDelta]:
        data = self._load(raw)
        if isinstance(data, ErrorDelta):
            return [data]

        if raw.event == DOCUMENT_EVENT:
            if data.get("type") == "error":
                return [self._stream_error(data.get("error"))]
            return self._parse_document(data, state)

        event_type = raw.event or data.get("type")

        if event_type == "message_start":
            usage = (data.get("message") or {}).get("usage") or {}
            state.prompt_tokens = usage.get("input_tokens") or 0
            return []

        if event_type == "content_block_start":
            block = data.get("content_block") or {}
            idx = data.get("index", 0)
            if block.get("type") == "tool_use":
                state.saw_tool_calls = True
                return [
                    ToolCallDelta(
                        index=idx,
                        id_fragment=block.get("id"),
                        name_fragment=block.get("name"),
                        args_fragment="",
                    )
                ]
            if block.get("type") == "text" and block.get("text"):
                return [TextDelta(block["text"])]
            return []

        if event_type == "content_block_delta":
            delta = data.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                return [TextDelta(delta.get("text", ""))] if delta.get("text") else []
            if delta_type == "input_json_delta":
                return [
                    ToolCallDelta(
                        index=data.get("index", 0),
                        args_fragment=delta.get("partial_json", ""),
                    )
                ]
            # thinking / signature deltas are not part of the canonical stream
            return []

        if event_type == "message_delta":
            deltas: list[StreamDelta] = []
            usage = data.get("usage") or {}
            if usage or state.prompt_tokens:
                deltas.append(
                    Usage(
                        prompt_tokens=state.prompt_tokens,
                        completion_tokens=usage.get("output_tokens") or 0,
                    )
                )
                state.prompt_tokens = 0
            reason = (data.get("delta") or {}).get("stop_reason")
            if reason:
                deltas.append(Finish(_STOP_REASONS.get(reason, FinishReason.STOP)))
            return deltas

        if event_type == "message_stop":
            state.ended = True
            return []

        if event_type == "error":
            return [self._stream_error(data.get("error"))]

        # ping, content_block_stop and unknown future events
        return []

    def _parse_document(self, data: dict, state: StreamState) -> list[StreamDelta]:
        deltas: list[StreamDelta] = []
        for block in data.get("content") or []:
            if block.get("type") == "text" and block.get("text"):
                deltas.append(TextDelta(block["text"]))
            elif block.get("type") == "tool_use":
                deltas.append(
                    ToolCallDelta(
                        index=state.allocate_index(),
                        id_fragment=block.get("id"),
                        name_fragment=block.get("name"),
                        args_fragment=json.dumps(block.get("input") or {}),
                    )
                )
        usage = data.get("usage") or {}
        if usage:
            deltas.append(
                Usage(
                    prompt_tokens=usage.get("input_tokens") or 0,
                    completion_tokens=usage.get("output_tokens") or 0,
                )
            )
        deltas.append(
            Finish(_STOP_REASONS.get(data.get("stop_reason") or "end_turn", FinishReason.STOP))
        )
        state.ended = True
        return deltas


def _tool_choice(choice: str) -> dict:
    if choice == "auto":
        return {"type": "auto"}
    if choice == "none":
        return {"type": "none"}
    if choice == "required":
        return {"type": "any"}
    return {"type": "tool", "name": choice}
