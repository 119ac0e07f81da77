"""
Google Gemini adapter (``generativelanguage`` REST API).

Streaming uses ``:streamGenerateContent?alt=sse``; each SSE ``data`` payload
is a complete ``GenerateContentResponse``.  Function calls arrive whole, so
each one is emitted as a single ``ToolCallDelta`` carrying the full argument
object.  Gemini does not always assign call ids; missing ones are
synthesized.
"""

from __future__ import annotations

import json
import logging
import uuid

from switchboard.errors import UnsupportedCapability
from switchboard.llm.providers.base import (
    Credentials,
    ProviderAdapter,
    ProviderKind,
    StreamState,
)
from switchboard.llm.providers.framing import RawEvent
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

_MAX_STOP_SEQUENCES = 5

_BLOCKED = {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"}


class GeminiAdapter(ProviderAdapter):
    """Adapter for the Gemini ``generateContent`` family of endpoints."""

    default_kind = ProviderKind.GEMINI
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    framing = "sse"

    def auth_headers(self, credentials: Credentials) -> dict[str, str]:
        if credentials.api_key:
            return {"x-goog-api-key": credentials.api_key}
        return {}

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def translate_request(self, request: ProviderRequest) -> tuple[str, dict]:
        params = request.params
        if len(params.stop) > _MAX_STOP_SEQUENCES:
            raise UnsupportedCapability(
                f"at most {_MAX_STOP_SEQUENCES} stop sequences are supported",
                provider=self.name,
            )
        self.check_tools(request)

        system, contents = self._convert_messages(list(request.messages))
        body: dict = {"contents": contents}
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}

        config: dict = {}
        if params.temperature is not None:
            config["temperature"] = params.temperature
        if params.max_tokens is not None:
            config["maxOutputTokens"] = params.max_tokens
        if params.top_p is not None:
            config["topP"] = params.top_p
        if params.top_k is not None:
            config["topK"] = params.top_k
        if params.stop:
            config["stopSequences"] = list(params.stop)
        if config:
            body["generationConfig"] = config

        if request.tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": t.name,
                            "description": t.description,
                            "parameters": t.parameters or {"type": "object", "properties": {}},
                        }
                        for t in request.tools
                    ]
                }
            ]
            body["toolConfig"] = {"functionCallingConfig": _calling_config(params.tool_choice)}
        body.update(params.extra)

        if request.stream:
            return f"/models/{request.model}:streamGenerateContent?alt=sse", body
        return f"/models/{request.model}:generateContent", body

    def _convert_messages(self, messages: list[Message]) -> tuple[str, list[dict]]:
        system_parts: list[str] = []
        contents: list[dict] = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
                continue

            if msg.role == "tool":
                part = {
                    "functionResponse": {
                        "name": msg.name or "",
                        "response": {"content": msg.content},
                    }
                }
                if msg.tool_call_id:
                    part["functionResponse"]["id"] = msg.tool_call_id
                prev = contents[-1] if contents else None
                if prev is not None and prev["role"] == "user" and all(
                    "functionResponse" in p for p in prev["parts"]
                ):
                    prev["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
                continue

            parts: list[dict] = []
            if msg.parts:
                for p in msg.parts:
                    if p.type == "text":
                        parts.append({"text": p.text})
                    elif p.type == "image_url":
                        parts.append({"fileData": {"fileUri": p.url}})
                    else:
                        raise UnsupportedCapability(
                            f"content part type {p.type!r} is not supported",
                            provider=self.name,
                        )
            elif msg.content:
                parts.append({"text": msg.content})
            for tc in msg.tool_calls:
                parts.append({"functionCall": {"name": tc.name, "args": tc.arguments}})

            role = "model" if msg.role == "assistant" else "user"
            contents.append({"role": role, "parts": parts or [{"text": ""}]})

        return "\n\n".join(p for p in system_parts if p), contents

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def parse_chunk(self, raw: RawEvent, state: StreamState) -> list[StreamDelta]:
        data = self._load(raw)
        if isinstance(data, ErrorDelta):
            return [data]
        if "error" in data:
            return [self._stream_error(data["error"])]

        deltas: list[StreamDelta] = []
        candidates = data.get("candidates") or []
        if not candidates:
            block = (data.get("promptFeedback") or {}).get("blockReason")
            if block:
                state.ended = True
                return [Finish(FinishReason.CONTENT_FILTER)]
            return []

        candidate = candidates[0]
        for part in (candidate.get("content") or {}).get("parts") or []:
            if part.get("thought"):
                continue
            if part.get("text"):
                deltas.append(TextDelta(part["text"]))
            elif "functionCall" in part:
                fc = part["functionCall"] or {}
                deltas.append(
                    ToolCallDelta(
                        index=state.allocate_index(),
                        id_fragment=fc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                        name_fragment=fc.get("name"),
                        args_fragment=json.dumps(fc.get("args") or {}),
                    )
                )

        reason = candidate.get("finishReason")
        if reason:
            # usageMetadata is cumulative; only the final chunk is reported.
            meta = data.get("usageMetadata") or {}
            if meta:
                deltas.append(
                    Usage(
                        prompt_tokens=meta.get("promptTokenCount") or 0,
                        completion_tokens=meta.get("candidatesTokenCount") or 0,
                    )
                )
            deltas.append(Finish(self._finish_reason(reason, state)))
        return deltas

    def _finish_reason(self, reason: str, state: StreamState) -> str:
        if reason == "MAX_TOKENS":
            return FinishReason.LENGTH
        if reason in _BLOCKED:
            return FinishReason.CONTENT_FILTER
        # Gemini reports STOP even when the turn ends in function calls.
        if state.saw_tool_calls:
            return FinishReason.TOOL_CALLS
        return FinishReason.STOP


def _calling_config(choice: str) -> dict:
    if choice == "auto":
        return {"mode": "AUTO"}
    if choice == "none":
        return {"mode": "NONE"}
    if choice == "required":
        return {"mode": "ANY"}
    return {"mode": "ANY", "allowedFunctionNames": [choice]}
