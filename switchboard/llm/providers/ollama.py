"""
Ollama adapter.

Streams responses from an Ollama instance via its ``/api/chat`` endpoint as
newline-delimited JSON.  Tool calls arrive whole inside ``message.tool_calls``
and carry no id, so ids are synthesized.
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


class OllamaAdapter(ProviderAdapter):
    """Adapter for a local or hosted `Ollama <https://ollama.com>`_ instance."""

    default_kind = ProviderKind.OLLAMA
    default_base_url = "http://localhost:11434"
    framing = "ndjson"

    def auth_headers(self, credentials: Credentials) -> dict[str, str]:
        if credentials.api_key:
            return {"Authorization": f"Bearer {credentials.api_key}"}
        return {}

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def translate_request(self, request: ProviderRequest) -> tuple[str, dict]:
        params = request.params
        if params.tool_choice not in ("auto", "none"):
            raise UnsupportedCapability(
                f"tool_choice={params.tool_choice!r} is not supported by Ollama",
                provider=self.name,
            )
        self.check_tools(request)

        body: dict = {
            "model": request.model,
            "messages": [self._wire_message(m) for m in request.messages],
            "stream": request.stream,
        }

        options: dict = {}
        if params.temperature is not None:
            options["temperature"] = params.temperature
        if params.max_tokens is not None:
            options["num_predict"] = params.max_tokens
        if params.top_p is not None:
            options["top_p"] = params.top_p
        if params.top_k is not None:
            options["top_k"] = params.top_k
        if params.stop:
            options["stop"] = list(params.stop)
        if options:
            body["options"] = options

        if request.tools and params.tool_choice != "none":
            body["tools"] = [t.to_openai_schema() for t in request.tools]
        body.update(params.extra)
        return "/api/chat", body

    def _wire_message(self, msg: Message) -> dict:
        content = msg.content
        if msg.parts:
            texts: list[str] = []
            for part in msg.parts:
                if part.type != "text":
                    raise UnsupportedCapability(
                        f"content part type {part.type!r} is not supported by Ollama",
                        provider=self.name,
                    )
                texts.append(part.text)
            content = "".join(texts)

        m: dict = {"role": msg.role, "content": content}
        if msg.tool_calls:
            m["tool_calls"] = [
                {
                    "function": {
                        "name": tc.name,
                        "arguments": tc.arguments,  # Ollama expects dict, not string
                    },
                }
                for tc in msg.tool_calls
            ]
        if msg.role == "tool" and msg.name:
            m["tool_name"] = msg.name
        return m

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
        message = data.get("message") or {}
        if message.get("content"):
            deltas.append(TextDelta(message["content"]))

        for tc in message.get("tool_calls") or []:
            func = tc.get("function") or {}
            deltas.append(
                ToolCallDelta(
                    index=state.allocate_index(),
                    id_fragment=tc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                    name_fragment=func.get("name"),
                    args_fragment=json.dumps(func.get("arguments") or {}),
                )
            )

        if data.get("done"):
            if "prompt_eval_count" in data or "eval_count" in data:
                deltas.append(
                    Usage(
                        prompt_tokens=data.get("prompt_eval_count") or 0,
                        completion_tokens=data.get("eval_count") or 0,
                    )
                )
            if data.get("done_reason") == "length":
                reason = FinishReason.LENGTH
            elif state.saw_tool_calls:
                reason = FinishReason.TOOL_CALLS
            else:
                reason = FinishReason.STOP
            deltas.append(Finish(reason))
            state.ended = True
        return deltas
