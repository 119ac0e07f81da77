"""Abstract base class for provider adapters."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, ClassVar

import httpx

from switchboard.errors import (
    ErrorKind,
    ProviderError,
    TransportError,
    UnsupportedCapability,
    error_for_status,
    parse_retry_after,
)
from switchboard.llm.providers.framing import (
    DOCUMENT_EVENT,
    RawEvent,
    iter_lines,
    iter_ndjson,
    iter_sse,
)
from switchboard.llm.types import ErrorDelta, ProviderRequest, StreamDelta

if TYPE_CHECKING:
    from switchboard.config import ProviderConfig

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"
    DEEPSEEK = "deepseek"
    XAI = "xai"
    GROQ = "groq"
    MISTRAL = "mistral"
    TOGETHER = "together"
    LMSTUDIO = "lmstudio"
    VLLM = "vllm"


@dataclass(frozen=True)
class Credentials:
    api_key: str = ""
    extra_headers: dict[str, str] = field(default_factory=dict)


@dataclass
class StreamState:
    """Per-stream parse state.  A fresh one is created for every stream."""

    next_tool_index: int = 0
    saw_tool_calls: bool = False
    ended: bool = False
    prompt_tokens: int = 0

    def allocate_index(self) -> int:
        idx = self.next_tool_index
        self.next_tool_index += 1
        self.saw_tool_calls = True
        return idx


class ProviderAdapter(ABC):
    """
    Translates canonical requests to one backend's wire format and back.

    Subclasses implement ``translate_request``, ``parse_chunk`` and
    ``auth_headers``; they may refine ``map_error``.  The HTTP transport,
    timeouts and stream framing live here in ``open``.

    Parameters
    ----------
    base_url:
        Base URL of the API.  Defaults to ``default_base_url``.
    kind:
        The ``ProviderKind`` this instance serves.  OpenAI-compatible aliases
        share one adapter class.
    connect_timeout / read_timeout:
        Seconds to establish a connection / wait for the next bytes.
    supports_tools:
        ``False`` for models known not to accept tool declarations.
    transport:
        Optional ``httpx`` transport, used by tests.
    """

    default_kind: ClassVar[ProviderKind]
    default_base_url: ClassVar[str] = ""
    framing: ClassVar[str] = "sse"  # "sse" or "ndjson"

    def __init__(
        self,
        base_url: str | None = None,
        *,
        kind: ProviderKind | None = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        supports_tools: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.kind = kind or self.default_kind
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.supports_tools = supports_tools
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ProviderAdapter:
        return cls(
            config.base_url or base_url,
            kind=ProviderKind(config.kind),
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            supports_tools=config.supports_tools,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return self.kind.value

    # ------------------------------------------------------------------
    # Capability set
    # ------------------------------------------------------------------

    @abstractmethod
    def translate_request(self, request: ProviderRequest) -> tuple[str, dict]:
        """
        Return ``(path, body)`` for *request*.

        Raises ``UnsupportedCapability`` for parameter combinations the
        backend cannot honour.
        """
        ...

    @abstractmethod
    def parse_chunk(self, raw: RawEvent, state: StreamState) -> list[StreamDelta]:
        """
        Convert one framed wire event into canonical deltas.

        A chunk that cannot be decoded yields a single non-retryable
        ``MalformedChunk`` error delta and leaves *state* untouched.
        """
        ...

    @abstractmethod
    def auth_headers(self, credentials: Credentials) -> dict[str, str]:
        ...

    def map_error(self, error: BaseException | httpx.Response) -> ProviderError:
        """Classify a transport exception or error response into the taxonomy."""
        if isinstance(error, ProviderError):
            return error
        if isinstance(error, httpx.Response):
            cls = error_for_status(error.status_code)
            return cls(
                self._error_message(error),
                provider=self.name,
                status_code=error.status_code,
                retry_after=parse_retry_after(error.headers.get("retry-after")),
            )
        if isinstance(error, httpx.TimeoutException):
            return TransportError(f"timed out: {error}", provider=self.name)
        if isinstance(error, (httpx.TransportError, OSError)):
            return TransportError(
                f"{type(error).__name__}: {error}", provider=self.name
            )
        if isinstance(error, httpx.HTTPError):
            return TransportError(str(error), provider=self.name)
        return ProviderError(
            f"{type(error).__name__}: {error}", provider=self.name
        )

    def new_stream_state(self) -> StreamState:
        return StreamState()

    def check_tools(self, request: ProviderRequest) -> None:
        """Reject tool declarations this adapter or model cannot carry."""
        if request.tools and not self.supports_tools:
            raise UnsupportedCapability(
                f"model {request.model!r} does not support tool calling",
                provider=self.name,
            )
        choice = request.params.tool_choice
        if choice not in ("auto", "none", "required"):
            if choice not in {t.name for t in request.tools}:
                raise UnsupportedCapability(
                    f"tool_choice names undeclared tool {choice!r}",
                    provider=self.name,
                )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def endpoint(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def open(
        self, request: ProviderRequest, credentials: Credentials
    ) -> AsyncIterator[RawEvent]:
        """
        Send *request* and yield framed raw events as they arrive.

        Non-streamed requests yield a single ``DOCUMENT_EVENT``.  Closing the
        iterator closes the underlying HTTP connection.
        """
        path, body = self.translate_request(request)
        headers = {
            "Content-Type": "application/json",
            **self.auth_headers(credentials),
            **credentials.extra_headers,
        }
        if request.stream:
            headers["Accept"] = (
                "text/event-stream" if self.framing == "sse" else "application/x-ndjson"
            )
        logger.info(
            "REQUEST: provider=%s model=%s tools=%d messages=%d api_key=%s...",
            self.name,
            request.model,
            len(request.tools),
            len(request.messages),
            credentials.api_key[:6] if credentials.api_key else "(none)",
        )

        timeout = httpx.Timeout(self.read_timeout, connect=self.connect_timeout)
        try:
            async with httpx.AsyncClient(
                timeout=timeout, transport=self._transport
            ) as client:
                async with client.stream(
                    "POST", self.endpoint(path), json=body, headers=headers
                ) as response:
                    if response.status_code >= 400:
                        # Read the body so the error message can be surfaced.
                        await response.aread()
                        raise self.map_error(response)

                    if not request.stream:
                        raw = await response.aread()
                        yield RawEvent(
                            data=raw.decode("utf-8", errors="replace"),
                            event=DOCUMENT_EVENT,
                        )
                        return

                    lines = iter_lines(response.aiter_bytes())
                    frames = iter_sse(lines) if self.framing == "sse" else iter_ndjson(lines)
                    async for event in frames:
                        yield event
        except httpx.HTTPError as exc:
            raise self.map_error(exc) from exc

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _error_message(self, response: httpx.Response) -> str:
        """Best-effort extraction of a human-readable error from a body."""
        text = response.text
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return f"HTTP {response.status_code}: {text[:200]}"
        err = data.get("error") if isinstance(data, dict) else None
        if isinstance(err, dict) and err.get("message"):
            return f"HTTP {response.status_code}: {err['message']}"
        if isinstance(err, str):
            return f"HTTP {response.status_code}: {err}"
        return f"HTTP {response.status_code}: {text[:200]}"

    def _load(self, raw: RawEvent) -> dict | ErrorDelta:
        """Parse a raw event's JSON payload, or describe why it could not be."""
        try:
            data = json.loads(raw.data)
        except (json.JSONDecodeError, ValueError):
            logger.warning("%s: failed to parse chunk: %s", self.name, raw.data[:200])
            return ErrorDelta(
                ErrorKind.MALFORMED_CHUNK,
                f"unparseable chunk from {self.name}: {raw.data[:80]!r}",
            )
        if not isinstance(data, dict):
            return ErrorDelta(
                ErrorKind.MALFORMED_CHUNK,
                f"unexpected chunk shape from {self.name}: {type(data).__name__}",
            )
        return data

    def _stream_error(self, payload: object, status_code: int | None = None) -> ErrorDelta:
        """Turn an in-band error object into a terminal error delta."""
        if isinstance(payload, dict):
            message = str(payload.get("message") or payload)
            code = str(payload.get("type") or payload.get("code") or payload.get("status") or "")
        else:
            message, code = str(payload), ""
        code = code.lower()
        if "rate" in code or code in ("429", "resource_exhausted"):
            exc: ProviderError = error_for_status(429)(message, provider=self.name)
        elif "overloaded" in code or "server" in code or code in ("unavailable", "internal", "500", "503"):
            exc = TransportError(message, provider=self.name)
        elif "auth" in code or "permission" in code or code == "unauthenticated":
            exc = error_for_status(401)(message, provider=self.name)
        else:
            exc = error_for_status(status_code or 400)(message, provider=self.name)
        return ErrorDelta.from_exception(exc)
