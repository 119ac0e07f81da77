"""Canonical types for the generation runtime.

Everything a provider adapter produces or consumes is expressed in these
types; no provider-specific shape leaks past the adapter layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Iterable, Iterator, Union

from switchboard.errors import ErrorKind, SwitchboardError

ROLES = ("system", "user", "assistant", "tool")


@dataclass(frozen=True)
class ToolCall:
    """A resolved tool call with parsed arguments."""

    id: str
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ContentPart:
    """A structured content part (``text`` or ``image_url``)."""

    type: str
    text: str = ""
    url: str = ""


@dataclass(frozen=True)
class Message:
    """A single message in a conversation.  Never mutated once built."""

    role: str  # "system", "user", "assistant", "tool"
    content: str = ""
    parts: tuple[ContentPart, ...] = ()
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        # Accept lists from callers but store tuples.
        if not isinstance(self.parts, tuple):
            object.__setattr__(self, "parts", tuple(self.parts))
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        calls = tuple(
            ToolCall(id=tc["id"], name=tc["name"], arguments=tc.get("arguments", {}))
            for tc in data.get("tool_calls") or ()
        )
        parts = tuple(ContentPart(**p) for p in data.get("parts") or ())
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            parts=parts,
            tool_calls=calls,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class ConversationTurn:
    """
    Ordered, immutable sequence of messages sent with one request.

    New turns are built with :meth:`extend`, which returns a copy; the
    original is never modified.
    """

    messages: tuple[Message, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def __getitem__(self, idx: int) -> Message:
        return self.messages[idx]

    def extend(self, *messages: Message) -> ConversationTurn:
        return ConversationTurn(self.messages + tuple(messages))

    @classmethod
    def of(cls, messages: Iterable[Message | dict]) -> ConversationTurn:
        """Build a turn from messages or plain ``{"role", "content"}`` dicts."""
        return cls(
            tuple(m if isinstance(m, Message) else Message.from_dict(m) for m in messages)
        )


@dataclass(frozen=True)
class GenerationParams:
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop: tuple[str, ...] = ()
    tool_choice: str = "auto"  # "auto", "none", "required" or a tool name
    extra: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ToolSpec:
    """A tool declared to the model: name, description and JSON schema."""

    name: str
    description: str = ""
    parameters: dict = field(default_factory=dict)

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters or {"type": "object", "properties": {}},
            },
        }


@dataclass(frozen=True)
class ProviderRequest:
    """Canonical request; built fresh for every (sub-)turn."""

    model: str
    messages: ConversationTurn
    params: GenerationParams = field(default_factory=GenerationParams)
    tools: tuple[ToolSpec, ...] = ()
    stream: bool = True

    def with_messages(self, messages: ConversationTurn) -> ProviderRequest:
        return replace(self, messages=messages)


# ---------------------------------------------------------------------------
# Stream deltas
# ---------------------------------------------------------------------------


class FinishReason:
    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TextDelta:
    text: str

    tag: ClassVar[str] = "text"
    is_terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class ToolCallDelta:
    """
    One fragment of a streamed tool call.

    Fragments for the same *index* arrive in provider order; the
    ``ToolCallAccumulator`` folds them into a ``ToolCall``.
    """

    index: int
    id_fragment: str | None = None
    name_fragment: str | None = None
    args_fragment: str = ""

    tag: ClassVar[str] = "tool_call"
    is_terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Usage:
    """Token usage.  Values are additive across a turn."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    tag: ClassVar[str] = "usage"
    is_terminal: ClassVar[bool] = False

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            self.prompt_tokens + other.prompt_tokens,
            self.completion_tokens + other.completion_tokens,
        )

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class Finish:
    reason: str

    tag: ClassVar[str] = "finish"
    is_terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class ErrorDelta:
    """
    An error observed on the stream.

    ``MalformedChunk`` errors are informational and the stream continues;
    every other kind terminates the turn.
    """

    kind: ErrorKind
    message: str
    retryable: bool = False
    retry_after: float | None = None

    tag: ClassVar[str] = "error"

    @property
    def is_terminal(self) -> bool:
        return self.kind is not ErrorKind.MALFORMED_CHUNK

    @classmethod
    def from_exception(cls, exc: SwitchboardError) -> ErrorDelta:
        return cls(
            kind=exc.kind or ErrorKind.PROVIDER_REJECTED,
            message=str(exc),
            retryable=exc.retryable,
            retry_after=getattr(exc, "retry_after", None),
        )


StreamDelta = Union[TextDelta, ToolCallDelta, Usage, Finish, ErrorDelta]
