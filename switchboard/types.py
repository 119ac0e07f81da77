import json
from dataclasses import dataclass, field

from switchboard.errors import ErrorKind
from switchboard.llm.types import Message, ToolCall


@dataclass
class ToolResult:
    tool_call_id: str
    tool_name: str
    success: bool
    content: str = ""
    data: dict | list | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    duration_ms: int = 0
    metadata: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, call: ToolCall, payload, **kwargs) -> "ToolResult":
        if isinstance(payload, str):
            return cls(call.id, call.name, True, content=payload, **kwargs)
        return cls(
            call.id,
            call.name,
            True,
            content=json.dumps(payload, default=str),
            data=payload,
            **kwargs,
        )

    @classmethod
    def failure(
        cls, call: ToolCall, kind: ErrorKind, message: str, **kwargs
    ) -> "ToolResult":
        return cls(
            call.id,
            call.name,
            False,
            content=f"[{kind.value}] {message}",
            error=message,
            error_kind=kind,
            **kwargs,
        )

    def to_wire(self) -> dict:
        """Render in the plugin boundary's ``{status, ...}`` shape."""
        if self.success:
            return {
                "status": "success",
                "payload": self.data if self.data is not None else self.content,
            }
        return {
            "status": "failure",
            "kind": self.error_kind.value if self.error_kind else None,
            "message": self.error,
        }

    def to_message(self) -> Message:
        return Message(
            role="tool",
            content=self.content,
            tool_call_id=self.tool_call_id,
            name=self.tool_name,
        )
