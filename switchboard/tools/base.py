from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from switchboard.llm.types import ToolSpec


class ExecutionMode(str, Enum):
    BUILTIN = "builtin"
    SANDBOXED_REMOTE = "sandboxed-remote"
    MCP = "mcp"


class PrivacyScope(Enum):
    PUBLIC = "public"
    SENSITIVE = "sensitive"
    SECRET = "secret"


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("additionalProperties", False)
    return s


@dataclass(frozen=True)
class PluginDescriptor:
    """
    Everything the gateway needs to run one tool.

    Parameters
    ----------
    name : str
        Name the model calls the tool by.
    parameters : dict
        JSON schema for the argument object.
    mode : ExecutionMode
        Where the tool runs.
    handler : callable
        Sync or async callable for ``builtin`` tools.
    target : str
        ``module:attr`` handler path or ``http(s)://`` gateway URL for
        ``sandboxed-remote`` tools; MCP server URL for ``mcp`` tools.
    remote_name : str | None
        Tool name on the MCP server, when it differs from *name*.
    timeout : float | None
        Per-tool override of the gateway's default timeout.
    """

    name: str
    description: str = ""
    parameters: dict = field(default_factory=dict)
    mode: ExecutionMode = ExecutionMode.BUILTIN
    handler: Callable[..., Any] | None = None
    target: str = ""
    remote_name: str | None = None
    timeout: float | None = None
    privacy_scope: PrivacyScope = PrivacyScope.PUBLIC
    secret_fields: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", ExecutionMode(self.mode))
        if not self.name:
            raise ValueError("Plugin name must not be empty")
        if self.mode is ExecutionMode.BUILTIN and self.handler is None:
            raise ValueError(f"Builtin plugin {self.name!r} needs a handler")
        if self.mode is not ExecutionMode.BUILTIN and not self.target:
            raise ValueError(f"Plugin {self.name!r} ({self.mode.value}) needs a target")
        if self.mode is ExecutionMode.MCP and not self.target.startswith(("http://", "https://")):
            raise ValueError(f"MCP plugin {self.name!r} target must be an http(s) URL")

    @property
    def schema(self) -> dict:
        return normalize_schema(self.parameters)

    def to_spec(self) -> ToolSpec:
        return ToolSpec(self.name, self.description, self.schema)


class Tool(ABC):
    """Class-based authoring for in-process tools; see ``to_descriptor``."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @property
    def privacy_scope(self) -> PrivacyScope:
        return PrivacyScope.PUBLIC

    @property
    def secret_fields(self) -> list[str]:
        return []

    @property
    def timeout(self) -> float | None:
        return None

    @abstractmethod
    async def execute(self, **kwargs) -> Any: ...

    def to_descriptor(self) -> PluginDescriptor:
        return PluginDescriptor(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
            mode=ExecutionMode.BUILTIN,
            handler=self.execute,
            timeout=self.timeout,
            privacy_scope=self.privacy_scope,
            secret_fields=tuple(self.secret_fields),
        )


@dataclass
class ExecutionContext:
    """Per-call state handed to the gateway and, in reduced form, to the tool."""

    conversation_id: str = ""
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    timeout: float | None = None
    iteration: int = 0
    metadata: dict = field(default_factory=dict)

    def to_wire(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "iteration": self.iteration,
            "metadata": self.metadata,
        }
