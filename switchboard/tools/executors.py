"""
Executors -- one per ``ExecutionMode``.

An executor runs a single validated call and returns the success payload
(a string or any JSON-serializable value).  Failures reported across a tool
boundary are raised as ``ToolExecutionError``; anything else a handler
raises is left for the gateway to classify.  Timeouts are enforced by the
gateway, which cancels ``run``; executors clean up their process or
connection on cancellation.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
import sys
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, ClassVar

import httpx

from switchboard.errors import TOOL_FAILURE_KINDS, ErrorKind, ToolExecutionError
from switchboard.llm.types import ToolCall
from switchboard.tools.base import ExecutionContext, ExecutionMode, PluginDescriptor

logger = logging.getLogger(__name__)

WORKER_MODULE = "switchboard.tools.worker"

# Variables a sandboxed worker inherits; everything else (API keys
# included) is dropped.
ENV_ALLOWLIST = ("PATH", "HOME", "LANG", "LC_ALL", "PYTHONPATH", "SYSTEMROOT", "TMPDIR")

# Cap worker output to prevent memory issues.
_MAX_OUTPUT_BYTES = 1024 * 1024  # 1 MB


def parse_wire_response(data: Any, source: str) -> Any:
    """
    Unpack a ``{status: success, payload} | {status: failure, kind, message}``
    response, raising ``ToolExecutionError`` for failures and malformed shapes.
    """
    if not isinstance(data, dict) or data.get("status") not in ("success", "failure"):
        raise ToolExecutionError(f"malformed response from {source}: {str(data)[:200]}")
    if data["status"] == "success":
        return data.get("payload")

    try:
        kind = ErrorKind(data.get("kind"))
    except ValueError:
        kind = ErrorKind.TOOL_EXECUTION_FAILED
    if kind not in TOOL_FAILURE_KINDS:
        kind = ErrorKind.TOOL_EXECUTION_FAILED
    raise ToolExecutionError(str(data.get("message") or "tool reported failure"), kind=kind)


def _accepts_context(handler: Any) -> bool:
    try:
        return "context" in inspect.signature(handler).parameters
    except (TypeError, ValueError):
        return False


class Executor(ABC):
    mode: ClassVar[ExecutionMode]

    @abstractmethod
    async def run(
        self, plugin: PluginDescriptor, call: ToolCall, context: ExecutionContext
    ) -> Any: ...


# ---------------------------------------------------------------------------
# builtin
# ---------------------------------------------------------------------------

class BuiltinExecutor(Executor):
    """
    Runs the handler in-process.

    Coroutine functions are awaited; plain functions run in a worker thread
    so they cannot block the event loop.  A handler that declares a
    ``context`` parameter receives the ``ExecutionContext``.
    """

    mode = ExecutionMode.BUILTIN

    async def run(self, plugin, call, context):
        handler = plugin.handler
        kwargs = dict(call.arguments)
        if _accepts_context(handler):
            kwargs["context"] = context

        if inspect.iscoroutinefunction(handler):
            return await handler(**kwargs)
        result = await asyncio.to_thread(handler, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


# ---------------------------------------------------------------------------
# sandboxed-remote
# ---------------------------------------------------------------------------

class SubprocessExecutor(Executor):
    """
    Runs a ``module:attr`` handler in a separate ``python -m
    switchboard.tools.worker`` process.

    The request travels as one JSON document on stdin and the response as
    one JSON document on stdout.  The child gets a scrubbed environment.
    """

    mode = ExecutionMode.SANDBOXED_REMOTE

    def __init__(
        self,
        python: str | None = None,
        *,
        env_allowlist: tuple[str, ...] = ENV_ALLOWLIST,
        kill_grace: float = 2.0,
    ) -> None:
        self.python = python or sys.executable
        self.env_allowlist = env_allowlist
        self.kill_grace = kill_grace

    def _env(self) -> dict[str, str]:
        env = {k: os.environ[k] for k in self.env_allowlist if k in os.environ}
        # The worker must be able to import this package even when it is
        # not installed.
        root = str(Path(__file__).resolve().parents[2])
        paths = [p for p in env.get("PYTHONPATH", "").split(os.pathsep) if p]
        if root not in paths:
            env["PYTHONPATH"] = os.pathsep.join([root, *paths])
        return env

    async def run(self, plugin, call, context):
        request = {
            "handler": plugin.target,
            "tool": call.name,
            "arguments": call.arguments,
            "context": context.to_wire(),
        }
        proc = await asyncio.create_subprocess_exec(
            self.python,
            "-m",
            WORKER_MODULE,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._env(),
        )
        try:
            stdout_raw, stderr_raw = await proc.communicate(
                json.dumps(request, default=str).encode("utf-8")
            )
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise

        if proc.returncode != 0:
            stderr = stderr_raw[-500:].decode("utf-8", errors="replace").strip()
            raise ToolExecutionError(
                f"worker for {call.name} exited with code {proc.returncode}"
                + (f": {stderr}" if stderr else "")
            )
        try:
            data = json.loads(stdout_raw[:_MAX_OUTPUT_BYTES].decode("utf-8", errors="replace"))
        except (json.JSONDecodeError, ValueError):
            raise ToolExecutionError(
                f"malformed response from worker for {call.name}: {stdout_raw[:200]!r}"
            ) from None
        return parse_wire_response(data, f"worker for {call.name}")

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            logger.warning("Worker pid=%s ignored SIGTERM, killing", proc.pid)
            try:
                proc.kill()
                await proc.wait()
            except ProcessLookupError:
                pass


class RemoteGatewayExecutor(Executor):
    """POSTs the call to an HTTP gateway service and parses its wire response."""

    mode = ExecutionMode.SANDBOXED_REMOTE

    def __init__(
        self,
        *,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.headers = headers or {}
        self._transport = transport

    async def run(self, plugin, call, context):
        body = {
            "tool": plugin.remote_name or call.name,
            "arguments": call.arguments,
            "context": context.to_wire(),
        }
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(None), transport=self._transport
        ) as client:
            response = await client.post(plugin.target, json=body, headers=self.headers)
        if response.status_code >= 400:
            raise ToolExecutionError(
                f"gateway {plugin.target} returned HTTP {response.status_code}: "
                f"{response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError:
            raise ToolExecutionError(
                f"malformed response from gateway {plugin.target}: {response.text[:200]!r}"
            ) from None
        return parse_wire_response(data, f"gateway {plugin.target}")


class SandboxedRemoteExecutor(Executor):
    """Chooses a worker process or an HTTP gateway from the descriptor target."""

    mode = ExecutionMode.SANDBOXED_REMOTE

    def __init__(
        self,
        subprocess: SubprocessExecutor | None = None,
        remote: RemoteGatewayExecutor | None = None,
    ) -> None:
        self.subprocess = subprocess or SubprocessExecutor()
        self.remote = remote or RemoteGatewayExecutor()

    async def run(self, plugin, call, context):
        if plugin.target.startswith(("http://", "https://")):
            return await self.remote.run(plugin, call, context)
        if ":" not in plugin.target:
            raise ToolExecutionError(
                f"sandboxed target must be 'module:attr' or an http(s) URL, got {plugin.target!r}"
            )
        return await self.subprocess.run(plugin, call, context)


# ---------------------------------------------------------------------------
# mcp
# ---------------------------------------------------------------------------

class McpExecutor(Executor):
    """Calls a tool on an MCP server over streamable HTTP."""

    mode = ExecutionMode.MCP

    def __init__(
        self,
        *,
        headers: dict[str, str] | None = None,
        http_timeout: float = 30.0,
    ) -> None:
        self.headers = headers or {}
        self.http_timeout = http_timeout

    @asynccontextmanager
    async def session(self, url: str) -> AsyncIterator[Any]:
        from mcp import ClientSession
        from mcp.client.streamable_http import streamable_http_client

        async with httpx.AsyncClient(
            headers=self.headers, timeout=self.http_timeout
        ) as http_client:
            async with streamable_http_client(url, http_client=http_client) as (
                read,
                write,
                _get_session_id,
            ):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    yield session

    async def run(self, plugin, call, context):
        remote = plugin.remote_name or call.name
        async with self.session(plugin.target) as session:
            result = await session.call_tool(remote, call.arguments)

        text = "\n".join(
            item.text for item in (result.content or []) if getattr(item, "text", None)
        )
        if getattr(result, "isError", False):
            raise ToolExecutionError(text or f"MCP tool {remote} reported an error")
        structured = getattr(result, "structuredContent", None)
        if structured is not None:
            return structured
        return text


def default_executors(
    *,
    sandbox_python: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[ExecutionMode, Executor]:
    return {
        ExecutionMode.BUILTIN: BuiltinExecutor(),
        ExecutionMode.SANDBOXED_REMOTE: SandboxedRemoteExecutor(
            SubprocessExecutor(sandbox_python),
            RemoteGatewayExecutor(transport=transport),
        ),
        ExecutionMode.MCP: McpExecutor(),
    }
