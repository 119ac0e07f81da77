"""
Plugin gateway -- the single entry point for running a tool call.

For every call the gateway:
1. Resolves the descriptor by name (unknown -> ``UnknownTool``)
2. Validates arguments against its schema (mismatch -> ``InvalidArguments``)
3. Runs the mode's executor under a timeout, racing the cancellation token
4. Records an audit entry

``invoke`` never raises for tool-level problems and always returns within
the call's timeout.  A timed-out executor finishes unwinding in the
background.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import TYPE_CHECKING

from switchboard.errors import ErrorKind, ToolExecutionError
from switchboard.llm.types import ToolCall
from switchboard.tools.audit import AuditLog
from switchboard.tools.base import ExecutionContext, ExecutionMode, PluginDescriptor
from switchboard.tools.executors import Executor, default_executors
from switchboard.tools.registry import PluginRegistry
from switchboard.tools.validation import ArgumentValidator
from switchboard.types import ToolResult

if TYPE_CHECKING:
    import httpx

    from switchboard.config import ToolsConfig

logger = logging.getLogger(__name__)


def _consume(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class PluginGateway:
    """
    Parameters
    ----------
    registry : PluginRegistry
        Where descriptors are looked up.
    executors : dict
        ``ExecutionMode`` -> ``Executor``.  Defaults to ``default_executors()``.
    audit : AuditLog | None
        Optional audit sink.
    default_timeout : float
        Used when neither the descriptor nor the context sets a timeout.
    cancel_grace : float
        Seconds an abandoned executor gets to clean up before the gateway
        stops waiting for it.  Only spent while the call's timeout has time
        left, so a timed-out call returns at its deadline.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        *,
        executors: dict[ExecutionMode, Executor] | None = None,
        audit: AuditLog | None = None,
        default_timeout: float = 30.0,
        cancel_grace: float = 0.5,
    ) -> None:
        self.registry = registry
        self.executors = executors if executors is not None else default_executors()
        self.audit = audit
        self.default_timeout = default_timeout
        self.cancel_grace = cancel_grace

    @classmethod
    def from_config(
        cls,
        config: ToolsConfig,
        registry: PluginRegistry,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> PluginGateway:
        audit = None
        if config.audit_log_path:
            audit = AuditLog(
                config.audit_log_path,
                redaction_patterns=config.redaction_patterns,
                max_size_mb=config.audit_max_size_mb,
                keep_files=config.audit_keep_files,
            )
        return cls(
            registry,
            executors=default_executors(
                sandbox_python=config.sandbox_python or None, transport=transport
            ),
            audit=audit,
            default_timeout=config.timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def invoke(self, call: ToolCall, context: ExecutionContext) -> ToolResult:
        start = time.monotonic()

        plugin = self.registry.get(call.name)
        if plugin is None:
            result = ToolResult.failure(
                call, ErrorKind.UNKNOWN_TOOL, f"Unknown tool: {call.name}"
            )
        else:
            valid, error_msg = ArgumentValidator.validate(plugin, call.arguments)
            if not valid:
                result = ToolResult.failure(
                    call, ErrorKind.INVALID_ARGUMENTS, f"Validation error: {error_msg}"
                )
            else:
                result = await self._execute(plugin, call, context)

        result.duration_ms = int((time.monotonic() - start) * 1000)
        if not result.success:
            logger.info(
                "Tool %s (%s) failed: %s: %s",
                call.name,
                call.id,
                result.error_kind.value if result.error_kind else "?",
                result.error,
            )

        if self.audit is not None:
            try:
                await self.audit.record(
                    conversation_id=context.conversation_id,
                    plugin=plugin,
                    tool_name=call.name,
                    args=call.arguments,
                    result=result,
                    iteration=context.iteration,
                )
            except Exception:
                logger.exception("Audit log failed")
        return result

    async def invoke_raw(
        self, tool_name: str, arguments_json: str, context: ExecutionContext
    ) -> dict:
        """
        Plugin-boundary form of ``invoke``: arguments arrive as a JSON string
        and the result is returned in its ``{status, ...}`` wire shape.
        """
        call_id = f"call_{uuid.uuid4().hex[:12]}"
        try:
            arguments = json.loads(arguments_json or "{}")
        except (json.JSONDecodeError, ValueError) as exc:
            arguments, error = None, f"arguments are not valid JSON: {exc}"
        else:
            error = None if isinstance(arguments, dict) else "arguments must be a JSON object"
        if error:
            call = ToolCall(id=call_id, name=tool_name)
            return ToolResult.failure(call, ErrorKind.INVALID_ARGUMENTS, error).to_wire()
        result = await self.invoke(ToolCall(call_id, tool_name, arguments), context)
        return result.to_wire()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def timeout_for(self, plugin: PluginDescriptor, context: ExecutionContext) -> float:
        return plugin.timeout or context.timeout or self.default_timeout

    async def _execute(
        self, plugin: PluginDescriptor, call: ToolCall, context: ExecutionContext
    ) -> ToolResult:
        executor = self.executors.get(plugin.mode)
        if executor is None:
            return ToolResult.failure(
                call,
                ErrorKind.TOOL_EXECUTION_FAILED,
                f"No executor for mode {plugin.mode.value}",
            )
        if context.cancel.is_set():
            return ToolResult.failure(call, ErrorKind.CANCELLED, "Turn was cancelled")

        loop = asyncio.get_running_loop()
        timeout = self.timeout_for(plugin, context)
        deadline = loop.time() + timeout
        task = asyncio.ensure_future(executor.run(plugin, call, context))
        cancel_wait = asyncio.ensure_future(context.cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(_consume)
            raise
        finally:
            cancel_wait.cancel()

        if task in done:
            return self._collect(task, call)

        await self._abandon(task, deadline - loop.time())
        if context.cancel.is_set():
            return ToolResult.failure(call, ErrorKind.CANCELLED, "Turn was cancelled")
        return ToolResult.failure(
            call, ErrorKind.TOOL_TIMEOUT, f"Tool timed out after {timeout}s"
        )

    def _collect(self, task: asyncio.Future, call: ToolCall) -> ToolResult:
        try:
            payload = task.result()
        except asyncio.CancelledError:
            return ToolResult.failure(call, ErrorKind.CANCELLED, "Tool was cancelled")
        except ToolExecutionError as e:
            return ToolResult.failure(call, e.kind, e.message)
        except Exception as e:
            logger.warning("Tool %s raised %s: %s", call.name, type(e).__name__, e)
            return ToolResult.failure(
                call, ErrorKind.TOOL_EXECUTION_FAILED, f"Tool exception: {type(e).__name__}: {e}"
            )
        return ToolResult.ok(call, payload if payload is not None else "")

    async def _abandon(self, task: asyncio.Future, budget: float) -> None:
        """Cancel *task*, waiting for it to unwind only while *budget* lasts."""
        task.cancel()
        task.add_done_callback(_consume)
        grace = min(self.cancel_grace, budget)
        if grace > 0:
            await asyncio.wait({task}, timeout=grace)
        else:
            # Let the executor see the cancellation before returning.
            await asyncio.sleep(0)
