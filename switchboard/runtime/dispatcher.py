"""
Runtime dispatcher -- drives one conversational turn end to end.

For each sub-turn the dispatcher:
1. Builds a ``ProviderRequest`` from the conversation and enabled tools
2. Opens the provider stream and forwards every normalized delta live
3. Folds tool-call fragments in a ``ToolCallAccumulator``
4. If the model asked for tools, runs them concurrently through the
   ``PluginGateway``, appends the assistant and tool messages, and recurses
   with ``iteration + 1``
5. Otherwise finalizes the assistant message and emits the terminal delta

The caller sees exactly one terminal delta per dispatched turn.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Iterable

import httpx

from switchboard.config import ProviderConfig, SwitchboardConfig
from switchboard.errors import ErrorKind, TooManyIterations
from switchboard.llm.accumulator import ToolCallAccumulator
from switchboard.llm.normalizer import DEFAULT_MAX_MALFORMED, StreamNormalizer
from switchboard.llm.providers.base import Credentials, ProviderAdapter
from switchboard.llm.providers.registry import ProviderRegistry
from switchboard.llm.types import (
    ConversationTurn,
    ErrorDelta,
    Finish,
    FinishReason,
    GenerationParams,
    Message,
    ProviderRequest,
    StreamDelta,
    TextDelta,
    ToolCall,
    ToolCallDelta,
    ToolSpec,
    Usage,
)
from switchboard.runtime.retry import RetryPolicy
from switchboard.runtime.session import RuntimeSession, SessionManager
from switchboard.tools.base import ExecutionContext
from switchboard.tools.gateway import PluginGateway
from switchboard.tools.registry import PluginRegistry
from switchboard.types import ToolResult

logger = logging.getLogger(__name__)

ToolResultCallback = Callable[[ToolResult], Any]


class TurnStream:
    """
    Live deltas of one dispatched turn, plus what the turn produced.

    Iterate it once.  After iteration ends, ``messages`` holds the messages
    to append to the conversation, ``tool_results`` every tool outcome,
    ``usage`` the summed token usage and ``terminal`` the final delta.
    Use ``aclose()`` (or ``async with``) when abandoning a stream early so
    its session is released.
    """

    def __init__(
        self,
        dispatcher: RuntimeDispatcher,
        *,
        session: RuntimeSession,
        conversation: ConversationTurn,
        tools: tuple[ToolSpec, ...],
        adapter: ProviderAdapter,
        provider_config: ProviderConfig,
        params: GenerationParams,
        on_tool_result: ToolResultCallback | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self.session = session
        self.conversation = conversation
        self.tools = tools
        self.adapter = adapter
        self.provider_config = provider_config
        self.params = params
        self.on_tool_result = on_tool_result

        self.messages: list[Message] = []
        self.tool_results: list[ToolResult] = []
        self.usage = Usage()
        self.terminal: Finish | ErrorDelta | None = None
        self.iterations = 0
        self._agen: AsyncIterator[StreamDelta] | None = None
        self._closed = False

    @property
    def conversation_id(self) -> str:
        return self.session.conversation_id

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def __aiter__(self) -> TurnStream:
        if self._agen is not None or self._closed:
            raise RuntimeError("TurnStream can only be iterated once")
        self._agen = self._dispatcher._run(self)
        return self

    async def __anext__(self) -> StreamDelta:
        if self._closed and self._agen is None:
            raise StopAsyncIteration
        if self._agen is None:
            self.__aiter__()
        return await self._agen.__anext__()

    async def aclose(self) -> None:
        if self._agen is None:
            # Never started: nothing but the session to give back.
            self._closed = True
            self._dispatcher.sessions.release(self.session)
            return
        await self._agen.aclose()

    async def __aenter__(self) -> TurnStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def final_message(self) -> Message | None:
        for msg in reversed(self.messages):
            if msg.role == "assistant":
                return msg
        return None

    @property
    def content(self) -> str:
        msg = self.final_message
        return msg.content if msg else ""

    @property
    def ok(self) -> bool:
        return isinstance(self.terminal, Finish) and self.terminal.reason not in (
            FinishReason.CANCELLED,
            FinishReason.INCOMPLETE,
        )

    def extended_conversation(self) -> ConversationTurn:
        return self.conversation.extend(*self.messages)

    def _end(self, delta: Finish | ErrorDelta) -> Finish | ErrorDelta:
        self.terminal = delta
        return delta


class RuntimeDispatcher:
    """
    Parameters
    ----------
    registry : PluginRegistry
        Tools available to turns.
    gateway : PluginGateway
        Runs tool calls.  Defaults to a gateway over *registry*.
    provider_config : ProviderConfig
        Used when ``dispatch`` is not given one.
    providers : ProviderRegistry
        ``ProviderKind`` -> adapter resolution.
    adapter_factory : callable
        Overrides adapter construction (``ProviderConfig -> ProviderAdapter``).
    retry : RetryPolicy
        Backoff for retryable provider errors.
    max_iterations : int
        Provider round-trips allowed per turn.
    tool_timeout : float | None
        Per-call timeout handed to the gateway.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        gateway: PluginGateway | None = None,
        *,
        provider_config: ProviderConfig | None = None,
        providers: ProviderRegistry | None = None,
        adapter_factory: Callable[[ProviderConfig], ProviderAdapter] | None = None,
        sessions: SessionManager | None = None,
        retry: RetryPolicy | None = None,
        max_iterations: int = 8,
        max_malformed: int = DEFAULT_MAX_MALFORMED,
        tool_timeout: float | None = None,
        stream: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.registry = registry
        self.gateway = gateway or PluginGateway(registry)
        self.provider_config = provider_config or ProviderConfig()
        self.providers = providers or ProviderRegistry.default()
        self._adapter_factory = adapter_factory
        self.sessions = sessions or SessionManager()
        self.retry = retry or RetryPolicy()
        self.max_iterations = max_iterations
        self.max_malformed = max_malformed
        self.tool_timeout = tool_timeout
        self.stream = stream
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: SwitchboardConfig,
        *,
        registry: PluginRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RuntimeDispatcher:
        if registry is None:
            registry = PluginRegistry.from_config(config)
        return cls(
            registry,
            PluginGateway.from_config(config.tools, registry, transport=transport),
            provider_config=config.provider,
            retry=RetryPolicy.from_config(config.runtime),
            max_iterations=config.runtime.max_iterations,
            max_malformed=config.runtime.max_malformed_chunks,
            tool_timeout=config.tools.timeout_seconds,
            stream=config.runtime.stream,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def dispatch(
        self,
        conversation: ConversationTurn | Iterable[Message | dict],
        enabled_tools: Iterable[str] = (),
        provider_config: ProviderConfig | None = None,
        *,
        conversation_id: str | None = None,
        params: GenerationParams | None = None,
        on_tool_result: ToolResultCallback | None = None,
    ) -> TurnStream:
        """
        Start a turn and return its ``TurnStream``.

        Raises ``UnknownToolError`` for enabled tools that are not
        registered and ``SessionBusy`` if *conversation_id* already has a
        turn running.  Nothing touches the network until the stream is
        iterated.
        """
        if not isinstance(conversation, ConversationTurn):
            conversation = ConversationTurn.of(conversation)
        cfg = provider_config or self.provider_config
        tools = self.registry.specs(list(enabled_tools))
        adapter = self.adapter_for(cfg)
        session = self.sessions.acquire(conversation_id)
        return TurnStream(
            self,
            session=session,
            conversation=conversation,
            tools=tools,
            adapter=adapter,
            provider_config=cfg,
            params=params or cfg.generation_params(),
            on_tool_result=on_tool_result,
        )

    async def run_turn(self, *args, **kwargs) -> TurnStream:
        """``dispatch`` and drain; returns the finished ``TurnStream``."""
        stream = self.dispatch(*args, **kwargs)
        async with stream:
            async for _ in stream:
                pass
        return stream

    def cancel(self, conversation_id: str) -> bool:
        return self.sessions.cancel(conversation_id)

    def adapter_for(self, config: ProviderConfig) -> ProviderAdapter:
        if self._adapter_factory is not None:
            return self._adapter_factory(config)
        return self.providers.create(config, transport=self._transport)

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    async def _run(self, stream: TurnStream) -> AsyncIterator[StreamDelta]:
        try:
            with self.registry.reading():
                credentials = stream.provider_config.credentials()
                turn = self._turn(stream, credentials, stream.conversation, 0)
                async with aclosing(turn) as deltas:
                    async for delta in deltas:
                        yield delta
        finally:
            self.sessions.release(stream.session)
            logger.info(
                "Turn %s finished after %d iteration(s): %s",
                stream.conversation_id,
                stream.iterations,
                _describe(stream.terminal),
            )

    async def _turn(
        self,
        stream: TurnStream,
        credentials: Credentials,
        conversation: ConversationTurn,
        iteration: int,
    ) -> AsyncIterator[StreamDelta]:
        if iteration >= self.max_iterations:
            err = TooManyIterations(
                f"turn exceeded {self.max_iterations} provider round-trips"
            )
            yield stream._end(ErrorDelta.from_exception(err))
            return
        stream.iterations = iteration + 1

        session = stream.session
        adapter = stream.adapter
        request = ProviderRequest(
            model=stream.provider_config.model,
            messages=conversation,
            params=stream.params,
            tools=stream.tools,
            stream=self.stream,
        )

        attempt = 0
        while True:
            accumulator = ToolCallAccumulator()
            text: list[str] = []
            forwarded = False
            terminal: Finish | ErrorDelta | None = None

            normalizer = StreamNormalizer(
                adapter,
                adapter.open(request, credentials),
                cancel=session.cancel,
                read_timeout=stream.provider_config.read_timeout,
                max_malformed=self.max_malformed,
            )
            async with aclosing(normalizer.deltas()) as deltas:
                async for delta in deltas:
                    if delta.is_terminal:
                        terminal = delta
                        break
                    if isinstance(delta, TextDelta):
                        text.append(delta.text)
                        forwarded = True
                    elif isinstance(delta, ToolCallDelta):
                        accumulator.feed(delta)
                        forwarded = True
                    elif isinstance(delta, Usage):
                        stream.usage = stream.usage + delta
                    yield delta

            if isinstance(terminal, ErrorDelta):
                if not forwarded and self.retry.should_retry(terminal, attempt):
                    delay = self.retry.delay(attempt, terminal.retry_after)
                    logger.warning(
                        "%s: %s; retrying in %.2fs (attempt %d/%d)",
                        adapter.name,
                        terminal.message,
                        delay,
                        attempt + 1,
                        self.retry.max_retries,
                    )
                    if await self._backoff(delay, session.cancel):
                        yield stream._end(Finish(FinishReason.CANCELLED))
                        return
                    attempt += 1
                    continue
                yield stream._end(terminal)
                return
            break

        if terminal.reason == FinishReason.CANCELLED:
            yield stream._end(terminal)
            return

        accumulator.finish()
        resolved = accumulator.resolved()
        assistant = Message(
            role="assistant",
            content="".join(text),
            tool_calls=tuple(call for call, _ in resolved),
        )
        if not resolved:
            stream.messages.append(assistant)
            yield stream._end(terminal)
            return

        logger.info(
            "Turn %s iteration %d: %d tool call(s): %s",
            stream.conversation_id,
            iteration,
            len(resolved),
            ", ".join(call.name or "?" for call, _ in resolved),
        )
        context = ExecutionContext(
            conversation_id=stream.conversation_id,
            cancel=session.cancel,
            timeout=self.tool_timeout,
            iteration=iteration,
        )
        results = await asyncio.gather(
            *(self._run_tool(stream, call, reason, context) for call, reason in resolved)
        )
        stream.tool_results.extend(results)

        if session.cancelled:
            yield stream._end(Finish(FinishReason.CANCELLED))
            return

        # Every result, failed ones included, goes back to the model.
        appended = [assistant, *(r.to_message() for r in results)]
        stream.messages.extend(appended)
        follow_up = self._turn(stream, credentials, conversation.extend(*appended), iteration + 1)
        async with aclosing(follow_up) as deltas:
            async for delta in deltas:
                yield delta

    async def _run_tool(
        self,
        stream: TurnStream,
        call: ToolCall,
        invalid_reason: str | None,
        context: ExecutionContext,
    ) -> ToolResult:
        if invalid_reason is not None:
            result = ToolResult.failure(call, ErrorKind.INVALID_ARGUMENTS, invalid_reason)
        else:
            result = await self.gateway.invoke(call, context)

        if stream.on_tool_result is not None:
            try:
                ret = stream.on_tool_result(result)
                if inspect.isawaitable(ret):
                    await ret
            except Exception:
                logger.exception("on_tool_result callback failed")
        return result

    async def _backoff(self, delay: float, cancel: asyncio.Event) -> bool:
        """Sleep for *delay*; return ``True`` if cancelled meanwhile."""
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True


def _describe(delta: Finish | ErrorDelta | None) -> str:
    if delta is None:
        return "abandoned"
    if isinstance(delta, ErrorDelta):
        return f"error {delta.kind.value}"
    return f"finish {delta.reason}"
