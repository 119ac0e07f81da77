"""
Turns one adapter's raw event iterator into the canonical delta sequence.

Guarantees for every stream:

  - provider emission order is preserved;
  - exactly one terminal delta (``Finish`` or a non-recoverable
    ``ErrorDelta``) is produced, and nothing follows it;
  - a transport that closes without a terminal yields ``Finish(incomplete)``;
  - a run of ``max_malformed`` consecutive malformed chunks escalates to
    ``Finish(incomplete)``;
  - setting the cancellation token stops the stream between chunks and
    closes the transport; the stream then ends with ``Finish(cancelled)``.

``Finish`` is held back until the transport ends, because some providers
report usage after their finish reason.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

import httpx

from switchboard.errors import ProviderError, TransportError
from switchboard.llm.providers.base import ProviderAdapter
from switchboard.llm.providers.framing import RawEvent
from switchboard.llm.types import (
    ErrorDelta,
    Finish,
    FinishReason,
    StreamDelta,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_MALFORMED = 8

_END = object()
_CANCELLED = object()
_TIMED_OUT = object()


async def _pull(it: AsyncIterator[RawEvent]) -> object:
    try:
        return await it.__anext__()
    except StopAsyncIteration:
        return _END


class StreamNormalizer:
    """
    Single-use normalizer for one provider stream.

    Parameters
    ----------
    adapter : ProviderAdapter
        Adapter whose ``parse_chunk`` and ``map_error`` are applied.
    raw : AsyncIterator[RawEvent]
        Usually ``adapter.open(request, credentials)``.
    cancel : asyncio.Event | None
        Cancellation token, checked between chunks.
    read_timeout : float | None
        Max seconds to wait for the next chunk.
    max_malformed : int
        Consecutive malformed chunks tolerated before the stream is
        abandoned as incomplete.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        raw: AsyncIterator[RawEvent],
        *,
        cancel: asyncio.Event | None = None,
        read_timeout: float | None = None,
        max_malformed: int = DEFAULT_MAX_MALFORMED,
    ) -> None:
        self.adapter = adapter
        self._raw = raw
        self._cancel = cancel
        self.read_timeout = read_timeout
        self.max_malformed = max_malformed
        self._started = False
        self.terminal: Finish | ErrorDelta | None = None

    def __aiter__(self) -> AsyncIterator[StreamDelta]:
        return self.deltas()

    async def deltas(self) -> AsyncIterator[StreamDelta]:
        if self._started:
            raise RuntimeError("StreamNormalizer can only be iterated once")
        self._started = True

        state = self.adapter.new_stream_state()
        it = self._raw.__aiter__()
        pending: Finish | None = None
        malformed = 0

        try:
            while not state.ended:
                try:
                    raw = await self._next(it)
                except (ProviderError, httpx.HTTPError, OSError) as exc:
                    err = self.adapter.map_error(exc)
                    logger.warning("%s: stream failed: %s", self.adapter.name, err)
                    yield self._end(ErrorDelta.from_exception(err))
                    return

                if raw is _END:
                    break
                if raw is _CANCELLED:
                    logger.info("%s: stream cancelled", self.adapter.name)
                    yield self._end(Finish(FinishReason.CANCELLED))
                    return
                if raw is _TIMED_OUT:
                    err = TransportError(
                        f"no data received for {self.read_timeout}s",
                        provider=self.adapter.name,
                    )
                    logger.warning("%s: %s", self.adapter.name, err)
                    yield self._end(ErrorDelta.from_exception(err))
                    return

                chunk_malformed = False
                for delta in self.adapter.parse_chunk(raw, state):
                    if isinstance(delta, ErrorDelta) and not delta.is_terminal:
                        chunk_malformed = True
                        malformed += 1
                        logger.warning(
                            "%s: malformed chunk (%d consecutive): %s",
                            self.adapter.name,
                            malformed,
                            delta.message,
                        )
                        if malformed >= self.max_malformed:
                            yield self._end(Finish(FinishReason.INCOMPLETE))
                            return
                        yield delta
                    elif isinstance(delta, Finish):
                        pending = delta
                    elif isinstance(delta, ErrorDelta):
                        yield self._end(delta)
                        return
                    else:
                        yield delta
                if not chunk_malformed:
                    malformed = 0
        finally:
            aclose = getattr(it, "aclose", None)
            if aclose is not None:
                await aclose()

        if pending is None:
            logger.warning(
                "%s: stream closed without a finish event", self.adapter.name
            )
            pending = Finish(FinishReason.INCOMPLETE)
        yield self._end(pending)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _end(self, delta: Finish | ErrorDelta) -> Finish | ErrorDelta:
        self.terminal = delta
        return delta

    def _cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    async def _next(self, it: AsyncIterator[RawEvent]) -> object:
        """Wait for the next raw event, the cancellation token, or the timeout."""
        if self._cancelled():
            return _CANCELLED

        step = asyncio.ensure_future(_pull(it))
        waiters: set[asyncio.Future] = {step}
        cancel_wait: asyncio.Future | None = None
        if self._cancel is not None:
            cancel_wait = asyncio.ensure_future(self._cancel.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.read_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            step.cancel()
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        if step in done:
            if self._cancelled():
                # Retrieve the outcome so a failed read is not reported
                # as an unhandled task exception.
                step.exception()
                return _CANCELLED
            return step.result()

        step.cancel()
        await asyncio.gather(step, return_exceptions=True)
        return _CANCELLED if self._cancelled() else _TIMED_OUT
