"""
Folds streamed ``ToolCallDelta`` fragments into complete ``ToolCall`` objects.

Each call index moves through an explicit state machine::

    OPENING -> ACCUMULATING -> COMPLETE
                            -> INVALID

A slot becomes INVALID when its arguments are not a JSON object or it never
received a name.  Invalid calls are never dropped: ``invalid_results()``
turns each one into a failed ``ToolResult`` so the conversation still
accounts for every call the model attempted.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum

from switchboard.errors import ErrorKind
from switchboard.llm.types import ToolCall, ToolCallDelta
from switchboard.types import ToolResult


class SlotState(str, Enum):
    OPENING = "opening"
    ACCUMULATING = "accumulating"
    COMPLETE = "complete"
    INVALID = "invalid"


@dataclass
class _Slot:
    index: int
    state: SlotState = SlotState.OPENING
    id: str = ""
    name: str = ""
    args: list[str] = field(default_factory=list)
    call: ToolCall | None = None
    reason: str = ""


class ToolCallAccumulator:
    """Buffers tool-call fragments for one sub-turn, keyed by call index."""

    def __init__(self) -> None:
        self._slots: dict[int, _Slot] = {}
        self._finished = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: ToolCallDelta) -> None:
        if self._finished:
            raise RuntimeError("ToolCallAccumulator.feed() called after finish()")

        slot = self._slots.get(delta.index)
        if slot is None:
            slot = self._slots[delta.index] = _Slot(delta.index)
        if slot.state is SlotState.OPENING:
            slot.state = SlotState.ACCUMULATING

        if delta.id_fragment:
            # Most providers send the id whole on the first fragment and
            # sometimes repeat it; only the first one counts.
            if not slot.id:
                slot.id = delta.id_fragment
        if delta.name_fragment:
            slot.name += delta.name_fragment
        if delta.args_fragment:
            slot.args.append(delta.args_fragment)

    def finish(self) -> None:
        """Resolve every open slot to COMPLETE or INVALID.  Idempotent."""
        if self._finished:
            return
        self._finished = True
        for idx in sorted(self._slots):
            self._finalize(self._slots[idx])

    @property
    def finished(self) -> bool:
        return self._finished

    def __len__(self) -> int:
        return len(self._slots)

    def state(self, index: int) -> SlotState | None:
        slot = self._slots.get(index)
        return slot.state if slot else None

    def complete_calls(self) -> list[ToolCall]:
        return [
            s.call
            for s in self._ordered()
            if s.state is SlotState.COMPLETE and s.call is not None
        ]

    def invalid_calls(self) -> list[tuple[ToolCall, str]]:
        """Return ``(call, reason)`` pairs.  Arguments of an invalid call are empty."""
        return [
            (s.call, s.reason)
            for s in self._ordered()
            if s.state is SlotState.INVALID and s.call is not None
        ]

    def all_calls(self) -> list[ToolCall]:
        """Every call in index order, complete and invalid alike."""
        return [s.call for s in self._ordered() if s.call is not None]

    def resolved(self) -> list[tuple[ToolCall, str | None]]:
        """``(call, reason)`` for every call in index order; *reason* is ``None`` when valid."""
        return [
            (s.call, s.reason if s.state is SlotState.INVALID else None)
            for s in self._ordered()
            if s.call is not None
        ]

    def invalid_results(self) -> list[ToolResult]:
        return [
            ToolResult.failure(call, ErrorKind.INVALID_ARGUMENTS, reason)
            for call, reason in self.invalid_calls()
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ordered(self) -> list[_Slot]:
        return [self._slots[i] for i in sorted(self._slots)]

    def _finalize(self, slot: _Slot) -> None:
        call_id = slot.id or f"call_{slot.index}_{uuid.uuid4().hex[:8]}"
        name = slot.name.strip()
        raw_args = "".join(slot.args).strip() or "{}"

        reason = ""
        args: dict = {}
        try:
            parsed = json.loads(raw_args)
        except (json.JSONDecodeError, ValueError) as exc:
            reason = f"arguments are not valid JSON: {exc}"
        else:
            if isinstance(parsed, dict):
                args = parsed
            else:
                reason = f"arguments must be a JSON object, got {type(parsed).__name__}"
        if not reason and not name:
            reason = "tool call has no name"

        if reason:
            slot.state = SlotState.INVALID
            slot.reason = reason
            slot.call = ToolCall(id=call_id, name=name, arguments={})
        else:
            slot.state = SlotState.COMPLETE
            slot.call = ToolCall(id=call_id, name=name, arguments=args)
