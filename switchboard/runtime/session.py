"""
Runtime sessions -- one per in-flight conversation.

A session pairs a conversation id with the cancellation token shared by the
provider stream, the normalizer and every in-flight tool call.  It exists
from the moment a turn starts until that turn, recursive follow-ups
included, has produced its terminal delta.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field

from switchboard.errors import SessionBusy

logger = logging.getLogger(__name__)


@dataclass
class RuntimeSession:
    conversation_id: str
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()


class SessionManager:
    """Tracks active sessions; at most one per conversation id."""

    def __init__(self) -> None:
        self._sessions: dict[str, RuntimeSession] = {}

    def acquire(self, conversation_id: str | None = None) -> RuntimeSession:
        cid = conversation_id or uuid.uuid4().hex
        if cid in self._sessions:
            raise SessionBusy(f"A turn is already running for conversation {cid}")
        session = RuntimeSession(cid)
        self._sessions[cid] = session
        logger.debug("Session %s acquired", cid)
        return session

    def release(self, session: RuntimeSession) -> None:
        current = self._sessions.get(session.conversation_id)
        if current is session:
            del self._sessions[session.conversation_id]
            logger.debug("Session %s released", session.conversation_id)

    def get(self, conversation_id: str) -> RuntimeSession | None:
        return self._sessions.get(conversation_id)

    def cancel(self, conversation_id: str) -> bool:
        """Signal cancellation.  Returns ``False`` when no turn is running."""
        session = self._sessions.get(conversation_id)
        if session is None:
            return False
        logger.info("Cancelling conversation %s", conversation_id)
        session.cancel.set()
        return True

    def active(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
