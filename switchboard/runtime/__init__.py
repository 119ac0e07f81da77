"""Turn runtime -- dispatcher, sessions and retry policy."""

from switchboard.runtime.dispatcher import RuntimeDispatcher, TurnStream
from switchboard.runtime.retry import RetryPolicy
from switchboard.runtime.session import RuntimeSession, SessionManager

__all__ = [
    "RetryPolicy",
    "RuntimeDispatcher",
    "RuntimeSession",
    "SessionManager",
    "TurnStream",
]
