"""
Error taxonomy shared by every layer of the runtime.

Provider adapters classify whatever their transport throws into one of the
``ProviderError`` subclasses below, so the dispatcher never has to special-case
a backend.  Tool-level failures are *not* raised past the gateway; they are
folded into a failed ``ToolResult`` carrying an ``ErrorKind``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum


class ErrorKind(str, Enum):
    TRANSPORT = "TransportError"
    RATE_LIMITED = "RateLimited"
    AUTH = "AuthError"
    UNSUPPORTED_CAPABILITY = "UnsupportedCapability"
    PROVIDER_REJECTED = "ProviderRejected"
    MALFORMED_CHUNK = "MalformedChunk"
    UNKNOWN_TOOL = "UnknownTool"
    INVALID_ARGUMENTS = "InvalidArguments"
    TOOL_EXECUTION_FAILED = "ToolExecutionFailed"
    TOOL_TIMEOUT = "ToolTimeout"
    TOO_MANY_ITERATIONS = "TooManyIterations"
    CANCELLED = "Cancelled"


RETRYABLE_KINDS = frozenset({ErrorKind.TRANSPORT, ErrorKind.RATE_LIMITED})

# Failure kinds a tool boundary (worker process, gateway service, MCP server)
# is allowed to report back.
TOOL_FAILURE_KINDS = frozenset(
    {
        ErrorKind.INVALID_ARGUMENTS,
        ErrorKind.TOOL_EXECUTION_FAILED,
        ErrorKind.TOOL_TIMEOUT,
    }
)


class SwitchboardError(Exception):
    """Base class for every error raised by the runtime."""

    kind: ErrorKind | None = None
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProviderError(SwitchboardError):
    """
    A failure at the provider boundary.

    Attributes
    ----------
    provider:
        Provider kind the error originated from (e.g. ``"openai"``).
    status_code:
        HTTP status, when the failure came from an HTTP response.
    retry_after:
        Seconds the provider asked us to wait before retrying, if any.
    """

    kind = ErrorKind.PROVIDER_REJECTED

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after

    def __str__(self) -> str:
        prefix = f"{self.provider}: " if self.provider else ""
        return f"{prefix}{self.kind.value}: {self.message}"


class TransportError(ProviderError):
    kind = ErrorKind.TRANSPORT
    retryable = True


class RateLimited(ProviderError):
    kind = ErrorKind.RATE_LIMITED
    retryable = True


class AuthError(ProviderError):
    kind = ErrorKind.AUTH


class UnsupportedCapability(ProviderError):
    """Raised while translating a request, before any network call."""

    kind = ErrorKind.UNSUPPORTED_CAPABILITY


class ProviderRejected(ProviderError):
    kind = ErrorKind.PROVIDER_REJECTED


class MalformedChunk(SwitchboardError):
    kind = ErrorKind.MALFORMED_CHUNK


class TooManyIterations(SwitchboardError):
    kind = ErrorKind.TOO_MANY_ITERATIONS


class UnknownToolError(SwitchboardError, KeyError):
    kind = ErrorKind.UNKNOWN_TOOL

    def __str__(self) -> str:
        return self.message


class ToolExecutionError(SwitchboardError):
    """Raised by executors when a tool boundary reports or causes a failure."""

    def __init__(
        self, message: str, kind: ErrorKind = ErrorKind.TOOL_EXECUTION_FAILED
    ) -> None:
        super().__init__(message)
        self.kind = kind


class SessionBusy(SwitchboardError):
    """A turn is already running for this conversation id."""


class RegistryLocked(SwitchboardError):
    """The plugin registry was mutated while a turn was reading it."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_retry_after(value: str | None) -> float | None:
    """
    Parse a ``Retry-After`` header value.

    Accepts delta-seconds (``"2"``, ``"1.5"``) or an HTTP date.  Returns
    ``None`` when the value is absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


_STATUS_ERRORS: dict[int, type[ProviderError]] = {
    401: AuthError,
    403: AuthError,
    408: TransportError,
    409: TransportError,
    429: RateLimited,
}


def error_for_status(status_code: int) -> type[ProviderError]:
    """Map an HTTP status code onto the provider error class it represents."""
    if status_code in _STATUS_ERRORS:
        return _STATUS_ERRORS[status_code]
    if status_code >= 500:
        return TransportError
    return ProviderRejected
