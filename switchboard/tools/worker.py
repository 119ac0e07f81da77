"""
Sandbox worker process.

Run as ``python -m switchboard.tools.worker``.  Reads one JSON request from
stdin::

    {"handler": "package.module:function", "tool": "...", "arguments": {...}}

and writes one JSON response to stdout::

    {"status": "success", "payload": ...}
    {"status": "failure", "kind": "ToolExecutionFailed", "message": "..."}

Anything the handler prints goes to stderr so stdout stays parseable.
"""

from __future__ import annotations

import asyncio
import contextlib
import importlib
import inspect
import json
import sys
from typing import Any, Callable

from switchboard.errors import ErrorKind


def resolve_handler(path: str) -> Callable[..., Any]:
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"handler must look like 'module:attr', got {path!r}")
    obj: Any = importlib.import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    if not callable(obj):
        raise TypeError(f"handler {path!r} is not callable")
    return obj


def _failure(kind: ErrorKind, message: str) -> dict:
    return {"status": "failure", "kind": kind.value, "message": message}


def handle(request: Any) -> dict:
    if not isinstance(request, dict) or "handler" not in request:
        return _failure(ErrorKind.INVALID_ARGUMENTS, "request must carry a 'handler'")
    arguments = request.get("arguments") or {}
    if not isinstance(arguments, dict):
        return _failure(ErrorKind.INVALID_ARGUMENTS, "arguments must be a JSON object")

    try:
        handler = resolve_handler(request["handler"])
    except (ImportError, AttributeError, ValueError, TypeError) as exc:
        return _failure(ErrorKind.TOOL_EXECUTION_FAILED, f"cannot load handler: {exc}")

    try:
        with contextlib.redirect_stdout(sys.stderr):
            result = handler(**arguments)
            if inspect.isawaitable(result):
                result = asyncio.run(_await(result))
    except Exception as exc:
        return _failure(ErrorKind.TOOL_EXECUTION_FAILED, f"{type(exc).__name__}: {exc}")
    return {"status": "success", "payload": result}


async def _await(awaitable: Any) -> Any:
    return await awaitable


def main() -> int:
    raw = sys.stdin.read()
    try:
        request = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as exc:
        response = _failure(ErrorKind.INVALID_ARGUMENTS, f"request is not JSON: {exc}")
    else:
        response = handle(request)
    sys.stdout.write(json.dumps(response, default=str))
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
