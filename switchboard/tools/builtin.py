"""Tools shipped with switchboard."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from switchboard.tools.base import Tool


RESULT_KEYS = {"add": "sum", "sub": "difference", "mul": "product", "div": "quotient"}


def calculate(a: float, b: float, operation: str = "add") -> float:
    if operation == "add":
        return a + b
    if operation == "sub":
        return a - b
    if operation == "mul":
        return a * b
    if operation == "div":
        if b == 0:
            raise ZeroDivisionError("division by zero")
        return a / b
    raise ValueError(f"unknown operation: {operation}")


class CalculatorTool(Tool):
    @property
    def name(self) -> str:
        return "calculator"

    @property
    def description(self) -> str:
        return (
            "Combine two numbers. Adds them unless another operation "
            "(sub, mul, div) is given."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "a": {"type": "number", "description": "Left operand"},
                "b": {"type": "number", "description": "Right operand"},
                "operation": {
                    "type": "string",
                    "enum": list(RESULT_KEYS),
                    "default": "add",
                    "description": "Operation to apply",
                },
            },
            "required": ["a", "b"],
        }

    async def execute(self, **kwargs) -> dict:
        operation = kwargs.get("operation", "add")
        # Keyed by operation: add -> {"sum": ...}, mul -> {"product": ...}
        return {RESULT_KEYS[operation]: calculate(kwargs["a"], kwargs["b"], operation)}


class CurrentTimeTool(Tool):
    @property
    def name(self) -> str:
        return "current_time"

    @property
    def description(self) -> str:
        return "Return the current date and time, in UTC or a given IANA timezone."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "timezone": {
                    "type": "string",
                    "description": "IANA timezone name, e.g. 'Europe/Berlin'. Defaults to UTC.",
                },
            },
        }

    async def execute(self, **kwargs) -> dict:
        tz_name = kwargs.get("timezone") or "UTC"
        try:
            tz = timezone.utc if tz_name == "UTC" else ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {tz_name}") from None
        now = datetime.now(tz)
        return {"iso": now.isoformat(), "timezone": tz_name}


BUILTIN_TOOLS: tuple[type[Tool], ...] = (CalculatorTool, CurrentTimeTool)


def register_builtin_tools(registry, names=None) -> int:
    """Register the shipped tools (all of them, or only *names*)."""
    count = 0
    for cls in BUILTIN_TOOLS:
        tool = cls()
        if names is not None and tool.name not in names:
            continue
        registry.register(tool, overwrite=True)
        count += 1
    return count
