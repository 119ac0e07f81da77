import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path

from switchboard.tools.base import PluginDescriptor, PrivacyScope
from switchboard.types import ToolResult

REDACTED = "***REDACTED***"


class AuditLog:
    """Append-only JSONL record of every tool invocation, with size-based rotation."""

    def __init__(
        self,
        path: str,
        *,
        redaction_patterns: list[str] | None = None,
        max_size_mb: int = 10,
        keep_files: int = 5,
    ):
        self._redaction_patterns = [re.compile(p) for p in (redaction_patterns or [])]
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.max_bytes = max_size_mb * 1024 * 1024
        self.keep_files = keep_files
        self._lock = asyncio.Lock()

    def redact_args(self, plugin: PluginDescriptor, args: dict) -> dict:
        redacted = dict(args)
        for f in plugin.secret_fields:
            if f in redacted:
                redacted[f] = REDACTED
        for k, v in list(redacted.items()):
            if isinstance(v, str):
                redacted[k] = self.redact_text(v)
        return redacted

    def redact_text(self, s: str) -> str:
        out = s
        for rx in self._redaction_patterns:
            out = rx.sub(REDACTED, out)
        return out

    async def record(
        self,
        *,
        conversation_id: str,
        plugin: PluginDescriptor | None,
        tool_name: str,
        args: dict,
        result: ToolResult,
        iteration: int = 0,
    ) -> None:
        async with self._lock:
            self._rotate_if_needed()

            record = {
                "ts": datetime.now(timezone.utc).isoformat(),
                "conversation_id": conversation_id,
                "iteration": iteration,
                "tool_call_id": result.tool_call_id,
                "tool_name": tool_name,
                "mode": plugin.mode.value if plugin else None,
                "duration_ms": result.duration_ms,
                "success": result.success,
                "error_kind": result.error_kind.value if result.error_kind else None,
                "metadata": result.metadata or {},
            }

            scope = plugin.privacy_scope if plugin else PrivacyScope.SENSITIVE
            if scope == PrivacyScope.PUBLIC:
                record["args"] = self.redact_args(plugin, args)
                record["output"] = self.redact_text(result.content[:2000])
            elif scope == PrivacyScope.SENSITIVE:
                record["args"] = REDACTED
                record["output"] = self.redact_text(result.content[:500])
            else:
                record["args"] = REDACTED
                record["output"] = REDACTED

            line = json.dumps(record, sort_keys=True, default=str) + "\n"
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.flush()

    def _rotate_if_needed(self) -> None:
        if not self.path.exists() or self.path.stat().st_size < self.max_bytes:
            return

        for i in range(self.keep_files - 1, 0, -1):
            src = self.path.with_suffix(self.path.suffix + f".{i}")
            dst = self.path.with_suffix(self.path.suffix + f".{i + 1}")
            if src.exists():
                src.replace(dst)

        self.path.replace(self.path.with_suffix(self.path.suffix + ".1"))
