"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from switchboard.llm.types import ErrorDelta, Finish, FinishReason
from switchboard.tools.base import ExecutionMode, PluginDescriptor
from switchboard.types import ToolResult

if TYPE_CHECKING:
    from switchboard.llm.providers.registry import ProviderRegistry
    from switchboard.runtime.dispatcher import TurnStream

MODE_COLORS = {
    ExecutionMode.BUILTIN: "green",
    ExecutionMode.SANDBOXED_REMOTE: "yellow",
    ExecutionMode.MCP: "magenta",
}

FINISH_COLORS = {
    FinishReason.STOP: "green",
    FinishReason.TOOL_CALLS: "green",
    FinishReason.LENGTH: "yellow",
    FinishReason.CONTENT_FILTER: "yellow",
    FinishReason.INCOMPLETE: "red",
    FinishReason.CANCELLED: "dim",
}


class OutputFormatter:
    """Rich-based output formatting for the switchboard CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def write_text(self, text: str) -> None:
        self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)

    def format_malformed(self, delta: ErrorDelta) -> None:
        self.console.print(f"\n[dim yellow]! {escape(delta.message)}[/dim yellow]")

    def format_tool_result(self, result: ToolResult) -> None:
        status = "[green]OK[/green]" if result.success else "[red]FAILED[/red]"
        content = result.content if len(result.content) <= 200 else result.content[:200] + "..."
        self.console.print(f"\n  {escape(f'[{result.tool_name}]')} {status}: ", end="")
        self.console.print(content, markup=False, highlight=False)

    def format_turn_summary(self, stream: TurnStream) -> None:
        terminal = stream.terminal
        self.console.print()
        if isinstance(terminal, ErrorDelta):
            self.console.print(
                f"[red]Error ({terminal.kind.value}):[/red] ", end=""
            )
            self.console.print(terminal.message, markup=False, highlight=False)
        elif isinstance(terminal, Finish):
            color = FINISH_COLORS.get(terminal.reason, "white")
            usage = stream.usage
            self.console.print(
                f"[dim]finish:[/dim] [{color}]{terminal.reason}[/{color}]  "
                f"[dim]iterations: {stream.iterations}  "
                f"tokens: {usage.prompt_tokens} in / {usage.completion_tokens} out[/dim]"
            )
        else:
            self.console.print("[dim]Turn abandoned.[/dim]")

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def format_provider_list(self, providers: ProviderRegistry, active: str | None = None) -> None:
        table = Table(title="Providers")
        table.add_column("Kind", style="cyan", no_wrap=True)
        table.add_column("Adapter", no_wrap=True)
        table.add_column("Default base URL")

        for kind in providers.kinds():
            entry = providers.get(kind)
            name = Text(kind.value, style="bold cyan" if kind.value == active else "cyan")
            table.add_row(name, entry.adapter_cls.__name__, entry.default_base_url)

        self.console.print(table)

    def format_tool_list(self, tools: list[PluginDescriptor]) -> None:
        if not tools:
            self.console.print("[dim]No tools registered.[/dim]")
            return

        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Mode", no_wrap=True)
        table.add_column("Privacy", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            color = MODE_COLORS.get(t.mode, "white")
            table.add_row(t.name, Text(t.mode.value, style=color), t.privacy_scope.value, t.description)

        self.console.print(table)

    def format_tool_info(self, tool: PluginDescriptor) -> None:
        color = MODE_COLORS.get(tool.mode, "white")
        target = tool.target or "in-process"
        timeout = f"{tool.timeout:g}s" if tool.timeout else "default"
        self.console.print(Panel(
            f"[bold]{tool.name}[/bold]\n\n"
            f"[dim]Mode:[/dim] [{color}]{tool.mode.value}[/{color}]\n"
            f"[dim]Target:[/dim] {target}\n"
            f"[dim]Timeout:[/dim] {timeout}\n"
            f"[dim]Privacy:[/dim] {tool.privacy_scope.value}\n"
            f"[dim]Secret fields:[/dim] {', '.join(tool.secret_fields) or 'none'}\n\n"
            f"{tool.description}",
            title=f"Tool: {tool.name}",
        ))
        schema_json = json.dumps(tool.schema, indent=2)
        self.console.print(Syntax(schema_json, "json", theme="monokai"))

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
