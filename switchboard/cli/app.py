"""
Main CLI application for switchboard.

Usage:
    sb chat PROMPT [--provider KIND] [--model NAME] [--tool NAME]... [--profile NAME]
    sb providers list
    sb tools list|info
    sb config show|validate
    sb version
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from switchboard.config import DEFAULT_CONFIG_PATH, SwitchboardConfig, load_config

__version__ = "0.1.0"

app = typer.Typer(name="sb", help="Switchboard - provider-agnostic LLM runtime")
providers_app = typer.Typer(help="Provider adapters")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(providers_app, name="providers")
app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file: $SWITCHBOARD_CONFIG, then standard locations."""
    env_path = os.environ.get("SWITCHBOARD_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    candidates = [
        Path.cwd() / "switchboard.yaml",
        Path.cwd() / "switchboard.yml",
        Path(DEFAULT_CONFIG_PATH).expanduser(),
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _setup_logging(verbose: bool) -> None:
    if not verbose:
        logging.basicConfig(level=logging.WARNING)
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request line at INFO; keep the runtime's own logs readable.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _load(profile: str | None = None, overrides: dict | None = None) -> SwitchboardConfig:
    try:
        return load_config(_get_config_path(), profile=profile, cli_overrides=overrides)
    except (KeyError, ValueError) as e:
        console.print(f"[red]Config error:[/red] {e.args[0]}")
        raise typer.Exit(1)


async def _run_chat(cfg: SwitchboardConfig, prompt: str, tools: list[str], system: str | None) -> bool:
    from switchboard.cli.output import OutputFormatter
    from switchboard.errors import SwitchboardError
    from switchboard.llm.types import ErrorDelta, Message, TextDelta
    from switchboard.runtime.dispatcher import RuntimeDispatcher

    formatter = OutputFormatter(console)
    dispatcher = RuntimeDispatcher.from_config(cfg)

    messages = []
    if system:
        messages.append(Message(role="system", content=system))
    messages.append(Message(role="user", content=prompt))

    try:
        stream = dispatcher.dispatch(
            messages, tools, on_tool_result=formatter.format_tool_result
        )
    except (SwitchboardError, KeyError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return False

    # Ctrl-C cancels the turn instead of tearing down the loop.
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, dispatcher.cancel, stream.conversation_id)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    try:
        async with stream:
            async for delta in stream:
                if isinstance(delta, TextDelta):
                    formatter.write_text(delta.text)
                elif isinstance(delta, ErrorDelta) and not delta.is_terminal:
                    formatter.format_malformed(delta)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)

    formatter.format_turn_summary(stream)
    return stream.ok


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User message to send"),
    provider: Optional[str] = typer.Option(None, help="Provider kind (e.g. openai, anthropic, gemini)"),
    model: Optional[str] = typer.Option(None, help="Model name"),
    tool: Optional[List[str]] = typer.Option(None, "--tool", "-t", help="Enable a tool (repeatable)"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    system: Optional[str] = typer.Option(None, help="System prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run one turn and stream the reply."""
    _setup_logging(verbose)

    overrides = {}
    if provider:
        overrides["provider.kind"] = provider
    if model:
        overrides["provider.model"] = model
    cfg = _load(profile, overrides)

    problems = cfg.validate()
    if problems:
        for problem in problems:
            console.print(f"[red]Config error:[/red] {problem}")
        raise typer.Exit(1)

    enabled = list(tool) if tool else list(cfg.tools.enabled)
    ok = asyncio.run(_run_chat(cfg, prompt, enabled, system))
    if not ok:
        raise typer.Exit(1)


@providers_app.command("list")
def providers_list():
    """List provider kinds and their adapters."""
    from switchboard.cli.output import OutputFormatter
    from switchboard.llm.providers.registry import ProviderRegistry

    cfg = _load()
    formatter = OutputFormatter(console)
    formatter.format_provider_list(ProviderRegistry.default(), active=cfg.provider.kind)


@tools_app.command("list")
def tools_list():
    """List registered tools."""
    from switchboard.cli.output import OutputFormatter
    from switchboard.tools.registry import PluginRegistry

    registry = PluginRegistry.from_config(_load())
    formatter = OutputFormatter(console)
    formatter.format_tool_list(registry.list())


@tools_app.command("info")
def tools_info(tool_name: str = typer.Argument(..., help="Tool name")):
    """Show tool details and schema."""
    from switchboard.cli.output import OutputFormatter
    from switchboard.tools.registry import PluginRegistry

    registry = PluginRegistry.from_config(_load())
    tool = registry.get(tool_name)
    if not tool:
        console.print(f"[red]Tool not found:[/red] {tool_name}")
        raise typer.Exit(1)

    formatter = OutputFormatter(console)
    formatter.format_tool_info(tool)


@config_app.command("show")
def config_show(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Show effective config."""
    from switchboard.cli.output import OutputFormatter

    cfg = _load(profile)
    formatter = OutputFormatter(console)
    formatter.format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Validate config and report any problems."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path, profile=profile)
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    problems = cfg.validate()
    if problems:
        console.print("[red]Config validation failed:[/red]")
        for problem in problems:
            console.print(f"  - {problem}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Provider: {cfg.provider.kind} ({cfg.provider.model})")
    console.print(f"  Max iterations: {cfg.runtime.max_iterations}")
    console.print(f"  Plugins enabled: {cfg.plugins.enabled}")


@app.command()
def version():
    """Show version."""
    console.print(f"switchboard v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
