"""Tests for the sb command line."""

from __future__ import annotations

import pytest
import yaml
from typer.testing import CliRunner

from switchboard.cli.app import app
from switchboard.config import _ENV_MAP
from switchboard.runtime.dispatcher import RuntimeDispatcher
from tests.mock_providers import ScriptedAdapter, text_turn, tool_turn

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    for var in _ENV_MAP:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SWITCHBOARD_CONFIG", str(tmp_path / "switchboard.yaml"))
    monkeypatch.setenv("SWITCHBOARD_TOOLS_AUDIT_PATH", str(tmp_path / "audit.jsonl"))


def _write_config(tmp_path, data: dict) -> None:
    (tmp_path / "switchboard.yaml").write_text(yaml.safe_dump(data))


@pytest.fixture
def scripted(monkeypatch):
    adapter = ScriptedAdapter()
    monkeypatch.setattr(RuntimeDispatcher, "adapter_for", lambda self, cfg: adapter)
    return adapter


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "switchboard v0.1.0" in result.output


def test_providers_list():
    result = runner.invoke(app, ["providers", "list"])
    assert result.exit_code == 0
    for kind in ("openai", "anthropic", "gemini", "ollama"):
        assert kind in result.output


class TestTools:
    def test_list(self):
        result = runner.invoke(app, ["tools", "list"])
        assert result.exit_code == 0
        assert "calculator" in result.output
        assert "current_time" in result.output

    def test_list_respects_builtin_config(self, tmp_path):
        _write_config(tmp_path, {"tools": {"builtin": []}})
        result = runner.invoke(app, ["tools", "list"])
        assert result.exit_code == 0
        assert "No tools registered." in result.output

    def test_info(self):
        result = runner.invoke(app, ["tools", "info", "calculator"])
        assert result.exit_code == 0
        assert "builtin" in result.output
        assert '"operation"' in result.output

    def test_info_unknown(self):
        result = runner.invoke(app, ["tools", "info", "ghost"])
        assert result.exit_code == 1
        assert "Tool not found" in result.output


class TestConfig:
    def test_show(self, tmp_path):
        _write_config(tmp_path, {"provider": {"kind": "gemini", "model": "gemini-test"}})
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "gemini-test" in result.output

    def test_show_unknown_profile(self):
        result = runner.invoke(app, ["config", "show", "--profile", "ghost"])
        assert result.exit_code == 1
        assert "Unknown profile" in result.output

    def test_validate_ok(self, tmp_path):
        _write_config(tmp_path, {"provider": {"kind": "anthropic", "model": "claude-test"}})
        result = runner.invoke(app, ["config", "validate"])
        assert result.exit_code == 0
        assert "Config is valid." in result.output
        assert "anthropic" in result.output

    def test_validate_problems(self, tmp_path):
        _write_config(tmp_path, {"provider": {"kind": "skynet"}, "runtime": {"max_iterations": 0}})
        result = runner.invoke(app, ["config", "validate"])
        assert result.exit_code == 1
        assert "Config validation failed" in result.output
        assert "skynet" in result.output


class TestChat:
    def test_text_reply(self, scripted):
        scripted.scripts.append(text_turn("Hello there"))
        result = runner.invoke(app, ["chat", "hi"])
        assert result.exit_code == 0, result.output
        assert "Hello there" in result.output
        assert "stop" in result.output

    def test_tool_round_trip(self, scripted, tmp_path):
        scripted.scripts.extend(
            [
                tool_turn([("calculator", {"operation": "mul", "a": 6, "b": 7}, "call_1")]),
                text_turn("It is 42"),
            ]
        )
        result = runner.invoke(app, ["chat", "6*7?", "--tool", "calculator"])
        assert result.exit_code == 0, result.output
        assert "[calculator]" in result.output
        assert "It is 42" in result.output
        assert (tmp_path / "audit.jsonl").exists()

    def test_system_prompt_sent_first(self, scripted):
        scripted.scripts.append(text_turn("ok"))
        result = runner.invoke(app, ["chat", "hi", "--system", "Be brief."])
        assert result.exit_code == 0
        roles = [m.role for m in scripted.requests[0].messages]
        assert roles == ["system", "user"]

    def test_provider_error_exits_nonzero(self, scripted):
        from switchboard.errors import AuthError

        scripted.scripts.append([AuthError("bad key", status_code=401)])
        result = runner.invoke(app, ["chat", "hi"])
        assert result.exit_code == 1
        assert "AuthError" in result.output

    def test_invalid_provider_kind(self):
        result = runner.invoke(app, ["chat", "hi", "--provider", "skynet"])
        assert result.exit_code == 1
        assert "unknown provider" in result.output

    def test_unknown_tool(self, scripted):
        result = runner.invoke(app, ["chat", "hi", "--tool", "ghost"])
        assert result.exit_code == 1
        assert "Unknown tool" in result.output
        assert scripted.call_count == 0
