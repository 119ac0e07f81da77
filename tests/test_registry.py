"""Tests for PluginRegistry."""

from types import SimpleNamespace

import pytest

from switchboard.config import SwitchboardConfig
from switchboard.errors import RegistryLocked, UnknownToolError
from switchboard.tools.base import ExecutionMode, PluginDescriptor
from switchboard.tools.builtin import CalculatorTool, register_builtin_tools
from switchboard.tools.registry import PLUGIN_GROUP, PluginRegistry
from tests.mock_tools import EchoTool, SlowTool, upper_descriptor


class TestPluginRegistry:
    """Test suite for PluginRegistry."""

    def test_register_tool_and_get_descriptor(self):
        reg = PluginRegistry()
        desc = reg.register(EchoTool())
        assert reg.get("echo") is desc
        assert desc.mode is ExecutionMode.BUILTIN
        assert "echo" in reg

    def test_get_returns_none_for_unknown(self):
        assert PluginRegistry().get("nonexistent") is None

    def test_require_raises_unknown_tool_keyerror(self):
        reg = PluginRegistry()
        with pytest.raises(KeyError, match="nonexistent"):
            reg.require("nonexistent")
        with pytest.raises(UnknownToolError):
            reg.require("nonexistent")

    def test_duplicate_registration_raises_valueerror(self):
        reg = PluginRegistry()
        reg.register(EchoTool())
        with pytest.raises(ValueError, match="already registered"):
            reg.register(EchoTool())

    def test_duplicate_registration_with_overwrite(self):
        reg = PluginRegistry()
        reg.register(EchoTool())
        second = reg.register(upper_descriptor(name="echo"), overwrite=True)
        assert reg.get("echo") is second

    def test_list_sorted_by_name(self):
        reg = PluginRegistry()
        reg.register(SlowTool())
        reg.register(EchoTool())
        reg.register(upper_descriptor())
        assert [p.name for p in reg.list()] == ["echo", "slow", "upper"]
        assert len(reg) == 3

    def test_specs_follow_requested_order(self):
        reg = PluginRegistry()
        reg.register(EchoTool())
        reg.register(upper_descriptor())
        specs = reg.specs(["upper", "echo"])
        assert [s.name for s in specs] == ["upper", "echo"]
        assert specs[0].parameters["additionalProperties"] is False

    def test_specs_unknown_name_raises(self):
        reg = PluginRegistry()
        with pytest.raises(UnknownToolError):
            reg.specs(["ghost"])


class TestReadLock:
    def test_mutation_while_reading_raises(self):
        reg = PluginRegistry()
        with reg.reading():
            assert reg.locked
            with pytest.raises(RegistryLocked):
                reg.register(EchoTool())
            with pytest.raises(RegistryLocked):
                reg.unregister("echo")
        assert not reg.locked
        reg.register(EchoTool())

    def test_nested_readers(self):
        reg = PluginRegistry()
        with reg.reading():
            with reg.reading():
                pass
            assert reg.locked
        assert not reg.locked


class TestDescriptorValidation:
    def test_builtin_needs_handler(self):
        with pytest.raises(ValueError, match="needs a handler"):
            PluginDescriptor(name="x")

    def test_sandboxed_needs_target(self):
        with pytest.raises(ValueError, match="needs a target"):
            PluginDescriptor(name="x", mode="sandboxed-remote")

    def test_mcp_needs_url(self):
        with pytest.raises(ValueError, match="http"):
            PluginDescriptor(name="x", mode=ExecutionMode.MCP, target="stdio:server")


class TestEntryPoints:
    def _eps(self, monkeypatch, *eps):
        def fake_entry_points(group):
            assert group == PLUGIN_GROUP
            return list(eps)

        monkeypatch.setattr("switchboard.tools.registry.entry_points", fake_entry_points)

    @staticmethod
    def _ep(name, obj, dist="acme-tools"):
        return SimpleNamespace(name=name, dist=SimpleNamespace(name=dist), load=lambda: obj)

    def test_disabled_loads_nothing(self, monkeypatch):
        self._eps(monkeypatch, self._ep("echo", EchoTool))
        reg = PluginRegistry()
        assert reg.load_plugins(enabled=False) == 0
        assert len(reg) == 0

    def test_loads_class_instance_and_descriptor(self, monkeypatch):
        self._eps(
            monkeypatch,
            self._ep("echo", EchoTool),
            self._ep("slow", SlowTool()),
            self._ep("upper", upper_descriptor()),
            self._ep("junk", 42),
        )
        reg = PluginRegistry()
        assert reg.load_plugins(enabled=True) == 3
        assert [p.name for p in reg.list()] == ["echo", "slow", "upper"]

    def test_allow_lists(self, monkeypatch):
        self._eps(
            monkeypatch,
            self._ep("echo", EchoTool, dist="trusted"),
            self._ep("slow", SlowTool, dist="untrusted"),
            self._ep("upper", upper_descriptor(), dist="trusted"),
        )
        reg = PluginRegistry()
        loaded = reg.load_plugins(
            enabled=True, allow_distributions={"trusted"}, allow_tools={"echo"}
        )
        assert loaded == 1
        assert "echo" in reg

    def test_from_config(self, monkeypatch):
        self._eps(monkeypatch, self._ep("echo", EchoTool), self._ep("slow", SlowTool))
        cfg = SwitchboardConfig()
        cfg.tools.builtin = ["calculator"]
        cfg.plugins.enabled = True
        cfg.plugins.allow_tools = ["echo"]

        reg = PluginRegistry.from_config(cfg)
        assert [p.name for p in reg.list()] == ["calculator", "echo"]

    def test_from_config_plugins_disabled(self, monkeypatch):
        self._eps(monkeypatch, self._ep("echo", EchoTool))
        reg = PluginRegistry.from_config(SwitchboardConfig())
        assert [p.name for p in reg.list()] == ["calculator", "current_time"]


def test_register_builtin_tools_subset():
    reg = PluginRegistry()
    assert register_builtin_tools(reg, ["calculator"]) == 1
    assert [p.name for p in reg.list()] == ["calculator"]
    assert reg.get("calculator").description == CalculatorTool().description


class TestCalculator:
    async def test_adds_by_default(self):
        assert await CalculatorTool().execute(a=2, b=2) == {"sum": 4}

    async def test_named_operation(self):
        assert await CalculatorTool().execute(operation="div", a=9, b=3) == {"quotient": 3.0}

    def test_operation_optional(self):
        params = CalculatorTool().parameters
        assert params["required"] == ["a", "b"]
        assert params["properties"]["operation"]["default"] == "add"
