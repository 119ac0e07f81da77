"""Tests for the sandbox worker's request handling (in-process)."""

from __future__ import annotations

import pytest

from switchboard.errors import ErrorKind, ToolExecutionError
from switchboard.tools.executors import parse_wire_response
from switchboard.tools.worker import handle, resolve_handler


class TestResolveHandler:
    def test_module_attr(self):
        assert resolve_handler("os.path:join")("a", "b").endswith("b")

    @pytest.mark.parametrize("path", ["os.path", ":join", "os.path:"])
    def test_bad_shape(self, path):
        with pytest.raises(ValueError):
            resolve_handler(path)

    def test_not_callable(self):
        with pytest.raises(TypeError):
            resolve_handler("os:sep")


class TestHandle:
    def test_success(self):
        response = handle(
            {
                "handler": "switchboard.tools.builtin:calculate",
                "arguments": {"operation": "mul", "a": 3, "b": 4},
            }
        )
        assert response == {"status": "success", "payload": 12}

    def test_async_handler(self):
        response = handle({"handler": "asyncio:sleep", "arguments": {"delay": 0, "result": "done"}})
        assert response == {"status": "success", "payload": "done"}

    def test_handler_raises(self):
        response = handle(
            {
                "handler": "switchboard.tools.builtin:calculate",
                "arguments": {"operation": "pow", "a": 1, "b": 2},
            }
        )
        assert response["status"] == "failure"
        assert response["kind"] == "ToolExecutionFailed"
        assert "unknown operation" in response["message"]

    def test_missing_module(self):
        response = handle({"handler": "no_such_module_xyz:run", "arguments": {}})
        assert response["kind"] == "ToolExecutionFailed"
        assert response["message"].startswith("cannot load handler")

    @pytest.mark.parametrize("request_", [[], {"arguments": {}}, {"handler": "os:getcwd", "arguments": [1]}])
    def test_bad_requests(self, request_):
        assert handle(request_)["kind"] == "InvalidArguments"

    def test_prints_do_not_reach_stdout(self, capsys):
        response = handle({"handler": "builtins:print", "arguments": {"sep": "-"}})
        assert response["status"] == "success"
        assert capsys.readouterr().out == ""


class TestParseWireResponse:
    def test_success_payload(self):
        assert parse_wire_response({"status": "success", "payload": [1]}, "t") == [1]

    def test_failure_kind_kept(self):
        with pytest.raises(ToolExecutionError) as exc:
            parse_wire_response({"status": "failure", "kind": "ToolTimeout", "message": "slow"}, "t")
        assert exc.value.kind is ErrorKind.TOOL_TIMEOUT
        assert exc.value.message == "slow"

    @pytest.mark.parametrize("data", [None, [], {"status": "maybe"}])
    def test_malformed(self, data):
        with pytest.raises(ToolExecutionError, match="malformed response from t"):
            parse_wire_response(data, "t")
