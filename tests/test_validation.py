"""Tests for ArgumentValidator."""

from switchboard.tools.validation import ArgumentValidator
from tests.mock_tools import EchoTool, SecretTool, upper_descriptor


class TestArgumentValidator:
    """Test suite for ArgumentValidator.validate()."""

    def test_valid_args_pass(self):
        ok, err = ArgumentValidator.validate(EchoTool().to_descriptor(), {"message": "hello"})
        assert ok is True
        assert err is None

    def test_missing_required_arg_fails(self):
        ok, err = ArgumentValidator.validate(EchoTool().to_descriptor(), {})
        assert ok is False
        assert "message" in err

    def test_missing_one_of_multiple_required(self):
        ok, err = ArgumentValidator.validate(SecretTool().to_descriptor(), {"user": "u"})
        assert ok is False
        assert "password" in err

    def test_extra_unknown_keys_rejected(self):
        ok, err = ArgumentValidator.validate(
            EchoTool().to_descriptor(), {"message": "hello", "rogue": "value"}
        )
        assert ok is False
        assert "rogue" in err

    def test_additional_properties_true_allows_extra_keys(self):
        desc = upper_descriptor(
            parameters={
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "additionalProperties": True,
            }
        )
        ok, err = ArgumentValidator.validate(desc, {"text": "a", "extra": 42})
        assert ok is True
        assert err is None

    def test_type_mismatch_reports_path(self):
        ok, err = ArgumentValidator.validate(EchoTool().to_descriptor(), {"message": 12345})
        assert ok is False
        assert err.startswith("message:")

    def test_broken_schema_reported_not_raised(self):
        desc = upper_descriptor(parameters={"type": "object", "properties": {"text": {"type": 7}}})
        ok, err = ArgumentValidator.validate(desc, {"text": "a"})
        assert ok is False
        assert "invalid schema for upper" in err
