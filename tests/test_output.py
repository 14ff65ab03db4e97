"""Tests for output module."""

import json

import pytest

from oidc_cli.oauth.errors import OAuthProtocolError
from oidc_cli.oauth.flow import OAuthFlowError
from oidc_cli.output import OutputHandler, format_error_json, format_json


class TestFormatJson:
    """Tests for format_json function."""

    def test_format_success(self):
        """Test formatting successful response."""
        parsed = json.loads(format_json({"access_token": "x"}))
        assert parsed == {"success": True, "data": {"access_token": "x"}}

    def test_format_success_false(self):
        """Test that error dicts are passed through."""
        parsed = json.loads(format_json({"success": False}, success=False))
        assert parsed == {"success": False}


class TestFormatErrorJson:
    """Tests for format_error_json function."""

    def test_plain_error(self):
        """Test formatting a plain exception."""
        parsed = json.loads(format_error_json(ValueError("bad"), help_text="try again"))
        assert parsed["success"] is False
        assert parsed["error"]["type"] == "ValueError"
        assert parsed["error"]["message"] == "bad"
        assert parsed["error"]["help"] == "try again"

    def test_flow_error_exposes_oauth_fields(self):
        """Test that stage and OAuth2 fields of the cause are included."""
        cause = OAuthProtocolError(status_code=400, error="invalid_grant", error_description="expired")
        parsed = json.loads(format_error_json(OAuthFlowError("token_exchange", cause)))

        error = parsed["error"]
        assert error["type"] == "OAuthProtocolError"
        assert error["stage"] == "token_exchange"
        assert error["status_code"] == 400
        assert error["error"] == "invalid_grant"
        assert error["error_description"] == "expired"


class TestOutputHandler:
    """Tests for OutputHandler."""

    def test_human_success_is_indented_json(self, capsys: pytest.CaptureFixture[str]):
        """Test that token responses print as indented JSON."""
        OutputHandler(json_mode=False).success({"access_token": "x"})
        out = capsys.readouterr().out
        assert json.loads(out) == {"access_token": "x"}
        assert '\n  "access_token"' in out

    def test_json_success_is_wrapped(self, capsys: pytest.CaptureFixture[str]):
        """Test that JSON mode wraps data in a success envelope."""
        OutputHandler(json_mode=True).success({"access_token": "x"})
        assert json.loads(capsys.readouterr().out)["success"] is True

    def test_status_goes_to_stderr(self, capsys: pytest.CaptureFixture[str]):
        """Test that status messages do not pollute stdout."""
        OutputHandler().status("Waiting for callback")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Waiting for callback" in captured.err

    def test_status_silent_in_json_mode(self, capsys: pytest.CaptureFixture[str]):
        """Test that JSON mode suppresses status lines."""
        OutputHandler(json_mode=True).status("Waiting")
        assert capsys.readouterr().err == ""

    def test_error_exits_1(self, capsys: pytest.CaptureFixture[str]):
        """Test that errors exit with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            OutputHandler().error(ValueError("boom"))
        assert exc_info.value.code == 1
        assert "Error: boom" in capsys.readouterr().err
