"""Tests for main.py CLI interface."""

import json
from unittest.mock import patch

import pytest
from rich.console import Console

from adaptive_flow.config.settings import get_settings
from adaptive_flow.main import (
    CaseFileError,
    async_main,
    create_parser,
    load_test_case,
    main,
    show_version,
)

VALID_CASE = {
    "id": "tc-cart",
    "name": "Cart [smoke]",
    "variables": {"items": 2},
    "steps": [
        {"type": "variable", "id": "v1", "variable": {"operation": "increment", "name": "items"}},
        {
            "type": "condition",
            "id": "c1",
            "condition": {
                "expression": "items > 2",
                "thenSteps": [{"type": "action", "id": "a1", "description": "Open cart"}],
            },
        },
    ],
}


@pytest.fixture(autouse=True)
def quiet_cli(monkeypatch):
    """Wide console on captured stdout; logging left untouched."""
    monkeypatch.setattr("adaptive_flow.main.console", Console(width=200))
    with patch("adaptive_flow.main.setup_logging") as mock_setup:
        yield mock_setup
    # async_main mutates the cached settings
    get_settings.cache_clear()


@pytest.fixture
def write_case(tmp_path):
    def write(data, name="case.json"):
        path = tmp_path / name
        path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")
        return path

    return write


class TestCLIParser:
    """Test command line parser."""

    def test_subcommands(self):
        parser = create_parser()

        args = parser.parse_args(["parse", "--kind", "loop", "repeat 3 times"])
        assert (args.command, args.kind, args.expression) == ("parse", "loop", "repeat 3 times")

        args = parser.parse_args(["run", "case.json", "--json"])
        assert args.as_json is True

        args = parser.parse_args(["validate", "case.json", "--no-suggestions"])
        assert args.no_suggestions is True

    def test_invalid_kind(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["parse", "--kind", "switch", "x"])


class TestUtilityCommands:
    def test_show_version(self, capsys):
        """Test version display."""
        assert show_version() == 0
        out = capsys.readouterr().out
        assert "Adaptive Flow" in out
        assert "Version: 0.1.0" in out

    def test_version_flag_skips_logging(self, quiet_cli):
        assert main(["--version"]) == 0
        quiet_cli.assert_not_called()

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage: adaptive-flow" in capsys.readouterr().out


class TestParseCommand:
    def test_condition(self, capsys):
        assert main(["parse", 'element "Login" is visible and count > 3']) == 0
        out = capsys.readouterr().out
        assert '"type": "compound"' in out
        assert 'Formatted: (element "Login" is visible AND count > 3)' in out

    def test_parse_error_points_at_position(self, capsys):
        assert main(["parse", "count > > 3"]) == 1
        out = capsys.readouterr().out
        assert "Parse error" in out
        assert "^" in out

    def test_natural_language(self, capsys):
        assert main(["parse", "--natural", "Login button is visible"]) == 0
        out = capsys.readouterr().out
        assert '"target": "Login button"' in out
        assert "natural-language heuristics" in out

    def test_loop(self, capsys):
        assert main(["parse", "--kind", "loop", "repeat 3 times"]) == 0
        out = capsys.readouterr().out
        assert '"count": 3' in out
        assert "Formatted" not in out

    def test_invalid_variable_expression(self, capsys):
        assert main(["parse", "--kind", "variable", "unset x"]) == 1
        assert "Invalid variable syntax" in capsys.readouterr().out


class TestValidateCommand:
    def test_valid_file(self, write_case, capsys):
        assert main(["validate", str(write_case(VALID_CASE))]) == 0
        assert "Validation passed" in capsys.readouterr().out

    def test_invalid_file(self, write_case, capsys):
        case = dict(VALID_CASE, steps=[])
        assert main(["validate", str(write_case(case))]) == 1
        out = capsys.readouterr().out
        assert "Validation failed with 1 error(s)" in out
        assert "Test case must have at least one step" in out

    @pytest.mark.parametrize(
        "content,message",
        [
            ("{not json", "Invalid JSON"),
            (json.dumps({"id": "x", "name": "n", "steps": [{"type": "action"}]}), "does not match the schema"),
        ],
    )
    def test_unreadable_file(self, write_case, capsys, content, message):
        assert main(["validate", str(write_case(content))]) == 1
        assert message in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys):
        assert main(["validate", str(tmp_path / "missing.json")]) == 1
        assert "Test case file not found" in capsys.readouterr().out


class TestRunCommand:
    def test_summary(self, write_case, capsys):
        assert main(["run", str(write_case(VALID_CASE))]) == 0
        out = capsys.readouterr().out
        assert "Cart [smoke]" in out
        assert "passed" in out
        assert "Execution Path" in out
        assert "items > 2" in out

    def test_json_output(self, write_case, capsys):
        assert main(["run", "--json", str(write_case(VALID_CASE))]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["success"] is True
        assert data["path"] == [{"step_id": "c1", "branch": "then", "depth": 0}]

    def test_validation_failure(self, write_case, capsys):
        case = dict(VALID_CASE, name="")
        assert main(["run", str(write_case(case))]) == 1
        out = capsys.readouterr().out
        assert "Validation failed" in out
        assert "has-name" in out

    @pytest.mark.asyncio
    async def test_async_main_debug_sets_level(self, write_case, quiet_cli):
        assert await async_main(["--debug", "validate", str(write_case(VALID_CASE))]) == 0
        assert quiet_cli.call_args.kwargs["log_level"] == "DEBUG"
        assert quiet_cli.call_args.kwargs["log_format"] == "text"


def test_load_test_case(write_case):
    case = load_test_case(write_case(VALID_CASE))
    assert case.id == "tc-cart"
    assert len(case.steps) == 2

    with pytest.raises(CaseFileError):
        load_test_case(write_case("[]", name="list.json"))
