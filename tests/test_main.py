"""
Tests for the command line entry point.
"""

import json
import sys
from unittest.mock import patch

import pytest

from conductor import __version__, main

WORKFLOW = """
name: owls
settings:
  retry: {backoff: none}
stages:
  - id: facts
    prompt: List facts about ${topic}
  - id: essay
    prompt: "Write an essay using ${facts}"
    depends_on: [facts]
    approval: true
"""

FAILING = """
name: strict
settings:
  retry: {backoff: none}
stages:
  - id: a
    prompt: say something
    validator: {name: contains, params: {text: "never produced"}}
  - id: b
    prompt: follow up on ${a}
    depends_on: [a]
"""


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setenv("CONDUCTOR_OBSERVABILITY__LOG_LEVEL", "ERROR")


@pytest.fixture
def workflow_file(tmp_path):
    def _write(text: str):
        path = tmp_path / "workflow.yaml"
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write


class TestMainEntry:
    def test_version(self, capsys):
        assert main.main(["--version"]) == 0
        assert capsys.readouterr().out.strip() == f"conductor {__version__}"

    def test_no_command_prints_help(self, capsys):
        assert main.main([]) == 0
        assert "usage: conductor" in capsys.readouterr().out

    def test_reads_process_arguments_by_default(self, capsys, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["conductor", "--version"])

        assert main.main() == 0
        assert capsys.readouterr().out.strip() == f"conductor {__version__}"

    def test_validate(self, capsys, workflow_file):
        assert main.main(["validate", workflow_file(WORKFLOW)]) == 0

        out = capsys.readouterr().out
        assert out.startswith("owls: 2 stages, fingerprint ")

    def test_validate_reports_configuration_errors(self, capsys, workflow_file):
        path = workflow_file("stages:\n  - {id: a, prompt: go, depends_on: [z]}\n")

        assert main.main(["validate", path]) == 2
        assert "not declared before it" in capsys.readouterr().err

    def test_missing_file(self, capsys, tmp_path):
        assert main.main(["validate", str(tmp_path / "nope.yaml")]) == 2
        assert "cannot read workflow file" in capsys.readouterr().err

    def test_run_with_mock_provider(self, capsys, workflow_file):
        code = main.main(
            ["run", workflow_file(WORKFLOW), "--mock", "--auto-approve", "--json", "--var", "topic=owls"]
        )

        assert code == 0
        result = json.loads(capsys.readouterr().out)
        assert result["name"] == "owls"
        assert result["success"] is True
        assert [s["status"] for s in result["stages"]] == ["succeeded", "succeeded"]
        assert result["stages"][1]["output"] == "[default] response 2"

    def test_failed_run_exit_code(self, capsys, workflow_file):
        code = main.main(["run", workflow_file(FAILING), "--mock"])

        assert code == 1
        out = capsys.readouterr().out
        assert "success=False" in out
        assert "b: skipped" in out
        assert "dependency_failed: skipped: dependency 'a' failed" in out

    def test_bad_variable(self, capsys, workflow_file):
        assert main.main(["run", workflow_file(WORKFLOW), "--mock", "--var", "novalue"]) == 2
        assert "expected KEY=VALUE" in capsys.readouterr().err

    @patch("conductor.main.TracingManager")
    def test_tracing_initialized_when_enabled(self, mock_tracing, monkeypatch, workflow_file):
        monkeypatch.setenv("CONDUCTOR_OBSERVABILITY__ENABLE_TRACING", "true")

        assert main.main(["validate", workflow_file(WORKFLOW)]) == 0

        mock_tracing.return_value.initialize.assert_called_once_with(console_export=False)
        mock_tracing.return_value.shutdown.assert_called_once()


class TestParseVars:
    def test_splits_on_first_equals(self):
        assert main.parse_vars(["a=1", "b=x=y", "c="]) == {"a": "1", "b": "x=y", "c": ""}
