"""Tests for the CLI interface."""

import json

import pytest
from typer.testing import CliRunner

from stackgraph.cli.stackgraph import cli

runner = CliRunner()


@pytest.fixture
def state_file(tmp_path):
    return str(tmp_path / "state.json")


def _json(result):
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


class TestCLIPlan:
    def test_plan_of_new_stack(self, state_file):
        result = runner.invoke(cli, ["plan", "--state", state_file])
        assert result.exit_code == 0
        assert "13 to create" in result.output

    def test_plan_json(self, state_file):
        plan = _json(runner.invoke(cli, ["plan", "--state", state_file, "--json"]))
        assert plan["counts"]["create"] == 13
        assert plan["to_create"][0] == "vpc"

    def test_plan_writes_nothing(self, tmp_path, state_file):
        runner.invoke(cli, ["plan", "--state", state_file])
        assert list(tmp_path.iterdir()) == []

    def test_plan_with_corrupt_state(self, tmp_path, state_file):
        (tmp_path / "state.json").write_text("{not json")
        result = runner.invoke(cli, ["plan", "--state", state_file])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestCLIUp:
    def test_up_deploys(self, state_file):
        result = runner.invoke(cli, ["up", "--state", state_file])
        assert result.exit_code == 0, result.output
        assert "Status: succeeded" in result.output

    def test_up_json_exports_url(self, state_file):
        outcome = _json(runner.invoke(cli, ["up", "--state", state_file, "--json"]))
        assert outcome["status"] == "succeeded"
        assert outcome["exported_values"]["url"].endswith(".elb.amazonaws.com")

    def test_second_process_sees_no_changes(self, state_file):
        runner.invoke(cli, ["up", "--state", state_file])

        plan = _json(runner.invoke(cli, ["plan", "--state", state_file, "--json"]))
        assert plan["counts"]["no_op"] == 13
        assert plan["to_create"] == []

        outcome = _json(runner.invoke(cli, ["up", "--state", state_file, "--json"]))
        assert set(outcome["actions"].values()) == {"NOOP"}

    def test_stack_name_option(self, tmp_path, state_file):
        outcome = _json(runner.invoke(cli, ["up", "-s", "prod", "--state", state_file, "--json"]))
        assert outcome["status"] == "succeeded"
        assert json.loads((tmp_path / "state.json").read_text())["stack"] == "prod"


class TestCLIState:
    def test_empty_state(self, state_file):
        result = runner.invoke(cli, ["state", "--state", state_file])
        assert result.exit_code == 0
        assert "No resources recorded" in result.output

    def test_state_after_up(self, state_file):
        runner.invoke(cli, ["up", "--state", state_file])

        recorded = _json(runner.invoke(cli, ["state", "--state", state_file, "--json"]))
        assert len(recorded["resources"]) == 13
        registry = recorded["resources"]["app-image"]["inputs"]["registry"]
        assert set(registry) == {"__secret_sha256__"}

    def test_state_path_from_environment(self, monkeypatch, state_file):
        monkeypatch.setenv("STACKGRAPH_STATE_PATH", state_file)
        runner.invoke(cli, ["up"])

        result = runner.invoke(cli, ["state"])
        assert result.exit_code == 0
        assert "Recorded state" in result.output


class TestCLIDestroy:
    def test_destroy_with_yes(self, state_file):
        runner.invoke(cli, ["up", "--state", state_file])

        outcome = _json(runner.invoke(cli, ["destroy", "--yes", "--state", state_file, "--json"]))
        assert len(outcome["deleted"]) == 13

        recorded = _json(runner.invoke(cli, ["state", "--state", state_file, "--json"]))
        assert recorded["resources"] == {}

    def test_destroy_asks_for_confirmation(self, state_file):
        result = runner.invoke(cli, ["destroy", "--state", state_file], input="n\n")
        assert result.exit_code == 1
        assert "Aborted" in result.output


class TestCLIInspection:
    def test_graph(self):
        result = runner.invoke(cli, ["graph"])
        assert result.exit_code == 0
        assert "Parallel levels" in result.output

    def test_graph_json(self):
        data = _json(runner.invoke(cli, ["graph", "--json"]))
        assert len(data["nodes"]) == 13

    def test_config(self):
        result = runner.invoke(cli, ["config"])
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_config_reports_problems(self, monkeypatch):
        monkeypatch.setenv("STACKGRAPH_RUN_TIMEOUT_SECONDS", "0.1")
        monkeypatch.setenv("STACKGRAPH_RETRY_BACKOFF_SECONDS", "1")
        result = runner.invoke(cli, ["config"])
        assert result.exit_code == 1
        assert "FAIL" in result.output
