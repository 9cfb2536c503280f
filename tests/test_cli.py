"""
Tests for the mpbench command-line interface.

Commands run with ``--log-level ERROR`` so that only command output reaches
the captured streams.
"""

import json
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner
from loguru import logger

from mpbench.cli.main import cli

TOPOLOGY = {
    "nodes": [
        {
            "name": "talker",
            "publishers": [{"name": "chatter", "type": "stamped4_int32", "rate_hz": 100}],
            "servers": [{"name": "adder", "type": "stamped10b"}],
        },
        {
            "name": "listener",
            "executor_id": 1,
            "subscribers": [{"name": "chatter", "type": "stamped4_int32"}],
            "clients": [{"name": "adder", "type": "stamped10b", "rate_hz": 50}],
        },
    ]
}


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    # the CLI points loguru at the runner's streams, which close after invoke
    logger.remove()
    logger.add(sys.__stderr__, level="INFO")


@pytest.fixture
def topology_file(tmp_path: Path) -> Path:
    path = tmp_path / "topology.json"
    path.write_text(json.dumps(TOPOLOGY))
    return path


class TestBenchmarkCLI:
    """Test benchmark CLI commands."""

    def test_cli_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "mpbench Middleware Benchmark CLI" in result.output
        assert "run" in result.output
        assert "validate" in result.output
        assert "types" in result.output

    def test_types_json_output(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--log-level", "ERROR", "types", "--output", "json"])

        assert result.exit_code == 0
        rows = json.loads(result.output)
        names = {(row["kind"], row["name"]) for row in rows}
        assert ("message", "stamped4_int32") in names
        assert ("service", "stamped10b") in names

    def test_types_table(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--log-level", "ERROR", "types"])

        assert result.exit_code == 0
        assert "Endpoint Types" in result.output
        assert "stamped10b" in result.output

    def test_validate_valid(self, topology_file: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--log-level", "ERROR", "validate", str(topology_file)])

        assert result.exit_code == 0
        assert "Topology is valid" in result.output
        assert "2 nodes" in result.output

    def test_validate_unknown_type(self, tmp_path: Path):
        path = tmp_path / "broken.json"
        path.write_text(
            json.dumps([{"name": "n", "publishers": [{"name": "t", "type": "no_such_type"}]}])
        )
        runner = CliRunner()
        result = runner.invoke(cli, ["--log-level", "ERROR", "validate", str(path)])

        assert result.exit_code == 1
        assert "Error" in result.output
        assert "no_such_type" in result.output

    def test_validate_missing_file(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["validate", "/nonexistent/topology.json"])

        assert result.exit_code != 0

    def test_run_json_output(self, topology_file: Path, tmp_path: Path):
        results_dir = tmp_path / "results"
        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "--log-level",
                "ERROR",
                "run",
                str(topology_file),
                "--duration",
                "0.3",
                "--report-interval",
                "0",
                "--no-resource-usage",
                "--results-dir",
                str(results_dir),
                "--output",
                "json",
            ],
        )

        assert result.exit_code == 0, result.output
        summary = json.loads(result.output)
        roles = sorted(row["role"] for row in summary["endpoints"])
        assert roles == ["client", "publisher", "server", "subscriber"]
        assert summary["total"]["count"] > 0
        assert summary["resource_usage"] is None
        assert (results_dir / "results.json").exists()
        assert (results_dir / "results.csv").exists()

    def test_run_with_settings_file(self, topology_file: Path, tmp_path: Path):
        settings = tmp_path / "settings.toml"
        events_file = tmp_path / "events.txt"
        settings.write_text(
            "[mpbench]\n"
            "duration = 0.2\n"
            "report_interval = 0\n"
            'log_level = "ERROR"\n'
            "resource_usage_enabled = false\n"
            f"events_file = {json.dumps(str(events_file))}\n"
        )
        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "--log-level",
                "ERROR",
                "run",
                str(topology_file),
                "--settings",
                str(settings),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Ran " in result.output
        assert events_file.read_text().startswith("time_ms")

    def test_run_invalid_topology(self, tmp_path: Path):
        path = tmp_path / "topology.json"
        path.write_text("{not json")
        runner = CliRunner()
        result = runner.invoke(
            cli, ["--log-level", "ERROR", "run", str(path), "--no-resource-usage"]
        )

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_run_rejects_bad_duration(self, topology_file: Path):
        runner = CliRunner()
        result = runner.invoke(
            cli, ["--log-level", "ERROR", "run", str(topology_file), "--duration", "-1"]
        )

        assert result.exit_code == 1
