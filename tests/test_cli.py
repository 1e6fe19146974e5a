"""Tests for the skfleet command line via Click's test runner."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from conftest import FakeTmux
from skfleet.cli import main
from skfleet.doctor import Check, DiagnosticReport

AGENT = "gastown/witness"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def configured_home(tmp_fleet_home: Path, town_root: Path) -> Path:
    """Fleet home with one configured agent."""
    config = {
        "town_root": str(town_root),
        "agents": [{
            "agent_id": AGENT,
            "session": "gt-gastown-witness",
            "work_dir": str(town_root / "gastown"),
            "rig": "gastown",
            "role": "witness",
        }],
    }
    (tmp_fleet_home / "config" / "config.yaml").write_text(yaml.dump(config))
    return tmp_fleet_home


@pytest.fixture
def fake_tmux():
    tmux = FakeTmux()
    with patch("skfleet.cli._common.Tmux", return_value=tmux), \
            patch("skfleet.cli.supervise.Tmux", return_value=tmux):
        yield tmux


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


class TestMain:
    """Top-level group."""

    def test_version(self, runner):
        """--version prints the program name."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "skfleet" in result.output


class TestAgentCommands:
    """agent start/stop/status/restart."""

    def test_unknown_agent(self, runner, configured_home, fake_tmux):
        """An unconfigured agent id exits 1."""
        result = runner.invoke(main, ["agent", "start", "nobody", "--home", str(configured_home)])
        assert result.exit_code == 1
        assert "Unknown agent" in result.output

    def test_start_then_conflict(self, runner, configured_home, fake_tmux):
        """Start succeeds; a second start is a yellow notice with exit 0."""
        home = str(configured_home)
        first = runner.invoke(main, ["agent", "start", AGENT, "--home", home])
        assert first.exit_code == 0, first.output
        assert "Started" in first.output
        assert (configured_home / "state" / "gastown__witness.json").exists()

        second = runner.invoke(main, ["agent", "start", AGENT, "--home", home])
        assert second.exit_code == 0
        assert "already running" in second.output

    def test_stop_not_running(self, runner, configured_home, fake_tmux):
        """Stopping a stopped agent is a notice, not a failure."""
        result = runner.invoke(main, ["agent", "stop", AGENT, "--home", str(configured_home)])
        assert result.exit_code == 0
        assert "not running" in result.output

    def test_start_failure_exits_1(self, runner, configured_home, fake_tmux):
        """A fatal lifecycle error exits 1."""
        from skfleet.tmux import TmuxError

        fake_tmux.failures["new_session"] = TmuxError("no space")
        result = runner.invoke(main, ["agent", "start", AGENT, "--home", str(configured_home)])
        assert result.exit_code == 1
        assert "creating session" in result.output

    def test_status_json(self, runner, configured_home, fake_tmux):
        """Status JSON merges persisted state, live health and workers."""
        home = str(configured_home)
        runner.invoke(main, ["agent", "start", AGENT, "--home", home])
        result = runner.invoke(main, ["agent", "status", AGENT, "--home", home, "--json-out"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["state"] == "running"
        assert data["session_running"] is True
        assert data["monitored_workers"] == ["nux", "toast"]

    def test_restart(self, runner, configured_home, fake_tmux):
        """Restart works from stopped."""
        result = runner.invoke(main, ["agent", "restart", AGENT, "--home", str(configured_home)])
        assert result.exit_code == 0
        assert "Restarted" in result.output


class TestBackoffCommand:
    """backoff preview."""

    def test_preview(self, runner, tmp_fleet_home):
        """The default geometric policy grows 60s to 90s."""
        result = runner.invoke(main, ["backoff", "--home", str(tmp_fleet_home), "--misses", "2"])
        assert result.exit_code == 0
        assert "geometric" in result.output
        assert "90s" in result.output
        assert "135s" in result.output


class TestDoctorCommand:
    """doctor output."""

    @patch("skfleet.doctor.run_diagnostics")
    def test_json(self, mock_diag, runner, tmp_fleet_home) -> None:
        """--json-out prints the report dict."""
        mock_diag.return_value = DiagnosticReport(checks=[Check("tool:tmux", "tmux", True)])
        result = runner.invoke(main, ["doctor", "--home", str(tmp_fleet_home), "--json-out"])
        assert result.exit_code == 0
        assert json.loads(result.output)["all_passed"] is True

    @patch("skfleet.doctor.run_diagnostics")
    def test_fix_and_town_root_passed(self, mock_diag, runner, tmp_fleet_home, tmp_path) -> None:
        """--fix and --town-root reach the diagnostics."""
        mock_diag.return_value = DiagnosticReport(checks=[
            Check("orphan-sessions", "Orphaned tmux sessions", False,
                  details=["Orphan: gt-x"], fix="skfleet doctor --fix",
                  category="orphans", severity="warning"),
        ])
        result = runner.invoke(main, [
            "doctor", "--home", str(tmp_fleet_home), "--town-root", str(tmp_path), "--fix",
        ])
        assert result.exit_code == 0
        args, kwargs = mock_diag.call_args
        assert args[1] == tmp_path
        assert kwargs["fix"] is True
        assert kwargs["session_prefix"] == "gt-"
        assert "Orphan: gt-x" in result.output


class TestSuperviseCommand:
    """supervise loop."""

    def test_no_agents(self, runner, tmp_fleet_home):
        """Without agents there is nothing to supervise."""
        result = runner.invoke(main, ["supervise", "--home", str(tmp_fleet_home)])
        assert result.exit_code == 1

    def test_single_pass(self, runner, configured_home, fake_tmux, restore_logging):
        """One iteration polls the agent and writes the log file."""
        fake_tmux.add_session("gt-gastown-witness", command="claude")
        result = runner.invoke(main, [
            "supervise", "--home", str(configured_home), "--iterations", "1",
        ])
        assert result.exit_code == 0, result.output
        assert "gastown/witness: next poll in 60s" in result.output
        assert (configured_home / "logs" / "supervisor.log").exists()
