"""Tests for session health classification."""

from __future__ import annotations

from unittest.mock import MagicMock

import psutil
import pytest

from conftest import make_table
from skfleet.health import (
    HealthClassifier,
    SessionHealth,
    VERSION_PATTERN,
    matches_indicator,
)
from skfleet.tmux import NoServerError


class TestMatchesIndicator:
    """Direct foreground-command matching."""

    @pytest.mark.parametrize("command,expected", [
        ("node", True),
        ("claude", True),
        ("2.0.76", True),
        ("1.2.3", True),
        ("10.20.30", True),
        ("1.2.3-beta", True),
        ("v2.0.76", False),
        ("2.0", False),
        ("bash", False),
        ("", False),
        ("nodejs", False),
    ])
    def test_indicator_table(self, command, expected):
        """Exact names and leading N.N.N version banners count."""
        assert matches_indicator(command, ("node", "claude"), match_versions=True) is expected

    def test_versions_off(self):
        """Without version matching a bare version is not the agent."""
        assert matches_indicator("2.0.76", ("claude",)) is False

    def test_version_pattern_anchored(self):
        """The version pattern only matches at the start."""
        assert VERSION_PATTERN.match("x1.2.3") is None


class TestHealthClassifier:
    """Two-tier classification over a fake tmux and process table."""

    def test_direct_match(self, fake_tmux):
        """A pane running claude is RUNNING without a table lookup."""
        fake_tmux.add_session("gt-gastown-witness", command="claude")
        factory = MagicMock()
        classifier = HealthClassifier(fake_tmux, table_factory=factory)
        assert classifier.classify("gt-gastown-witness") == SessionHealth.RUNNING
        factory.assert_not_called()

    def test_version_banner_match(self, fake_tmux):
        """A pane titled with a version banner is RUNNING."""
        fake_tmux.add_session("gt-mayor", command="2.0.76")
        assert HealthClassifier(fake_tmux).is_running("gt-mayor") is True

    def test_shell_with_agent_descendant(self, fake_tmux):
        """A shell pane with claude somewhere below it is RUNNING."""
        fake_tmux.add_session("gt-mayor", command="bash", pane_pid=100)
        table = make_table(
            (100, 1, "bash"),
            (200, 100, "npx"),
            (300, 200, "claude"),
        )
        classifier = HealthClassifier(fake_tmux, table_factory=lambda: table)
        assert classifier.is_running("gt-mayor") is True

    def test_shell_without_agent(self, fake_tmux):
        """A bare shell is a zombie."""
        fake_tmux.add_session("gt-mayor", command="zsh", pane_pid=100)
        table = make_table((100, 1, "zsh"), (101, 100, "vim"))
        classifier = HealthClassifier(fake_tmux, table_factory=lambda: table)
        assert classifier.classify("gt-mayor") == SessionHealth.NOT_RUNNING

    def test_non_shell_non_agent(self, fake_tmux):
        """Some other foreground program is NOT_RUNNING without descending."""
        fake_tmux.add_session("gt-mayor", command="vim")
        factory = MagicMock()
        classifier = HealthClassifier(fake_tmux, table_factory=factory)
        assert classifier.is_running("gt-mayor") is False
        factory.assert_not_called()

    def test_missing_session(self, fake_tmux):
        """A session that does not exist is NOT_RUNNING, not an error."""
        assert HealthClassifier(fake_tmux).is_running("gt-ghost") is False

    def test_no_server(self, fake_tmux):
        """A dead tmux server yields NOT_RUNNING."""
        fake_tmux.failures["get_pane_command"] = NoServerError("no server running")
        assert HealthClassifier(fake_tmux).is_running("gt-mayor") is False

    def test_table_failure(self, fake_tmux):
        """A failing process snapshot yields NOT_RUNNING."""
        fake_tmux.add_session("gt-mayor", command="bash")

        def broken():
            raise psutil.AccessDenied()

        classifier = HealthClassifier(fake_tmux, table_factory=broken)
        assert classifier.is_running("gt-mayor") is False

    def test_descendant_cycle_terminates(self, fake_tmux):
        """Cyclic parent links do not hang the subtree walk."""
        fake_tmux.add_session("gt-mayor", command="bash", pane_pid=100)
        table = make_table((100, 300, "bash"), (200, 100, "sh"), (300, 200, "sh"))
        classifier = HealthClassifier(fake_tmux, table_factory=lambda: table)
        assert classifier.is_running("gt-mayor") is False


class TestIsAgentRunning:
    """Generalized check against caller-supplied names."""

    def test_custom_name(self, fake_tmux):
        """A custom binary name matches exactly."""
        fake_tmux.add_session("gt-x", command="codex")
        assert HealthClassifier(fake_tmux).is_agent_running("gt-x", "codex") is True

    def test_no_names(self, fake_tmux):
        """With no names nothing matches."""
        fake_tmux.add_session("gt-x", command="claude")
        assert HealthClassifier(fake_tmux).is_agent_running("gt-x") is False

    def test_versions_not_matched(self, fake_tmux):
        """The generalized check does not accept version banners."""
        fake_tmux.add_session("gt-x", command="2.0.76")
        assert HealthClassifier(fake_tmux).is_agent_running("gt-x", "claude") is False

    def test_descendant_custom_name(self, fake_tmux):
        """Custom names are also searched below a shell."""
        fake_tmux.add_session("gt-x", command="bash", pane_pid=10)
        table = make_table((10, 1, "bash"), (11, 10, "aider"))
        classifier = HealthClassifier(fake_tmux, table_factory=lambda: table)
        assert classifier.is_agent_running("gt-x", "aider", "codex") is True
