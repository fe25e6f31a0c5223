"""Tests for the cli-agents command."""

import sys

import pytest

from cli_agents.cli import build_parser, main

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="stub CLIs are shell scripts")


class TestParser:
    """Test argument parsing."""

    def test_defaults(self):
        """Test defaults come from settings."""
        args = build_parser().parse_args(["hello"])

        assert args.prompt == "hello"
        assert args.provider == "claude"
        assert args.timeout == 300.0
        assert not args.stream

    def test_format_choices(self):
        """Test that unknown formats are rejected."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--format", "xml", "hello"])


class TestMain:
    """Test the entry point against a stub CLI."""

    def test_runs_prompt(self, make_cli, capsys):
        """Test a blocking run prints the agent output."""
        cli = make_cli('for last; do :; done\necho "agent says: $last"\n', name="codex")

        code = main(["--provider", "codex", "--path", cli, "fix the bug"])

        assert code == 0
        assert "agent says: fix the bug" in capsys.readouterr().out

    def test_stream_mode(self, make_cli, capsys):
        """Test that streamed assistant text is printed."""
        cli = make_cli('for last; do :; done\necho "streamed: $last"\n', name="codex")

        code = main(["--provider", "codex", "--path", cli, "--stream", "go"])

        assert code == 0
        assert "streamed: go" in capsys.readouterr().out

    def test_failure_exit_code(self, make_cli):
        """Test that the CLI's exit code is propagated."""
        cli = make_cli('echo "BUILD FAILURE" >&2\nexit 2\n', name="codex")

        assert main(["--provider", "codex", "--path", cli, "build"]) == 2

    def test_missing_cli(self, tmp_path, monkeypatch):
        """Test that an unresolvable CLI exits 127."""
        monkeypatch.setenv("PATH", str(tmp_path))
        monkeypatch.delenv("AMP_CLI_PATH", raising=False)
        monkeypatch.setattr("cli_agents.services.discovery.WELL_KNOWN_DIRS", ())
        monkeypatch.setattr("cli_agents.services.providers.amp.AmpProvider.extra_search_paths", ())

        assert main(["--provider", "amp", "--path", str(tmp_path / "amp"), "hello"]) == 127

    def test_prompt_required(self):
        """Test that a prompt is required without --check."""
        with pytest.raises(SystemExit):
            main([])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
