"""
Unit tests for CLI argument parsing and dispatch.
"""

from pathlib import Path

import pytest

from pushagent.cli.parser import CLI, EXIT_CONFIGURATION_ERROR


@pytest.fixture
def cli():
    return CLI()


class TestArgumentParsing:
    """Test parsing of global options and subcommands."""

    def test_global_options(self, cli):
        args = cli.parse_args(["-v", "--config", "agent.yaml", "--state-dir", "/var/lib/pa", "run"])

        assert args.verbose is True
        assert args.config == Path("agent.yaml")
        assert args.state_dir == Path("/var/lib/pa")
        assert args.command == "run"
        assert args.once is False

    def test_run_once(self, cli):
        assert cli.parse_args(["run", "--once"]).once is True

    def test_hook(self, cli):
        args = cli.parse_args(["hook", "--spool-dir", "/tmp/spool"])
        assert args.spool_dir == Path("/tmp/spool")

    def test_push(self, cli):
        args = cli.parse_args(
            ["push", "/store/a", "/store/b", "--derivation", "/store/x.drv", "--cache", "main"]
        )

        assert args.paths == ["/store/a", "/store/b"]
        assert args.derivation == "/store/x.drv"
        assert args.cache == ["main"]

    def test_push_requires_paths(self, cli):
        with pytest.raises(SystemExit):
            cli.parse_args(["push"])

    def test_replay(self, cli):
        args = cli.parse_args(["replay", "--list", "--reason", "exhausted", "--reason", "no_token"])

        assert args.list is True
        assert args.reason == ["exhausted", "no_token"]

    def test_probe(self, cli):
        assert cli.parse_args(["probe"]).cache is None

    def test_version(self, cli, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.parse_args(["--version"])

        assert exc_info.value.code == 0
        assert "pushagent" in capsys.readouterr().out


class TestRun:
    """Test exit codes of CLI.run."""

    def test_no_command_prints_help(self, cli, capsys):
        assert cli.run([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_missing_configuration(self, cli, tmp_path, monkeypatch):
        monkeypatch.delenv("PUSHAGENT_CONFIG", raising=False)

        code = cli.run(["--config", str(tmp_path / "missing.yaml"), "probe"])

        assert code == EXIT_CONFIGURATION_ERROR

    def test_unexpected_error(self, cli, monkeypatch, config_file):
        def boom(args):
            raise RuntimeError("boom")

        monkeypatch.setattr("pushagent.cli.commands.probe.run", boom)

        assert cli.run(["--config", str(config_file), "probe"]) == 1
