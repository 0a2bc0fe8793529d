"""Tests for the k8s-inventory CLI."""

from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from k8s_inventory import __version__
from k8s_inventory.cli.main import cli
from k8s_inventory.models import Report


def runner() -> CliRunner:
    return CliRunner()


def _config(tmp_path: Path, text: str = "") -> str:
    path = tmp_path / "agent.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


# --- version command ---


class TestVersionCommand:
    def test_version(self):
        result = runner().invoke(cli, ["version"])
        assert result.exit_code == 0
        assert f"k8s-inventory {__version__}" in result.output

    def test_version_option(self):
        result = runner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


# --- config command ---


class TestConfigCommand:
    def test_shows_redacted_config(self, tmp_path: Path):
        path = _config(tmp_path, "anchore:\n  url: https://anchore.example.com\n  password: hunter2\n")
        result = runner().invoke(cli, ["--config", path, "config"])
        assert result.exit_code == 0
        assert "https://anchore.example.com" in result.output
        assert "hunter2" not in result.output
        assert "******" in result.output

    def test_bad_config(self, tmp_path: Path):
        path = _config(tmp_path, "mode: sometimes\n")
        result = runner().invoke(cli, ["--config", path, "config"])
        assert result.exit_code == 1
        assert "Error loading config" in result.output


# --- default (run) command ---


class TestRun:
    def test_adhoc_by_default(self, tmp_path: Path):
        path = _config(tmp_path)
        with patch("k8s_inventory.cli.main.run_adhoc", return_value=Report(timestamp="t")) as run:
            result = runner().invoke(cli, ["--config", path])
        assert result.exit_code == 0
        cfg = run.call_args.args[0]
        assert cfg.mode == "adhoc"

    def test_flags_override_config(self, tmp_path: Path):
        path = _config(tmp_path, "output: json\n")
        with patch("k8s_inventory.cli.main.run_adhoc", return_value=Report(timestamp="t")) as run:
            result = runner().invoke(cli, ["--config", path, "-o", "table", "--verbose-inventory-reports"])
        assert result.exit_code == 0
        cfg = run.call_args.args[0]
        assert cfg.output == "table"
        assert cfg.verbose_inventory_reports is True

    def test_adhoc_failure_exits_nonzero(self, tmp_path: Path):
        path = _config(tmp_path)
        with patch("k8s_inventory.cli.main.run_adhoc", side_effect=RuntimeError("cluster unreachable")):
            result = runner().invoke(cli, ["--config", path])
        assert result.exit_code == 1
        assert "cluster unreachable" in result.output

    def test_periodic_mode(self, tmp_path: Path):
        path = _config(tmp_path)
        with patch("k8s_inventory.cli.main.run_periodic") as run:
            result = runner().invoke(cli, ["--config", path, "--mode", "periodic"])
        assert result.exit_code == 0
        run.assert_called_once()

    def test_periodic_interrupt_is_clean(self, tmp_path: Path):
        path = _config(tmp_path)
        with patch("k8s_inventory.cli.main.run_periodic", side_effect=KeyboardInterrupt):
            result = runner().invoke(cli, ["--config", path, "-m", "periodic"])
        assert result.exit_code == 0

    def test_unknown_output_rejected(self, tmp_path: Path):
        result = runner().invoke(cli, ["--config", _config(tmp_path), "-o", "xml"])
        assert result.exit_code == 2
        assert "json" in result.output

    def test_bad_log_level(self, tmp_path: Path):
        path = _config(tmp_path, "log:\n  level: loud\n")
        result = runner().invoke(cli, ["--config", path])
        assert result.exit_code == 1
        assert "Bad log level" in result.output

    def test_missing_config(self, tmp_path: Path):
        result = runner().invoke(cli, ["--config", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1
        assert "not found" in result.output
