from typer.testing import CliRunner

from memctl import __version__
from memctl.cli import app

runner = CliRunner()


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("sessions", "claims", "capacity", "health", "hygiene", "cleanup", "mcp"):
        assert command in result.stdout


def test_version_prints_package_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_invalid_config_file_exits_with_error(monkeypatch, tmp_path) -> None:
    config_path = tmp_path / "broken.json"
    config_path.write_text("{nope")
    monkeypatch.setenv("MEMCTL_CONFIG", str(config_path))

    result = runner.invoke(app, ["capacity"])

    assert result.exit_code == 1
    assert "Invalid config file" in result.stdout
