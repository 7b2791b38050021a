"""Tests for CLI module."""

from pathlib import Path

import pytest

from session_gateway.cli import create_argument_parser, load_config_from_cli


class TestCreateArgumentParser:
    """Tests for create_argument_parser function."""

    def test_parser_creation(self) -> None:
        parser = create_argument_parser()
        assert parser.prog == "session-gateway"

    def test_parser_help(self) -> None:
        help_text = create_argument_parser().format_help()
        assert "--config" in help_text
        assert "--max-retries" in help_text
        assert "--protocol-engine" in help_text

    def test_version_flag(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            create_argument_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert "session-gateway" in capsys.readouterr().out


class TestLoadConfigFromCli:
    """Tests for load_config_from_cli function."""

    def test_load_default_config(self) -> None:
        settings = load_config_from_cli([])
        assert settings.environment == "lab"
        assert settings.debug is False

    def test_cli_overrides(self, tmp_path: Path) -> None:
        settings = load_config_from_cli(
            [
                "--environment",
                "staging",
                "--debug",
                "--log-level",
                "DEBUG",
                "--log-format",
                "text",
                "--sessions-dir",
                str(tmp_path),
                "--max-retries",
                "3",
                "--reconnect-interval",
                "1500",
                "--app-url",
                "https://consumer.example.com/",
                "--protocol-engine",
                "engines.fake:Engine",
            ]
        )

        assert settings.environment == "staging"
        assert settings.debug is True
        assert settings.log_level == "DEBUG"
        assert settings.log_format == "text"
        assert settings.sessions_dir == tmp_path
        assert settings.max_retries == 3
        assert settings.reconnect_interval_ms == 1500
        assert settings.app_url == "https://consumer.example.com"
        assert settings.protocol_engine == "engines.fake:Engine"

    def test_cli_overrides_config_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("environment: prod\nmax_retries: 2\n")

        settings = load_config_from_cli(["--config", str(config_file), "--max-retries", "9"])

        assert settings.environment == "prod"
        assert settings.max_retries == 9

    def test_invalid_environment(self) -> None:
        with pytest.raises(SystemExit):
            load_config_from_cli(["--environment", "invalid"])
