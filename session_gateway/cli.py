"""Command-line interface for the Session Gateway.

This module provides CLI argument parsing and configuration loading. It
supports loading configuration from files, environment variables, and
command-line arguments with proper precedence.
"""

import argparse
from pathlib import Path

from session_gateway import __version__
from session_gateway.config import Settings, load_settings_from_file


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="session-gateway",
        description="Session Gateway - Keep messaging sessions alive and relay inbound messages",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Config file
    parser.add_argument(
        "--config", "-c", type=Path, help="Path to configuration file (YAML or TOML)"
    )

    # Application settings
    parser.add_argument(
        "--environment", choices=["lab", "staging", "prod"], help="Deployment environment"
    )

    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    parser.add_argument("--log-format", choices=["json", "text"], help="Log output format")

    # Sessions
    parser.add_argument(
        "--sessions-dir", type=Path, help="Directory for credentials and chat stores"
    )

    parser.add_argument(
        "--max-retries", type=int, help="Reconnect attempts before a session is finalized"
    )

    parser.add_argument(
        "--reconnect-interval", type=int, help="Delay before a reconnect attempt (ms)"
    )

    # Consumer
    parser.add_argument("--app-url", help="Base URL of the webhook consumer")

    # Protocol engine
    parser.add_argument(
        "--protocol-engine", help="Protocol engine factory ('package.module:Factory')"
    )

    # Version
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    return parser


def load_config_from_cli(args: list[str] | None = None) -> Settings:
    """Load configuration from CLI arguments and environment.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Configured Settings instance

    Example:
        settings = load_config_from_cli()
        settings = load_config_from_cli(["--config", "config/prod.yaml"])
    """
    parser = create_argument_parser()
    parsed_args = parser.parse_args(args)

    # Step 1: Load from config file if provided
    if parsed_args.config:
        settings = load_settings_from_file(parsed_args.config)
    else:
        settings = Settings()

    # Step 2: Override with CLI arguments
    cli_overrides = {}

    if parsed_args.environment is not None:
        cli_overrides["environment"] = parsed_args.environment

    if parsed_args.debug:
        cli_overrides["debug"] = True

    if parsed_args.log_level is not None:
        cli_overrides["log_level"] = parsed_args.log_level

    if parsed_args.log_format is not None:
        cli_overrides["log_format"] = parsed_args.log_format

    if parsed_args.sessions_dir is not None:
        cli_overrides["sessions_dir"] = parsed_args.sessions_dir

    if parsed_args.max_retries is not None:
        cli_overrides["max_retries"] = parsed_args.max_retries

    if parsed_args.reconnect_interval is not None:
        cli_overrides["reconnect_interval_ms"] = parsed_args.reconnect_interval

    if parsed_args.app_url is not None:
        cli_overrides["app_url"] = parsed_args.app_url

    if parsed_args.protocol_engine is not None:
        cli_overrides["protocol_engine"] = parsed_args.protocol_engine

    # Create new settings with overrides
    if cli_overrides:
        settings = Settings(**{**settings.model_dump(), **cli_overrides})

    return settings
