"""Entry point for running the AI Chat Agent.

This module provides the main entry point for the AI Chat Agent.
It handles:
- Configuration loading
- Logging setup with secret sanitization
- Agent lifecycle management
"""

import argparse
import asyncio
import sys
from pathlib import Path

import structlog

from ai_chat_agent._version import __version__

log = structlog.get_logger()


def setup_logging(
    debug: bool = False,
    log_format: str = "console",
    file_path: Path | None = None,
    file_enabled: bool = False,
) -> None:
    """Configure structured logging with secret sanitization.

    Args:
        debug: Enable debug logging if True
        log_format: Output format ("json" or "console")
        file_path: Path to log file (if file logging enabled)
        file_enabled: Whether to enable file logging
    """
    from ai_chat_agent.utils.logging import LogFormat, LogLevel, configure_logging

    configure_logging(
        level=LogLevel.DEBUG if debug else LogLevel.INFO,
        log_format=LogFormat(log_format.lower()),
        file_path=file_path,
        file_enabled=file_enabled,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="ai-chat-agent",
        description="AI Chat Agent - a persona that takes part in group chat",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config/config.yaml"),
        help="Path to configuration file (default: config/config.yaml)",
    )

    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse config and validate without starting the agent",
    )

    parser.add_argument(
        "--format",
        choices=["json", "console"],
        default="console",
        help="Log output format (default: console)",
    )

    return parser.parse_args(argv)


async def run_agent(config_path: Path, dry_run: bool = False, debug: bool = False) -> int:
    """Run the AI Chat Agent.

    Args:
        config_path: Path to configuration file
        dry_run: If True, only validate config without starting
        debug: Keep debug logging even if the config asks for less

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    log.info("starting_ai_chat_agent", version=__version__, config_path=str(config_path))

    try:
        from ai_chat_agent.config.loader import load_config

        config = load_config(config_path)
        log.info("configuration_loaded", persona=config.persona.name)

        from ai_chat_agent.utils.logging import LogLevel, configure_logging

        configure_logging(
            level=LogLevel.DEBUG if debug else config.logging.level,
            log_format=config.logging.format,
            file_path=config.logging.file.path if config.logging.file.enabled else None,
            file_enabled=config.logging.file.enabled,
        )

        if dry_run:
            log.info("dry_run_mode_config_valid")
            return 0

        from ai_chat_agent.core.agent import StartupError, create_agent

        try:
            agent = await create_agent(config)
            await agent.start()
        except StartupError as e:
            log.error("agent_startup_failed", error=str(e))
            return 1

        return 0

    except FileNotFoundError as e:
        log.error("configuration_file_not_found", path=str(config_path), error=str(e))
        return 1
    except ValueError as e:
        log.error("configuration_invalid", error=str(e))
        return 1
    except KeyboardInterrupt:
        log.info("keyboard_interrupt_received")
        return 0
    except Exception as e:
        log.exception("fatal_error", error=str(e))
        return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logging(debug=args.debug, log_format=args.format)

    try:
        return asyncio.run(run_agent(args.config, args.dry_run, args.debug))
    except KeyboardInterrupt:
        log.info("shutting_down_gracefully")
        return 0


if __name__ == "__main__":
    sys.exit(main())
