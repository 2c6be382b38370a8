"""
__main__.py — Tally Entry Point

Usage:
    python -m tally                          # CLI REPL, default settings
    python -m tally --agent analyst          # start on a specific agent
    python -m tally --log-level DEBUG        # verbose logging
    python -m tally --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from dotenv import load_dotenv


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tally",
        description="Tally — multi-agent personal-finance assistant",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $TALLY_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--agent",
        default=None,
        help="Agent id to start the session on (default: first configured agent)",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from tally.config.settings import ConfigError, load_settings
    from tally.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except OSError as exc:
        print(f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    return settings, get_logger("tally.main")


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    from tally.agent.engine import Engine
    from tally.brain import client_from_settings
    from tally.exceptions import TallyError
    from tally.interfaces.cli import TallyCLI, build_registry

    log.info(
        "tally.starting",
        model=settings.llm.default_model,
        agents=len(settings.agents),
        policy=settings.engine.handoff_policy.value,
    )

    if not settings.agents:
        print("\n❌  No agents configured. Add an `agents:` section to config.yaml.\n",
              file=sys.stderr)
        return 1

    async with client_from_settings(settings) as llm:
        engine = Engine.from_settings(settings, build_registry(settings), llm)
        try:
            cli = TallyCLI(settings, engine, initial_agent_id=args.agent)
        except TallyError as exc:
            print(f"\n❌  {exc}\n", file=sys.stderr)
            return 1
        await cli.start()
        engine.stop()

    log.info("tally.stopped")
    return 0


def run() -> None:
    load_dotenv()
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
