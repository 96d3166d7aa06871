"""Run one live session from a JSON configuration file until interrupted.

Usage:
    livesales session.json [--log-level DEBUG]
"""

import argparse
import asyncio
import logging
from pathlib import Path

from pydantic import ValidationError

from livesales.core.config import LiveSalesSettings, get_settings
from livesales.core.database import DatabaseManager
from livesales.core.logging import setup_logging
from livesales.core.orchestrator import SessionOrchestrator
from livesales.errors import ConfigurationError
from livesales.models.session import LiveSessionConfig, SessionEvent
from livesales.services.classifier import OpenRouterIntentClassifier
from livesales.services.persistence import InteractionRepository, InteractionSink, LoggingSink

LOGGER: logging.Logger = logging.getLogger("LiveSales")


def load_session_config(path: Path) -> LiveSessionConfig:
    return LiveSessionConfig.model_validate_json(path.read_text(encoding="utf-8"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="livesales", description="Monitor a live broadcast chat and auto-reply to buyers."
    )
    parser.add_argument("session", type=Path, help="Path to the session configuration JSON")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL from the environment")
    return parser


async def run_session(config: LiveSessionConfig, settings: LiveSalesSettings) -> None:
    database: DatabaseManager | None = None
    sink: InteractionSink
    if settings.database_url:
        database = DatabaseManager(settings.database_url)
        await database.connect()
        sink = InteractionRepository(database.pool)
    else:
        LOGGER.info("DATABASE_URL not set, interactions will only be logged")
        sink = LoggingSink()

    finished = asyncio.Event()

    def on_session_event(event: SessionEvent) -> None:
        LOGGER.error(f"Session {event.session_id} {event.kind}: {event.reason}")
        finished.set()

    try:
        classifier = OpenRouterIntentClassifier.from_settings(settings)
        orchestrator = SessionOrchestrator.from_settings(
            settings, classifier, sink, on_session_event=on_session_event
        )
        try:
            await orchestrator.start_session(config)
            await finished.wait()
        finally:
            LOGGER.info(f"Session stats: {orchestrator.get_session_stats(config.session_id)}")
            await orchestrator.shutdown()
    finally:
        if database is not None:
            await database.disconnect()


def main() -> None:
    args = build_parser().parse_args()
    settings = get_settings()
    setup_logging(args.log_level or settings.log_level)

    try:
        config = load_session_config(args.session)
    except (OSError, ValidationError) as e:
        LOGGER.error(f"Invalid session configuration {args.session}: {e}")
        raise SystemExit(1) from e

    try:
        asyncio.run(run_session(config, settings))
    except KeyboardInterrupt:
        LOGGER.warning("Shutting down due to KeyboardInterrupt...")
    except ConfigurationError as e:
        LOGGER.error(f"Configuration error: {e}")
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
