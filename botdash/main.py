"""
Botdash — дашборд бота рассылок.

Точка входа приложения.
"""

import argparse
import asyncio
import sys

import uvicorn
from loguru import logger

from botdash.api import create_app
from botdash.bot.aiogram_session import AiogramSession
from botdash.config import load_overrides, settings
from botdash.migrations import run_migrations
from botdash.services import build_services


def setup_logging(level: str = "DEBUG") -> None:
    """Настраивает логирование."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="botdash", description="Broadcast bot dashboard")
    parser.add_argument(
        "--reconcile-duplicates",
        action="store_true",
        help="archive duplicate active tasks (newest per name is kept) and exit",
    )
    parser.add_argument("--log-level", default="DEBUG")
    return parser.parse_args(argv)


async def _reconcile_only() -> None:
    services = build_services()
    try:
        actions = await services.registry.reconcile_duplicates()
        for action in actions:
            logger.info(
                f"{action.name!r}: kept [{action.kept_id}], archived {action.archived_ids}"
            )
        logger.info(f"Reconcile finished: {len(actions)} name(s) fixed")
    finally:
        await services.store.close()
        await services.groups.close()


async def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    setup_logging(args.log_level)

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    load_overrides()
    await run_migrations(settings.data_dir)

    if args.reconcile_duplicates:
        await _reconcile_only()
        return

    bot = None
    if settings.tg_bot_token:
        bot = AiogramSession(settings.tg_bot_token)
    else:
        logger.warning("TG_BOT_TOKEN not set, dashboard runs without bot session")

    services = build_services(bot=bot)
    app = create_app(services)
    config = uvicorn.Config(
        app, host=settings.web_host, port=settings.web_port, log_level="warning"
    )
    server = uvicorn.Server(config)
    logger.info(f"Dashboard: http://{settings.web_host}:{settings.web_port}")

    # services стартуют и останавливаются в lifespan приложения
    await server.serve()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
