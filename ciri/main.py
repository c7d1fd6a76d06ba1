"""
Main entrypoint: bootstraps the gallery bot.

Wires together: config, dedup cache, cache save loop, gallery client,
command dispatcher, Telegram session and gateway.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ciri.bot.commands import CommandDispatcher
from ciri.config import AppConfig, load_config
from ciri.dedup import codec
from ciri.dedup.saver import SaveCoordinator
from ciri.gallery.client import GalleryClient
from ciri.telegram.client import TelegramSession
from ciri.telegram.gateway import Gateway

logger = logging.getLogger(__name__)


def setup_logging(config: AppConfig) -> None:
    """Configure logging from config."""
    log_cfg = config.logging
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_cfg.file:
        log_path = Path(log_cfg.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, log_cfg.level, logging.INFO),
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        handlers=handlers,
    )
    # Telethon is chatty at INFO
    logging.getLogger("telethon").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def run(config_path: str | None = None) -> None:
    """Main async entry point."""
    config = load_config(config_path)
    setup_logging(config)

    logger.info("Starting ciri...")

    # --- Dedup cache ---
    cache = codec.load_or_empty(config.cache.path, config.cache.capacity)
    saver = SaveCoordinator(
        cache=cache,
        path=config.cache.path,
        debounce_seconds=config.cache.save_debounce_seconds,
    )

    # --- Gallery + commands ---
    gallery = GalleryClient(config.gallery)
    dispatcher = CommandDispatcher(
        cache=cache,
        saver=saver,
        gallery=gallery,
        prefix=config.commands.prefix,
        aliases=config.commands.aliases,
        check_alive=config.gallery.check_alive,
        max_alive_attempts=config.gallery.max_alive_attempts,
    )

    # --- Telegram ---
    session = TelegramSession(
        api_id=config.telegram.api_id,
        api_hash=config.telegram.api_hash,
        bot_token=config.telegram.bot_token.get_secret_value(),
        session_name=config.telegram.session_name,
    )
    gateway = Gateway(session=session, dispatcher=dispatcher)

    stop_event = asyncio.Event()

    try:
        await session.connect()
        await gateway.start()
        saver.start(stop_event)

        logger.info("Bot is running. Press Ctrl+C to stop.")
        await gateway.run_until_disconnected()

    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        stop_event.set()
        await saver.shutdown(timeout=config.cache.shutdown_timeout_seconds)
        await gallery.close()
        await session.disconnect()
        logger.info("ciri stopped.")


def main(config_path: str | None = None) -> None:
    """Synchronous wrapper for run()."""
    asyncio.run(run(config_path))
