"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging

import httpx

from gateway.chat_service import ChatService
from gateway.config import load_settings, provider_configs
from gateway.db import Database
from gateway.llm.factory import AIProviderFactory
from gateway.scheduler_manager import SchedulerManager
from gateway.tokenizer import TiktokenCounter

LOGGER = logging.getLogger(__name__)


async def run() -> None:
    """Initialize app layers, restore scheduled tasks and run until cancelled."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    db = Database(settings.database_path)
    db.initialize()

    configs = provider_configs(settings)
    if not configs:
        LOGGER.warning("No provider API keys configured; scheduled tasks will fail until one is set")

    async with httpx.AsyncClient() as http_client:
        factory = AIProviderFactory(http_client, TiktokenCounter(settings.tokenizer_model))
        chat_service = ChatService(db, factory, configs)
        manager = SchedulerManager(
            db,
            chat_service,
            min_interval_seconds=settings.scheduler_min_interval_seconds,
        )

        restored = await manager.load_all_tasks()
        LOGGER.info("Gateway started with providers %s and %d scheduled tasks", sorted(t.value for t in configs), restored)

        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            raise
        finally:
            await manager.shutdown()
            LOGGER.info("Gateway shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")


if __name__ == "__main__":
    main()
