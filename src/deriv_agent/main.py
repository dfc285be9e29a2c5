from __future__ import annotations

import asyncio
import logging

from .config import load_config
from .controller import BotController, build_controller

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run(controller: BotController | None = None) -> None:
    if controller is None:
        controller = build_controller(load_config())

    bot = controller.bot_config.get()
    controller.state.add_event(
        "info",
        "agent_started",
        {
            "assets": list(bot.assets),
            "timeframe": bot.timeframe,
            "provider": bot.api_provider,
            "strategy": controller.engine.strategy.name,
            "feed": "live" if controller.live_feed else "demo",
            "dry_run": controller.executor.dry_run,
        },
    )
    logger.info(
        "[Engine] strategy=%s timeframe=%s assets=%s",
        controller.engine.strategy.name,
        bot.timeframe,
        list(bot.assets),
    )
    await controller.run()


if __name__ == "__main__":
    asyncio.run(run())
