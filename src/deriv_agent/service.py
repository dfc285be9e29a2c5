from __future__ import annotations

import asyncio

import uvicorn

from .api import create_app
from .config import load_config
from .controller import build_controller
from .main import run


async def serve() -> None:
    config = load_config()
    controller = build_controller(config)

    server = uvicorn.Server(
        uvicorn.Config(
            app=create_app(controller),
            host="0.0.0.0",
            port=config.agent_api_port,
            log_level="info",
        )
    )

    async with asyncio.TaskGroup() as tg:
        tg.create_task(run(controller))
        tg.create_task(server.serve())


if __name__ == "__main__":
    asyncio.run(serve())
