import asyncio
import logging
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from orderflow.application.container import ApplicationContainer
from orderflow.presentation import admin_api, webhook_api
from orderflow.presentation.container import PresentationContainer
from orderflow.presentation.sync_worker import SyncWorker

CONFIG_PATH = Path(__file__).resolve().parent.parent / "orderflow" / "config.yaml"


def build_api(container: ApplicationContainer):
    app = FastAPI()
    app.include_router(webhook_api.router)
    app.include_router(admin_api.router)
    container.wire(modules=[webhook_api, admin_api])
    return app


async def main():
    logging.basicConfig(level=logging.INFO)

    presentation_container = PresentationContainer()
    presentation_container.config.from_yaml(CONFIG_PATH, required=True)

    app = build_api(presentation_container.application)

    sync_worker: SyncWorker = presentation_container.sync_worker()

    api_task = asyncio.create_task(
        uvicorn.Server(
            uvicorn.Config(
                app,
                host=presentation_container.config.presentation.api.host(),
                port=int(presentation_container.config.presentation.api.port()),
                log_level="info",
            )
        ).serve()
    )

    sync_task = asyncio.create_task(sync_worker.run())

    await asyncio.gather(api_task, sync_task)


if __name__ == "__main__":
    asyncio.run(main())
