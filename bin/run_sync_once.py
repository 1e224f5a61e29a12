"""Process a single sync batch and exit, for cron-style schedulers."""

import asyncio
import logging
import sys
from pathlib import Path

from orderflow.presentation.container import PresentationContainer

CONFIG_PATH = Path(__file__).resolve().parent.parent / "orderflow" / "config.yaml"


async def main() -> int:
    logging.basicConfig(level=logging.INFO)

    presentation_container = PresentationContainer()
    presentation_container.config.from_yaml(CONFIG_PATH, required=True)

    result = await presentation_container.sync_worker().run_once()
    await presentation_container.application.infrastructure_container.async_engine().dispose()

    if result is None:
        return 1
    print(result.model_dump_json())
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
